"""Helpers for asserting on captured CLI output."""

import re

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")


def strip_ansi_codes(text: str) -> str:
    """
    Remove ANSI escape sequences (colors, cursor movement) from text.
    """
    return _ANSI_ESCAPE.sub("", text)


def output_lines(text: str) -> list[str]:
    """Non-empty output lines with color codes and trailing spaces removed."""
    return [line.rstrip() for line in strip_ansi_codes(text).splitlines() if line.strip()]
