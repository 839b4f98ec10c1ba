"""Variable reference expansion and recipe line markers.

Recipe lines use make-style references:

* ``$(NAME)`` and ``${NAME}`` expand to the value of variable NAME
* ``$@``, ``$<`` and ``$^`` expand to the target name, its first
  prerequisite and all of its prerequisites
* ``$$`` is a literal ``$``

Any other ``$`` sequence (``$HOME``, ``$1``) is left for the shell.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Mapping, Protocol

# Groups: (1) name inside $(...), (2) name inside ${...}, (3) automatic, (4) $$
PLACEHOLDER_PATTERN = re.compile(
    r"\$(?:"
    r"\(\s*([A-Za-z_][A-Za-z0-9_.\-]*)\s*\)"
    r"|\{\s*([A-Za-z_][A-Za-z0-9_.\-]*)\s*\}"
    r"|([@<^])"
    r"|(\$))"
)

SILENT_MARKER = "@"
IGNORE_ERRORS_MARKER = "-"
ALWAYS_MARKER = "+"


class VariableLookup(Protocol):
    def get(self, name: str) -> str:
        ...


@dataclass(frozen=True)
class RecipeLine:
    """One shell command template of a target's recipe.

    Attributes:
        command: The template with its leading markers removed
        silent: Do not echo the command before running it (``@``)
        ignore_errors: A non-zero exit does not abort the run (``-``)
        always: Run even in dry-run mode (``+``)
    """

    command: str
    silent: bool = False
    ignore_errors: bool = False
    always: bool = False

    def __str__(self) -> str:
        prefix = ""
        if self.silent:
            prefix += SILENT_MARKER
        if self.ignore_errors:
            prefix += IGNORE_ERRORS_MARKER
        if self.always:
            prefix += ALWAYS_MARKER
        return prefix + self.command


def parse_recipe_line(raw: str) -> RecipeLine:
    """Split the leading markers off a raw recipe line.

    Markers may appear in any order and combination, optionally separated by
    whitespace: ``@-rm -f x``, ``-@rm -f x`` and ``- @ rm -f x`` are the same
    line. Markers are detected before any expansion, so a variable whose value
    starts with ``-`` never turns into a marker.

    Examples:
        >>> parse_recipe_line("-rm -f missing_file")
        RecipeLine(command='rm -f missing_file', silent=False, ignore_errors=True, always=False)
        >>> parse_recipe_line("@echo hi").silent
        True
    """
    silent = ignore_errors = always = False
    index = 0
    while index < len(raw):
        char = raw[index]
        if char == SILENT_MARKER:
            silent = True
        elif char == IGNORE_ERRORS_MARKER:
            ignore_errors = True
        elif char == ALWAYS_MARKER:
            always = True
        elif not char.isspace():
            break
        index += 1

    return RecipeLine(
        command=raw[index:],
        silent=silent,
        ignore_errors=ignore_errors,
        always=always,
    )


def expand(
    text: str,
    variables: VariableLookup | Mapping[str, str],
    automatic: Mapping[str, str] | None = None,
) -> str:
    """Substitute every variable reference in text, in a single pass.

    A substituted value is inserted literally: references inside it are not
    expanded again.

    Args:
        text: Template containing references
        variables: Anything with a ``get(name)`` returning a string; a
            VariableStore yields "" for unset names
        automatic: Values for ``@``, ``<`` and ``^``; unset ones expand to ""

    Returns:
        The expanded text

    Raises:
        UndefinedVariable: Propagated from the store for a required variable
            with no value
    """
    automatic = automatic or {}

    def replace_match(match: re.Match) -> str:
        name = match.group(1) or match.group(2)
        if name is not None:
            value = variables.get(name)
            return "" if value is None else value
        if match.group(3) is not None:
            return automatic.get(match.group(3), "")
        return "$"

    return PLACEHOLDER_PATTERN.sub(replace_match, text)


def find_references(text: str) -> list[str]:
    """Return the variable names referenced by text, in order of appearance.

    Automatic references and ``$$`` escapes are not included.
    """
    names = []
    for match in PLACEHOLDER_PATTERN.finditer(text):
        name = match.group(1) or match.group(2)
        if name is not None and name not in names:
            names.append(name)
    return names


def automatic_variables(target_name: str, deps: list[str]) -> dict[str, str]:
    """Build the automatic variable values for one target."""
    return {
        "@": target_name,
        "<": deps[0] if deps else "",
        "^": " ".join(deps),
    }


def join_continuations(block: str) -> list[str]:
    """Split a block of recipe text into logical lines.

    A physical line ending in a backslash continues on the next one; the
    backslash-newline pair is kept so the shell sees the continuation. Blank
    lines are dropped.
    """
    lines: list[str] = []
    pending = ""
    for physical in block.splitlines():
        if pending:
            pending += "\n" + physical
        else:
            pending = physical
        if physical.endswith("\\"):
            continue
        if pending.strip():
            lines.append(pending)
        pending = ""
    if pending.strip():
        lines.append(pending)
    return lines
