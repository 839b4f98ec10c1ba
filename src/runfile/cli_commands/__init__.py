"""CLI command implementations and shared utilities."""

from __future__ import annotations

import os
import shlex
import sys
from pathlib import Path
from typing import Mapping, Optional

import typer
from rich.markup import escape

from runfile.dispatcher import Invocation
from runfile.logging import Logger
from runfile.parser import (
    RUNFILE_NAMES,
    Runfile,
    RunfileError,
    TargetGraph,
    build_target_graph,
    find_runfile,
    parse_runfile,
)
from runfile.variables import VariableStore, build_variable_store


def _supports_unicode() -> bool:
    """
    Check if the terminal supports Unicode characters.

    Returns:
    True if terminal supports UTF-8, False otherwise
    """
    # Classic Windows console (conhost)
    if os.name == "nt" and "WT_SESSION" not in os.environ:
        return False

    encoding = sys.stdout.encoding
    if not encoding:
        return False

    try:
        "✓✗".encode(encoding)
        return True
    except UnicodeEncodeError:
        return False


def get_action_success_string() -> str:
    """Tick (✓) if the terminal can show it, otherwise "[ OK ]"."""
    return "✓" if _supports_unicode() else "[ OK ]"


def get_action_failure_string() -> str:
    """Cross (✗) if the terminal can show it, otherwise "[ FAIL ]"."""
    return "✗" if _supports_unicode() else "[ FAIL ]"


def make_command() -> str:
    """Shell command that re-invokes this tool, exposed to recipes as $(MAKE)."""
    return shlex.join([sys.executable, "-m", "runfile"])


def get_runfile(logger: Logger, runfile_path: Optional[str], directory: Path) -> Runfile:
    """
    Locate and parse the runfile, turning failures into a CLI exit.

    Args:
    logger: Logger for error output
    runfile_path: Explicit --file value, relative to directory (optional)
    directory: Directory to search when no explicit file is given
    """
    if runfile_path:
        path = Path(runfile_path)
        if not path.is_absolute():
            path = directory / path
        if not path.exists():
            logger.error(f"[red]Runfile not found: {escape(runfile_path)}[/red]")
            raise typer.Exit(1)
    else:
        path = find_runfile(directory)
        if path is None:
            logger.error(f"[red]No runfile found ({', '.join(RUNFILE_NAMES)})[/red]")
            logger.info("Run [cyan]run --init[/cyan] to create one")
            raise typer.Exit(1)

    try:
        return parse_runfile(path)
    except (RunfileError, FileNotFoundError) as e:
        logger.error(f"[red]Error parsing runfile: {escape(str(e))}[/red]")
        raise typer.Exit(1)


def build_invocation_graph(
    logger: Logger,
    runfile: Runfile,
    invocation: Invocation,
    environ: Optional[Mapping[str, str]] = None,
) -> tuple[VariableStore, TargetGraph]:
    """
    Populate the variable store for this invocation and expand the graph.

    Built-in variables: MAKE (re-invoke this tool) and CURDIR (project
    directory). GOALS and PASSTHROUGH are added by the executor once the
    requested names are dispatched.
    """
    builtins = {
        "MAKE": make_command(),
        "CURDIR": str(runfile.project_root),
    }
    variables = build_variable_store(
        runfile.variables,
        os.environ if environ is None else environ,
        invocation.assignments,
        builtins,
    )
    try:
        graph = build_target_graph(runfile, variables, logger)
    except RunfileError as e:
        logger.error(f"[red]Error in runfile: {escape(str(e))}[/red]")
        raise typer.Exit(1)
    return variables, graph
