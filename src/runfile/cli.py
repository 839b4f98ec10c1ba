"""Command-line interface for runfile."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from runfile import __version__
from runfile.cli_commands.init_runfile import init_runfile
from runfile.cli_commands.list_targets import list_targets
from runfile.cli_commands.run_targets import run_targets
from runfile.cli_commands.show_target import show_target
from runfile.cli_commands.show_tree import show_tree
from runfile.console_logger import ConsoleLogger
from runfile.logging import parse_log_level
from runfile.process_runner import OutputMode

app = typer.Typer(
    help="runfile - run declarative targets in dependency order",
    add_completion=False,
    no_args_is_help=False,
)
console = Console()


def _parse_output_mode(value: Optional[str]) -> Optional[OutputMode]:
    if value is None:
        return None
    try:
        return OutputMode(value.lower())
    except ValueError:
        valid = ", ".join(mode.value for mode in OutputMode)
        raise typer.BadParameter(f"must be one of: {valid}", param_hint="--output")


@app.command(
    context_settings={
        "allow_extra_args": True,
        "ignore_unknown_options": True,
        "help_option_names": ["-h", "--help"],
    }
)
def run(
    ctx: typer.Context,
    runfile_path: Optional[str] = typer.Option(
        None, "--file", "-f", help="Runfile to read (default: Runfile.yaml, runfile.yaml or runfile.yml)"
    ),
    directory: Optional[Path] = typer.Option(
        None, "--directory", "-C", help="Project directory holding the runfile"
    ),
    jobs: Optional[int] = typer.Option(
        None, "--jobs", "-j", min=1, help="Run up to N independent targets at once"
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", "-n", help="Print commands without running them"
    ),
    silent: bool = typer.Option(False, "--silent", "-s", help="Do not echo commands"),
    output: Optional[str] = typer.Option(
        None, "--output", "-O", help="Recipe output to show: all, none, out or err"
    ),
    log_level: str = typer.Option(
        "info", "--log-level", "-L", help="fatal, error, warn, info, debug or trace"
    ),
    list_opt: bool = typer.Option(False, "--list", "-l", help="List all targets"),
    show: Optional[str] = typer.Option(None, "--show", help="Show a target definition"),
    tree: Optional[str] = typer.Option(None, "--tree", help="Show a target's prerequisite tree"),
    init: bool = typer.Option(False, "--init", help="Create a blank Runfile.yaml"),
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
):
    """
    Run TARGETS (default: the runfile's default target).

    NAME=VALUE arguments set variables for this run. Any other argument that
    is not a target is handed to recipes in $(PASSTHROUGH); put such options
    after `--`.
    """
    if version:
        console.print(f"runfile version {__version__}")
        raise typer.Exit()

    try:
        level = parse_log_level(log_level)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--log-level")

    logger = ConsoleLogger(console, level)
    output_mode = _parse_output_mode(output)
    directory = directory or Path.cwd()
    tokens = list(ctx.args)

    if init:
        init_runfile(logger, directory)
        return

    if list_opt:
        list_targets(logger, tokens, directory, runfile_path)
        return

    if show:
        show_target(logger, show, tokens, directory, runfile_path)
        return

    if tree:
        show_tree(logger, tree, tokens, directory, runfile_path)
        return

    run_targets(
        logger,
        tokens,
        directory,
        runfile_path=runfile_path,
        jobs=jobs,
        dry_run=dry_run,
        silent=silent,
        output=output_mode,
    )


def main():
    """Entry point for the `run` and `runfile` console scripts."""
    app()


if __name__ == "__main__":
    main()
