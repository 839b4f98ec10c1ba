"""Run requested targets."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.markup import escape

from runfile.cli_commands import (
    build_invocation_graph,
    get_action_failure_string,
    get_action_success_string,
    get_runfile,
)
from runfile.config import ConfigError, load_settings
from runfile.dispatcher import parse_invocation
from runfile.executor import Executor, RecipeFailure
from runfile.graph import CyclicDependency, UnknownTarget
from runfile.logging import Logger
from runfile.process_runner import OutputMode, make_process_runner
from runfile.variables import UndefinedVariable

INTERRUPTED_EXIT_CODE = 130


def run_targets(
    logger: Logger,
    tokens: list[str],
    directory: Path,
    runfile_path: Optional[str] = None,
    jobs: Optional[int] = None,
    dry_run: bool = False,
    silent: bool = False,
    output: Optional[OutputMode] = None,
) -> None:
    """
    Run the targets named on the command line, prerequisites first.

    Args:
    logger: Logger interface for output
    tokens: Target names, NAME=VALUE assignments and passthrough tokens
    directory: Directory holding the runfile
    runfile_path: Explicit runfile (optional)
    jobs: Parallel targets (optional; config file, then 1)
    dry_run: Print commands without running them
    silent: Do not echo commands
    output: Which subprocess streams to show (optional; config file, then all)

    Raises:
    typer.Exit: 0 on success, the failing command's exit code on a recipe
    failure, 1 on configuration errors, 130 on interrupt
    """
    invocation = parse_invocation(tokens)
    runfile = get_runfile(logger, runfile_path, directory)

    try:
        settings = load_settings(runfile.project_root)
    except ConfigError as e:
        logger.error(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)
    if settings.source:
        logger.debug(f"Using configuration from {settings.source}")

    variables, graph = build_invocation_graph(logger, runfile, invocation)

    executor = Executor(
        graph,
        variables,
        logger,
        make_process_runner,
        shell=graph.shell or settings.shell,
        jobs=jobs or settings.jobs or 1,
        dry_run=dry_run,
        silent=silent,
        output_mode=output or settings.output or OutputMode.ALL,
    )
    logger.debug(f"Shell: {escape(' '.join(executor.shell.argv('<line>')))}")

    goals = invocation.goals
    label = ", ".join(goals) if goals else (graph.default_target or "")

    try:
        executor.execute(goals)
    except (CyclicDependency, UnknownTarget, UndefinedVariable) as e:
        logger.error(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)
    except RecipeFailure as e:
        logger.error(
            f"[red]{get_action_failure_string()} {escape(str(e))}[/red]"
        )
        raise typer.Exit(e.exit_code)
    except KeyboardInterrupt:
        logger.error(f"[red]{get_action_failure_string()} Interrupted[/red]")
        raise typer.Exit(INTERRUPTED_EXIT_CODE)

    if label and not dry_run:
        logger.info(
            f"[green]{get_action_success_string()} {escape(label)} completed successfully[/green]"
        )
