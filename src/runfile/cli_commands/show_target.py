from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.markup import escape
from rich.syntax import Syntax

from runfile.cli_commands import build_invocation_graph, get_runfile
from runfile.dispatcher import parse_invocation
from runfile.logging import Logger


def show_target(
    logger: Logger,
    target_name: str,
    tokens: list[str],
    directory: Path,
    runfile_path: Optional[str] = None,
):
    """
    Show a target definition with syntax highlighting.

    Names and prerequisites are shown expanded; recipe lines are shown as
    written, markers included.
    """
    runfile = get_runfile(logger, runfile_path, directory)
    _, graph = build_invocation_graph(logger, runfile, parse_invocation(tokens))

    target = graph.get_target(target_name)
    if target is None:
        logger.error(f"[red]Target not found: {escape(target_name)}[/red]")
        raise typer.Exit(1)

    logger.info(f"[bold]Target: {escape(target_name)}[/bold]")
    if target.source_file:
        logger.info(f"Source: {escape(target.source_file)}")
    logger.info("")

    target_yaml = {
        target_name: {
            "desc": target.desc,
            "phony": target.phony,
            "deps": target.deps,
            "recipe": [str(line) for line in target.recipe],
        }
    }

    # Drop empty fields for a cleaner display
    target_dict = target_yaml[target_name]
    target_yaml[target_name] = {k: v for k, v in target_dict.items() if v}

    yaml_str = yaml.dump(target_yaml, default_flow_style=False, sort_keys=False)
    syntax = Syntax(yaml_str, "yaml", theme="ansi_light", line_numbers=False)
    logger.info(syntax)
