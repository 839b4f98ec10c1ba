from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.markup import escape
from rich.tree import Tree

from runfile.cli_commands import build_invocation_graph, get_runfile
from runfile.dispatcher import parse_invocation
from runfile.graph import build_dependency_tree
from runfile.logging import Logger


def show_tree(
    logger: Logger,
    target_name: str,
    tokens: list[str],
    directory: Path,
    runfile_path: Optional[str] = None,
):
    """
    Show the prerequisite tree of a target.
    """
    runfile = get_runfile(logger, runfile_path, directory)
    _, graph = build_invocation_graph(logger, runfile, parse_invocation(tokens))

    if graph.get_target(target_name) is None:
        logger.error(f"[red]Target not found: {escape(target_name)}[/red]")
        raise typer.Exit(1)

    dep_tree = build_dependency_tree(graph, target_name)
    logger.info(_build_rich_tree(dep_tree))


def _build_rich_tree(dep_tree: dict) -> Tree:
    """
    Build a Rich Tree from the nested dictionaries of build_dependency_tree.

    File leaves are dimmed; a target that closes a cycle is flagged red.
    """
    label = escape(dep_tree["name"])
    if dep_tree.get("cycle"):
        label = f"{label} [red](cycle)[/red]"
    elif dep_tree.get("file"):
        label = f"[dim]{label}[/dim]"
    elif dep_tree.get("phony"):
        label = f"[cyan]{label}[/cyan]"

    tree = Tree(label)
    for dep in dep_tree.get("deps", []):
        tree.add(_build_rich_tree(dep))

    return tree
