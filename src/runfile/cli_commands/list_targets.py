from __future__ import annotations

from pathlib import Path
from typing import Optional

from rich.markup import escape
from rich.table import Table

from runfile.cli_commands import build_invocation_graph, get_runfile
from runfile.dispatcher import parse_invocation
from runfile.logging import Logger


def list_targets(
    logger: Logger,
    tokens: list[str],
    directory: Path,
    runfile_path: Optional[str] = None,
):
    """
    List all targets with their descriptions, the default target first.
    """
    runfile = get_runfile(logger, runfile_path, directory)
    _, graph = build_invocation_graph(logger, runfile, parse_invocation(tokens))

    names = graph.target_names()
    max_name_len = max((len(name) for name in names), default=0)

    # Borderless, like `make help` output
    table = Table(show_edge=False, show_header=False, box=None, padding=(0, 2))
    table.add_column("Target", style="bold cyan", no_wrap=True, width=max_name_len or None)
    table.add_column("Kind", style="dim", no_wrap=True)
    table.add_column("Description", style="white", max_width=80)

    ordered = sorted(names, key=lambda name: (name != graph.default_target, name))
    for name in ordered:
        target = graph.get_target(name)
        kind = "phony" if target.phony else "file"
        desc = escape(target.desc)
        if name == graph.default_target:
            desc = f"{desc} [dim](default)[/dim]".strip()
        table.add_row(escape(name), kind, desc)

    logger.info(table)
