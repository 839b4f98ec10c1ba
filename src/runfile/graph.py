"""Dependency resolution over the target graph."""

from __future__ import annotations

from typing import Optional

from runfile.filesystem import FileSystem
from runfile.parser import Target, TargetGraph


class CyclicDependency(Exception):
    """Raised when the prerequisites of the requested targets form a cycle."""

    def __init__(self, chain: list[str]) -> None:
        super().__init__(f"Dependency cycle detected: {' -> '.join(chain)}")
        self.chain = chain


class UnknownTarget(Exception):
    """Raised when a prerequisite is neither a target nor an existing file."""

    def __init__(self, name: str, needed_by: str | None = None) -> None:
        if needed_by:
            message = f"No rule to make target '{name}', needed by '{needed_by}'"
        else:
            message = f"No rule to make target '{name}'"
        super().__init__(message)
        self.name = name
        self.needed_by = needed_by


def resolve_goal_segments(
    graph: TargetGraph,
    requested: list[str],
    fs: Optional[FileSystem] = None,
) -> list[list[Target]]:
    """Resolve the execution plan, one segment per requested name.

    Depth-first over prerequisites, left to right; a target is emitted after
    all of its prerequisites and at most once across all segments. A segment
    holds the targets first reached from its requested name, so it may be
    empty when an earlier goal already pulled everything in.

    Args:
        graph: The invocation's target graph (passthrough targets included)
        requested: Requested names, in command-line order
        fs: Used to accept prerequisites that are plain source files

    Returns:
        A list with one list of targets per requested name

    Raises:
        UnknownTarget: If a prerequisite has no target and no file on disk.
            Requested names come through dispatch, which registers unknown
            ones as passthrough targets, so they never raise here.
        CyclicDependency: If traversal re-enters a target still on the path
    """
    if fs is None:
        fs = FileSystem(graph.project_root)

    done: set[str] = set()
    path: list[str] = []
    segments: list[list[Target]] = []

    def visit(name: str, needed_by: str | None, segment: list[Target]) -> None:
        if name in done:
            return
        if name in path:
            raise CyclicDependency(path[path.index(name):] + [name])

        target = graph.get_target(name)
        if target is None:
            if fs.exists(name):
                # Source file with no rule; only its timestamp matters
                done.add(name)
                return
            raise UnknownTarget(name, needed_by)

        path.append(name)
        for dep in target.deps:
            visit(dep, name, segment)
        path.pop()

        done.add(name)
        segment.append(target)

    for name in requested:
        segment: list[Target] = []
        visit(name, None, segment)
        segments.append(segment)

    return segments


def resolve_execution_order(
    graph: TargetGraph,
    requested: list[str] | str,
    fs: Optional[FileSystem] = None,
) -> list[Target]:
    """Resolve the flat execution order for the requested names.

    Returns:
        Targets in execution order (prerequisites first), each exactly once

    Raises:
        UnknownTarget: If a prerequisite doesn't exist
        CyclicDependency: If a dependency cycle is detected
    """
    if isinstance(requested, str):
        requested = [requested]
    return [
        target
        for segment in resolve_goal_segments(graph, requested, fs)
        for target in segment
    ]


def build_dependency_tree(graph: TargetGraph, target_name: str) -> dict:
    """Build a tree structure representing prerequisites for visualization.

    Prerequisites without a rule appear as leaves marked ``file``; a target
    reached again on its own path is marked ``cycle`` instead of recursing.

    Raises:
        UnknownTarget: If target_name is not a target
    """
    if graph.get_target(target_name) is None:
        raise UnknownTarget(target_name)

    visiting: set[str] = set()

    def build_tree(name: str) -> dict:
        target = graph.get_target(name)
        if target is None:
            return {"name": name, "deps": [], "file": True}

        if name in visiting:
            return {"name": name, "deps": [], "cycle": True}

        visiting.add(name)
        tree = {
            "name": name,
            "phony": target.phony,
            "deps": [build_tree(dep) for dep in target.deps],
        }
        visiting.remove(name)

        return tree

    return build_tree(target_name)
