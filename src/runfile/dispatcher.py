"""Invocation parsing and the catch-all for unknown requested names.

Anything on the command line that is not an option, not a ``NAME=VALUE``
assignment and not a declared target is accepted as a no-op target. This lets
a user append flags meant for a delegated tool::

    run docker-unit-tests -- -k test_canvas

The recipe of ``docker-unit-tests`` picks the extra tokens up through
``$(PASSTHROUGH)``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from runfile.parser import Target, TargetGraph

ASSIGNMENT_PATTERN = re.compile(r"^([A-Za-z_][A-Za-z0-9_.\-]*)=(.*)$", re.DOTALL)


@dataclass
class Invocation:
    """Requested names plus command-line variable assignments."""

    goals: list[str] = field(default_factory=list)
    assignments: dict[str, str] = field(default_factory=dict)


@dataclass
class Dispatch:
    """Outcome of matching requested names against the graph.

    Attributes:
        goals: Names to resolve, in command-line order
        passthrough: The subset with no declared target, in order
    """

    goals: list[str]
    passthrough: list[str] = field(default_factory=list)


def parse_invocation(tokens: list[str]) -> Invocation:
    """Split command-line tokens into goals and variable assignments.

    Examples:
        >>> parse_invocation(["test", "PYTHON=python3", "-k", "x"])
        Invocation(goals=['test', '-k', 'x'], assignments={'PYTHON': 'python3'})
    """
    invocation = Invocation()
    for token in tokens:
        match = ASSIGNMENT_PATTERN.match(token)
        if match:
            invocation.assignments[match.group(1)] = match.group(2)
        else:
            invocation.goals.append(token)
    return invocation


def make_passthrough_target(name: str) -> Target:
    return Target(name=name, phony=True, passthrough=True)


def dispatch(graph: TargetGraph, goals: list[str]) -> Dispatch:
    """Resolve requested names to targets, registering no-ops for unknown ones.

    Falls back to the graph's default target when no goal was requested.
    Unknown names never raise; each becomes a phony target with no
    prerequisites and no recipe, added to the graph for this invocation.
    """
    if not goals:
        return Dispatch(goals=[graph.default_target] if graph.default_target else [])

    passthrough = find_passthrough_names(graph, goals)
    for name in passthrough:
        if graph.get_target(name) is None:
            graph.add_target(make_passthrough_target(name))

    return Dispatch(goals=list(goals), passthrough=passthrough)


def find_passthrough_names(graph: TargetGraph, goals: list[str]) -> list[str]:
    """Goals with no declared target, in order, repeats kept.

    Repeats matter because the names are forwarded as arguments
    (``-v -v``). The graph is not modified.
    """
    return [
        name
        for name in goals
        if graph.get_target(name) is None or graph.get_target(name).passthrough
    ]
