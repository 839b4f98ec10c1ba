"""Parse runfiles and build the target graph."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from runfile.logging import Logger
from runfile.substitution import RecipeLine, expand, join_continuations, parse_recipe_line
from runfile.variables import VariableDecl, VariableStore

RUNFILE_NAMES = ("Runfile.yaml", "runfile.yaml", "runfile.yml")

_TOP_LEVEL_KEYS = {"default", "include", "shell", "variables", "targets"}
_TARGET_KEYS = {"desc", "deps", "recipe", "phony"}


class RunfileError(Exception):
    """Raised when a runfile is malformed or its includes form a cycle."""

    pass


@dataclass
class Shell:
    """The program every recipe line is handed to: ``[program, *args, line]``."""

    program: str
    args: list[str] = field(default_factory=list)

    def __post_init__(self):
        if isinstance(self.args, str):
            self.args = [self.args]

    def argv(self, command: str) -> list[str]:
        return [self.program, *self.args, command]


@dataclass
class TargetDecl:
    """A target exactly as written, before variable expansion."""

    name: str
    deps: list[str] = field(default_factory=list)
    recipe: list[str] = field(default_factory=list)
    phony: bool = False
    desc: str = ""
    source_file: str = ""


@dataclass
class Runfile:
    """A parsed runfile with its includes merged in."""

    path: Path
    project_root: Path
    variables: list[VariableDecl] = field(default_factory=list)
    targets: list[TargetDecl] = field(default_factory=list)
    default_target: str | None = None
    shell: Shell | None = None


@dataclass
class Target:
    """A named operation: prerequisites plus an ordered recipe.

    A phony target is always out of date. Any other target is also a path on
    disk and is skipped while that path is newer than its prerequisites.
    """

    name: str
    deps: list[str] = field(default_factory=list)
    recipe: list[RecipeLine] = field(default_factory=list)
    phony: bool = False
    desc: str = ""
    source_file: str = ""
    passthrough: bool = False  # No-op stand-in for an unknown requested name

    def __post_init__(self):
        if isinstance(self.deps, str):
            self.deps = [self.deps]
        self.recipe = [
            parse_recipe_line(line) if isinstance(line, str) else line
            for line in self.recipe
        ]


@dataclass
class TargetGraph:
    """Every target of one invocation, keyed by expanded name."""

    targets: dict[str, Target]
    project_root: Path
    default_target: str | None = None
    shell: Shell | None = None
    source_file: str = ""

    def get_target(self, name: str) -> Target | None:
        return self.targets.get(name)

    def target_names(self) -> list[str]:
        return list(self.targets.keys())

    def add_target(self, target: Target) -> None:
        self.targets[target.name] = target


def find_runfile(start_dir: Path | None = None) -> Path | None:
    """Find a runfile in start_dir (defaults to the current directory).

    Only start_dir itself is searched; recipes run relative to it.
    """
    if start_dir is None:
        start_dir = Path.cwd()

    for filename in RUNFILE_NAMES:
        candidate = start_dir / filename
        if candidate.is_file():
            return candidate

    return None


def parse_runfile(path: Path) -> Runfile:
    """Parse a runfile and, recursively, the files it includes.

    Included declarations come first, so the including file's variables and
    targets override them.

    Raises:
        FileNotFoundError: If path or an included file doesn't exist
        RunfileError: If the structure is invalid or includes are circular
    """
    if not path.exists():
        raise FileNotFoundError(f"Runfile not found: {path}")

    runfile = Runfile(path=path, project_root=path.parent.resolve())
    data = _parse_file(path, runfile, [])

    default = data.get("default")
    if default is not None:
        if not isinstance(default, str):
            raise RunfileError(f"Error in runfile '{path}': 'default' must be a string")
        runfile.default_target = default

    if "shell" in data:
        runfile.shell = parse_shell(data["shell"], path)

    return runfile


def _parse_file(path: Path, runfile: Runfile, include_stack: list[Path]) -> dict[str, Any]:
    resolved = path.resolve()
    if resolved in include_stack:
        chain = " → ".join(p.name for p in include_stack + [resolved])
        raise RunfileError(f"Circular include detected: {chain}")
    include_stack.append(resolved)

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise RunfileError(f"Error parsing YAML in runfile '{path}': {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise RunfileError(f"Error in runfile '{path}': top level must be a mapping")

    unknown = [str(key) for key in data if key not in _TOP_LEVEL_KEYS]
    if unknown:
        raise RunfileError(
            f"Error in runfile '{path}': unknown top-level key(s): {', '.join(unknown)}"
        )

    includes = data.get("include", [])
    if isinstance(includes, str):
        includes = [includes]
    if not isinstance(includes, list):
        raise RunfileError(f"Error in runfile '{path}': 'include' must be a list")
    for include in includes:
        child = path.parent / str(include)
        if not child.exists():
            raise FileNotFoundError(f"Included runfile not found: {child}")
        _parse_file(child, runfile, include_stack)

    runfile.variables.extend(_parse_variables(data.get("variables") or {}, path))
    runfile.targets.extend(_parse_targets(data.get("targets") or {}, path))

    include_stack.pop()
    return data


def _parse_variables(section: Any, path: Path) -> list[VariableDecl]:
    if not isinstance(section, dict):
        raise RunfileError(f"Error in runfile '{path}': 'variables' must be a mapping")

    decls = []
    for name, entry in section.items():
        name = str(name)
        if isinstance(entry, dict):
            unknown = [str(key) for key in entry if key not in ("default", "required")]
            if unknown:
                raise RunfileError(
                    f"Error in runfile '{path}': variable '{name}' has unknown "
                    f"field(s): {', '.join(unknown)}"
                )
            required = entry.get("required", False)
            if not isinstance(required, bool):
                raise RunfileError(
                    f"Error in runfile '{path}': 'required' of variable '{name}' must be a boolean"
                )
            default = entry.get("default")
            decls.append(
                VariableDecl(
                    name=name,
                    default=None if default is None else _scalar(default),
                    required=required,
                )
            )
        elif isinstance(entry, list):
            raise RunfileError(
                f"Error in runfile '{path}': variable '{name}' must be a scalar or a mapping"
            )
        else:
            decls.append(VariableDecl(name=name, default="" if entry is None else _scalar(entry)))
    return decls


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _parse_targets(section: Any, path: Path) -> list[TargetDecl]:
    if not isinstance(section, dict):
        raise RunfileError(f"Error in runfile '{path}': 'targets' must be a mapping")

    decls = []
    for name, entry in section.items():
        name = str(name)
        if entry is None:
            entry = {}
        if not isinstance(entry, dict):
            raise RunfileError(f"Error in runfile '{path}': target '{name}' must be a mapping")

        unknown = [str(key) for key in entry if key not in _TARGET_KEYS]
        if unknown:
            raise RunfileError(
                f"Error in runfile '{path}': target '{name}' has unknown field(s): "
                f"{', '.join(unknown)}"
            )

        deps = entry.get("deps", [])
        if isinstance(deps, str):
            deps = [deps]
        if not isinstance(deps, list):
            raise RunfileError(
                f"Error in runfile '{path}': 'deps' of target '{name}' must be a list"
            )

        recipe = entry.get("recipe", [])
        if isinstance(recipe, str):
            recipe = join_continuations(recipe)
        elif isinstance(recipe, list):
            recipe = [str(line) for line in recipe]
        else:
            raise RunfileError(
                f"Error in runfile '{path}': 'recipe' of target '{name}' must be a "
                f"string or a list"
            )

        phony = entry.get("phony", False)
        if not isinstance(phony, bool):
            raise RunfileError(
                f"Error in runfile '{path}': 'phony' of target '{name}' must be a boolean"
            )

        decls.append(
            TargetDecl(
                name=name,
                deps=[str(dep) for dep in deps],
                recipe=recipe,
                phony=phony,
                desc=str(entry.get("desc", "") or ""),
                source_file=str(path),
            )
        )
    return decls


def parse_shell(entry: Any, path: Path) -> Shell:
    """Parse a ``shell`` section: a program name or ``{program, args}``."""
    if isinstance(entry, str):
        return Shell(program=entry, args=["-c"])
    if not isinstance(entry, dict):
        raise RunfileError(f"Error in '{path}': 'shell' must be a string or a mapping")

    program = entry.get("program", "")
    if not isinstance(program, str) or not program:
        raise RunfileError(f"Error in '{path}': 'shell.program' must be a non-empty string")

    args = entry.get("args", ["-c"])
    if isinstance(args, str):
        args = [args]
    if not isinstance(args, list):
        raise RunfileError(f"Error in '{path}': 'shell.args' must be a list")

    return Shell(program=program, args=[str(arg) for arg in args])


def build_target_graph(
    runfile: Runfile,
    variables: VariableStore,
    logger: Optional[Logger] = None,
) -> TargetGraph:
    """Expand target names and prerequisites into the graph for one invocation.

    Names and prerequisites are expanded with the invocation's variables and
    split on whitespace, so one declaration may define several targets and a
    variable may hold several prerequisites. Recipe lines stay unexpanded
    until they run.

    Raises:
        RunfileError: If a target name expands to nothing
    """
    targets: dict[str, Target] = {}
    first_name: str | None = None

    for decl in runfile.targets:
        names = expand(decl.name, variables.as_dict()).split()
        if not names:
            raise RunfileError(
                f"Error in runfile '{decl.source_file}': target '{decl.name}' "
                f"expands to an empty name"
            )

        deps: list[str] = []
        for dep in decl.deps:
            deps.extend(expand(dep, variables.as_dict()).split())

        for name in names:
            if name in targets and logger:
                logger.warn(
                    f"[yellow]Warning: overriding definition of target '{name}' "
                    f"({decl.source_file})[/yellow]"
                )
            if first_name is None:
                first_name = name
            targets[name] = Target(
                name=name,
                deps=list(deps),
                recipe=list(decl.recipe),
                phony=decl.phony,
                desc=decl.desc,
                source_file=decl.source_file,
            )

    default_target = first_name
    if runfile.default_target:
        default_target = expand(runfile.default_target, variables.as_dict()).strip() or first_name

    return TargetGraph(
        targets=targets,
        project_root=runfile.project_root,
        default_target=default_target,
        shell=runfile.shell,
        source_file=str(runfile.path),
    )
