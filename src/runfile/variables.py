"""Variable store with source-ranked overrides."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, Mapping

from runfile.substitution import expand


class UndefinedVariable(Exception):
    """Raised when a required variable has no value from any source."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f"Variable '{name}' is required but has no value. "
            f"Set it on the command line ({name}=...) or in the environment."
        )
        self.name = name


class VariableSource(enum.IntEnum):
    """Where a value came from. Higher sources win."""

    DEFAULT = 0
    ENVIRONMENT = 1
    INVOCATION = 2


@dataclass(frozen=True)
class Variable:
    name: str
    value: str
    source: VariableSource


@dataclass(frozen=True)
class VariableDecl:
    """A variable as declared in a runfile."""

    name: str
    default: str | None = None
    required: bool = False


class VariableStore:
    """Named string values for one invocation.

    On conflicting ``set`` calls the higher source wins
    (invocation > environment > default) no matter which call came first;
    between equal sources the later call wins. Unset names read as the empty
    string unless they were declared required.
    """

    def __init__(self) -> None:
        self._variables: dict[str, Variable] = {}
        self._required: set[str] = set()
        self._frozen = False

    def set(
        self,
        name: str,
        value: str,
        source: VariableSource = VariableSource.DEFAULT,
    ) -> None:
        if self._frozen:
            raise RuntimeError(
                f"Cannot set variable '{name}': the variable store is read-only "
                f"once execution has started"
            )
        existing = self._variables.get(name)
        if existing is None or source >= existing.source:
            self._variables[name] = Variable(name, str(value), source)

    def require(self, name: str) -> None:
        self._required.add(name)

    def get(self, name: str) -> str:
        """Return the value of name, or "" when it is unset.

        Raises:
            UndefinedVariable: If name is required and has no value
        """
        variable = self._variables.get(name)
        if variable is not None:
            return variable.value
        if name in self._required:
            raise UndefinedVariable(name)
        return ""

    def lookup(self, name: str) -> Variable | None:
        return self._variables.get(name)

    def check_required(self, names: Iterable[str]) -> None:
        """Raise UndefinedVariable for the first required name without a value."""
        for name in names:
            if name in self._required and name not in self._variables:
                raise UndefinedVariable(name)

    def exported(self) -> dict[str, str]:
        """Values that came from the environment or the command line.

        These are merged into every subprocess environment.
        """
        return {
            name: variable.value
            for name, variable in self._variables.items()
            if variable.source >= VariableSource.ENVIRONMENT
        }

    def as_dict(self) -> dict[str, str]:
        return {name: variable.value for name, variable in self._variables.items()}

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __contains__(self, name: object) -> bool:
        return name in self._variables

    def __len__(self) -> int:
        return len(self._variables)


def build_variable_store(
    declarations: Iterable[VariableDecl],
    environ: Mapping[str, str],
    assignments: Mapping[str, str],
    builtins: Mapping[str, str] | None = None,
) -> VariableStore:
    """Populate a store from every source for one invocation.

    Args:
        declarations: Variables declared by the runfile, in declaration order
        environ: The inherited process environment
        assignments: NAME=VALUE assignments from the command line
        builtins: Values provided by the tool itself (MAKE, CURDIR, ...)

    Returns:
        The populated (not yet frozen) store

    Only environment entries whose name matches a declared (or built-in)
    variable are taken. Declared defaults are expanded once, in declaration
    order, against whatever is already known, so a default may refer to an
    earlier variable or to an overridden one. Unknown references in a default
    expand to "" even when they name a required variable; the requirement is
    enforced when a recipe line uses it.
    """
    store = VariableStore()
    declarations = list(declarations)
    builtins = dict(builtins or {})

    for name, value in builtins.items():
        store.set(name, value, VariableSource.DEFAULT)

    known_names = set(builtins) | {decl.name for decl in declarations}
    for name in known_names:
        if name in environ:
            store.set(name, environ[name], VariableSource.ENVIRONMENT)

    for name, value in assignments.items():
        store.set(name, value, VariableSource.INVOCATION)

    for decl in declarations:
        if decl.required:
            store.require(decl.name)
        if decl.default is not None:
            store.set(decl.name, expand(decl.default, store.as_dict()), VariableSource.DEFAULT)

    return store
