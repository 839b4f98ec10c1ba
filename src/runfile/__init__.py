"""runfile - a declarative target runner with make-style prerequisites."""

__version__ = "0.1.0"

from runfile.dispatcher import Dispatch, Invocation, dispatch, parse_invocation
from runfile.executor import Executor, RecipeFailure, TargetStatus
from runfile.graph import (
    CyclicDependency,
    UnknownTarget,
    build_dependency_tree,
    resolve_execution_order,
    resolve_goal_segments,
)
from runfile.parser import (
    Runfile,
    RunfileError,
    Target,
    TargetGraph,
    build_target_graph,
    find_runfile,
    parse_runfile,
)
from runfile.substitution import RecipeLine, expand, find_references, parse_recipe_line
from runfile.variables import (
    UndefinedVariable,
    VariableSource,
    VariableStore,
    build_variable_store,
)

__all__ = [
    "__version__",
    "Dispatch",
    "Invocation",
    "dispatch",
    "parse_invocation",
    "Executor",
    "RecipeFailure",
    "TargetStatus",
    "CyclicDependency",
    "UnknownTarget",
    "build_dependency_tree",
    "resolve_execution_order",
    "resolve_goal_segments",
    "Runfile",
    "RunfileError",
    "Target",
    "TargetGraph",
    "build_target_graph",
    "find_runfile",
    "parse_runfile",
    "RecipeLine",
    "expand",
    "find_references",
    "parse_recipe_line",
    "UndefinedVariable",
    "VariableSource",
    "VariableStore",
    "build_variable_store",
]
