"""Target execution and staleness detection."""

from __future__ import annotations

import os
import shlex
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from graphlib import TopologicalSorter
from typing import Callable, Mapping, Optional

from rich.markup import escape

from runfile.config import platform_default_shell
from runfile.dispatcher import Dispatch, dispatch
from runfile.filesystem import FileSystem
from runfile.graph import resolve_goal_segments
from runfile.logging import Logger
from runfile.parser import Shell, Target, TargetGraph
from runfile.process_runner import OutputMode, ProcessRunner, make_process_runner
from runfile.substitution import RecipeLine, automatic_variables, expand, find_references
from runfile.variables import VariableSource, VariableStore

ProcessRunnerFactory = Callable[[OutputMode, Logger], ProcessRunner]

# Exit status reported when the shell itself cannot be started
SPAWN_FAILURE_EXIT_CODE = 127


@dataclass
class TargetStatus:
    """Whether a target's recipe runs, and why."""

    target_name: str
    will_run: bool
    reason: str  # "phony", "missing", "prerequisite_newer", "prerequisite_remade",
    # "up_to_date", "passthrough"
    newer_prerequisites: list[str] = field(default_factory=list)


class RecipeFailure(Exception):
    """Raised when a recipe line without the ignore marker exits non-zero."""

    def __init__(self, target_name: str, command: str, exit_code: int) -> None:
        super().__init__(
            f"Target '{target_name}' failed: command exited with code {exit_code}: {command}"
        )
        self.target_name = target_name
        self.command = command
        self.exit_code = exit_code


@dataclass
class Plan:
    """The resolved work of one invocation."""

    dispatch: Dispatch
    segments: list[list[Target]]

    @property
    def order(self) -> list[Target]:
        return [target for segment in self.segments for target in segment]


class Executor:
    """Resolves requested targets and runs their recipes."""

    def __init__(
        self,
        graph: TargetGraph,
        variables: VariableStore,
        logger: Logger,
        process_runner_factory: ProcessRunnerFactory = make_process_runner,
        shell: Optional[Shell] = None,
        fs: Optional[FileSystem] = None,
        jobs: int = 1,
        dry_run: bool = False,
        silent: bool = False,
        output_mode: OutputMode = OutputMode.ALL,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """Initialize executor.

        Args:
            graph: Target graph for this invocation
            variables: Variable store; frozen once execution starts
            logger: Logger for echoed commands and diagnostics
            process_runner_factory: Builds the runner that spawns recipe lines
            shell: Shell for recipe lines (default: graph's, else platform's)
            fs: Filesystem collaborator for timestamps
            jobs: Maximum targets running at once; 1 is strictly sequential
            dry_run: Echo commands instead of running them ("+" lines still run)
            silent: Never echo commands
            output_mode: Which subprocess streams reach the terminal
            environ: Base subprocess environment (default: os.environ)
        """
        self.graph = graph
        self.variables = variables
        self.logger = logger
        self.shell = shell or graph.shell or platform_default_shell()
        self.fs = fs or FileSystem(graph.project_root)
        self.jobs = max(1, jobs)
        self.dry_run = dry_run
        self.silent = silent
        self._environ = dict(os.environ if environ is None else environ)
        self._runner = process_runner_factory(output_mode, logger)

    def plan(self, requested: list[str]) -> Plan:
        """Resolve requested names into an execution plan without running anything.

        Raises:
            CyclicDependency: If the prerequisites form a cycle
            UnknownTarget: If a prerequisite has no rule and no file
            UndefinedVariable: If a recipe line in the plan uses a required
                variable that has no value
        """
        result = dispatch(self.graph, list(requested))
        segments = resolve_goal_segments(self.graph, result.goals, self.fs)
        plan = Plan(dispatch=result, segments=segments)

        for target in plan.order:
            for line in target.recipe:
                self.variables.check_required(find_references(line.command))

        self.logger.trace(
            f"Execution plan: {', '.join(t.name for t in plan.order) or '(empty)'}",
            markup=False,
        )
        return plan

    def execute(self, requested: list[str]) -> dict[str, TargetStatus]:
        """Run the requested targets and their prerequisites.

        Every configuration error is raised before the first subprocess
        starts. The first failing line aborts the whole run.

        Args:
            requested: Requested names; empty means the default target

        Returns:
            Status of every target in the plan that was reached

        Raises:
            RecipeFailure: If a recipe line without the ignore marker fails
            CyclicDependency, UnknownTarget, UndefinedVariable: From planning
        """
        plan = self.plan(requested)

        if not self.variables.frozen:
            self.variables.set("GOALS", shlex.join(plan.dispatch.goals), VariableSource.DEFAULT)
            self.variables.set(
                "PASSTHROUGH", shlex.join(plan.dispatch.passthrough), VariableSource.DEFAULT
            )
            self.variables.freeze()

        for name in self.variables.as_dict():
            self.logger.trace(f"Variable {name} = {self.variables.get(name)!r}", markup=False)

        statuses: dict[str, TargetStatus] = {}
        try:
            if self.jobs > 1:
                self._execute_parallel(plan, statuses)
            else:
                self._execute_sequential(plan, statuses)
        except KeyboardInterrupt:
            self._runner.terminate()
            raise

        for name in plan.dispatch.goals:
            status = statuses.get(name)
            if status is not None and status.reason == "up_to_date":
                self.logger.info(f"'{escape(name)}' is up to date.")

        return statuses

    def check_target_status(self, target: Target, remade: set[str]) -> TargetStatus:
        """Decide whether a target's recipe has to run.

        A phony target always runs. A file target runs when its path is
        missing, when a prerequisite file is newer than it, or when a
        prerequisite file target was rebuilt earlier in this run. Phony
        prerequisites are never compared: they are not files.

        Args:
            target: Target to check, after all its prerequisites completed
            remade: Names of targets whose recipe ran (or would run) already
        """
        if target.passthrough:
            return TargetStatus(target.name, will_run=False, reason="passthrough")

        if target.phony:
            return TargetStatus(target.name, will_run=True, reason="phony")

        target_mtime = self.fs.mtime(target.name)
        if target_mtime is None:
            return TargetStatus(target.name, will_run=True, reason="missing")

        newer = []
        rebuilt = []
        for dep in target.deps:
            dep_target = self.graph.get_target(dep)
            if dep_target is not None and dep_target.phony:
                continue
            if dep in remade:
                rebuilt.append(dep)
                continue
            dep_mtime = self.fs.mtime(dep)
            if dep_mtime is not None and dep_mtime > target_mtime:
                newer.append(dep)

        if newer:
            return TargetStatus(
                target.name, will_run=True, reason="prerequisite_newer", newer_prerequisites=newer
            )
        if rebuilt:
            return TargetStatus(
                target.name, will_run=True, reason="prerequisite_remade", newer_prerequisites=rebuilt
            )

        return TargetStatus(target.name, will_run=False, reason="up_to_date")

    def _execute_sequential(self, plan: Plan, statuses: dict[str, TargetStatus]) -> None:
        remade: set[str] = set()
        for target in plan.order:
            status = self.check_target_status(target, remade)
            statuses[target.name] = status
            if status.will_run:
                self._run_target(target)
                remade.add(target.name)
            else:
                self._log_skip(status)

    def _execute_parallel(self, plan: Plan, statuses: dict[str, TargetStatus]) -> None:
        """Run each goal segment with up to `jobs` targets at once.

        Segments still run one after another, so `run clean build` never
        overlaps the two goals. On interrupt the running processes are killed
        before the pool is shut down.
        """
        remade: set[str] = set()
        pool = ThreadPoolExecutor(max_workers=self.jobs, thread_name_prefix="runfile-job")
        interrupted = False
        try:
            for segment in plan.segments:
                self._run_segment(pool, segment, statuses, remade)
        except KeyboardInterrupt:
            interrupted = True
            self._runner.terminate()
            raise
        finally:
            pool.shutdown(wait=not interrupted, cancel_futures=interrupted)

    def _run_segment(
        self,
        pool: ThreadPoolExecutor,
        segment: list[Target],
        statuses: dict[str, TargetStatus],
        remade: set[str],
    ) -> None:
        by_name = {target.name: target for target in segment}
        sorter = TopologicalSorter(
            {target.name: [dep for dep in target.deps if dep in by_name] for target in segment}
        )
        sorter.prepare()
        running: dict[Future, str] = {}
        failure: RecipeFailure | None = None

        try:
            while True:
                # Skipping a target completes it at once, which can free more.
                ready = list(sorter.get_ready()) if failure is None else []
                while ready:
                    name = ready.pop(0)
                    target = by_name[name]
                    status = self.check_target_status(target, remade)
                    statuses[name] = status
                    if status.will_run:
                        running[pool.submit(self._run_target, target)] = name
                    else:
                        self._log_skip(status)
                        sorter.done(name)
                        ready.extend(sorter.get_ready())

                if not running:
                    break

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    name = running.pop(future)
                    try:
                        future.result()
                    except RecipeFailure as e:
                        if failure is None:
                            failure = e
                        continue
                    remade.add(name)
                    sorter.done(name)
        except KeyboardInterrupt:
            for future in running:
                future.cancel()
            raise

        if failure is not None:
            raise failure

    def _log_skip(self, status: TargetStatus) -> None:
        if status.reason == "passthrough":
            self.logger.trace(f"Passing '{escape(status.target_name)}' through to recipes")
        else:
            self.logger.debug(f"Skipping '{escape(status.target_name)}': up to date")

    def _run_target(self, target: Target) -> None:
        """Expand and run each recipe line in order.

        Raises:
            RecipeFailure: On the first failing line without the ignore marker
        """
        self.logger.debug(f"Running target '{escape(target.name)}'")
        automatic = automatic_variables(target.name, target.deps)
        for line in target.recipe:
            self._run_line(target, line, automatic)

    def _run_line(self, target: Target, line: RecipeLine, automatic: dict[str, str]) -> None:
        command = expand(line.command, self.variables, automatic)

        if self.dry_run and not line.always:
            self._echo(command)
            return

        if not (line.silent or self.silent):
            self._echo(command)

        exit_code = self._spawn(command)
        if exit_code == 0:
            return

        if line.ignore_errors:
            self.logger.warn(
                f"[yellow]runfile: {escape(f'[{target.name}]')} Error {exit_code} (ignored)[/yellow]"
            )
            return

        raise RecipeFailure(target.name, command, exit_code)

    def _echo(self, command: str) -> None:
        self.logger.info(command, markup=False, highlight=False, soft_wrap=True)

    def _spawn(self, command: str) -> int:
        env = {**self._environ, **self.variables.exported()}
        try:
            return self._runner.run(
                self.shell.argv(command),
                cwd=self.graph.project_root,
                env=env,
            )
        except OSError as e:
            self.logger.error(f"[red]Cannot start shell '{escape(self.shell.program)}': {escape(str(e))}[/red]")
            return SPAWN_FAILURE_EXIT_CODE
