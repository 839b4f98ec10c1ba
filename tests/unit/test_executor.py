"""Tests for executor module."""

import threading
import time
import unittest
from pathlib import Path
from unittest.mock import patch

from helpers.logging import RecordingLogger
from helpers.process_runner import MockProcessRunner, make_mock_process_runner_factory
from runfile.executor import SPAWN_FAILURE_EXIT_CODE, Executor, RecipeFailure
from runfile.graph import UnknownTarget
from runfile.logging import LogLevel
from runfile.parser import Shell, Target, TargetGraph
from runfile.variables import UndefinedVariable, VariableSource, VariableStore


class FakeFileSystem:
    """Files with fixed modification times."""

    def __init__(self, mtimes=None):
        self.mtimes = dict(mtimes or {})

    def exists(self, name):
        return name in self.mtimes

    def mtime(self, name):
        return self.mtimes.get(name)


def make_graph(*targets, default=None):
    return TargetGraph(
        targets={target.name: target for target in targets},
        project_root=Path("/project"),
        default_target=default or (targets[0].name if targets else None),
    )


class ExecutorTestCase(unittest.TestCase):
    def setUp(self):
        self.runner = MockProcessRunner()
        self.logger = RecordingLogger()
        self.variables = VariableStore()
        self.fs = FakeFileSystem()

    def make_executor(self, graph, **kwargs):
        return Executor(
            graph,
            self.variables,
            self.logger,
            make_mock_process_runner_factory(self.runner),
            fs=self.fs,
            environ={},
            **kwargs,
        )


class TestSequentialExecution(ExecutorTestCase):
    def test_prerequisites_run_first(self):
        """Test prerequisites run before the target."""
        graph = make_graph(
            Target(name="build", phony=True, deps=["clean"], recipe=["echo build"]),
            Target(name="clean", phony=True, recipe=["echo clean"]),
        )
        self.make_executor(graph).execute(["build"])
        self.assertEqual(self.runner.commands, ["echo clean", "echo build"])

    def test_goals_in_command_line_order(self):
        """Test goals run in command-line order."""
        graph = make_graph(
            Target(name="build", phony=True, recipe=["echo build"]),
            Target(name="clean", phony=True, recipe=["echo clean"]),
        )
        self.make_executor(graph).execute(["clean", "build"])
        self.assertEqual(self.runner.commands, ["echo clean", "echo build"])

    def test_default_target(self):
        """Test the default target runs when no goal is given."""
        graph = make_graph(
            Target(name="help", phony=True, recipe=["echo help"]),
            Target(name="build", phony=True, recipe=["echo build"]),
        )
        self.make_executor(graph).execute([])
        self.assertEqual(self.runner.commands, ["echo help"])

    def test_uses_shell_and_project_root(self):
        """Test lines run through the shell in the project root."""
        graph = make_graph(Target(name="a", phony=True, recipe=["echo a"]))
        self.make_executor(graph, shell=Shell("bash", ["-eu", "-c"])).execute(["a"])
        cmd, cwd, _ = self.runner.calls[0]
        self.assertEqual(cmd, ["bash", "-eu", "-c", "echo a"])
        self.assertEqual(cwd, Path("/project"))

    def test_expands_variables_and_automatic_variables(self):
        """Test expansion of variables and automatic variables."""
        self.variables.set("CC", "gcc")
        graph = make_graph(
            Target(name="app", deps=["main.c", "util.c"], recipe=["$(CC) -o $@ $^ # $<"]),
        )
        self.fs.mtimes.update({"main.c": 1.0, "util.c": 1.0})
        self.make_executor(graph).execute(["app"])
        self.assertEqual(self.runner.commands, ["gcc -o app main.c util.c # main.c"])

    def test_failure_aborts_run(self):
        """Test a failing line stops the run."""
        self.runner.exit_codes = {"false": 2}
        graph = make_graph(
            Target(name="all", phony=True, deps=["a", "b"]),
            Target(name="a", phony=True, recipe=["false", "echo after"]),
            Target(name="b", phony=True, recipe=["echo b"]),
        )
        with self.assertRaises(RecipeFailure) as cm:
            self.make_executor(graph).execute(["all"])

        self.assertEqual(cm.exception.exit_code, 2)
        self.assertEqual(cm.exception.target_name, "a")
        self.assertEqual(cm.exception.command, "false")
        self.assertEqual(self.runner.commands, ["false"])

    def test_ignored_failure_continues(self):
        """Test a failing '-' line is reported and the run continues."""
        self.runner.exit_codes = {"rm -f missing_file": 1}
        graph = make_graph(
            Target(name="clean", phony=True, recipe=["-rm -f missing_file", "echo done"]),
        )
        self.make_executor(graph).execute(["clean"])

        self.assertEqual(self.runner.commands, ["rm -f missing_file", "echo done"])
        warnings = self.logger.at(LogLevel.WARN)
        self.assertEqual(len(warnings), 1)
        self.assertIn("Error 1 (ignored)", warnings[0])

    def test_echo_respects_silent_marker(self):
        """Test '@' lines are not echoed."""
        graph = make_graph(Target(name="a", phony=True, recipe=["@echo quiet", "echo loud"]))
        self.make_executor(graph).execute(["a"])
        self.assertEqual(self.logger.at(LogLevel.INFO), ["echo loud"])

    def test_silent_mode_echoes_nothing(self):
        """Test silent mode suppresses every echo."""
        graph = make_graph(Target(name="a", phony=True, recipe=["echo loud"]))
        self.make_executor(graph, silent=True).execute(["a"])
        self.assertEqual(self.logger.at(LogLevel.INFO), [])
        self.assertEqual(self.runner.commands, ["echo loud"])

    def test_dry_run_echoes_without_running(self):
        """Test dry run echoes lines and only runs '+' lines."""
        graph = make_graph(
            Target(name="a", phony=True, recipe=["@echo one", "+echo always", "echo two"]),
        )
        self.make_executor(graph, dry_run=True).execute(["a"])
        self.assertEqual(self.runner.commands, ["echo always"])
        self.assertEqual(self.logger.at(LogLevel.INFO), ["echo one", "echo always", "echo two"])

    def test_exported_variables_reach_environment(self):
        """Test exported variables are in the subprocess environment."""
        self.variables.set("DEFAULTED", "1", VariableSource.DEFAULT)
        self.variables.set("FROM_CLI", "2", VariableSource.INVOCATION)
        graph = make_graph(Target(name="a", phony=True, recipe=["env"]))
        Executor(
            graph,
            self.variables,
            self.logger,
            make_mock_process_runner_factory(self.runner),
            fs=self.fs,
            environ={"PATH": "/bin"},
        ).execute(["a"])

        _, _, env = self.runner.calls[0]
        self.assertEqual(env["PATH"], "/bin")
        self.assertEqual(env["FROM_CLI"], "2")
        self.assertNotIn("DEFAULTED", env)

    def test_spawn_failure_reports_127(self):
        """Test a shell that cannot start fails with 127."""
        class BrokenRunner(MockProcessRunner):
            def run(self, cmd, cwd=None, env=None):
                raise FileNotFoundError(cmd[0])

        self.runner = BrokenRunner()
        graph = make_graph(Target(name="a", phony=True, recipe=["echo a"]))
        with self.assertRaises(RecipeFailure) as cm:
            self.make_executor(graph, shell=Shell("/no/such/shell", ["-c"])).execute(["a"])
        self.assertEqual(cm.exception.exit_code, SPAWN_FAILURE_EXIT_CODE)

    def test_interrupt_terminates_running_processes(self):
        """Test interrupt terminates the running process."""
        class InterruptedRunner(MockProcessRunner):
            def run(self, cmd, cwd=None, env=None):
                raise KeyboardInterrupt

        self.runner = InterruptedRunner()
        graph = make_graph(Target(name="a", phony=True, recipe=["sleep 100"]))
        with self.assertRaises(KeyboardInterrupt):
            self.make_executor(graph).execute(["a"])
        self.assertTrue(self.runner.terminated)


class TestPassthrough(ExecutorTestCase):
    def test_unknown_goals_forwarded(self):
        """Test unknown goals reach recipes through PASSTHROUGH."""
        graph = make_graph(
            Target(name="test", phony=True, recipe=["pytest $(PASSTHROUGH)"]),
        )
        statuses = self.make_executor(graph).execute(["test", "-k", "test canvas"])

        self.assertEqual(self.runner.commands, ["pytest -k 'test canvas'"])
        self.assertEqual(statuses["-k"].reason, "passthrough")
        self.assertEqual(self.variables.get("GOALS"), "test -k 'test canvas'")

    def test_only_unknown_goals_is_not_an_error(self):
        """Test a run with only unknown goals does nothing."""
        graph = make_graph(Target(name="test", phony=True, recipe=["pytest"]))
        self.make_executor(graph).execute(["nothing-here"])
        self.assertEqual(self.runner.commands, [])

    def test_store_frozen_after_start(self):
        """Test variables cannot change once execution starts."""
        graph = make_graph(Target(name="a", phony=True))
        self.make_executor(graph).execute(["a"])
        self.assertTrue(self.variables.frozen)
        with self.assertRaises(RuntimeError):
            self.variables.set("X", "1")


class TestPlanErrors(ExecutorTestCase):
    def test_required_variable_checked_before_running(self):
        """Test unset required variable fails before any line runs."""
        self.variables.require("VERSION")
        graph = make_graph(
            Target(name="release", phony=True, deps=["build"], recipe=["bump $(VERSION)"]),
            Target(name="build", phony=True, recipe=["echo build"]),
        )
        with self.assertRaises(UndefinedVariable):
            self.make_executor(graph).execute(["release"])
        self.assertEqual(self.runner.commands, [])

    def test_required_variable_not_in_plan_is_fine(self):
        """Test required variables outside the plan are not checked."""
        self.variables.require("VERSION")
        graph = make_graph(
            Target(name="build", phony=True, recipe=["echo build"]),
            Target(name="release", phony=True, recipe=["bump $(VERSION)"]),
        )
        self.make_executor(graph).execute(["build"])
        self.assertEqual(self.runner.commands, ["echo build"])

    def test_missing_prerequisite_checked_before_running(self):
        """Test missing prerequisite fails before any line runs."""
        graph = make_graph(
            Target(name="all", phony=True, deps=["ok", "app"]),
            Target(name="ok", phony=True, recipe=["echo ok"]),
            Target(name="app", deps=["app.c"], recipe=["cc app.c"]),
        )
        with self.assertRaises(UnknownTarget):
            self.make_executor(graph).execute(["all"])
        self.assertEqual(self.runner.commands, [])


class TestStaleness(ExecutorTestCase):
    def test_missing_target_runs(self):
        """Test a missing file target is built."""
        self.fs.mtimes["app.c"] = 10.0
        graph = make_graph(Target(name="app", deps=["app.c"], recipe=["cc"]))
        statuses = self.make_executor(graph).execute(["app"])
        self.assertEqual(statuses["app"].reason, "missing")
        self.assertEqual(self.runner.commands, ["cc"])

    def test_up_to_date_target_skipped(self):
        """Test an up-to-date file target is skipped."""
        self.fs.mtimes.update({"app.c": 10.0, "app": 20.0})
        graph = make_graph(Target(name="app", deps=["app.c"], recipe=["cc"]))
        statuses = self.make_executor(graph).execute(["app"])

        self.assertFalse(statuses["app"].will_run)
        self.assertEqual(self.runner.commands, [])
        self.assertIn("'app' is up to date.", self.logger.at(LogLevel.INFO))

    def test_newer_prerequisite_runs(self):
        """Test a newer prerequisite triggers a rebuild."""
        self.fs.mtimes.update({"app.c": 30.0, "app": 20.0})
        graph = make_graph(Target(name="app", deps=["app.c"], recipe=["cc"]))
        statuses = self.make_executor(graph).execute(["app"])
        self.assertEqual(statuses["app"].reason, "prerequisite_newer")
        self.assertEqual(statuses["app"].newer_prerequisites, ["app.c"])

    def test_remade_prerequisite_forces_rebuild(self):
        """Test a rebuilt prerequisite forces its dependents to rebuild."""
        self.fs.mtimes.update({"app": 20.0, "app.o": 15.0, "app.c": 30.0})
        graph = make_graph(
            Target(name="app", deps=["app.o"], recipe=["link"]),
            Target(name="app.o", deps=["app.c"], recipe=["compile"]),
        )
        statuses = self.make_executor(graph).execute(["app"])
        self.assertEqual(statuses["app"].reason, "prerequisite_remade")
        self.assertEqual(self.runner.commands, ["compile", "link"])

    def test_phony_prerequisite_does_not_force_rebuild(self):
        """Test phony prerequisites are ignored for staleness."""
        self.fs.mtimes["app"] = 20.0
        graph = make_graph(
            Target(name="app", deps=["prepare"], recipe=["link"]),
            Target(name="prepare", phony=True, recipe=["echo prepare"]),
        )
        statuses = self.make_executor(graph).execute(["app"])
        self.assertEqual(statuses["app"].reason, "up_to_date")
        self.assertEqual(self.runner.commands, ["echo prepare"])

    def test_phony_target_always_runs_even_if_file_exists(self):
        """Test phony target runs even when a same-named file exists."""
        self.fs.mtimes["clean"] = 20.0
        graph = make_graph(Target(name="clean", phony=True, recipe=["rm -rf build"]))
        statuses = self.make_executor(graph).execute(["clean"])
        self.assertEqual(statuses["clean"].reason, "phony")


class TestParallelExecution(ExecutorTestCase):
    def test_runs_everything_respecting_prerequisites(self):
        """Test parallel run honours prerequisite order."""
        graph = make_graph(
            Target(name="all", phony=True, deps=["a", "b", "c"], recipe=["echo all"]),
            Target(name="a", phony=True, deps=["base"], recipe=["echo a"]),
            Target(name="b", phony=True, deps=["base"], recipe=["echo b"]),
            Target(name="c", phony=True, recipe=["echo c"]),
            Target(name="base", phony=True, recipe=["echo base"]),
        )
        self.make_executor(graph, jobs=4).execute(["all"])

        commands = self.runner.commands
        self.assertEqual(sorted(commands), ["echo a", "echo all", "echo b", "echo base", "echo c"])
        self.assertLess(commands.index("echo base"), commands.index("echo a"))
        self.assertLess(commands.index("echo base"), commands.index("echo b"))
        self.assertEqual(commands[-1], "echo all")

    def test_goal_segments_do_not_overlap(self):
        """Test parallel run keeps goals in sequence."""
        graph = make_graph(
            Target(name="clean", phony=True, recipe=["echo clean"]),
            Target(name="build", phony=True, recipe=["echo build"]),
        )
        self.make_executor(graph, jobs=4).execute(["clean", "build"])
        self.assertEqual(self.runner.commands, ["echo clean", "echo build"])

    def test_failure_stops_dependents(self):
        """Test parallel failure prevents dependents from starting."""
        self.runner.exit_codes = {"false": 3}
        graph = make_graph(
            Target(name="all", phony=True, deps=["bad"], recipe=["echo all"]),
            Target(name="bad", phony=True, recipe=["false"]),
        )
        with self.assertRaises(RecipeFailure) as cm:
            self.make_executor(graph, jobs=2).execute(["all"])
        self.assertEqual(cm.exception.exit_code, 3)
        self.assertNotIn("echo all", self.runner.commands)

    def test_interrupt_terminates_running_processes(self):
        """Test Ctrl-C kills running recipe lines before waiting on the pool."""

        class BlockingRunner(MockProcessRunner):
            def __init__(self):
                super().__init__()
                self.started = threading.Barrier(3)
                self.killed = threading.Event()

            def run(self, cmd, cwd=None, env=None):
                self.calls.append((cmd, cwd, env))
                self.started.wait(timeout=5)
                return 0 if self.killed.wait(timeout=30) else 1

            def terminate(self):
                super().terminate()
                self.killed.set()

        self.runner = BlockingRunner()
        graph = make_graph(
            Target(name="all", phony=True, deps=["a", "b"]),
            Target(name="a", phony=True, recipe=["sleep 30"]),
            Target(name="b", phony=True, recipe=["sleep 30"]),
        )
        executor = self.make_executor(graph, jobs=2)

        def interrupted_wait(futures, return_when):
            self.runner.started.wait(timeout=5)
            raise KeyboardInterrupt

        start = time.monotonic()
        with patch("runfile.executor.wait", side_effect=interrupted_wait):
            with self.assertRaises(KeyboardInterrupt):
                executor.execute(["all"])

        self.assertTrue(self.runner.terminated)
        self.assertLess(time.monotonic() - start, 10)
        self.assertEqual(sorted(self.runner.commands), ["sleep 30", "sleep 30"])


if __name__ == "__main__":
    unittest.main()
