"""Integration tests for variable precedence and passthrough arguments."""

import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from typer.testing import CliRunner

from runfile.cli import app


class TestVariablePrecedence(unittest.TestCase):
    def setUp(self):
        self.runner = CliRunner()
        self._tmpdir = TemporaryDirectory()
        self.project_root = Path(self._tmpdir.name)
        (self.project_root / "Runfile.yaml").write_text("""
variables:
  GREETING: hello
  TARGET: world
  MESSAGE: $(GREETING) $(TARGET)
targets:
  greet:
    phony: true
    recipe:
      - echo "$(MESSAGE)" > message.txt
      - echo "$$GREETING" > env.txt
""")

    def tearDown(self):
        self._tmpdir.cleanup()

    def run_greet(self, *args, env=None):
        result = self.runner.invoke(
            app,
            ["-C", str(self.project_root), "greet", *args],
            env={"NO_COLOR": "1", **(env or {})},
        )
        self.assertEqual(result.exit_code, 0, result.output)
        return (
            (self.project_root / "message.txt").read_text().strip(),
            (self.project_root / "env.txt").read_text().strip(),
        )

    def test_default(self):
        """Test the declared default is used."""
        message, _ = self.run_greet()
        self.assertEqual(message, "hello world")

    def test_environment_overrides_default(self):
        """Test environment overrides the default."""
        message, env_value = self.run_greet(env={"GREETING": "hi"})
        self.assertEqual(message, "hi world")
        self.assertEqual(env_value, "hi")

    def test_assignment_overrides_environment(self):
        """Test a command-line assignment overrides the environment."""
        message, env_value = self.run_greet("GREETING=howdy", env={"GREETING": "hi"})
        self.assertEqual(message, "howdy world")
        # Command-line values are exported to recipes
        self.assertEqual(env_value, "howdy")

    def test_assignment_position_does_not_matter(self):
        """Test assignments apply wherever they appear."""
        result = self.runner.invoke(
            app,
            ["-C", str(self.project_root), "TARGET=there", "greet"],
            env={"NO_COLOR": "1"},
        )
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual((self.project_root / "message.txt").read_text().strip(), "hello there")


class TestPassthrough(unittest.TestCase):
    def setUp(self):
        self.runner = CliRunner()
        self._tmpdir = TemporaryDirectory()
        self.project_root = Path(self._tmpdir.name)
        (self.project_root / "Runfile.yaml").write_text("""
targets:
  unit-tests:
    phony: true
    recipe:
      - printf '%s\\n' $(PASSTHROUGH) > args.txt
      - echo "$(GOALS)" > goals.txt
""")

    def tearDown(self):
        self._tmpdir.cleanup()

    def invoke(self, *args):
        return self.runner.invoke(
            app, ["-C", str(self.project_root), *args], env={"NO_COLOR": "1"}
        )

    def test_extra_tokens_after_double_dash(self):
        """Test tokens after -- reach PASSTHROUGH."""
        result = self.invoke("unit-tests", "--", "-k", "test canvas")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(
            (self.project_root / "args.txt").read_text().splitlines(),
            ["-k", "test canvas"],
        )
        self.assertEqual(
            (self.project_root / "goals.txt").read_text().strip(),
            "unit-tests -k 'test canvas'",
        )

    def test_extra_names_are_not_errors(self):
        """Test unknown names are passed through without error."""
        result = self.invoke("unit-tests", "test_canvas.py")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(
            (self.project_root / "args.txt").read_text().splitlines(),
            ["test_canvas.py"],
        )

    def test_no_extra_tokens(self):
        """Test PASSTHROUGH is empty without extra tokens."""
        result = self.invoke("unit-tests")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual((self.project_root / "args.txt").read_text(), "\n")


if __name__ == "__main__":
    unittest.main()
