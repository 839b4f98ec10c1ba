"""Initialize a new runfile."""

from __future__ import annotations

from pathlib import Path

import typer

from runfile.logging import Logger

TEMPLATE = """# Runfile
# Targets run in dependency order: `run build`, `run clean build`, `run VAR=value test`.

# Target run when none is named (defaults to the first target):
# default: build

# variables:
#   PYTHON: python
#   PACKAGE: { required: true }

targets:
  # clean:
  #   desc: Remove build output
  #   phony: true
  #   recipe:
  #     - "-rm -rf build"

  # build:
  #   desc: Build the package
  #   phony: true
  #   deps: [clean]
  #   recipe:
  #     - "@echo Building $(PACKAGE)"
  #     - $(PYTHON) -m build

  # dist/app.tar.gz:
  #   desc: Rebuilt only when a source is newer
  #   deps: [setup.py]
  #   recipe:
  #     - tar czf $@ $^

# Uncomment and modify the examples above to define your targets
"""


def init_runfile(logger: Logger, directory: Path):
    """
    Create a Runfile.yaml with commented examples.
    """
    runfile_path = directory / "Runfile.yaml"
    if runfile_path.exists():
        logger.error(f"[red]{runfile_path.name} already exists[/red]")
        raise typer.Exit(1)

    runfile_path.write_text(TEMPLATE, encoding="utf-8")
    logger.info(f"[green]Created {runfile_path}[/green]")
    logger.info("Edit the file to define your targets")
