"""Pytest fixtures for runfile tests."""

from pathlib import Path
from unittest.mock import patch

import pytest


@pytest.fixture(autouse=True)
def isolated_config(tmp_path_factory):
    """Keep the host's user and machine config files out of every test.

    Project config files (.runfile-config.yml) are still discovered, so
    tests can create them next to their runfile.
    """
    config_dir = tmp_path_factory.mktemp("config")
    with patch(
        "runfile.config.get_user_config_path",
        return_value=Path(config_dir) / "user" / "config.yml",
    ), patch(
        "runfile.config.get_machine_config_path",
        return_value=Path(config_dir) / "machine" / "config.yml",
    ):
        yield config_dir
