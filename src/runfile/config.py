"""
Configuration files for machine, user and project defaults.

Each file may set the shell recipes run in, the default number of parallel
jobs and the default output mode. The project file wins over the user file,
which wins over the machine file, key by key.
"""

from __future__ import annotations

import platform
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import platformdirs
import yaml

from runfile.parser import RunfileError, Shell, parse_shell
from runfile.process_runner import OutputMode

__all__ = [
    "ConfigError",
    "Settings",
    "find_project_config",
    "get_machine_config_path",
    "get_user_config_path",
    "load_settings",
    "parse_config_file",
    "platform_default_shell",
]

PROJECT_CONFIG_NAME = ".runfile-config.yml"

_CONFIG_KEYS = {"shell", "jobs", "output"}


class ConfigError(Exception):
    """Raised when a configuration file is invalid."""

    pass


@dataclass
class Settings:
    """Defaults gathered from configuration files. None means "not set"."""

    shell: Optional[Shell] = None
    jobs: Optional[int] = None
    output: Optional[OutputMode] = None
    source: str = ""

    def merged_over(self, lower: "Settings") -> "Settings":
        """Fill every unset field of self from lower."""
        return Settings(
            shell=self.shell if self.shell is not None else lower.shell,
            jobs=self.jobs if self.jobs is not None else lower.jobs,
            output=self.output if self.output is not None else lower.output,
            source=self.source or lower.source,
        )


def get_machine_config_path() -> Path:
    """
    Path of the machine-level (system-wide) configuration file.

    Uses platformdirs' site config directory for 'runfile'. The file may not
    exist.
    """
    config_dir = Path(platformdirs.site_config_dir("runfile"))
    return config_dir / "config.yml"


def get_user_config_path() -> Path:
    """
    Path of the user-level configuration file.

    Uses platformdirs' user config directory for 'runfile'. The file may not
    exist.
    """
    config_dir: Path = Path(platformdirs.user_config_dir("runfile"))
    return config_dir / "config.yml"


def find_project_config(start_dir: Path) -> Optional[Path]:
    """
    Walk up the directory tree from start_dir to find .runfile-config.yml.

    Returns:
        Path to the nearest project config file, or None
    """
    try:
        current = start_dir.resolve()
    except (OSError, RuntimeError):
        # Invalid path or symlink loop
        return None

    # Safety limit against pathological trees
    max_depth = 100
    for _ in range(max_depth):
        config_path = current / PROJECT_CONFIG_NAME
        try:
            if config_path.is_file():
                return config_path
        except OSError:
            # Unreadable directory, keep walking up
            pass

        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def parse_config_file(path: Path) -> Optional[Settings]:
    """
    Parse one configuration file.

    Empty files are valid and yield None, as does a missing file.

    Example:
        ```yaml
        shell:
          program: bash
          args: [-c]
        jobs: 4
        output: out
        ```

    Raises:
        ConfigError: If the file is unreadable, malformed or has invalid fields.
            The message always names the file.
    """
    if not path.exists():
        return None

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Error reading config file '{path}': {e}") from e

    if not content.strip():
        return None

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML in config file '{path}': {e}") from e

    if data is None:
        return None

    if not isinstance(data, dict):
        raise ConfigError(f"Error in config file '{path}': top level must be a mapping")

    unknown = [str(key) for key in data if key not in _CONFIG_KEYS]
    if unknown:
        raise ConfigError(
            f"Error in config file '{path}': unknown key(s): {', '.join(unknown)}"
        )

    settings = Settings(source=str(path))

    if "shell" in data:
        try:
            settings.shell = parse_shell(data["shell"], path)
        except RunfileError as e:
            raise ConfigError(str(e)) from e

    if "jobs" in data:
        jobs = data["jobs"]
        # bool is an int subclass
        if isinstance(jobs, bool) or not isinstance(jobs, int) or jobs < 1:
            raise ConfigError(
                f"Error in config file '{path}': Field 'jobs' must be a positive integer"
            )
        settings.jobs = jobs

    if "output" in data:
        try:
            settings.output = OutputMode(str(data["output"]).lower())
        except ValueError:
            valid = ", ".join(mode.value for mode in OutputMode)
            raise ConfigError(
                f"Error in config file '{path}': Field 'output' must be one of: {valid}"
            ) from None

    return settings


def platform_default_shell() -> Shell:
    if platform.system() == "Windows":
        return Shell(program="cmd", args=["/c"])
    return Shell(program="/bin/sh", args=["-c"])


def load_settings(project_dir: Path) -> Settings:
    """
    Merge project, user and machine configuration, highest first.

    Fields no file sets stay None, except the shell, which falls back to the
    platform default.
    """
    settings = Settings()
    candidates = [
        find_project_config(project_dir),
        get_user_config_path(),
        get_machine_config_path(),
    ]
    for path in candidates:
        if path is None:
            continue
        parsed = parse_config_file(path)
        if parsed is not None:
            settings = settings.merged_over(parsed)

    if settings.shell is None:
        settings.shell = platform_default_shell()

    return settings
