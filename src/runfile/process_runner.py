"""Process execution abstraction layer.

Every recipe line goes through a ProcessRunner, which keeps the executor free
of subprocess plumbing and lets tests substitute a recorder. Runners track
the processes they started so an interrupt can stop all of them.
"""

from __future__ import annotations

import subprocess
import sys
import threading
from abc import ABC, abstractmethod
from enum import Enum
from subprocess import Popen
from threading import Thread
from typing import Any, Mapping

from runfile.logging import Logger

__all__ = [
    "OutputMode",
    "ProcessRunner",
    "PassthroughProcessRunner",
    "SilentProcessRunner",
    "StdoutOnlyProcessRunner",
    "StderrOnlyProcessRunner",
    "make_process_runner",
    "stream_output",
]

_JOIN_TIMEOUT_SECS = 1.0
_SIGNAL_EXIT_BASE = 128


class OutputMode(Enum):
    """Which recipe output streams reach the terminal."""

    ALL = "all"
    NONE = "none"
    OUT = "out"
    ERR = "err"


def stream_output(pipe: Any, target: Any) -> None:
    """Copy lines from pipe to target until the pipe closes.

    I/O errors end the copy quietly: they happen when the process is killed
    or the target stream is closed under us.
    """
    if pipe:
        try:
            for line in pipe:
                target.write(line)
                target.flush()
        except (OSError, ValueError):
            pass


class ProcessRunner(ABC):
    """Runs one command to completion and reports its exit code."""

    def __init__(self, logger: Logger) -> None:
        self._logger = logger
        self._active: set[Popen] = set()
        self._lock = threading.Lock()

    @abstractmethod
    def _popen_kwargs(self) -> dict[str, Any]:
        """Stream redirections for Popen."""
        ...

    def _streams(self, process: Popen) -> list[tuple[Any, Any]]:
        """(pipe, destination) pairs to copy while the process runs."""
        return []

    def run(
        self,
        args: list[str],
        cwd: Any = None,
        env: Mapping[str, str] | None = None,
    ) -> int:
        """Run args and block until it exits.

        Args:
            args: Program and arguments
            cwd: Working directory for the process
            env: Complete environment for the process

        Returns:
            The process exit code; a process killed by signal N reports
            128 + N, as a POSIX shell does

        If the wait is interrupted (KeyboardInterrupt or any other exception),
        the process is killed before the exception propagates.
        """
        process = Popen(args, cwd=cwd, env=dict(env) if env is not None else None, **self._popen_kwargs())
        with self._lock:
            self._active.add(process)

        threads = [
            Thread(target=stream_output, args=(pipe, destination), name="output-streamer", daemon=True)
            for pipe, destination in self._streams(process)
        ]
        for thread in threads:
            thread.start()

        try:
            return_code = process.wait()
        except BaseException:
            process.kill()
            process.wait()
            raise
        finally:
            with self._lock:
                self._active.discard(process)
            for thread in threads:
                thread.join(timeout=_JOIN_TIMEOUT_SECS)
                if thread.is_alive():
                    self._logger.warn(
                        f"Output thread did not complete within {_JOIN_TIMEOUT_SECS} seconds"
                    )

        if return_code < 0:
            return _SIGNAL_EXIT_BASE - return_code
        return return_code

    def terminate(self) -> None:
        """Kill every process this runner currently has running."""
        with self._lock:
            active = list(self._active)
        for process in active:
            try:
                process.kill()
            except OSError:
                # Already gone
                pass


class PassthroughProcessRunner(ProcessRunner):
    """Child inherits the terminal's stdout and stderr."""

    def _popen_kwargs(self) -> dict[str, Any]:
        return {}


class SilentProcessRunner(ProcessRunner):
    """Discards all child output."""

    def _popen_kwargs(self) -> dict[str, Any]:
        return {"stdout": subprocess.DEVNULL, "stderr": subprocess.DEVNULL}


class StdoutOnlyProcessRunner(ProcessRunner):
    """Streams child stdout line by line, discards stderr."""

    def _popen_kwargs(self) -> dict[str, Any]:
        return {
            "stdout": subprocess.PIPE,
            "stderr": subprocess.DEVNULL,
            "text": True,
            "bufsize": 1,
        }

    def _streams(self, process: Popen) -> list[tuple[Any, Any]]:
        return [(process.stdout, sys.stdout)]


class StderrOnlyProcessRunner(ProcessRunner):
    """Streams child stderr line by line, discards stdout."""

    def _popen_kwargs(self) -> dict[str, Any]:
        return {
            "stdout": subprocess.DEVNULL,
            "stderr": subprocess.PIPE,
            "text": True,
            "bufsize": 1,
        }

    def _streams(self, process: Popen) -> list[tuple[Any, Any]]:
        return [(process.stderr, sys.stderr)]


def make_process_runner(output_mode: OutputMode, logger: Logger) -> ProcessRunner:
    """Create the ProcessRunner for an output mode.

    Raises:
        ValueError: If output_mode is not an OutputMode
    """
    match output_mode:
        case OutputMode.ALL:
            return PassthroughProcessRunner(logger)
        case OutputMode.NONE:
            return SilentProcessRunner(logger)
        case OutputMode.OUT:
            return StdoutOnlyProcessRunner(logger)
        case OutputMode.ERR:
            return StderrOnlyProcessRunner(logger)
        case _:
            raise ValueError(f"Invalid output mode: {output_mode}")
