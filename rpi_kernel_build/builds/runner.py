"""Tool runner for external build programs.

Every stage that shells out (tar, patch, make) goes through run_tool so
that command logging and exit status handling are uniform. Standard output
and error are inherited so build logs stream live to the operator.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import IO, Protocol

logger = logging.getLogger(__name__)


class ToolExecutionError(Exception):
    """Raised when an external tool fails to start or exits non-zero."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "tool_failed",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


class ToolRunner(Protocol):
    """Callable that runs a command and raises ToolExecutionError on failure."""

    def __call__(
        self,
        cmd: Sequence[str],
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        stdin: IO[bytes] | None = None,
    ) -> None: ...


def run_tool(
    cmd: Sequence[str],
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    stdin: IO[bytes] | None = None,
) -> None:
    """Run an external program and check its exit status.

    There is no timeout: a hung tool hangs the caller.

    Args:
        cmd: Command as list of strings.
        cwd: Working directory (inherits the caller's if None).
        env: Full environment for the child (inherits if None).
        stdin: Optional open file used as standard input.

    Raises:
        ToolExecutionError: If the tool cannot be started or exits non-zero.
    """
    cmd_str = shlex.join(cmd)
    logger.info("Executing: %s", cmd_str)
    if cwd is not None:
        logger.debug("Working directory: %s", cwd)

    try:
        result = subprocess.run(
            list(cmd),
            cwd=cwd,
            env=dict(env) if env is not None else None,
            stdin=stdin,
            check=False,
        )
    except OSError as e:
        raise ToolExecutionError(
            f"Failed to execute {cmd_str}: {e}",
            code="execution_error",
        ) from e

    if result.returncode != 0:
        raise ToolExecutionError(
            f"{cmd_str}: exit status {result.returncode}",
            exit_code=result.returncode,
        )


__all__ = ["ToolExecutionError", "ToolRunner", "run_tool"]
