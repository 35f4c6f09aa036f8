"""Kernel compile stage.

This module handles:
- Composing the make invocations (defconfig, build, modules_install)
- Running them in order with the shared toolchain environment
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from rpi_kernel_build.builds.runner import ToolExecutionError, ToolRunner, run_tool
from rpi_kernel_build.types import BoardConfig

logger = logging.getLogger(__name__)

BUILD_TARGETS = ("Image.gz", "dtbs", "modules")


class CompileError(Exception):
    """Raised when a make invocation fails."""

    def __init__(
        self,
        target: str,
        message: str,
        exit_code: int | None = None,
        code: str = "compile_error",
    ) -> None:
        super().__init__(f"make {target}: {message}")
        self.target = target
        self.exit_code = exit_code
        self.code = code


def default_jobs() -> int:
    """Return the number of processing units on the build host."""
    return os.cpu_count() or 1


def compose_defconfig_command(board: BoardConfig) -> list[str]:
    """Compose the command that materializes the board defconfig."""
    return ["make", f"ARCH={board.arch}", board.defconfig_name]


def compose_build_command(jobs: int) -> list[str]:
    """Compose the command building the kernel image, dtbs and modules."""
    return ["make", *BUILD_TARGETS, f"-j{jobs}"]


def compose_modules_install_command(modules_dir: Path, jobs: int) -> list[str]:
    """Compose the modules_install command staging modules into modules_dir."""
    return ["make", f"INSTALL_MOD_PATH={modules_dir}", "modules_install", f"-j{jobs}"]


def compile_kernel(
    source_dir: Path,
    board: BoardConfig,
    env: Mapping[str, str],
    modules_dir: Path,
    jobs: int | None = None,
    runner: ToolRunner = run_tool,
) -> None:
    """Configure and build the kernel, then install its modules.

    Args:
        source_dir: Top directory of the patched source tree.
        board: Board configuration naming the defconfig.
        env: Environment passed unchanged to every make invocation.
        modules_dir: INSTALL_MOD_PATH for modules_install.
        jobs: Parallel make jobs (None = CPU count).
        runner: Tool runner used to invoke make.

    Raises:
        CompileError: If any make invocation fails.
    """
    if jobs is None:
        jobs = default_jobs()

    steps = [
        (board.defconfig_name, compose_defconfig_command(board)),
        (" ".join(BUILD_TARGETS), compose_build_command(jobs)),
        ("modules_install", compose_modules_install_command(modules_dir, jobs)),
    ]

    for target, cmd in steps:
        logger.info("Running make %s", target)
        try:
            runner(cmd, cwd=source_dir, env=env)
        except ToolExecutionError as e:
            raise CompileError(target, str(e), exit_code=e.exit_code) from e


__all__ = [
    "BUILD_TARGETS",
    "CompileError",
    "compile_kernel",
    "compose_build_command",
    "compose_defconfig_command",
    "compose_modules_install_command",
    "default_jobs",
]
