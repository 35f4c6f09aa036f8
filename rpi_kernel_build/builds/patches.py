"""Local patch discovery and application.

Patches live next to the defconfig in the invocation directory and are
applied in file name order, so numbered patches (0001-..., 0002-...) stack
correctly on every run.
"""

from __future__ import annotations

import logging
from pathlib import Path

from rpi_kernel_build.builds.runner import ToolExecutionError, ToolRunner, run_tool

logger = logging.getLogger(__name__)

DEFAULT_PATCH_PATTERN = "*.patch"

# patch(1) invocation; paths in the patches carry one leading component (a/, b/)
PATCH_COMMAND = ("patch", "-p1")


class PatchApplyError(Exception):
    """Raised when a patch fails to apply."""

    def __init__(self, patch: Path, message: str, code: str = "patch_failed") -> None:
        super().__init__(f"applying {patch.name}: {message}")
        self.patch = patch
        self.code = code


def discover_patches(
    search_dir: Path,
    pattern: str = DEFAULT_PATCH_PATTERN,
) -> list[Path]:
    """Find patch files in a directory.

    Args:
        search_dir: Directory to search (not recursive).
        pattern: Glob pattern for patch files.

    Returns:
        Matching files sorted by file name. May be empty.
    """
    patches = sorted(
        (p for p in search_dir.glob(pattern) if p.is_file()),
        key=lambda p: p.name,
    )
    logger.debug("Discovered %d patch(es) in %s", len(patches), search_dir)
    return patches


def apply_patches(
    patches: list[Path],
    source_dir: Path,
    runner: ToolRunner = run_tool,
) -> list[Path]:
    """Apply patches to a source tree in the given order.

    Stops at the first failure; already applied patches are not rolled back.

    Args:
        patches: Ordered patch files.
        source_dir: Top directory of the source tree.
        runner: Tool runner used to invoke patch.

    Returns:
        The applied patches, in order.

    Raises:
        PatchApplyError: If a patch cannot be opened or fails to apply.
    """
    applied: list[Path] = []
    for patch in patches:
        logger.info("Applying patch %s", patch.name)
        try:
            with patch.open("rb") as f:
                runner(list(PATCH_COMMAND), cwd=source_dir, stdin=f)
        except ToolExecutionError as e:
            raise PatchApplyError(patch, str(e)) from e
        except OSError as e:
            raise PatchApplyError(patch, str(e), code="io_error") from e
        applied.append(patch)

    return applied


__all__ = [
    "DEFAULT_PATCH_PATTERN",
    "PATCH_COMMAND",
    "PatchApplyError",
    "apply_patches",
    "discover_patches",
]
