"""Build orchestration service.

This module sequences the kernel build pipeline:
- Fetch the pinned source archive
- Unpack it into the build workspace
- Inject the board defconfig
- Apply local patches
- Compile the kernel and install modules
- Harvest the kernel image and device-tree blobs

Stages run strictly in order and the first failing stage ends the run.
Nothing is cleaned up on failure so the workspace can be inspected.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx

from rpi_kernel_build.builds.artifacts import HarvestError, copy_file, harvest_artifacts
from rpi_kernel_build.builds.compile import (
    CompileError,
    compile_kernel,
    compose_build_command,
    compose_defconfig_command,
    compose_modules_install_command,
    default_jobs,
)
from rpi_kernel_build.builds.patches import (
    DEFAULT_PATCH_PATTERN,
    PatchApplyError,
    apply_patches,
    discover_patches,
)
from rpi_kernel_build.builds.runner import ToolRunner, run_tool
from rpi_kernel_build.release import BOARD, KERNEL_ARTIFACTS, LATEST_SOURCE, TOOLCHAIN
from rpi_kernel_build.source.fetch import (
    DownloadError,
    ExtractionError,
    download_source,
    unpack_archive,
)
from rpi_kernel_build.types import (
    ArtifactSpec,
    BoardConfig,
    HarvestedArtifact,
    PipelineStage,
    ReleaseSource,
    ToolchainEnvironment,
)

logger = logging.getLogger(__name__)

DEFAULT_DEFCONFIG_FILE = "defconfig"


class PipelineError(Exception):
    """Raised when a pipeline stage fails.

    Attributes:
        stage: The stage that failed.
        code: Error code of the underlying failure.
    """

    def __init__(self, stage: PipelineStage, cause: Exception) -> None:
        super().__init__(f"{stage.value}: {cause}")
        self.stage = stage
        self.code = getattr(cause, "code", "os_error")


@dataclass
class PipelineResult:
    """Result of a successful pipeline run."""

    workspace: Path
    archive_path: Path
    patches: list[Path]
    artifacts: list[HarvestedArtifact]
    started_at: datetime
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable summary."""
        return {
            "workspace": str(self.workspace),
            "archive_path": str(self.archive_path),
            "patches": [p.name for p in self.patches],
            "artifacts": [
                {
                    "name": a.name,
                    "path": str(a.path),
                    "mode": f"{a.mode:04o}",
                    "size_bytes": a.size_bytes,
                    "sha256": a.sha256,
                }
                for a in self.artifacts
            ],
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
        }


def inject_defconfig(defconfig_path: Path, workspace: Path, board: BoardConfig) -> Path:
    """Copy the board defconfig into the kernel tree's configs directory.

    Args:
        defconfig_path: Board configuration file in the invocation directory.
        workspace: Unpacked source tree.
        board: Board configuration naming the slot.

    Returns:
        Path of the injected configuration file.

    Raises:
        OSError: If the copy fails.
    """
    logger.info("Copying defconfig")
    dest = workspace / board.config_slot
    copy_file(dest, defconfig_path)
    return dest


def run_pipeline(
    client: httpx.Client,
    work_dir: Path,
    dest_dir: Path,
    modules_dir: Path,
    *,
    source: ReleaseSource = LATEST_SOURCE,
    board: BoardConfig = BOARD,
    toolchain: ToolchainEnvironment = TOOLCHAIN,
    artifacts: Sequence[ArtifactSpec] = KERNEL_ARTIFACTS,
    jobs: int | None = None,
    patch_pattern: str = DEFAULT_PATCH_PATTERN,
    defconfig_file: str = DEFAULT_DEFCONFIG_FILE,
    download_timeout: float | None = None,
    base_env: Mapping[str, str] | None = None,
    runner: ToolRunner = run_tool,
) -> PipelineResult:
    """Run the full kernel build pipeline.

    Relative paths are resolved once against the current directory before
    any stage runs; the process working directory is never changed.

    Args:
        client: HTTPX client used to fetch the source.
        work_dir: Invocation directory holding defconfig and patches.
        dest_dir: Staging directory for harvested artifacts.
        modules_dir: INSTALL_MOD_PATH for modules_install.
        source: Pinned release source.
        board: Board configuration.
        toolchain: Toolchain identity for every make invocation.
        artifacts: Artifacts to harvest.
        jobs: Parallel make jobs (None = CPU count).
        patch_pattern: Glob pattern for patches in work_dir.
        defconfig_file: Defconfig file name in work_dir.
        download_timeout: Source download timeout (None = no timeout).
        base_env: Ambient environment to extend (defaults to os.environ).
        runner: Tool runner for tar, patch and make.

    Returns:
        PipelineResult describing the run.

    Raises:
        PipelineError: Wrapping the first stage failure.
    """
    started_at = datetime.now(timezone.utc)
    env = toolchain.merged(base_env)

    # Absolute from here on: make runs with the workspace as its cwd
    work_dir = work_dir.resolve()
    dest_dir = dest_dir.resolve()
    modules_dir = modules_dir.resolve()

    stage = PipelineStage.FETCH
    try:
        archive_path = download_source(
            client, source, work_dir, timeout=download_timeout
        )

        stage = PipelineStage.UNPACK
        workspace = unpack_archive(archive_path, work_dir, source, runner=runner)

        stage = PipelineStage.CONFIGURE
        inject_defconfig(work_dir / defconfig_file, workspace, board)

        stage = PipelineStage.PATCH
        logger.info("Applying patches")
        patches = apply_patches(
            discover_patches(work_dir, patch_pattern), workspace, runner=runner
        )

        stage = PipelineStage.COMPILE
        logger.info("Compiling kernel")
        compile_kernel(
            workspace, board, env, modules_dir, jobs=jobs, runner=runner
        )

        stage = PipelineStage.HARVEST
        logger.info("Harvesting artifacts into %s", dest_dir)
        harvested = harvest_artifacts(workspace, dest_dir, artifacts)

    except (
        DownloadError,
        ExtractionError,
        PatchApplyError,
        CompileError,
        HarvestError,
        OSError,
    ) as e:
        raise PipelineError(stage, e) from e

    logger.info("Build complete: %d artifact(s) in %s", len(harvested), dest_dir)
    return PipelineResult(
        workspace=workspace,
        archive_path=archive_path,
        patches=patches,
        artifacts=harvested,
        started_at=started_at,
    )


def describe_plan(
    work_dir: Path,
    dest_dir: Path,
    modules_dir: Path,
    *,
    source: ReleaseSource = LATEST_SOURCE,
    board: BoardConfig = BOARD,
    toolchain: ToolchainEnvironment = TOOLCHAIN,
    artifacts: Sequence[ArtifactSpec] = KERNEL_ARTIFACTS,
    jobs: int | None = None,
    patch_pattern: str = DEFAULT_PATCH_PATTERN,
    defconfig_file: str = DEFAULT_DEFCONFIG_FILE,
) -> dict[str, Any]:
    """Describe what run_pipeline would do, without side effects.

    Returns:
        JSON-serializable plan dictionary.
    """
    if jobs is None:
        jobs = default_jobs()
    work_dir = work_dir.resolve()
    dest_dir = dest_dir.resolve()
    modules_dir = modules_dir.resolve()
    workspace = work_dir / source.workspace_name

    return {
        "source_url": source.url,
        "archive": str(work_dir / source.archive_name),
        "workspace": str(workspace),
        "defconfig": str(work_dir / defconfig_file),
        "config_slot": str(workspace / board.config_slot),
        "patches": [p.name for p in discover_patches(work_dir, patch_pattern)],
        "stages": [s.value for s in PipelineStage],
        "environment": toolchain.as_env(),
        "commands": [
            compose_defconfig_command(board),
            compose_build_command(jobs),
            compose_modules_install_command(modules_dir, jobs),
        ],
        "artifacts": [
            {
                "name": a.name,
                "source": str(workspace / a.source),
                "destination": str(dest_dir / a.destination),
            }
            for a in artifacts
        ],
    }


__all__ = [
    "DEFAULT_DEFCONFIG_FILE",
    "PipelineError",
    "PipelineResult",
    "describe_plan",
    "inject_defconfig",
    "run_pipeline",
]
