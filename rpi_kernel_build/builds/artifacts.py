"""Artifact harvesting.

This module handles:
- Copying files while mirroring the source permission bits
- Copying the fixed list of kernel outputs into the staging directory
- Computing checksums for reporting
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import stat
from collections.abc import Iterable
from pathlib import Path

from rpi_kernel_build.release import KERNEL_ARTIFACTS
from rpi_kernel_build.types import ArtifactSpec, HarvestedArtifact

logger = logging.getLogger(__name__)

# Default chunk size for copying and hashing
COPY_CHUNK_SIZE = 64 * 1024  # 64KB


class HarvestError(Exception):
    """Raised when an artifact cannot be copied to the staging directory."""

    def __init__(
        self, artifact: ArtifactSpec, message: str, code: str = "harvest_error"
    ) -> None:
        super().__init__(f"copying {artifact.name}: {message}")
        self.artifact = artifact
        self.code = code


def copy_file(dest: Path, src: Path) -> int:
    """Copy src to dest and give dest the permission bits of src.

    The destination is created or truncated. It is closed explicitly so a
    failing flush surfaces as an error instead of being lost.

    Args:
        dest: Destination file path.
        src: Source file path.

    Returns:
        The permission bits applied to dest.

    Raises:
        OSError: If any step of the copy fails.
    """
    with src.open("rb") as fin, dest.open("wb") as fout:
        shutil.copyfileobj(fin, fout, COPY_CHUNK_SIZE)
        mode = stat.S_IMODE(os.fstat(fin.fileno()).st_mode)
        os.fchmod(fout.fileno(), mode)
        fout.close()
    return mode


def compute_file_hash(
    file_path: Path,
    chunk_size: int = COPY_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def harvest_artifacts(
    source_dir: Path,
    dest_dir: Path,
    specs: Iterable[ArtifactSpec] = KERNEL_ARTIFACTS,
) -> list[HarvestedArtifact]:
    """Copy build outputs into the staging directory.

    The first failing copy aborts the harvest; a partial set of artifacts is
    not a valid build output.

    Args:
        source_dir: Top directory of the built source tree.
        dest_dir: Staging directory.
        specs: Artifacts to copy, in order.

    Returns:
        List of harvested artifacts.

    Raises:
        HarvestError: If any artifact cannot be copied.
    """
    harvested: list[HarvestedArtifact] = []

    for spec in specs:
        src = source_dir / spec.source
        dest = dest_dir / spec.destination
        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
            mode = copy_file(dest, src)
            artifact = HarvestedArtifact(
                name=spec.name,
                path=dest,
                mode=mode,
                size_bytes=dest.stat().st_size,
                sha256=compute_file_hash(dest),
            )
        except OSError as e:
            raise HarvestError(spec, str(e)) from e

        logger.info("Copied %s to %s (mode %o)", spec.source, dest, mode)
        harvested.append(artifact)

    return harvested


__all__ = [
    "COPY_CHUNK_SIZE",
    "HarvestError",
    "compute_file_hash",
    "copy_file",
    "harvest_artifacts",
]
