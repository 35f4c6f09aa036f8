"""Kernel source fetch module.

This module handles:
- Downloading the pinned source archive in a single GET
- Unpacking the archive into the build workspace
"""

from __future__ import annotations

import logging
from pathlib import Path

import httpx

from rpi_kernel_build.builds.runner import ToolExecutionError, ToolRunner, run_tool
from rpi_kernel_build.types import ReleaseSource

logger = logging.getLogger(__name__)

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB


class DownloadError(Exception):
    """Raised when the source download fails."""

    def __init__(self, message: str, code: str = "download_error") -> None:
        """Initialize DownloadError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code


class ExtractionError(Exception):
    """Raised when the source archive cannot be unpacked."""

    def __init__(self, message: str, code: str = "extraction_error") -> None:
        """Initialize ExtractionError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code


def download_source(
    client: httpx.Client,
    source: ReleaseSource,
    dest_dir: Path,
    timeout: float | None = None,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> Path:
    """Download the pinned source archive.

    The archive is written to dest_dir under the URL's final path segment,
    overwriting any existing file. There are no retries and a partially
    written file is left in place on failure.

    Args:
        client: HTTPX client instance.
        source: Pinned release source.
        dest_dir: Directory to write the archive into.
        timeout: Download timeout in seconds (None = no timeout).
        chunk_size: Size of chunks to stream.

    Returns:
        Path to the downloaded archive.

    Raises:
        DownloadError: If the request or the local write fails.
    """
    url = source.url
    dest_path = dest_dir / source.archive_name
    logger.info("Downloading kernel source: %s", url)

    try:
        with client.stream("GET", url, timeout=timeout) as response:
            if response.status_code != httpx.codes.OK:
                raise DownloadError(
                    f"unexpected HTTP status code for {url}: "
                    f"got {response.status_code}, want {httpx.codes.OK.value}",
                    code="http_error",
                )

            total_bytes = 0
            with dest_path.open("wb") as f:
                for chunk in response.iter_bytes(chunk_size):
                    f.write(chunk)
                    total_bytes += len(chunk)

    except httpx.TimeoutException as e:
        raise DownloadError(
            f"Timeout downloading {url}: {e}",
            code="timeout",
        ) from e
    except httpx.RequestError as e:
        raise DownloadError(
            f"Network error downloading {url}: {e}",
            code="network_error",
        ) from e
    except OSError as e:
        raise DownloadError(
            f"I/O error writing {dest_path} from {url}: {e}",
            code="io_error",
        ) from e

    logger.info("Downloaded %s (%d bytes)", dest_path.name, total_bytes)
    return dest_path


def unpack_archive(
    archive_path: Path,
    work_dir: Path,
    source: ReleaseSource,
    runner: ToolRunner = run_tool,
) -> Path:
    """Unpack the source archive with tar inside work_dir.

    Args:
        archive_path: Path to the downloaded archive.
        work_dir: Directory to unpack into.
        source: Release source, used to name the workspace.
        runner: Tool runner used to invoke tar.

    Returns:
        Path to the unpacked source tree.

    Raises:
        ExtractionError: If tar fails or the expected tree is missing.
    """
    logger.info("Unpacking kernel source")

    try:
        runner(["tar", "xf", archive_path.name], cwd=work_dir)
    except ToolExecutionError as e:
        raise ExtractionError(f"untar: {e}", code="tar_error") from e

    workspace = work_dir / source.workspace_name
    if not workspace.is_dir():
        raise ExtractionError(
            f"Expected source tree {workspace} after unpacking {archive_path.name}",
            code="missing_workspace",
        )
    return workspace


__all__ = [
    "DOWNLOAD_CHUNK_SIZE",
    "DownloadError",
    "ExtractionError",
    "download_source",
    "unpack_archive",
]
