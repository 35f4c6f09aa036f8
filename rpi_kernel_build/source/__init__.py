"""Kernel source retrieval: download and unpack the pinned snapshot."""

from rpi_kernel_build.source.fetch import (
    DownloadError,
    ExtractionError,
    download_source,
    unpack_archive,
)

__all__ = ["DownloadError", "ExtractionError", "download_source", "unpack_archive"]
