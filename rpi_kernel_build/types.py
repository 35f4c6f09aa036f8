"""Shared type definitions for rpi_kernel_build.

This module contains dataclasses and enums shared across subpackages
to avoid circular imports.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

# Compression suffixes stripped from the archive name, longest first
ARCHIVE_SUFFIXES = (".tar.gz", ".tar.xz", ".tar.bz2", ".tgz", ".tar")


class PipelineStage(str, Enum):
    """Stages of the kernel build pipeline, in execution order."""

    FETCH = "fetch"
    UNPACK = "unpack"
    CONFIGURE = "configure"
    PATCH = "patch"
    COMPILE = "compile"
    HARVEST = "harvest"


@dataclass(frozen=True)
class ReleaseSource:
    """Pinned reference to exactly one kernel source snapshot.

    The URL must encode a stable revision (a commit hash, never a branch or
    moving tag) so every run retrieves byte-identical sources.
    """

    url: str
    workspace_prefix: str = "linux-"

    def __post_init__(self) -> None:
        if not self.url:
            raise ValueError("url must be provided")

    @property
    def archive_name(self) -> str:
        """File name of the downloaded archive (final URL path segment)."""
        path = self.url.split("?", 1)[0].split("#", 1)[0]
        return path.rstrip("/").rsplit("/", 1)[-1]

    @property
    def workspace_name(self) -> str:
        """Directory name created by unpacking the archive."""
        name = self.archive_name
        for suffix in ARCHIVE_SUFFIXES:
            if name.endswith(suffix):
                name = name[: -len(suffix)]
                break
        return f"{self.workspace_prefix}{name}"


@dataclass(frozen=True)
class BoardConfig:
    """Board configuration injected into the kernel tree."""

    defconfig_name: str
    arch: str = "arm64"

    @property
    def config_slot(self) -> Path:
        """Location of the defconfig relative to the source tree."""
        return Path("arch") / self.arch / "configs" / self.defconfig_name


@dataclass(frozen=True)
class ToolchainEnvironment:
    """Build-time variables passed to every compile invocation.

    Constructed once per run; the fixed build identity and timestamp keep
    the resulting kernel reproducible.
    """

    arch: str
    cross_compile: str
    build_user: str
    build_host: str
    build_timestamp: str

    def as_env(self) -> dict[str, str]:
        """Return the toolchain variables as an environment mapping."""
        return {
            "ARCH": self.arch,
            "CROSS_COMPILE": self.cross_compile,
            "KBUILD_BUILD_USER": self.build_user,
            "KBUILD_BUILD_HOST": self.build_host,
            "KBUILD_BUILD_TIMESTAMP": self.build_timestamp,
        }

    def merged(self, base: Mapping[str, str] | None = None) -> dict[str, str]:
        """Overlay the toolchain variables on an ambient environment.

        Args:
            base: Environment to extend; defaults to os.environ.

        Returns:
            New environment dictionary.
        """
        env = dict(os.environ if base is None else base)
        env.update(self.as_env())
        return env


@dataclass(frozen=True)
class ArtifactSpec:
    """A named build output and where it is staged."""

    name: str
    source: Path
    destination: str


@dataclass
class HarvestedArtifact:
    """Information about an artifact copied into the staging directory."""

    name: str
    path: Path
    mode: int
    size_bytes: int
    sha256: str


__all__ = [
    "ARCHIVE_SUFFIXES",
    "ArtifactSpec",
    "BoardConfig",
    "HarvestedArtifact",
    "PipelineStage",
    "ReleaseSource",
    "ToolchainEnvironment",
]
