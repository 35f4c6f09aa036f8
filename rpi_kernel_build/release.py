"""Pinned inputs for the kernel build.

Everything here is a constant: changing the kernel revision, board
configuration or artifact list means editing this module.
"""

from pathlib import Path

from rpi_kernel_build.types import (
    ArtifactSpec,
    BoardConfig,
    ReleaseSource,
    ToolchainEnvironment,
)

# see https://www.kernel.org/releases.json
LATEST_SOURCE = ReleaseSource(
    url=(
        "https://github.com/raspberrypi/linux/archive/"
        "b5dbe58ae4140a1ef7b86e4757e872c209b9f9ab.tar.gz"
    ),
)

BOARD = BoardConfig(defconfig_name="gooniebox_defconfig", arch="arm64")

TOOLCHAIN = ToolchainEnvironment(
    arch="arm64",
    cross_compile="aarch64-linux-gnu-",
    build_user="gokrazy",
    build_host="docker",
    build_timestamp="Wed Mar  1 20:57:29 UTC 2017",
)

_BOOT_DIR = Path("arch") / "arm64" / "boot"
_DTS_DIR = _BOOT_DIR / "dts" / "broadcom"

DEVICE_TREES = (
    "bcm2710-rpi-3-b.dtb",
    "bcm2710-rpi-3-b-plus.dtb",
    "bcm2710-rpi-cm3.dtb",
    "bcm2711-rpi-4-b.dtb",
    "bcm2710-rpi-zero-2-w.dtb",
)

KERNEL_ARTIFACTS: tuple[ArtifactSpec, ...] = (
    ArtifactSpec(name="kernel", source=_BOOT_DIR / "Image", destination="vmlinuz"),
    *(
        ArtifactSpec(name=dtb, source=_DTS_DIR / dtb, destination=dtb)
        for dtb in DEVICE_TREES
    ),
)

__all__ = [
    "BOARD",
    "DEVICE_TREES",
    "KERNEL_ARTIFACTS",
    "LATEST_SOURCE",
    "TOOLCHAIN",
]
