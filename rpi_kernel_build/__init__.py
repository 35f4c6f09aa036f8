"""Raspberry Pi kernel build - reproducible cross-compilation of a pinned kernel.

This package fetches a pinned kernel source snapshot, injects the board
configuration, applies local patches, cross-compiles the kernel and harvests
the kernel image and device-tree blobs into a staging directory.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
