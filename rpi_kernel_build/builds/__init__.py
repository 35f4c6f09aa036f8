"""Build orchestration module.

This module handles:
- Running external tools (tar, patch, make)
- Patch discovery and application
- Compiling the kernel
- Harvesting artifacts into the staging directory
- Sequencing the pipeline stages

Submodules are not imported here to avoid circular imports
(source.fetch depends on builds.runner). Access them directly,
e.g. rpi_kernel_build.builds.service.
"""
