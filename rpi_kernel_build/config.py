"""Configuration settings for rpi_kernel_build.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Staging path shared by harvested artifacts and installed modules
DEFAULT_STAGING_DIR = Path("/tmp/buildresult")


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the RPI_KBUILD_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="RPI_KBUILD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    work_dir: Path = Field(
        default_factory=Path.cwd,
        description="Invocation directory holding defconfig and *.patch files",
    )
    dest_dir: Path = Field(
        default=DEFAULT_STAGING_DIR,
        description="Staging directory for the kernel image and device-tree blobs",
    )
    modules_dir: Path = Field(
        default=DEFAULT_STAGING_DIR,
        description="INSTALL_MOD_PATH for modules_install",
    )

    # Build inputs
    defconfig_file: str = Field(
        default="defconfig",
        description="Board configuration file name inside work_dir",
    )
    patch_pattern: str = Field(
        default="*.patch",
        description="Glob pattern used to discover patches in work_dir",
    )

    # Build behaviour
    jobs: int | None = Field(
        default=None,
        ge=1,
        description="Parallel make jobs (uses the CPU count if not set)",
    )
    download_timeout: float | None = Field(
        default=None,
        gt=0,
        description="Source download timeout in seconds (no timeout if not set)",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["DEFAULT_STAGING_DIR", "Settings", "get_settings", "print_settings_json"]
