"""Configuration settings for spencer_build.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the SPENCER_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="SPENCER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    repo_root: Path = Field(
        default_factory=Path.cwd,
        description="Root of the Spencer source checkout",
    )
    out_dir_name: str = Field(
        default="out",
        min_length=1,
        description="Name of the output root directory under the repo root",
    )

    # Image
    image_name: str = Field(
        default="spencer.img",
        min_length=1,
        description="File name of the assembled disk image",
    )
    image_size_mib: int = Field(
        default=64,
        ge=33,
        description="Disk image size in MiB (FAT32 needs at least 33 MiB)",
    )
    volume_label: str = Field(
        default="SPENCER",
        max_length=11,
        description="FAT32 volume label",
    )

    # Toolchains
    cargo: str = Field(default="cargo", description="cargo executable")
    cmake: str = Field(default="cmake", description="cmake executable")
    nun_nightly_build_std: bool = Field(
        default=True,
        description="Build Nun with +nightly and -Z build-std",
    )

    # Emulator
    qemu_x86_64: str = Field(
        default="qemu-system-x86_64",
        description="QEMU executable for x86_64 guests",
    )
    ovmf_code_path: Path = Field(
        default=Path("a9nloader-rs/tools/OVMF_CODE.fd"),
        description="Read-only OVMF code image (relative to repo root if relative)",
    )
    ovmf_vars_path: Path = Field(
        default=Path("a9nloader-rs/tools/OVMF_VARS.fd"),
        description="OVMF variables template (relative to repo root if relative)",
    )
    qemu_memory: str = Field(default="4G", description="Guest memory size")
    qemu_cpu: str = Field(default="max", description="Guest CPU model")
    qemu_host_port: int = Field(
        default=1234, ge=1, le=65535, description="Forwarded host TCP port"
    )
    qemu_guest_port: int = Field(
        default=80, ge=1, le=65535, description="Guest TCP port behind the forward"
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    def resolve_repo_path(self, path: Path) -> Path:
        """Resolve a possibly relative path against the repo root."""
        return path if path.is_absolute() else self.repo_root / path


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


__all__ = ["Settings", "get_settings", "print_settings_json"]
