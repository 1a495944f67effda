"""Canonical output layout.

Maps a build configuration to the directory scheme every stage writes
into: ``<root>/out/<arch>-<platform>-<profile>/`` with one fixed sub-path
per stage plus the disk image. Pure functions, no filesystem access.
Architectures a stage cannot build are rejected by that stage, not here.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from spencer_build.models import BuildConfiguration
from spencer_build.types import Arch, Platform, Profile

DEFAULT_OUT_DIR_NAME = "out"
DEFAULT_IMAGE_NAME = "spencer.img"
FIRMWARE_VARS_NAME = "OVMF_VARS.fd"

# Stage name -> sub-directory under the layout base
STAGE_DIRS: dict[str, str] = {
    "bootloader": "a9nloader",
    "kernel": "a9n",
    "nun": "nun_os_target_dir",
}


def layout_key(arch: Arch, platform: Platform, profile: Profile) -> str:
    """Return the ``<arch>-<platform>-<profile>`` base directory name."""
    return f"{arch.value}-{platform.value}-{profile.value}"


@dataclass(frozen=True)
class OutputLayout:
    """Resolved output paths for one configuration.

    Attributes:
        root: Repository root.
        base_dir: Per-configuration output directory.
        image_name: File name of the disk image inside base_dir.
    """

    root: Path
    base_dir: Path
    image_name: str = DEFAULT_IMAGE_NAME

    def stage_dir(self, stage: str) -> Path:
        """Canonical destination directory for a stage.

        Raises:
            KeyError: Unknown stage name.
        """
        return self.base_dir / STAGE_DIRS[stage]

    @property
    def bootloader_dir(self) -> Path:
        return self.stage_dir("bootloader")

    @property
    def kernel_dir(self) -> Path:
        return self.stage_dir("kernel")

    @property
    def nun_target_dir(self) -> Path:
        return self.stage_dir("nun")

    @property
    def image_path(self) -> Path:
        return self.base_dir / self.image_name

    @property
    def firmware_vars_path(self) -> Path:
        """Writable per-run copy of the firmware variables store."""
        return self.base_dir / FIRMWARE_VARS_NAME


def resolve_layout(
    root: Path,
    arch: Arch,
    platform: Platform,
    profile: Profile,
    *,
    out_dir_name: str = DEFAULT_OUT_DIR_NAME,
    image_name: str = DEFAULT_IMAGE_NAME,
) -> OutputLayout:
    """Resolve the output layout for an (arch, platform, profile) triple.

    Args:
        root: Repository root.
        arch: Target architecture.
        platform: Target platform.
        profile: Optimization profile.
        out_dir_name: Name of the output root under ``root``.
        image_name: Disk image file name.

    Returns:
        OutputLayout whose base directory is unique to the triple.
    """
    base_dir = root / out_dir_name / layout_key(arch, platform, profile)
    return OutputLayout(root=root, base_dir=base_dir, image_name=image_name)


def layout_for(
    root: Path,
    config: BuildConfiguration,
    *,
    out_dir_name: str = DEFAULT_OUT_DIR_NAME,
    image_name: str = DEFAULT_IMAGE_NAME,
) -> OutputLayout:
    """Resolve the output layout for a build configuration."""
    return resolve_layout(
        root,
        config.arch,
        config.platform,
        config.profile,
        out_dir_name=out_dir_name,
        image_name=image_name,
    )


__all__ = [
    "DEFAULT_IMAGE_NAME",
    "DEFAULT_OUT_DIR_NAME",
    "FIRMWARE_VARS_NAME",
    "STAGE_DIRS",
    "OutputLayout",
    "layout_for",
    "layout_key",
    "resolve_layout",
]
