"""Bootable disk image assembly.

This module handles:
- Creating a fixed-size raw image file (recreated from scratch every run)
- Formatting it as a single FAT32 volume spanning the whole file
- Placing the bootloader, Nun init and kernel at fixed in-volume paths
- Flushing, unmounting and fsyncing before reporting success
- Listing and reading back image contents

A failed assembly leaves the image in an indeterminate state; callers must
treat it as unusable. Re-running fully reconstructs it.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import BinaryIO

from spencer_build.errors import ConfigurationError, SourceMissingError, WriteError
from spencer_build.fat32 import Directory, FileSystem, format_volume
from spencer_build.models import ImageResult
from spencer_build.types import ExecutionMode, StepStatus

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_SIZE_MIB = 64
MIB = 1024 * 1024

# Logical artifact name -> fixed in-volume path
BOOTLOADER_ENTRY = "/EFI/BOOT/BOOTX64.EFI"
INIT_ENTRY = "/kernel/init.elf"
KERNEL_ENTRY = "/kernel/kernel.elf"
IMAGE_ENTRIES: dict[str, str] = {
    "bootloader_efi": BOOTLOADER_ENTRY,
    "nun_init": INIT_ENTRY,
    "kernel_elf": KERNEL_ENTRY,
}


@dataclass(frozen=True)
class ImagePlan:
    """What an image assembly will produce.

    Attributes:
        image_path: Host path of the image file.
        size_mib: Image size in MiB.
        files: In-volume path -> host source path, in write order.
        label: FAT32 volume label.
    """

    image_path: Path
    size_mib: int
    files: dict[str, Path]
    label: str = "SPENCER"

    @property
    def size_bytes(self) -> int:
        return self.size_mib * MIB


@dataclass(frozen=True)
class ImageEntry:
    """One entry found inside an image."""

    path: str
    is_dir: bool
    size: int


def plan_image(
    image_path: Path,
    sources: Mapping[str, Path],
    *,
    size_mib: int = DEFAULT_IMAGE_SIZE_MIB,
    label: str = "SPENCER",
) -> ImagePlan:
    """Describe an image holding one file per IMAGE_ENTRIES name.

    Args:
        image_path: Where the image file goes.
        sources: Logical artifact name -> host path. Names not listed in
            IMAGE_ENTRIES are ignored.
        size_mib: Image size in MiB.
        label: Volume label.

    Returns:
        ImagePlan for :func:`assemble_image`.

    Raises:
        ConfigurationError: No source was given for an image entry.
    """
    files: dict[str, Path] = {}
    for name, in_volume_path in IMAGE_ENTRIES.items():
        if name not in sources:
            raise ConfigurationError(
                f"no artifact named {name!r} for image entry {in_volume_path}"
            )
        files[in_volume_path] = sources[name]
    return ImagePlan(
        image_path=image_path,
        size_mib=size_mib,
        files=files,
        label=label,
    )


def ensure_dir_path(root: Directory, path: str) -> Directory:
    """Create every component of an absolute in-volume path if absent."""
    directory = root
    for part in PurePosixPath(path).parts[1:]:
        directory = directory.ensure_dir(part)
    return directory


def write_file_from_host(directory: Directory, name: str, source: BinaryIO) -> None:
    """Write ``source`` as ``name``, replacing any existing entry first."""
    if directory.exists(name):
        logger.debug("Removing existing %s/%s", directory.path.rstrip("/"), name)
        directory.remove(name)
    directory.create_file(name, source)


def _open_sources(stack: ExitStack, files: dict[str, Path]) -> dict[str, BinaryIO]:
    handles: dict[str, BinaryIO] = {}
    for in_volume_path, host_path in files.items():
        try:
            handles[in_volume_path] = stack.enter_context(host_path.open("rb"))
        except OSError as e:
            raise SourceMissingError(
                host_path, what=f"image source for {in_volume_path}"
            ) from e
    return handles


def _log_plan(plan: ImagePlan, level: int) -> None:
    logger.log(level, "create img: %s (%d MiB)", plan.image_path, plan.size_mib)
    width = max(len(p) for p in plan.files)
    for in_volume_path, host_path in plan.files.items():
        logger.log(level, "  %s <- %s", in_volume_path.ljust(width), host_path)


def assemble_image(
    plan: ImagePlan,
    mode: ExecutionMode = ExecutionMode.EXECUTE,
    *,
    timestamp: datetime | None = None,
) -> ImageResult:
    """Build the FAT32 disk image described by ``plan``.

    Args:
        plan: ImagePlan from :func:`plan_image`.
        mode: PLAN only reports the intended contents.
        timestamp: Timestamp for directory entries (default: now).

    Returns:
        ImageResult (status PLANNED or DONE).

    Raises:
        SourceMissingError: A host source file cannot be opened.
        FormatError: The volume could not be created.
        WriteError: Writing the image failed.
    """
    result = ImageResult(
        image_path=str(plan.image_path),
        size_bytes=plan.size_bytes,
        entries={k: str(v) for k, v in plan.files.items()},
    )

    if mode is ExecutionMode.PLAN:
        _log_plan(plan, logging.INFO)
        result.status = StepStatus.PLANNED
        return result

    _log_plan(plan, logging.DEBUG)

    with ExitStack() as stack:
        sources = _open_sources(stack, plan.files)

        try:
            plan.image_path.parent.mkdir(parents=True, exist_ok=True)
            with plan.image_path.open("wb") as image:
                image.truncate(plan.size_bytes)
        except OSError as e:
            raise WriteError(f"create img file {plan.image_path}: {e}") from e

        try:
            with plan.image_path.open("r+b") as image:
                format_volume(image, plan.size_bytes, label=plan.label)

                with FileSystem(image, timestamp=timestamp) as fs:
                    root = fs.root_dir()
                    for in_volume_path, source in sources.items():
                        parent = PurePosixPath(in_volume_path).parent
                        directory = ensure_dir_path(root, str(parent))
                        write_file_from_host(
                            directory, PurePosixPath(in_volume_path).name, source
                        )

                image.flush()
                os.fsync(image.fileno())
        except OSError as e:
            raise WriteError(f"write img {plan.image_path}: {e}") from e

    logger.info("img created: %s", plan.image_path)
    result.status = StepStatus.DONE
    return result


def _walk(directory: Directory, prefix: str) -> list[ImageEntry]:
    entries: list[ImageEntry] = []
    for entry in sorted(directory.iterdir(), key=lambda e: e.name):
        path = f"{prefix}/{entry.name}"
        entries.append(ImageEntry(path=path, is_dir=entry.is_dir, size=entry.size))
        if entry.is_dir:
            entries.extend(_walk(directory.open_dir(entry.name), path))
    return entries


def inspect_image(image_path: Path) -> list[ImageEntry]:
    """List every file and directory in an image, depth first.

    Raises:
        SourceMissingError: The image file does not exist.
        FormatError: The file is not a FAT32 volume.
    """
    if not image_path.is_file():
        raise SourceMissingError(image_path, what="image")
    with image_path.open("rb") as image:
        fs = FileSystem(image)
        return _walk(fs.root_dir(), "")


def read_image_file(image_path: Path, in_volume_path: str) -> bytes:
    """Read one file out of an image.

    Raises:
        SourceMissingError: The image file does not exist.
        FileNotFoundError: The in-volume path does not exist.
    """
    if not image_path.is_file():
        raise SourceMissingError(image_path, what="image")
    parts = PurePosixPath(in_volume_path).parts[1:]
    with image_path.open("rb") as image:
        directory = FileSystem(image).root_dir()
        for part in parts[:-1]:
            directory = directory.open_dir(part)
        return directory.read_file(parts[-1])


__all__ = [
    "BOOTLOADER_ENTRY",
    "DEFAULT_IMAGE_SIZE_MIB",
    "IMAGE_ENTRIES",
    "INIT_ENTRY",
    "KERNEL_ENTRY",
    "MIB",
    "ImageEntry",
    "ImagePlan",
    "assemble_image",
    "ensure_dir_path",
    "inspect_image",
    "plan_image",
    "read_image_file",
    "write_file_from_host",
]
