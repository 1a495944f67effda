"""Mirroring toolchain output trees into the canonical layout.

A toolchain writes its outputs to a location of its own choosing (e.g.
cargo's ``target/<triple>/<profile>``). After a successful build the tree
is mirrored into the stage's canonical destination:

- directories are created as needed, relative structure is preserved
- regular files are copied byte-for-byte and overwrite existing files
- symlinks, sockets, devices and FIFOs are rejected

The source tree is scanned completely before anything is written, so a
missing source or an unsupported entry leaves the destination untouched.
"""

from __future__ import annotations

import logging
import shutil
import stat
from dataclasses import dataclass
from pathlib import Path

from spencer_build.errors import CopyError, SourceMissingError, UnsupportedEntryError

logger = logging.getLogger(__name__)


@dataclass
class CopyReport:
    """Summary of a mirror operation.

    Attributes:
        source: Mirrored source directory.
        destination: Destination directory.
        files: Relative paths of copied files.
        directories: Relative paths of directories created or reused.
    """

    source: Path
    destination: Path
    files: list[Path]
    directories: list[Path]


def _entry_kind(mode: int) -> str:
    if stat.S_ISLNK(mode):
        return "symlink"
    if stat.S_ISSOCK(mode):
        return "socket"
    if stat.S_ISFIFO(mode):
        return "fifo"
    if stat.S_ISBLK(mode) or stat.S_ISCHR(mode):
        return "device"
    return "unknown"


def scan_tree(source: Path) -> tuple[list[Path], list[Path]]:
    """Collect the directories and regular files under ``source``.

    Args:
        source: Directory to scan.

    Returns:
        Tuple of (directories, files) as paths relative to ``source``,
        sorted so parents precede children.

    Raises:
        SourceMissingError: ``source`` is not an existing directory.
        UnsupportedEntryError: The tree contains a non-regular entry.
    """
    if not source.is_dir():
        raise SourceMissingError(source, what="source directory")

    directories: list[Path] = []
    files: list[Path] = []

    for path in sorted(source.rglob("*")):
        mode = path.lstat().st_mode
        rel_path = path.relative_to(source)
        if stat.S_ISDIR(mode):
            directories.append(rel_path)
        elif stat.S_ISREG(mode):
            files.append(rel_path)
        else:
            raise UnsupportedEntryError(path, _entry_kind(mode))

    return directories, files


def mirror_tree(source: Path, destination: Path) -> CopyReport:
    """Mirror the contents of ``source`` into ``destination``.

    Args:
        source: Toolchain-native output directory.
        destination: Canonical destination directory (created if absent).

    Returns:
        CopyReport listing what was copied.

    Raises:
        SourceMissingError: ``source`` does not exist.
        UnsupportedEntryError: ``source`` contains a symlink or special file.
        CopyError: Copying failed.
    """
    directories, files = scan_tree(source)
    logger.debug(
        "Mirroring %s -> %s (%d dirs, %d files)",
        source,
        destination,
        len(directories),
        len(files),
    )

    try:
        destination.mkdir(parents=True, exist_ok=True)
        for rel_dir in directories:
            (destination / rel_dir).mkdir(parents=True, exist_ok=True)
        for rel_file in files:
            shutil.copyfile(source / rel_file, destination / rel_file)
    except OSError as e:
        raise CopyError(f"copy artifacts: {source} -> {destination}: {e}") from e

    return CopyReport(
        source=source,
        destination=destination,
        files=files,
        directories=directories,
    )


__all__ = ["CopyReport", "mirror_tree", "scan_tree"]
