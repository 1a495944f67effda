"""Tests for mirroring toolchain output trees."""

import os
import sys
from pathlib import Path

import pytest

from spencer_build.copier import mirror_tree, scan_tree
from spencer_build.errors import SourceMissingError, UnsupportedEntryError


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """A small cargo-like output tree."""
    source = tmp_path / "target" / "x86_64-unknown-uefi" / "debug"
    (source / "deps").mkdir(parents=True)
    (source / "build" / "empty").mkdir(parents=True)
    (source / "a9nloader-rs.efi").write_bytes(b"MZ\x00\x01efi")
    (source / "deps" / "a9nloader_rs.efi").write_bytes(b"deps-copy")
    return source


class TestScanTree:
    """Test scan_tree."""

    def test_lists_dirs_and_files(self, source_tree: Path) -> None:
        directories, files = scan_tree(source_tree)
        assert directories == [Path("build"), Path("build/empty"), Path("deps")]
        assert files == [Path("a9nloader-rs.efi"), Path("deps/a9nloader_rs.efi")]

    def test_missing_source(self, tmp_path: Path) -> None:
        with pytest.raises(SourceMissingError) as exc_info:
            scan_tree(tmp_path / "absent")
        assert exc_info.value.code == "source_missing"


class TestMirrorTree:
    """Test mirror_tree."""

    def test_structure_and_bytes(self, source_tree: Path, tmp_path: Path) -> None:
        destination = tmp_path / "out" / "a9nloader"
        report = mirror_tree(source_tree, destination)

        assert (destination / "a9nloader-rs.efi").read_bytes() == b"MZ\x00\x01efi"
        assert (destination / "deps" / "a9nloader_rs.efi").read_bytes() == b"deps-copy"
        assert (destination / "build" / "empty").is_dir()
        assert len(report.files) == 2
        assert len(report.directories) == 3

    def test_overwrites_existing(self, source_tree: Path, tmp_path: Path) -> None:
        destination = tmp_path / "dest"
        destination.mkdir()
        (destination / "a9nloader-rs.efi").write_bytes(b"stale and much longer")
        (destination / "unrelated.txt").write_text("kept")

        mirror_tree(source_tree, destination)

        assert (destination / "a9nloader-rs.efi").read_bytes() == b"MZ\x00\x01efi"
        assert (destination / "unrelated.txt").read_text() == "kept"

    def test_missing_source_leaves_destination(self, tmp_path: Path) -> None:
        destination = tmp_path / "dest"
        with pytest.raises(SourceMissingError):
            mirror_tree(tmp_path / "absent", destination)
        assert not destination.exists()

    def test_symlink_rejected_before_write(
        self, source_tree: Path, tmp_path: Path
    ) -> None:
        (source_tree / "zz-link.efi").symlink_to(source_tree / "a9nloader-rs.efi")
        destination = tmp_path / "dest"

        with pytest.raises(UnsupportedEntryError) as exc_info:
            mirror_tree(source_tree, destination)

        assert exc_info.value.kind == "symlink"
        assert exc_info.value.path == source_tree / "zz-link.efi"
        assert not destination.exists()

    @pytest.mark.skipif(sys.platform == "win32", reason="FIFOs need POSIX")
    def test_fifo_rejected(self, source_tree: Path, tmp_path: Path) -> None:
        os.mkfifo(source_tree / "deps" / "pipe")
        with pytest.raises(UnsupportedEntryError) as exc_info:
            mirror_tree(source_tree, tmp_path / "dest")
        assert exc_info.value.kind == "fifo"

    def test_empty_source(self, tmp_path: Path) -> None:
        source = tmp_path / "empty"
        source.mkdir()
        report = mirror_tree(source, tmp_path / "dest")
        assert report.files == []
        assert (tmp_path / "dest").is_dir()
