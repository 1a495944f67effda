"""Read assembled images back with independent FAT implementations.

Every other image test reads through spencer_build.fat32 itself; these
tests check that pyfatfs and, where installed, mtools agree on the
on-disk layout.
"""

import io
import os
import shutil
import subprocess
from datetime import datetime
from pathlib import Path

import pytest
from pyfatfs.PyFatFS import PyFatFS

from spencer_build.fat32 import FileSystem, format_volume
from spencer_build.image import (
    BOOTLOADER_ENTRY,
    INIT_ENTRY,
    KERNEL_ENTRY,
    assemble_image,
    plan_image,
)

MIB = 1024 * 1024
STAMP = datetime(2024, 5, 17, 12, 30, 44)

PAYLOADS = {
    "bootloader_efi": b"MZ" + bytes(range(256)) * 40,
    "nun_init": b"\x7fELF-init" + b"\x5a" * 70_001,
    "kernel_elf": b"\x7fELF-kernel" + bytes(reversed(range(256))) * 900,
}
ENTRY_NAMES = {
    "bootloader_efi": BOOTLOADER_ENTRY,
    "nun_init": INIT_ENTRY,
    "kernel_elf": KERNEL_ENTRY,
}


@pytest.fixture
def image(tmp_path: Path) -> Path:
    """A default 64 MiB image holding the three boot artifacts."""
    sources = {}
    for name, data in PAYLOADS.items():
        sources[name] = tmp_path / f"{name}.bin"
        sources[name].write_bytes(data)
    plan = plan_image(tmp_path / "out" / "spencer.img", sources)
    assemble_image(plan, timestamp=STAMP)
    return plan.image_path


def long_name(index: int) -> str:
    return f"Nun service log entry {index:03d}.json"


@pytest.fixture
def crowded_image(tmp_path: Path) -> tuple[Path, dict[str, bytes]]:
    """A volume with many long-named files, every third removed and recreated."""
    path = tmp_path / "crowded.img"
    path.write_bytes(bytes(64 * MIB))
    expected: dict[str, bytes] = {}

    with path.open("r+b") as stream:
        format_volume(stream, 64 * MIB, label="SPENCER")
        with FileSystem(stream, timestamp=STAMP) as fs:
            logs = fs.root_dir().ensure_dir("service logs")
            for index in range(60):
                data = f"first {index}\n".encode() * (index + 1)
                logs.create_file(long_name(index), io.BytesIO(data))
                expected[long_name(index)] = data
            for index in range(0, 60, 3):
                logs.remove(long_name(index))
            for index in range(0, 60, 3):
                data = f"second {index}\n".encode() * 700
                logs.create_file(long_name(index), io.BytesIO(data))
                expected[long_name(index)] = data

    return path, expected


class TestPyFatFsReader:
    """Test assembled images against pyfatfs."""

    def test_fat32_volume(self, image: Path) -> None:
        assert image.stat().st_size == 67108864
        fs = PyFatFS(str(image), read_only=True)
        try:
            assert fs.fs.fat_type == 32
            assert sorted(fs.listdir("/")) == ["EFI", "kernel"]
            assert fs.listdir("/EFI") == ["BOOT"]
            assert sorted(fs.listdir("/kernel")) == ["init.elf", "kernel.elf"]
        finally:
            fs.close()

    def test_byte_exact_entries(self, image: Path) -> None:
        fs = PyFatFS(str(image), read_only=True)
        try:
            for name, in_volume_path in ENTRY_NAMES.items():
                assert fs.readbytes(in_volume_path) == PAYLOADS[name]
        finally:
            fs.close()

    def test_long_names_after_remove_and_recreate(
        self, crowded_image: tuple[Path, dict[str, bytes]]
    ) -> None:
        path, expected = crowded_image
        fs = PyFatFS(str(path), read_only=True)
        try:
            assert sorted(fs.listdir("/service logs")) == sorted(expected)
            for name, data in expected.items():
                assert fs.readbytes(f"/service logs/{name}") == data
        finally:
            fs.close()


@pytest.mark.skipif(shutil.which("mtype") is None, reason="mtools not installed")
class TestMtoolsReader:
    """Test assembled images against mtools, when available."""

    def test_byte_exact_entries(self, image: Path) -> None:
        env = {**os.environ, "MTOOLS_SKIP_CHECK": "1"}
        for name, in_volume_path in ENTRY_NAMES.items():
            completed = subprocess.run(
                ["mtype", "-i", str(image), f"::{in_volume_path}"],
                capture_output=True,
                check=True,
                env=env,
            )
            assert completed.stdout == PAYLOADS[name]
