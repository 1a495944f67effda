"""Tests for the canonical output layout."""

import itertools
from pathlib import Path

import pytest

from spencer_build.layout import (
    STAGE_DIRS,
    layout_for,
    layout_key,
    resolve_layout,
)
from spencer_build.models import BuildConfiguration
from spencer_build.types import Arch, Platform, Profile

ROOT = Path("/work/spencer")


class TestLayoutKey:
    """Test the <arch>-<platform>-<profile> naming."""

    def test_debug_key(self) -> None:
        assert layout_key(Arch.X86_64, Platform.QEMU, Profile.DEBUG) == (
            "x86_64-qemu-debug"
        )

    def test_release_key(self) -> None:
        assert layout_key(Arch.RISCV64, Platform.QEMU, Profile.RELEASE) == (
            "riscv64-qemu-release"
        )


class TestResolveLayout:
    """Test resolve_layout."""

    def test_paths_for_x86_64_debug(self) -> None:
        layout = resolve_layout(ROOT, Arch.X86_64, Platform.QEMU, Profile.DEBUG)
        base = ROOT / "out" / "x86_64-qemu-debug"
        assert layout.base_dir == base
        assert layout.bootloader_dir == base / "a9nloader"
        assert layout.kernel_dir == base / "a9n"
        assert layout.nun_target_dir == base / "nun_os_target_dir"
        assert layout.image_path == base / "spencer.img"
        assert layout.firmware_vars_path == base / "OVMF_VARS.fd"

    def test_deterministic(self) -> None:
        """Same inputs always give the same layout."""
        first = resolve_layout(ROOT, Arch.AARCH64, Platform.QEMU, Profile.RELEASE)
        second = resolve_layout(ROOT, Arch.AARCH64, Platform.QEMU, Profile.RELEASE)
        assert first == second

    def test_injective(self) -> None:
        """Distinct triples never share a base directory."""
        combos = list(itertools.product(Arch, Platform, Profile))
        bases = {resolve_layout(ROOT, *combo).base_dir for combo in combos}
        assert len(bases) == len(combos)

    def test_stage_dirs_under_base(self) -> None:
        layout = resolve_layout(ROOT, Arch.X86_64, Platform.QEMU, Profile.DEBUG)
        for stage in STAGE_DIRS:
            assert layout.stage_dir(stage).parent == layout.base_dir

    def test_unknown_stage(self) -> None:
        layout = resolve_layout(ROOT, Arch.X86_64, Platform.QEMU, Profile.DEBUG)
        with pytest.raises(KeyError):
            layout.stage_dir("firmware")

    def test_custom_names(self) -> None:
        layout = resolve_layout(
            ROOT,
            Arch.X86_64,
            Platform.QEMU,
            Profile.DEBUG,
            out_dir_name="build-out",
            image_name="disk.img",
        )
        expected = ROOT / "build-out" / "x86_64-qemu-debug" / "disk.img"
        assert layout.image_path == expected


class TestLayoutFor:
    """Test layout_for with a BuildConfiguration."""

    def test_matches_resolve_layout(self) -> None:
        config = BuildConfiguration(arch=Arch.AARCH64, profile=Profile.RELEASE)
        assert layout_for(ROOT, config) == resolve_layout(
            ROOT, Arch.AARCH64, Platform.QEMU, Profile.RELEASE
        )

    def test_base_dir_name_is_layout_key(self) -> None:
        config = BuildConfiguration(arch=Arch.RISCV64)
        assert layout_for(ROOT, config).base_dir.name == config.layout_key

    def test_pure(self, tmp_path: Path) -> None:
        """Resolving a layout creates nothing on disk."""
        config = BuildConfiguration(arch=Arch.X86_64)
        layout = layout_for(tmp_path, config)
        assert not layout.base_dir.exists()
        assert list(tmp_path.iterdir()) == []
