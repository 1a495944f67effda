"""Tests for shared enum types."""

from spencer_build.types import Arch, ExecutionMode, Platform, Profile, StepStatus


class TestEnums:
    """Enum values are the strings used in paths and JSON."""

    def test_arch_values(self) -> None:
        assert [a.value for a in Arch] == ["x86_64", "aarch64", "riscv64"]

    def test_platform_values(self) -> None:
        assert [p.value for p in Platform] == ["qemu"]

    def test_enums_are_strings(self) -> None:
        """Enums should compare equal to their string values."""
        assert Arch.X86_64 == "x86_64"
        assert Profile.RELEASE == "release"
        assert StepStatus.DONE == "done"


class TestFlagMapping:
    """Test mapping of CLI toggles onto enums."""

    def test_profile_from_release_flag(self) -> None:
        assert Profile.from_release_flag(True) is Profile.RELEASE
        assert Profile.from_release_flag(False) is Profile.DEBUG

    def test_mode_from_dry_run_flag(self) -> None:
        assert ExecutionMode.from_dry_run_flag(True) is ExecutionMode.PLAN
        assert ExecutionMode.from_dry_run_flag(False) is ExecutionMode.EXECUTE
