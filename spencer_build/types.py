"""Shared type definitions for spencer_build.

This module contains enums shared across subpackages to avoid circular
imports.
"""

from enum import Enum


class Arch(str, Enum):
    """Target CPU architecture."""

    X86_64 = "x86_64"
    AARCH64 = "aarch64"
    RISCV64 = "riscv64"


class Platform(str, Enum):
    """Target platform."""

    QEMU = "qemu"


class Profile(str, Enum):
    """Optimization profile."""

    DEBUG = "debug"
    RELEASE = "release"

    @classmethod
    def from_release_flag(cls, release: bool) -> "Profile":
        """Map a --release toggle to a profile."""
        return cls.RELEASE if release else cls.DEBUG


class ExecutionMode(str, Enum):
    """Whether a component only plans its work or actually performs it."""

    PLAN = "plan"
    EXECUTE = "execute"

    @classmethod
    def from_dry_run_flag(cls, dry_run: bool) -> "ExecutionMode":
        """Map a --dry-run toggle to an execution mode."""
        return cls.PLAN if dry_run else cls.EXECUTE


class StepStatus(str, Enum):
    """Status of a pipeline step (stage, image assembly, emulator run)."""

    NOT_STARTED = "not_started"
    VALIDATED = "validated"
    PLANNED = "planned"
    BUILT = "built"
    COPIED = "copied"
    DONE = "done"
    FAILED = "failed"


__all__ = [
    "Arch",
    "ExecutionMode",
    "Platform",
    "Profile",
    "StepStatus",
]
