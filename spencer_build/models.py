"""Data model for the build pipeline.

BuildConfiguration is the immutable input flowing into every component.
Command and ArtifactReference are plain value objects produced while
planning. The *Result models record what each pipeline step did and are
what the CLI renders (human-readable or ``--json``).
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from spencer_build.types import Arch, ExecutionMode, Platform, Profile, StepStatus


class BuildConfiguration(BaseModel):
    """One requested build.

    Attributes:
        arch: Target architecture.
        platform: Target platform.
        profile: Optimization profile.
        verbose: Echo external commands before running them.
        mode: Plan (dry-run) or execute.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    arch: Arch
    platform: Platform = Platform.QEMU
    profile: Profile = Profile.DEBUG
    verbose: bool = False
    mode: ExecutionMode = ExecutionMode.EXECUTE

    @property
    def release(self) -> bool:
        """True for release builds."""
        return self.profile is Profile.RELEASE

    @property
    def dry_run(self) -> bool:
        """True when only planning."""
        return self.mode is ExecutionMode.PLAN

    @property
    def layout_key(self) -> str:
        """The ``<arch>-<platform>-<profile>`` output directory name."""
        return f"{self.arch.value}-{self.platform.value}-{self.profile.value}"


@dataclass(frozen=True)
class Command:
    """A fully constructed external command.

    Attributes:
        program: Executable name or path.
        args: Arguments, not including the program.
        cwd: Working directory (None = inherit).
        env: Environment overrides merged onto the current environment.
            Compared for equality but left out of the hash.
    """

    program: str
    args: tuple[str, ...] = ()
    cwd: Path | None = None
    env: dict[str, str] = field(default_factory=dict, hash=False)

    @property
    def argv(self) -> list[str]:
        """Program followed by its arguments."""
        return [self.program, *self.args]

    def render(self) -> str:
        """Render as a copy-pasteable shell line, env overrides first."""
        prefix = " ".join(f"{k}={shlex.quote(v)}" for k, v in sorted(self.env.items()))
        line = shlex.join(self.argv)
        return f"{prefix} {line}" if prefix else line


@dataclass(frozen=True)
class ArtifactReference:
    """A logical artifact name paired with its host path.

    Each reference is produced by exactly one stage and never mutated.
    """

    name: str
    path: Path
    stage: str


class StageResult(BaseModel):
    """Outcome of one toolchain stage."""

    stage: str
    label: str
    status: StepStatus = StepStatus.NOT_STARTED
    commands: list[str] = Field(default_factory=list)
    native_dir: str | None = None
    destination: str | None = None
    artifacts: dict[str, str] = Field(default_factory=dict)
    missing_inputs: list[str] = Field(default_factory=list)
    files_copied: int = 0
    duration_seconds: float | None = None
    error_code: str | None = None
    error_message: str | None = None


class ImageResult(BaseModel):
    """Outcome of disk image assembly."""

    status: StepStatus = StepStatus.NOT_STARTED
    image_path: str
    size_bytes: int
    entries: dict[str, str] = Field(default_factory=dict)
    error_code: str | None = None
    error_message: str | None = None


class EmulatorResult(BaseModel):
    """Outcome of an emulator run."""

    status: StepStatus = StepStatus.NOT_STARTED
    command: str | None = None
    firmware_vars: str | None = None
    error_code: str | None = None
    error_message: str | None = None


class PipelineResult(BaseModel):
    """Outcome of a whole pipeline invocation.

    ``failed_step`` names the first step that failed; all steps after it
    are absent (fail-fast).
    """

    configuration: BuildConfiguration
    base_dir: str
    success: bool = False
    stages: list[StageResult] = Field(default_factory=list)
    image: ImageResult | None = None
    emulator: EmulatorResult | None = None
    failed_step: str | None = None


__all__ = [
    "ArtifactReference",
    "BuildConfiguration",
    "Command",
    "EmulatorResult",
    "ImageResult",
    "PipelineResult",
    "StageResult",
]
