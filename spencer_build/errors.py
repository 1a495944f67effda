"""Error taxonomy for the build pipeline.

Every failure raised by the pipeline is a PipelineError carrying a stable
``code`` for programmatic handling and a human-readable message naming the
stage, command or path involved. Errors are never recovered locally; they
propagate unchanged in kind to the CLI.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

# Stable error codes
CONFIGURATION_ERROR = "configuration_error"
UNSUPPORTED_TARGET = "unsupported_target"
MISSING_INPUT = "missing_input"
LAUNCH_FAILURE = "launch_failure"
STAGE_FAILED = "stage_failed"
SOURCE_MISSING = "source_missing"
UNSUPPORTED_ENTRY = "unsupported_entry"
COPY_FAILED = "copy_failed"
FORMAT_ERROR = "format_error"
WRITE_ERROR = "write_error"


class PipelineError(Exception):
    """Base exception for all pipeline failures.

    Attributes:
        message: Human-readable message.
        code: Stable error code.
        result: PipelineResult recorded up to the failure, set when the
            error passes through the orchestrator.
    """

    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.result: Any = None


class ConfigurationError(PipelineError):
    """Invalid or unsupported configuration."""

    def __init__(self, message: str, code: str = CONFIGURATION_ERROR) -> None:
        super().__init__(message, code)


class UnsupportedTargetError(ConfigurationError):
    """Architecture or platform not supported by a stage's toolchain."""

    def __init__(self, stage: str, arch: str, platform: str | None = None) -> None:
        target = arch if platform is None else f"{arch}/{platform}"
        super().__init__(
            f"{stage}: unsupported target {target}",
            code=UNSUPPORTED_TARGET,
        )
        self.stage = stage
        self.arch = arch
        self.platform = platform


class MissingInputError(PipelineError):
    """A required input file (manifest, target description) is absent."""

    def __init__(self, stage: str, path: Path, what: str = "input") -> None:
        super().__init__(f"{stage}: {what} not found: {path}", code=MISSING_INPUT)
        self.stage = stage
        self.path = path


class LaunchFailure(PipelineError):
    """An external process could not be spawned."""

    def __init__(self, context: str, error: OSError, command: str = "") -> None:
        super().__init__(f"failed to spawn: {context}: {error}", code=LAUNCH_FAILURE)
        self.context = context
        self.error = error
        self.command = command


class StageExecutionFailure(PipelineError):
    """An external process ran but exited with a non-zero status."""

    def __init__(self, context: str, exit_code: int, command: str = "") -> None:
        super().__init__(
            f"command failed: {context} (exit={exit_code})", code=STAGE_FAILED
        )
        self.context = context
        self.exit_code = exit_code
        self.command = command


class SourceMissingError(PipelineError):
    """An expected artifact or directory is absent after a build."""

    def __init__(self, path: Path, what: str = "source") -> None:
        super().__init__(f"{what} does not exist: {path}", code=SOURCE_MISSING)
        self.path = path


class UnsupportedEntryError(PipelineError):
    """A toolchain output tree holds something other than files and directories."""

    def __init__(self, path: Path, kind: str) -> None:
        super().__init__(
            f"unsupported entry in artifact tree ({kind}): {path}",
            code=UNSUPPORTED_ENTRY,
        )
        self.path = path
        self.kind = kind


class CopyError(PipelineError):
    """Mirroring a toolchain output tree failed part-way."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code=COPY_FAILED)


class ImageError(PipelineError):
    """Base class for disk image construction failures."""


class FormatError(ImageError):
    """The FAT32 volume could not be created or mounted."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code=FORMAT_ERROR)


class WriteError(ImageError):
    """Writing into the FAT32 volume failed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code=WRITE_ERROR)


__all__ = [
    "CONFIGURATION_ERROR",
    "COPY_FAILED",
    "FORMAT_ERROR",
    "LAUNCH_FAILURE",
    "MISSING_INPUT",
    "SOURCE_MISSING",
    "STAGE_FAILED",
    "UNSUPPORTED_ENTRY",
    "UNSUPPORTED_TARGET",
    "WRITE_ERROR",
    "ConfigurationError",
    "CopyError",
    "FormatError",
    "ImageError",
    "LaunchFailure",
    "MissingInputError",
    "PipelineError",
    "SourceMissingError",
    "StageExecutionFailure",
    "UnsupportedEntryError",
    "UnsupportedTargetError",
    "WriteError",
]
