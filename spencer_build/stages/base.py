"""Generic stage machinery.

A stage is one external toolchain invocation plus an optional mirror of
the toolchain's native output into the canonical layout. Each concrete
stage is a StageDefinition entry: which targets it supports and a planner
that turns a configuration into a StagePlan. Everything else (validation,
dry-run reporting, input checks, directory creation, process invocation,
artifact mirroring) is shared and lives here, so plan and execute modes
walk the same code path:

    plan_stage():    not_started -> validated -> StagePlan
    execute_stage(): PLAN    -> planned
                     EXECUTE -> built -> copied -> done
    any failure:     raises a PipelineError (the caller records FAILED)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from spencer_build.config import Settings
from spencer_build.copier import mirror_tree
from spencer_build.errors import CopyError, MissingInputError, UnsupportedTargetError
from spencer_build.layout import OutputLayout
from spencer_build.models import (
    ArtifactReference,
    BuildConfiguration,
    Command,
    StageResult,
)
from spencer_build.process import ProcessInvoker
from spencer_build.types import Arch, ExecutionMode, Platform, StepStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequiredInput:
    """A file that must exist before the toolchain runs."""

    description: str
    path: Path


@dataclass
class StagePlan:
    """Everything a stage will do for one configuration.

    Attributes:
        stage: Stage name (key into the layout's stage directories).
        label: Human-readable stage label.
        commands: (context label, command) pairs, run in order.
        native_dir: Where the toolchain writes its output.
        destination: Canonical destination directory.
        required_inputs: Files that must exist before running.
        work_dirs: Extra directories to create before running.
        artifacts: Artifact references this stage produces.
    """

    stage: str
    label: str
    commands: list[tuple[str, Command]]
    native_dir: Path
    destination: Path
    required_inputs: list[RequiredInput] = field(default_factory=list)
    work_dirs: list[Path] = field(default_factory=list)
    artifacts: list[ArtifactReference] = field(default_factory=list)

    @property
    def needs_mirror(self) -> bool:
        """True when the toolchain does not write into the canonical layout."""
        return self.native_dir != self.destination

    def missing_inputs(self) -> list[RequiredInput]:
        return [item for item in self.required_inputs if not item.path.is_file()]


Planner = Callable[[BuildConfiguration, OutputLayout, Settings, str], StagePlan]


@dataclass(frozen=True)
class StageDefinition:
    """Declarative description of a stage.

    Attributes:
        name: Stage name.
        label: Human-readable label used in logs and errors.
        targets: Supported architecture -> toolchain target identifier.
        planner: Builds the StagePlan given the resolved target identifier.
        platforms: Supported platforms.
    """

    name: str
    label: str
    targets: Mapping[Arch, str]
    planner: Planner
    platforms: frozenset[Platform] = frozenset({Platform.QEMU})

    def validate(self, config: BuildConfiguration) -> str:
        """Return the toolchain target for ``config``.

        Raises:
            UnsupportedTargetError: The stage cannot build this target.
        """
        if config.platform not in self.platforms:
            raise UnsupportedTargetError(
                self.label, config.arch.value, config.platform.value
            )
        target = self.targets.get(config.arch)
        if target is None:
            raise UnsupportedTargetError(self.label, config.arch.value)
        return target


def plan_stage(
    definition: StageDefinition,
    config: BuildConfiguration,
    layout: OutputLayout,
    settings: Settings,
) -> StagePlan:
    """Validate ``config`` against the stage and compute its plan.

    Pure: touches neither the filesystem nor any process.

    Raises:
        UnsupportedTargetError: Unsupported architecture or platform.
    """
    target = definition.validate(config)
    logger.debug("%s: validated target %s", definition.label, target)
    return definition.planner(config, layout, settings, target)


def _report_plan(plan: StagePlan) -> None:
    for context, command in plan.commands:
        logger.info("[dry-run] %s", context)
        logger.info("[dry-run]   %s", command.render())
        if command.cwd is not None:
            logger.info("[dry-run]   dir: %s", command.cwd)
    logger.info("[dry-run] produced_dir: %s", plan.native_dir)
    logger.info("[dry-run] out_dir: %s", plan.destination)
    for artifact in plan.artifacts:
        logger.info("[dry-run] artifact %s: %s", artifact.name, artifact.path)
    for item in plan.missing_inputs():
        logger.warning("[dry-run] %s not found: %s", item.description, item.path)


def stage_record(plan: StagePlan) -> StageResult:
    """A VALIDATED StageResult carrying the plan's commands, paths and artifacts."""
    return StageResult(
        stage=plan.stage,
        label=plan.label,
        status=StepStatus.VALIDATED,
        commands=[command.render() for _, command in plan.commands],
        native_dir=str(plan.native_dir),
        destination=str(plan.destination),
        artifacts={a.name: str(a.path) for a in plan.artifacts},
    )


def execute_stage(
    plan: StagePlan,
    mode: ExecutionMode,
    invoker: ProcessInvoker,
    *,
    verbose: bool = False,
) -> StageResult:
    """Run (or, in PLAN mode, report) a planned stage.

    Args:
        plan: Plan from :func:`plan_stage`.
        mode: PLAN reports only; EXECUTE builds and mirrors.
        invoker: Process invoker used for every command.
        verbose: Echo commands before running them.

    Returns:
        StageResult with status PLANNED or DONE.

    Raises:
        MissingInputError: A required input file is absent.
        LaunchFailure: A toolchain could not be started.
        StageExecutionFailure: A toolchain exited non-zero.
        SourceMissingError: The toolchain did not produce its output tree.
        UnsupportedEntryError: The output tree holds a symlink or special file.
        CopyError: Creating directories or copying artifacts failed.
    """
    started = time.monotonic()
    result = stage_record(plan)

    if mode is ExecutionMode.PLAN:
        _report_plan(plan)
        result.missing_inputs = [str(item.path) for item in plan.missing_inputs()]
        result.status = StepStatus.PLANNED
        result.duration_seconds = time.monotonic() - started
        return result

    missing = plan.missing_inputs()
    if missing:
        raise MissingInputError(plan.label, missing[0].path, missing[0].description)

    try:
        for directory in [plan.destination, *plan.work_dirs]:
            directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise CopyError(f"{plan.label}: create directory: {e}") from e

    for context, command in plan.commands:
        invoker.run(command, context, verbose=verbose)
    result.status = StepStatus.BUILT

    if plan.needs_mirror:
        report = mirror_tree(plan.native_dir, plan.destination)
        result.files_copied = len(report.files)
        result.status = StepStatus.COPIED
        logger.debug(
            "%s: copied %d files %s -> %s",
            plan.label,
            len(report.files),
            plan.native_dir,
            plan.destination,
        )

    result.status = StepStatus.DONE
    result.duration_seconds = time.monotonic() - started
    logger.info("%s: done (%s)", plan.label, plan.destination)
    return result


def profile_dir_name(config: BuildConfiguration) -> str:
    """Toolchain profile directory name (``debug`` or ``release``)."""
    return config.profile.value


__all__ = [
    "Planner",
    "RequiredInput",
    "StageDefinition",
    "StagePlan",
    "execute_stage",
    "plan_stage",
    "profile_dir_name",
    "stage_record",
]
