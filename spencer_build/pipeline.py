"""Build pipeline orchestration.

This module handles:
- Running the toolchain stages in order (bootloader, kernel, nun)
- Threading each stage's artifact references into image assembly
- Optionally booting the result under the emulator
- Recording per-step outcomes in a PipelineResult

The pipeline is fail-fast: the first error stops every later step, is
recorded on the result, and is re-raised unchanged in kind with the
result attached as ``error.result``. Partial outputs are left in place.
"""

from __future__ import annotations

import logging

from spencer_build.config import Settings
from spencer_build.emulator import run_emulator, validate_target
from spencer_build.errors import PipelineError
from spencer_build.image import MIB, ImagePlan, assemble_image, plan_image
from spencer_build.layout import OutputLayout, layout_for
from spencer_build.models import (
    ArtifactReference,
    BuildConfiguration,
    EmulatorResult,
    ImageResult,
    PipelineResult,
    StageResult,
)
from spencer_build.process import ProcessInvoker, SubprocessInvoker
from spencer_build.stages import (
    STAGES,
    StagePlan,
    execute_stage,
    plan_stage,
    stage_record,
)
from spencer_build.types import StepStatus

logger = logging.getLogger(__name__)

IMAGE_STEP = "image"
EMULATOR_STEP = "emulator"


def _fail(
    result: PipelineResult,
    step: str,
    record: StageResult | ImageResult | EmulatorResult,
    error: PipelineError,
) -> None:
    record.status = StepStatus.FAILED
    record.error_code = error.code
    record.error_message = error.message
    result.failed_step = step
    result.success = False
    error.result = result
    logger.error("%s failed: %s", step, error.message)


def resolve_pipeline_layout(
    config: BuildConfiguration, settings: Settings
) -> OutputLayout:
    """Output layout for ``config`` under the settings' repo root."""
    return layout_for(
        settings.repo_root,
        config,
        out_dir_name=settings.out_dir_name,
        image_name=settings.image_name,
    )


def run_build_pipeline(
    config: BuildConfiguration,
    settings: Settings,
    invoker: ProcessInvoker | None = None,
) -> PipelineResult:
    """Build all stages and assemble the disk image.

    Args:
        config: Requested build.
        settings: Effective settings.
        invoker: Process invoker (default: SubprocessInvoker).

    Returns:
        PipelineResult with success=True.

    Raises:
        PipelineError: The first failure, with ``.result`` set.
    """
    if invoker is None:
        invoker = SubprocessInvoker()

    layout = resolve_pipeline_layout(config, settings)
    result = PipelineResult(configuration=config, base_dir=str(layout.base_dir))
    artifacts: dict[str, ArtifactReference] = {}

    logger.info(
        "Building %s (%s) into %s",
        config.layout_key,
        config.mode.value,
        layout.base_dir,
    )

    for definition in STAGES:
        logger.info("==> %s", definition.label)
        plan: StagePlan | None = None
        try:
            plan = plan_stage(definition, config, layout, settings)
            stage_result = execute_stage(
                plan, config.mode, invoker, verbose=config.verbose
            )
        except PipelineError as e:
            if plan is None:
                failed = StageResult(stage=definition.name, label=definition.label)
            else:
                failed = stage_record(plan)
            result.stages.append(failed)
            _fail(result, definition.name, failed, e)
            raise
        result.stages.append(stage_result)
        for artifact in plan.artifacts:
            artifacts[artifact.name] = artifact

    logger.info("==> image")
    image_plan: ImagePlan | None = None
    try:
        image_plan = plan_image(
            layout.image_path,
            {name: ref.path for name, ref in artifacts.items()},
            size_mib=settings.image_size_mib,
            label=settings.volume_label,
        )
        result.image = assemble_image(image_plan, config.mode)
    except PipelineError as e:
        result.image = ImageResult(
            image_path=str(layout.image_path),
            size_bytes=settings.image_size_mib * MIB,
        )
        if image_plan is not None:
            result.image.entries = {k: str(v) for k, v in image_plan.files.items()}
        _fail(result, IMAGE_STEP, result.image, e)
        raise

    result.success = True
    return result


def run_pipeline_and_emulator(
    config: BuildConfiguration,
    settings: Settings,
    invoker: ProcessInvoker | None = None,
    *,
    gdb: bool = False,
    stop: bool = False,
) -> PipelineResult:
    """Build everything, then boot the image under qemu.

    The emulator target is checked before any stage runs. An emulator
    failure marks the run unsuccessful but leaves the image result intact.

    Args:
        config: Requested build.
        settings: Effective settings.
        invoker: Process invoker (default: SubprocessInvoker).
        gdb: Enable qemu's gdb server.
        stop: Freeze the guest CPU at startup.

    Returns:
        PipelineResult with success=True.

    Raises:
        PipelineError: The first failure, with ``.result`` set.
    """
    if invoker is None:
        invoker = SubprocessInvoker()

    layout = resolve_pipeline_layout(config, settings)
    try:
        validate_target(config)
    except PipelineError as e:
        result = PipelineResult(configuration=config, base_dir=str(layout.base_dir))
        result.emulator = EmulatorResult()
        _fail(result, EMULATOR_STEP, result.emulator, e)
        raise

    result = run_build_pipeline(config, settings, invoker)

    logger.info("==> emulator")
    try:
        result.emulator = run_emulator(
            config, settings, layout, invoker, gdb=gdb, stop=stop
        )
    except PipelineError as e:
        result.emulator = EmulatorResult()
        _fail(result, EMULATOR_STEP, result.emulator, e)
        raise

    return result


__all__ = [
    "EMULATOR_STEP",
    "IMAGE_STEP",
    "resolve_pipeline_layout",
    "run_build_pipeline",
    "run_pipeline_and_emulator",
]
