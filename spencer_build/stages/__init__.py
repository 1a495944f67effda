"""Toolchain stages, in pipeline order."""

from spencer_build.stages.base import (
    RequiredInput,
    StageDefinition,
    StagePlan,
    execute_stage,
    plan_stage,
    stage_record,
)
from spencer_build.stages.bootloader import BOOTLOADER
from spencer_build.stages.kernel import KERNEL
from spencer_build.stages.nun import NUN

STAGES: tuple[StageDefinition, ...] = (BOOTLOADER, KERNEL, NUN)

__all__ = [
    "BOOTLOADER",
    "KERNEL",
    "NUN",
    "STAGES",
    "RequiredInput",
    "StageDefinition",
    "StagePlan",
    "execute_stage",
    "plan_stage",
    "stage_record",
]
