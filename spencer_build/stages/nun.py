"""Nun (init server) stage.

Builds the ``core`` crate against a custom ``<arch>-unknown-a9n`` target
description. CARGO_TARGET_DIR points at the canonical nun directory, so
cargo writes there directly. Custom targets have no prebuilt standard
library; by default the build uses a nightly toolchain with
``-Z build-std``.
"""

from __future__ import annotations

from spencer_build.config import Settings
from spencer_build.layout import OutputLayout
from spencer_build.models import ArtifactReference, BuildConfiguration, Command
from spencer_build.stages.base import (
    RequiredInput,
    StageDefinition,
    StagePlan,
    profile_dir_name,
)
from spencer_build.types import Arch

CRATE_DIR = "core"
TARGET_SPEC_DIR = "Nun/arch"
INIT_BINARY_NAME = "core"

NUN_TARGETS: dict[Arch, str] = {arch: f"{arch.value}-unknown-a9n" for arch in Arch}

BUILD_STD_FLAGS = (
    "-Z",
    "build-std=core,alloc,compiler_builtins",
    "-Z",
    "build-std-features=compiler-builtins-mem",
)


def plan_nun(
    config: BuildConfiguration,
    layout: OutputLayout,
    settings: Settings,
    target: str,
) -> StagePlan:
    crate_dir = layout.root / CRATE_DIR
    manifest = crate_dir / "Cargo.toml"
    target_spec = layout.root / TARGET_SPEC_DIR / f"{target}.json"
    target_dir = layout.nun_target_dir

    args: list[str] = []
    if settings.nun_nightly_build_std:
        args.append("+nightly")
    args += ["build", "--manifest-path", str(manifest), "--target", str(target_spec)]
    if config.release:
        args.append("--release")
    if settings.nun_nightly_build_std:
        args += BUILD_STD_FLAGS

    command = Command(
        program=settings.cargo,
        args=tuple(args),
        cwd=crate_dir,
        env={"CARGO_TARGET_DIR": str(target_dir)},
    )

    return StagePlan(
        stage="nun",
        label="Nun",
        commands=[("cargo build (Nun)", command)],
        native_dir=target_dir,
        destination=target_dir,
        required_inputs=[
            RequiredInput("manifest", manifest),
            RequiredInput("target description", target_spec),
        ],
        artifacts=[
            ArtifactReference(
                name="nun_init",
                path=target_dir / target / profile_dir_name(config) / INIT_BINARY_NAME,
                stage="nun",
            )
        ],
    )


NUN = StageDefinition(
    name="nun",
    label="Nun",
    targets=NUN_TARGETS,
    planner=plan_nun,
)
