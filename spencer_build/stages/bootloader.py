"""A9NLoader (UEFI bootloader) stage.

Builds ``a9nloader-rs`` with cargo for a UEFI target triple, then mirrors
cargo's ``target/<triple>/<profile>`` tree into the canonical bootloader
directory. UEFI targets exist for x86_64 and aarch64 only.
"""

from __future__ import annotations

from spencer_build.config import Settings
from spencer_build.layout import OutputLayout
from spencer_build.models import ArtifactReference, BuildConfiguration, Command
from spencer_build.stages.base import StageDefinition, StagePlan, profile_dir_name
from spencer_build.types import Arch

SOURCE_DIR = "a9nloader-rs"
EFI_BINARY_NAME = "a9nloader-rs.efi"

UEFI_TARGETS: dict[Arch, str] = {
    Arch.X86_64: "x86_64-unknown-uefi",
    Arch.AARCH64: "aarch64-unknown-uefi",
}


def plan_bootloader(
    config: BuildConfiguration,
    layout: OutputLayout,
    settings: Settings,
    triple: str,
) -> StagePlan:
    source_dir = layout.root / SOURCE_DIR

    args = ["build", "--target", triple]
    if config.release:
        args.append("--release")
    command = Command(program=settings.cargo, args=tuple(args), cwd=source_dir)

    native_dir = source_dir / "target" / triple / profile_dir_name(config)
    destination = layout.bootloader_dir

    return StagePlan(
        stage="bootloader",
        label="A9NLoader",
        commands=[("cargo build (A9NLoader)", command)],
        native_dir=native_dir,
        destination=destination,
        artifacts=[
            ArtifactReference(
                name="bootloader_efi",
                path=destination / EFI_BINARY_NAME,
                stage="bootloader",
            )
        ],
    )


BOOTLOADER = StageDefinition(
    name="bootloader",
    label="A9NLoader",
    targets=UEFI_TARGETS,
    planner=plan_bootloader,
)
