"""A9N kernel stage.

Configures, builds and installs the kernel with CMake. The install prefix
is the canonical kernel directory, so CMake writes there directly and no
mirror step is needed. The per-configuration build tree lives under
``A9N/build/<arch>-<platform>-<profile>`` so configurations never share
CMake caches.
"""

from __future__ import annotations

from spencer_build.config import Settings
from spencer_build.layout import OutputLayout
from spencer_build.models import ArtifactReference, BuildConfiguration, Command
from spencer_build.stages.base import RequiredInput, StageDefinition, StagePlan
from spencer_build.types import Arch, Profile

SOURCE_DIR = "A9N"
KERNEL_BINARY_NAME = "kernel.elf"

# Every architecture ships a toolchain file under src/hal/<arch>/
KERNEL_ARCHES: dict[Arch, str] = {arch: arch.value for arch in Arch}

CMAKE_BUILD_TYPES: dict[Profile, str] = {
    Profile.DEBUG: "Debug",
    Profile.RELEASE: "Release",
}


def plan_kernel(
    config: BuildConfiguration,
    layout: OutputLayout,
    settings: Settings,
    arch: str,
) -> StagePlan:
    source_dir = layout.root / SOURCE_DIR
    build_dir = source_dir / "build" / config.layout_key
    toolchain_file = source_dir / "src" / "hal" / arch / "toolchain.cmake"
    install_dir = layout.kernel_dir

    configure = Command(
        program=settings.cmake,
        args=(
            "-S",
            ".",
            "-B",
            str(build_dir),
            f"-DARCH={arch}",
            f"-DCMAKE_TOOLCHAIN_FILE={toolchain_file}",
            f"-DCMAKE_BUILD_TYPE={CMAKE_BUILD_TYPES[config.profile]}",
            f"-DCMAKE_INSTALL_PREFIX={install_dir}",
        ),
        cwd=source_dir,
    )
    build = Command(
        program=settings.cmake, args=("--build", str(build_dir)), cwd=source_dir
    )
    install = Command(
        program=settings.cmake, args=("--install", str(build_dir)), cwd=source_dir
    )

    return StagePlan(
        stage="kernel",
        label="A9N",
        commands=[
            ("cmake configure (A9N)", configure),
            ("cmake build (A9N)", build),
            ("cmake install (A9N)", install),
        ],
        native_dir=install_dir,
        destination=install_dir,
        required_inputs=[RequiredInput("toolchain file", toolchain_file)],
        work_dirs=[build_dir],
        artifacts=[
            ArtifactReference(
                name="kernel_elf",
                path=install_dir / KERNEL_BINARY_NAME,
                stage="kernel",
            )
        ],
    )


KERNEL = StageDefinition(
    name="kernel",
    label="A9N",
    targets=KERNEL_ARCHES,
    planner=plan_kernel,
)
