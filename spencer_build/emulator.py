"""QEMU launcher for assembled images.

This module handles:
- Composing the qemu command line for an assembled image
- Preparing a writable per-run copy of the UEFI variables store
- Running the emulator in the foreground through a ProcessInvoker

Only x86_64 guests on the qemu platform are supported. The OVMF code
image is attached read-only; the variables template is copied into the
layout base directory on every run so the firmware can write to it
without touching the checkout.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from spencer_build.config import Settings
from spencer_build.errors import CopyError, MissingInputError, UnsupportedTargetError
from spencer_build.layout import OutputLayout
from spencer_build.models import BuildConfiguration, Command, EmulatorResult
from spencer_build.process import ProcessInvoker
from spencer_build.types import Arch, ExecutionMode, Platform, StepStatus

logger = logging.getLogger(__name__)

EMULATOR_LABEL = "QEMU"


def compose_qemu_command(
    settings: Settings,
    layout: OutputLayout,
    ovmf_code: Path,
    vars_copy: Path,
    *,
    gdb: bool = False,
    stop: bool = False,
) -> Command:
    """Build the qemu command line.

    Args:
        settings: Emulator settings (executable, memory, CPU, ports).
        layout: Output layout holding the image.
        ovmf_code: Read-only firmware code image.
        vars_copy: Writable firmware variables copy.
        gdb: Open a gdb server on tcp::1234 (``-s``).
        stop: Freeze the CPU at startup (``-S``).

    Returns:
        Command running qemu with cwd at the layout base directory.
    """
    args = [
        "-m",
        settings.qemu_memory,
        "-cpu",
        settings.qemu_cpu,
        "-net",
        "none",
        "-serial",
        "mon:stdio",
        "-drive",
        f"if=pflash,format=raw,readonly=on,file={ovmf_code}",
        "-drive",
        f"if=pflash,format=raw,file={vars_copy}",
        "-drive",
        f"format=raw,file={layout.image_path}",
        "-netdev",
        (
            "user,id=net0,hostfwd=tcp:127.0.0.1:"
            f"{settings.qemu_host_port}-:{settings.qemu_guest_port}"
        ),
        "-device",
        "e1000,netdev=net0",
    ]
    if gdb:
        args.append("-s")
    if stop:
        args.append("-S")
    return Command(program=settings.qemu_x86_64, args=tuple(args), cwd=layout.base_dir)


def validate_target(config: BuildConfiguration) -> None:
    """Reject configurations the emulator cannot boot.

    Raises:
        UnsupportedTargetError: Not an x86_64/qemu configuration.
    """
    if config.arch is not Arch.X86_64 or config.platform is not Platform.QEMU:
        raise UnsupportedTargetError(
            EMULATOR_LABEL, config.arch.value, config.platform.value
        )


def run_emulator(
    config: BuildConfiguration,
    settings: Settings,
    layout: OutputLayout,
    invoker: ProcessInvoker,
    *,
    gdb: bool = False,
    stop: bool = False,
) -> EmulatorResult:
    """Boot the assembled image under qemu and wait for it to exit.

    Args:
        config: Build configuration (must be x86_64/qemu).
        settings: Effective settings.
        layout: Output layout holding the image.
        invoker: Process invoker.
        gdb: Enable the gdb server.
        stop: Freeze the CPU at startup.

    Returns:
        EmulatorResult with status PLANNED or DONE.

    Raises:
        UnsupportedTargetError: Not an x86_64/qemu configuration.
        MissingInputError: Firmware or image file is absent.
        CopyError: The variables template could not be copied.
        LaunchFailure: qemu could not be started.
        StageExecutionFailure: qemu exited non-zero.
    """
    validate_target(config)

    ovmf_code = settings.resolve_repo_path(settings.ovmf_code_path)
    ovmf_vars = settings.resolve_repo_path(settings.ovmf_vars_path)
    vars_copy = layout.firmware_vars_path
    command = compose_qemu_command(
        settings, layout, ovmf_code, vars_copy, gdb=gdb, stop=stop
    )
    result = EmulatorResult(
        status=StepStatus.VALIDATED,
        command=command.render(),
        firmware_vars=str(vars_copy),
    )

    if config.mode is ExecutionMode.PLAN:
        logger.info("[dry-run] copy %s -> %s", ovmf_vars, vars_copy)
        logger.info("[dry-run] %s", command.render())
        result.status = StepStatus.PLANNED
        return result

    for description, path in (
        ("firmware code", ovmf_code),
        ("firmware variables template", ovmf_vars),
        ("disk image", layout.image_path),
    ):
        if not path.is_file():
            raise MissingInputError(EMULATOR_LABEL, path, description)

    try:
        layout.base_dir.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(ovmf_vars, vars_copy)
    except OSError as e:
        raise CopyError(f"copy {ovmf_vars} -> {vars_copy}: {e}") from e
    logger.debug("Copied firmware variables to %s", vars_copy)

    invoker.run(command, "qemu", verbose=config.verbose)
    result.status = StepStatus.DONE
    return result


__all__ = [
    "EMULATOR_LABEL",
    "compose_qemu_command",
    "run_emulator",
    "validate_target",
]
