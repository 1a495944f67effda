"""Thin CLI wrapper for spencer_build.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from spencer_build import __version__
from spencer_build.config import Settings, get_settings, print_settings_json
from spencer_build.errors import (
    LaunchFailure,
    MissingInputError,
    PipelineError,
    SourceMissingError,
    StageExecutionFailure,
    UnsupportedEntryError,
)
from spencer_build.image import inspect_image
from spencer_build.models import BuildConfiguration, PipelineResult
from spencer_build.pipeline import run_build_pipeline, run_pipeline_and_emulator
from spencer_build.types import Arch, ExecutionMode, Platform, Profile, StepStatus

app = typer.Typer(
    name="spencer",
    help="Spencer build tool - build A9NLoader, A9N and Nun, assemble the "
    "boot image and run it under QEMU",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"spencer-build version {__version__}")
        raise typer.Exit()


def setup_logging(level: str) -> None:
    """Send package logs to stderr through Rich at ``level``."""
    package_logger = logging.getLogger("spencer_build")
    package_logger.setLevel(level)
    if not any(isinstance(h, RichHandler) for h in package_logger.handlers):
        package_logger.addHandler(
            RichHandler(console=err_console, show_path=False, markup=False)
        )


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Spencer build tool - build, assemble and boot the Spencer OS image."""


ArchOption = Annotated[
    Arch,
    typer.Option("--arch", "-a", help="Target architecture", case_sensitive=False),
]
PlatformOption = Annotated[
    Platform,
    typer.Option("--platform", "-p", help="Target platform", case_sensitive=False),
]
ReleaseOption = Annotated[
    bool,
    typer.Option("--release", help="Build with the release profile"),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Echo commands and enable debug logging"),
]
DryRunOption = Annotated[
    bool,
    typer.Option("--dry-run", help="Print what would run without running it"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]
RootOption = Annotated[
    Path | None,
    typer.Option(
        "--root",
        help="Spencer source checkout (default: SPENCER_REPO_ROOT or cwd)",
        file_okay=False,
    ),
]


def _prepare(
    arch: Arch,
    platform: Platform,
    release: bool,
    verbose: bool,
    dry_run: bool,
    json_output: bool,
    root: Path | None,
) -> tuple[BuildConfiguration, Settings]:
    settings = get_settings()
    if root is not None:
        settings = settings.model_copy(update={"repo_root": root.resolve()})

    if verbose:
        setup_logging("DEBUG")
    elif json_output:
        # Failures are carried in the JSON document itself
        setup_logging("CRITICAL")
    else:
        setup_logging(settings.log_level)

    config = BuildConfiguration(
        arch=arch,
        platform=platform,
        profile=Profile.from_release_flag(release),
        verbose=verbose,
        mode=ExecutionMode.from_dry_run_flag(dry_run),
    )
    return config, settings


def _print_summary(result: PipelineResult) -> None:
    config = result.configuration
    console.print(f"[bold]{config.layout_key}[/bold] ({config.mode.value})")
    console.print(f"  Output: {escape(result.base_dir)}")
    for stage in result.stages:
        if stage.status is StepStatus.FAILED:
            console.print(f"  [red]✗ {stage.label}[/red]")
            continue
        console.print(f"  [green]✓ {stage.label}: {stage.status.value}[/green]")
        for name, path in stage.artifacts.items():
            console.print(f"      {name}: {escape(path)}")
        for missing in stage.missing_inputs:
            console.print(f"      [yellow]missing: {escape(missing)}[/yellow]")
    if result.image is not None and result.image.status is not StepStatus.FAILED:
        console.print(
            f"  [green]✓ image: {result.image.status.value}[/green] "
            f"{escape(result.image.image_path)}"
        )
    if result.emulator is not None and result.emulator.status is not StepStatus.FAILED:
        console.print(f"  [green]✓ emulator: {result.emulator.status.value}[/green]")


def _print_failure(error: PipelineError, json_output: bool) -> None:
    result = error.result
    if json_output and result is not None:
        console.print_json(result.model_dump_json())
        return

    if result is not None and result.failed_step:
        console.print(f"[red]Failed step: {result.failed_step}[/red]")
    console.print(f"[red]Error: {escape(error.message)}[/red]")
    if isinstance(error, (StageExecutionFailure, LaunchFailure)) and error.command:
        console.print(f"  Command: {escape(error.command)}")
    if isinstance(error, StageExecutionFailure):
        console.print(f"  Exit status: {error.exit_code}")
    path_errors = (MissingInputError, SourceMissingError, UnsupportedEntryError)
    if isinstance(error, path_errors):
        console.print(f"  Path: {escape(str(error.path))}")


@app.command()
def build(
    arch: ArchOption,
    platform: PlatformOption,
    release: ReleaseOption = False,
    verbose: VerboseOption = False,
    dry_run: DryRunOption = False,
    json_output: JsonOption = False,
    root: RootOption = None,
) -> None:
    """Build all components and assemble the disk image.

    Runs A9NLoader, A9N and Nun in order, then writes the FAT32 image to
    out/<arch>-<platform>-<profile>/spencer.img.
    """
    config, settings = _prepare(
        arch, platform, release, verbose, dry_run, json_output, root
    )
    try:
        result = run_build_pipeline(config, settings)
    except PipelineError as e:
        _print_failure(e, json_output)
        raise typer.Exit(code=1) from None

    if json_output:
        console.print_json(result.model_dump_json())
    else:
        _print_summary(result)


@app.command()
def run(
    arch: ArchOption,
    platform: PlatformOption,
    release: ReleaseOption = False,
    verbose: VerboseOption = False,
    dry_run: DryRunOption = False,
    json_output: JsonOption = False,
    root: RootOption = None,
    gdb: Annotated[
        bool,
        typer.Option("--gdb", help="Start QEMU's gdb server on tcp::1234"),
    ] = False,
    stop: Annotated[
        bool,
        typer.Option("--stop", help="Freeze the guest CPU at startup"),
    ] = False,
) -> None:
    """Build everything, then boot the image under QEMU."""
    config, settings = _prepare(
        arch, platform, release, verbose, dry_run, json_output, root
    )
    try:
        result = run_pipeline_and_emulator(config, settings, gdb=gdb, stop=stop)
    except PipelineError as e:
        _print_failure(e, json_output)
        raise typer.Exit(code=1) from None

    if json_output:
        console.print_json(result.model_dump_json())
    else:
        _print_summary(result)


@app.command()
def config(
    json_output: JsonOption = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print_json(print_settings_json(settings))
        return

    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Repository root:     {settings.repo_root}")
    console.print(f"  Output directory:    {settings.out_dir_name}")
    console.print()
    console.print("[bold]Image:[/bold]")
    console.print(f"  Image name:          {settings.image_name}")
    console.print(f"  Image size (MiB):    {settings.image_size_mib}")
    console.print(f"  Volume label:        {settings.volume_label}")
    console.print()
    console.print("[bold]Toolchains:[/bold]")
    console.print(f"  cargo:               {settings.cargo}")
    console.print(f"  cmake:               {settings.cmake}")
    console.print(f"  Nun build-std:       {settings.nun_nightly_build_std}")
    console.print()
    console.print("[bold]Emulator:[/bold]")
    console.print(f"  QEMU (x86_64):       {settings.qemu_x86_64}")
    console.print(f"  OVMF code:           {settings.ovmf_code_path}")
    console.print(f"  OVMF vars:           {settings.ovmf_vars_path}")
    console.print(f"  Memory:              {settings.qemu_memory}")
    console.print(f"  CPU:                 {settings.qemu_cpu}")
    console.print(
        f"  Port forward:        127.0.0.1:{settings.qemu_host_port}"
        f" -> {settings.qemu_guest_port}"
    )
    console.print()
    console.print(f"  Log level:           {settings.log_level}")


@app.command()
def inspect(
    image: Annotated[
        Path,
        typer.Argument(help="Path to an assembled disk image"),
    ],
    json_output: JsonOption = False,
) -> None:
    """List the files inside an assembled disk image."""
    try:
        entries = inspect_image(image)
    except PipelineError as e:
        console.print(f"[red]Error: {escape(e.message)}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        output = [
            {"path": entry.path, "is_dir": entry.is_dir, "size": entry.size}
            for entry in entries
        ]
        console.print_json(data=output)
        return

    console.print(f"[bold]{escape(str(image))}[/bold]")
    for entry in entries:
        if entry.is_dir:
            console.print(f"  [blue]{escape(entry.path)}/[/blue]")
        else:
            console.print(f"  {escape(entry.path)}  ({entry.size} bytes)")


if __name__ == "__main__":
    app()
