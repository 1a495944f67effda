"""Shared fixtures for spencer_build tests.

Provides a fake Spencer checkout, settings rooted at it, and a recording
process invoker that can simulate what each toolchain writes.
"""

from collections.abc import Callable
from pathlib import Path

import pytest

from spencer_build.config import Settings
from spencer_build.errors import LaunchFailure, StageExecutionFailure
from spencer_build.models import Command
from spencer_build.types import Arch

BOOTLOADER_BYTES = b"MZ" + bytes(range(256)) * 9
KERNEL_BYTES = b"\x7fELF-kernel" + bytes(reversed(range(256))) * 17
INIT_BYTES = b"\x7fELF-init" + b"nun" * 700
OVMF_CODE_BYTES = b"OVMF-CODE" * 64
OVMF_VARS_BYTES = b"OVMF-VARS" * 32


class RecordingInvoker:
    """ProcessInvoker fake that records every command instead of running it.

    Args:
        on_run: Called with (command, context) for each successful run,
            typically a ToolchainSimulator writing fake outputs.
        fail_on: Substring of a context label whose command should fail.
        exit_code: Exit status reported for the failing command.
        launch_error: Raise LaunchFailure instead of StageExecutionFailure.
    """

    def __init__(
        self,
        on_run: Callable[[Command, str], None] | None = None,
        fail_on: str | None = None,
        exit_code: int = 101,
        launch_error: bool = False,
    ) -> None:
        self.on_run = on_run
        self.fail_on = fail_on
        self.exit_code = exit_code
        self.launch_error = launch_error
        self.calls: list[tuple[str, Command]] = []

    def run(self, command: Command, context: str, *, verbose: bool = False) -> None:
        self.calls.append((context, command))
        if self.fail_on is not None and self.fail_on in context:
            if self.launch_error:
                raise LaunchFailure(
                    context,
                    FileNotFoundError(2, "No such file or directory"),
                    command=command.render(),
                )
            raise StageExecutionFailure(
                context, self.exit_code, command=command.render()
            )
        if self.on_run is not None:
            self.on_run(command, context)

    @property
    def contexts(self) -> list[str]:
        return [context for context, _ in self.calls]

    @property
    def commands(self) -> list[Command]:
        return [command for _, command in self.calls]


class ToolchainSimulator:
    """Writes the files each toolchain would produce for a command."""

    def __init__(self) -> None:
        self.install_prefix: Path | None = None

    def __call__(self, command: Command, context: str) -> None:
        args = list(command.args)
        profile = "release" if "--release" in args else "debug"

        if command.program == "cmake":
            for arg in args:
                if arg.startswith("-DCMAKE_INSTALL_PREFIX="):
                    self.install_prefix = Path(arg.split("=", 1)[1])
            if "--install" in args and self.install_prefix is not None:
                self.install_prefix.mkdir(parents=True, exist_ok=True)
                (self.install_prefix / "kernel.elf").write_bytes(KERNEL_BYTES)
            return

        if command.program == "cargo" and "CARGO_TARGET_DIR" in command.env:
            target = Path(args[args.index("--target") + 1]).stem
            out = Path(command.env["CARGO_TARGET_DIR"]) / target / profile
            out.mkdir(parents=True, exist_ok=True)
            (out / "core").write_bytes(INIT_BYTES)
            return

        if command.program == "cargo" and command.cwd is not None:
            triple = args[args.index("--target") + 1]
            out = command.cwd / "target" / triple / profile
            (out / "deps").mkdir(parents=True, exist_ok=True)
            (out / "a9nloader-rs.efi").write_bytes(BOOTLOADER_BYTES)
            (out / "a9nloader-rs.d").write_text("a9nloader-rs.efi: src/main.rs\n")
            (out / "deps" / "a9nloader_rs.efi").write_bytes(BOOTLOADER_BYTES)


def snapshot(root: Path) -> dict[str, tuple[int, int]]:
    """Map every path under ``root`` to (size, mtime_ns)."""
    result = {}
    for path in sorted(root.rglob("*")):
        info = path.lstat()
        result[str(path.relative_to(root))] = (info.st_size, info.st_mtime_ns)
    return result


@pytest.fixture
def spencer_root(tmp_path: Path) -> Path:
    """Create a minimal Spencer checkout with every required input file."""
    root = tmp_path / "spencer"
    (root / "a9nloader-rs" / "tools").mkdir(parents=True)
    (root / "a9nloader-rs" / "Cargo.toml").write_text(
        '[package]\nname = "a9nloader-rs"\n'
    )
    (root / "a9nloader-rs" / "tools" / "OVMF_CODE.fd").write_bytes(OVMF_CODE_BYTES)
    (root / "a9nloader-rs" / "tools" / "OVMF_VARS.fd").write_bytes(OVMF_VARS_BYTES)

    for arch in Arch:
        hal = root / "A9N" / "src" / "hal" / arch.value
        hal.mkdir(parents=True)
        (hal / "toolchain.cmake").write_text(f"set(ARCH {arch.value})\n")

    (root / "core").mkdir()
    (root / "core" / "Cargo.toml").write_text('[package]\nname = "core"\n')

    (root / "Nun" / "arch").mkdir(parents=True)
    for arch in Arch:
        (root / "Nun" / "arch" / f"{arch.value}-unknown-a9n.json").write_text("{}\n")

    return root


@pytest.fixture
def settings(spencer_root: Path) -> Settings:
    """Settings rooted at the fake checkout."""
    return Settings(repo_root=spencer_root)


@pytest.fixture
def simulator() -> ToolchainSimulator:
    return ToolchainSimulator()


@pytest.fixture
def invoker(simulator: ToolchainSimulator) -> RecordingInvoker:
    """Invoker that records commands and writes simulated toolchain output."""
    return RecordingInvoker(on_run=simulator)
