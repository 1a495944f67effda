"""Tests for process invocation.

Uses mocked subprocess.run so no external tools are needed.
"""

import logging
import os
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from spencer_build.errors import LaunchFailure, StageExecutionFailure
from spencer_build.models import Command
from spencer_build.process import SubprocessInvoker


def completed(returncode: int) -> MagicMock:
    mock = MagicMock(spec=subprocess.CompletedProcess)
    mock.returncode = returncode
    return mock


class TestSubprocessInvoker:
    """Test SubprocessInvoker.run."""

    def test_success(self) -> None:
        command = Command(program="cargo", args=("build",), cwd=Path("/src"))
        with patch("spencer_build.process.subprocess.run") as mock_run:
            mock_run.return_value = completed(0)
            SubprocessInvoker().run(command, "cargo build")

        mock_run.assert_called_once_with(
            ["cargo", "build"], cwd=Path("/src"), env=None, check=False
        )

    def test_env_merged_onto_parent(self) -> None:
        """Overrides are added on top of the inherited environment."""
        command = Command(program="cargo", env={"CARGO_TARGET_DIR": "/out/nun"})
        with (
            patch.dict(os.environ, {"SPENCER_TEST_MARKER": "1"}),
            patch("spencer_build.process.subprocess.run") as mock_run,
        ):
            mock_run.return_value = completed(0)
            SubprocessInvoker().run(command, "cargo build (Nun)")

        env = mock_run.call_args.kwargs["env"]
        assert env["CARGO_TARGET_DIR"] == "/out/nun"
        assert env["SPENCER_TEST_MARKER"] == "1"

    def test_nonzero_exit(self) -> None:
        """A non-zero exit raises StageExecutionFailure with the status."""
        command = Command(program="cmake", args=("--build", "b"))
        with patch("spencer_build.process.subprocess.run") as mock_run:
            mock_run.return_value = completed(2)
            with pytest.raises(StageExecutionFailure) as exc_info:
                SubprocessInvoker().run(command, "cmake build (A9N)")

        error = exc_info.value
        assert error.exit_code == 2
        assert error.code == "stage_failed"
        assert error.command == "cmake --build b"
        assert "cmake build (A9N)" in error.message
        assert "exit=2" in error.message

    def test_spawn_failure(self) -> None:
        """An OSError from spawning raises LaunchFailure, chained."""
        command = Command(program="no-such-tool")
        with patch("spencer_build.process.subprocess.run") as mock_run:
            mock_run.side_effect = FileNotFoundError(2, "No such file")
            with pytest.raises(LaunchFailure) as exc_info:
                SubprocessInvoker().run(command, "no-such-tool")

        assert exc_info.value.code == "launch_failure"
        assert isinstance(exc_info.value.__cause__, FileNotFoundError)

    def test_verbose_logs_command_at_info(self, caplog) -> None:
        command = Command(program="cargo", args=("build",))
        with patch("spencer_build.process.subprocess.run") as mock_run:
            mock_run.return_value = completed(0)
            with caplog.at_level(logging.INFO, logger="spencer_build"):
                SubprocessInvoker().run(command, "cargo build", verbose=True)

        assert "[cmd] cargo build" in caplog.text

    def test_quiet_logs_command_at_debug(self, caplog) -> None:
        command = Command(program="cargo", args=("build",))
        with patch("spencer_build.process.subprocess.run") as mock_run:
            mock_run.return_value = completed(0)
            with caplog.at_level(logging.INFO, logger="spencer_build"):
                SubprocessInvoker().run(command, "cargo build")

        assert "[cmd]" not in caplog.text
