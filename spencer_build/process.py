"""Process invocation for external toolchains.

This module handles:
- Running one fully constructed external command to completion
- Echoing the exact command line when verbose
- Converting spawn failures and non-zero exits into pipeline errors

Commands inherit the parent's stdio so toolchain output streams straight
to the terminal. There are no retries and no timeouts.
"""

from __future__ import annotations

import logging
import os
import subprocess
from typing import Protocol

from spencer_build.errors import LaunchFailure, StageExecutionFailure
from spencer_build.models import Command

logger = logging.getLogger(__name__)


class ProcessInvoker(Protocol):
    """Capability to run one external command and report success or failure."""

    def run(self, command: Command, context: str, *, verbose: bool = False) -> None:
        """Run ``command`` to completion.

        Raises:
            LaunchFailure: The process could not be spawned.
            StageExecutionFailure: The process exited non-zero.
        """
        ...


class SubprocessInvoker:
    """ProcessInvoker backed by :func:`subprocess.run`."""

    def run(self, command: Command, context: str, *, verbose: bool = False) -> None:
        """Run ``command`` and block until it exits.

        Args:
            command: Command to execute.
            context: Human-readable label used in logs and errors.
            verbose: Log the command at INFO instead of DEBUG.

        Raises:
            LaunchFailure: The executable could not be started.
            StageExecutionFailure: The process exited with a non-zero status.
        """
        rendered = command.render()
        level = logging.INFO if verbose else logging.DEBUG
        logger.log(level, "[cmd] %s", rendered)
        if command.cwd is not None:
            logger.log(level, "[cmd]   cwd: %s", command.cwd)

        env: dict[str, str] | None = None
        if command.env:
            env = dict(os.environ)
            env.update(command.env)

        try:
            result = subprocess.run(
                command.argv,
                cwd=command.cwd,
                env=env,
                check=False,
            )
        except OSError as e:
            logger.error("Failed to spawn %s: %s", context, e)
            raise LaunchFailure(context, e, command=rendered) from e

        if result.returncode != 0:
            logger.error("%s exited with status %d", context, result.returncode)
            raise StageExecutionFailure(context, result.returncode, command=rendered)

        logger.debug("%s finished", context)


__all__ = ["ProcessInvoker", "SubprocessInvoker"]
