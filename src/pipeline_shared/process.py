"""Subprocess execution for toolchain and container commands.

Every external tool the pipeline drives (``go``, ``gofmt``,
``gotestcover``, ``docker``) goes through :class:`CommandRunner` so that
components can be exercised with a recording fake instead of real
binaries.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from src.pipeline_shared.constants import EXIT_COMMAND_NOT_FOUND

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of a single external command."""

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Runs external commands synchronously or from a coroutine.

    Args:
        cwd: Default working directory for commands.
        env: Extra environment variables merged over ``os.environ``.
    """

    def __init__(
        self,
        cwd: Path | str | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        self.cwd = Path(cwd) if cwd is not None else None
        self.env = dict(env or {})

    def _merged_env(self, env: dict[str, str] | None) -> dict[str, str]:
        merged = dict(os.environ)
        merged.update(self.env)
        if env:
            merged.update(env)
        return merged

    def run_sync(
        self,
        cmd: Sequence[str],
        *,
        cwd: Path | str | None = None,
        env: dict[str, str] | None = None,
        capture: bool = True,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run *cmd* and wait for it to finish.

        With ``capture=False`` the child inherits the terminal so its
        output streams live (used for test runs and ``docker attach``).

        Returns:
            A :class:`CommandResult`.  A missing executable is reported
            as return code 127 rather than raised.
        """
        workdir = Path(cwd) if cwd is not None else self.cwd
        logger.debug("Running: %s", " ".join(cmd))
        try:
            result = subprocess.run(
                list(cmd),
                cwd=str(workdir) if workdir is not None else None,
                env=self._merged_env(env),
                capture_output=capture,
                text=True,
                errors="replace",
                timeout=timeout,
            )
        except FileNotFoundError:
            logger.error("Executable not found: %s", cmd[0])
            return CommandResult(
                returncode=EXIT_COMMAND_NOT_FOUND,
                stderr=f"{cmd[0]}: command not found",
            )
        except subprocess.TimeoutExpired as exc:
            logger.error("Command timed out after %ss: %s", timeout, " ".join(cmd))
            return CommandResult(returncode=124, stderr=str(exc))
        return CommandResult(
            returncode=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )

    async def run(
        self,
        cmd: Sequence[str],
        *,
        cwd: Path | str | None = None,
        env: dict[str, str] | None = None,
        capture: bool = True,
        timeout: float | None = None,
    ) -> CommandResult:
        """Async wrapper around :meth:`run_sync`.

        The blocking call runs on a dedicated single-worker
        ``ThreadPoolExecutor`` so the event loop stays responsive to
        shutdown signals while a long test tier is running.
        """
        loop = asyncio.get_running_loop()
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return await loop.run_in_executor(
                pool,
                lambda: self.run_sync(
                    cmd, cwd=cwd, env=env, capture=capture, timeout=timeout
                ),
            )
