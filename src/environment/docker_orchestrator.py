"""Docker and Docker Compose command wrapper.

Covers the container commands the environment manager and the remote
bridge need: compose up/stop/rm/build/run/port, and plain docker
ps/rm/attach/wait/cp.  All calls go through an injected runner; compose
calls capture stdout and stderr, while ``attach`` streams to the terminal.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

from src.pipeline_shared.process import CommandResult, CommandRunner

logger = logging.getLogger(__name__)


class DockerOrchestrator:
    """Orchestrates the compose project that holds the service environment.

    Args:
        compose_file: Compose file path.
        project_name: Compose project name; also the container name
            prefix used by the exited-container sweep.
        runner: Command runner used for every call.
    """

    def __init__(
        self,
        compose_file: Path | str,
        project_name: str,
        runner: CommandRunner | None = None,
    ) -> None:
        self.compose_file = Path(compose_file)
        self.project_name = project_name
        self._runner = runner or CommandRunner()

    async def _run(self, *args: str, capture: bool = True) -> CommandResult:
        """Run a ``docker compose`` command for this project."""
        cmd = ["docker", "compose", "-f", str(self.compose_file), "-p", self.project_name]
        cmd.extend(args)
        return await self._runner.run(cmd, capture=capture)

    async def _docker(self, *args: str, capture: bool = True) -> CommandResult:
        """Run a plain ``docker`` command."""
        return await self._runner.run(["docker", *args], capture=capture)

    # ------------------------------------------------------------------
    # Compose project
    # ------------------------------------------------------------------

    async def up(self, services: Sequence[str]) -> CommandResult:
        """Start *services* detached and wait until they are running/healthy."""
        return await self._run("up", "-d", "--wait", *services)

    async def stop(self) -> CommandResult:
        return await self._run("stop")

    async def rm(self) -> CommandResult:
        return await self._run("rm", "-f")

    async def build(self) -> CommandResult:
        return await self._run("build")

    async def run_detached(self, service: str, command: Sequence[str]) -> CommandResult:
        """``docker compose run -d``; the container name is the last stdout line."""
        return await self._run("run", "-d", service, *command)

    async def port(self, service: str, port: int) -> str:
        """Return the published ``host:port`` for *service*, or ``""``."""
        result = await self._run("port", service, str(port))
        if not result.ok:
            return ""
        return result.stdout.strip()

    # ------------------------------------------------------------------
    # Plain docker
    # ------------------------------------------------------------------

    async def exited_containers(self, name_filter: str) -> CommandResult:
        """List ids of exited containers whose name matches *name_filter*."""
        return await self._docker(
            "ps", "-a",
            "--filter", f"name={name_filter}",
            "--filter", "status=exited",
            "--format", "{{.ID}}",
        )

    async def remove_container(self, container: str, force: bool = False) -> CommandResult:
        args = ["rm", "-f", container] if force else ["rm", container]
        return await self._docker(*args)

    async def attach(self, container: str) -> CommandResult:
        return await self._docker("attach", container, capture=False)

    async def wait(self, container: str) -> CommandResult:
        return await self._docker("wait", container)

    async def copy_from(self, container: str, source: str, destination: Path) -> CommandResult:
        return await self._docker("cp", f"{container}:{source}", str(destination))
