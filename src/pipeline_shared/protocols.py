"""Runtime-checkable protocols shared across pipeline components."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, Sequence, runtime_checkable

from src.pipeline_shared.process import CommandResult


@runtime_checkable
class Runner(Protocol):
    """Protocol for anything that can execute an external command."""

    async def run(
        self,
        cmd: Sequence[str],
        *,
        cwd: Path | str | None = None,
        env: dict[str, str] | None = None,
        capture: bool = True,
        timeout: float | None = None,
    ) -> CommandResult:
        """Execute *cmd* and return its result."""
        ...


@runtime_checkable
class RemoteBackend(Protocol):
    """Protocol for the execution context used by the remote bridge.

    The two-phase contract is ``launch() -> handle`` followed by
    ``wait(handle) -> exit status``; ``attach`` only relays output.
    """

    async def launch(self, command: Sequence[str]) -> str:
        """Start *command* detached and return the instance identifier."""
        ...

    async def attach(self, handle: str) -> int:
        """Block while relaying the instance's output; returns attach status."""
        ...

    async def wait(self, handle: str) -> int:
        """Return the exit status of the process inside the instance."""
        ...

    async def copy_from(self, handle: str, remote_path: str, local_dir: Path) -> bool:
        """Copy *remote_path* out of the instance into *local_dir*."""
        ...

    async def remove(self, handle: str) -> bool:
        """Remove the instance."""
        ...
