"""Lifecycle of the shared service environment used by integration tests.

The environment is the pipeline's only shared mutable resource.  Every
start and stop is serialized through one :class:`EnvironmentManager`
holding an ``asyncio.Lock``, and its ``state`` follows the machine in
:mod:`src.environment.lifecycle`.

Teardown is two-phase: a graceful ``compose stop`` + ``compose rm``,
then a forceful sweep of exited containers matching the project name.
Every teardown step yields a :class:`CleanupResult`; none of them is
ever raised.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from src.ci_orchestrator.config import PipelineSettings
from src.ci_orchestrator.exceptions import EnvironmentProvisionError
from src.environment.docker_orchestrator import DockerOrchestrator
from src.environment.lifecycle import create_environment_machine
from src.environment.service_discovery import ServiceDiscovery, parse_published_port
from src.pipeline_shared.models import (
    CleanupOutcome,
    CleanupResult,
    EnvironmentState,
    ServiceEndpoint,
)
from src.pipeline_shared.process import CommandResult
from src.pipeline_shared.utils import ensure_dir

logger = logging.getLogger(__name__)

# Fragments docker prints when the thing being removed is already gone.
_ABSENT_MARKERS = (
    "no such container",
    "no such object",
    "not found",
    "no containers to",
    "no resource found",
    "no stopped containers",
)


def classify_cleanup(step: str, result: CommandResult) -> CleanupResult:
    """Map a teardown command's result to a :class:`CleanupResult`."""
    output = f"{result.stdout}\n{result.stderr}".strip()
    lowered = output.lower()
    if any(marker in lowered for marker in _ABSENT_MARKERS):
        return CleanupResult(step, CleanupOutcome.ABSENT, output)
    if result.ok:
        if "container" in lowered or "removed" in lowered or "stopped" in lowered:
            return CleanupResult(step, CleanupOutcome.REMOVED, output)
        return CleanupResult(step, CleanupOutcome.ABSENT, output)
    return CleanupResult(step, CleanupOutcome.FAILED, output or f"exit code {result.returncode}")


class EnvironmentManager:
    """Owns provisioning and teardown of the named service set.

    Args:
        settings: Frozen pipeline settings.
        docker: Compose wrapper; built from *settings* when omitted.
        discovery: HTTP readiness checker.
        poll_interval: Seconds between readiness polls.
    """

    def __init__(
        self,
        settings: PipelineSettings,
        docker: DockerOrchestrator | None = None,
        discovery: ServiceDiscovery | None = None,
        poll_interval: float = 3,
    ) -> None:
        self.settings = settings
        self.docker = docker or DockerOrchestrator(
            compose_file=settings.source_path / settings.compose_file,
            project_name=settings.beat_name,
        )
        self.discovery = discovery or ServiceDiscovery()
        self.poll_interval = poll_interval
        self.active_services: list[str] = []
        self.last_cleanup: list[CleanupResult] = []
        self._lock = asyncio.Lock()
        # Set by the machine; seeded so type checkers know about it.
        self.state: str = EnvironmentState.STOPPED.value
        self.machine = create_environment_machine(self)

    @property
    def lifecycle_state(self) -> EnvironmentState:
        return EnvironmentState(self.state)

    def _log_state_change(self, *args, **kwargs) -> None:
        logger.debug("Environment %s is now %s", self.settings.beat_name, self.state)

    # ------------------------------------------------------------------
    # Parameters file and images
    # ------------------------------------------------------------------

    def write_environment(self) -> list[ServiceEndpoint]:
        """Write the parameters file read by integration and system tests.

        One ``KEY=value`` line per endpoint host and port.

        Returns:
            The endpoints that were written.
        """
        endpoints = self.settings.service_endpoints()
        ensure_dir(self.settings.test_env_path.parent)
        lines: list[str] = []
        for endpoint in endpoints:
            lines.extend(endpoint.as_env_lines())
        self.settings.test_env_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        logger.info("Wrote %s (%d endpoints)", self.settings.test_env_path, len(endpoints))
        return endpoints

    async def build_image(self) -> None:
        """Build the service images; the parameters file is written first.

        Raises:
            EnvironmentProvisionError: When ``compose build`` fails.
        """
        self.write_environment()
        result = await self.docker.build()
        if not result.ok:
            raise EnvironmentProvisionError(
                f"Image build failed: {result.stderr.strip() or result.returncode}"
            )
        logger.info("Built images for %s", self.settings.beat_name)

    # ------------------------------------------------------------------
    # Start / stop
    # ------------------------------------------------------------------

    async def start(self, services: Sequence[str] | None = None) -> list[ServiceEndpoint]:
        """Provision *services* from a clean slate and block until ready.

        Always performs a full :meth:`stop` first, so starting an already
        (partially) running environment converges to the same end state
        as a cold start.

        Args:
            services: Ordered compose service names; defaults to the
                configured set.

        Returns:
            The endpoints written to the parameters file.

        Raises:
            EnvironmentProvisionError: When the services cannot be brought
                up or do not become ready.  The environment is torn down
                again before raising.
        """
        requested = list(services) if services is not None else list(self.settings.services)
        async with self._lock:
            await self._stop_locked()
            await self.provision()  # type: ignore[attr-defined]
            try:
                endpoints = self.write_environment()
                result = await self.docker.up(requested)
                if not result.ok:
                    raise EnvironmentProvisionError(
                        f"Failed to start services {', '.join(requested)}: "
                        f"{result.stderr.strip() or result.returncode}"
                    )
                self.active_services = requested
                await self._wait_ready(requested, endpoints)
            except Exception:
                logger.error("Environment start failed; tearing down")
                await self._stop_locked()
                raise
            await self.ready()  # type: ignore[attr-defined]

        logger.info("Environment running: %s", ", ".join(requested))
        return endpoints

    async def stop(self) -> list[CleanupResult]:
        """Tear down the environment.  Safe to call any number of times.

        Returns:
            One :class:`CleanupResult` per teardown step.  Failures are
            logged, never raised.
        """
        async with self._lock:
            return await self._stop_locked()

    async def _stop_locked(self) -> list[CleanupResult]:
        await self.teardown()  # type: ignore[attr-defined]
        results: list[CleanupResult] = []
        try:
            results.append(classify_cleanup("compose-stop", await self.docker.stop()))
            results.append(classify_cleanup("compose-rm", await self.docker.rm()))
            results.extend(await self._sweep())
        finally:
            self.active_services = []
            await self.released()  # type: ignore[attr-defined]

        for result in results:
            if result.failed:
                logger.warning("Cleanup step %s failed: %s", result.step, result.detail)
        self.last_cleanup = results
        return results

    async def _sweep(self) -> list[CleanupResult]:
        """Force-remove exited containers left by crashed earlier runs."""
        listing = await self.docker.exited_containers(self.settings.beat_name)
        if not listing.ok:
            return [classify_cleanup("sweep", listing)]

        ids = [line.strip() for line in listing.stdout.splitlines() if line.strip()]
        if not ids:
            return [CleanupResult("sweep", CleanupOutcome.ABSENT)]

        results = []
        for container in ids:
            removed = await self.docker.remove_container(container, force=True)
            outcome = classify_cleanup(f"sweep:{container}", removed)
            if removed.ok:
                outcome = CleanupResult(outcome.step, CleanupOutcome.REMOVED, outcome.detail)
            results.append(outcome)
        logger.info("Swept %d exited container(s)", len(ids))
        return results

    async def _wait_ready(
        self,
        services: Sequence[str],
        endpoints: Sequence[ServiceEndpoint],
    ) -> None:
        """Poll HTTP health endpoints published to the host.

        ``compose up --wait`` already blocks on container health; this
        additionally waits for endpoints that declare a health path and
        have a host-published port.
        """
        urls: dict[str, str] = {}
        for endpoint in endpoints:
            if endpoint.health_path is None or endpoint.service not in services:
                continue
            mapping = await self.docker.port(endpoint.service, endpoint.port)
            host_port = parse_published_port(mapping)
            if host_port is None:
                logger.debug("No published port for %s; skipping HTTP check", endpoint.service)
                continue
            urls[endpoint.service] = f"http://localhost:{host_port}{endpoint.health_path}"

        report = await self.discovery.wait_all_healthy(
            urls,
            timeout_seconds=self.settings.ready_timeout,
            poll_interval=self.poll_interval,
        )
        if not report["all_healthy"]:
            pending = [name for name, ok in report["services"].items() if not ok]
            raise EnvironmentProvisionError(
                f"Services not ready after {self.settings.ready_timeout}s: {', '.join(pending)}"
            )
