"""Readiness checks for provisioned services via published ports and HTTP."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

logger = logging.getLogger(__name__)


def parse_published_port(mapping: str) -> int | None:
    """Extract the host port from ``docker compose port`` output.

    Output is usually ``0.0.0.0:32768``; IPv6 bindings such as
    ``[::]:32768`` are handled the same way.  Only the first line is used.

    Returns:
        The host port, or ``None`` when nothing is published.
    """
    first = mapping.strip().splitlines()[0] if mapping.strip() else ""
    if not first:
        return None
    candidate = first.rsplit(":", 1)[-1]
    try:
        return int(candidate)
    except ValueError:
        return None


class ServiceDiscovery:
    """Health-checks services reachable from the host."""

    def __init__(self, request_timeout: float = 5.0) -> None:
        self.request_timeout = request_timeout

    async def check_health(self, service_name: str, url: str) -> bool:
        """Return True when *url* answers with a non-error HTTP status.

        Connection failures count as "not ready yet" and are only logged at
        debug level, since they are expected while a container boots.
        """
        try:
            async with httpx.AsyncClient(timeout=self.request_timeout) as client:
                resp = await client.get(url)
        except httpx.HTTPError as exc:
            logger.debug("%s unreachable at %s: %s", service_name, url, exc)
            return False
        if resp.status_code >= 400:
            logger.debug("%s answered %d at %s", service_name, resp.status_code, url)
            return False
        return True

    async def wait_all_healthy(
        self,
        services: dict[str, str],
        timeout_seconds: int = 120,
        poll_interval: float = 3,
    ) -> dict[str, Any]:
        """Wait until all services report healthy or timeout.

        Args:
            services: Mapping of service name to health URL.
            timeout_seconds: Maximum wait time.
            poll_interval: Seconds between polls.

        Returns:
            Dict with ``all_healthy`` and per-service status.
        """
        if not services:
            return {"all_healthy": True, "services": {}}

        deadline = time.monotonic() + timeout_seconds
        statuses: dict[str, bool] = {name: False for name in services}

        while True:
            for name, url in services.items():
                if not statuses[name]:
                    statuses[name] = await self.check_health(name, url)

            if all(statuses.values()):
                return {"all_healthy": True, "services": statuses}
            if time.monotonic() >= deadline:
                break
            await asyncio.sleep(poll_interval)

        logger.warning(
            "Services not ready after %ss: %s",
            timeout_seconds,
            ", ".join(n for n, ok in statuses.items() if not ok),
        )
        return {"all_healthy": False, "services": statuses}
