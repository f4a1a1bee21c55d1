"""Stop-between-stages handling for SIGINT and SIGTERM.

A signal never kills the stage that is running: the child test process
receives the terminal's interrupt on its own.  The handler only records
the request, marks the run state interrupted, and lets the composer
decline to start the next stage.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from src.ci_orchestrator.state import PipelineRunState

logger = logging.getLogger(__name__)

_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class GracefulShutdown:
    """Records a stop request and saves the run state when one arrives.

    Usage::

        shutdown = GracefulShutdown()
        shutdown.install()
        shutdown.set_state(run_state)
        ...
        if shutdown.should_stop:
            ...
        shutdown.uninstall()
    """

    def __init__(self) -> None:
        self._should_stop = False
        self._state: PipelineRunState | None = None
        self._handling = False
        self._installed: list[signal.Signals] = []
        self._previous: dict[signal.Signals, Any] = {}

    @property
    def should_stop(self) -> bool:
        return self._should_stop

    @should_stop.setter
    def should_stop(self, value: bool) -> None:
        self._should_stop = value

    def set_state(self, state: Any) -> None:
        """Attach the run state that is saved when a signal arrives."""
        self._state = state

    def install(self) -> None:
        """Register handlers for SIGINT and SIGTERM.

        Inside a running event loop on Unix the loop's own signal support
        is used; otherwise the process-wide ``signal.signal`` handlers are
        replaced and remembered so :meth:`uninstall` can restore them.
        """
        if sys.platform != "win32":
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            if loop is not None:
                for sig in _SIGNALS:
                    loop.add_signal_handler(sig, self._async_handler)
                    self._installed.append(sig)
                return
        for sig in _SIGNALS:
            self._previous[sig] = signal.signal(sig, self._signal_handler)

    def uninstall(self) -> None:
        """Undo :meth:`install`."""
        if self._installed:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            if loop is not None:
                for sig in self._installed:
                    loop.remove_signal_handler(sig)
            self._installed.clear()
        for sig, previous in self._previous.items():
            if previous is not None:
                signal.signal(sig, previous)
        self._previous.clear()

    def _signal_handler(self, signum: int, frame: Any) -> None:
        self._request_stop(signal.Signals(signum).name)

    def _async_handler(self) -> None:
        self._request_stop("signal")

    def _request_stop(self, source: str) -> None:
        if self._handling:
            return
        self._handling = True
        try:
            logger.warning("Received %s -- no further stages will start", source)
            self._should_stop = True
            self._emergency_save()
        finally:
            self._handling = False

    def _emergency_save(self) -> None:
        """Mark the attached run interrupted and persist it."""
        if self._state is None:
            logger.warning("No pipeline state to save on shutdown")
            return
        try:
            self._state.interrupted = True
            self._state.interrupt_reason = "Signal received"
            self._state.save()
            logger.info("Interrupted run state saved")
        except Exception:
            logger.exception("Failed to save run state on shutdown")
