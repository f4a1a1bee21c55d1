"""Tests for GracefulShutdown."""

from __future__ import annotations

import signal
from unittest.mock import MagicMock, patch

import pytest

from src.ci_orchestrator.shutdown import GracefulShutdown


class TestGracefulShutdown:
    """Test GracefulShutdown class."""

    def test_initial_should_stop_false(self) -> None:
        assert GracefulShutdown().should_stop is False

    def test_signal_handler_sets_should_stop(self) -> None:
        gs = GracefulShutdown()
        gs._signal_handler(signal.SIGTERM, None)
        assert gs.should_stop is True

    def test_async_handler_sets_should_stop(self) -> None:
        gs = GracefulShutdown()
        gs._async_handler()
        assert gs.should_stop is True

    def test_emergency_save_marks_interrupted(self) -> None:
        gs = GracefulShutdown()
        state = MagicMock()
        gs.set_state(state)
        gs._emergency_save()
        assert state.interrupted is True
        assert state.interrupt_reason == "Signal received"
        state.save.assert_called_once()

    def test_emergency_save_no_state(self) -> None:
        GracefulShutdown()._emergency_save()

    def test_emergency_save_failure_does_not_raise(self) -> None:
        gs = GracefulShutdown()
        state = MagicMock()
        state.save.side_effect = OSError("disk full")
        gs.set_state(state)
        gs._emergency_save()

    def test_reentrancy_guard(self) -> None:
        gs = GracefulShutdown()
        gs._handling = True
        gs._signal_handler(signal.SIGINT, None)
        assert gs.should_stop is False

    def test_install_without_loop_uses_signal(self) -> None:
        gs = GracefulShutdown()
        with patch("src.ci_orchestrator.shutdown.sys.platform", "linux"):
            with patch("signal.signal") as mock_signal:
                gs.install()
        assert mock_signal.call_count == 2

    @pytest.mark.asyncio
    async def test_install_and_uninstall_on_loop(self) -> None:
        gs = GracefulShutdown()
        with patch("src.ci_orchestrator.shutdown.sys.platform", "linux"):
            gs.install()
        assert gs._installed == [signal.SIGINT, signal.SIGTERM]
        gs.uninstall()
        assert gs._installed == []
