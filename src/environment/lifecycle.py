"""Environment lifecycle state machine using the ``transitions`` library.

Four states and four transitions.  ``teardown`` is accepted from every
state except ``stopping`` so that ``stop()`` stays idempotent and a failed
start can always converge back to ``stopped``.
"""

from __future__ import annotations

import logging
from typing import Any

from transitions.extensions.asyncio import AsyncMachine

from src.pipeline_shared.models import EnvironmentState

logger = logging.getLogger(__name__)

STATES: list[str] = [state.value for state in EnvironmentState]

TRANSITIONS: list[dict[str, Any]] = [
    {
        "trigger": "provision",
        "source": EnvironmentState.STOPPED.value,
        "dest": EnvironmentState.STARTING.value,
    },
    {
        "trigger": "ready",
        "source": EnvironmentState.STARTING.value,
        "dest": EnvironmentState.RUNNING.value,
    },
    {
        "trigger": "teardown",
        "source": [
            EnvironmentState.STOPPED.value,
            EnvironmentState.STARTING.value,
            EnvironmentState.RUNNING.value,
        ],
        "dest": EnvironmentState.STOPPING.value,
    },
    {
        "trigger": "released",
        "source": EnvironmentState.STOPPING.value,
        "dest": EnvironmentState.STOPPED.value,
    },
]


def create_environment_machine(
    model: Any,
    initial_state: str = EnvironmentState.STOPPED.value,
) -> AsyncMachine:
    """Create and return an ``AsyncMachine`` bound to *model*.

    Invalid triggers raise ``MachineError``: a start or stop issued from
    the wrong state is a programming error, not something to skip.

    Args:
        model: The object whose ``state`` attribute the machine manages.
        initial_state: The initial state for the machine.

    Returns:
        Configured ``AsyncMachine`` instance.
    """
    return AsyncMachine(
        model=model,
        states=STATES,
        transitions=TRANSITIONS,
        initial=initial_state,
        auto_transitions=False,
        after_state_change="_log_state_change",
    )
