"""The fixed set of test tiers and their instrumentation policies."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from src.ci_orchestrator.config import PipelineSettings
from src.pipeline_shared.constants import COVER_MODE, PROFILE_SUFFIX


class Tier(str, Enum):
    """One category of test run."""
    UNIT = "unit"
    INTEGRATION = "integration"
    SYSTEM = "system"
    BENCHMARK = "benchmark"


# Race detection slows tests down too much for routine unit runs.
_RACE_TIERS = frozenset({Tier.INTEGRATION, Tier.SYSTEM})


@dataclass(frozen=True)
class TestTier:
    """Instrumentation policy for one tier."""

    __test__ = False  # not a pytest test class

    tier: Tier
    tags: str
    race: bool
    timeout: int
    profile_path: Path
    cover_mode: str = COVER_MODE

    @property
    def name(self) -> str:
        return self.tier.value


def build_tiers(settings: PipelineSettings) -> dict[Tier, TestTier]:
    """Return the tier table for *settings*.

    Coverage is always collected in ``atomic`` mode because the race
    enabled tiers run arbitrary concurrent code.
    """
    return {
        tier: TestTier(
            tier=tier,
            tags=tier.value,
            race=tier in _RACE_TIERS,
            timeout=settings.timeout,
            profile_path=settings.coverage_path / f"{tier.value}{PROFILE_SUFFIX}",
        )
        for tier in Tier
    }
