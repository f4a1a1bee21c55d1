"""CI pipeline -- composes the components into one sequential run.

Drives the fixed stage order::

    [build → check →] unit → integration | integration-environment
    → [system] → benchmark → coverage-report

.. rubric:: Key design decisions

* **Switches read once** -- ``TEST_ENVIRONMENT`` and ``SYSTEM_TESTS`` are
  snapshotted into :class:`PipelineSwitches` when the run starts; the
  stage plan is fixed from then on.
* **Strictly sequential** -- later stages consume binaries and profiles
  written by earlier ones, and tiers share the environment's ports.
* **First failure aborts** -- no partial continuation; the failing
  stage's own exit code is carried out in :class:`StageFailedError`.
* **State saved after every stage** -- ``status`` can always report the
  last run, including an interrupted one.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from src.builder.build_orchestrator import BuildOrchestrator
from src.ci_orchestrator.config import PipelineSettings
from src.ci_orchestrator.exceptions import (
    BuildError,
    CheckError,
    PipelineError,
    StageFailedError,
    TierFailedError,
)
from src.ci_orchestrator.shutdown import GracefulShutdown
from src.ci_orchestrator.state import PipelineRunState
from src.coverage_aggregator.aggregator import merge_directory, render, summarize
from src.environment.environment_manager import EnvironmentManager
from src.pipeline_shared.constants import (
    STAGE_BENCHMARK,
    STAGE_BUILD,
    STAGE_CHECK,
    STAGE_COVERAGE_REPORT,
    STAGE_INTEGRATION,
    STAGE_INTEGRATION_ENVIRONMENT,
    STAGE_SYSTEM,
    STAGE_UNIT,
)
from src.pipeline_shared.models import PipelineSwitches, StageResult, StageStatus
from src.pipeline_shared.process import CommandRunner
from src.pipeline_shared.protocols import Runner
from src.shared.logging import run_id_var
from src.testing.remote_bridge import RemoteExecutionBridge, run_integration_in_environment
from src.testing.tier_runner import TierRunner
from src.testing.tiers import Tier

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------


@dataclass
class PipelineComponents:
    """Everything a run needs, built once from one settings snapshot."""

    settings: PipelineSettings
    runner: Runner
    builder: BuildOrchestrator
    environment: EnvironmentManager
    tier_runner: TierRunner
    bridge: RemoteExecutionBridge


def build_components(
    settings: PipelineSettings,
    runner: CommandRunner | None = None,
) -> PipelineComponents:
    """Wire the default components for *settings*."""
    runner = runner or CommandRunner(cwd=settings.source_path)
    builder = BuildOrchestrator(settings, runner=runner)
    return PipelineComponents(
        settings=settings,
        runner=runner,
        builder=builder,
        environment=EnvironmentManager(settings),
        tier_runner=TierRunner(settings, runner=runner, builder=builder),
        bridge=RemoteExecutionBridge(settings),
    )


# ---------------------------------------------------------------------------
# Stage plan
# ---------------------------------------------------------------------------


def plan_stages(switches: PipelineSwitches, include_build: bool = True) -> list[str]:
    """Return the ordered stage names for a run with *switches*.

    Args:
        switches: The run's switch snapshot.
        include_build: Prefix ``build`` and ``check`` (the ``ci`` run);
            ``testsuite`` runs without them.
    """
    stages = [STAGE_BUILD, STAGE_CHECK] if include_build else []
    stages.append(STAGE_UNIT)
    stages.append(
        STAGE_INTEGRATION_ENVIRONMENT if switches.use_environment else STAGE_INTEGRATION
    )
    if switches.run_system_tests:
        stages.append(STAGE_SYSTEM)
    stages.extend([STAGE_BENCHMARK, STAGE_COVERAGE_REPORT])
    return stages


# ---------------------------------------------------------------------------
# Stage handlers
# ---------------------------------------------------------------------------

StageHandler = Callable[[PipelineComponents, PipelineRunState], Awaitable[StageResult]]


async def _stage_build(components: PipelineComponents, state: PipelineRunState) -> StageResult:
    return await components.builder.build()


async def _stage_check(components: PipelineComponents, state: PipelineRunState) -> StageResult:
    return await components.builder.check()


async def _stage_unit(components: PipelineComponents, state: PipelineRunState) -> StageResult:
    return await components.tier_runner.run_tier(Tier.UNIT)


async def _stage_integration(components: PipelineComponents, state: PipelineRunState) -> StageResult:
    return await components.tier_runner.run_tier(Tier.INTEGRATION)


async def _stage_integration_environment(
    components: PipelineComponents, state: PipelineRunState
) -> StageResult:
    return await run_integration_in_environment(
        components.settings,
        components.environment,
        components.tier_runner,
        components.bridge,
    )


async def _stage_system(components: PipelineComponents, state: PipelineRunState) -> StageResult:
    return await components.tier_runner.run_tier(Tier.SYSTEM)


async def _stage_benchmark(components: PipelineComponents, state: PipelineRunState) -> StageResult:
    return await components.tier_runner.run_tier(Tier.BENCHMARK)


async def _stage_coverage_report(
    components: PipelineComponents, state: PipelineRunState
) -> StageResult:
    result = await run_coverage_report(components.settings, components.runner)
    state.coverage_percent = float(result.detail) if result.detail else None
    return result


STAGE_HANDLERS: dict[str, StageHandler] = {
    STAGE_BUILD: _stage_build,
    STAGE_CHECK: _stage_check,
    STAGE_UNIT: _stage_unit,
    STAGE_INTEGRATION: _stage_integration,
    STAGE_INTEGRATION_ENVIRONMENT: _stage_integration_environment,
    STAGE_SYSTEM: _stage_system,
    STAGE_BENCHMARK: _stage_benchmark,
    STAGE_COVERAGE_REPORT: _stage_coverage_report,
}

_FAILURE_TYPES: dict[str, type[StageFailedError]] = {
    STAGE_BUILD: BuildError,
    STAGE_CHECK: CheckError,
    STAGE_UNIT: TierFailedError,
    STAGE_INTEGRATION: TierFailedError,
    STAGE_INTEGRATION_ENVIRONMENT: TierFailedError,
    STAGE_SYSTEM: TierFailedError,
    STAGE_BENCHMARK: TierFailedError,
}


async def run_coverage_report(
    settings: PipelineSettings,
    runner: CommandRunner | None = None,
) -> StageResult:
    """Merge every tier profile into ``full.cov`` and render ``full.html``.

    Raises:
        CoverageMergeError: When no tier profile exists yet.
    """
    start = time.monotonic()
    merged = merge_directory(settings.coverage_path, settings.full_profile_path)
    summary = summarize(merged)
    exit_code = await render(settings.full_profile_path, settings.full_report_path, runner)
    logger.info(
        "Coverage: %.1f%% of %d statements", summary.percent, summary.statements
    )
    return StageResult(
        stage=STAGE_COVERAGE_REPORT,
        exit_code=exit_code,
        duration_s=time.monotonic() - start,
        detail=f"{summary.percent:.2f}",
    )


async def run_stage(stage: str, components: PipelineComponents) -> StageResult:
    """Run a single stage outside a full pipeline (one CLI command)."""
    handler = STAGE_HANDLERS.get(stage)
    if handler is None:
        raise PipelineError(f"No handler for stage '{stage}'")
    return await handler(components, PipelineRunState(beat_name=components.settings.beat_name))


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


async def execute_pipeline(
    settings: PipelineSettings,
    include_build: bool = True,
    components: PipelineComponents | None = None,
    shutdown: GracefulShutdown | None = None,
) -> PipelineRunState:
    """Execute one full pipeline run.

    Parameters
    ----------
    settings:
        Frozen settings snapshot; the switches are read from it once.
    include_build:
        Run ``build`` and ``check`` first (``ci``) or start at the unit
        tier (``testsuite``).
    components:
        Pre-wired components; built from *settings* when omitted.
    shutdown:
        Signal handler consulted between stages; a private one is
        installed when omitted.

    Returns
    -------
    PipelineRunState
        Final run state; ``status`` is ``passed`` unless interrupted.

    Raises
    ------
    StageFailedError
        The first failing stage, carrying that stage's exit code; also
        raised (exit code 1) when a stage crashes with an unexpected error.
    PipelineError
        Any other fatal error (merge with no profiles, environment).
    """
    switches = settings.switches
    components = components or build_components(settings)
    state = PipelineRunState(
        beat_name=settings.beat_name,
        use_environment=switches.use_environment,
        run_system_tests=switches.run_system_tests,
        planned_stages=plan_stages(switches, include_build),
        state_dir=str(settings.state_dir),
    )
    run_id_var.set(state.run_id)
    logger.info(
        "Pipeline %s: %s", state.run_id, " → ".join(state.planned_stages)
    )

    own_shutdown = shutdown is None
    if shutdown is None:
        shutdown = GracefulShutdown()
        shutdown.install()
    shutdown.set_state(state)
    state.save()

    try:
        for stage in state.planned_stages:
            if shutdown.should_stop:
                logger.warning("Shutdown requested before stage '%s'", stage)
                state.interrupted = True
                state.interrupt_reason = state.interrupt_reason or "Signal received"
                state.save()
                return state

            state.begin_stage(stage)
            state.save()
            start = time.monotonic()
            try:
                result = await STAGE_HANDLERS[stage](components, state)
            except PipelineError as exc:
                state.finish_stage(stage, exc.exit_code, time.monotonic() - start)
                state.error = str(exc)
                state.save()
                raise
            except Exception as exc:
                logger.exception("Stage '%s' raised an unexpected error", stage)
                state.finish_stage(stage, 1, time.monotonic() - start)
                state.error = f"{type(exc).__name__}: {exc}"
                state.save()
                raise StageFailedError(
                    stage, 1, f"Stage '{stage}' aborted: {state.error}"
                ) from exc

            state.finish_stage(stage, result.exit_code, time.monotonic() - start)
            state.save()
            if not result.ok:
                error_type = _FAILURE_TYPES.get(stage, StageFailedError)
                message = f"Stage '{stage}' failed with exit code {result.exit_code}"
                if result.findings:
                    message += ": " + "; ".join(result.findings)
                state.error = message
                state.save()
                raise error_type(stage, result.exit_code, message)

        state.current_stage = ""
        state.status = StageStatus.PASSED.value
        state.save()
        logger.info("Pipeline %s passed", state.run_id)
        return state
    except KeyboardInterrupt:
        logger.warning("Keyboard interrupt -- saving state")
        state.interrupted = True
        state.interrupt_reason = "Keyboard interrupt"
        state.save()
        raise
    finally:
        if own_shutdown:
            shutdown.uninstall()
