"""Tests for the pipeline composer: stage plan, gating, and failure handling."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.builder.build_orchestrator import BuildOrchestrator
from src.ci_orchestrator.config import PipelineSettings
from src.ci_orchestrator.exceptions import (
    BuildError,
    CheckError,
    CoverageMergeError,
    StageFailedError,
    TierFailedError,
)
from src.ci_orchestrator.pipeline import (
    PipelineComponents,
    execute_pipeline,
    plan_stages,
    run_coverage_report,
    run_stage,
)
from src.ci_orchestrator.shutdown import GracefulShutdown
from src.ci_orchestrator.state import PipelineRunState
from src.pipeline_shared.models import PipelineSwitches
from src.pipeline_shared.process import CommandResult
from src.shared.logging import run_id_var
from src.testing.remote_bridge import RemoteExecutionBridge
from src.testing.tier_runner import TierRunner
from tests.conftest import SAMPLE_PROFILE, FakeRemoteBackend, FakeRunner


def _writes_profile(cmd: list[str]) -> CommandResult:
    """Answer for gotestcover: leave a profile where the tier asked for it."""
    for arg in cmd:
        if arg.startswith("-coverprofile="):
            path = Path(arg.split("=", 1)[1])
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(SAMPLE_PROFILE, encoding="utf-8")
    return CommandResult(0)


def _components(settings: PipelineSettings, runner: FakeRunner, backend: FakeRemoteBackend) -> PipelineComponents:
    builder = BuildOrchestrator(settings, runner=runner)
    tier_runner = TierRunner(settings, runner=runner, builder=builder)
    tier_runner._gotestcover = lambda: "gotestcover"  # type: ignore[method-assign]
    environment = MagicMock()
    environment.build_image = AsyncMock()
    environment.stop = AsyncMock(return_value=[])
    environment.start = AsyncMock()
    return PipelineComponents(
        settings=settings,
        runner=runner,
        builder=builder,
        environment=environment,
        tier_runner=tier_runner,
        bridge=RemoteExecutionBridge(settings, backend=backend),
    )


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner().on("gotestcover -tags", _writes_profile)


@pytest.fixture
def components(settings, runner, fake_backend) -> PipelineComponents:
    return _components(settings, runner, fake_backend)


@pytest.fixture
def shutdown() -> GracefulShutdown:
    return GracefulShutdown()


class TestPlanStages:
    def test_default_testsuite(self) -> None:
        assert plan_stages(PipelineSwitches(), include_build=False) == [
            "unit", "integration", "benchmark", "coverage-report",
        ]

    def test_ci_prefixes_build_and_check(self) -> None:
        assert plan_stages(PipelineSwitches())[:3] == ["build", "check", "unit"]

    def test_environment_switch(self) -> None:
        stages = plan_stages(PipelineSwitches(use_environment=True), include_build=False)
        assert "integration-environment" in stages
        assert "integration" not in stages

    def test_system_switch(self) -> None:
        stages = plan_stages(PipelineSwitches(run_system_tests=True), include_build=False)
        assert stages == ["unit", "integration", "system", "benchmark", "coverage-report"]

    def test_coverage_report_always_last(self) -> None:
        for env in (False, True):
            for system in (False, True):
                assert plan_stages(PipelineSwitches(env, system))[-1] == "coverage-report"


class TestGating:
    @pytest.mark.asyncio
    async def test_both_switches_off(self, settings, components, fake_backend, shutdown) -> None:
        state = await execute_pipeline(
            settings, include_build=False, components=components, shutdown=shutdown
        )

        assert state.completed_stages == ["unit", "integration", "benchmark", "coverage-report"]
        assert state.status == "passed"
        components.environment.start.assert_not_awaited()
        components.environment.stop.assert_not_awaited()
        components.environment.build_image.assert_not_awaited()
        assert fake_backend.calls == []

    @pytest.mark.asyncio
    async def test_environment_switch_uses_bridge(self, clean_env, tmp_path, runner, shutdown) -> None:
        settings = PipelineSettings(source_dir=str(tmp_path), test_environment=True)
        backend = FakeRemoteBackend(exit_code=0)
        components = _components(settings, runner, backend)

        state = await execute_pipeline(
            settings, include_build=False, components=components, shutdown=shutdown
        )

        assert "integration-environment" in state.completed_stages
        assert "launch" in backend.steps
        assert not runner.ran("-tags=integration")
        components.environment.build_image.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_switches_read_once(self, clean_env, settings, components, shutdown) -> None:
        clean_env.setenv("TEST_ENVIRONMENT", "true")
        state = await execute_pipeline(
            settings, include_build=False, components=components, shutdown=shutdown
        )
        assert state.use_environment is False
        assert "integration" in state.completed_stages

    @pytest.mark.asyncio
    async def test_ci_runs_build_and_check_first(self, settings, components, runner, shutdown) -> None:
        state = await execute_pipeline(settings, components=components, shutdown=shutdown)
        assert state.completed_stages[:2] == ["build", "check"]
        assert runner.commands[0] == ["go", "build"]


class TestFailures:
    @pytest.mark.asyncio
    async def test_first_failure_stops_the_run(self, settings, components, runner, shutdown) -> None:
        runner.on("-tags=unit", lambda cmd: CommandResult(1))
        with pytest.raises(TierFailedError) as exc_info:
            await execute_pipeline(settings, include_build=False, components=components, shutdown=shutdown)

        assert exc_info.value.exit_code == 1
        assert exc_info.value.stage == "unit"
        assert not runner.ran("-tags=integration")
        assert not runner.ran("go tool cover")

        saved = PipelineRunState.load(settings.state_dir)
        assert saved.failed_stage == "unit"
        assert saved.status == "failed"
        assert saved.stage_exit_codes == {"unit": 1}

    @pytest.mark.asyncio
    async def test_build_failure(self, settings, components, runner, shutdown) -> None:
        runner.on_result("go build", 2, stderr="syntax error")
        with pytest.raises(BuildError) as exc_info:
            await execute_pipeline(settings, components=components, shutdown=shutdown)
        assert exc_info.value.exit_code == 2
        assert PipelineRunState.load(settings.state_dir).failed_stage == "build"

    @pytest.mark.asyncio
    async def test_check_failure(self, settings, components, runner, shutdown) -> None:
        runner.on_result("gofmt -l", 0, stdout="beat.go\n")
        with pytest.raises(CheckError, match="gofmt: beat.go"):
            await execute_pipeline(settings, components=components, shutdown=shutdown)
        assert not runner.ran("gotestcover -tags")

    @pytest.mark.asyncio
    async def test_unexpected_error_marks_stage_failed(self, settings, components, runner, shutdown) -> None:
        def disk_full(cmd: list[str]) -> CommandResult:
            raise OSError("disk full")

        runner.on("go vet", disk_full)
        with pytest.raises(StageFailedError) as exc_info:
            await execute_pipeline(settings, components=components, shutdown=shutdown)
        assert exc_info.value.stage == "check"
        assert isinstance(exc_info.value.__cause__, OSError)
        assert not runner.ran("gotestcover -tags")

        saved = PipelineRunState.load(settings.state_dir)
        assert saved.status == "failed"
        assert saved.failed_stage == "check"
        assert "disk full" in saved.error

    @pytest.mark.asyncio
    async def test_remote_code_propagates(self, clean_env, tmp_path, runner, shutdown) -> None:
        settings = PipelineSettings(source_dir=str(tmp_path), test_environment=True)
        components = _components(settings, runner, FakeRemoteBackend(exit_code=3, copy_ok=False))
        with pytest.raises(TierFailedError) as exc_info:
            await execute_pipeline(settings, include_build=False, components=components, shutdown=shutdown)
        assert exc_info.value.exit_code == 3
        assert exc_info.value.stage == "integration-environment"

    @pytest.mark.asyncio
    async def test_missing_profiles_fail_coverage_report(self, settings, shutdown, fake_backend) -> None:
        components = _components(settings, FakeRunner(), fake_backend)
        with pytest.raises(CoverageMergeError):
            await execute_pipeline(settings, include_build=False, components=components, shutdown=shutdown)
        saved = PipelineRunState.load(settings.state_dir)
        assert saved.failed_stage == "coverage-report"
        assert "No coverage profiles" in saved.error


class TestRunState:
    @pytest.mark.asyncio
    async def test_coverage_recorded(self, settings, components, shutdown) -> None:
        state = await execute_pipeline(settings, include_build=False, components=components, shutdown=shutdown)
        assert state.coverage_percent == pytest.approx(83.33, rel=1e-3)
        assert settings.full_profile_path.exists()

    @pytest.mark.asyncio
    async def test_run_id_in_context(self, settings, components, shutdown) -> None:
        state = await execute_pipeline(settings, include_build=False, components=components, shutdown=shutdown)
        assert run_id_var.get() == state.run_id

    @pytest.mark.asyncio
    async def test_shutdown_before_first_stage(self, settings, components, runner, shutdown) -> None:
        shutdown.should_stop = True
        state = await execute_pipeline(settings, components=components, shutdown=shutdown)
        assert state.interrupted is True
        assert state.completed_stages == []
        assert runner.commands == []

    @pytest.mark.asyncio
    async def test_state_saved_per_stage(self, settings, components, shutdown) -> None:
        await execute_pipeline(settings, include_build=False, components=components, shutdown=shutdown)
        saved = PipelineRunState.load(settings.state_dir)
        assert saved.status == "passed"
        assert set(saved.stage_durations) == set(saved.planned_stages)


class TestSingleStage:
    @pytest.mark.asyncio
    async def test_run_stage(self, components) -> None:
        result = await run_stage("unit", components)
        assert result.ok

    @pytest.mark.asyncio
    async def test_unknown_stage(self, components) -> None:
        from src.ci_orchestrator.exceptions import PipelineError

        with pytest.raises(PipelineError):
            await run_stage("deploy", components)

    @pytest.mark.asyncio
    async def test_coverage_report(self, settings, fake_runner) -> None:
        settings.coverage_path.mkdir(parents=True)
        (settings.coverage_path / "unit.cov").write_text(SAMPLE_PROFILE, encoding="utf-8")
        result = await run_coverage_report(settings, fake_runner)
        assert result.ok
        assert fake_runner.ran("go tool cover")
        assert float(result.detail) == pytest.approx(83.33, rel=1e-3)
