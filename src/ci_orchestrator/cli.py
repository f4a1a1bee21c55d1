"""Typer command-line interface for the CI orchestrator.

Every build-script target is a command.  Settings are loaded once per
invocation (``--config`` file, then environment, then command flags) and
the process exits with the failing stage's own status code.
"""

from __future__ import annotations

import asyncio
import logging
import subprocess
from pathlib import Path
from typing import Any, Coroutine, List, Optional

import typer

from src.ci_orchestrator.config import PipelineSettings, load_settings
from src.ci_orchestrator.display import (
    _console,
    print_cleanup_results,
    print_coverage_summary,
    print_crosscompile_results,
    print_error_panel,
    print_final_summary,
    print_pipeline_header,
    print_stage_table,
)
from src.ci_orchestrator.exceptions import PipelineError
from src.ci_orchestrator.state import PipelineRunState
from src.pipeline_shared import __version__
from src.pipeline_shared.constants import (
    DEFAULT_CONFIG_FILE,
    STAGE_BENCHMARK,
    STAGE_CHECK,
    STAGE_INTEGRATION,
    STAGE_INTEGRATION_ENVIRONMENT,
    STAGE_SYSTEM,
    STAGE_UNIT,
)
from src.shared.logging import setup_logging

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="ci-orchestrator",
    help="Build, test, and report coverage for one Go unit.",
    no_args_is_help=True,
)

_DEFAULT_CONFIG_TEMPLATE = """\
# CI orchestrator project file.
# Environment variables (BEATNAME, TIMEOUT, TEST_ENVIRONMENT, ...) override
# these values; command-line flags override both.

# Name of the unit under test; also the binary and compose project name.
beat_name: libbeat
# Import path prefix of the unit.
beat_dir: github.com/elastic/beats
source_dir: "."
build_dir: build
coverage_dir: build/coverage

# Per test-process timeout in seconds.
timeout: 90

# Run integration tests inside the service environment.
test_environment: false
# Run the system test harness.
system_tests: false

# Cross-compile matrix (space separated).
gox_os: "linux darwin windows solaris freebsd netbsd openbsd"
gox_arch: "amd64 386"

# Service environment.
compose_file: docker-compose.yml
es_host: elasticsearch-210
ready_timeout: 120
services:
  - redis
  - elasticsearch-173
  - elasticsearch-210
  - logstash

# Command run inside the unit's container for containerized integration tests.
remote_command:
  - ci-orchestrator
  - integration-tests

# Location of the system test harness (relative to source_dir).
system_harness_dir: tests/system

log_level: INFO
"""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _version_callback(value: bool) -> None:
    if value:
        _console.print(f"ci-orchestrator {__version__}")
        raise typer.Exit()


def _check_docker() -> bool:
    """Return whether the docker daemon answers."""
    try:
        result = subprocess.run(
            ["docker", "info"],
            capture_output=True,
            timeout=15,
        )
        return result.returncode == 0
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return False


def _load(ctx: typer.Context, **overrides: Any) -> PipelineSettings:
    """Load the settings snapshot for this invocation and set up logging."""
    options = ctx.obj or {}
    settings = load_settings(options.get("config"), **overrides)
    setup_logging(
        "ci-orchestrator",
        level=options.get("log_level") or settings.log_level,
        json_format=options.get("json_logs", False),
    )
    return settings


def _execute(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run *coro*; convert pipeline errors into an error panel and exit code."""
    try:
        return asyncio.run(coro)
    except PipelineError as exc:
        print_error_panel(exc)
        raise typer.Exit(code=exc.exit_code)


def _run_stage(ctx: typer.Context, stage: str, **overrides: Any) -> None:
    from src.ci_orchestrator.pipeline import build_components, run_stage

    settings = _load(ctx, **overrides)
    result = _execute(run_stage(stage, build_components(settings)))
    if not result.ok:
        message = f"Stage '{stage}' failed with exit code {result.exit_code}"
        if result.findings:
            message += "\n" + "\n".join(result.findings)
        print_error_panel(message)
        raise typer.Exit(code=result.exit_code)
    _console.print(f"[green]{stage} passed[/green]")


def _run_pipeline(ctx: typer.Context, include_build: bool, **overrides: Any) -> None:
    from src.ci_orchestrator.pipeline import execute_pipeline

    settings = _load(ctx, **overrides)
    try:
        state = asyncio.run(execute_pipeline(settings, include_build=include_build))
    except PipelineError as exc:
        print_error_panel(exc)
        try:
            failed = PipelineRunState.load(settings.state_dir)
            print_stage_table(failed)
            print_final_summary(failed)
        except FileNotFoundError:
            pass
        raise typer.Exit(code=exc.exit_code)

    print_pipeline_header(state)
    print_stage_table(state)
    print_final_summary(state)
    if state.interrupted:
        raise typer.Exit(code=130)


# ---------------------------------------------------------------------------
# Callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    config: Path = typer.Option(
        Path(DEFAULT_CONFIG_FILE), "--config", "-c", help="YAML project file."
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LOG_LEVEL."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines."),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Build, test, and report coverage for one Go unit."""
    ctx.obj = {"config": config, "log_level": log_level, "json_logs": json_logs}


# ---------------------------------------------------------------------------
# Build commands
# ---------------------------------------------------------------------------


@app.command()
def build(ctx: typer.Context) -> None:
    """Compile the unit for the host platform."""
    from src.ci_orchestrator.pipeline import build_components

    settings = _load(ctx)
    _execute(build_components(settings).builder.build())
    _console.print(f"[green]Built {settings.beat_name}[/green]")


@app.command()
def crosscompile(
    ctx: typer.Context,
    allow_partial: bool = typer.Option(
        False, "--allow-partial", help="Exit 0 when at least one target was produced."
    ),
) -> None:
    """Compile one binary per configured OS/architecture pair."""
    from src.ci_orchestrator.pipeline import build_components

    settings = _load(ctx)
    result = _execute(build_components(settings).builder.crosscompile())
    print_crosscompile_results(result)
    if result.ok or (allow_partial and result.artifacts):
        return
    raise typer.Exit(code=result.exit_code)


@app.command()
def check(ctx: typer.Context) -> None:
    """Verify formatting and run static analysis without modifying sources."""
    _run_stage(ctx, STAGE_CHECK)


@app.command()
def clean(ctx: typer.Context) -> None:
    """Reformat sources in place and remove build outputs."""
    from src.ci_orchestrator.pipeline import build_components

    settings = _load(ctx)
    removed = _execute(build_components(settings).builder.clean())
    for path in removed:
        _console.print(f"removed {path}")


# ---------------------------------------------------------------------------
# Pipelines
# ---------------------------------------------------------------------------


@app.command()
def ci(
    ctx: typer.Context,
    test_environment: Optional[bool] = typer.Option(
        None, "--test-environment/--no-test-environment", help="Override TEST_ENVIRONMENT."
    ),
    system_tests: Optional[bool] = typer.Option(
        None, "--system-tests/--no-system-tests", help="Override SYSTEM_TESTS."
    ),
) -> None:
    """Build, check, run every enabled tier, and write the coverage report."""
    _run_pipeline(
        ctx, include_build=True, test_environment=test_environment, system_tests=system_tests
    )


@app.command()
def testsuite(
    ctx: typer.Context,
    test_environment: Optional[bool] = typer.Option(
        None, "--test-environment/--no-test-environment", help="Override TEST_ENVIRONMENT."
    ),
    system_tests: Optional[bool] = typer.Option(
        None, "--system-tests/--no-system-tests", help="Override SYSTEM_TESTS."
    ),
) -> None:
    """Run every enabled tier and write the coverage report."""
    _run_pipeline(
        ctx, include_build=False, test_environment=test_environment, system_tests=system_tests
    )


# ---------------------------------------------------------------------------
# Test tiers
# ---------------------------------------------------------------------------


@app.command("unit-tests")
def unit_tests(ctx: typer.Context) -> None:
    """Run the unit tier with coverage."""
    _run_stage(ctx, STAGE_UNIT)


@app.command("integration-tests")
def integration_tests(ctx: typer.Context) -> None:
    """Run the integration tier against already-running services."""
    _run_stage(ctx, STAGE_INTEGRATION)


@app.command("integration-tests-environment")
def integration_tests_environment(ctx: typer.Context) -> None:
    """Run the integration tier inside the service environment."""
    _run_stage(ctx, STAGE_INTEGRATION_ENVIRONMENT)


@app.command("system-tests")
def system_tests_command(ctx: typer.Context) -> None:
    """Run the system test harness against the coverage test binary."""
    _run_stage(ctx, STAGE_SYSTEM)


@app.command("benchmark-tests")
def benchmark_tests(ctx: typer.Context) -> None:
    """Run the benchmark tier."""
    _run_stage(ctx, STAGE_BENCHMARK)


@app.command("coverage-report")
def coverage_report(ctx: typer.Context) -> None:
    """Merge every tier profile and render the HTML report."""
    from src.ci_orchestrator.pipeline import run_coverage_report
    from src.coverage_aggregator.aggregator import summarize
    from src.coverage_aggregator.profile import parse_profile

    settings = _load(ctx)
    result = _execute(run_coverage_report(settings))
    print_coverage_summary(summarize(parse_profile(settings.full_profile_path)))
    if not result.ok:
        print_error_panel(f"Rendering {settings.full_report_path} failed")
        raise typer.Exit(code=result.exit_code)
    _console.print(f"Report: {settings.full_report_path}")


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@app.command("start-environment")
def start_environment(
    ctx: typer.Context,
    service: Optional[List[str]] = typer.Option(
        None, "--service", "-s", help="Service to start (repeatable)."
    ),
) -> None:
    """Start the service environment from a clean slate."""
    from src.environment.environment_manager import EnvironmentManager

    settings = _load(ctx)
    endpoints = _execute(EnvironmentManager(settings).start(service or None))
    for endpoint in endpoints:
        _console.print(f"{endpoint.name}: {endpoint.host}:{endpoint.port}")


@app.command("stop-environment")
def stop_environment(ctx: typer.Context) -> None:
    """Tear the service environment down.  Always succeeds."""
    from src.environment.environment_manager import EnvironmentManager

    settings = _load(ctx)
    results = _execute(EnvironmentManager(settings).stop())
    print_cleanup_results(results)


@app.command("build-image")
def build_image(ctx: typer.Context) -> None:
    """Build the environment's service images."""
    from src.environment.environment_manager import EnvironmentManager

    settings = _load(ctx)
    _execute(EnvironmentManager(settings).build_image())


@app.command("write-environment")
def write_environment(ctx: typer.Context) -> None:
    """Write the parameters file consumed by integration and system tests."""
    from src.environment.environment_manager import EnvironmentManager

    settings = _load(ctx)
    EnvironmentManager(settings).write_environment()
    _console.print(f"Wrote {settings.test_env_path}")


# ---------------------------------------------------------------------------
# Project
# ---------------------------------------------------------------------------


@app.command()
def init(
    output_dir: Path = typer.Option(Path("."), "--output-dir", "-o", help="Where to write the project file."),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing project file."),
) -> None:
    """Write a commented project file."""
    target = output_dir / DEFAULT_CONFIG_FILE
    if target.exists() and not force:
        print_error_panel(f"{target} already exists (use --force to overwrite)")
        raise typer.Exit(code=1)
    output_dir.mkdir(parents=True, exist_ok=True)
    target.write_text(_DEFAULT_CONFIG_TEMPLATE, encoding="utf-8")
    _console.print(f"[green]Wrote {target}[/green]")

    if not _check_docker():
        _console.print(
            "[yellow]Warning: Docker is not available. "
            "The service environment commands will fail.[/yellow]"
        )


@app.command()
def status(ctx: typer.Context) -> None:
    """Show the last pipeline run."""
    settings = load_settings((ctx.obj or {}).get("config"))
    try:
        state = PipelineRunState.load(settings.state_dir)
    except FileNotFoundError:
        print_error_panel("No pipeline state found. Run 'ci-orchestrator ci' first.")
        raise typer.Exit(code=1)
    print_pipeline_header(state)
    print_stage_table(state)
    print_final_summary(state)


def main() -> None:
    app()

