"""Shared data models for the CI pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class EnvironmentState(str, Enum):
    """Lifecycle state of the shared service environment."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class CleanupOutcome(str, Enum):
    """Outcome of a single best-effort teardown step."""
    REMOVED = "removed"
    ABSENT = "absent"
    FAILED = "failed"


class StageStatus(str, Enum):
    """Status of a pipeline stage."""
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class CleanupResult:
    """Result of one teardown step.

    ``ABSENT`` means there was nothing to remove; ``FAILED`` means a
    resource was present but could not be removed.  Neither is ever
    escalated to the caller as an error.
    """
    step: str
    outcome: CleanupOutcome
    detail: str = ""

    @property
    def failed(self) -> bool:
        return self.outcome is CleanupOutcome.FAILED


@dataclass
class ServiceEndpoint:
    """An externally reachable endpoint written to the parameters file."""
    name: str
    service: str
    host_key: str
    port_key: str
    host: str
    port: int
    health_path: str | None = None

    def as_env_lines(self) -> list[str]:
        return [f"{self.host_key}={self.host}", f"{self.port_key}={self.port}"]


@dataclass
class StageResult:
    """Outcome of one pipeline stage or standalone command."""
    stage: str
    exit_code: int = 0
    duration_s: float = 0.0
    detail: str = ""
    findings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class CrossCompileTarget:
    """A single (OS, architecture) pair in the cross-compile matrix."""
    os: str
    arch: str

    def __str__(self) -> str:
        return f"{self.os}/{self.arch}"


@dataclass
class CrossCompileResult:
    """Result of compiling the whole target matrix."""
    artifacts: dict[str, str] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1


@dataclass(frozen=True)
class PipelineSwitches:
    """Run-time switches, read once when a pipeline run starts."""
    use_environment: bool = False
    run_system_tests: bool = False
