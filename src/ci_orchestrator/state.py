"""Pipeline run state persistence with atomic writes."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from src.pipeline_shared.constants import STATE_DIR, STATE_FILE
from src.pipeline_shared.models import StageStatus
from src.pipeline_shared.utils import atomic_write_json, load_json, now_iso


@dataclass
class PipelineRunState:
    """Represents one pipeline run.

    Persisted to ``PIPELINE_STATE.json`` after every stage so that
    ``status`` can report on the last run, including an interrupted one.
    """

    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    beat_name: str = ""
    use_environment: bool = False
    run_system_tests: bool = False
    planned_stages: list[str] = field(default_factory=list)
    completed_stages: list[str] = field(default_factory=list)
    stage_exit_codes: dict[str, int] = field(default_factory=dict)
    stage_durations: dict[str, float] = field(default_factory=dict)
    current_stage: str = ""
    failed_stage: str = ""
    status: str = StageStatus.PENDING.value
    error: str = ""
    coverage_percent: float | None = None
    started_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    interrupted: bool = False
    interrupt_reason: str = ""
    state_dir: str = STATE_DIR
    schema_version: int = 1

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialise the state to a plain dictionary."""
        return asdict(self)

    def save(self, directory: Path | str | None = None) -> Path:
        """Persist state to disk using atomic writes.

        Args:
            directory: Target directory.  Defaults to ``state_dir``.

        Returns:
            The path the state was written to.
        """
        directory = Path(directory) if directory else Path(self.state_dir)
        directory.mkdir(parents=True, exist_ok=True)
        target = directory / STATE_FILE
        self.updated_at = now_iso()
        atomic_write_json(target, self.to_dict())
        return target

    @classmethod
    def load(cls, directory: Path | str | None = None) -> PipelineRunState:
        """Load state from a JSON file.

        Args:
            directory: Source directory.  Defaults to :data:`STATE_DIR`.

        Raises:
            FileNotFoundError: If no readable state exists.
        """
        directory = Path(directory) if directory else Path(STATE_DIR)
        target = directory / STATE_FILE
        data = load_json(target)
        if data is None:
            raise FileNotFoundError(f"No pipeline state at {target}")
        # Filter to only known fields
        known = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in known}
        return cls(**filtered)

    # ------------------------------------------------------------------
    # Stage bookkeeping
    # ------------------------------------------------------------------

    def begin_stage(self, stage: str) -> None:
        self.current_stage = stage
        self.status = StageStatus.RUNNING.value

    def finish_stage(self, stage: str, exit_code: int, duration_s: float = 0.0) -> None:
        self.stage_exit_codes[stage] = exit_code
        self.stage_durations[stage] = round(duration_s, 3)
        if exit_code == 0:
            self.completed_stages.append(stage)
        else:
            self.failed_stage = stage
            self.status = StageStatus.FAILED.value

    def stage_status(self, stage: str) -> StageStatus:
        """Status of *stage* as displayed by ``status``."""
        if stage in self.completed_stages:
            return StageStatus.PASSED
        if stage == self.failed_stage:
            return StageStatus.FAILED
        if stage == self.current_stage and self.status == StageStatus.RUNNING.value:
            return StageStatus.RUNNING
        if self.status in (StageStatus.FAILED.value, StageStatus.PASSED.value) or self.interrupted:
            return StageStatus.SKIPPED
        return StageStatus.PENDING
