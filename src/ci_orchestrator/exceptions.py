"""Custom exceptions for the CI orchestration pipeline."""

from __future__ import annotations


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    exit_code: int = 1


class ConfigurationError(PipelineError):
    """Raised for configuration issues (missing tools, bad settings, etc.)."""

    pass


class StageFailedError(PipelineError):
    """Raised when a stage finishes with a non-zero status."""

    def __init__(self, stage: str, exit_code: int = 1, message: str = "") -> None:
        self.stage = stage
        self.exit_code = exit_code or 1
        super().__init__(
            message or f"Stage '{stage}' failed with exit code {self.exit_code}"
        )


class BuildError(StageFailedError):
    """Raised when compiling the target unit or its test binary fails."""

    pass


class CheckError(StageFailedError):
    """Raised when formatting or static analysis reports findings."""

    pass


class TierFailedError(StageFailedError):
    """Raised when a test tier reports failing tests."""

    pass


class EnvironmentProvisionError(PipelineError):
    """Raised when the service environment cannot be started or built."""

    pass


class RemoteExecutionError(PipelineError):
    """Raised when the remote tier's exit status cannot be determined."""

    pass


class CoverageMergeError(PipelineError):
    """Raised when coverage profiles are missing or malformed."""

    pass
