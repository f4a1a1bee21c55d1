"""Shared test fixtures for the ci-orchestrator test suite.

Nothing here needs Docker or a Go toolchain: components receive a
:class:`FakeRunner` that records every command and answers from a small
rule table, and the remote bridge receives a :class:`FakeRemoteBackend`.
"""
from __future__ import annotations

from pathlib import Path
from typing import Callable, Sequence, Union

import pytest

from src.ci_orchestrator.config import PipelineSettings
from src.pipeline_shared.process import CommandResult

Answer = Union[CommandResult, Callable[[list[str]], CommandResult]]


class FakeRunner:
    """Records commands and returns scripted results.

    Rules are matched by substring against the space-joined command; the
    most recently added matching rule wins.  Unmatched commands succeed
    with empty output.
    """

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self._rules: list[tuple[str, Answer]] = []

    def on(self, needle: str, answer: Answer) -> "FakeRunner":
        self._rules.append((needle, answer))
        return self

    def on_result(self, needle: str, returncode: int = 0, stdout: str = "", stderr: str = "") -> "FakeRunner":
        return self.on(needle, CommandResult(returncode, stdout, stderr))

    @property
    def commands(self) -> list[list[str]]:
        return [call["cmd"] for call in self.calls]

    @property
    def joined(self) -> list[str]:
        return [" ".join(cmd) for cmd in self.commands]

    def ran(self, needle: str) -> bool:
        return any(needle in line for line in self.joined)

    def _answer(self, cmd: list[str]) -> CommandResult:
        line = " ".join(cmd)
        for needle, answer in reversed(self._rules):
            if needle in line:
                return answer(cmd) if callable(answer) else answer
        return CommandResult(0)

    def run_sync(self, cmd: Sequence[str], *, cwd=None, env=None, capture=True, timeout=None) -> CommandResult:
        cmd = list(cmd)
        self.calls.append({"cmd": cmd, "cwd": cwd, "env": env, "capture": capture})
        return self._answer(cmd)

    async def run(self, cmd: Sequence[str], *, cwd=None, env=None, capture=True, timeout=None) -> CommandResult:
        return self.run_sync(cmd, cwd=cwd, env=env, capture=capture, timeout=timeout)


class FakeRemoteBackend:
    """In-memory remote execution context."""

    def __init__(
        self,
        exit_code: int = 0,
        attach_code: int = 0,
        copy_ok: bool = True,
        copy_error: Exception | None = None,
        remove_ok: bool = True,
        handle: str = "libbeat_libbeat_run_1",
    ) -> None:
        self.exit_code = exit_code
        self.attach_code = attach_code
        self.copy_ok = copy_ok
        self.copy_error = copy_error
        self.remove_ok = remove_ok
        self.handle = handle
        self.calls: list[tuple] = []

    async def launch(self, command: Sequence[str]) -> str:
        self.calls.append(("launch", list(command)))
        return self.handle

    async def attach(self, handle: str) -> int:
        self.calls.append(("attach", handle))
        return self.attach_code

    async def wait(self, handle: str) -> int:
        self.calls.append(("wait", handle))
        return self.exit_code

    async def copy_from(self, handle: str, remote_path: str, local_dir: Path) -> bool:
        self.calls.append(("copy_from", handle, remote_path, Path(local_dir)))
        if self.copy_error is not None:
            raise self.copy_error
        return self.copy_ok

    async def remove(self, handle: str) -> bool:
        self.calls.append(("remove", handle))
        return self.remove_ok

    @property
    def steps(self) -> list[str]:
        return [call[0] for call in self.calls]


def _clear_settings_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for field in PipelineSettings.model_fields.values():
        alias = field.validation_alias
        if isinstance(alias, str):
            monkeypatch.delenv(alias, raising=False)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every settings environment variable for the test."""
    _clear_settings_env(monkeypatch)
    return monkeypatch


@pytest.fixture
def settings(tmp_path, clean_env) -> PipelineSettings:
    """Settings rooted at a temporary source directory."""
    return PipelineSettings(source_dir=str(tmp_path), beat_name="libbeat")


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def fake_backend() -> FakeRemoteBackend:
    return FakeRemoteBackend()


SAMPLE_PROFILE = """mode: atomic
github.com/elastic/beats/libbeat/beat/beat.go:10.2,12.3 2 1
github.com/elastic/beats/libbeat/beat/beat.go:14.2,15.10 1 0
github.com/elastic/beats/libbeat/publisher/publish.go:20.1,22.2 3 4
"""


@pytest.fixture
def sample_profile_text() -> str:
    return SAMPLE_PROFILE
