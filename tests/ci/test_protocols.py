"""Structural checks for the runner and remote backend protocols."""

from __future__ import annotations

from src.environment.docker_orchestrator import DockerOrchestrator
from src.pipeline_shared.process import CommandRunner
from src.pipeline_shared.protocols import RemoteBackend, Runner
from src.testing.remote_bridge import DockerRemoteBackend
from tests.conftest import FakeRemoteBackend, FakeRunner


def test_command_runner_is_runner() -> None:
    assert isinstance(CommandRunner(), Runner)


def test_fake_runner_is_runner() -> None:
    assert isinstance(FakeRunner(), Runner)


def test_docker_backend_is_remote_backend() -> None:
    backend = DockerRemoteBackend(DockerOrchestrator("docker-compose.yml", "libbeat"), "libbeat")
    assert isinstance(backend, RemoteBackend)


def test_fake_backend_is_remote_backend() -> None:
    assert isinstance(FakeRemoteBackend(), RemoteBackend)


def test_runner_is_not_backend() -> None:
    assert not isinstance(CommandRunner(), RemoteBackend)
