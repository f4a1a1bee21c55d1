"""Pipeline settings: environment variables layered over a YAML project file.

Precedence, highest first: explicit overrides (CLI flags), environment
variables, the YAML project file, field defaults.  Settings are frozen;
a pipeline run reads them once and passes the same snapshot to every
component.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from src.pipeline_shared.constants import (
    DEFAULT_GOX_ARCH,
    DEFAULT_GOX_OS,
    DEFAULT_READY_TIMEOUT,
    DEFAULT_SERVICES,
    DEFAULT_TIMEOUT,
    FULL_PROFILE_NAME,
    FULL_REPORT_NAME,
    STATE_DIR,
    TEST_ENV_FILE,
)
from src.pipeline_shared.models import CrossCompileTarget, PipelineSwitches, ServiceEndpoint

logger = logging.getLogger(__name__)


class EndpointConfig(BaseModel):
    """An endpoint entry as written in the YAML project file."""

    name: str
    service: str
    host_key: str
    port_key: str
    host: str
    port: int
    health_path: str | None = None


class PipelineSettings(BaseSettings):
    """All recognised configuration inputs for one pipeline invocation."""

    beat_name: str = Field(default="libbeat", validation_alias="BEATNAME")
    beat_dir: str = Field(default="github.com/elastic/beats", validation_alias="BEAT_DIR")
    source_dir: str = Field(default=".", validation_alias="SOURCE_DIR")
    build_dir: str = Field(default="build", validation_alias="BUILD_DIR")
    coverage_dir: str = Field(default="build/coverage", validation_alias="COVERAGE_DIR")
    timeout: int = Field(default=DEFAULT_TIMEOUT, validation_alias="TIMEOUT")
    test_environment: bool = Field(default=False, validation_alias="TEST_ENVIRONMENT")
    system_tests: bool = Field(default=False, validation_alias="SYSTEM_TESTS")
    gox_os: str = Field(default=DEFAULT_GOX_OS, validation_alias="GOX_OS")
    gox_arch: str = Field(default=DEFAULT_GOX_ARCH, validation_alias="GOX_ARCH")
    es_host: str = Field(default="elasticsearch-210", validation_alias="ES_HOST")
    compose_file: str = Field(default="docker-compose.yml", validation_alias="COMPOSE_FILE")
    ready_timeout: int = Field(default=DEFAULT_READY_TIMEOUT, validation_alias="READY_TIMEOUT")
    remote_workdir: str = Field(default="", validation_alias="REMOTE_WORKDIR")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    services: list[str] = Field(default_factory=lambda: list(DEFAULT_SERVICES))
    endpoints: list[EndpointConfig] = Field(default_factory=list)
    remote_command: list[str] = Field(
        default_factory=lambda: ["ci-orchestrator", "integration-tests"]
    )
    system_harness_dir: str = "tests/system"

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
        "frozen": True,
    }

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment beats the YAML file, which arrives as init kwargs.
        return (env_settings, init_settings, dotenv_settings, file_secret_settings)

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def source_path(self) -> Path:
        return Path(self.source_dir).resolve()

    @property
    def build_path(self) -> Path:
        return self.source_path / self.build_dir

    @property
    def coverage_path(self) -> Path:
        return self.source_path / self.coverage_dir

    @property
    def full_profile_path(self) -> Path:
        return self.coverage_path / FULL_PROFILE_NAME

    @property
    def full_report_path(self) -> Path:
        return self.coverage_path / FULL_REPORT_NAME

    @property
    def test_env_path(self) -> Path:
        return self.build_path / TEST_ENV_FILE

    @property
    def state_dir(self) -> Path:
        return self.build_path / STATE_DIR

    @property
    def package_pattern(self) -> str:
        """Import pattern selecting every package of the target unit."""
        return f"{self.beat_dir}/{self.beat_name}/..."

    @property
    def remote_root(self) -> str:
        return self.remote_workdir or f"/go/src/{self.beat_dir}/{self.beat_name}"

    @property
    def switches(self) -> PipelineSwitches:
        return PipelineSwitches(
            use_environment=self.test_environment,
            run_system_tests=self.system_tests,
        )

    def cross_compile_targets(self) -> list[CrossCompileTarget]:
        """Return the OS x architecture matrix in declaration order."""
        return [
            CrossCompileTarget(os=os_name, arch=arch)
            for os_name in self.gox_os.split()
            for arch in self.gox_arch.split()
        ]

    def service_endpoints(self) -> list[ServiceEndpoint]:
        """Endpoints written to the parameters file.

        Falls back to the search index, cache, and log relay defaults
        when the project file declares none.
        """
        if self.endpoints:
            return [ServiceEndpoint(**e.model_dump()) for e in self.endpoints]
        return [
            ServiceEndpoint(
                name="elasticsearch",
                service=self.es_host,
                host_key="ES_HOST",
                port_key="ES_PORT",
                host=self.es_host,
                port=9200,
                health_path="/",
            ),
            ServiceEndpoint(
                name="redis",
                service="redis",
                host_key="REDIS_HOST",
                port_key="REDIS_PORT",
                host="redis",
                port=6379,
            ),
            ServiceEndpoint(
                name="logstash",
                service="logstash",
                host_key="LS_HOST",
                port_key="LS_PORT",
                host="logstash",
                port=5044,
            ),
        ]


def load_settings(
    config_path: Path | str | None = None,
    **overrides: Any,
) -> PipelineSettings:
    """Load settings from an optional YAML file, the environment, and overrides.

    Unknown YAML keys are silently ignored so that forward-compatible
    project files work.  Overrides whose value is ``None`` are dropped,
    which lets CLI options default to "not given".

    Args:
        config_path: Path to a YAML project file.  A missing file is
            treated as empty.
        **overrides: Field values that win over every other source.

    Returns:
        A frozen :class:`PipelineSettings` snapshot.
    """
    raw: dict[str, Any] = {}
    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            with open(path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
            logger.debug("Loaded project file %s (%d keys)", path, len(raw))
        else:
            logger.debug("Project file %s not found, using defaults", path)

    valid = set(PipelineSettings.model_fields)
    settings = PipelineSettings(**{k: v for k, v in raw.items() if k in valid})

    updates = {k: v for k, v in overrides.items() if v is not None and k in valid}
    if updates:
        settings = settings.model_copy(update=updates)
    return settings
