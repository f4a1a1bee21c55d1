"""Shared constants for the CI pipeline."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Stage names
# ---------------------------------------------------------------------------
STAGE_BUILD = "build"
STAGE_CHECK = "check"
STAGE_UNIT = "unit"
STAGE_INTEGRATION = "integration"
STAGE_INTEGRATION_ENVIRONMENT = "integration-environment"
STAGE_SYSTEM = "system"
STAGE_BENCHMARK = "benchmark"
STAGE_COVERAGE_REPORT = "coverage-report"

# ---------------------------------------------------------------------------
# Coverage
# ---------------------------------------------------------------------------
COVER_MODE = "atomic"
PROFILE_SUFFIX = ".cov"
FULL_PROFILE_NAME = "full.cov"
FULL_REPORT_NAME = "full.html"

# ---------------------------------------------------------------------------
# Toolchain defaults
# ---------------------------------------------------------------------------
DEFAULT_TIMEOUT = 90  # seconds, per test process
DEFAULT_GOX_OS = "linux darwin windows solaris freebsd netbsd openbsd"
DEFAULT_GOX_ARCH = "amd64 386"
GOTESTCOVER_PACKAGE = "github.com/pierrre/gotestcover@latest"

# Exit code used when an executable cannot be found (mirrors the shell).
EXIT_COMMAND_NOT_FOUND = 127

# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------
DEFAULT_SERVICES = ["redis", "elasticsearch-173", "elasticsearch-210", "logstash"]
TEST_ENV_FILE = "test.env"
DEFAULT_READY_TIMEOUT = 120

# ---------------------------------------------------------------------------
# State persistence
# ---------------------------------------------------------------------------
STATE_DIR = ".ci-orchestrator"
STATE_FILE = "PIPELINE_STATE.json"
DEFAULT_CONFIG_FILE = "ci-orchestrator.yaml"
