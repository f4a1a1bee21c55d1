"""Compilation, cross-compilation, and static checks for the target unit.

Implements:

- ``build()`` -- host-platform compile, fatal on error
- ``build_test_binary()`` -- coverage-instrumented test binary for the
  system tier
- ``crosscompile()`` -- one artifact per (OS, Arch) pair; every target is
  attempted even when an earlier one fails
- ``check()`` -- read-only formatting and vet checks
- ``clean()`` -- the maintainer's cleanup, which *does* rewrite formatting
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Iterable

from src.ci_orchestrator.config import PipelineSettings
from src.ci_orchestrator.exceptions import BuildError
from src.pipeline_shared.constants import COVER_MODE, STAGE_BUILD, STAGE_CHECK
from src.pipeline_shared.models import (
    CrossCompileResult,
    CrossCompileTarget,
    StageResult,
)
from src.pipeline_shared.process import CommandRunner
from src.pipeline_shared.utils import ensure_dir, remove_path

logger = logging.getLogger(__name__)


def artifact_name(beat_name: str, target: CrossCompileTarget) -> str:
    """Return the unique binary name for *target*, e.g. ``libbeat-linux-amd64``."""
    name = f"{beat_name}-{target.os}-{target.arch}"
    if target.os == "windows":
        name += ".exe"
    return name


class BuildOrchestrator:
    """Drives the Go toolchain for one target unit.

    Args:
        settings: Frozen pipeline settings.
        runner: Command runner; defaults to one rooted at the source dir.
    """

    def __init__(
        self,
        settings: PipelineSettings,
        runner: CommandRunner | None = None,
    ) -> None:
        self.settings = settings
        self._runner = runner or CommandRunner(cwd=settings.source_path)

    @property
    def test_binary_path(self) -> Path:
        return self.settings.source_path / f"{self.settings.beat_name}.test"

    async def build(self) -> StageResult:
        """Compile the target unit for the host platform.

        Raises:
            BuildError: On any compile error.  Builds are never retried.
        """
        start = time.monotonic()
        result = await self._runner.run(["go", "build"])
        if not result.ok:
            logger.error("Build failed: %s", result.stderr.strip())
            raise BuildError(
                STAGE_BUILD,
                result.returncode,
                f"Build of {self.settings.beat_name} failed: {result.stderr.strip()}",
            )
        logger.info("Built %s", self.settings.beat_name)
        return StageResult(stage=STAGE_BUILD, duration_s=time.monotonic() - start)

    async def build_test_binary(self, race: bool = False) -> Path:
        """Compile the coverage-instrumented test binary.

        Args:
            race: Build with the race detector enabled.

        Returns:
            Path to ``<beat_name>.test``.

        Raises:
            BuildError: When the test binary does not compile.
        """
        cmd = ["go", "test", "-c"]
        if race:
            cmd.append("-race")
        cmd.extend([f"-covermode={COVER_MODE}", "-coverpkg", "./..."])
        result = await self._runner.run(cmd)
        if not result.ok:
            raise BuildError(
                STAGE_BUILD,
                result.returncode,
                f"Test binary build failed: {result.stderr.strip()}",
            )
        logger.info("Built coverage test binary %s", self.test_binary_path.name)
        return self.test_binary_path

    async def crosscompile(
        self,
        targets: Iterable[CrossCompileTarget] | None = None,
    ) -> CrossCompileResult:
        """Compile one binary per target into ``<build_dir>/bin``.

        Args:
            targets: The (OS, Arch) matrix.  Defaults to the configured
                ``GOX_OS`` x ``GOX_ARCH`` product.

        Returns:
            A :class:`CrossCompileResult` listing produced artifacts and
            per-target failures.  Whether a partial matrix is acceptable
            is left to the caller.
        """
        if targets is None:
            targets = self.settings.cross_compile_targets()
        bin_dir = ensure_dir(self.settings.build_path / "bin")
        outcome = CrossCompileResult()

        for target in targets:
            output = bin_dir / artifact_name(self.settings.beat_name, target)
            result = await self._runner.run(
                ["go", "build", "-o", str(output)],
                env={"GOOS": target.os, "GOARCH": target.arch, "CGO_ENABLED": "0"},
            )
            if result.ok:
                outcome.artifacts[str(target)] = str(output)
                logger.info("Cross-compiled %s -> %s", target, output.name)
            else:
                outcome.failures[str(target)] = result.stderr.strip() or (
                    f"exit code {result.returncode}"
                )
                logger.error("Cross-compile failed for %s: %s", target, result.stderr.strip())

        logger.info(
            "Cross-compile finished: %d produced, %d failed",
            len(outcome.artifacts),
            len(outcome.failures),
        )
        return outcome

    async def check(self) -> StageResult:
        """Verify formatting and run static analysis without touching sources.

        Returns:
            A :class:`StageResult`; non-zero when ``gofmt`` lists any file
            or ``go vet`` reports a finding.
        """
        start = time.monotonic()
        findings: list[str] = []

        fmt = await self._runner.run(["gofmt", "-l", "."])
        unformatted = [line.strip() for line in fmt.stdout.splitlines() if line.strip()]
        if unformatted:
            logger.error("Code differs from gofmt's style: %s", ", ".join(unformatted))
            findings.extend(f"gofmt: {path}" for path in unformatted)
        elif not fmt.ok:
            findings.append(f"gofmt: {fmt.stderr.strip()}")

        vet = await self._runner.run(["go", "vet", "./..."])
        if not vet.ok:
            logger.error("go vet reported findings")
            findings.extend(
                f"vet: {line.strip()}"
                for line in (vet.stderr or vet.stdout).splitlines()
                if line.strip()
            )
            if not findings:
                findings.append(f"vet: exit code {vet.returncode}")

        return StageResult(
            stage=STAGE_CHECK,
            exit_code=1 if findings else 0,
            duration_s=time.monotonic() - start,
            findings=findings,
        )

    async def clean(self) -> list[str]:
        """Reformat sources in place and remove build outputs.

        Returns:
            Paths that were removed.
        """
        await self._runner.run(["go", "fmt", "./..."])
        await self._runner.run(["gofmt", "-w", "."])

        removed: list[str] = []
        if remove_path(self.settings.build_path):
            removed.append(str(self.settings.build_path))
        for binary in (
            self.settings.source_path / self.settings.beat_name,
            self.test_binary_path,
        ):
            if binary.is_file():
                binary.unlink()
                removed.append(str(binary))
        logger.info("Cleaned %d path(s)", len(removed))
        return removed
