"""Merge per-tier coverage profiles and render the unified report.

Implements:

- ``merge()`` -- sum counts per block across profiles
- ``merge_directory()`` -- merge every profile in a directory into one file
- ``convert_harness_profiles()`` -- fold the system harness's per-scenario
  profiles into one tier profile
- ``summarize()`` -- statement coverage totals per file
- ``render()`` -- HTML report via ``go tool cover``
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from src.ci_orchestrator.exceptions import CoverageMergeError
from src.coverage_aggregator.profile import (
    CoverageProfile,
    parse_profile,
    write_profile,
)
from src.pipeline_shared.constants import COVER_MODE, PROFILE_SUFFIX
from src.pipeline_shared.process import CommandRunner

logger = logging.getLogger(__name__)


@dataclass
class FileCoverage:
    statements: int = 0
    covered: int = 0

    @property
    def percent(self) -> float:
        return 100.0 * self.covered / self.statements if self.statements else 0.0


@dataclass
class CoverageSummary:
    """Statement coverage of a profile."""

    statements: int = 0
    covered: int = 0
    files: dict[str, FileCoverage] = field(default_factory=dict)

    @property
    def percent(self) -> float:
        return 100.0 * self.covered / self.statements if self.statements else 0.0


def merge(profiles: Iterable[CoverageProfile]) -> CoverageProfile:
    """Combine *profiles* into one.

    Counts for the same block are summed, never overwritten, so a helper
    exercised by several tiers reports its true total.

    Raises:
        CoverageMergeError: If *profiles* is empty.
    """
    profiles = list(profiles)
    if not profiles:
        raise CoverageMergeError("No coverage profiles to merge")

    modes = {p.mode for p in profiles}
    if len(modes) > 1:
        logger.warning("Merging profiles with mixed modes: %s", ", ".join(sorted(modes)))

    merged = CoverageProfile(mode=COVER_MODE, tier="full")
    for profile in profiles:
        for block, count in profile.blocks.items():
            merged.blocks[block] = merged.blocks.get(block, 0) + count
    logger.debug("Merged %d profile(s) into %d blocks", len(profiles), len(merged))
    return merged


def _collect(paths: Iterable[Path], exclude: Path | None) -> list[CoverageProfile]:
    excluded = exclude.resolve() if exclude is not None else None
    return [
        parse_profile(path)
        for path in sorted(paths)
        if path.is_file() and (excluded is None or path.resolve() != excluded)
    ]


def merge_directory(directory: Path | str, output: Path | str) -> CoverageProfile:
    """Merge every ``*.cov`` directly inside *directory* into *output*.

    *output* itself is skipped when it lives in the same directory, so a
    previous unified profile is never counted twice.

    Raises:
        CoverageMergeError: If the directory holds no input profiles.
    """
    directory = Path(directory)
    output = Path(output)
    profiles = _collect(directory.glob(f"*{PROFILE_SUFFIX}"), exclude=output)
    if not profiles:
        raise CoverageMergeError(f"No coverage profiles found in {directory}")
    merged = merge(profiles)
    write_profile(merged, output)
    logger.info(
        "Merged %s into %s",
        ", ".join(p.tier for p in profiles),
        output,
    )
    return merged


def convert_harness_profiles(run_dir: Path | str, output: Path | str, tier: str = "system") -> CoverageProfile | None:
    """Fold the system harness's per-scenario profiles into one tier profile.

    The harness leaves one profile per scenario somewhere below
    *run_dir*.  They are collected recursively and written to *output*
    in the same format as the other tiers.

    Returns:
        The tier profile, or ``None`` when the harness produced nothing.
    """
    run_dir = Path(run_dir)
    profiles = _collect(run_dir.rglob(f"*{PROFILE_SUFFIX}"), exclude=Path(output))
    if not profiles:
        logger.warning("No harness coverage found under %s", run_dir)
        return None
    converted = merge(profiles)
    converted.tier = tier
    write_profile(converted, output)
    logger.info("Converted %d harness profile(s) into %s", len(profiles), output)
    return converted


def summarize(profile: CoverageProfile) -> CoverageSummary:
    """Compute statement coverage for *profile*."""
    summary = CoverageSummary()
    for block, count in profile.blocks.items():
        per_file = summary.files.setdefault(block.file, FileCoverage())
        per_file.statements += block.statements
        summary.statements += block.statements
        if count > 0:
            per_file.covered += block.statements
            summary.covered += block.statements
    return summary


async def render(
    profile_path: Path | str,
    report_path: Path | str,
    runner: CommandRunner | None = None,
) -> int:
    """Render a browsable HTML report from the unified profile.

    Reads *profile_path* only; the report is written to *report_path*.

    Returns:
        The exit code of ``go tool cover``.
    """
    runner = runner or CommandRunner()
    result = await runner.run(
        ["go", "tool", "cover", f"-html={profile_path}", "-o", str(report_path)]
    )
    if not result.ok:
        logger.error("Coverage report rendering failed: %s", result.stderr.strip())
    else:
        logger.info("Coverage report written to %s", report_path)
    return result.returncode
