"""Tests for coverage profile parsing, merging, and reporting."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.ci_orchestrator.exceptions import CoverageMergeError
from src.coverage_aggregator.aggregator import (
    convert_harness_profiles,
    merge,
    merge_directory,
    render,
    summarize,
)
from src.coverage_aggregator.profile import (
    CoverageProfile,
    ProfileBlock,
    parse_profile,
    parse_profile_text,
    write_profile,
)

A = ProfileBlock("pkg/a.go", 1, 1, 2, 2, 1)
B = ProfileBlock("pkg/b.go", 3, 1, 4, 2, 2)
C = ProfileBlock("pkg/c.go", 5, 1, 6, 2, 3)


def _profile(tier: str, counts: dict[ProfileBlock, int]) -> CoverageProfile:
    return CoverageProfile(blocks=dict(counts), tier=tier)


class TestParse:
    def test_parse(self, sample_profile_text) -> None:
        profile = parse_profile_text(sample_profile_text, tier="unit")
        assert profile.mode == "atomic"
        assert len(profile) == 3
        block = ProfileBlock("github.com/elastic/beats/libbeat/publisher/publish.go", 20, 1, 22, 2, 3)
        assert profile.blocks[block] == 4

    def test_duplicate_blocks_summed(self) -> None:
        text = "mode: atomic\npkg/a.go:1.1,2.2 1 2\npkg/a.go:1.1,2.2 1 3\n"
        assert parse_profile_text(text).blocks[A] == 5

    def test_malformed_line(self) -> None:
        with pytest.raises(CoverageMergeError, match="malformed"):
            parse_profile_text("mode: atomic\nnot a block\n", source="unit.cov")

    def test_tier_from_file_stem(self, tmp_path: Path, sample_profile_text) -> None:
        path = tmp_path / "integration.cov"
        path.write_text(sample_profile_text, encoding="utf-8")
        assert parse_profile(path).tier == "integration"

    def test_write_is_sorted_and_reparsable(self, tmp_path: Path) -> None:
        path = write_profile(_profile("x", {C: 1, A: 0}), tmp_path / "out" / "x.cov")
        lines = path.read_text(encoding="utf-8").splitlines()
        assert lines[0] == "mode: atomic"
        assert lines[1].startswith("pkg/a.go")
        assert parse_profile(path).blocks == {A: 0, C: 1}


class TestMerge:
    def test_counts_are_summed(self) -> None:
        merged = merge([_profile("unit", {A: 2, B: 1}), _profile("integration", {A: 1, C: 3})])
        assert merged.blocks == {A: 3, B: 1, C: 3}
        assert merged.mode == "atomic"

    def test_empty_input_fails(self) -> None:
        with pytest.raises(CoverageMergeError):
            merge([])

    def test_order_independent(self) -> None:
        p1 = _profile("unit", {A: 2, B: 1})
        p2 = _profile("system", {A: 5})
        assert merge([p1, p2]).blocks == merge([p2, p1]).blocks

    def test_single_profile_is_identity(self) -> None:
        assert merge([_profile("unit", {A: 2, B: 0})]).blocks == {A: 2, B: 0}


class TestMergeDirectory:
    def test_merges_tier_profiles_and_skips_previous_output(self, tmp_path: Path) -> None:
        write_profile(_profile("unit", {A: 2, B: 1}), tmp_path / "unit.cov")
        write_profile(_profile("integration", {A: 1, C: 3}), tmp_path / "integration.cov")
        write_profile(_profile("full", {A: 100}), tmp_path / "full.cov")

        merged = merge_directory(tmp_path, tmp_path / "full.cov")

        assert merged.blocks == {A: 3, B: 1, C: 3}
        assert parse_profile(tmp_path / "full.cov").blocks == {A: 3, B: 1, C: 3}

    def test_no_profiles(self, tmp_path: Path) -> None:
        with pytest.raises(CoverageMergeError):
            merge_directory(tmp_path, tmp_path / "full.cov")


class TestHarnessConversion:
    def test_collects_recursively(self, tmp_path: Path) -> None:
        run = tmp_path / "run"
        write_profile(_profile("", {A: 1}), run / "test_a" / "coverage.cov")
        write_profile(_profile("", {A: 1, B: 2}), run / "test_b" / "coverage.cov")
        out = tmp_path / "system.cov"

        converted = convert_harness_profiles(run, out)

        assert converted is not None
        assert converted.tier == "system"
        assert parse_profile(out).blocks == {A: 2, B: 2}

    def test_nothing_produced(self, tmp_path: Path) -> None:
        assert convert_harness_profiles(tmp_path / "missing", tmp_path / "system.cov") is None
        assert not (tmp_path / "system.cov").exists()


class TestSummary:
    def test_statement_coverage(self) -> None:
        summary = summarize(_profile("full", {A: 3, B: 0, C: 1}))
        assert summary.statements == 6
        assert summary.covered == 4
        assert summary.percent == pytest.approx(66.666, rel=1e-3)
        assert summary.files["pkg/b.go"].percent == 0.0

    def test_empty_profile(self) -> None:
        assert summarize(CoverageProfile()).percent == 0.0


class TestRender:
    @pytest.mark.asyncio
    async def test_render_command(self, fake_runner, tmp_path: Path) -> None:
        code = await render(tmp_path / "full.cov", tmp_path / "full.html", fake_runner)
        assert code == 0
        assert fake_runner.commands[0] == [
            "go", "tool", "cover", f"-html={tmp_path / 'full.cov'}", "-o", str(tmp_path / "full.html"),
        ]

    @pytest.mark.asyncio
    async def test_render_failure_code(self, fake_runner, tmp_path: Path) -> None:
        fake_runner.on_result("go tool cover", 1, stderr="bad profile")
        assert await render(tmp_path / "full.cov", tmp_path / "full.html", fake_runner) == 1
