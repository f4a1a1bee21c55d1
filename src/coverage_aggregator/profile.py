"""Go coverage profile model, parser, and writer.

A profile is plain text::

    mode: atomic
    github.com/elastic/beats/libbeat/beat/beat.go:42.13,44.2 1 7

Each line after the header names a block (file, start line.col, end
line.col), the number of statements in it, and its execution count.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from src.ci_orchestrator.exceptions import CoverageMergeError
from src.pipeline_shared.constants import COVER_MODE

logger = logging.getLogger(__name__)

_BLOCK_RE = re.compile(
    r"^(?P<file>.+):(?P<start_line>\d+)\.(?P<start_col>\d+),"
    r"(?P<end_line>\d+)\.(?P<end_col>\d+) (?P<statements>\d+) (?P<count>\d+)$"
)
_MODE_PREFIX = "mode:"


@dataclass(frozen=True, order=True)
class ProfileBlock:
    """A covered source range; the merge key."""

    file: str
    start_line: int
    start_col: int
    end_line: int
    end_col: int
    statements: int

    def format(self, count: int) -> str:
        return (
            f"{self.file}:{self.start_line}.{self.start_col},"
            f"{self.end_line}.{self.end_col} {self.statements} {count}"
        )


@dataclass
class CoverageProfile:
    """Execution counts per block, tagged with the producing tier."""

    mode: str = COVER_MODE
    blocks: dict[ProfileBlock, int] = field(default_factory=dict)
    tier: str = ""

    def __len__(self) -> int:
        return len(self.blocks)

    def render_text(self) -> str:
        lines = [f"{_MODE_PREFIX} {self.mode}"]
        lines.extend(block.format(self.blocks[block]) for block in sorted(self.blocks))
        return "\n".join(lines) + "\n"


def parse_profile_text(text: str, tier: str = "", source: str = "<text>") -> CoverageProfile:
    """Parse profile *text*.

    Repeated blocks inside one profile (Go emits these when a package is
    instrumented by several test binaries) are summed.

    Raises:
        CoverageMergeError: On a line that is neither a header nor a block.
    """
    profile = CoverageProfile(tier=tier)
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue
        if line.startswith(_MODE_PREFIX):
            profile.mode = line[len(_MODE_PREFIX):].strip()
            continue
        match = _BLOCK_RE.match(line)
        if match is None:
            raise CoverageMergeError(f"{source}:{lineno}: malformed profile line: {line!r}")
        block = ProfileBlock(
            file=match["file"],
            start_line=int(match["start_line"]),
            start_col=int(match["start_col"]),
            end_line=int(match["end_line"]),
            end_col=int(match["end_col"]),
            statements=int(match["statements"]),
        )
        profile.blocks[block] = profile.blocks.get(block, 0) + int(match["count"])
    return profile


def parse_profile(path: Path | str) -> CoverageProfile:
    """Read a profile file; the tier label is the file's stem."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    return parse_profile_text(text, tier=path.stem, source=str(path))


def write_profile(profile: CoverageProfile, path: Path | str) -> Path:
    """Write *profile* to *path*, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(profile.render_text(), encoding="utf-8")
    logger.debug("Wrote profile %s (%d blocks)", path, len(profile))
    return path
