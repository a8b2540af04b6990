"""Unified diff parser producing addressable old/new line coordinates."""

import re
from dataclasses import dataclass, field
from typing import Literal

HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")

ChangeKind = Literal["insert", "delete", "context"]


@dataclass(frozen=True)
class LineChange:
    """One line of a hunk.

    Inserts carry only ``new_line``, deletes only ``old_line`` and context
    lines both.
    """

    kind: ChangeKind
    old_line: int | None = None
    new_line: int | None = None


@dataclass
class DiffHunk:
    old_start: int
    old_end: int
    new_start: int
    new_end: int
    old_lines: int
    new_lines: int
    changes: list[LineChange] = field(default_factory=list)


@dataclass(frozen=True)
class LineRange:
    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start > self.end:
            start, end = self.end, self.start
            object.__setattr__(self, "start", start)
            object.__setattr__(self, "end", end)

    def as_tuple(self) -> tuple[int, int]:
        return (self.start, self.end)


def _count(value: str | None) -> int:
    return 1 if value is None else int(value)


def parse_hunks(diff: str) -> list[DiffHunk]:
    """Parse a unified diff into hunks with per-line change detail.

    Args:
        diff: Unified diff text for a single file

    Returns:
        Hunks in diff order. Malformed input yields an empty list.
    """
    hunks: list[DiffHunk] = []
    if not diff:
        return hunks

    old_line = 0
    new_line = 0

    for line in diff.split("\n"):
        header = HUNK_HEADER.match(line)
        if header:
            old_start, old_count = int(header.group(1)), _count(header.group(2))
            new_start, new_count = int(header.group(3)), _count(header.group(4))
            hunks.append(
                DiffHunk(
                    old_start=old_start,
                    old_end=old_start + old_count - 1,
                    new_start=new_start,
                    new_end=new_start + new_count - 1,
                    old_lines=old_count,
                    new_lines=new_count,
                )
            )
            old_line = old_start
            new_line = new_start
            continue

        # Skip anything before the first hunk header
        if not hunks:
            continue

        hunk = hunks[-1]
        if line.startswith("-"):
            hunk.changes.append(LineChange("delete", old_line=old_line))
            old_line += 1
        elif line.startswith("+"):
            hunk.changes.append(LineChange("insert", new_line=new_line))
            new_line += 1
        elif line.startswith(" "):
            hunk.changes.append(LineChange("context", old_line=old_line, new_line=new_line))
            old_line += 1
            new_line += 1
        # "\ No newline at end of file" and similar markers are ignored

    return hunks


def parse_changed_ranges(diff: str) -> list[LineRange]:
    """Collapse a unified diff into inserted line ranges of the new file.

    Consecutive ``+`` lines extend an open range, a context line closes it
    and ``-`` lines do not move the new-file cursor.
    """
    ranges: list[LineRange] = []
    if not diff:
        return ranges

    current_line: int | None = None
    range_start: int | None = None

    for line in diff.split("\n"):
        header = HUNK_HEADER.match(line)
        if header:
            if range_start is not None:
                ranges.append(LineRange(range_start, current_line - 1))
                range_start = None
            current_line = int(header.group(3))
            continue

        if current_line is None:
            continue

        if line.startswith("+"):
            if range_start is None:
                range_start = current_line
            current_line += 1
        elif line.startswith(" "):
            if range_start is not None:
                ranges.append(LineRange(range_start, current_line - 1))
                range_start = None
            current_line += 1

    if range_start is not None:
        ranges.append(LineRange(range_start, current_line - 1))

    return ranges
