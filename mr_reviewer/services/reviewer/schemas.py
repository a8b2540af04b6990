"""Pydantic schemas for reviewer service."""

import math
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Severity(IntEnum):
    """Ordinal severity scale."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def from_label(cls, label: str) -> "Severity":
        return cls[label.strip().upper()]


SeverityLabel = Literal["low", "medium", "high"]


class Side(str, Enum):
    """Which version of the file a comment is anchored to."""

    OLD = "old"
    NEW = "new"


class RawComment(BaseModel):
    """A comment as produced by one generation pass."""

    model_config = ConfigDict(populate_by_name=True)

    comment: str
    severity: SeverityLabel
    refers_to: str = Field(alias="refersTo")
    line_hint: str | None = Field(default=None, alias="lineNumber")

    @field_validator("severity", mode="before")
    @classmethod
    def _lower_severity(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("line_hint", mode="before")
    @classmethod
    def _stringify_hint(cls, value):
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @property
    def severity_level(self) -> Severity:
        return Severity.from_label(self.severity)


@dataclass(frozen=True)
class LocatedSpan:
    """Location of a quote inside a file text. Lines are 1-based and inclusive."""

    start_line: int
    end_line: int
    start_offset: int
    end_offset: int

    def overlaps(self, other: "LocatedSpan") -> bool:
        return max(self.start_line, other.start_line) <= min(self.end_line, other.end_line)


@dataclass(frozen=True, eq=False)
class ReviewComment:
    """A raw comment tagged with its origin and its located span."""

    raw: RawComment
    pass_index: int
    index_in_pass: int
    side: Side
    span: LocatedSpan

    @property
    def id(self) -> tuple[int, int]:
        return (self.pass_index, self.index_in_pass)

    @property
    def comment(self) -> str:
        return self.raw.comment

    @property
    def refers_to(self) -> str:
        return self.raw.refers_to

    @property
    def severity(self) -> Severity:
        return self.raw.severity_level


@dataclass
class CommentGroup:
    """Comments from different passes judged to describe the same issue."""

    members: list[ReviewComment] = field(default_factory=list)

    @property
    def representative(self) -> ReviewComment:
        return self.members[0]

    @property
    def pass_indices(self) -> set[int]:
        return {member.pass_index for member in self.members}

    @property
    def severity(self) -> Severity:
        return aggregate_severity(self.members)


class FinalComment(BaseModel):
    """A reconciled comment ready to be posted."""

    line: int
    comment: str
    severity: SeverityLabel
    side: Side = Side.NEW


def mean_severity(comments: list[ReviewComment]) -> float:
    if not comments:
        return 0.0
    return sum(int(c.severity) for c in comments) / len(comments)


def aggregate_severity(comments: list[ReviewComment]) -> Severity:
    """Average member severities, rounding half up to the nearest level."""
    rounded = math.floor(mean_severity(comments) + 0.5)
    return Severity(min(max(rounded, Severity.LOW), Severity.HIGH))


@dataclass(frozen=True)
class FileVersions:
    """Old and new text of one changed file."""

    new_path: str
    new_text: str
    old_path: str | None = None
    old_text: str | None = None

    def text_for(self, side: Side) -> str | None:
        return self.old_text if side is Side.OLD else self.new_text
