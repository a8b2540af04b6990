"""Schemas for GitLab service."""

from dataclasses import dataclass, field

from pydantic import BaseModel

from mr_reviewer.services.reviewer.diff_parser import DiffHunk


@dataclass
class FileChange:
    """One changed file of a merge request."""

    old_path: str
    new_path: str
    diff: str
    git_diff: str
    hunks: list[DiffHunk] = field(default_factory=list)
    new_file: bool = False


@dataclass(frozen=True)
class ReviewRequest:
    """A merge request note asking the bot for a review."""

    project_id: int
    mr_iid: int
    discussion_id: str
    note_id: int
    author_username: str
    note: str


class WebhookResponse(BaseModel):
    """Response schema for webhook events."""

    message: str
    merge_request: str | None = None
