"""Keep only comments that point at changed regions of a file."""

from typing import Literal

from mr_reviewer.core.logging import get_logger
from mr_reviewer.services.reviewer.diff_parser import DiffHunk
from mr_reviewer.services.reviewer.locate import locate
from mr_reviewer.services.reviewer.schemas import (
    FileVersions,
    LocatedSpan,
    RawComment,
    ReviewComment,
    Side,
)

logger = get_logger("reviewer.filters")

MatchMode = Literal["contain", "overlap"]


def comment_side(comment: RawComment, versions: FileVersions) -> Side:
    """Pick the file version a comment refers to from its line hint.

    ``-N`` hints point at the old file when there is one, everything else at
    the new file.
    """
    hint = (comment.line_hint or "").strip()
    if hint.startswith("-") and versions.old_text is not None:
        return Side.OLD
    return Side.NEW


def _hunk_bounds(hunk: DiffHunk, side: Side) -> tuple[int, int]:
    if side is Side.OLD:
        return hunk.old_start, hunk.old_end
    return hunk.new_start, hunk.new_end


def is_within_changes(
    span: LocatedSpan,
    side: Side,
    hunks: list[DiffHunk],
    match: MatchMode = "contain",
) -> bool:
    """Check a span against the hunk ranges of one side of the diff."""
    for hunk in hunks:
        start, end = _hunk_bounds(hunk, side)
        if match == "contain":
            if start <= span.start_line and span.end_line <= end:
                return True
        elif max(start, span.start_line) <= min(end, span.end_line):
            return True
    return False


def filter_comments(
    comments: list[RawComment],
    pass_index: int,
    hunks: list[DiffHunk],
    versions: FileVersions,
    match: MatchMode = "contain",
) -> list[ReviewComment]:
    """Locate one pass's comments and drop those outside the changed hunks.

    Args:
        comments: Raw comments of a single generation pass
        pass_index: Index of that pass, used for comment identities
        hunks: Parsed hunks of the file diff
        versions: Old and new file texts
        match: ``contain`` requires the span to lie inside a hunk,
            ``overlap`` only requires one shared line

    Returns:
        Located comments, keeping their index within the original pass
    """
    kept: list[ReviewComment] = []
    unlocated = 0

    for index, comment in enumerate(comments):
        side = comment_side(comment, versions)
        span = locate(versions.text_for(side), comment.refers_to)
        if span is None:
            unlocated += 1
            continue
        if not is_within_changes(span, side, hunks, match):
            continue
        kept.append(
            ReviewComment(
                raw=comment,
                pass_index=pass_index,
                index_in_pass=index,
                side=side,
                span=span,
            )
        )

    logger.debug(
        f"Pass {pass_index}: kept {len(kept)}/{len(comments)} comments "
        f"({unlocated} could not be located)"
    )
    return kept
