"""Reviewer service - orchestration layer."""

import asyncio
from typing import Awaitable, Callable

from mr_reviewer.config import settings
from mr_reviewer.core.llm import Completion
from mr_reviewer.core.logging import get_logger
from mr_reviewer.core.prompts import render_review_file_prompt
from mr_reviewer.services.gitlab.client import GitLabClient
from mr_reviewer.services.gitlab.schemas import FileChange
from mr_reviewer.services.gitlab.service import (
    get_changed_files,
    get_file_versions,
    place_comments,
)
from mr_reviewer.services.reviewer.comment_parser import parse_comments
from mr_reviewer.services.reviewer.consensus import ConsensusClusterer
from mr_reviewer.services.reviewer.diff_parser import parse_hunks
from mr_reviewer.services.reviewer.filters import filter_comments
from mr_reviewer.services.reviewer.locate import locate
from mr_reviewer.services.reviewer.oracle import SameIssueOracle
from mr_reviewer.services.reviewer.schemas import (
    CommentGroup,
    FileVersions,
    FinalComment,
    Severity,
)

logger = get_logger("reviewer.service")

ProgressCallback = Callable[[int, int, FileChange], Awaitable[None]]


def finalize_group(group: CommentGroup, versions: FileVersions) -> FinalComment | None:
    """Turn an accepted group into the comment that gets posted.

    The line is taken from relocating the first member's quote in the file
    version it is anchored to.
    """
    representative = group.representative
    span = locate(versions.text_for(representative.side) or "", representative.refers_to)
    if span is None:
        return None
    return FinalComment(
        line=span.start_line,
        comment=representative.comment,
        severity=group.severity.label,
        side=representative.side,
    )


async def review_file(
    change: FileChange,
    versions: FileVersions,
    completion: Completion,
    *,
    min_severity: Severity = Severity.LOW,
    num_passes: int | None = None,
    max_oracle_calls: int | None = None,
) -> list[FinalComment]:
    """Review one changed file and reconcile the sampled comments.

    Args:
        change: The file's diff
        versions: Old and new texts of the file
        completion: Backend used for sampling and same-issue checks
        min_severity: Groups whose mean severity is below this are dropped
        num_passes: Number of independent review samples
        max_oracle_calls: Same-issue check budget for this file

    Returns:
        Final comments in ranking order
    """
    num_passes = num_passes or settings.review_samples
    if max_oracle_calls is None:
        max_oracle_calls = settings.max_oracle_calls

    hunks = change.hunks or parse_hunks(change.diff)
    prompt = render_review_file_prompt(
        new_path=change.new_path,
        git_diff=change.git_diff,
        old_file=versions.old_text,
        language=settings.review_language,
    )

    responses = await completion.complete_many(prompt, num_passes)
    passes = [
        filter_comments(parse_comments(response), index, hunks, versions)
        for index, response in enumerate(responses)
    ]
    # Missing samples still count towards the majority threshold
    passes.extend([] for _ in range(num_passes - len(passes)))

    clusterer = ConsensusClusterer(
        SameIssueOracle(completion, versions),
        min_severity=min_severity,
        max_oracle_calls=max_oracle_calls,
    )
    groups = await clusterer.cluster(passes)

    final_comments = []
    for group in groups:
        final = finalize_group(group, versions)
        if final is not None:
            final_comments.append(final)

    logger.info(
        f"Reviewed {change.new_path}: "
        f"{sum(len(p) for p in passes)} located comments -> {len(final_comments)} final"
    )
    return final_comments


async def review_merge_request(
    client: GitLabClient,
    project_id: int,
    mr_iid: int,
    completion: Completion,
    *,
    min_severity: Severity = Severity.LOW,
    on_progress: ProgressCallback | None = None,
) -> int:
    """Review every changed code file of a merge request, one file at a time.

    A failure on one file is reported on the merge request and the review
    moves on to the next file.

    Returns:
        Number of comments placed
    """
    logger.info(f"Starting review: project {project_id} MR !{mr_iid}")

    merge_request = await client.get_merge_request(project_id, mr_iid)
    changes = await get_changed_files(client, project_id, mr_iid)

    comment_count = 0
    for index, change in enumerate(changes, start=1):
        logger.info(f"Reviewing file {index}/{len(changes)}: {change.new_path}")

        if on_progress:
            await on_progress(index, len(changes), change)

        try:
            versions = await get_file_versions(client, project_id, merge_request, change)
            comments = await asyncio.wait_for(
                review_file(change, versions, completion, min_severity=min_severity),
                timeout=settings.file_review_timeout_seconds,
            )
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"Error during review of {change.new_path}: {message}")
            try:
                await client.create_merge_request_note(
                    project_id,
                    mr_iid,
                    f"Error during review the file {change.new_path}: {message}",
                )
            except Exception as note_error:
                logger.error(f"Failed to report review error: {note_error}")
            continue

        try:
            comment_count += await place_comments(
                client, project_id, mr_iid, merge_request, comments, change
            )
        except Exception as e:
            logger.error(f"Failed to place comments on {change.new_path}: {e}")

    logger.info(f"Review complete. Comments placed: {comment_count}")
    return comment_count
