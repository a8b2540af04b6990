"""GitLab service - business logic layer."""

import math
import re
from typing import Any

from fastapi import BackgroundTasks

from mr_reviewer.core.exceptions import ExternalServiceError, FileNotFoundInRepoError
from mr_reviewer.core.logging import get_logger
from mr_reviewer.services.gitlab.client import GitLabClient, get_gitlab_client
from mr_reviewer.services.gitlab.schemas import FileChange, ReviewRequest
from mr_reviewer.services.reviewer.diff_parser import parse_hunks
from mr_reviewer.services.reviewer.schemas import FileVersions, FinalComment, Severity, Side

logger = get_logger("gitlab.service")

CODE_EXTENSIONS = (
    ".js", ".ts", ".jsx", ".tsx", ".mjs", ".cjs", ".vue",
    ".css", ".scss", ".sass", ".less",
    ".php", ".py", ".rb", ".java", ".kt", ".kts", ".go", ".rs", ".dart", ".lua",
    ".sh", ".bash", ".zsh", ".bat", ".cmd", ".ps1", ".vbs", ".wsf",
    ".sql", ".cs", ".scala", ".hs", ".erl", ".ex", ".exs",
)

REVIEW_COMMAND = re.compile(r"(^|\s)/review\b")

SEVERITY_WORD = re.compile(r"\b(low|medium|high)\b")

_CHANGE_LINE = re.compile(r"^[\s+-]")


def to_git_diff(change: dict[str, Any]) -> str:
    """Render a GitLab diff entry as a standard git diff."""
    old_path = "/dev/null" if change.get("new_file") else f"a/{change['old_path']}"
    new_path = "/dev/null" if change.get("deleted_file") else f"b/{change['new_path']}"
    git_diff = f"--- {old_path}\n+++ {new_path}\n"

    diff = change.get("diff") or ""
    if diff == "Binary files differ":
        return git_diff + "Binary files differ\n"

    lines = [
        line.rstrip() if _CHANGE_LINE.match(line) else line
        for line in diff.split("\n")
    ]
    return git_diff + "\n".join(lines)


async def get_changed_files(
    client: GitLabClient, project_id: int, mr_iid: int
) -> list[FileChange]:
    """Get the reviewable code files changed by a merge request."""
    diffs = await client.get_merge_request_diffs(project_id, mr_iid)
    files = [
        FileChange(
            old_path=d["old_path"],
            new_path=d["new_path"],
            diff=d.get("diff") or "",
            git_diff=to_git_diff(d),
            hunks=parse_hunks(d.get("diff") or ""),
            new_file=bool(d.get("new_file")),
        )
        for d in diffs
        if not d.get("deleted_file") and d["new_path"].endswith(CODE_EXTENSIONS)
    ]
    logger.info(f"Found {len(files)} reviewable files out of {len(diffs)} in MR !{mr_iid}")
    return files


async def get_file_versions(
    client: GitLabClient,
    project_id: int,
    merge_request: dict[str, Any],
    change: FileChange,
) -> FileVersions:
    """Fetch the new file from the source branch and the old one from the target branch."""
    new_text = await client.get_file_raw(
        project_id, change.new_path, merge_request["source_branch"]
    )

    old_text: str | None = None
    if not change.new_file:
        try:
            old_text = await client.get_file_raw(
                project_id, change.old_path, merge_request["target_branch"]
            )
        except FileNotFoundInRepoError:
            logger.info(f"{change.old_path} does not exist on the target branch")

    return FileVersions(
        new_path=change.new_path,
        new_text=new_text,
        old_path=change.old_path,
        old_text=old_text,
    )


async def get_diff_refs(
    client: GitLabClient, project_id: int, merge_request: dict[str, Any]
) -> dict[str, str]:
    """Get the base/head/start SHAs used to anchor diff comments."""
    refs = merge_request.get("diff_refs") or {}
    if refs.get("base_sha") and refs.get("head_sha"):
        return {
            "base_sha": refs["base_sha"],
            "head_sha": refs["head_sha"],
            "start_sha": refs.get("start_sha") or refs["base_sha"],
        }

    target = await client.get_branch(project_id, merge_request["target_branch"])
    source = await client.get_branch(project_id, merge_request["source_branch"])
    base_sha = target["commit"]["id"]
    return {
        "base_sha": base_sha,
        "head_sha": source["commit"]["id"],
        "start_sha": base_sha,
    }


def build_position(
    comment: FinalComment, change: FileChange, diff_refs: dict[str, str]
) -> dict[str, Any]:
    position: dict[str, Any] = {
        **diff_refs,
        "position_type": "text",
        "old_path": change.old_path,
        "new_path": change.new_path,
    }
    if comment.side is Side.OLD:
        position["old_line"] = comment.line
    else:
        position["new_line"] = comment.line
    return position


async def place_comments(
    client: GitLabClient,
    project_id: int,
    mr_iid: int,
    merge_request: dict[str, Any],
    comments: list[FinalComment],
    change: FileChange,
) -> int:
    """Post each final comment as a discussion on its diff line."""
    if not comments:
        return 0

    diff_refs = await get_diff_refs(client, project_id, merge_request)
    placed = 0
    for comment in comments:
        try:
            await client.create_merge_request_discussion(
                project_id,
                mr_iid,
                comment.comment,
                position=build_position(comment, change, diff_refs),
            )
            placed += 1
        except ExternalServiceError as e:
            logger.error(f"Failed to place comment on {change.new_path}:{comment.line}: {e}")

    logger.info(f"Placed {placed}/{len(comments)} comments on {change.new_path}")
    return placed


async def remove_previous_review_notes(
    client: GitLabClient,
    project_id: int,
    mr_iid: int,
    bot_username: str,
    keep_discussion_id: str,
) -> int:
    """Delete the bot's notes from earlier reviews, except in the triggering discussion."""
    removed = 0
    discussions = await client.get_merge_request_discussions(project_id, mr_iid)
    for discussion in discussions:
        if discussion.get("id") == keep_discussion_id:
            continue
        for note in discussion.get("notes") or []:
            if note.get("author", {}).get("username") != bot_username:
                continue
            try:
                await client.delete_merge_request_note(project_id, mr_iid, note["id"])
                removed += 1
            except ExternalServiceError as e:
                logger.error(f"Failed to remove note {note['id']} from {discussion.get('id')}: {e}")
    logger.info(f"Removed {removed} notes from previous reviews")
    return removed


def mentions_user(note: str, username: str) -> bool:
    return re.search(rf"@{re.escape(username)}(?![\w.-])", note) is not None


def asks_for_review(note: str) -> bool:
    return REVIEW_COMMAND.search(note.lower()) is not None


def requested_severity(note: str) -> Severity:
    """Minimum severity named in the note; the highest one mentioned wins."""
    mentioned = [Severity.from_label(word) for word in SEVERITY_WORD.findall(note.lower())]
    return max(mentioned, default=Severity.LOW)


def review_request_from_payload(payload: dict[str, Any]) -> ReviewRequest | None:
    """Extract a review request from a note event, if the note asks for one."""
    if payload.get("object_kind") != "note":
        return None
    attributes = payload.get("object_attributes") or {}
    if attributes.get("noteable_type") != "MergeRequest":
        return None
    note = attributes.get("note") or ""
    if not asks_for_review(note):
        return None

    return ReviewRequest(
        project_id=payload["project_id"],
        mr_iid=payload["merge_request"]["iid"],
        discussion_id=attributes["discussion_id"],
        note_id=attributes["id"],
        author_username=(payload.get("user") or {}).get("username", ""),
        note=note,
    )


def handle_note_event(payload: dict[str, Any], background_tasks: BackgroundTasks) -> dict:
    """Handle note webhook events."""
    request = review_request_from_payload(payload)
    if request is None:
        return {"message": "Note ignored"}

    logger.info(f"Review requested on project {request.project_id} MR !{request.mr_iid}")
    background_tasks.add_task(run_review, request)

    return {
        "message": "Review started",
        "merge_request": f"{request.project_id}!{request.mr_iid}",
    }


async def run_review(request: ReviewRequest) -> int:
    """Run a requested review in background, reporting progress on the MR."""
    from mr_reviewer.core.llm import get_completion
    from mr_reviewer.services.reviewer.service import review_merge_request

    client = get_gitlab_client()
    current_user = await client.get_current_user()
    bot_username = current_user["username"]

    if not mentions_user(request.note, bot_username):
        logger.info(f"Note does not mention @{bot_username}, ignoring")
        return 0

    project_id, mr_iid = request.project_id, request.mr_iid
    min_severity = requested_severity(request.note)

    await remove_previous_review_notes(
        client, project_id, mr_iid, bot_username, request.discussion_id
    )
    progress_note = await client.add_discussion_note(
        project_id,
        mr_iid,
        request.discussion_id,
        f"@{request.author_username} I'm reviewing this merge request. Please wait a moment ☕️",
    )

    async def on_progress(index: int, total: int, change: FileChange) -> None:
        percent = math.ceil(index * 100 / total)
        try:
            await client.edit_merge_request_note(
                project_id,
                mr_iid,
                progress_note["id"],
                f"I'm reviewing '{change.new_path}', {percent}% ({index}/{total}). "
                "Please wait a moment ☕️",
            )
        except ExternalServiceError as e:
            logger.warning(f"Failed to update progress note: {e}")

    try:
        count = await review_merge_request(
            client,
            project_id,
            mr_iid,
            get_completion(),
            min_severity=min_severity,
            on_progress=on_progress,
        )
    except Exception as e:
        logger.exception(f"Review of project {project_id} MR !{mr_iid} failed: {e}")
        await client.edit_merge_request_note(
            project_id,
            mr_iid,
            progress_note["id"],
            "An error occurred during the review, please check the logs.",
        )
        raise

    try:
        await client.delete_merge_request_note(project_id, mr_iid, progress_note["id"])
    except ExternalServiceError as e:
        logger.warning(f"Failed to remove progress note: {e}")
    await client.resolve_discussion(project_id, mr_iid, request.discussion_id)

    logger.info(f"Review of project {project_id} MR !{mr_iid} complete: {count} comments")
    return count
