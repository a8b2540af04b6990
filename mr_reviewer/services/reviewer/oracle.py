"""Same-issue oracle backed by the completion service."""

from mr_reviewer.core.llm import Completion
from mr_reviewer.core.logging import get_logger
from mr_reviewer.core.prompts import render_same_issue_prompt
from mr_reviewer.services.reviewer.schemas import FileVersions, ReviewComment

logger = get_logger("reviewer.oracle")


class SameIssueOracle:
    """Ask the model whether two comments on one file describe the same issue.

    The prompt carries the full text of the file version the comments are
    anchored to.
    """

    def __init__(self, completion: Completion, versions: FileVersions) -> None:
        self.completion = completion
        self.versions = versions

    async def __call__(self, a: ReviewComment, b: ReviewComment) -> bool:
        file_content = self.versions.text_for(a.side) or ""
        prompt = render_same_issue_prompt(file_content, [a, b])
        response = await self.completion.complete(prompt)
        same = response.strip().startswith("Yes")
        logger.debug(f"Same issue {a.id} / {b.id}: {same}")
        return same
