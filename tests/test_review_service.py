"""Tests for the per-file review pipeline and the merge request loop."""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from mr_reviewer.core.exceptions import ExternalServiceError
from mr_reviewer.services.gitlab.schemas import FileChange
from mr_reviewer.services.reviewer.diff_parser import parse_hunks
from mr_reviewer.services.reviewer.schemas import FileVersions, Severity, Side
from mr_reviewer.services.reviewer.service import review_file, review_merge_request

OLD_TEXT = (
    "def divide(a, b):\n"
    "    return a // b\n"
    "\n"
    "\n"
    "def greet(name):\n"
    "    print('hello ' + name)\n"
)

NEW_TEXT = (
    "def divide(a, b):\n"
    "    return a / b\n"
    "\n"
    "\n"
    "def greet(name):\n"
    "    print('hello ' + name)\n"
)

DIFF = "@@ -1,3 +1,3 @@\n def divide(a, b):\n-    return a // b\n+    return a / b\n \n"


def comment(text: str, severity: str, quote: str, hint: str = "+2") -> dict:
    return {"comment": text, "severity": severity, "lineNumber": hint, "line": quote, "refersTo": quote}


def response(*comments: dict) -> str:
    return "Issues:\n" + json.dumps(list(comments))


class FakeCompletion:
    """Completion returning canned samples and a fixed same-issue verdict."""

    def __init__(self, samples: list[str], verdict: str = "Yes, both are about division."):
        self.samples = samples
        self.verdict = verdict
        self.complete = AsyncMock(return_value=verdict)
        self.sample_requests: list[int] = []

    async def complete_many(self, prompt: str, n: int) -> list[str]:
        self.sample_requests.append(n)
        return self.samples[:n]


def file_change(path: str = "math.py", diff: str = DIFF) -> FileChange:
    return FileChange(
        old_path=path,
        new_path=path,
        diff=diff,
        git_diff=f"--- a/{path}\n+++ b/{path}\n{diff}",
        hunks=parse_hunks(diff),
    )


VERSIONS = FileVersions(new_path="math.py", new_text=NEW_TEXT, old_path="math.py", old_text=OLD_TEXT)


class TestReviewFile:
    """Tests for review_file function."""

    @pytest.mark.asyncio
    async def test_consensus_comment_is_emitted(self):
        completion = FakeCompletion(
            [
                response(
                    comment("Division by zero is not handled", "high", "return a / b"),
                    comment("Greeting is not localised", "low", "print('hello ' + name)", "+6"),
                ),
                response(comment("b may be zero", "medium", "    return a/b")),
                "I could not produce JSON this time",
            ]
        )

        comments = await review_file(file_change(), VERSIONS, completion, num_passes=3)

        assert completion.sample_requests == [3]
        assert completion.complete.await_count == 1
        assert len(comments) == 1
        assert comments[0].line == 2
        assert comments[0].comment == "Division by zero is not handled"
        assert comments[0].severity == "high"
        assert comments[0].side is Side.NEW

    @pytest.mark.asyncio
    async def test_rejected_by_oracle(self):
        completion = FakeCompletion(
            [
                response(comment("Division by zero", "high", "return a / b")),
                response(comment("Integer division changed", "high", "return a / b")),
            ],
            verdict="No, they are different issues.",
        )

        comments = await review_file(file_change(), VERSIONS, completion, num_passes=3)

        assert comments == []

    @pytest.mark.asyncio
    async def test_old_side_comment(self):
        quote = "return a // b"
        completion = FakeCompletion(
            [
                response(comment("Floor division removed", "medium", quote, "-2")),
                response(comment("Behaviour change", "medium", quote, "-2")),
            ]
        )

        comments = await review_file(file_change(), VERSIONS, completion, num_passes=2)

        assert [(c.line, c.side) for c in comments] == [(2, Side.OLD)]

    @pytest.mark.asyncio
    async def test_severity_floor(self):
        completion = FakeCompletion(
            [
                response(comment("Nit", "low", "return a / b")),
                response(comment("Nit", "low", "return a / b")),
            ]
        )

        comments = await review_file(
            file_change(), VERSIONS, completion, num_passes=2, min_severity=Severity.HIGH
        )

        assert comments == []
        completion.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_samples_count_towards_majority(self):
        """One answer out of three requested samples is not a majority."""
        completion = FakeCompletion([response(comment("Division by zero", "high", "return a / b"))])

        comments = await review_file(file_change(), VERSIONS, completion, num_passes=3)

        assert comments == []

    @pytest.mark.asyncio
    async def test_timeout_interrupts_clustering(self):
        """Many overlapping comments do not keep the file past its timeout."""
        quotes = ["return a / b", "return a/b", "    return a / b", "return  a / b"]
        sample = response(*(comment(f"Issue {i}", "high", q) for i, q in enumerate(quotes)))
        completion = FakeCompletion([sample] * 6)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(
                review_file(file_change(), VERSIONS, completion, num_passes=6),
                timeout=0.5,
            )


def gitlab_client(files: dict[tuple[str, str], str], diffs: list[dict]) -> AsyncMock:
    client = AsyncMock()
    client.get_merge_request.return_value = {
        "source_branch": "feature",
        "target_branch": "main",
        "diff_refs": {"base_sha": "base", "head_sha": "head", "start_sha": "start"},
    }
    client.get_merge_request_diffs.return_value = diffs

    async def get_file_raw(project_id, path, ref):
        if (path, ref) not in files:
            raise ExternalServiceError("GitLab", "boom", status_code=500)
        return files[(path, ref)]

    client.get_file_raw.side_effect = get_file_raw
    return client


class TestReviewMergeRequest:
    """Tests for review_merge_request function."""

    @pytest.mark.asyncio
    async def test_failing_file_does_not_stop_review(self):
        diffs = [
            {"old_path": "broken.py", "new_path": "broken.py", "diff": DIFF},
            {"old_path": "README.md", "new_path": "README.md", "diff": DIFF},
            {"old_path": "math.py", "new_path": "math.py", "diff": DIFF},
        ]
        client = gitlab_client(
            {("math.py", "feature"): NEW_TEXT, ("math.py", "main"): OLD_TEXT},
            diffs,
        )
        completion = FakeCompletion(
            [
                response(comment("Division by zero", "high", "return a / b")),
                response(comment("b may be zero", "high", "return a / b")),
            ]
        )
        progress = AsyncMock()

        with patch("mr_reviewer.services.reviewer.service.settings") as mock_settings:
            mock_settings.review_samples = 2
            mock_settings.max_oracle_calls = 10
            mock_settings.review_language = "English"
            mock_settings.file_review_timeout_seconds = 30

            count = await review_merge_request(
                client, 7, 3, completion, on_progress=progress
            )

        assert count == 1
        assert progress.await_count == 2
        error_note = client.create_merge_request_note.await_args.args
        assert error_note[:2] == (7, 3)
        assert "broken.py" in error_note[2]

        discussion = client.create_merge_request_discussion.await_args
        assert discussion.args == (7, 3, "Division by zero")
        assert discussion.kwargs["position"] == {
            "base_sha": "base",
            "head_sha": "head",
            "start_sha": "start",
            "position_type": "text",
            "old_path": "math.py",
            "new_path": "math.py",
            "new_line": 2,
        }
