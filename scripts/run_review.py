#!/usr/bin/env python3
"""Run a merge request review locally without posting a progress note."""
import asyncio
import sys

from dotenv import load_dotenv

load_dotenv()

from mr_reviewer.core.llm import get_completion
from mr_reviewer.services.gitlab.client import get_gitlab_client
from mr_reviewer.services.reviewer.schemas import Severity
from mr_reviewer.services.reviewer.service import review_merge_request


async def main(project_id: int, mr_iid: int, severity: str = "low"):
    client = get_gitlab_client()
    try:
        count = await review_merge_request(
            client,
            project_id,
            mr_iid,
            get_completion(),
            min_severity=Severity.from_label(severity),
        )
    finally:
        await client.aclose()
    print(f"Review placed {count} comments")


if __name__ == "__main__":
    if len(sys.argv) < 3:
        sys.exit("usage: run_review.py PROJECT_ID MR_IID [low|medium|high]")
    asyncio.run(main(int(sys.argv[1]), int(sys.argv[2]), *sys.argv[3:4]))
