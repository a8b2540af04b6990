"""Extract raw comment lists from LLM responses."""

import json

from pydantic import ValidationError

from mr_reviewer.core.logging import get_logger
from mr_reviewer.services.reviewer.schemas import RawComment

logger = get_logger("reviewer.comment_parser")


def parse_comments(response: str) -> list[RawComment]:
    """Parse the JSON array embedded in a review response.

    The array is taken from the first ``[`` to the last ``]``. A response
    without a parseable array yields an empty list; elements that do not
    match the comment schema are skipped.
    """
    start = response.find("[")
    end = response.rfind("]")
    if start == -1 or end <= start:
        logger.warning("Review response contains no JSON array")
        return []

    try:
        items = json.loads(response[start : end + 1])
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse review JSON: {e}")
        return []

    if not isinstance(items, list):
        return []

    comments = []
    for item in items:
        try:
            comments.append(RawComment.model_validate(item))
        except ValidationError as e:
            logger.debug(f"Skipping malformed comment {item!r}: {e.error_count()} errors")
    return comments
