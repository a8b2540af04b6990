"""Whitespace-insensitive location of quoted code inside a file.

LLMs reproduce code with drifting indentation, wrapping and trailing
spaces, so quotes are matched after removing every whitespace character
and the match is then mapped back onto the original text.
"""

import math

from mr_reviewer.services.reviewer.schemas import LocatedSpan, ReviewComment

MIN_SHARED_RUN = 5
SIGMOID_CENTER = 15
SIGMOID_SLOPE = 0.15


def normalize_whitespace(text: str) -> str:
    """Remove all whitespace characters, including newlines."""
    return "".join(char for char in text if not char.isspace())


def _original_offsets(source: str, normalized_start: int, normalized_end: int) -> tuple[int, int]:
    original_start = 0
    original_end = 0
    seen = 0

    for i, char in enumerate(source):
        if char.isspace():
            continue
        if seen == normalized_start:
            original_start = i
        if seen == normalized_end - 1:
            original_end = i + 1
            break
        seen += 1

    return original_start, original_end


def locate_in_source(source: str, quote: str) -> tuple[int, int] | None:
    """Find ``quote`` in ``source`` ignoring whitespace.

    Returns:
        ``(start, end)`` character offsets into ``source`` (end exclusive),
        or None when the quote does not occur.
    """
    normalized_quote = normalize_whitespace(quote)
    if not normalized_quote:
        return None

    normalized_start = normalize_whitespace(source).find(normalized_quote)
    if normalized_start == -1:
        return None

    normalized_end = normalized_start + len(normalized_quote)
    return _original_offsets(source, normalized_start, normalized_end)


def locate(source: str, quote: str) -> LocatedSpan | None:
    """Locate ``quote`` and convert the match to 1-based line numbers."""
    offsets = locate_in_source(source, quote)
    if offsets is None:
        return None

    start, end = offsets
    return LocatedSpan(
        start_line=source.count("\n", 0, start) + 1,
        end_line=source.count("\n", 0, end) + 1,
        start_offset=start,
        end_offset=end,
    )


def _sigmoid(length: int) -> float:
    return 1 / (1 + math.exp(-SIGMOID_SLOPE * (length - SIGMOID_CENTER)))


def _shares_run(a: str, b: str, length: int) -> bool:
    runs = {b[start : start + length] for start in range(len(b) - length + 1)}
    return any(a[start : start + length] in runs for start in range(len(a) - length + 1))


def _longest_shared_run(a: str, b: str) -> int:
    """Length of the longest substring of ``a`` found in ``b``, or 0 below the minimum.

    Any run shared at some length is also shared at every shorter length,
    so the longest one is found by binary search on the length.
    """
    low, high = MIN_SHARED_RUN, min(len(a), len(b))
    if high < low or not _shares_run(a, b, low):
        return 0

    while low < high:
        middle = (low + high + 1) // 2
        if _shares_run(a, b, middle):
            low = middle
        else:
            high = middle - 1
    return low


def similarity(a: str, b: str) -> float:
    """Score how much two snippets share, between 0 and 1.

    Identical snippets (ignoring whitespace) score 1. Otherwise the longest
    run of ``a`` that also appears in ``b`` is passed through a logistic
    curve centred on 15 characters. Runs shorter than 5 characters score 0.
    """
    normalized_a = normalize_whitespace(a)
    normalized_b = normalize_whitespace(b)

    if normalized_a == normalized_b:
        return 1.0

    length = _longest_shared_run(normalized_a, normalized_b)
    if not length:
        return 0.0
    return _sigmoid(length)


def comment_distance(a: ReviewComment, b: ReviewComment, source: str) -> float:
    """Distance between two comments quoting ``source``.

    Infinite when either quote cannot be located or the located line spans
    are disjoint, otherwise ``1 - similarity``.
    """
    span_a = locate(source, a.refers_to)
    span_b = locate(source, b.refers_to)
    if span_a is None or span_b is None:
        return math.inf
    return span_distance(a.refers_to, span_a, b.refers_to, span_b)


def span_distance(quote_a: str, span_a: LocatedSpan, quote_b: str, span_b: LocatedSpan) -> float:
    """Distance between two already located quotes."""
    if not span_a.overlaps(span_b):
        return math.inf
    return 1 - similarity(quote_a, quote_b)
