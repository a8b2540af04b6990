"""Shared library utilities."""

from mr_reviewer.core.llm import ChatCompletion, Completion, get_chat_llm, get_completion
from mr_reviewer.core.logging import get_logger

__all__ = [
    "ChatCompletion",
    "Completion",
    "get_chat_llm",
    "get_completion",
    "get_logger",
]
