"""LLM completion backends."""

import asyncio
from typing import Protocol

from langchain_core.messages import HumanMessage
from langchain_openai import ChatOpenAI

from mr_reviewer.config import Settings
from mr_reviewer.core.exceptions import LLMNotConfiguredError
from mr_reviewer.core.logging import get_logger

logger = get_logger("llm")

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

SUPPORTED_MODELS = {
    "gpt-4o": {
        "openrouter": "openai/gpt-4o",
        "openai": "gpt-4o",
    },
    "gpt-4o-mini": {
        "openrouter": "openai/gpt-4o-mini",
        "openai": "gpt-4o-mini",
    },
    "gpt-4.1": {
        "openrouter": "openai/gpt-4.1",
        "openai": "gpt-4.1",
    },
    "claude-sonnet-4": {
        "openrouter": "anthropic/claude-sonnet-4",
    },
    "deepseek-r1": {
        "openrouter": "deepseek/deepseek-r1",
    },
}


class Completion(Protocol):
    """Text completion capability used by the reviewer."""

    async def complete(self, prompt: str) -> str: ...

    async def complete_many(self, prompt: str, n: int) -> list[str]: ...


class ChatCompletion:
    """Completion backed by a chat model.

    Samples are independent requests issued concurrently. A sample that
    fails is logged and left out, so callers may receive fewer than ``n``
    texts.
    """

    def __init__(self, llm: ChatOpenAI) -> None:
        self.llm = llm

    async def complete(self, prompt: str) -> str:
        response = await self.llm.ainvoke([HumanMessage(content=prompt)])
        content = response.content
        return content if isinstance(content, str) else str(content)

    async def complete_many(self, prompt: str, n: int) -> list[str]:
        results = await asyncio.gather(
            *(self.complete(prompt) for _ in range(n)),
            return_exceptions=True,
        )
        texts = []
        for result in results:
            if isinstance(result, BaseException):
                logger.warning(f"[LLM] Sample failed: {result}")
                continue
            texts.append(result)
        logger.debug(f"[LLM] Received {len(texts)}/{n} samples")
        return texts


def get_chat_llm(
    settings: Settings,
    temperature: float = 1.0,
) -> ChatOpenAI:
    """Get a chat LLM instance for the configured backend."""
    backend = settings.reviewer_backend
    if backend == "openrouter":
        api_key = settings.openrouter_api_key
        base_url = OPENROUTER_BASE_URL
    else:
        api_key = settings.openai_api_key
        base_url = None
    if not api_key:
        raise LLMNotConfiguredError(backend)

    model_ids = SUPPORTED_MODELS.get(settings.review_model, {})
    model_id = model_ids.get(backend, settings.review_model)

    logger.info(f"[LLM] Using {backend}: {settings.review_model} -> {model_id}")

    return ChatOpenAI(
        model=model_id,
        api_key=api_key,
        base_url=base_url,
        temperature=temperature,
        max_retries=settings.llm_max_retries,
    )


def create_completion(settings: Settings) -> Completion:
    """Build the completion backend selected by configuration."""
    return ChatCompletion(get_chat_llm(settings))


_completion: Completion | None = None


def get_completion() -> Completion:
    """Get the completion backend selected at startup."""
    global _completion

    if _completion is None:
        from mr_reviewer.config import settings

        _completion = create_completion(settings)
    return _completion
