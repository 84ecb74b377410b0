"""Async chat-LLM interface used by the reasoning loop."""
from __future__ import annotations

import inspect
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from agentdesk.models import TokenUsage

from utils.logger import get_logger
logger = get_logger(__name__)

ChunkCallback = Callable[[str], Union[None, Awaitable[None]]]


@dataclass
class LLMResponse:
    content: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: Optional[str] = None
    finish_reason: Optional[str] = None


async def emit_chunk(callback: Optional[ChunkCallback], text: str) -> None:
    """Call a sync or async chunk callback."""
    if callback is None or not text:
        return
    result = callback(text)
    if inspect.isawaitable(result):
        await result


class BaseLLM(ABC):
    """Minimal async chat-LLM interface.

    • Accepts a list[dict] *messages* like the OpenAI Chat format.
    • Returns an :class:`LLMResponse` with the reply text and token usage.
    • ``stream_completion`` hands every text delta to a callback and still
      returns the fully assembled reply.
    • Implementations SHOULD be stateless; the default model is given at init
      and may be overridden per call with ``model=``.
    """

    def __init__(
        self,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> None:
        self.model = model or os.getenv("LLM_MODEL")
        if not self.model:
            logger.error("llm_model_missing", env_var="LLM_MODEL")
            raise ValueError("A model must be provided or LLM_MODEL must be set in the environment")
        self.temperature = temperature
        self.max_tokens = max_tokens

    @abstractmethod
    async def completion(self, messages: List[Dict[str, str]], **kwargs: Any) -> LLMResponse: ...

    @abstractmethod
    async def stream_completion(
        self, messages: List[Dict[str, str]], on_chunk: Optional[ChunkCallback] = None, **kwargs: Any
    ) -> LLMResponse: ...

    @staticmethod
    def build_messages(content: str, system_prompt: Optional[str] = None) -> List[Dict[str, str]]:
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": content})
        return messages

    async def prompt(self, content: str, *, system_prompt: Optional[str] = None, **kwargs: Any) -> LLMResponse:
        """Convenience method for a single user prompt with an optional system prompt."""
        return await self.completion(self.build_messages(content, system_prompt), **kwargs)

    async def prompt_stream(
        self,
        content: str,
        on_chunk: Optional[ChunkCallback] = None,
        *,
        system_prompt: Optional[str] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        return await self.stream_completion(self.build_messages(content, system_prompt), on_chunk, **kwargs)
