from agentdesk.llm.base_llm import BaseLLM, ChunkCallback, LLMResponse, emit_chunk
from agentdesk.models import TokenUsage
from agentdesk.reasoner.exceptions import ModelCallError
from typing import List, Dict, Any, Optional
import litellm

from utils.logger import get_logger
from utils.observability import observe
logger = get_logger(__name__)


class LiteLLM(BaseLLM):
    """Wrapper around litellm.acompletion."""

    @observe(llm=True)
    async def completion(self, messages: List[Dict[str, str]], **kwargs) -> LLMResponse:
        completion_kwargs = self._completion_kwargs(messages, kwargs)
        model = completion_kwargs["model"]
        try:
            resp = await litellm.acompletion(**completion_kwargs)
        except Exception as e:
            logger.error("llm_call_failed", model=model, error=str(e))
            raise ModelCallError(str(e), model=model) from e

        text = ""
        finish_reason = None
        try:
            choice = resp.choices[0]
            text = (choice.message.content or "").strip()
            finish_reason = getattr(choice, "finish_reason", None)
        except (IndexError, AttributeError):
            pass

        prompt_tokens, completion_tokens, total_tokens = self._extract_token_usage(resp)
        usage = TokenUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            cost=self._completion_cost(model, resp, prompt_tokens, completion_tokens),
        )
        logger.debug("llm_completion", model=model, total_tokens=total_tokens, content=text)
        return LLMResponse(content=text, usage=usage, model=model, finish_reason=finish_reason)

    @observe(llm=True)
    async def stream_completion(
        self, messages: List[Dict[str, str]], on_chunk: Optional[ChunkCallback] = None, **kwargs
    ) -> LLMResponse:
        completion_kwargs = self._completion_kwargs(messages, kwargs)
        completion_kwargs["stream"] = True
        completion_kwargs["stream_options"] = {"include_usage": True}
        model = completion_kwargs["model"]

        parts: List[str] = []
        usage_holder: Any = None
        finish_reason = None
        try:
            stream = await litellm.acompletion(**completion_kwargs)
            async for chunk in stream:
                # Usage arrives on the final chunk
                if getattr(chunk, "usage", None):
                    usage_holder = chunk
                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                finish_reason = getattr(choices[0], "finish_reason", None) or finish_reason
                piece = getattr(getattr(choices[0], "delta", None), "content", None)
                if piece:
                    parts.append(piece)
                    await emit_chunk(on_chunk, piece)
        except Exception as e:
            logger.error("llm_stream_failed", model=model, error=str(e), received_chars=sum(len(p) for p in parts))
            raise ModelCallError(str(e), model=model) from e

        text = "".join(parts)
        prompt_tokens, completion_tokens, total_tokens = self._extract_token_usage(usage_holder)
        usage = TokenUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            cost=self._completion_cost(model, None, prompt_tokens, completion_tokens),
        )
        logger.debug("llm_stream_completed", model=model, total_tokens=total_tokens, content=text)
        return LLMResponse(content=text.strip(), usage=usage, model=model, finish_reason=finish_reason)

    def _completion_kwargs(self, messages: List[Dict[str, str]], kwargs: Dict[str, Any]) -> Dict[str, Any]:
        # Merge default parameters with provided kwargs
        effective_temperature = kwargs.get("temperature", self.temperature)
        effective_max_tokens = kwargs.get("max_tokens", self.max_tokens)

        completion_kwargs: Dict[str, Any] = {
            "model": kwargs.get("model") or self.model,
            "messages": messages,
        }
        if effective_temperature is not None:
            completion_kwargs["temperature"] = effective_temperature
        if effective_max_tokens is not None:
            completion_kwargs["max_tokens"] = effective_max_tokens

        for key, value in kwargs.items():
            if key not in ("model", "temperature", "max_tokens") and value is not None:
                completion_kwargs[key] = value
        return completion_kwargs

    def _completion_cost(self, model: str, resp: Any, prompt_tokens: int, completion_tokens: int) -> float:
        """Price a call with litellm's model cost map; unknown models cost 0.0."""
        try:
            if resp is not None:
                return float(litellm.completion_cost(completion_response=resp) or 0.0)
            prompt_cost, completion_cost = litellm.cost_per_token(
                model=model, prompt_tokens=prompt_tokens, completion_tokens=completion_tokens
            )
            return float(prompt_cost + completion_cost)
        except Exception as e:
            logger.debug("llm_cost_unavailable", model=model, error=str(e))
            return 0.0

    def _extract_token_usage(self, resp: Any) -> tuple[int, int, int]:
        """Extract token usage from provider response with fallbacks for different providers."""
        def _get_token(obj: Any, *keys: str) -> int | None:
            for key in keys:
                if isinstance(obj, dict):
                    val = obj.get(key)
                elif hasattr(obj, key):
                    val = getattr(obj, key, None)
                else:
                    continue
                if isinstance(val, int):
                    return val
            return None

        if resp is None:
            return 0, 0, 0
        usage = getattr(resp, "usage", None) or (resp.get("usage") if isinstance(resp, dict) else None)
        if usage is None:
            return 0, 0, 0

        prompt_tokens = _get_token(usage, "prompt_tokens", "input_tokens") or 0
        completion_tokens = _get_token(usage, "completion_tokens", "output_tokens") or 0
        total_tokens = _get_token(usage, "total_tokens")

        # Compute total if missing but components available
        if total_tokens is None:
            total_tokens = prompt_tokens + completion_tokens
        return prompt_tokens, completion_tokens, total_tokens
