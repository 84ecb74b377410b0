"""Simple, minimal tracing decorator for agentdesk."""

from __future__ import annotations

from functools import wraps
from inspect import iscoroutinefunction, signature
from typing import Any, Callable, Optional
from contextvars import ContextVar
from dataclasses import is_dataclass, asdict
import json
import time


SECRET_REDACT_KEYS = {
    "apikey", "accesstoken", "refreshtoken", "clientsecret", "secret", "password",
    "authorization", "bearer", "cookie", "setcookie", "privatekey", "sshkey",
}


def _normalise_key(key: str) -> str:
    return str(key).lower().replace("_", "").replace("-", "")


def _safe_preview(val: Any, max_len: int = 512) -> Any:
    """Create a JSON-friendly preview of any value, redacting secret-looking keys."""
    if val is None or isinstance(val, (bool, int, float)):
        return val
    if isinstance(val, str):
        return val if len(val) <= max_len else val[:max_len] + "..."
    if isinstance(val, dict):
        preview = {
            str(k): ("<redacted>" if _normalise_key(k) in SECRET_REDACT_KEYS else _safe_preview(v, max_len))
            for k, v in list(val.items())[:20]
        }
        if len(val) > 20:
            preview["..."] = f"{len(val) - 20} more keys"
        return preview
    if isinstance(val, (list, tuple)):
        items = [_safe_preview(v, max_len) for v in list(val)[:20]]
        if len(val) > 20:
            items.append("...")
        return items
    if is_dataclass(val) and not isinstance(val, type):
        return _safe_preview(asdict(val), max_len)
    if hasattr(val, "model_dump"):
        return _safe_preview(val.model_dump(), max_len)
    return repr(val)[:max_len]


def observe(_fn: Optional[Callable[..., Any]] = None, *, llm: bool = False, root: bool = False) -> Callable[..., Any]:
    """Minimal tracing decorator.

    Usage:
        @observe
        def my_function(): ...

        @observe(llm=True)
        async def llm_call(): ...

        @observe(root=True)
        async def execute_chatbot_agent(): ...

    - Auto-names spans from function module.qualname
    - Works for both plain and ``async def`` functions
    - Records timing, exceptions, basic I/O
    - Tracks token usage when llm=True
    - Aggregates total tokens when root=True
    - No-op if OpenTelemetry unavailable
    """

    def _decorate(fn: Callable[..., Any]) -> Callable[..., Any]:
        module = getattr(fn, "__module__", "") or ""
        qualname = getattr(fn, "__qualname__", fn.__name__)
        span_name = f"{module}.{qualname}" if module else qualname

        def _get_tracer():
            try:
                from opentelemetry import trace
                return trace, trace.get_tracer("agentdesk")
            except Exception:
                return None, None

        def _before(span: Any, args: tuple, kwargs: dict) -> None:
            if root:
                _start_token_accumulator(span)
            _capture_input(span, fn, args, kwargs, llm)

        def _after(span: Any, result: Any) -> None:
            if llm:
                _capture_llm_output(span, result)
            else:
                _capture_output(span, result)

        def _finish(span: Any, start_time: float) -> None:
            span.set_attribute("duration_ms", int((time.perf_counter() - start_time) * 1000))
            if root:
                _finalize_token_accumulator(span)

        if iscoroutinefunction(fn):
            @wraps(fn)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                trace, tracer = _get_tracer()
                if tracer is None:
                    return await fn(*args, **kwargs)

                start_time = time.perf_counter()
                with tracer.start_as_current_span(span_name) as span:
                    try:
                        _before(span, args, kwargs)
                        result = await fn(*args, **kwargs)
                        _after(span, result)
                        return result
                    except BaseException as e:
                        span.record_exception(e)
                        span.set_status(trace.Status(trace.StatusCode.ERROR))
                        raise
                    finally:
                        _finish(span, start_time)

            return async_wrapper

        @wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            trace, tracer = _get_tracer()
            if tracer is None:
                return fn(*args, **kwargs)

            start_time = time.perf_counter()
            with tracer.start_as_current_span(span_name) as span:
                try:
                    _before(span, args, kwargs)
                    result = fn(*args, **kwargs)
                    _after(span, result)
                    return result
                except Exception as e:
                    span.record_exception(e)
                    span.set_status(trace.Status(trace.StatusCode.ERROR))
                    raise
                finally:
                    _finish(span, start_time)

        return wrapper

    # Support both @observe and @observe() forms
    if callable(_fn):
        return _decorate(_fn)
    return _decorate


def _capture_input(span: Any, fn: Callable, args: tuple, kwargs: dict, llm: bool) -> None:
    """Capture function inputs with smart previews and redaction."""
    try:
        bound = signature(fn).bind_partial(*args, **kwargs)

        # LLM path: capture the prompt only (longer cap for prompt visibility)
        if llm:
            prompt = bound.arguments.get("messages") or bound.arguments.get("prompt")
            if isinstance(prompt, list):
                prompt = json.dumps(prompt, ensure_ascii=False, default=str)
            if prompt:
                span.set_attribute("input", str(prompt)[:12288])
            return

        inputs = {name: _safe_preview(value) for name, value in bound.arguments.items() if name not in {"self", "cls"}}
        input_str = json.dumps(inputs, ensure_ascii=False, separators=(",", ":"), default=str)
        span.set_attribute("input", input_str[:6144] + ("..." if len(input_str) > 6144 else ""))
    except Exception:
        pass


def _capture_output(span: Any, result: Any) -> None:
    """Capture non-LLM outputs with structured attributes."""
    try:
        # ExecutionResult-like: capture structured fields
        if hasattr(result, "final_text"):
            span.set_attribute("output", str(result.final_text)[:8192])
            if hasattr(result, "iterations_used"):
                span.set_attribute("total_iterations", int(result.iterations_used))
            usage = getattr(result, "token_usage", None)
            if usage is not None and isinstance(getattr(usage, "total_tokens", None), int):
                span.set_attribute("tokens.total", usage.total_tokens)
            if hasattr(result, "handoff_requested"):
                span.set_attribute("handoff_requested", bool(result.handoff_requested))
        else:
            span.set_attribute("output", str(result)[:8192])
    except Exception:
        pass


def _capture_llm_output(span: Any, result: Any) -> None:
    """Capture LLM outputs and track tokens."""
    try:
        usage = getattr(result, "usage", None)
        span.set_attribute("output", str(getattr(result, "content", result))[:8192])
        if usage is None:
            return
        span.set_attribute("tokens.prompt", int(usage.prompt_tokens))
        span.set_attribute("tokens.completion", int(usage.completion_tokens))
        span.set_attribute("tokens.total", int(usage.total_tokens))
        span.set_attribute("cost", float(usage.cost))
        _accumulate_tokens(int(usage.total_tokens))
    except Exception:
        pass


# ── Token Accumulation ──────────────────────────────────────────────────────
# Root spans start a token counter; child LLM calls increment it; root finalizes total.

_tokens: ContextVar[Optional[int]] = ContextVar("tokens", default=None)
_owner: ContextVar[Optional[int]] = ContextVar("owner", default=None)


def _start_token_accumulator(span: Any) -> None:
    """Initialize token counter for root span."""
    if _tokens.get() is None:
        _tokens.set(0)
        _owner.set(id(span))


def _accumulate_tokens(token_count: int) -> None:
    """Add tokens from an LLM call."""
    current = _tokens.get()
    if isinstance(current, int):
        _tokens.set(current + token_count)


def _finalize_token_accumulator(span: Any) -> None:
    """Write total tokens to root span and reset."""
    if _owner.get() == id(span):
        total = _tokens.get()
        if isinstance(total, int) and total > 0:
            span.set_attribute("tokens.session_total", total)
        _tokens.set(None)
        _owner.set(None)
