"""Default tool execution adapter: a name → handler table."""
from __future__ import annotations

import inspect
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from agentdesk.tools.base import BaseToolExecutor, ToolExecutionResult
from agentdesk.tools.exceptions import ToolConfigurationError, ToolNotFoundError

from utils.logger import get_logger, trace_method

logger = get_logger(__name__)

ToolHandler = Callable[[Dict[str, Any], Mapping[str, Any]], Union[Any, Awaitable[Any]]]


class ToolRegistry(BaseToolExecutor):
    """Runs registered handlers and turns every handler exception into a failed result.

    Handlers take ``(parameters, config)`` and may be plain or ``async`` functions.
    """

    def __init__(self, handlers: Optional[Mapping[str, ToolHandler]] = None, *, include_builtins: bool = True):
        self._handlers: Dict[str, ToolHandler] = {}
        if include_builtins:
            from agentdesk.tools.builtins import BUILTIN_HANDLERS

            for name, handler in BUILTIN_HANDLERS.items():
                self.register(name, handler)
        for name, handler in (handlers or {}).items():
            self.register(name, handler)

    @trace_method
    def register(self, tool_name: str, handler: ToolHandler) -> None:
        if not tool_name:
            raise ToolConfigurationError("Tool name must be a non-empty string")
        if not callable(handler):
            raise ToolConfigurationError(f"Handler for tool '{tool_name}' is not callable")
        self._handlers[tool_name] = handler

    def __contains__(self, tool_name: object) -> bool:
        return tool_name in self._handlers

    @property
    def tool_names(self) -> list[str]:
        return sorted(self._handlers)

    async def execute(
        self, tool_name: str, parameters: Dict[str, Any], config: Mapping[str, Any]
    ) -> ToolExecutionResult:
        start = time.perf_counter()
        try:
            handler = self._handlers.get(tool_name)
            if handler is None:
                raise ToolNotFoundError(tool_name)
            result = handler(dict(parameters), config)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            elapsed = int((time.perf_counter() - start) * 1000)
            logger.warning("tool_failed", tool=tool_name, error=str(exc), error_type=type(exc).__name__, execution_time_ms=elapsed)
            return ToolExecutionResult(success=False, tool_name=tool_name, execution_time_ms=elapsed, error=str(exc))

        elapsed = int((time.perf_counter() - start) * 1000)
        result_preview = str(result)
        if len(result_preview) > 200:
            result_preview = result_preview[:200] + "..."
        logger.info("tool_executed", tool=tool_name, execution_time_ms=elapsed, result_preview=result_preview)
        return ToolExecutionResult(success=True, tool_name=tool_name, execution_time_ms=elapsed, result=result)
