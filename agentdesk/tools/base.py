"""Tool execution adapter interface."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from agentdesk.models import ToolFailure, ToolSuccess, ToolTraceEntry


@dataclass(frozen=True)
class ToolExecutionResult:
    """Outcome of one tool call. Exactly one of ``result`` / ``error`` is meaningful."""

    success: bool
    tool_name: str
    execution_time_ms: int
    result: Any = None
    error: Optional[str] = None

    def to_trace_entry(self, parameters: Dict[str, Any]) -> ToolTraceEntry:
        outcome = ToolSuccess(self.result) if self.success else ToolFailure(self.error or "Unknown error")
        return ToolTraceEntry(
            tool_name=self.tool_name,
            parameters=dict(parameters),
            execution_time_ms=self.execution_time_ms,
            outcome=outcome,
        )


class BaseToolExecutor(ABC):
    """Executes a named tool with per-agent configuration.

    Implementations report failures through ``ToolExecutionResult.success``
    rather than raising, so the reasoning loop can feed them back to the model.
    """

    @abstractmethod
    async def execute(
        self, tool_name: str, parameters: Dict[str, Any], config: Mapping[str, Any]
    ) -> ToolExecutionResult: ...
