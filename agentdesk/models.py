"""Data models shared by the reasoning loop, the tool adapter and the conversation layer."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

__all__ = [
    "ThinkAction",
    "UseToolAction",
    "RespondAction",
    "Action",
    "ThinkingStepKind",
    "ThinkingStep",
    "TokenUsage",
    "ToolSuccess",
    "ToolFailure",
    "ToolTraceEntry",
    "HandoffInfo",
    "ExecutionResult",
    "utcnow",
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ----------------------------- Actions ---------------------------------


@dataclass(frozen=True)
class ThinkAction:
    """The model wants another pass before acting."""

    reasoning: str


@dataclass(frozen=True)
class UseToolAction:
    """The model wants a tool invoked with the given parameters."""

    tool_name: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    reasoning: str = ""


@dataclass(frozen=True)
class RespondAction:
    """The model produced the user-facing answer."""

    response_text: str
    reasoning: str = ""


Action = Union[ThinkAction, UseToolAction, RespondAction]


# ----------------------------- Trace -----------------------------------


class ThinkingStepKind(str, Enum):
    ANALYZE_INPUT = "analyze_input"
    TOOL_EXECUTION = "tool_execution"
    TOOL_FAILED = "tool_failed"
    CONTINUE_REASONING = "continue_reasoning"
    FINAL_RESPONSE = "final_response"
    HUMAN_HANDOFF_REQUESTED = "human_handoff_requested"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ThinkingStep:
    kind: ThinkingStepKind
    reasoning: str
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class TokenUsage:
    """Token counts and cost for one or more model calls."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0

    def __add__(self, other: TokenUsage) -> TokenUsage:
        if not isinstance(other, TokenUsage):
            return NotImplemented
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            cost=self.cost + other.cost,
        )


@dataclass(frozen=True)
class ToolSuccess:
    result: Any


@dataclass(frozen=True)
class ToolFailure:
    error_message: str


@dataclass(frozen=True)
class ToolTraceEntry:
    """One tool invocation and its outcome. Never mutated once recorded."""

    tool_name: str
    parameters: Dict[str, Any]
    execution_time_ms: int
    outcome: Union[ToolSuccess, ToolFailure]
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def success(self) -> bool:
        return isinstance(self.outcome, ToolSuccess)


# ----------------------------- Handoff ---------------------------------


@dataclass
class HandoffInfo:
    """Why and when control of a conversation moved toward a human operator."""

    reason: str
    urgency: str = "medium"
    context_summary: Optional[str] = None
    requested_by: str = "agent"
    requested_at: datetime = field(default_factory=utcnow)
    assigned_operator: Optional[str] = None
    taken_over_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


# ----------------------------- Result ----------------------------------


@dataclass
class ExecutionResult:
    """Terminal output of one reasoning-loop run. ``final_text`` is never empty."""

    final_text: str
    thinking_steps: List[ThinkingStep] = field(default_factory=list)
    tool_trace: List[ToolTraceEntry] = field(default_factory=list)
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    iterations_used: int = 0
    handoff_info: Optional[HandoffInfo] = None
    cancelled: bool = False
    conversation_id: Optional[str] = None
    execution_id: Optional[str] = None
    status: str = "completed"

    @property
    def handoff_requested(self) -> bool:
        return self.handoff_info is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "final_text": self.final_text,
            "conversation_id": self.conversation_id,
            "execution_id": self.execution_id,
            "status": self.status,
            "iterations_used": self.iterations_used,
            "cancelled": self.cancelled,
            "handoff_requested": self.handoff_requested,
            "thinking_steps": [
                {"step": s.kind.value, "reasoning": s.reasoning, "timestamp": s.timestamp.isoformat()}
                for s in self.thinking_steps
            ],
            "tool_trace": [
                {
                    "tool_name": t.tool_name,
                    "parameters": t.parameters,
                    "execution_time_ms": t.execution_time_ms,
                    "success": t.success,
                    **(
                        {"result": t.outcome.result}
                        if isinstance(t.outcome, ToolSuccess)
                        else {"error": t.outcome.error_message}
                    ),
                }
                for t in self.tool_trace
            ],
            "token_usage": {
                "prompt_tokens": self.token_usage.prompt_tokens,
                "completion_tokens": self.token_usage.completion_tokens,
                "total_tokens": self.token_usage.total_tokens,
                "cost": self.token_usage.cost,
            },
        }
