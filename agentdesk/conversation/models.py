"""Conversation aggregate: messages, handler state, handoff details and summary bookkeeping."""
from __future__ import annotations

import json
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from agentdesk.conversation.state import ConversationEvent, HandlerState, next_state
from agentdesk.models import HandoffInfo, ThinkingStep, TokenUsage, ToolTraceEntry, utcnow

__all__ = [
    "MessageRole",
    "Message",
    "ConversationSummary",
    "ConversationMetadata",
    "Conversation",
    "estimate_tokens",
    "make_title",
]

TITLE_MAX_CHARS = 50
CHARS_PER_TOKEN = 4


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"
    HUMAN_OPERATOR = "human_operator"


@dataclass
class Message:
    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=utcnow)
    thinking_steps: List[ThinkingStep] = field(default_factory=list)
    tool_trace: List[ToolTraceEntry] = field(default_factory=list)
    token_usage: Optional[TokenUsage] = None
    agent_id: Optional[str] = None
    operator_id: Optional[str] = None

    def as_prompt_entry(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass
class ConversationSummary:
    key_topics: List[str] = field(default_factory=list)
    user_preferences: Dict[str, Any] = field(default_factory=dict)
    important_decisions: List[str] = field(default_factory=list)
    unresolved_issues: List[str] = field(default_factory=list)
    context_data: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    message_count_when_summarized: int = 0

    def render(self) -> str:
        """Summary block injected as a system message in place of the summarized history."""
        lines = ["=== CONVERSATION SUMMARY ==="]
        if self.key_topics:
            lines.append(f"Key Topics Discussed: {', '.join(self.key_topics)}")
        if self.important_decisions:
            lines.append(f"Important Decisions Made: {'; '.join(self.important_decisions)}")
        if self.unresolved_issues:
            lines.append(f"Unresolved Issues: {'; '.join(self.unresolved_issues)}")
        if self.user_preferences:
            lines.append(f"User Preferences: {json.dumps(self.user_preferences, ensure_ascii=False)}")
        if self.context_data:
            lines.append(f"Important Context: {json.dumps(self.context_data, ensure_ascii=False, default=str)}")
        lines.append(
            f"(Summary covers {self.message_count_when_summarized} messages up to {self.created_at.isoformat()})"
        )
        lines.append("=== END SUMMARY ===")
        return "\n".join(lines)

    def short_text(self) -> str:
        parts = []
        if self.key_topics:
            parts.append(f"Topics: {', '.join(self.key_topics)}")
        if self.important_decisions:
            parts.append(f"Decisions: {'; '.join(self.important_decisions)}")
        return " | ".join(parts)


@dataclass
class ConversationMetadata:
    total_tokens_used: int = 0
    total_cost: float = 0.0
    tools_executed_count: int = 0
    last_activity: datetime = field(default_factory=utcnow)
    # Index of the last message covered by the summary, -1 when there is none
    last_summary_index: int = -1
    summary_version: int = 0
    requires_summarization: bool = False


def estimate_tokens(messages: Sequence[Message]) -> int:
    """Rough token estimate at four characters per token."""
    total = 0
    for message in messages:
        total += math.ceil(len(message.content) / CHARS_PER_TOKEN)
        if message.thinking_steps:
            thinking = "".join(f"{s.kind.value}{s.reasoning}" for s in message.thinking_steps)
            total += math.ceil(len(thinking) / CHARS_PER_TOKEN)
    return total


def make_title(first_message: str) -> str:
    text = first_message.strip()
    if len(text) > TITLE_MAX_CHARS:
        return text[: TITLE_MAX_CHARS - 3] + "..."
    return text


@dataclass
class Conversation:
    agent_id: str
    user_id: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    title: Optional[str] = None
    messages: List[Message] = field(default_factory=list)
    handler_state: HandlerState = HandlerState.AGENT_CONTROLLED
    handoff_info: Optional[HandoffInfo] = None
    summary: Optional[ConversationSummary] = None
    metadata: ConversationMetadata = field(default_factory=ConversationMetadata)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def messages_since_summary(self) -> int:
        return len(self.messages) - (self.metadata.last_summary_index + 1)

    def add_message(self, message: Message, *, summarize_after: int = 15) -> None:
        self.messages.append(message)
        if self.title is None and message.role is MessageRole.USER:
            self.title = make_title(message.content)
        if message.token_usage is not None:
            self.metadata.total_tokens_used += message.token_usage.total_tokens
            self.metadata.total_cost += message.token_usage.cost
        self.metadata.tools_executed_count += len(message.tool_trace)
        self.metadata.last_activity = message.timestamp
        if self.messages_since_summary >= summarize_after:
            self.metadata.requires_summarization = True

    def apply_event(
        self,
        event: ConversationEvent,
        *,
        handoff_info: Optional[HandoffInfo] = None,
        operator_id: Optional[str] = None,
    ) -> HandlerState:
        """Move to the next handler state and keep ``handoff_info`` in step with it."""
        new_state = next_state(self.handler_state, event)
        now = utcnow()
        if event is ConversationEvent.REQUEST_HANDOFF:
            self.handoff_info = handoff_info or HandoffInfo(reason="unspecified")
        elif event is ConversationEvent.TAKEOVER:
            if self.handler_state is HandlerState.AGENT_CONTROLLED or self.handoff_info is None:
                self.handoff_info = HandoffInfo(reason="operator_takeover", requested_by="operator", requested_at=now)
            self.handoff_info.assigned_operator = operator_id
            self.handoff_info.taken_over_at = now
        elif event in (ConversationEvent.HAND_BACK, ConversationEvent.END):
            if self.handoff_info is not None and self.handoff_info.resolved_at is None:
                self.handoff_info.resolved_at = now
        self.handler_state = new_state
        self.metadata.last_activity = now
        return new_state

    def apply_summary(self, summary: ConversationSummary, *, message_count: Optional[int] = None) -> None:
        """Record ``summary`` as covering the first ``message_count`` messages (all of them by default)."""
        covered = len(self.messages) if message_count is None else min(message_count, len(self.messages))
        summary.message_count_when_summarized = covered
        self.summary = summary
        self.metadata.last_summary_index = covered - 1
        self.metadata.summary_version += 1
        self.metadata.requires_summarization = False

    def context_for_agent(self, max_tokens: int = 4000) -> List[Message]:
        """Messages the agent should see, bounded by a rough token budget.

        System messages always come first. With a summary, the rendered summary
        replaces everything it covers; otherwise the newest messages that fit
        in ``max_tokens`` are kept, oldest dropped first.
        """
        system = [m for m in self.messages if m.role is MessageRole.SYSTEM]

        if self.summary is not None and self.metadata.last_summary_index >= 0:
            summary_message = Message(
                role=MessageRole.SYSTEM, content=self.summary.render(), timestamp=self.summary.created_at
            )
            recent = [
                m for m in self.messages[self.metadata.last_summary_index + 1:] if m.role is not MessageRole.SYSTEM
            ]
            return [*system, summary_message, *recent]

        available = max_tokens - estimate_tokens(system)
        selected: List[Message] = []
        used = 0
        for message in reversed([m for m in self.messages if m.role is not MessageRole.SYSTEM]):
            cost = estimate_tokens([message])
            if used + cost > available:
                break
            selected.append(message)
            used += cost
        selected.reverse()
        return [*system, *selected]
