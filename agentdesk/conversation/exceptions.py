"""
Conversation store and state-machine errors.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agentdesk.conversation.state import ConversationEvent, HandlerState


class ConversationError(Exception):
    """Base class for conversation errors."""


class ConversationNotFoundError(ConversationError, KeyError):
    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation not found: {conversation_id}")

    def __str__(self) -> str:
        return self.args[0]


class InvalidTransitionError(ConversationError):
    """The event is not allowed from the conversation's current handler state."""

    def __init__(self, state: "HandlerState", event: "ConversationEvent"):
        self.state = state
        self.event = event
        super().__init__(f"Cannot apply '{event.value}' to a conversation in state '{state.value}'")


class ConversationClosedError(ConversationError):
    """The conversation has ended and accepts no further messages."""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation has ended: {conversation_id}")


class OperatorNotAssignedError(ConversationError):
    """The acting operator is not the one assigned to the conversation."""

    def __init__(self, conversation_id: str, operator_id: str):
        self.conversation_id = conversation_id
        self.operator_id = operator_id
        super().__init__(f"Operator '{operator_id}' is not assigned to conversation {conversation_id}")
