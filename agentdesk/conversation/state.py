"""Who is allowed to answer a conversation: the agent, a human operator, or nobody."""
from __future__ import annotations

from enum import Enum
from typing import Dict, Tuple

from agentdesk.conversation.exceptions import InvalidTransitionError

__all__ = ["HandlerState", "ConversationEvent", "TRANSITIONS", "next_state", "agent_may_respond", "GATE_MESSAGES"]


class HandlerState(str, Enum):
    AGENT_CONTROLLED = "agent_controlled"
    HANDOFF_REQUESTED = "handoff_requested"
    HUMAN_CONTROLLED = "human_controlled"
    ENDED = "ended"


class ConversationEvent(str, Enum):
    REQUEST_HANDOFF = "request_handoff"
    TAKEOVER = "takeover"
    HAND_BACK = "hand_back"
    END = "end"


TRANSITIONS: Dict[Tuple[HandlerState, ConversationEvent], HandlerState] = {
    (HandlerState.AGENT_CONTROLLED, ConversationEvent.REQUEST_HANDOFF): HandlerState.HANDOFF_REQUESTED,
    (HandlerState.HANDOFF_REQUESTED, ConversationEvent.TAKEOVER): HandlerState.HUMAN_CONTROLLED,
    # Operators may also step in before the agent asks for help
    (HandlerState.AGENT_CONTROLLED, ConversationEvent.TAKEOVER): HandlerState.HUMAN_CONTROLLED,
    (HandlerState.HUMAN_CONTROLLED, ConversationEvent.HAND_BACK): HandlerState.AGENT_CONTROLLED,
    **{
        (state, ConversationEvent.END): HandlerState.ENDED
        for state in HandlerState
        if state is not HandlerState.ENDED
    },
}

GATE_MESSAGES = {
    HandlerState.HANDOFF_REQUESTED: "Your message has been forwarded to a human operator. They will respond shortly.",
    HandlerState.HUMAN_CONTROLLED: "You are currently chatting with a human operator. Your message has been delivered.",
}


def next_state(state: HandlerState, event: ConversationEvent) -> HandlerState:
    """Raises InvalidTransitionError when ``event`` is not allowed from ``state``."""
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransitionError(state, event) from None


def agent_may_respond(state: HandlerState) -> bool:
    return state is HandlerState.AGENT_CONTROLLED
