"""Conversation persistence boundary.

The orchestration layer only ever talks to a store through these operations;
each one is atomic per conversation. Different conversations never contend.
"""
from __future__ import annotations

import asyncio
import copy
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from agentdesk.conversation.exceptions import ConversationClosedError, ConversationNotFoundError
from agentdesk.conversation.models import Conversation, ConversationSummary, Message
from agentdesk.conversation.state import ConversationEvent, HandlerState
from agentdesk.models import HandoffInfo

from utils.logger import get_logger

logger = get_logger(__name__)


class ConversationStore(ABC):
    """Storage contract for conversations. Returned conversations are snapshots."""

    @abstractmethod
    async def create(self, agent_id: str, user_id: str, *, conversation_id: Optional[str] = None) -> Conversation: ...

    @abstractmethod
    async def get(self, conversation_id: str) -> Conversation: ...

    @abstractmethod
    async def append_message(
        self, conversation_id: str, message: Message, *, only_in: Optional[HandlerState] = None
    ) -> HandlerState:
        """Append ``message`` and return the handler state it was appended under.

        With ``only_in`` set, the message is appended only while the conversation
        is in that state; otherwise nothing is written and the current state is
        returned.

        Raises:
            ConversationClosedError: the conversation has ended and ``only_in`` was not given.
        """

    @abstractmethod
    async def current_state(self, conversation_id: str) -> HandlerState: ...

    @abstractmethod
    async def transition(
        self,
        conversation_id: str,
        event: ConversationEvent,
        *,
        handoff_info: Optional[HandoffInfo] = None,
        operator_id: Optional[str] = None,
    ) -> HandlerState: ...

    @abstractmethod
    async def apply_summary(
        self, conversation_id: str, summary: ConversationSummary, *, message_count: Optional[int] = None
    ) -> None: ...

    @abstractmethod
    async def list_by_state(self, state: HandlerState, *, urgency: Optional[str] = None) -> List[Conversation]: ...


class InMemoryConversationStore(ConversationStore):
    """Process-local store with one asyncio lock per conversation."""

    def __init__(self, *, summarize_after: int = 15):
        self._conversations: Dict[str, Conversation] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self.summarize_after = summarize_after

    def _require(self, conversation_id: str) -> Conversation:
        try:
            return self._conversations[conversation_id]
        except KeyError:
            raise ConversationNotFoundError(conversation_id) from None

    def _lock_for(self, conversation_id: str) -> asyncio.Lock:
        # Locks exist only for created conversations, so unknown ids leave nothing behind
        lock = self._locks.get(conversation_id)
        if lock is None:
            raise ConversationNotFoundError(conversation_id)
        return lock

    async def create(self, agent_id: str, user_id: str, *, conversation_id: Optional[str] = None) -> Conversation:
        conversation = Conversation(agent_id=agent_id, user_id=user_id)
        if conversation_id:
            conversation.id = conversation_id
        async with self._locks.setdefault(conversation.id, asyncio.Lock()):
            if conversation.id in self._conversations:
                return copy.deepcopy(self._conversations[conversation.id])
            self._conversations[conversation.id] = conversation
        logger.info("conversation_created", conversation_id=conversation.id, agent_id=agent_id, user_id=user_id)
        return copy.deepcopy(conversation)

    async def get(self, conversation_id: str) -> Conversation:
        async with self._lock_for(conversation_id):
            return copy.deepcopy(self._require(conversation_id))

    async def append_message(
        self, conversation_id: str, message: Message, *, only_in: Optional[HandlerState] = None
    ) -> HandlerState:
        async with self._lock_for(conversation_id):
            conversation = self._require(conversation_id)
            if only_in is not None and conversation.handler_state is not only_in:
                return conversation.handler_state
            if conversation.handler_state is HandlerState.ENDED:
                raise ConversationClosedError(conversation_id)
            conversation.add_message(message, summarize_after=self.summarize_after)
            return conversation.handler_state

    async def current_state(self, conversation_id: str) -> HandlerState:
        async with self._lock_for(conversation_id):
            return self._require(conversation_id).handler_state

    async def transition(
        self,
        conversation_id: str,
        event: ConversationEvent,
        *,
        handoff_info: Optional[HandoffInfo] = None,
        operator_id: Optional[str] = None,
    ) -> HandlerState:
        async with self._lock_for(conversation_id):
            conversation = self._require(conversation_id)
            previous = conversation.handler_state
            new_state = conversation.apply_event(
                event, handoff_info=copy.deepcopy(handoff_info), operator_id=operator_id
            )
        logger.info(
            "conversation_transition",
            conversation_id=conversation_id,
            transition_event=event.value,
            from_state=previous.value,
            to_state=new_state.value,
        )
        return new_state

    async def apply_summary(
        self, conversation_id: str, summary: ConversationSummary, *, message_count: Optional[int] = None
    ) -> None:
        async with self._lock_for(conversation_id):
            self._require(conversation_id).apply_summary(summary, message_count=message_count)

    async def list_by_state(self, state: HandlerState, *, urgency: Optional[str] = None) -> List[Conversation]:
        matches = [
            c for c in self._conversations.values()
            if c.handler_state is state and (urgency is None or (c.handoff_info and c.handoff_info.urgency == urgency))
        ]
        matches.sort(
            key=lambda c: c.handoff_info.requested_at if c.handoff_info else c.created_at,
            reverse=True,
        )
        return [copy.deepcopy(c) for c in matches]
