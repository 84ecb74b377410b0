"""When and what to summarize. Producing the summary is left to a BaseSummarizer."""
from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from agentdesk.conversation.models import CHARS_PER_TOKEN, Conversation, ConversationSummary, Message
from agentdesk.conversation.store import ConversationStore

from utils.logger import get_logger

logger = get_logger(__name__)

# With no summary yet, the newest messages stay verbatim
KEEP_RECENT_MESSAGES = 5
MIN_MESSAGES_FOR_FIRST_SUMMARY = 10


class BaseSummarizer(ABC):
    @abstractmethod
    async def summarize(
        self, messages: Sequence[Message], existing: Optional[ConversationSummary] = None
    ) -> ConversationSummary:
        """Produce a summary of ``messages``, folding in ``existing`` when given."""


def should_summarize(
    conversation: Conversation,
    *,
    messages_since_summary: int = 15,
    min_messages_without_summary: int = 20,
) -> bool:
    if conversation.metadata.requires_summarization:
        return True
    if conversation.messages_since_summary >= messages_since_summary:
        return True
    return len(conversation.messages) >= min_messages_without_summary and conversation.summary is None


def messages_to_summarize(conversation: Conversation) -> List[Message]:
    if conversation.metadata.last_summary_index >= 0:
        return conversation.messages[conversation.metadata.last_summary_index + 1:]
    if len(conversation.messages) <= MIN_MESSAGES_FOR_FIRST_SUMMARY:
        return []
    return conversation.messages[:-KEEP_RECENT_MESSAGES]


def estimate_token_savings(messages: Sequence[Message], summary_length: int = 200) -> int:
    original = sum(math.ceil(len(m.content) / CHARS_PER_TOKEN) for m in messages)
    return max(0, original - math.ceil(summary_length / CHARS_PER_TOKEN))


async def summarize_if_needed(
    store: ConversationStore,
    conversation_id: str,
    summarizer: BaseSummarizer,
    *,
    messages_since_summary: int = 15,
    min_messages_without_summary: int = 20,
) -> bool:
    """Summarize the conversation when a trigger fires. Never raises; returns whether a summary was stored."""
    try:
        conversation = await store.get(conversation_id)
        if not should_summarize(
            conversation,
            messages_since_summary=messages_since_summary,
            min_messages_without_summary=min_messages_without_summary,
        ):
            return False

        pending = messages_to_summarize(conversation)
        if not pending:
            logger.debug("summarization_skipped", conversation_id=conversation_id, reason="no_messages")
            return False

        summary = await summarizer.summarize(pending, conversation.summary)
        # Cover only what was summarized; the kept recent messages stay verbatim
        covered = conversation.metadata.last_summary_index + 1 + len(pending)
        await store.apply_summary(conversation_id, summary, message_count=covered)
        logger.info(
            "conversation_summarized",
            conversation_id=conversation_id,
            messages_summarized=len(pending),
            total_messages=len(conversation.messages),
            estimated_token_savings=estimate_token_savings(pending),
        )
        return True
    except Exception as e:
        logger.error("summarization_failed", conversation_id=conversation_id, error=str(e), exc_info=True)
        return False
