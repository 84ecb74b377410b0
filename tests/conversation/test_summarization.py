import asyncio

from agentdesk.conversation.models import Conversation, ConversationSummary, Message, MessageRole
from agentdesk.conversation.store import InMemoryConversationStore
from agentdesk.conversation.summarization import (
    BaseSummarizer,
    estimate_token_savings,
    messages_to_summarize,
    should_summarize,
    summarize_if_needed,
)


class RecordingSummarizer(BaseSummarizer):
    def __init__(self):
        self.seen = []

    async def summarize(self, messages, existing=None):  # type: ignore[override]
        self.seen.append((list(messages), existing))
        return ConversationSummary(key_topics=[f"{len(messages)} messages"])


class BrokenSummarizer(BaseSummarizer):
    async def summarize(self, messages, existing=None):  # type: ignore[override]
        raise RuntimeError("summary model unavailable")


def _conversation(n: int) -> Conversation:
    conv = Conversation(agent_id="a", user_id="u")
    for i in range(n):
        conv.add_message(Message(role=MessageRole.USER, content=f"m{i}"), summarize_after=1000)
    return conv


def test_should_summarize_triggers():
    assert not should_summarize(_conversation(10))
    assert should_summarize(_conversation(15))

    flagged = _conversation(2)
    flagged.metadata.requires_summarization = True
    assert should_summarize(flagged)

    assert should_summarize(_conversation(5), messages_since_summary=100, min_messages_without_summary=5)

    summarized = _conversation(20)
    summarized.apply_summary(ConversationSummary())
    assert not should_summarize(summarized, messages_since_summary=100, min_messages_without_summary=5)


def test_first_summary_keeps_recent_messages():
    assert messages_to_summarize(_conversation(10)) == []
    pending = messages_to_summarize(_conversation(12))
    assert [m.content for m in pending] == [f"m{i}" for i in range(7)]


def test_later_summaries_cover_messages_since_last_one():
    conv = _conversation(8)
    conv.apply_summary(ConversationSummary(), message_count=6)
    assert [m.content for m in messages_to_summarize(conv)] == ["m6", "m7"]


def test_estimate_token_savings_never_negative():
    messages = [Message(role=MessageRole.USER, content="x" * 4000)]
    assert estimate_token_savings(messages) == 1000 - 50
    assert estimate_token_savings([Message(role=MessageRole.USER, content="hi")]) == 0


def test_summarize_if_needed_stores_summary():
    async def _go():
        store = InMemoryConversationStore(summarize_after=1000)
        conv = await store.create("a", "u")
        for i in range(16):
            await store.append_message(conv.id, Message(role=MessageRole.USER, content=f"m{i}"))
        summarizer = RecordingSummarizer()
        stored = await summarize_if_needed(store, conv.id, summarizer)
        return stored, summarizer, await store.get(conv.id)

    stored, summarizer, conv = asyncio.run(_go())

    assert stored
    assert len(summarizer.seen[0][0]) == 11
    assert conv.summary.key_topics == ["11 messages"]
    assert conv.metadata.last_summary_index == 10
    assert conv.metadata.summary_version == 1


def test_summarize_if_needed_skips_when_not_due():
    async def _go():
        store = InMemoryConversationStore()
        conv = await store.create("a", "u")
        await store.append_message(conv.id, Message(role=MessageRole.USER, content="hi"))
        summarizer = RecordingSummarizer()
        return await summarize_if_needed(store, conv.id, summarizer), summarizer

    stored, summarizer = asyncio.run(_go())

    assert not stored
    assert summarizer.seen == []


def test_summarizer_failure_is_swallowed():
    async def _go():
        store = InMemoryConversationStore(summarize_after=1000)
        conv = await store.create("a", "u")
        for i in range(20):
            await store.append_message(conv.id, Message(role=MessageRole.USER, content=f"m{i}"))
        stored = await summarize_if_needed(store, conv.id, BrokenSummarizer())
        return stored, await store.get(conv.id)

    stored, conv = asyncio.run(_go())

    assert not stored
    assert conv.summary is None


def test_recent_messages_stay_visible_after_summary():
    async def _go():
        store = InMemoryConversationStore(summarize_after=1000)
        conv = await store.create("a", "u")
        for i in range(20):
            await store.append_message(conv.id, Message(role=MessageRole.USER, content=f"m{i}"))
        summarizer = RecordingSummarizer()
        await summarize_if_needed(store, conv.id, summarizer)
        return summarizer, await store.get(conv.id)

    summarizer, conv = asyncio.run(_go())

    assert [m.content for m in summarizer.seen[0][0]] == [f"m{i}" for i in range(15)]
    assert conv.metadata.last_summary_index == 14
    context = conv.context_for_agent()
    assert [m.content for m in context[1:]] == [f"m{i}" for i in range(15, 20)]
    assert conv.messages_since_summary == 5
