"""Live extraction of the user-facing answer from a streamed completion.

The model writes ``RESPONSE:`` and then ``REASONING:`` in the same completion.
Only the response body may reach the caller's sink; the reasoning tail must
never leak, even when a chunk boundary splits the marker (``"REAS"`` +
``"ONING:"``). The extractor holds back any trailing text that could still
turn into a marker, so the stream lags by a few characters at most.

One extractor per model call. It only decides what is safe to show; the full
buffer is still decoded by :func:`agentdesk.reasoner.protocol.decode_action`.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from agentdesk.reasoner.protocol import (
    ACTION_MARKER,
    ACTION_RESPOND,
    FIELD_MARKERS,
    REASONING_MARKER,
    RESPONSE_MARKER,
)

from utils.logger import get_logger

logger = get_logger(__name__)

# Only the first ACTION line counts, matching the decoder
_FIRST_ACTION = re.compile(r"^[ \t]*" + re.escape(ACTION_MARKER) + r"(.*)$", re.MULTILINE)
_REASONING = re.compile(re.escape(REASONING_MARKER), re.IGNORECASE)
_OTHER_FIELD = re.compile(
    r"\n[ \t]*(?:" + "|".join(re.escape(m) for m in FIELD_MARKERS if m not in (RESPONSE_MARKER, REASONING_MARKER)) + ")"
)


class ExtractorPhase(str, Enum):
    BUFFERING = "buffering"
    EMITTING = "emitting"
    SUPPRESSED = "suppressed"


@dataclass
class StreamingExtractorState:
    """Mutable state owned by exactly one extractor."""

    buffer: str = ""
    emitted_chars: int = 0
    phase: ExtractorPhase = ExtractorPhase.BUFFERING


def _partial_reasoning_suffix(text: str) -> int:
    """Length of the longest suffix of ``text`` that is a proper prefix of ``REASONING:`` (any case)."""
    marker = REASONING_MARKER.upper()
    for size in range(min(len(marker) - 1, len(text)), 0, -1):
        if text[-size:].upper() == marker[:size]:
            return size
    return 0


def _partial_field_line(text: str) -> int:
    """Length of a trailing line fragment that could still become a field marker."""
    newline = text.rfind("\n")
    if newline == -1:
        return 0
    fragment = text[newline + 1:].lstrip(" \t")
    if not fragment:
        return 0
    if any(marker.startswith(fragment) for marker in FIELD_MARKERS) or REASONING_MARKER.startswith(fragment.upper()):
        return len(text) - newline
    return 0


class StreamingResponseExtractor:
    """Feed raw chunks in, get back only the newly safe part of the response body."""

    def __init__(self) -> None:
        self.state = StreamingExtractorState()

    @property
    def phase(self) -> ExtractorPhase:
        return self.state.phase

    @property
    def text(self) -> str:
        """Everything received so far, unfiltered."""
        return self.state.buffer

    def feed(self, chunk: str) -> str:
        """Consume one chunk and return the text that may be shown now (possibly empty)."""
        state = self.state
        state.buffer += chunk
        if state.phase is ExtractorPhase.SUPPRESSED:
            return ""

        if state.phase is ExtractorPhase.BUFFERING:
            action = _FIRST_ACTION.search(state.buffer)
            reasoning = _REASONING.search(state.buffer)
            if reasoning and (action is None or reasoning.start() < action.start()):
                self._suppress()
                return ""
            if action is None or action.end() == len(state.buffer):
                # The action line may still be growing
                return ""
            if action.group(1).strip().lower() != ACTION_RESPOND:
                self._suppress()
                return ""
            state.phase = ExtractorPhase.EMITTING
            logger.debug("stream_emitting_started")

        out = self._advance(final=False)
        if _REASONING.search(state.buffer):
            self._suppress()
        return out

    def finish(self) -> str:
        """Flush text that was held back only because more chunks might have followed."""
        if self.state.phase is not ExtractorPhase.EMITTING:
            return ""
        return self._advance(final=True)

    def _suppress(self) -> None:
        self.state.phase = ExtractorPhase.SUPPRESSED
        logger.debug("stream_suppressed", emitted_chars=self.state.emitted_chars)

    def _safe_response(self, final: bool) -> Optional[str]:
        buffer = self.state.buffer
        start = buffer.find(RESPONSE_MARKER)
        if start == -1:
            return None
        reasoning = _REASONING.search(buffer)
        if reasoning and reasoning.start() < start:
            return None

        body = buffer[start + len(RESPONSE_MARKER):]
        end = len(body)
        bounded = False
        for pattern in (_REASONING, _OTHER_FIELD):
            match = pattern.search(body)
            if match and match.start() < end:
                end = match.start()
                bounded = True
        body = body[:end]

        if not bounded:
            hold = _partial_field_line(body)
            if not final:
                hold = max(hold, _partial_reasoning_suffix(body))
            if hold:
                body = body[:-hold]
        return body.strip()

    def _advance(self, final: bool) -> str:
        safe = self._safe_response(final)
        if safe is None or len(safe) <= self.state.emitted_chars:
            return ""
        out = safe[self.state.emitted_chars:]
        self.state.emitted_chars = len(safe)
        return out
