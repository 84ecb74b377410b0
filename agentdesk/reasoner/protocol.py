"""Textual action protocol spoken between the reasoning loop and the model.

The model answers every prompt with a block of ``FIELD: value`` lines::

    ACTION: use_tool
    TOOL: calculator
    PARAMETERS: {"expression": "2 + 2"}
    REASONING: I need to add the numbers

``encode_prompt`` renders the instructions and the iteration context;
``decode_action`` turns a completion back into an :data:`Action`.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from agentdesk.models import (
    Action,
    RespondAction,
    ThinkAction,
    ThinkingStep,
    ToolSuccess,
    ToolTraceEntry,
    UseToolAction,
)
from agentdesk.reasoner.exceptions import ActionParseError
from agentdesk.reasoner.prompts import load_prompts

from utils.logger import get_logger

logger = get_logger(__name__)

# ----------------------------- Markers ---------------------------------

ACTION_MARKER = "ACTION:"
TOOL_MARKER = "TOOL:"
PARAMETERS_MARKER = "PARAMETERS:"
RESPONSE_MARKER = "RESPONSE:"
REASONING_MARKER = "REASONING:"

FIELD_MARKERS = (ACTION_MARKER, TOOL_MARKER, PARAMETERS_MARKER, RESPONSE_MARKER, REASONING_MARKER)

ACTION_USE_TOOL = "use_tool"
ACTION_RESPOND = "respond"
ACTION_THINK = "think"

_SINGLE_LINE_FIELDS = (ACTION_MARKER, TOOL_MARKER, REASONING_MARKER)

# A RESPONSE block ends at the next line that opens with another field marker.
_RESPONSE_END = re.compile(
    r"\n\s*(?:" + "|".join(re.escape(m) for m in (ACTION_MARKER, TOOL_MARKER, PARAMETERS_MARKER, REASONING_MARKER)) + ")"
)

_PROMPT_KEYS = ("chat", "task", "response_formats")


# ----------------------------- Encoding --------------------------------


@dataclass
class IterationContext:
    """Everything the model sees about the run so far.

    Exactly one of ``conversation_history`` (chatbot agents) or ``task_input``
    (task agents) drives the prompt template.
    """

    iteration: int
    thinking_steps: Sequence[ThinkingStep] = field(default_factory=tuple)
    tool_trace: Sequence[ToolTraceEntry] = field(default_factory=tuple)
    conversation_history: Sequence[Mapping[str, Any]] = field(default_factory=tuple)
    task_input: Any = None


def to_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def describe_tool(tool: Any) -> str:
    """``- name: description`` plus the endpoint list for tools that declare endpoints."""
    line = f"- {tool.name}: {tool.description}"
    endpoints = getattr(tool, "endpoints", None)
    if endpoints:
        line += f"\n  Available endpoints: {', '.join(endpoints)}"
    return line


def describe_tool_call(entry: ToolTraceEntry) -> str:
    if isinstance(entry.outcome, ToolSuccess):
        return f"- {entry.tool_name}: SUCCESS - {to_json(entry.outcome.result)}"
    return f"- {entry.tool_name}: FAILED - {entry.outcome.error_message}"


def response_formats() -> str:
    templates = load_prompts("reasoning", required_keys=_PROMPT_KEYS)
    return templates["response_formats"].format(
        ACTION=ACTION_MARKER,
        TOOL=TOOL_MARKER,
        PARAMETERS=PARAMETERS_MARKER,
        RESPONSE=RESPONSE_MARKER,
        REASONING=REASONING_MARKER,
    )


def encode_prompt(tools: Sequence[Any], context: IterationContext) -> str:
    """Render the prompt for one loop iteration.

    Deterministic: the same tools and context always give the same text.
    Timestamps are not rendered.
    """
    templates = load_prompts("reasoning", required_keys=_PROMPT_KEYS)
    sections = {
        "tools": "\n".join(describe_tool(t) for t in tools),
        "thinking": "\n".join(f"{s.kind.value}: {s.reasoning}" for s in context.thinking_steps),
        "tool_trace": "\n".join(describe_tool_call(t) for t in context.tool_trace),
        "iteration": context.iteration,
        "response_formats": response_formats(),
    }
    if context.task_input is not None:
        return templates["task"].format(task_input=to_json(context.task_input), **sections)

    history = "\n".join(f"{m['role']}: {m['content']}" for m in context.conversation_history)
    return templates["chat"].format(conversation_history=history, **sections)


def enhance_system_prompt(base_prompt: str, dynamic_context: Optional[Mapping[str, Any]] = None) -> str:
    """Append caller-supplied context to the agent's system prompt."""
    if not dynamic_context:
        return base_prompt
    lines = "\n".join(f"{key}: {to_json(value)}" for key, value in dynamic_context.items())
    return f"{base_prompt}\n\nAdditional Context:\n{lines}"


# ----------------------------- Decoding --------------------------------


def find_json_object(text: str, start: int = 0) -> Optional[Tuple[int, int]]:
    """Return ``(begin, end)`` of the first balanced ``{...}`` at or after ``start``.

    Braces inside JSON string literals (including escaped quotes) are ignored,
    so values may contain ``}`` or field-marker words. ``end`` is exclusive.
    Returns None when there is no opening brace or it is never closed.
    """
    begin = text.find("{", start)
    if begin == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(begin, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return begin, i + 1
    return None


def _single_line_fields(raw_text: str) -> Dict[str, str]:
    fields: Dict[str, str] = {}
    for line in raw_text.splitlines():
        stripped = line.strip()
        for marker in _SINGLE_LINE_FIELDS:
            if stripped.startswith(marker) and marker not in fields:
                fields[marker] = stripped[len(marker):].strip()
                break
    return fields


def _extract_response(raw_text: str) -> Optional[str]:
    idx = raw_text.find(RESPONSE_MARKER)
    if idx == -1:
        return None
    after = raw_text[idx + len(RESPONSE_MARKER):]
    match = _RESPONSE_END.search(after)
    return (after[: match.start()] if match else after).strip()


def _extract_parameters(raw_text: str) -> Dict[str, Any]:
    idx = raw_text.find(PARAMETERS_MARKER)
    if idx == -1:
        return {}
    span = find_json_object(raw_text, idx + len(PARAMETERS_MARKER))
    if span is None:
        logger.warning("parameters_unbalanced", text_preview=raw_text[idx: idx + 200])
        return {}
    candidate = raw_text[span[0]: span[1]]
    try:
        params = json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.warning("parameters_invalid_json", error=str(e), candidate_preview=candidate[:200])
        return {}
    return params if isinstance(params, dict) else {}


def decode_action(raw_text: str) -> Action:
    """Parse one model completion into an :data:`Action`.

    Raises:
        ActionParseError: no action verb was recognised, or the fields the
            verb needs (a tool name, a response body) are missing.
    """
    logger.debug("decoding_model_output", raw_text=raw_text)
    fields = _single_line_fields(raw_text)
    verb = fields.get(ACTION_MARKER, "").lower()
    reasoning = fields.get(REASONING_MARKER, "")

    if verb == ACTION_USE_TOOL:
        tool_name = fields.get(TOOL_MARKER, "")
        if not tool_name:
            raise ActionParseError("use_tool action without a tool name", raw_text)
        return UseToolAction(tool_name=tool_name, parameters=_extract_parameters(raw_text), reasoning=reasoning)

    if verb == ACTION_RESPOND:
        response = _extract_response(raw_text)
        if not response:
            raise ActionParseError("respond action without a response", raw_text)
        return RespondAction(response_text=response, reasoning=reasoning)

    if verb == ACTION_THINK:
        return ThinkAction(reasoning=reasoning or "Continuing analysis")

    raise ActionParseError(f"Unrecognised action: {verb!r}" if verb else "No action found in model output", raw_text)
