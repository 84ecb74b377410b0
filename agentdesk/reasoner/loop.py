"""Bounded think / use-tool / respond loop over the textual action protocol."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from agentdesk.llm.base_llm import BaseLLM, ChunkCallback, LLMResponse, emit_chunk
from agentdesk.models import (
    ExecutionResult,
    HandoffInfo,
    RespondAction,
    ThinkAction,
    ThinkingStep,
    ThinkingStepKind,
    UseToolAction,
)
from agentdesk.reasoner.accumulator import IterationRecord, accumulate, flatten
from agentdesk.reasoner.exceptions import ActionParseError
from agentdesk.reasoner.protocol import IterationContext, decode_action, encode_prompt
from agentdesk.reasoner.streaming import StreamingResponseExtractor
from agentdesk.tools.base import BaseToolExecutor, ToolExecutionResult
from agentdesk.tools.config import HANDOFF_TOOL_NAME

from utils.logger import get_logger
from utils.observability import observe

logger = get_logger(__name__)

EXHAUSTED_TEXT = (
    "I apologize, but I wasn't able to complete your request within the allowed processing time. "
    "Please try rephrasing your request."
)
HANDOFF_ACK_TEXT = (
    "I understand this requires specialized assistance. Let me connect you with one of our team members "
    "who can better help you with this. Please wait a moment."
)
CANCELLED_TEXT = "The request was cancelled before a response could be completed."


class _RunCancelled(Exception):
    """Internal signal: the caller's cancel event fired."""


def _no_tool_config(tool_name: str) -> Dict[str, Any]:
    return {}


@dataclass
class LoopInput:
    """One agent run: prompt material plus how to configure each tool call."""

    system_prompt: str
    tools: Sequence[Any] = field(default_factory=tuple)
    tool_config_for: Callable[[str], Dict[str, Any]] = _no_tool_config
    conversation_history: Sequence[Mapping[str, Any]] = field(default_factory=tuple)
    task_input: Any = None
    model_params: Dict[str, Any] = field(default_factory=dict)
    analyze_reasoning: str = "Analyzing user input and determining response strategy"


class ReasoningLoop:
    """Turns model completions into tool calls until the model answers or the budget runs out.

    The loop never touches conversation storage. A successful handoff tool call
    ends the run early with ``ExecutionResult.handoff_info`` set and leaves the
    state transition to the caller.
    """

    DEFAULT_MAX_ITERATIONS = 5

    def __init__(self, *, llm: BaseLLM, tools: BaseToolExecutor, max_iterations: int = DEFAULT_MAX_ITERATIONS):
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.llm = llm
        self.tools = tools
        self.max_iterations = max_iterations

    @observe
    async def run(
        self,
        request: LoopInput,
        *,
        on_chunk: Optional[ChunkCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
        max_iterations: Optional[int] = None,
    ) -> ExecutionResult:
        """Run the loop. Passing ``on_chunk`` streams the visible answer while it is generated.

        Model transport failures propagate as ModelCallError. Cancellation via
        ``cancel_event`` returns a partial result with ``cancelled=True``.
        """
        if max_iterations is not None and max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        budget = self.max_iterations if max_iterations is None else max_iterations
        records: List[IterationRecord] = [
            IterationRecord(
                iteration=0,
                thinking_steps=[ThinkingStep(ThinkingStepKind.ANALYZE_INPUT, request.analyze_reasoning)],
            )
        ]
        logger.info("reasoning_started", max_iterations=budget, streaming=on_chunk is not None, tools=len(request.tools))

        try:
            for iteration in range(1, budget + 1):
                self._check_cancelled(cancel_event)
                record = IterationRecord(iteration=iteration)
                records.append(record)

                steps, trace = flatten(records)
                prompt = encode_prompt(
                    request.tools,
                    IterationContext(
                        iteration=iteration,
                        thinking_steps=steps,
                        tool_trace=trace,
                        conversation_history=request.conversation_history,
                        task_input=request.task_input,
                    ),
                )
                response = await self._call_model(prompt, request, on_chunk, cancel_event)
                record.usage = response.usage

                try:
                    action = decode_action(response.content)
                except ActionParseError:
                    action = ThinkAction(reasoning=response.content)

                if isinstance(action, RespondAction):
                    record.thinking_steps.append(
                        ThinkingStep(ThinkingStepKind.FINAL_RESPONSE, "Determined sufficient information to respond to user")
                    )
                    logger.info("reasoning_complete", reason="respond", iterations=iteration)
                    return accumulate(records, action.response_text)

                if isinstance(action, ThinkAction):
                    record.thinking_steps.append(ThinkingStep(ThinkingStepKind.CONTINUE_REASONING, action.reasoning))
                    logger.info("thought_generated", iteration=iteration, thought=_preview(action.reasoning))
                    continue

                handoff = await self._use_tool(action, record, request, cancel_event)
                if handoff is not None:
                    logger.info("reasoning_complete", reason="handoff", iterations=iteration, urgency=handoff.urgency)
                    return accumulate(records, HANDOFF_ACK_TEXT, handoff_info=handoff)

        except _RunCancelled:
            records[-1].thinking_steps.append(
                ThinkingStep(ThinkingStepKind.CANCELLED, "Execution cancelled by the caller")
            )
            logger.warning("reasoning_cancelled", iterations=len(records) - 1)
            return accumulate(records, CANCELLED_TEXT, cancelled=True)

        records[-1].thinking_steps.append(
            ThinkingStep(ThinkingStepKind.MAX_ITERATIONS_REACHED, f"Reached the limit of {budget} iterations")
        )
        logger.warning("max_iterations_reached", max_iterations=budget)
        return accumulate(records, EXHAUSTED_TEXT)

    async def _use_tool(
        self,
        action: UseToolAction,
        record: IterationRecord,
        request: LoopInput,
        cancel_event: Optional[asyncio.Event],
    ) -> Optional[HandoffInfo]:
        record.thinking_steps.append(
            ThinkingStep(ThinkingStepKind.TOOL_EXECUTION, f"Decided to use tool: {action.tool_name}")
        )
        self._check_cancelled(cancel_event)
        result: ToolExecutionResult = await self._until_cancelled(
            self.tools.execute(action.tool_name, action.parameters, request.tool_config_for(action.tool_name)),
            cancel_event,
        )
        record.tool_trace.append(result.to_trace_entry(action.parameters))

        if not result.success:
            record.thinking_steps.append(
                ThinkingStep(ThinkingStepKind.TOOL_FAILED, f"Tool {action.tool_name} failed: {result.error}")
            )
            return None

        if action.tool_name != HANDOFF_TOOL_NAME:
            return None

        details = result.result if isinstance(result.result, dict) else {}
        handoff = HandoffInfo(
            reason=details.get("reason") or action.parameters.get("reason") or "unspecified",
            urgency=details.get("urgency") or action.parameters.get("urgency") or "medium",
            context_summary=details.get("context_summary") or action.parameters.get("context_summary"),
        )
        record.thinking_steps.append(
            ThinkingStep(ThinkingStepKind.HUMAN_HANDOFF_REQUESTED, f"Requested human handoff: {handoff.reason}")
        )
        return handoff

    async def _call_model(
        self,
        prompt: str,
        request: LoopInput,
        on_chunk: Optional[ChunkCallback],
        cancel_event: Optional[asyncio.Event],
    ) -> LLMResponse:
        if on_chunk is None:
            return await self._until_cancelled(
                self.llm.prompt(prompt, system_prompt=request.system_prompt, **request.model_params), cancel_event
            )

        extractor = StreamingResponseExtractor()

        async def _forward(piece: str) -> None:
            await emit_chunk(on_chunk, extractor.feed(piece))

        response = await self._until_cancelled(
            self.llm.prompt_stream(prompt, _forward, system_prompt=request.system_prompt, **request.model_params),
            cancel_event,
        )
        await emit_chunk(on_chunk, extractor.finish())
        return response

    @staticmethod
    def _check_cancelled(cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise _RunCancelled()

    @staticmethod
    async def _until_cancelled(awaitable: Awaitable[Any], cancel_event: Optional[asyncio.Event]) -> Any:
        """Await ``awaitable`` unless ``cancel_event`` fires first, in which case it is cancelled."""
        if cancel_event is None:
            return await awaitable
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()
        if work.done():
            return work.result()
        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        raise _RunCancelled()


def _preview(text: str, limit: int = 200) -> str:
    return text if len(text) <= limit else text[:limit] + "..."
