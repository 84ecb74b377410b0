"""Merge per-iteration usage and trace into one ExecutionResult."""
from __future__ import annotations

from dataclasses import dataclass, field
from functools import reduce
from operator import add
from typing import Iterable, List, Optional, Sequence, Tuple

from agentdesk.models import ExecutionResult, HandoffInfo, ThinkingStep, TokenUsage, ToolTraceEntry


@dataclass
class IterationRecord:
    """What happened during one loop pass. Iteration 0 holds steps recorded before the first pass."""

    iteration: int
    usage: TokenUsage = field(default_factory=TokenUsage)
    thinking_steps: List[ThinkingStep] = field(default_factory=list)
    tool_trace: List[ToolTraceEntry] = field(default_factory=list)


def sum_usage(usages: Iterable[TokenUsage]) -> TokenUsage:
    return reduce(add, usages, TokenUsage())


def flatten(records: Sequence[IterationRecord]) -> Tuple[List[ThinkingStep], List[ToolTraceEntry]]:
    ordered = sorted(records, key=lambda r: r.iteration)
    steps = [step for record in ordered for step in record.thinking_steps]
    trace = [entry for record in ordered for entry in record.tool_trace]
    return steps, trace


def accumulate(
    records: Sequence[IterationRecord],
    final_text: str,
    *,
    handoff_info: Optional[HandoffInfo] = None,
    cancelled: bool = False,
) -> ExecutionResult:
    """Build the terminal ExecutionResult from the recorded iterations.

    Raises:
        ValueError: if ``final_text`` is empty.
    """
    if not final_text:
        raise ValueError("An execution result needs a non-empty final text")
    steps, trace = flatten(records)
    return ExecutionResult(
        final_text=final_text,
        thinking_steps=steps,
        tool_trace=trace,
        token_usage=sum_usage(r.usage for r in records),
        iterations_used=sum(1 for r in records if r.iteration > 0),
        handoff_info=handoff_info,
        cancelled=cancelled,
    )
