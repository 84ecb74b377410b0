import asyncio

import pytest

from agentdesk.models import ThinkingStepKind, TokenUsage
from agentdesk.reasoner.exceptions import ModelCallError
from agentdesk.reasoner.loop import CANCELLED_TEXT, EXHAUSTED_TEXT, HANDOFF_ACK_TEXT, LoopInput, ReasoningLoop
from agentdesk.tools.config import CalculatorToolConfig, HandoffToolConfig
from agentdesk.tools.registry import ToolRegistry

from tests.conftest import DEFAULT_USAGE, DummyLLM, DummyTools, respond, think, use_tool


def _request(**overrides):
    data = dict(
        system_prompt="You are helpful.",
        tools=[CalculatorToolConfig(name="calculator"), HandoffToolConfig()],
        conversation_history=[{"role": "user", "content": "hello"}],
    )
    data.update(overrides)
    return LoopInput(**data)


def _kinds(result):
    return [s.kind for s in result.thinking_steps]


def test_immediate_respond():
    llm = DummyLLM(text_queue=[respond("Hi! How can I help?")])
    loop = ReasoningLoop(llm=llm, tools=DummyTools())

    result = asyncio.run(loop.run(_request()))

    assert result.final_text == "Hi! How can I help?"
    assert result.iterations_used == 1
    assert _kinds(result) == [ThinkingStepKind.ANALYZE_INPUT, ThinkingStepKind.FINAL_RESPONSE]
    assert result.token_usage == DEFAULT_USAGE
    assert len(llm.calls) == 1
    assert llm.calls[0]["messages"][0] == {"role": "system", "content": "You are helpful."}
    assert "user: hello" in llm.calls[0]["messages"][1]["content"]


def test_think_until_budget_exhausted():
    llm = DummyLLM(text_queue=[think("a"), think("b"), think("c")])
    loop = ReasoningLoop(llm=llm, tools=DummyTools(), max_iterations=3)

    result = asyncio.run(loop.run(_request()))

    assert result.final_text == EXHAUSTED_TEXT
    assert result.iterations_used == 3
    assert len(llm.calls) == 3
    assert _kinds(result) == [
        ThinkingStepKind.ANALYZE_INPUT,
        ThinkingStepKind.CONTINUE_REASONING,
        ThinkingStepKind.CONTINUE_REASONING,
        ThinkingStepKind.CONTINUE_REASONING,
        ThinkingStepKind.MAX_ITERATIONS_REACHED,
    ]
    assert result.token_usage.total_tokens == 3 * DEFAULT_USAGE.total_tokens


def test_per_call_budget_overrides_default():
    llm = DummyLLM(text_queue=[think("a"), think("b")])
    loop = ReasoningLoop(llm=llm, tools=DummyTools(), max_iterations=5)

    result = asyncio.run(loop.run(_request(), max_iterations=1))

    assert result.final_text == EXHAUSTED_TEXT
    assert len(llm.calls) == 1


def test_tool_result_is_fed_into_next_prompt():
    llm = DummyLLM(text_queue=[use_tool("calculator", '{"expression": "2+2"}'), respond("It is 4.")])
    tools = DummyTools(results={"calculator": {"result": 4}})
    loop = ReasoningLoop(llm=llm, tools=tools)

    result = asyncio.run(loop.run(_request(tool_config_for=lambda name: {"tool": name})))

    assert result.final_text == "It is 4."
    assert result.iterations_used == 2
    assert tools.calls == [{"tool_name": "calculator", "parameters": {"expression": "2+2"}, "config": {"tool": "calculator"}}]
    assert len(result.tool_trace) == 1
    assert result.tool_trace[0].success
    second_prompt = llm.calls[1]["messages"][1]["content"]
    assert '- calculator: SUCCESS - {"result": 4}' in second_prompt
    assert "tool_execution: Decided to use tool: calculator" in second_prompt


def test_tool_failure_then_respond():
    llm = DummyLLM(text_queue=[use_tool("calculator", '{"expression": "1/0"}'), respond("I could not compute that.")])
    tools = DummyTools(failures={"calculator": "Division by zero"})
    loop = ReasoningLoop(llm=llm, tools=tools)

    result = asyncio.run(loop.run(_request()))

    assert result.final_text == "I could not compute that."
    assert not result.tool_trace[0].success
    assert _kinds(result) == [
        ThinkingStepKind.ANALYZE_INPUT,
        ThinkingStepKind.TOOL_EXECUTION,
        ThinkingStepKind.TOOL_FAILED,
        ThinkingStepKind.FINAL_RESPONSE,
    ]
    assert "- calculator: FAILED - Division by zero" in llm.calls[1]["messages"][1]["content"]


def test_handoff_ends_the_run_early():
    llm = DummyLLM(
        text_queue=[
            use_tool("request_human_handoff", '{"reason": "refund request", "urgency": "high"}'),
            respond("should never be used"),
        ]
    )
    loop = ReasoningLoop(llm=llm, tools=ToolRegistry())

    result = asyncio.run(loop.run(_request()))

    assert result.final_text == HANDOFF_ACK_TEXT
    assert result.iterations_used == 1
    assert len(llm.calls) == 1
    assert result.handoff_requested
    assert result.handoff_info.reason == "refund request"
    assert result.handoff_info.urgency == "high"
    assert _kinds(result)[-1] is ThinkingStepKind.HUMAN_HANDOFF_REQUESTED


def test_failed_handoff_does_not_end_the_run():
    llm = DummyLLM(text_queue=[use_tool("request_human_handoff", "{}"), respond("Let me try to help myself.")])
    loop = ReasoningLoop(llm=llm, tools=ToolRegistry())

    result = asyncio.run(loop.run(_request()))

    assert result.final_text == "Let me try to help myself."
    assert not result.handoff_requested
    assert "Reason parameter is required" in result.tool_trace[0].outcome.error_message


def test_unparseable_output_becomes_a_thought():
    llm = DummyLLM(text_queue=["I am not following the format", respond("ok")])
    loop = ReasoningLoop(llm=llm, tools=DummyTools())

    result = asyncio.run(loop.run(_request()))

    assert result.final_text == "ok"
    assert result.thinking_steps[1].kind is ThinkingStepKind.CONTINUE_REASONING
    assert result.thinking_steps[1].reasoning == "I am not following the format"


def test_token_usage_sums_across_calls():
    llm = DummyLLM(text_queue=[think("x"), respond("y")], usage=TokenUsage(100, 20, 120, 0.002))
    loop = ReasoningLoop(llm=llm, tools=DummyTools())

    result = asyncio.run(loop.run(_request()))

    assert result.token_usage == TokenUsage(200, 40, 240, 0.004)


def test_model_params_are_passed_to_the_llm():
    llm = DummyLLM(text_queue=[respond("ok")])
    loop = ReasoningLoop(llm=llm, tools=DummyTools())

    asyncio.run(loop.run(_request(model_params={"temperature": 0.2, "model": "gpt-4o"})))

    assert llm.calls[0]["kwargs"] == {"temperature": 0.2, "model": "gpt-4o"}


def test_model_errors_propagate():
    class FailingLLM(DummyLLM):
        async def completion(self, messages, **kwargs):  # type: ignore[override]
            raise ModelCallError("provider down", model="dummy-model")

    loop = ReasoningLoop(llm=FailingLLM(), tools=DummyTools())

    with pytest.raises(ModelCallError):
        asyncio.run(loop.run(_request()))


def test_max_iterations_must_be_positive():
    with pytest.raises(ValueError):
        ReasoningLoop(llm=DummyLLM(), tools=DummyTools(), max_iterations=0)


@pytest.mark.parametrize("override", [0, -1])
def test_per_call_budget_must_be_positive(override):
    llm = DummyLLM(text_queue=[respond("hi")])
    loop = ReasoningLoop(llm=llm, tools=DummyTools())

    with pytest.raises(ValueError):
        asyncio.run(loop.run(_request(), max_iterations=override))
    assert llm.calls == []


# ----------------------------- Streaming --------------------------------


def test_streaming_emits_only_the_response_body():
    llm = DummyLLM(
        text_queue=[
            use_tool("calculator", '{"expression": "6*7"}'),
            ["ACTION: respond\nRESP", "ONSE: The answer is 42", "\nREAS", "ONING: multiplied"],
        ]
    )
    chunks = []
    loop = ReasoningLoop(llm=llm, tools=DummyTools(results={"calculator": {"result": 42}}))

    result = asyncio.run(loop.run(_request(), on_chunk=chunks.append))

    assert "".join(chunks) == "The answer is 42"
    assert result.final_text == "The answer is 42"
    assert all(call["stream"] for call in llm.calls)


def test_streaming_with_async_sink():
    llm = DummyLLM(text_queue=[respond("streamed reply", reasoning="because")], chunk_size=3)
    received = []

    async def sink(text):
        received.append(text)

    loop = ReasoningLoop(llm=llm, tools=DummyTools())
    result = asyncio.run(loop.run(_request(), on_chunk=sink))

    assert "".join(received) == "streamed reply"
    assert "because" not in "".join(received)
    assert result.final_text == "streamed reply"


# ----------------------------- Cancellation -----------------------------


def test_cancel_before_start_returns_partial_result():
    llm = DummyLLM(text_queue=[respond("never")])
    loop = ReasoningLoop(llm=llm, tools=DummyTools())

    async def _go():
        event = asyncio.Event()
        event.set()
        return await loop.run(_request(), cancel_event=event)

    result = asyncio.run(_go())

    assert result.cancelled
    assert result.final_text == CANCELLED_TEXT
    assert llm.calls == []
    assert _kinds(result)[-1] is ThinkingStepKind.CANCELLED


def test_cancel_during_model_call():
    llm = DummyLLM(hang=True)
    loop = ReasoningLoop(llm=llm, tools=DummyTools())

    async def _go():
        event = asyncio.Event()
        task = asyncio.create_task(loop.run(_request(), cancel_event=event))
        await asyncio.sleep(0.01)
        event.set()
        return await asyncio.wait_for(task, timeout=1)

    result = asyncio.run(_go())

    assert result.cancelled
    assert result.iterations_used == 1
    assert len(llm.calls) == 1


def test_cancel_during_tool_call_keeps_earlier_usage():
    llm = DummyLLM(text_queue=[use_tool("calculator", '{"expression": "1+1"}')])
    tools = DummyTools(hang=True)
    loop = ReasoningLoop(llm=llm, tools=tools)

    async def _go():
        event = asyncio.Event()
        task = asyncio.create_task(loop.run(_request(), cancel_event=event))
        await asyncio.sleep(0.01)
        event.set()
        return await asyncio.wait_for(task, timeout=1)

    result = asyncio.run(_go())

    assert result.cancelled
    assert result.token_usage == DEFAULT_USAGE
    assert result.tool_trace == []
    assert len(tools.calls) == 1
