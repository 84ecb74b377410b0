import asyncio
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import pytest

from agentdesk.agent_config import AgentDefinition, AgentRegistry, AgentType
from agentdesk.llm.base_llm import BaseLLM, ChunkCallback, LLMResponse, emit_chunk
from agentdesk.models import TokenUsage
from agentdesk.tools.base import BaseToolExecutor, ToolExecutionResult

DEFAULT_USAGE = TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15, cost=0.001)

# A queued response is either the full completion text or the list of chunks to stream
QueuedResponse = Union[str, Sequence[str]]


def respond(text: str, reasoning: str = "ready to answer") -> str:
    return f"ACTION: respond\nRESPONSE: {text}\nREASONING: {reasoning}"


def think(reasoning: str) -> str:
    return f"ACTION: think\nREASONING: {reasoning}"


def use_tool(tool: str, parameters: str = "{}", reasoning: str = "need a tool") -> str:
    return f"ACTION: use_tool\nTOOL: {tool}\nPARAMETERS: {parameters}\nREASONING: {reasoning}"


class DummyLLM(BaseLLM):
    def __init__(
        self,
        *,
        text_queue: List[QueuedResponse] | None = None,
        usage: TokenUsage = DEFAULT_USAGE,
        hang: bool = False,
        chunk_size: int = 4,
    ):
        # Intentionally do not call super().__init__ to avoid model env requirement
        self.model = "dummy-model"
        self.temperature = None
        self.max_tokens = None
        self.text_queue = list(text_queue or [])
        self.usage = usage
        self.hang = hang
        self.chunk_size = chunk_size
        self.calls: List[Dict[str, Any]] = []

    def _next(self) -> QueuedResponse:
        if not self.text_queue:
            return ""
        return self.text_queue.pop(0)

    async def _maybe_hang(self) -> None:
        if self.hang:
            await asyncio.Event().wait()

    async def completion(self, messages: List[Dict[str, str]], **kwargs) -> LLMResponse:  # type: ignore[override]
        self.calls.append({"messages": messages, "kwargs": kwargs, "stream": False})
        await self._maybe_hang()
        item = self._next()
        text = item if isinstance(item, str) else "".join(item)
        return LLMResponse(content=text, usage=self.usage, model=self.model)

    async def stream_completion(  # type: ignore[override]
        self, messages: List[Dict[str, str]], on_chunk: Optional[ChunkCallback] = None, **kwargs
    ) -> LLMResponse:
        self.calls.append({"messages": messages, "kwargs": kwargs, "stream": True})
        await self._maybe_hang()
        item = self._next()
        if isinstance(item, str):
            chunks = [item[i: i + self.chunk_size] for i in range(0, len(item), self.chunk_size)]
        else:
            chunks = list(item)
        for chunk in chunks:
            await emit_chunk(on_chunk, chunk)
        return LLMResponse(content="".join(chunks).strip(), usage=self.usage, model=self.model)


class DummyTools(BaseToolExecutor):
    """Test helper: returns canned results per tool and records every call.

    - results maps a tool name to the value a successful call returns
    - failures maps a tool name to the error message of a failed call
    """

    def __init__(
        self,
        results: Dict[str, Any] | None = None,
        failures: Dict[str, str] | None = None,
        hang: bool = False,
    ):
        self.results = results or {}
        self.failures = failures or {}
        self.hang = hang
        self.calls: List[Dict[str, Any]] = []

    async def execute(  # type: ignore[override]
        self, tool_name: str, parameters: Dict[str, Any], config: Mapping[str, Any]
    ) -> ToolExecutionResult:
        self.calls.append({"tool_name": tool_name, "parameters": parameters, "config": dict(config)})
        if self.hang:
            await asyncio.Event().wait()
        if tool_name in self.failures:
            return ToolExecutionResult(success=False, tool_name=tool_name, execution_time_ms=3, error=self.failures[tool_name])
        result = self.results.get(tool_name, {"ok": True, "tool": tool_name, "params": parameters})
        return ToolExecutionResult(success=True, tool_name=tool_name, execution_time_ms=3, result=result)


def make_agent(agent_id: str = "support", *, type: AgentType = AgentType.CHATBOT, **overrides: Any) -> AgentDefinition:
    data: Dict[str, Any] = {
        "id": agent_id,
        "name": agent_id.title(),
        "organization_id": "org-1",
        "project_id": "proj-1",
        "type": type,
        "system_prompt": "You are a support assistant.",
        "tools": [{"name": "calculator"}, {"name": "request_human_handoff"}],
    }
    data.update(overrides)
    return AgentDefinition.model_validate(data)


@pytest.fixture
def dummy_llm() -> DummyLLM:
    return DummyLLM()


@pytest.fixture
def dummy_tools() -> DummyTools:
    return DummyTools()


@pytest.fixture
def registry() -> AgentRegistry:
    return AgentRegistry(
        [
            make_agent("support"),
            make_agent("worker", type=AgentType.TASK, tools=[{"name": "json_processor"}]),
        ]
    )
