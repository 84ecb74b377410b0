"""Caller-facing entry points: run chatbot and task agents, and let operators take conversations over."""
from __future__ import annotations

import asyncio
import uuid
from functools import partial
from typing import Any, Dict, List, Mapping, Optional

from agentdesk.agent_config import AgentDefinition, AgentRegistry, AgentType
from agentdesk.conversation.exceptions import (
    ConversationNotFoundError,
    InvalidTransitionError,
    OperatorNotAssignedError,
)
from agentdesk.conversation.models import Conversation, Message, MessageRole
from agentdesk.conversation.state import GATE_MESSAGES, ConversationEvent, HandlerState, agent_may_respond
from agentdesk.conversation.store import ConversationStore, InMemoryConversationStore
from agentdesk.conversation.summarization import BaseSummarizer, summarize_if_needed
from agentdesk.llm.base_llm import BaseLLM, ChunkCallback, emit_chunk
from agentdesk.models import ExecutionResult
from agentdesk.reasoner.loop import LoopInput, ReasoningLoop
from agentdesk.reasoner.protocol import enhance_system_prompt
from agentdesk.tools.base import BaseToolExecutor
from agentdesk.tools.registry import ToolRegistry

from utils.config import Runtime
from utils.logger import get_logger
from utils.observability import observe

logger = get_logger(__name__)


class AgentService:
    """Orchestrates one inbound message or task through the conversation gate and the reasoning loop."""

    def __init__(
        self,
        *,
        registry: AgentRegistry,
        llm: BaseLLM,
        tools: Optional[BaseToolExecutor] = None,
        store: Optional[ConversationStore] = None,
        summarizer: Optional[BaseSummarizer] = None,
        runtime: Optional[Runtime] = None,
    ) -> None:
        self.registry = registry
        self.llm = llm
        self.tools = tools or ToolRegistry()
        self.runtime = runtime or Runtime()
        self.store = store or InMemoryConversationStore(
            summarize_after=self.runtime.summarization.messages_since_summary
        )
        self.summarizer = summarizer

    # ----------------------------- Chatbot agents ---------------------------

    @observe(root=True)
    async def execute_chatbot_agent(
        self,
        agent_id: str,
        message: str,
        user_id: str,
        *,
        conversation_id: Optional[str] = None,
        dynamic_context: Optional[Mapping[str, Any]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ExecutionResult:
        return await self._execute_chatbot(
            agent_id, message, user_id, conversation_id, dynamic_context, None, cancel_event
        )

    @observe(root=True)
    async def execute_chatbot_agent_stream(
        self,
        agent_id: str,
        message: str,
        user_id: str,
        on_chunk: ChunkCallback,
        *,
        conversation_id: Optional[str] = None,
        dynamic_context: Optional[Mapping[str, Any]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ExecutionResult:
        """Like :meth:`execute_chatbot_agent`, streaming the visible answer to ``on_chunk``.

        When nothing could be streamed live (gate notices, handoff
        acknowledgements, the exhaustion fallback) the final text is sent as a
        single chunk, so the sink always sees the answer.
        """
        streamed = []

        async def _tracking_sink(text: str) -> None:
            streamed.append(text)
            await emit_chunk(on_chunk, text)

        result = await self._execute_chatbot(
            agent_id, message, user_id, conversation_id, dynamic_context, _tracking_sink, cancel_event
        )
        if not streamed and not result.cancelled:
            await emit_chunk(on_chunk, result.final_text)
        return result

    async def _execute_chatbot(
        self,
        agent_id: str,
        message: str,
        user_id: str,
        conversation_id: Optional[str],
        dynamic_context: Optional[Mapping[str, Any]],
        on_chunk: Optional[ChunkCallback],
        cancel_event: Optional[asyncio.Event],
    ) -> ExecutionResult:
        if not message or not message.strip():
            raise ValueError("Message must be a non-empty string")
        if not user_id:
            raise ValueError("user_id is required")

        agent = self.registry.get(agent_id, expected_type=AgentType.CHATBOT)
        conversation_id = await self._resolve_conversation(agent, user_id, conversation_id)

        state = await self.store.append_message(conversation_id, Message(role=MessageRole.USER, content=message))
        if not agent_may_respond(state):
            logger.info("message_routed_to_operator", conversation_id=conversation_id, handler_state=state.value)
            return ExecutionResult(
                final_text=GATE_MESSAGES[state],
                conversation_id=conversation_id,
                status=state.value,
            )

        conversation = await self.store.get(conversation_id)
        history = [m.as_prompt_entry() for m in conversation.context_for_agent(self.runtime.context_max_tokens)]
        request = LoopInput(
            system_prompt=enhance_system_prompt(agent.system_prompt, dynamic_context),
            tools=agent.tools,
            tool_config_for=partial(agent.tool_execution_config, conversation_id=conversation_id),
            conversation_history=history,
            model_params=agent.llm_settings.model_params(),
        )
        result = await self._loop_for(agent).run(request, on_chunk=on_chunk, cancel_event=cancel_event)
        result.conversation_id = conversation_id

        if result.cancelled:
            result.status = "cancelled"
            return result

        if not await self._record_reply(agent, conversation_id, result):
            return result
        if result.handoff_requested:
            await self._request_handoff(conversation_id, result)
        if self.summarizer is not None:
            await summarize_if_needed(
                self.store,
                conversation_id,
                self.summarizer,
                messages_since_summary=self.runtime.summarization.messages_since_summary,
                min_messages_without_summary=self.runtime.summarization.min_messages_without_summary,
            )
        return result

    async def _resolve_conversation(self, agent: AgentDefinition, user_id: str, conversation_id: Optional[str]) -> str:
        if conversation_id is None:
            conversation = await self.store.create(agent.id, user_id)
            return conversation.id
        conversation = await self.store.get(conversation_id)
        if conversation.agent_id != agent.id:
            raise ConversationNotFoundError(conversation_id)
        return conversation.id

    async def _record_reply(self, agent: AgentDefinition, conversation_id: str, result: ExecutionResult) -> bool:
        """Store the reply unless an operator took over or the conversation ended while the loop ran."""
        reply = Message(
            role=MessageRole.ASSISTANT,
            content=result.final_text,
            thinking_steps=list(result.thinking_steps),
            tool_trace=list(result.tool_trace),
            token_usage=result.token_usage,
            agent_id=agent.id,
        )
        state = await self.store.append_message(conversation_id, reply, only_in=HandlerState.AGENT_CONTROLLED)
        if state is not HandlerState.AGENT_CONTROLLED:
            logger.warning("reply_dropped", conversation_id=conversation_id, handler_state=state.value)
            result.status = state.value
            return False
        return True

    async def _request_handoff(self, conversation_id: str, result: ExecutionResult) -> None:
        try:
            await self.store.transition(
                conversation_id, ConversationEvent.REQUEST_HANDOFF, handoff_info=result.handoff_info
            )
            result.status = HandlerState.HANDOFF_REQUESTED.value
        except InvalidTransitionError as e:
            # An operator took over or the conversation ended while the loop ran
            logger.warning("handoff_transition_skipped", conversation_id=conversation_id, state=e.state.value)

    # ----------------------------- Task agents ------------------------------

    @observe(root=True)
    async def execute_task_agent(
        self,
        agent_id: str,
        task_input: Any,
        *,
        user_id: Optional[str] = None,
        dynamic_context: Optional[Mapping[str, Any]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ExecutionResult:
        """Run a task agent on ``task_input``. There is no conversation and no handoff gate."""
        if task_input is None or task_input == "" or task_input == {}:
            raise ValueError("Task input must not be empty")

        agent = self.registry.get(agent_id, expected_type=AgentType.TASK)
        execution_id = str(uuid.uuid4())
        logger.info("task_execution_started", agent_id=agent.id, execution_id=execution_id, user_id=user_id)

        request = LoopInput(
            system_prompt=enhance_system_prompt(agent.system_prompt, dynamic_context),
            tools=agent.tools,
            tool_config_for=agent.tool_execution_config,
            task_input=task_input,
            model_params=agent.llm_settings.model_params(),
            analyze_reasoning="Analyzing task input and determining execution strategy",
        )
        result = await self._loop_for(agent).run(request, cancel_event=cancel_event)
        result.execution_id = execution_id
        result.status = "cancelled" if result.cancelled else "completed"
        logger.info("task_execution_finished", execution_id=execution_id, status=result.status)
        return result

    def _loop_for(self, agent: AgentDefinition) -> ReasoningLoop:
        return ReasoningLoop(
            llm=self.llm,
            tools=self.tools,
            max_iterations=agent.max_iterations or self.runtime.max_iterations,
        )

    # ----------------------------- Operator actions -------------------------

    async def takeover(self, conversation_id: str, operator_id: str, message: Optional[str] = None) -> Conversation:
        """Hand the conversation to ``operator_id``, optionally greeting the user.

        Raises:
            InvalidTransitionError: the conversation is already human controlled or has ended.
        """
        await self.store.transition(conversation_id, ConversationEvent.TAKEOVER, operator_id=operator_id)
        if message:
            await self.store.append_message(
                conversation_id, Message(role=MessageRole.HUMAN_OPERATOR, content=message, operator_id=operator_id)
            )
        return await self.store.get(conversation_id)

    async def send_operator_message(self, conversation_id: str, operator_id: str, message: str) -> Conversation:
        if not message or not message.strip():
            raise ValueError("Message must be a non-empty string")
        await self._require_assigned(conversation_id, operator_id)
        await self.store.append_message(
            conversation_id, Message(role=MessageRole.HUMAN_OPERATOR, content=message, operator_id=operator_id)
        )
        return await self.store.get(conversation_id)

    async def hand_back(self, conversation_id: str, operator_id: str) -> Conversation:
        await self._require_assigned(conversation_id, operator_id)
        await self.store.transition(conversation_id, ConversationEvent.HAND_BACK, operator_id=operator_id)
        return await self.store.get(conversation_id)

    async def end_conversation(self, conversation_id: str) -> Conversation:
        await self.store.transition(conversation_id, ConversationEvent.END)
        return await self.store.get(conversation_id)

    async def pending_handoffs(self, *, urgency: Optional[str] = None) -> List[Conversation]:
        return await self.store.list_by_state(HandlerState.HANDOFF_REQUESTED, urgency=urgency)

    async def _require_assigned(self, conversation_id: str, operator_id: str) -> None:
        conversation = await self.store.get(conversation_id)
        assigned = conversation.handoff_info.assigned_operator if conversation.handoff_info else None
        if conversation.handler_state is not HandlerState.HUMAN_CONTROLLED or assigned != operator_id:
            raise OperatorNotAssignedError(conversation_id, operator_id)

    def describe_agent(self, agent_id: str) -> Dict[str, Any]:
        agent = self.registry.get(agent_id)
        return {
            "id": agent.id,
            "name": agent.name,
            "type": agent.type.value,
            "tools": [t.name for t in agent.tools],
            "max_iterations": agent.max_iterations or self.runtime.max_iterations,
        }
