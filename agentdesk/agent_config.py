"""Agent definitions and the registry the orchestration layer resolves them from."""
from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from agentdesk.exceptions import AgentInactiveError, AgentNotFoundError, AgentTypeError
from agentdesk.tools.config import ToolConfig

from utils.logger import get_logger, trace_method

logger = get_logger(__name__)

__all__ = ["AgentType", "LLMSettings", "AgentDefinition", "AgentRegistry", "load_agent_definitions"]


class AgentType(str, Enum):
    CHATBOT = "chatbot"
    TASK = "task"


class LLMSettings(BaseModel):
    """Model selection and sampling parameters for one agent."""

    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    parameters: Dict[str, Any] = Field(default_factory=dict)

    def model_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = dict(self.parameters)
        for key in ("model", "temperature", "max_tokens"):
            value = getattr(self, key)
            if value is not None:
                params[key] = value
        return params


class AgentDefinition(BaseModel):
    id: str
    name: str
    organization_id: str
    project_id: str
    type: AgentType = AgentType.CHATBOT
    description: str = ""
    system_prompt: str = "You are a helpful assistant."
    llm_settings: LLMSettings = Field(default_factory=LLMSettings)
    tools: List[ToolConfig] = Field(default_factory=list)
    max_iterations: Optional[int] = Field(default=None, ge=1)
    is_active: bool = True

    @field_validator("tools")
    @classmethod
    def _unique_tool_names(cls, tools: List[Any]) -> List[Any]:
        seen = set()
        for tool in tools:
            if tool.name in seen:
                raise ValueError(f"Tool '{tool.name}' is configured more than once")
            seen.add(tool.name)
        return tools

    def tool(self, name: str) -> Optional[Any]:
        return next((t for t in self.tools if t.name == name), None)

    def tool_execution_config(self, tool_name: str, *, conversation_id: Optional[str] = None) -> Dict[str, Any]:
        """Configuration handed to the tool adapter for one call of ``tool_name``."""
        tool = self.tool(tool_name)
        if tool is None:
            return {"organization_id": self.organization_id, "project_id": self.project_id}
        return tool.to_execution_config(
            organization_id=self.organization_id,
            project_id=self.project_id,
            conversation_id=conversation_id,
            agent_id=self.id,
        )


class AgentRegistry:
    """In-process lookup of agent definitions by id."""

    def __init__(self, agents: Iterable[AgentDefinition] = ()):
        self._agents: Dict[str, AgentDefinition] = {}
        for agent in agents:
            self.register(agent)

    @classmethod
    def from_file(cls, path: str | Path) -> "AgentRegistry":
        return cls(load_agent_definitions(path))

    @trace_method
    def register(self, agent: AgentDefinition) -> None:
        if agent.id in self._agents:
            logger.warning("agent_replaced", agent_id=agent.id)
        self._agents[agent.id] = agent

    def get(self, agent_id: str, *, expected_type: Optional[AgentType] = None) -> AgentDefinition:
        """Return an active agent, optionally checking its type.

        Raises:
            AgentNotFoundError, AgentInactiveError, AgentTypeError
        """
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)
        if not agent.is_active:
            raise AgentInactiveError(agent_id)
        if expected_type is not None and agent.type is not expected_type:
            raise AgentTypeError(agent_id, expected=expected_type.value, actual=agent.type.value)
        return agent

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def __iter__(self) -> Iterator[AgentDefinition]:
        return iter(self._agents.values())

    def __len__(self) -> int:
        return len(self._agents)


def load_agent_definitions(path: str | Path) -> List[AgentDefinition]:
    """Load agent definitions from a YAML or JSON file.

    The file holds either a list of agents or a mapping with an ``agents`` list.
    """
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"Agent definition file not found: {p}")

    text = p.read_text(encoding="utf-8")
    try:
        data = json.loads(text) if p.suffix.lower() == ".json" else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ValueError(f"Could not parse agent definitions in {p}: {e}") from e

    if isinstance(data, dict):
        data = data.get("agents")
    if not isinstance(data, list):
        raise ValueError(f"Agent definitions in {p} must be a list or a mapping with an 'agents' list")

    try:
        agents = [AgentDefinition.model_validate(item) for item in data]
    except ValidationError as e:
        raise ValueError(f"Invalid agent definition in {p}: {e}") from e
    logger.info("agent_definitions_loaded", path=str(p), count=len(agents))
    return agents
