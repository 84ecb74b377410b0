"""Per-tool configuration variants, validated when an agent definition is loaded."""
from __future__ import annotations

from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, field_validator

__all__ = [
    "HANDOFF_TOOL_NAME",
    "ApiEndpoint",
    "HandoffToolConfig",
    "ApiCallerToolConfig",
    "CalculatorToolConfig",
    "CurrentTimeToolConfig",
    "JsonProcessorToolConfig",
    "GenericToolConfig",
    "ToolConfig",
]

HANDOFF_TOOL_NAME = "request_human_handoff"


class _ToolConfigBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    description: str = ""

    def settings(self) -> Dict[str, Any]:
        """Handler-facing settings: every field except identity and prompt text."""
        return self.model_dump(exclude={"name", "description"})

    def to_execution_config(
        self,
        *,
        organization_id: str,
        project_id: str,
        conversation_id: Optional[str] = None,
        agent_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return {**self.settings(), "organization_id": organization_id, "project_id": project_id}


class HandoffToolConfig(_ToolConfigBase):
    name: Literal["request_human_handoff"] = HANDOFF_TOOL_NAME
    description: str = (
        "Transfer the conversation to a human operator when you cannot resolve the request "
        'or the user asks for a person. Parameters: {"reason": string, "urgency": "low|medium|high|urgent", '
        '"context_summary": string}'
    )

    def to_execution_config(
        self,
        *,
        organization_id: str,
        project_id: str,
        conversation_id: Optional[str] = None,
        agent_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        config = super().to_execution_config(organization_id=organization_id, project_id=project_id)
        config["conversation_id"] = conversation_id
        config["agent_id"] = agent_id
        return config


class ApiEndpoint(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: str
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "GET"
    description: str = ""

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class ApiCallerToolConfig(_ToolConfigBase):
    name: Literal["api_caller"] = "api_caller"
    description: str = "Call one of the configured HTTP endpoints."
    base_url: Optional[str] = None
    endpoints: Dict[str, ApiEndpoint] = Field(default_factory=dict)
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float = 30.0

    @field_validator("endpoints")
    @classmethod
    def _require_endpoints(cls, value: Dict[str, ApiEndpoint]) -> Dict[str, ApiEndpoint]:
        if not value:
            raise ValueError("api_caller needs at least one endpoint")
        return value


class CalculatorToolConfig(_ToolConfigBase):
    name: Literal["calculator"] = "calculator"
    description: str = 'Evaluate an arithmetic expression. Parameters: {"expression": string}'


class CurrentTimeToolConfig(_ToolConfigBase):
    name: Literal["current_time"] = "current_time"
    description: str = (
        'Get the current date and time. Parameters: {"timezone": string (default UTC), '
        '"format": "iso|unix|human"}'
    )
    default_timezone: str = "UTC"


class JsonProcessorToolConfig(_ToolConfigBase):
    name: Literal["json_processor"] = "json_processor"
    description: str = (
        'Parse, stringify, validate or extract from JSON data. Parameters: {"data": any, '
        '"operation": "parse|stringify|extract|validate", "path": "dot.separated.path"}'
    )


class GenericToolConfig(_ToolConfigBase):
    """Any tool without a dedicated variant; its options are passed through untouched."""

    options: Dict[str, Any] = Field(default_factory=dict)

    def settings(self) -> Dict[str, Any]:
        return dict(self.options)


_KNOWN_TOOLS = {"request_human_handoff", "api_caller", "calculator", "current_time", "json_processor"}


def _tool_kind(value: Any) -> str:
    name = value.get("name") if isinstance(value, dict) else getattr(value, "name", None)
    return name if name in _KNOWN_TOOLS else "generic"


ToolConfig = Annotated[
    Union[
        Annotated[HandoffToolConfig, Tag("request_human_handoff")],
        Annotated[ApiCallerToolConfig, Tag("api_caller")],
        Annotated[CalculatorToolConfig, Tag("calculator")],
        Annotated[CurrentTimeToolConfig, Tag("current_time")],
        Annotated[JsonProcessorToolConfig, Tag("json_processor")],
        Annotated[GenericToolConfig, Tag("generic")],
    ],
    Discriminator(_tool_kind),
]
