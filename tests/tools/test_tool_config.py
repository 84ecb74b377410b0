import pytest
from pydantic import TypeAdapter, ValidationError

from agentdesk.tools.config import (
    ApiCallerToolConfig,
    CalculatorToolConfig,
    CurrentTimeToolConfig,
    GenericToolConfig,
    HandoffToolConfig,
    ToolConfig,
)

adapter = TypeAdapter(ToolConfig)


@pytest.mark.parametrize(
    "data, expected_type",
    [
        ({"name": "calculator"}, CalculatorToolConfig),
        ({"name": "current_time", "default_timezone": "Asia/Tokyo"}, CurrentTimeToolConfig),
        ({"name": "request_human_handoff"}, HandoffToolConfig),
        ({"name": "api_caller", "endpoints": {"orders": {"path": "/orders"}}}, ApiCallerToolConfig),
        ({"name": "crm_lookup", "description": "Look up a customer", "options": {"region": "eu"}}, GenericToolConfig),
    ],
)
def test_variant_is_chosen_by_tool_name(data, expected_type):
    assert isinstance(adapter.validate_python(data), expected_type)


def test_known_variants_reject_unknown_fields():
    with pytest.raises(ValidationError):
        adapter.validate_python({"name": "calculator", "precision": 3})


def test_api_caller_needs_an_endpoint():
    with pytest.raises(ValidationError, match="at least one endpoint"):
        adapter.validate_python({"name": "api_caller", "endpoints": {}})


def test_api_endpoint_method_is_normalised():
    tool = adapter.validate_python(
        {"name": "api_caller", "base_url": "https://shop.example", "endpoints": {"refund": {"path": "/r", "method": "post"}}}
    )
    assert tool.endpoints["refund"].method == "POST"


def test_execution_config_carries_settings_and_scope():
    tool = CurrentTimeToolConfig(default_timezone="Asia/Tokyo")
    config = tool.to_execution_config(organization_id="org", project_id="proj", conversation_id="c-1")
    assert config == {"default_timezone": "Asia/Tokyo", "organization_id": "org", "project_id": "proj"}


def test_handoff_execution_config_includes_conversation():
    config = HandoffToolConfig().to_execution_config(
        organization_id="org", project_id="proj", conversation_id="c-1", agent_id="support"
    )
    assert config == {"organization_id": "org", "project_id": "proj", "conversation_id": "c-1", "agent_id": "support"}


def test_generic_tool_passes_options_through():
    tool = GenericToolConfig(name="crm_lookup", options={"region": "eu"})
    assert tool.to_execution_config(organization_id="o", project_id="p") == {
        "region": "eu",
        "organization_id": "o",
        "project_id": "p",
    }
