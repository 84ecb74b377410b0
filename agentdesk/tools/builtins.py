"""Built-in tool handlers available to every agent."""
from __future__ import annotations

import ast
import json
import operator
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from agentdesk.tools.config import HANDOFF_TOOL_NAME
from agentdesk.tools.exceptions import ToolExecutionError

from utils.logger import get_logger

logger = get_logger(__name__)

HANDOFF_URGENCIES = ("low", "medium", "high", "urgent")

_BINARY_OPS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY_OPS: Dict[type, Callable[[Any], Any]] = {ast.UAdd: operator.pos, ast.USub: operator.neg}
_MAX_EXPONENT = 100


def _evaluate(node: ast.AST) -> Any:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_evaluate(node.operand))
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left, right = _evaluate(node.left), _evaluate(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > _MAX_EXPONENT:
            raise ValueError(f"Exponent larger than {_MAX_EXPONENT}")
        return _BINARY_OPS[type(node.op)](left, right)
    raise ValueError(f"Unsupported element in expression: {type(node).__name__}")


async def calculator(parameters: Dict[str, Any], config: Mapping[str, Any]) -> Dict[str, Any]:
    expression = str(parameters.get("expression") or "").strip()
    if not expression:
        raise ToolExecutionError("Expression parameter is required for calculator", tool_name="calculator")
    try:
        result = _evaluate(ast.parse(expression, mode="eval"))
    except ZeroDivisionError:
        raise ToolExecutionError("Division by zero", tool_name="calculator")
    except (SyntaxError, ValueError, TypeError) as e:
        raise ToolExecutionError(f"Invalid mathematical expression: {e}", tool_name="calculator") from e
    return {"expression": expression, "result": result, "type": type(result).__name__}


async def current_time(parameters: Dict[str, Any], config: Mapping[str, Any]) -> Dict[str, Any]:
    tz_name = parameters.get("timezone") or config.get("default_timezone") or "UTC"
    fmt = parameters.get("format", "iso")
    try:
        tz = timezone.utc if tz_name.upper() == "UTC" else ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ToolExecutionError(f"Unknown timezone: {tz_name}", tool_name="current_time") from e

    now = datetime.now(tz)
    if fmt == "iso":
        formatted: Any = now.isoformat()
    elif fmt == "unix":
        formatted = int(now.timestamp())
    elif fmt == "human":
        formatted = now.strftime("%A, %B %d, %Y %I:%M:%S %p %Z")
    else:
        raise ToolExecutionError(f"Unsupported format: {fmt}", tool_name="current_time")

    return {
        "current_date": now.strftime("%Y-%m-%d"),
        "current_time": formatted,
        "timezone": tz_name,
        "format": fmt,
        "unix_timestamp": int(now.timestamp()),
        "year": now.year,
        "month": now.month,
        "day": now.day,
    }


def _extract_path(data: Any, path: str) -> Any:
    current = data
    for key in path.split("."):
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, list) and key.lstrip("-").isdigit():
            index = int(key)
            current = current[index] if -len(current) <= index < len(current) else None
        else:
            return None
    return current


async def json_processor(parameters: Dict[str, Any], config: Mapping[str, Any]) -> Dict[str, Any]:
    data = parameters.get("data")
    operation = parameters.get("operation", "parse")
    try:
        if operation == "parse":
            result = json.loads(data) if isinstance(data, str) else data
        elif operation == "stringify":
            result = json.dumps(data, indent=2, ensure_ascii=False)
        elif operation == "extract":
            path = parameters.get("path")
            if not path:
                raise ValueError("Path parameter required for extract operation")
            source = json.loads(data) if isinstance(data, str) else data
            result = _extract_path(source, path)
        elif operation == "validate":
            source = json.loads(data) if isinstance(data, str) else data
            result = {
                "valid": True,
                "type": "array" if isinstance(source, list) else type(source).__name__,
                "keys": list(source.keys()) if isinstance(source, dict) else None,
            }
        else:
            raise ValueError(f"Unsupported operation: {operation}")
    except (ValueError, TypeError) as e:
        raise ToolExecutionError(f"JSON processing error: {e}", tool_name="json_processor") from e
    return {"operation": operation, "result": result}


async def request_human_handoff(parameters: Dict[str, Any], config: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate a handoff request. The state transition itself happens in the orchestration layer."""
    reason = str(parameters.get("reason") or "").strip()
    if not reason:
        raise ToolExecutionError("Reason parameter is required for human handoff request", tool_name=HANDOFF_TOOL_NAME)
    urgency = str(parameters.get("urgency") or "medium").lower()
    if urgency not in HANDOFF_URGENCIES:
        raise ToolExecutionError(
            f"Urgency must be one of {', '.join(HANDOFF_URGENCIES)}, got '{urgency}'", tool_name=HANDOFF_TOOL_NAME
        )
    context_summary = parameters.get("context_summary")

    logger.info(
        "handoff_requested_by_agent",
        reason=reason,
        urgency=urgency,
        conversation_id=config.get("conversation_id"),
        agent_id=config.get("agent_id"),
    )
    return {
        "handoff_requested": True,
        "conversation_status": "handoff_requested",
        "reason": reason,
        "urgency": urgency,
        "context_summary": context_summary,
    }


BUILTIN_HANDLERS = {
    "calculator": calculator,
    "current_time": current_time,
    "json_processor": json_processor,
    HANDOFF_TOOL_NAME: request_human_handoff,
}
