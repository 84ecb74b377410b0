"""
Tool-related exceptions used by the tool execution adapter.
"""


class ToolError(Exception):
    """Base class for tool errors."""


class ToolNotFoundError(ToolError):
    """No handler is registered for the requested tool name."""

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"No handler registered for tool '{tool_name}'")


class ToolExecutionError(ToolError):
    """Raised by a handler when a tool fails to execute for any reason."""

    def __init__(self, message: str, *, tool_name: str):
        self.tool_name = tool_name
        self.message = message
        super().__init__(f"Tool '{tool_name}': {message}")


class ToolConfigurationError(ToolError):
    """An agent's tool configuration is invalid."""
