"""
Agent lookup errors raised by the orchestration layer.
"""


class AgentError(Exception):
    """Base class for agent definition and lookup errors."""


class AgentNotFoundError(AgentError, KeyError):
    """No agent is registered under the requested id."""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Agent not found: {agent_id}")

    def __str__(self) -> str:
        return self.args[0]


class AgentInactiveError(AgentError):
    """The agent exists but has been deactivated."""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Agent is not active: {agent_id}")


class AgentTypeError(AgentError):
    """The agent exists but cannot serve this kind of request."""

    def __init__(self, agent_id: str, *, expected: str, actual: str):
        self.agent_id = agent_id
        self.expected = expected
        self.actual = actual
        super().__init__(f"Agent '{agent_id}' is a {actual} agent, expected {expected}")
