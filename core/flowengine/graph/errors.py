"""Error taxonomy for the flow engine.

Configuration problems detected by a node are reported as ``status="error"``
outputs, never raised. The exceptions below are for everything the scheduler
itself must react to.
"""

from dataclasses import dataclass, field
from typing import Any


class FlowEngineError(Exception):
    """Base class for engine errors."""


class FlowValidationError(FlowEngineError):
    """A flow definition failed structural validation."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("Invalid flow definition: " + "; ".join(errors))


class UnknownNodeKindError(FlowEngineError):
    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"Unknown node kind '{kind}'")


class NodeConfigError(FlowEngineError):
    """A node's static config is unusable. Never retried."""


class NodeExecutionError(FlowEngineError):
    """A node finished with status 'error'."""

    def __init__(self, node_id: str, message: str):
        self.node_id = node_id
        self.message = message
        super().__init__(f"Node '{node_id}' failed: {message}")


class NodeInputError(FlowEngineError):
    """A pull could not be resolved to exactly one upstream edge."""


class ContextCollisionError(FlowEngineError):
    """Two contexts of different type claim the same contextId."""


class ToolExecutionError(FlowEngineError):
    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(f"Tool '{tool_name}' failed: {message}")


@dataclass
class NodeError:
    """Value pushed to error-handling successors in place of a node's data."""

    node_id: str
    message: str
    execution_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"[{self.node_id}] {self.message}"
