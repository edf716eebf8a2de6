"""
Node execution protocol.

Every node kind is an async function::

    async def my_node(flow_api, context, data, inputs, config) -> NodeOutput

- ``context`` is the FlowContext pushed on the node's ``context`` port (the
  scheduler substitutes the active binding's value when nothing was pushed).
- ``data`` is the value pushed on the ``data`` port, or None.
- ``inputs`` gives lazy access to every other wired port: ``inputs.has(port)``
  says whether a value is available or pullable, ``await inputs.pull(port)``
  fetches it, running the upstream node on demand.
- ``config`` is a private copy of the node's static configuration.

Static behaviour is declared with NodeMetadata when the kind is registered:
``execution_policy`` ("any" fires on the first push, "all" waits for every
wired input) and ``pull_only`` (never started by a push, only by a pull).
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from flowengine.graph.context import FlowContext
from flowengine.graph.errors import UnknownNodeKindError

if TYPE_CHECKING:
    from flowengine.graph.flow_api import FlowAPI


class _Unset:
    """Marks an output port that was not emitted (distinct from None)."""

    _instance = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


class NodeStatus(StrEnum):
    SUCCESS = "success"
    ERROR = "error"
    WAITING = "waiting"


class ExecutionPolicy(StrEnum):
    ANY = "any"
    ALL = "all"


@dataclass(frozen=True)
class NodeMetadata:
    """Static, per-kind declaration consulted by the scheduler."""

    execution_policy: ExecutionPolicy = ExecutionPolicy.ANY
    pull_only: bool = False
    handles_errors: bool = False  # receives NodeError values from failed predecessors
    description: str = ""


@dataclass
class NodeOutput:
    """
    What a node hands back to the scheduler.

    ``data``/``tools`` default to UNSET so that a node can emit ``None`` as
    a real value. Extra output ports (``out-1``, ``billing-context``) go in
    ``ports``.
    """

    status: NodeStatus = NodeStatus.SUCCESS
    context: FlowContext | None = None
    data: Any = UNSET
    tools: Any = UNSET
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    ports: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, context: FlowContext | None = None, data: Any = UNSET, **kwargs: Any) -> "NodeOutput":
        return cls(status=NodeStatus.SUCCESS, context=context, data=data, **kwargs)

    @classmethod
    def failure(cls, error: str, context: FlowContext | None = None, **kwargs: Any) -> "NodeOutput":
        return cls(status=NodeStatus.ERROR, error=error, context=context, **kwargs)

    @classmethod
    def waiting(cls, context: FlowContext | None = None, reason: str = "", **kwargs: Any) -> "NodeOutput":
        output = cls(status=NodeStatus.WAITING, context=context, **kwargs)
        if reason:
            output.metadata.setdefault("reason", reason)
        return output

    def has_port(self, port: str) -> bool:
        if port == "context":
            return self.context is not None
        if port == "data":
            return self.data is not UNSET
        if port == "tools":
            return self.tools is not UNSET
        return port in self.ports

    def value(self, port: str) -> Any:
        """Value emitted on ``port``; UNSET if nothing was emitted there."""
        if port == "context":
            return self.context if self.context is not None else UNSET
        if port == "data":
            return self.data
        if port == "tools":
            return self.tools
        return self.ports.get(port, UNSET)


@runtime_checkable
class NodeInputs(Protocol):
    def has(self, port: str) -> bool: ...

    async def pull(self, port: str) -> Any: ...


NodeFunction = Callable[
    ["FlowAPI", FlowContext | None, Any, NodeInputs, dict[str, Any]], Awaitable[NodeOutput]
]


@dataclass(frozen=True)
class RegisteredNode:
    kind: str
    function: NodeFunction
    metadata: NodeMetadata


class NodeRegistry:
    """
    Closed mapping from node kind to implementation.

    Flows are checked against the registry when they are loaded, so an
    unknown kind never reaches the scheduler.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, RegisteredNode] = {}

    def register(
        self,
        kind: str,
        function: NodeFunction,
        metadata: NodeMetadata | None = None,
        replace: bool = False,
    ) -> None:
        if kind in self._nodes and not replace:
            raise ValueError(f"Node kind '{kind}' is already registered")
        self._nodes[kind] = RegisteredNode(kind, function, metadata or NodeMetadata())

    def get(self, kind: str) -> RegisteredNode:
        try:
            return self._nodes[kind]
        except KeyError:
            raise UnknownNodeKindError(kind) from None

    def metadata_for(self, kind: str) -> NodeMetadata:
        return self.get(kind).metadata

    def kinds(self) -> list[str]:
        return sorted(self._nodes)

    def copy(self) -> "NodeRegistry":
        clone = NodeRegistry()
        clone._nodes = dict(self._nodes)
        return clone

    def __contains__(self, kind: object) -> bool:
        return kind in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)
