"""Flow graphs: definitions, contexts, node protocol and the scheduler."""

from flowengine.graph.cache import CacheEntry, CachePersistence, NodeCache, is_fresh
from flowengine.graph.context import ContextType, FlowContext, Message, sanitize_messages
from flowengine.graph.context_lifecycle import ContextLifecycleManager, ContextPresentationSink
from flowengine.graph.context_registry import (
    ContextBinding,
    ContextManager,
    ContextRegistry,
    IsolatedContextOptions,
)
from flowengine.graph.errors import (
    ContextCollisionError,
    FlowEngineError,
    FlowValidationError,
    NodeConfigError,
    NodeError,
    NodeExecutionError,
    NodeInputError,
    ToolExecutionError,
    UnknownNodeKindError,
)
from flowengine.graph.flow import FlowDefinition, FlowEdge, FlowNode, FlowWiring, canonicalize_handle
from flowengine.graph.flow_api import FlowAPI
from flowengine.graph.node import (
    UNSET,
    ExecutionPolicy,
    NodeInputs,
    NodeMetadata,
    NodeOutput,
    NodeRegistry,
    NodeStatus,
)
from flowengine.graph.portal import PortalEntry, PortalRegistry
from flowengine.graph.run_context import RunContext
from flowengine.graph.scheduler import (
    FlowRunResult,
    FlowScheduler,
    FlowSnapshot,
    FlowStatus,
    SessionSink,
)
from flowengine.graph.usage import UsageTracker

__all__ = [
    # Definitions
    "FlowDefinition",
    "FlowEdge",
    "FlowNode",
    "FlowWiring",
    "canonicalize_handle",
    # Contexts
    "ContextType",
    "FlowContext",
    "Message",
    "sanitize_messages",
    "ContextBinding",
    "ContextManager",
    "ContextRegistry",
    "IsolatedContextOptions",
    "ContextLifecycleManager",
    "ContextPresentationSink",
    # Node protocol
    "UNSET",
    "ExecutionPolicy",
    "NodeInputs",
    "NodeMetadata",
    "NodeOutput",
    "NodeRegistry",
    "NodeStatus",
    "FlowAPI",
    # Run state
    "CacheEntry",
    "CachePersistence",
    "NodeCache",
    "is_fresh",
    "PortalEntry",
    "PortalRegistry",
    "RunContext",
    "UsageTracker",
    # Scheduler
    "FlowRunResult",
    "FlowScheduler",
    "FlowSnapshot",
    "FlowStatus",
    "SessionSink",
    # Errors
    "ContextCollisionError",
    "FlowEngineError",
    "FlowValidationError",
    "NodeConfigError",
    "NodeError",
    "NodeExecutionError",
    "NodeInputError",
    "ToolExecutionError",
    "UnknownNodeKindError",
]
