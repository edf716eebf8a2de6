"""
flowengine - runs user-authored agentic flows.

A flow is a graph of typed nodes (LLM calls, routers, caches, gates) joined
by edges between named ports. The scheduler pushes values eagerly along
edges and lets nodes pull lazily from upstream, threading a conversational
context through the graph.

Example:
    from flowengine import FlowContext, FlowDefinition, FlowScheduler, default_registry
    from flowengine.llm.litellm import LiteLLMAdapter

    registry = default_registry()
    flow = FlowDefinition.from_file("chat.json", registry)
    scheduler = FlowScheduler(flow, registry, FlowContext(), provider=LiteLLMAdapter())
    result = await scheduler.execute()
"""

from flowengine.config import EngineConfig
from flowengine.graph import (
    FlowContext,
    FlowDefinition,
    FlowRunResult,
    FlowScheduler,
    FlowStatus,
    Message,
    NodeMetadata,
    NodeOutput,
    NodeRegistry,
)
from flowengine.llm import ProviderAdapter, Tool
from flowengine.nodes import default_registry
from flowengine.runtime import EventBus, FlowEvent, FlowEventType

__version__ = "0.1.0"

__all__ = [
    "EngineConfig",
    "EventBus",
    "FlowContext",
    "FlowDefinition",
    "FlowEvent",
    "FlowEventType",
    "FlowRunResult",
    "FlowScheduler",
    "FlowStatus",
    "Message",
    "NodeMetadata",
    "NodeOutput",
    "NodeRegistry",
    "ProviderAdapter",
    "Tool",
    "default_registry",
]
