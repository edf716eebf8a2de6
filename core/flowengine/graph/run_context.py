"""Per-run state handed by reference to every node invocation."""

from dataclasses import dataclass, field

from flowengine.config import EngineConfig
from flowengine.graph.cache import NodeCache
from flowengine.graph.context_lifecycle import ContextLifecycleManager
from flowengine.graph.flow import FlowDefinition
from flowengine.graph.portal import PortalRegistry
from flowengine.graph.usage import UsageTracker
from flowengine.llm.provider import ProviderAdapter, Tool
from flowengine.runtime.cancellation import CancellationToken
from flowengine.runtime.event_bus import EventBus


@dataclass
class RunContext:
    """
    Everything one flow run owns.

    Two runs never share a RunContext, so portals, cache entries, retry
    counters and contexts of concurrent runs cannot see each other.
    """

    request_id: str
    flow: FlowDefinition
    lifecycle: ContextLifecycleManager
    event_bus: EventBus
    config: EngineConfig
    token: CancellationToken = field(default_factory=CancellationToken)
    portals: PortalRegistry = field(default_factory=PortalRegistry)
    cache: NodeCache = field(default_factory=NodeCache)
    usage: UsageTracker = field(default_factory=UsageTracker)
    provider: ProviderAdapter | None = None
    tools: list[Tool] = field(default_factory=list)
    workspace_id: str | None = None
    session_id: str | None = None
    retry_attempts: dict[str, int] = field(default_factory=dict)
