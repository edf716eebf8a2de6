"""Shared fixtures: a scripted provider, flow builders and node-call helpers."""

from typing import Any

import pytest

from flowengine.config import EngineConfig
from flowengine.graph.cache import NodeCache
from flowengine.graph.context import FlowContext
from flowengine.graph.context_lifecycle import ContextLifecycleManager
from flowengine.graph.flow import FlowDefinition
from flowengine.graph.flow_api import FlowAPI
from flowengine.graph.run_context import RunContext
from flowengine.llm.provider import LLMResponse, ProviderAdapter
from flowengine.runtime.event_bus import EventBus


class ScriptedProvider(ProviderAdapter):
    """Replies from a list of canned responses; records every request."""

    def __init__(self, replies: list[str | Exception] | None = None, chunk: bool = True):
        self.replies = list(replies or ["ok"])
        self.chunk = chunk
        self.calls: list[dict[str, Any]] = []
        self.cancelled = 0

    def agent_stream(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            kwargs["on_error"](reply)
        else:
            if self.chunk:
                kwargs["on_chunk"](reply)
            kwargs["on_done"](
                LLMResponse(content=reply, model=kwargs["model"], input_tokens=10, output_tokens=5)
            )
        provider = self

        class _Handle:
            def cancel(self) -> None:
                provider.cancelled += 1

        return _Handle()


def make_flow(nodes: list[tuple], edges: list[tuple], flow_id: str = "test-flow") -> FlowDefinition:
    """
    Build a FlowDefinition without registry validation.

    nodes: (id, type) or (id, type, config)
    edges: (source, source_handle, target, target_handle)
    """
    return FlowDefinition.model_validate(
        {
            "id": flow_id,
            "nodes": [
                {"id": n[0], "type": n[1], "config": n[2] if len(n) > 2 else {}} for n in nodes
            ],
            "edges": [
                {
                    "id": f"e{i}",
                    "source": s,
                    "sourceHandle": sh,
                    "target": t,
                    "targetHandle": th,
                }
                for i, (s, sh, t, th) in enumerate(edges)
            ],
        }
    )


@pytest.fixture
def engine_config():
    return EngineConfig(
        provider="openai",
        model="gpt-4o",
        api_key=None,
        default_cache_ttl=300,
        retry_max_attempts=3,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        log_level="INFO",
        log_format="human",
        pricing={},
    )


@pytest.fixture
def main_context():
    return FlowContext(provider="openai", model="gpt-4o", system_instructions="You are helpful.")


class FakeInputs:
    """``inputs`` stand-in backed by a dict; records every pull."""

    def __init__(self, values: dict[str, Any] | None = None):
        self.values = dict(values or {})
        self.pulled: list[str] = []

    def has(self, port: str) -> bool:
        return port in self.values

    async def pull(self, port: str) -> Any:
        self.pulled.append(port)
        value = self.values[port]
        if isinstance(value, Exception):
            raise value
        return value


class FakeHooks:
    def __init__(self, wired: list[str] | None = None, user_text: str = ""):
        self.wired = wired or []
        self.user_text = user_text
        self.triggered: list[str] = []

    async def wait_for_user_input(self, node_id: str, prompt: str = "") -> str:
        return self.user_text

    async def trigger_portal_outputs(self, portal_id: str) -> None:
        self.triggered.append(portal_id)

    def wired_inputs(self, node_id: str) -> list[str]:
        return list(self.wired)


def make_api(
    context: FlowContext,
    config: EngineConfig,
    node_id: str = "node",
    provider: ProviderAdapter | None = None,
    hooks: FakeHooks | None = None,
    resume_value: Any = None,
    clock=None,
):
    """A FlowAPI bound to a fresh run, for calling node functions directly."""
    lifecycle = ContextLifecycleManager(context, request_id="req-test")
    run = RunContext(
        request_id="req-test",
        flow=make_flow([(node_id, "manualInput")], []),
        lifecycle=lifecycle,
        event_bus=EventBus(),
        config=config,
        cache=NodeCache(clock=clock),
        provider=provider,
    )
    return FlowAPI(
        run, hooks or FakeHooks(), node_id, "exec-1", lifecycle.get_main_binding(), resume_value
    )


async def call_node(function, api, context=None, data=None, inputs=None, config=None):
    """Invoke a node function the way the scheduler does and flush its events."""
    try:
        return await function(
            api, context or api.binding.current, data, inputs or FakeInputs(), config or {}
        )
    finally:
        await api.flush_events()
