"""
FlowAPI - the capability object a node receives for one execution.

Everything a node may touch outside its own arguments goes through here:
logging, the context registry, tools, portals, the node cache, usage
accounting and flow events. All of it is scoped to the node's RunContext.
"""

import asyncio
import logging
import uuid
from dataclasses import asdict
from typing import Any, Protocol

import jsonschema

from flowengine.graph.cache import CacheEntry
from flowengine.graph.context import FlowContext
from flowengine.graph.context_registry import ContextBinding, ContextManager, IsolatedContextOptions
from flowengine.graph.errors import ToolExecutionError
from flowengine.graph.node import UNSET
from flowengine.graph.portal import PortalEntry
from flowengine.graph.run_context import RunContext
from flowengine.llm.provider import ProviderAdapter, Tool
from flowengine.runtime.cancellation import CancellationToken
from flowengine.runtime.event_bus import FlowEvent, FlowEventType

logger = logging.getLogger("flowengine.nodes")


class SchedulerHooks(Protocol):
    async def wait_for_user_input(self, node_id: str, prompt: str = "") -> str: ...

    async def trigger_portal_outputs(self, portal_id: str) -> None: ...

    def wired_inputs(self, node_id: str) -> list[str]: ...


class ContextsAPI:
    """Registry operations: ``flow_api.contexts``."""

    def __init__(self, api: "FlowAPI"):
        self._api = api

    def active(self) -> FlowContext:
        return self._api.binding.current

    def list(self) -> list[FlowContext]:
        return self._api.run.lifecycle.registry.list_snapshots()

    def get(self, context_id: str) -> FlowContext | None:
        return self._api.run.lifecycle.registry.get_snapshot(context_id)

    def create_isolated(
        self, options: IsolatedContextOptions | None = None, **kwargs: Any
    ) -> FlowContext:
        options = options or IsolatedContextOptions(**kwargs)
        if options.created_by_node_id is None:
            options.created_by_node_id = self._api.node_id
        return self._api.run.lifecycle.create_isolated_context(options, self._api.binding)

    def release(self, context_id: str) -> bool:
        return self._api.run.lifecycle.release_context(context_id)


class ToolsAPI:
    """Tool access: ``flow_api.tools``."""

    def __init__(self, api: "FlowAPI"):
        self._api = api

    def list(self) -> list[Tool]:
        return list(self._api.run.tools)

    def get(self, name: str) -> Tool | None:
        for tool in self._api.run.tools:
            if tool.name == name:
                return tool
        return None

    async def execute(self, name: str, args: dict[str, Any] | None = None) -> Any:
        """
        Validate ``args`` against the tool's JSON schema and run it.

        Raises:
            ToolExecutionError: unknown tool, invalid arguments, or the tool raised
        """
        args = args or {}
        tool = self.get(name)
        if tool is None or tool.run is None:
            raise ToolExecutionError(name, "tool is not available")

        if tool.parameters:
            validator = jsonschema.Draft7Validator(tool.parameters)
            problems = []
            for error in validator.iter_errors(args):
                path = ".".join(str(p) for p in error.path) if error.path else "root"
                problems.append(f"{path}: {error.message}")
            if problems:
                raise ToolExecutionError(name, "invalid arguments: " + "; ".join(problems))

        call_id = uuid.uuid4().hex[:12]
        self._api.emit_event(FlowEventType.TOOL_START, tool=name, call_id=call_id, args=args)
        self._api.run.token.check()
        try:
            result = await tool.run(args, {"node_id": self._api.node_id, "call_id": call_id})
        except Exception as e:
            self._api.emit_event(FlowEventType.TOOL_ERROR, tool=name, call_id=call_id, error=str(e))
            raise ToolExecutionError(name, str(e)) from e
        self._api.emit_event(FlowEventType.TOOL_END, tool=name, call_id=call_id)
        return result


class UsageAPI:
    def __init__(self, api: "FlowAPI"):
        self._api = api

    def report(self, provider: str, model: str, input_tokens: int = 0, output_tokens: int = 0) -> None:
        usage = self._api.run.usage
        usage.report(provider, model, input_tokens, output_tokens)
        self._api.emit_event(
            FlowEventType.TOKEN_USAGE,
            provider=provider,
            model=model,
            usage={"input_tokens": input_tokens, "output_tokens": output_tokens},
            total=asdict(usage.total),
        )


class ConversationAPI:
    """Streamed output and timeline badges: ``flow_api.conversation``."""

    def __init__(self, api: "FlowAPI"):
        self._api = api

    def stream_chunk(self, text: str) -> None:
        if text:
            self._api.emit_event(FlowEventType.CHUNK, text=text)

    def stream_reasoning(self, text: str) -> None:
        if text:
            self._api.emit_event(FlowEventType.REASONING, text=text)

    def add_badge(self, badge_type: str, label: str, **details: Any) -> str:
        badge_id = f"badge-{uuid.uuid4().hex[:12]}"
        self._api.emit_event(
            FlowEventType.BADGE_ADD, badge_id=badge_id, badge_type=badge_type, label=label, **details
        )
        return badge_id

    def update_badge(self, badge_id: str, **updates: Any) -> None:
        self._api.emit_event(FlowEventType.BADGE_UPDATE, badge_id=badge_id, **updates)


class FlowAPI:
    """Capabilities for one node execution."""

    def __init__(
        self,
        run: RunContext,
        hooks: SchedulerHooks,
        node_id: str,
        execution_id: str,
        binding: ContextBinding,
        resume_value: Any = None,
    ):
        self.run = run
        self.node_id = node_id
        self.execution_id = execution_id
        self.binding = binding
        self.resume_value = resume_value
        self._hooks = hooks
        self._pending: list[asyncio.Task] = []

        self.log = logging.LoggerAdapter(logger, {"node_id": node_id})
        self.contexts = ContextsAPI(self)
        self.tools = ToolsAPI(self)
        self.usage = UsageAPI(self)
        self.conversation = ConversationAPI(self)

    # --- identity ------------------------------------------------------

    @property
    def request_id(self) -> str:
        return self.run.request_id

    @property
    def workspace_id(self) -> str | None:
        return self.run.workspace_id

    @property
    def session_id(self) -> str | None:
        return self.run.session_id

    @property
    def provider(self) -> ProviderAdapter | None:
        return self.run.provider

    @property
    def context(self) -> ContextManager:
        return self.binding.manager

    # --- cancellation --------------------------------------------------

    @property
    def token(self) -> CancellationToken:
        return self.run.token

    def check_cancelled(self) -> None:
        self.run.token.check()

    async def sleep(self, seconds: float) -> None:
        await self.run.token.sleep(seconds)

    # --- portals -------------------------------------------------------

    def get_portal_data(self, portal_id: str) -> PortalEntry | None:
        return self.run.portals.get(portal_id)

    def set_portal_data(
        self, portal_id: str, context: FlowContext | None = None, data: Any = UNSET
    ) -> None:
        self.run.portals.set(portal_id, context=context, data=data)

    async def trigger_portal_outputs(self, portal_id: str) -> None:
        await self._hooks.trigger_portal_outputs(portal_id)

    # --- node cache ----------------------------------------------------

    def get_node_cache(self) -> CacheEntry | None:
        return self.run.cache.get(self.node_id)

    def set_node_cache(self, data: Any) -> CacheEntry:
        return self.run.cache.set(self.node_id, data)

    def clear_node_cache(self) -> bool:
        return self.run.cache.clear(self.node_id)

    def now(self) -> float:
        return self.run.cache.now()

    # --- wiring --------------------------------------------------------

    def wired_inputs(self) -> list[str]:
        """Input ports of this node that have at least one edge."""
        return self._hooks.wired_inputs(self.node_id)

    # --- user input ----------------------------------------------------

    async def wait_for_user_input(self, prompt: str = "") -> str:
        return await self._hooks.wait_for_user_input(self.node_id, prompt)

    # --- events --------------------------------------------------------

    def emit_event(self, event_type: FlowEventType | str, **data: Any) -> None:
        """Publish a flow event without blocking the node; flushed after the node returns."""
        event = FlowEvent(
            type=FlowEventType(event_type),
            request_id=self.run.request_id,
            node_id=self.node_id,
            execution_id=self.execution_id,
            data=data,
        )
        self._pending.append(asyncio.ensure_future(self.run.event_bus.publish(event)))

    async def flush_events(self) -> None:
        pending, self._pending = self._pending, []
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
