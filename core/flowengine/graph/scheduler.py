"""
Flow Scheduler - runs one flow instance.

The scheduler:
1. Resolves the entry node and runs it with the main context
2. Pushes each node's outputs along its outbound edges, starting successors
   as asyncio tasks once their execution policy is satisfied
3. Runs producers lazily when a node pulls an input that was not pushed
4. Suspends nodes that return ``status="waiting"`` until resumed
5. Stops on completion, cancellation, or the first unhandled node error

Nodes are plain async functions; "parallel" branches interleave at await
points on a single event loop. Nothing here holds a lock while a node is
suspended.
"""

import asyncio
import copy
import inspect
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

from flowengine.config import EngineConfig
from flowengine.graph.cache import CachePersistence, Clock, NodeCache
from flowengine.graph.context import FlowContext
from flowengine.graph.context_lifecycle import ContextLifecycleManager, ContextPresentationSink
from flowengine.graph.errors import NodeError, NodeExecutionError, NodeInputError
from flowengine.graph.flow import FlowDefinition
from flowengine.graph.flow_api import FlowAPI
from flowengine.graph.io_coordinator import NodeIOCoordinator
from flowengine.graph.node import UNSET, NodeMetadata, NodeOutput, NodeRegistry, NodeStatus
from flowengine.graph.run_context import RunContext
from flowengine.llm.provider import ProviderAdapter, Tool
from flowengine.observability.logging import set_trace_context, trace_context
from flowengine.runtime.cancellation import CancellationToken, FlowCancelledError, is_cancellation
from flowengine.runtime.event_bus import EventBus

logger = logging.getLogger(__name__)


class FlowStatus(StrEnum):
    RUNNING = "running"
    WAITING_FOR_INPUT = "waiting_for_input"
    STOPPED = "stopped"


@runtime_checkable
class SessionSink(Protocol):
    """Persists the main conversation as it evolves. Failures never abort a flow."""

    async def save_history(self, session_id: str, context: FlowContext) -> None: ...


@dataclass
class FlowSnapshot:
    """Point-in-time view of a run, for UI seeding and resumption."""

    request_id: str
    status: FlowStatus
    active_node_ids: list[str] = field(default_factory=list)
    paused_node_id: str | None = None
    waiting_node_ids: list[str] = field(default_factory=list)
    main_context: FlowContext | None = None
    isolated_contexts: dict[str, FlowContext] = field(default_factory=dict)


@dataclass
class FlowRunResult:
    """Result of a completed run."""

    ok: bool
    status: FlowStatus = FlowStatus.STOPPED
    error: str | None = None
    failed_node_id: str | None = None
    cancelled: bool = False
    main_context: FlowContext | None = None
    outputs: dict[str, NodeOutput] = field(default_factory=dict)
    duration_ms: int = 0


class _NodeInputsView:
    """``inputs`` argument for one execution of one node."""

    def __init__(self, scheduler: "FlowScheduler", node_id: str, execution_id: str):
        self._scheduler = scheduler
        self._node_id = node_id
        self._execution_id = execution_id

    def has(self, port: str) -> bool:
        io = self._scheduler.io
        if port in io.live_inputs(self._node_id):
            return True
        # Several edges into one port can be pushed but not pulled
        return len(io.wiring.incoming_for(self._node_id, port)) == 1

    async def pull(self, port: str) -> Any:
        return await self._scheduler._pull(self._node_id, self._execution_id, port)


class FlowScheduler:
    """
    Executes one flow instance.

    Example:
        scheduler = FlowScheduler(
            flow=FlowDefinition.load(data, registry),
            registry=registry,
            initial_context=FlowContext(provider="openai", model="gpt-4o"),
            provider=LiteLLMAdapter(),
        )
        result = await scheduler.execute(initial_data="hello")
    """

    def __init__(
        self,
        flow: FlowDefinition,
        registry: NodeRegistry,
        initial_context: FlowContext,
        *,
        request_id: str | None = None,
        workspace_id: str | None = None,
        session_id: str | None = None,
        provider: ProviderAdapter | None = None,
        tools: list[Tool] | None = None,
        event_bus: EventBus | None = None,
        presentation_sink: ContextPresentationSink | None = None,
        session_sink: SessionSink | None = None,
        cache_persistence: CachePersistence | None = None,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
        bridge_portals: bool = False,
    ):
        self.flow = flow
        self.registry = registry
        self.request_id = request_id or uuid.uuid4().hex
        self.session_sink = session_sink

        lifecycle = ContextLifecycleManager(
            initial_context,
            request_id=self.request_id,
            workspace_id=workspace_id,
            presentation_sink=presentation_sink,
        )
        self.run = RunContext(
            request_id=self.request_id,
            flow=flow,
            lifecycle=lifecycle,
            event_bus=event_bus or EventBus(),
            config=config or EngineConfig(),
            token=CancellationToken(),
            cache=NodeCache(clock=clock, persistence=cache_persistence),
            provider=provider,
            tools=list(tools or []),
            workspace_id=workspace_id,
            session_id=session_id,
        )
        self.io = NodeIOCoordinator(flow.build_wiring(bridge_portals), self._metadata_for_node)

        self._tasks: set[asyncio.Task] = set()
        self._active: set[str] = set()
        self._resume_waiters: dict[str, asyncio.Future] = {}
        self._input_waiters: dict[str, asyncio.Future] = {}
        self._paused_node_id: str | None = None
        self._outputs: dict[str, NodeOutput] = {}
        self._error: str | None = None
        self._failed_node_id: str | None = None
        self._finished = False
        self._cancelled = False
        self._emitted_status: FlowStatus | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def lifecycle(self) -> ContextLifecycleManager:
        return self.run.lifecycle

    @property
    def event_bus(self) -> EventBus:
        return self.run.event_bus

    @property
    def status(self) -> FlowStatus:
        if self._finished or self.run.token.cancelled:
            return FlowStatus.STOPPED
        if self._resume_waiters or self._input_waiters:
            return FlowStatus.WAITING_FOR_INPUT
        return FlowStatus.RUNNING

    async def execute(self, initial_data: Any = UNSET) -> FlowRunResult:
        """
        Run the flow until it is quiescent, cancelled, or fails.

        ``initial_data`` is pushed to the entry node's ``data`` port.
        """
        set_trace_context(request_id=self.request_id, flow_id=self.flow.id)
        started = time.monotonic()
        await self._emit_status()

        try:
            entry = self.flow.get_entry_node()
            logger.info(f"🚀 Starting flow '{self.flow.id}' at entry node '{entry.id}'")
            pushed: dict[str, Any] = {"context": self.lifecycle.get_main_context()}
            if initial_data is not UNSET:
                pushed["data"] = initial_data
            await self._execute_node(entry.id, pushed, caller_id=None)
        except Exception as e:
            if not is_cancellation(e):
                self._fail(e)
        finally:
            await self._drain()

        self._finished = True
        await self._emit_status()
        await self._save_session()
        self.run.portals.clear()
        self.lifecycle.clear_context_state()

        ok = self._error is None
        if ok:
            logger.info(f"✓ Flow '{self.flow.id}' finished" + (" (cancelled)" if self._cancelled else ""))
        else:
            logger.error(f"✗ Flow '{self.flow.id}' stopped: {self._error}")
        await self.event_bus.emit_done(self.request_id, ok=ok, error=self._error)

        return FlowRunResult(
            ok=ok,
            status=self.status,
            error=self._error,
            failed_node_id=self._failed_node_id,
            cancelled=self._cancelled,
            main_context=self.lifecycle.get_main_context(),
            outputs=dict(self._outputs),
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    def cancel(self) -> None:
        """Cooperative cancellation: nodes stop at their next suspension point."""
        if self._finished:
            return
        self._cancelled = True
        if self.run.token.cancel("cancelled by user"):
            logger.info(f"⏹ Flow '{self.flow.id}' cancelled")

    def resume(self, node_id: str | None = None, value: Any = True) -> bool:
        """
        Resume a node that returned ``status="waiting"``.

        The node is re-invoked with the inputs it paused with and
        ``flow_api.resume_value`` set to ``value``. Without ``node_id`` the
        paused node (or the first waiting one) is resumed.
        """
        target = node_id or self._paused_node_id or next(iter(self._resume_waiters), None)
        future = self._resume_waiters.get(target) if target else None
        if future is None or future.done():
            logger.warning(f"No waiting node to resume (requested: {node_id})")
            return False
        logger.info(f"▶ Resuming '{target}'")
        future.set_result(value)
        return True

    def is_waiting_for_user_input(self, node_id: str) -> bool:
        return node_id in self._input_waiters

    def resolve_user_input(self, node_id: str, text: str) -> bool:
        future = self._input_waiters.get(node_id)
        if future is None or future.done():
            logger.warning(f"No user input waiter for node '{node_id}'")
            return False
        future.set_result(text)
        return True

    def resolve_any_waiting_user_input(self, text: str) -> bool:
        if not self._input_waiters:
            logger.warning("No waiting user input resolvers")
            return False
        if len(self._input_waiters) > 1:
            logger.warning("Multiple user input waiters; resolving the first")
        return self.resolve_user_input(next(iter(self._input_waiters)), text)

    def update_provider_model(self, provider: str | None = None, model: str | None = None) -> None:
        self.lifecycle.update_provider_model(provider, model)

    def snapshot(self) -> FlowSnapshot:
        state = self.lifecycle.capture_state()
        return FlowSnapshot(
            request_id=self.request_id,
            status=self.status,
            active_node_ids=sorted(self._active),
            paused_node_id=self._paused_node_id,
            waiting_node_ids=sorted({*self._resume_waiters, *self._input_waiters}),
            main_context=state["main_context"],
            isolated_contexts=state["isolated_contexts"],
        )

    # ------------------------------------------------------------------
    # Hooks used by FlowAPI
    # ------------------------------------------------------------------

    async def wait_for_user_input(self, node_id: str, prompt: str = "") -> str:
        value = await self._suspend(self._input_waiters, node_id, reason=prompt or "user_input")
        return "" if value is None else str(value)

    async def trigger_portal_outputs(self, portal_id: str) -> None:
        outputs = [
            n for n in self.flow.nodes_of_kind("portalOutput") if n.config.get("id") == portal_id
        ]
        logger.debug(f"Triggering {len(outputs)} portal output(s) for '{portal_id}'")
        for node in outputs:
            await self._execute_node(node.id, {}, caller_id=None)

    def wired_inputs(self, node_id: str) -> list[str]:
        return sorted({e.target_input for e in self.io.wiring.incoming(node_id)})

    # ------------------------------------------------------------------
    # Node execution
    # ------------------------------------------------------------------

    def _metadata_for_node(self, node_id: str) -> NodeMetadata:
        node = self.flow.get_node(node_id)
        if node is None:
            raise NodeInputError(f"Unknown node '{node_id}'")
        return self.registry.metadata_for(node.type)

    async def _execute_node(
        self,
        node_id: str,
        pushed: dict[str, Any],
        caller_id: str | None,
        is_pull: bool = False,
    ) -> NodeOutput:
        """Register the execution as in flight, run it, and publish its result to pullers."""
        live = dict(pushed)
        future: asyncio.Future[NodeOutput] = asyncio.get_running_loop().create_future()
        # Mark the exception retrieved when no puller is waiting on it
        future.add_done_callback(lambda f: f.cancelled() or f.exception())
        self.io.begin(node_id, live, future)
        try:
            result = await self._run_node(node_id, live, caller_id, is_pull)
        except BaseException as e:
            if not future.done():
                future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self.io.end(node_id, future)

    async def _run_node(
        self,
        node_id: str,
        live: dict[str, Any],
        caller_id: str | None,
        is_pull: bool,
    ) -> NodeOutput:
        self.run.token.check()

        node = self.flow.get_node(node_id)
        if node is None:
            raise NodeInputError(f"Unknown node '{node_id}'")
        registered = self.registry.get(node.type)
        execution_id = uuid.uuid4().hex

        trace_token = trace_context.set(
            {**(trace_context.get() or {}), "node_id": node_id, "execution_id": execution_id}
        )
        self._active.add(node_id)
        started = time.monotonic()
        logger.debug(
            f"▶ {node_id} ({node.type}) inputs={sorted(live)} caller={caller_id} pull={is_pull}"
        )
        await self.event_bus.emit_node_start(self.request_id, node_id, execution_id)

        try:
            resume_value = None
            while True:
                binding = self.lifecycle.resolve_active_binding(live)
                main_before = self.lifecycle.get_main_context()
                api = FlowAPI(self.run, self, node_id, execution_id, binding, resume_value)
                inputs = _NodeInputsView(self, node_id, execution_id)
                try:
                    result = await registered.function(
                        api, live.get("context"), live.get("data"), inputs, copy.deepcopy(node.config)
                    )
                except Exception as e:
                    if is_cancellation(e):
                        raise
                    logger.error(f"✗ {node_id} raised: {e}")
                    result = NodeOutput.failure(str(e) or e.__class__.__name__)
                finally:
                    await api.flush_events()

                self.lifecycle.ensure_context_output(result, binding)
                if self.lifecycle.get_main_context() is not main_before:
                    await self._save_session()

                if result.status != NodeStatus.WAITING:
                    break
                logger.info(f"⏸ {node_id} waiting: {result.metadata.get('reason', '')}")
                resume_value = await self._suspend(
                    self._resume_waiters,
                    node_id,
                    reason=str(result.metadata.get("reason", "")),
                    details=result.metadata,
                )

            self._outputs[node_id] = result
            duration_ms = int((time.monotonic() - started) * 1000)
            await self.event_bus.emit_node_end(
                self.request_id, node_id, execution_id, duration_ms, result.status, result.metadata
            )

            if result.status == NodeStatus.ERROR:
                message = result.error or "Node execution failed"
                logger.error(f"✗ {node_id} failed: {message}")
                await self.event_bus.emit_error(self.request_id, message, node_id, execution_id)
                if not is_pull and self._route_error(node_id, execution_id, message, result):
                    return result
                raise NodeExecutionError(node_id, message)

            if not is_pull:
                self._push_phase(node_id, result)
            return result
        finally:
            # Kept across a suspension so a resumed node sees what it pulled before
            self.io.memo_clear(execution_id)
            self._active.discard(node_id)
            trace_context.reset(trace_token)

    async def _pull(self, node_id: str, execution_id: str, port: str) -> Any:
        """Resolve ``inputs.pull(port)`` for one execution of ``node_id``."""
        self.run.token.check()

        live = self.io.live_inputs(node_id)
        # A pushed NodeError reports a failed producer; pulling runs it again
        if port in live and not isinstance(live[port], NodeError):
            return live[port]

        found, value = self.io.memo_get(execution_id, port)
        if found:
            return value

        edges = self.io.wiring.incoming_for(node_id, port)
        if not edges:
            raise NodeInputError(f"No edge found for input '{port}' on node '{node_id}'")
        if len(edges) > 1:
            raise NodeInputError(
                f"Invalid graph: multiple edges target input '{port}' on node '{node_id}'"
            )
        edge = edges[0]
        if edge.source == node_id:
            raise NodeInputError(f"Node '{node_id}' cannot pull its own output")

        in_flight = self.io.in_flight(edge.source)
        if in_flight is not None:
            result = await in_flight
        else:
            initial = self.io.take_pending(edge.source)
            previous = self._outputs.get(edge.source)
            if previous is not None and previous.status == NodeStatus.ERROR:
                # Re-invoke a failed producer with the inputs it failed on
                initial = {**self.io.last_inputs(edge.source), **initial}
            result = await self._execute_node(edge.source, initial, node_id, is_pull=True)

        value = result.value(edge.source_output)
        value = None if value is UNSET else value
        self.io.memo_set(execution_id, port, value)
        return value

    # ------------------------------------------------------------------
    # Push phase
    # ------------------------------------------------------------------

    def _push_phase(self, node_id: str, result: NodeOutput) -> None:
        # tools edges are pull-only
        edges = [e for e in self.io.wiring.outgoing(node_id) if e.source_output != "tools"]

        successors: list[str] = []
        for edge in edges:
            if edge.target not in successors:
                successors.append(edge.target)
        # Context recipients first so their dependents can pull from them
        successors.sort(
            key=lambda t: 0 if any(e.target == t and e.target_input == "context" for e in edges) else 1
        )

        for successor in successors:
            values: dict[str, Any] = {}
            for edge in edges:
                if edge.target != successor:
                    continue
                value = result.value(edge.source_output)
                if value is not UNSET:
                    values[edge.target_input] = value
            if values:
                self._deliver(successor, values, node_id)
            else:
                logger.debug(f"{node_id} - nothing to push to {successor}")

    def _deliver(self, target: str, values: dict[str, Any], caller_id: str) -> None:
        if self.io.in_flight(target) is not None:
            self.io.feed(target, values)
            logger.debug(f"{caller_id} - fed in-flight {target} with {sorted(values)}")
            return

        merged = self.io.add_pending(target, values)
        metadata = self._metadata_for_node(target)
        if metadata.pull_only:
            return

        missing = self.io.missing_inputs(target, merged, metadata.execution_policy)
        if missing:
            logger.debug(f"{caller_id} - deferring {target}; waiting for {missing}")
            return

        initial = self.io.take_pending(target)
        self._spawn(self._execute_node(target, initial, caller_id), target)

    def _route_error(
        self, node_id: str, execution_id: str, message: str, result: NodeOutput
    ) -> bool:
        """Push a NodeError to error-handling successors. False if there are none."""
        handlers = [
            e
            for e in self.io.wiring.outgoing(node_id)
            if self._metadata_for_node(e.target).handles_errors
        ]
        if not handlers:
            return False

        error = NodeError(node_id=node_id, message=message, execution_id=execution_id)
        for target in dict.fromkeys(e.target for e in handlers):
            values: dict[str, Any] = {}
            for edge in handlers:
                if edge.target != target:
                    continue
                if edge.target_input == "context":
                    values["context"] = result.context
                elif edge.target_input != "tools":
                    values[edge.target_input] = error
            logger.info(f"↪ Routing error from {node_id} to {target}")
            self._deliver(target, values, node_id)
        return True

    # ------------------------------------------------------------------
    # Suspension, tasks, status
    # ------------------------------------------------------------------

    async def _suspend(
        self,
        waiters: dict[str, asyncio.Future],
        node_id: str,
        reason: str = "",
        details: dict[str, Any] | None = None,
    ) -> Any:
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        waiters[node_id] = future
        self._paused_node_id = node_id

        def abort() -> None:
            if not future.done():
                future.set_exception(FlowCancelledError())

        remove = self.run.token.add_callback(abort)
        try:
            await self._emit_status()
            await self.event_bus.emit_waiting_for_input(
                self.request_id, node_id, reason, _jsonable(details)
            )
            return await future
        finally:
            remove()
            waiters.pop(node_id, None)
            if self._paused_node_id == node_id:
                self._paused_node_id = next(iter({**self._resume_waiters, **self._input_waiters}), None)
            await self._emit_status()

    def _spawn(self, coro: Any, node_id: str) -> None:
        task = asyncio.create_task(coro, name=f"flow:{self.request_id[:8]}:{node_id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None and not is_cancellation(error):
            self._fail(error)

    def _fail(self, error: BaseException) -> None:
        """Record the first unhandled error and stop the run."""
        if self._error is None:
            self._error = error.message if isinstance(error, NodeExecutionError) else str(error)
            self._failed_node_id = getattr(error, "node_id", None)
        self.run.token.cancel("error")

    async def _drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _emit_status(self) -> None:
        status = self.status
        if status == self._emitted_status:
            return
        previous = self._emitted_status
        self._emitted_status = status
        await self.event_bus.emit_status_changed(
            self.request_id, status.value, previous.value if previous else ""
        )

    async def _save_session(self) -> None:
        if self.session_sink is None or not self.run.session_id:
            return
        try:
            outcome = self.session_sink.save_history(
                self.run.session_id, self.lifecycle.get_main_context()
            )
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"Failed to flush session history: {e}")


def _jsonable(details: dict[str, Any] | None) -> dict[str, Any]:
    if not details:
        return {}
    return {k: v for k, v in details.items() if isinstance(v, str | int | float | bool | type(None))}
