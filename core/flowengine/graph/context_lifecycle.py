"""
Context lifecycle: which binding a node runs against, and what happens to
the context it returns.

State per isolated context:

    created (create_isolated_context)
        → active (bound; may spawn further isolated contexts)
        → released (release_context or run teardown)

Nothing is garbage-collected automatically; a branch that never releases its
isolated context keeps it alive until the run ends.
"""

import logging
from typing import Any, Protocol, runtime_checkable

from flowengine.graph.context import ContextType, FlowContext
from flowengine.graph.context_registry import (
    ContextBinding,
    ContextRegistry,
    IsolatedContextOptions,
)
from flowengine.graph.node import NodeOutput

logger = logging.getLogger(__name__)


@runtime_checkable
class ContextPresentationSink(Protocol):
    """Receives context snapshots for display. Failures never abort a flow."""

    def set_contexts_for(
        self,
        *,
        workspace_id: str,
        request_id: str,
        main_context: FlowContext | None,
        isolated_contexts: dict[str, FlowContext],
    ) -> None: ...

    def clear_contexts_for(self, *, workspace_id: str, request_id: str) -> None: ...


class ContextLifecycleManager:
    """Tracks the main binding and reconciles node inputs/outputs with the registry."""

    def __init__(
        self,
        initial_context: FlowContext,
        request_id: str,
        workspace_id: str | None = None,
        presentation_sink: ContextPresentationSink | None = None,
    ):
        self.registry = ContextRegistry(initial_context)
        self.request_id = request_id
        self.workspace_id = workspace_id
        self.presentation_sink = presentation_sink

        self.publish_context_state()

    def get_main_binding(self) -> ContextBinding:
        return self.registry.main_binding

    def get_main_context(self) -> FlowContext:
        return self.registry.main_binding.current

    def resolve_active_binding(self, pushed_inputs: dict[str, Any]) -> ContextBinding:
        """
        Determine the binding a node runs against.

        ``pushed_inputs["context"]`` is rewritten to the binding's committed
        value so every consumer in this execution sees the same object.
        """
        pushed = pushed_inputs.get("context")
        main = self.registry.main_binding
        if not isinstance(pushed, FlowContext):
            pushed_inputs["context"] = main.current
            return main

        if pushed is main.current:
            return main

        # Copies of a bound context (same id) resolve to the existing binding
        fallback = ContextType.ISOLATED if pushed.is_isolated else ContextType.MAIN
        binding = self.registry.resolve(pushed, fallback, prefer_existing=True)
        pushed_inputs["context"] = binding.current
        return binding

    def ensure_context_output(
        self, result: NodeOutput, active_binding: ContextBinding
    ) -> ContextBinding:
        """
        Make ``result.context`` a bound value.

        Contexts pass through by default: a node that sets no context hands
        on the active binding's current value. A node that returns a new
        value gets it committed to (or registered as) its binding; the type
        defaults to the active binding's type when the value carries none.
        """
        if result.context is None:
            result.context = active_binding.current
            return active_binding

        if result.context is active_binding.current:
            return active_binding

        fallback = (
            ContextType.ISOLATED if result.context.is_isolated else active_binding.context_type
        )
        binding = self.registry.resolve(result.context, fallback)
        result.context = binding.current
        return binding

    def create_isolated_context(
        self, options: IsolatedContextOptions, active_binding: ContextBinding | None = None
    ) -> FlowContext:
        binding = self.registry.create_isolated(options, active_binding)
        logger.debug(
            f"Created isolated context {binding.context_id} "
            f"({binding.current.provider}/{binding.current.model})"
        )
        self.publish_context_state()
        return binding.current.clone()

    def release_context(self, context_id: str) -> bool:
        if not context_id:
            return False
        released = self.registry.release(context_id)
        if released:
            logger.debug(f"Released isolated context {context_id}")
            self.publish_context_state()
        return released

    def capture_state(self) -> dict[str, Any]:
        return self.registry.capture_state()

    def publish_context_state(self) -> None:
        if not self.workspace_id or self.presentation_sink is None:
            return
        try:
            snapshot = self.capture_state()
            self.presentation_sink.set_contexts_for(
                workspace_id=self.workspace_id,
                request_id=self.request_id,
                main_context=snapshot["main_context"],
                isolated_contexts=snapshot["isolated_contexts"],
            )
        except Exception as e:
            logger.warning(f"Failed to publish context state: {e}")

    def clear_context_state(self) -> None:
        if not self.workspace_id or self.presentation_sink is None:
            return
        try:
            self.presentation_sink.clear_contexts_for(
                workspace_id=self.workspace_id,
                request_id=self.request_id,
            )
        except Exception as e:
            logger.warning(f"Failed to clear context state: {e}")

    def update_provider_model(self, provider: str | None = None, model: str | None = None) -> None:
        """Switch the main context's provider/model mid-flow."""
        self.registry.main_binding.manager.set_provider_model(provider, model)
