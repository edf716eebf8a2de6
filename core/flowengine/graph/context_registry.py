"""
Context arena and bindings.

Every live context in a run is stored under its ``context_id``. A binding
is the slot for one logical thread: it remembers the thread's type and the
latest context value committed to it. Whether two context objects are "the
same conversation" is decided by id, never by object identity, so contexts
that were copied or deserialized in between still resolve to their binding.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from flowengine.graph.context import (
    ContextType,
    FlowContext,
    Message,
    new_context_id,
    sanitize_messages,
    utc_now_iso,
)
from flowengine.graph.errors import ContextCollisionError

logger = logging.getLogger(__name__)


@dataclass
class ContextBinding:
    """Ownership slot for one logical context thread."""

    context_id: str
    context_type: ContextType
    current: FlowContext
    manager: "ContextManager" = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.manager = ContextManager(self)

    def commit(self, context: FlowContext) -> FlowContext:
        """Make ``context`` the current value of this binding."""
        if context.context_id != self.context_id:
            raise ContextCollisionError(
                f"Cannot commit context '{context.context_id}' into binding '{self.context_id}'"
            )
        if context.context_type != self.context_type:
            context = context.model_copy(update={"context_type": self.context_type})
        self.current = context
        return context


class ContextManager:
    """
    Mutation helpers exposed to nodes as ``flow_api.context``.

    Each operation builds a new FlowContext and commits it to the binding,
    so a node that later returns ``flow_api.context.get()`` hands back the
    committed value.
    """

    def __init__(self, binding: ContextBinding):
        self._binding = binding

    def get(self) -> FlowContext:
        return self._binding.current

    def add_message(self, message: Message | dict[str, Any]) -> FlowContext:
        return self._binding.commit(self.get().with_messages(message))

    def add_messages(self, messages: Iterable[Message | dict[str, Any]]) -> FlowContext:
        return self._binding.commit(self.get().with_messages(*messages))

    def set_system_instructions(self, instructions: str) -> FlowContext:
        return self.update(system_instructions=instructions)

    def set_provider_model(self, provider: str | None = None, model: str | None = None) -> FlowContext:
        changes: dict[str, Any] = {}
        if provider:
            changes["provider"] = provider
        if model:
            changes["model"] = model
        return self.update(**changes)

    def reset_history(self) -> FlowContext:
        return self.update(message_history=[])

    def replace_history(self, messages: Iterable[Message | dict[str, Any]]) -> FlowContext:
        return self.update(message_history=sanitize_messages(messages))

    def update(self, **changes: Any) -> FlowContext:
        changes.pop("context_id", None)
        changes.pop("context_type", None)
        if "message_history" in changes:
            changes["message_history"] = sanitize_messages(changes["message_history"])
        if not changes:
            return self.get()
        return self._binding.commit(self.get().model_copy(update=changes))


@dataclass
class IsolatedContextOptions:
    """How to build a new isolated context."""

    provider: str | None = None
    model: str | None = None
    system_instructions: str | None = None
    label: str | None = None
    temperature: float | None = None
    reasoning_effort: str | None = None
    initial_messages: list[Message | dict[str, Any]] = field(default_factory=list)
    inherit_history: bool = False
    inherit_system_instructions: bool = False
    base_context_id: str | None = None
    created_by_node_id: str | None = None


class ContextRegistry:
    """Arena of context bindings keyed by ``context_id``."""

    def __init__(self, initial_context: FlowContext):
        self._bindings: dict[str, ContextBinding] = {}
        self._main_id = ""
        self._register(initial_context, ContextType.MAIN, force_type=True)

    # --- queries -------------------------------------------------------

    @property
    def main_binding(self) -> ContextBinding:
        return self._bindings[self._main_id]

    def get_binding(self, context_id: str) -> ContextBinding | None:
        return self._bindings.get(context_id)

    def list_bindings(self) -> list[ContextBinding]:
        return list(self._bindings.values())

    def list_snapshots(self) -> list[FlowContext]:
        return [b.current.clone() for b in self._bindings.values()]

    def get_snapshot(self, context_id: str) -> FlowContext | None:
        binding = self._bindings.get(context_id)
        return binding.current.clone() if binding else None

    def __contains__(self, context_id: str) -> bool:
        return context_id in self._bindings

    def __len__(self) -> int:
        return len(self._bindings)

    # --- resolution ----------------------------------------------------

    def resolve(
        self,
        context: FlowContext,
        fallback_type: ContextType,
        prefer_existing: bool = False,
    ) -> ContextBinding:
        """
        Find or create the binding for ``context``.

        With ``prefer_existing`` an already-bound id keeps its committed value
        (the pushed copy may be older); otherwise ``context`` is committed as
        the binding's new value.
        """
        existing = self._bindings.get(context.context_id)
        if existing is None:
            return self._register(context, context.context_type or fallback_type)

        self._check_type(existing, context)
        if not prefer_existing and context is not existing.current:
            existing.commit(self._normalize(context, existing.context_type))
        if existing.context_type == ContextType.MAIN:
            self._main_id = existing.context_id
        return existing

    def create_isolated(
        self, options: IsolatedContextOptions, active_binding: ContextBinding | None = None
    ) -> ContextBinding:
        base_binding = None
        if options.base_context_id:
            base_binding = self._bindings.get(options.base_context_id)
        base_binding = base_binding or active_binding or self.main_binding
        base = base_binding.current

        history: list[Message] = []
        if options.inherit_history:
            history.extend(sanitize_messages(base.message_history))
        history.extend(sanitize_messages(options.initial_messages))

        if options.system_instructions is not None:
            system_instructions = options.system_instructions
        elif options.inherit_system_instructions:
            system_instructions = base.system_instructions
        else:
            system_instructions = ""

        context_id = new_context_id()
        while context_id in self._bindings:
            context_id = new_context_id()

        isolated = FlowContext(
            context_id=context_id,
            context_type=ContextType.ISOLATED,
            provider=options.provider or base.provider,
            model=options.model or base.model,
            system_instructions=system_instructions,
            temperature=options.temperature,
            reasoning_effort=options.reasoning_effort,
            message_history=history,
            label=options.label,
            parent_context_id=base.context_id,
            created_by_node_id=options.created_by_node_id,
            created_at=utc_now_iso(),
        )
        return self._register(isolated, ContextType.ISOLATED)

    def release(self, context_id: str) -> bool:
        """Remove an isolated binding. The main binding is never released."""
        if not context_id or context_id == self._main_id:
            return False
        return self._bindings.pop(context_id, None) is not None

    def capture_state(self) -> dict[str, Any]:
        return {
            "main_context": self.main_binding.current.clone(),
            "isolated_contexts": {
                cid: b.current.clone()
                for cid, b in self._bindings.items()
                if b.context_type == ContextType.ISOLATED
            },
        }

    # --- internals -----------------------------------------------------

    def _register(
        self, context: FlowContext, context_type: ContextType, force_type: bool = False
    ) -> ContextBinding:
        if force_type or context.context_type is None:
            context = context.model_copy(update={"context_type": context_type})
        normalized = self._normalize(context, context.context_type or context_type)
        binding = ContextBinding(
            context_id=normalized.context_id,
            context_type=normalized.context_type,
            current=normalized,
        )
        self._bindings[binding.context_id] = binding
        if binding.context_type == ContextType.MAIN:
            if self._main_id and self._main_id != binding.context_id:
                logger.info(f"Main context switched: {self._main_id} -> {binding.context_id}")
            self._main_id = binding.context_id
        return binding

    @staticmethod
    def _normalize(context: FlowContext, context_type: ContextType) -> FlowContext:
        return context.model_copy(
            update={
                "context_type": context_type,
                "message_history": sanitize_messages(context.message_history),
            }
        )

    @staticmethod
    def _check_type(binding: ContextBinding, context: FlowContext) -> None:
        if context.context_type is not None and context.context_type != binding.context_type:
            raise ContextCollisionError(
                f"Context '{context.context_id}' is bound as {binding.context_type} "
                f"but arrived as {context.context_type}"
            )
