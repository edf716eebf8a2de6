"""
Built-in node kinds.

Each module exposes one ``*_node`` coroutine function and its ``METADATA``.
``default_registry()`` returns a fresh NodeRegistry holding all of them;
callers may register extra kinds on their copy.
"""

from flowengine.graph.node import NodeRegistry
from flowengine.nodes import (
    approval_gate,
    budget_guard,
    cache,
    conditional,
    default_context_start,
    error_detection,
    inject_messages,
    intent_router,
    llm_request,
    manual_input,
    new_context,
    parallel_join,
    parallel_split,
    portal_input,
    portal_output,
    redactor,
    retry_with_backoff,
    tools,
    user_input,
)

BUILTIN_NODES = {
    "defaultContextStart": (default_context_start.default_context_start_node, default_context_start.METADATA),
    "userInput": (user_input.user_input_node, user_input.METADATA),
    "manualInput": (manual_input.manual_input_node, manual_input.METADATA),
    "newContext": (new_context.new_context_node, new_context.METADATA),
    "llmRequest": (llm_request.llm_request_node, llm_request.METADATA),
    "tools": (tools.tools_node, tools.METADATA),
    "injectMessages": (inject_messages.inject_messages_node, inject_messages.METADATA),
    "intentRouter": (intent_router.intent_router_node, intent_router.METADATA),
    "conditional": (conditional.conditional_node, conditional.METADATA),
    "portalInput": (portal_input.portal_input_node, portal_input.METADATA),
    "portalOutput": (portal_output.portal_output_node, portal_output.METADATA),
    "parallelSplit": (parallel_split.parallel_split_node, parallel_split.METADATA),
    "parallelJoin": (parallel_join.parallel_join_node, parallel_join.METADATA),
    "cache": (cache.cache_node, cache.METADATA),
    "redactor": (redactor.redactor_node, redactor.METADATA),
    "budgetGuard": (budget_guard.budget_guard_node, budget_guard.METADATA),
    "errorDetection": (error_detection.error_detection_node, error_detection.METADATA),
    "approvalGate": (approval_gate.approval_gate_node, approval_gate.METADATA),
    "retryWithBackoff": (retry_with_backoff.retry_with_backoff_node, retry_with_backoff.METADATA),
}


def default_registry() -> NodeRegistry:
    registry = NodeRegistry()
    for kind, (function, metadata) in BUILTIN_NODES.items():
        registry.register(kind, function, metadata)
    return registry


__all__ = ["BUILTIN_NODES", "default_registry"]
