"""
errorDetection - catches failures and suspicious output before they spread.

Declared with ``handles_errors``: when a predecessor fails, the scheduler
pushes a NodeError here instead of stopping the run.

Config:
    enabled: default True
    patterns: case-insensitive substrings (or ``/regex/``) that flag text
    blockOnFlag: turn a flag into status error

Clean values continue on ``data``; flagged payloads go out on ``error``.
"""

import re
from typing import Any

from flowengine.graph.errors import NodeError
from flowengine.graph.node import NodeMetadata, NodeOutput
from flowengine.nodes.common import as_text, resolve_data

METADATA = NodeMetadata(
    handles_errors=True,
    description="Flags upstream errors or text matching error patterns and routes them to the error output.",
)


def find_pattern(text: str, patterns: list[str]) -> str | None:
    for pattern in patterns:
        if not isinstance(pattern, str) or not pattern:
            continue
        if len(pattern) > 2 and pattern.startswith("/") and pattern.endswith("/"):
            if re.search(pattern[1:-1], text, re.IGNORECASE):
                return pattern
        elif pattern.lower() in text.lower():
            return pattern
    return None


def _flag(value: Any, patterns: list[str]) -> dict[str, Any] | None:
    if isinstance(value, NodeError):
        return {"reason": "upstream_error", "node_id": value.node_id, "message": value.message}
    matched = find_pattern(as_text(value), patterns)
    if matched is not None:
        return {"reason": "pattern", "pattern": matched, "message": as_text(value)}
    return None


async def error_detection_node(flow_api, context, data, inputs, config) -> NodeOutput:
    value = await resolve_data(data, inputs)
    if config.get("enabled", True) is False and not isinstance(value, NodeError):
        return NodeOutput.success(context=context, data=value, metadata={"flagged": False})

    flag = _flag(value, config.get("patterns") or [])
    if flag is None:
        return NodeOutput.success(context=context, data=value, metadata={"flagged": False})

    flow_api.log.warning(f"Flagged ({flag['reason']}): {flag['message'][:120]}")
    flow_api.conversation.add_badge("error", "Error detected", reason=flag["reason"])
    if config.get("blockOnFlag"):
        return NodeOutput.failure(f"Error detected: {flag['message']}", metadata={"flagged": True, **flag})
    return NodeOutput.success(context=context, ports={"error": flag}, metadata={"flagged": True, **flag})
