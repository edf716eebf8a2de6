"""Helpers shared by the built-in nodes."""

import json
from typing import Any

from flowengine.graph.node import NodeInputs


def as_text(value: Any) -> str:
    """Render a data value as message text (JSON for structured values)."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and isinstance(value.get("message"), str):
        return value["message"]
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)


async def resolve_data(data: Any, inputs: NodeInputs, port: str = "data") -> Any:
    """The pushed value, else the pulled one when ``port`` is wired."""
    if data is not None:
        return data
    if inputs.has(port):
        return await inputs.pull(port)
    return None
