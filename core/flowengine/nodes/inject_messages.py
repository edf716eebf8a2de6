"""injectMessages - seeds the history with a canned user/assistant exchange."""

from flowengine.graph.context import Message
from flowengine.graph.node import NodeMetadata, NodeOutput

METADATA = NodeMetadata(description="Injects a user/assistant pair into the context history.")


async def _message(inputs, port: str, fallback) -> str:
    if inputs.has(port):
        value = await inputs.pull(port)
        if isinstance(value, str) and value.strip():
            return value.strip()
    if isinstance(fallback, str) and fallback.strip():
        return fallback.strip()
    return ""


def upsert_pair(history: list[Message], pair: list[dict], mode: str) -> list[Message | dict]:
    """Replace an earlier injection of the same pair in place, else insert it."""
    ids = [m["metadata"]["id"] for m in pair]
    positions = [
        next((i for i, m in enumerate(history) if (m.metadata or {}).get("id") == mid), -1) for mid in ids
    ]
    if all(p >= 0 for p in positions):
        updated: list[Message | dict] = list(history)
        for position, message in zip(positions, pair, strict=True):
            updated[position] = message
        return updated
    if mode == "append":
        return [*history, *pair]
    return [*pair, *history]


async def inject_messages_node(flow_api, context, data, inputs, config) -> NodeOutput:
    user = await _message(inputs, "userMessage", config.get("staticUserMessage"))
    assistant = await _message(inputs, "assistantMessage", config.get("staticAssistantMessage"))
    if not user:
        return NodeOutput.failure("User message is required for injectMessages")
    if not assistant:
        return NodeOutput.failure("Assistant message is required for injectMessages")

    prefix = str(config.get("id") or flow_api.node_id)
    extra = {}
    if config.get("pinned"):
        priority = config.get("priority")
        extra = {"pinned": True, "priority": priority if isinstance(priority, int | float) else 50}
    pair = [
        {"role": "user", "content": user, "metadata": {"id": f"{prefix}-user", **extra}},
        {"role": "assistant", "content": assistant, "metadata": {"id": f"{prefix}-assistant", **extra}},
    ]
    mode = "append" if config.get("injectionMode") == "append" else "prepend"

    manager = flow_api.context
    updated = manager.replace_history(upsert_pair(manager.get().message_history, pair, mode))
    return NodeOutput.success(
        context=updated, data={"userMessage": user, "assistantMessage": assistant}
    )
