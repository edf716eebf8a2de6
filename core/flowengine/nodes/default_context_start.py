"""defaultContextStart - entry point of the main conversation."""

from flowengine.graph.context import FlowContext, Message
from flowengine.graph.node import NodeMetadata, NodeOutput

METADATA = NodeMetadata(description="Entry point for the main conversation flow.")


def trim_unpaired_tail(history: list[Message]) -> list[Message]:
    """
    Drop trailing entries until the history ends with a user message followed
    by a non-blank assistant reply. System messages are left where they are.
    """
    trimmed = list(history)
    while True:
        turns = [i for i, m in enumerate(trimmed) if m.role != "system"]
        if not turns:
            return trimmed
        last = turns[-1]
        message = trimmed[last]
        if message.role == "user" or not message.content.strip():
            del trimmed[last]
            continue
        if len(turns) < 2 or trimmed[turns[-2]].role != "user":
            del trimmed[last]
            continue
        return trimmed


async def default_context_start_node(flow_api, context: FlowContext | None, data, inputs, config) -> NodeOutput:
    manager = flow_api.context
    snapshot = context or manager.get()
    run_config = flow_api.run.config

    manager.set_provider_model(
        snapshot.provider or run_config.provider or "openai",
        snapshot.model or run_config.model or "gpt-4o",
    )

    updates = {}
    instructions = config.get("systemInstructions")
    if inputs.has("systemInstructions"):
        pulled = await inputs.pull("systemInstructions")
        if isinstance(pulled, str):
            instructions = pulled
    if instructions:
        updates["system_instructions"] = instructions
    if isinstance(config.get("temperature"), int | float):
        updates["temperature"] = float(config["temperature"])
    if config.get("reasoningEffort"):
        updates["reasoning_effort"] = config["reasoningEffort"]
    if updates:
        manager.update(**updates)

    history = manager.get().message_history
    cleaned = trim_unpaired_tail(history)
    if len(cleaned) != len(history):
        flow_api.log.warning(
            f"Sanitized message history: removed {len(history) - len(cleaned)} trailing message(s)"
        )
        manager.replace_history(cleaned)

    output = manager.get()
    flow_api.log.debug(
        f"Main context ready: {output.provider}/{output.model}, {len(output.message_history)} message(s)"
    )
    return NodeOutput.success(context=output)
