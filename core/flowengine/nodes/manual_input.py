"""manualInput - injects a fixed user message authored in the editor."""

from flowengine.graph.node import NodeMetadata, NodeOutput

METADATA = NodeMetadata(description="Appends a configured user message to the conversation.")


async def manual_input_node(flow_api, context, data, inputs, config) -> NodeOutput:
    message = config.get("message")
    if not isinstance(message, str) or not message.strip():
        flow_api.log.error("manualInput requires config.message")
        return NodeOutput.failure("manualInput node requires a message in its configuration")

    updated = flow_api.context.add_message({"role": "user", "content": message})
    return NodeOutput.success(context=updated, data=message)
