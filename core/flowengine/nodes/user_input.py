"""userInput - pauses the run until the user types a message."""

from flowengine.graph.node import NodeMetadata, NodeOutput

METADATA = NodeMetadata(description="Waits for user input and appends it to the conversation.")


async def user_input_node(flow_api, context, data, inputs, config) -> NodeOutput:
    prompt = config.get("prompt", "")
    text = await flow_api.wait_for_user_input(prompt)
    flow_api.log.debug(f"Received user input ({len(text)} chars)")

    updated = flow_api.context.add_message({"role": "user", "content": text})
    return NodeOutput.success(context=updated, data=text)
