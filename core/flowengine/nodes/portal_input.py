"""
portalInput - stores context/data under a portal id, then wakes the matching
portalOutput nodes. Used for loop-backs without drawing an edge.
"""

from flowengine.graph.node import UNSET, NodeMetadata, NodeOutput

METADATA = NodeMetadata(description="Stores data for retrieval by matching portal output nodes.")


async def portal_input_node(flow_api, context, data, inputs, config) -> NodeOutput:
    portal_id = config.get("id")
    if not portal_id:
        flow_api.log.error("portalInput requires an id")
        return NodeOutput.failure("Portal Input node requires an ID configuration", context=context)

    if data is None and inputs.has("data"):
        data = await inputs.pull("data")
    if context is None and data is None:
        return NodeOutput.failure(
            "Portal Input node requires at least one input (context or data)", context=context
        )

    flow_api.set_portal_data(portal_id, context=context, data=UNSET if data is None else data)
    flow_api.log.debug(f"Stored portal '{portal_id}' (data={'yes' if data is not None else 'no'})")
    await flow_api.trigger_portal_outputs(portal_id)
    return NodeOutput.success(context=context)
