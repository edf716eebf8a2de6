"""
portalOutput - relays the context stored by the matching portalInput.

Pull-only; normally started by its portalInput. It is a context-only relay
and never emits data, which keeps loop-back edges unambiguous.
"""

from flowengine.graph.node import NodeMetadata, NodeOutput

METADATA = NodeMetadata(
    pull_only=True,
    description="Retrieves the context stored by the matching portal input node.",
)


async def portal_output_node(flow_api, context, data, inputs, config) -> NodeOutput:
    portal_id = config.get("id")
    if not portal_id:
        flow_api.log.error("portalOutput requires an id")
        return NodeOutput.failure("Portal Output node requires an ID configuration", context=context)

    entry = flow_api.get_portal_data(portal_id)
    if entry is None:
        flow_api.log.debug(f"No portal data for '{portal_id}' yet; passing through")
        return NodeOutput.success(context=context)

    return NodeOutput.success(context=entry.context or context)
