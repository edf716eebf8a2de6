"""approvalGate - holds the flow until a human approves."""

from flowengine.graph.node import NodeMetadata, NodeOutput

METADATA = NodeMetadata(description="Pauses the flow until it is resumed with an approval.")


async def approval_gate_node(flow_api, context, data, inputs, config) -> NodeOutput:
    if not config.get("requireApproval"):
        return NodeOutput.success(context=context, data=data)

    if flow_api.resume_value is None:
        flow_api.log.info("⏸ Waiting for approval")
        return NodeOutput.waiting(reason=config.get("message") or "approval_required")

    if not flow_api.resume_value:
        return NodeOutput.failure("Approval rejected")
    flow_api.log.info("Approved")
    return NodeOutput.success(context=context, data=data, metadata={"approved": True})
