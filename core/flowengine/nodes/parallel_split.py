"""parallelSplit - fans one value out to independent branches."""

from flowengine.graph.node import NodeMetadata, NodeOutput
from flowengine.nodes.common import resolve_data

METADATA = NodeMetadata(description="Copies its input to out-1..out-N so each branch runs concurrently.")


async def parallel_split_node(flow_api, context, data, inputs, config) -> NodeOutput:
    try:
        branches = int(config.get("branches", 2))
    except (TypeError, ValueError):
        return NodeOutput.failure(f"parallelSplit: invalid branches {config.get('branches')!r}")
    if branches < 1:
        return NodeOutput.failure("parallelSplit needs at least one branch")

    value = await resolve_data(data, inputs)
    return NodeOutput.success(
        context=context,
        data=value,
        ports={f"out-{i}": value for i in range(1, branches + 1)},
    )
