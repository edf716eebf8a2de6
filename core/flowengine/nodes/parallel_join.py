"""
parallelJoin - waits for every wired ``data-N`` input, then combines them.

Config:
    mode: "list" (default) or "concat"
    separator: joiner for concat mode ("\\n\\n")
"""

import re

from flowengine.graph.node import ExecutionPolicy, NodeMetadata, NodeOutput
from flowengine.nodes.common import as_text

METADATA = NodeMetadata(
    execution_policy=ExecutionPolicy.ALL,
    description="Blocks until every wired branch has delivered, then merges the results.",
)

_DATA_PORT = re.compile(r"^data-(\d+)$")


def _port_order(port: str) -> int:
    match = _DATA_PORT.match(port)
    return int(match.group(1)) if match else 0


async def parallel_join_node(flow_api, context, data, inputs, config) -> NodeOutput:
    wired = sorted((p for p in flow_api.wired_inputs() if _DATA_PORT.match(p)), key=_port_order)
    values = []
    if data is not None:
        values.append(data)
    for port in wired:
        values.append(await inputs.pull(port))

    if config.get("mode") == "concat":
        separator = config.get("separator", "\n\n")
        return NodeOutput.success(context=context, data=separator.join(as_text(v) for v in values))
    return NodeOutput.success(context=context, data=values)
