"""newContext - starts an isolated conversation branch."""

from flowengine.config import DEFAULT_MODEL, DEFAULT_PROVIDER
from flowengine.graph.context_registry import IsolatedContextOptions
from flowengine.graph.node import NodeMetadata, NodeOutput

METADATA = NodeMetadata(
    description="Creates an isolated context with its own model and instructions. History starts empty."
)


async def new_context_node(flow_api, context, data, inputs, config) -> NodeOutput:
    temperature = config.get("temperature")
    options = IsolatedContextOptions(
        provider=config.get("provider") or DEFAULT_PROVIDER,
        model=config.get("model") or DEFAULT_MODEL,
        system_instructions=config.get("systemInstructions") or "",
        label=config.get("label"),
        temperature=float(temperature) if isinstance(temperature, int | float) else None,
        reasoning_effort=config.get("reasoningEffort"),
    )
    isolated = flow_api.contexts.create_isolated(options)
    flow_api.log.info(
        f"Created isolated context {isolated.context_id} ({isolated.provider}/{isolated.model})"
    )
    return NodeOutput.success(context=isolated, data=data)
