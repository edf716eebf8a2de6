"""
llmRequest - sends one user turn to the active context's model.

The user message comes from ``data`` (a string or ``{"message": ...}``), a
pulled ``data`` input, or failing both, the last user message already in the
history. Tools are pulled when a ``tools`` edge is wired. The user message
and the assistant reply are appended to the active context.
"""

from flowengine.config import DEFAULT_MODEL, DEFAULT_PROVIDER
from flowengine.graph.node import NodeMetadata, NodeOutput
from flowengine.llm.provider import LLMResponse, ToolResult, ToolUse, stream_completion
from flowengine.nodes.common import as_text, resolve_data
from flowengine.runtime.cancellation import is_cancellation
from flowengine.runtime.event_bus import FlowEventType

METADATA = NodeMetadata(
    description="Sends a message to the configured LLM provider and returns the assistant response."
)


def _apply_settings(manager, config: dict) -> None:
    current = manager.get()
    manager.set_provider_model(
        current.provider or config.get("provider") or DEFAULT_PROVIDER,
        current.model or config.get("model") or DEFAULT_MODEL,
    )

    updates = {}
    instructions = config.get("systemInstructions")
    if isinstance(instructions, str) and instructions.strip():
        updates["system_instructions"] = instructions
    if isinstance(config.get("temperature"), int | float):
        updates["temperature"] = float(config["temperature"])
    if config.get("reasoningEffort"):
        updates["reasoning_effort"] = config["reasoningEffort"]

    if config.get("overrideEnabled"):
        manager.set_provider_model(config.get("overrideProvider"), config.get("overrideModel"))
        if isinstance(config.get("overrideTemperature"), int | float):
            updates["temperature"] = float(config["overrideTemperature"])
        if config.get("overrideReasoningEffort"):
            updates["reasoning_effort"] = config["overrideReasoningEffort"]

    if updates:
        manager.update(**updates)


async def llm_request_node(flow_api, context, data, inputs, config) -> NodeOutput:
    manager = flow_api.context
    message = as_text(await resolve_data(data, inputs))
    if not message:
        last_user = manager.get().last_message("user")
        message = last_user.content if last_user else ""
    if not message:
        flow_api.log.error("llmRequest: no message provided")
        return NodeOutput.failure("No message provided to LLM Request node")

    if flow_api.provider is None:
        return NodeOutput.failure("No LLM provider configured for this run")

    _apply_settings(manager, config)

    # Skip the append when the message is already the last user turn
    last = manager.get().message_history[-1:] or [None]
    if not (last[0] is not None and last[0].role == "user" and last[0].content == message):
        manager.add_message({"role": "user", "content": message})

    tools = []
    if inputs.has("tools"):
        pulled = await inputs.pull("tools")
        tools = list(pulled or [])

    snapshot = manager.get()
    badges: dict[str, str] = {}

    def on_tool_start(call: ToolUse) -> None:
        badges[call.id] = flow_api.conversation.add_badge("tool", call.name, status="running")
        flow_api.emit_event(FlowEventType.TOOL_START, tool=call.name, call_id=call.id, args=call.input)

    def on_tool_end(result: ToolResult) -> None:
        status = "error" if result.is_error else "success"
        if result.tool_use_id in badges:
            flow_api.conversation.update_badge(badges[result.tool_use_id], status=status)
        event = FlowEventType.TOOL_ERROR if result.is_error else FlowEventType.TOOL_END
        flow_api.emit_event(event, call_id=result.tool_use_id)

    flow_api.log.info(
        f"Requesting {snapshot.provider}/{snapshot.model} "
        f"({len(snapshot.message_history)} message(s), {len(tools)} tool(s))"
    )
    try:
        response: LLMResponse = await stream_completion(
            flow_api.provider,
            messages=snapshot.to_llm_messages(),
            tools=tools,
            model=snapshot.model,
            provider_name=snapshot.provider,
            system=snapshot.system_instructions,
            temperature=snapshot.temperature,
            reasoning_effort=snapshot.reasoning_effort,
            token=flow_api.token,
            on_chunk=flow_api.conversation.stream_chunk,
            on_tool_start=on_tool_start,
            on_tool_end=on_tool_end,
        )
    except Exception as e:
        if is_cancellation(e):
            raise
        flow_api.log.error(f"llmRequest: provider error: {e}")
        return NodeOutput.failure(str(e) or e.__class__.__name__, context=manager.get())

    if response.reasoning:
        flow_api.conversation.stream_reasoning(response.reasoning)
    flow_api.usage.report(
        snapshot.provider, response.model or snapshot.model, response.input_tokens, response.output_tokens
    )

    assistant = {"role": "assistant", "content": response.content}
    if response.reasoning:
        assistant["reasoning"] = response.reasoning
    updated = manager.add_message(assistant)
    return NodeOutput.success(context=updated, data=response.content)
