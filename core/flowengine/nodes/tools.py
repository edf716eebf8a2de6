"""
tools - provides tool definitions to LLM nodes.

Pull-only: it never runs from a push. An llmRequest with a ``tools`` edge
pulls it when it needs the list.

Config:
    tools: "auto" (every registered tool) or a list of tool names
    mcpEnabled: default for ``mcp_<plugin>_*`` tools (True)
    mcpPlugins: per-plugin overrides, ``{"github": false}``
"""

import json
from typing import Any

from flowengine.graph.node import NodeMetadata, NodeOutput
from flowengine.llm.provider import Tool

MCP_TOOL_PREFIX = "mcp_"

METADATA = NodeMetadata(
    pull_only=True,
    description="Provides a list of tools to chat nodes. Can be configured to provide all tools or a subset.",
)


def normalize_tool_name(name: str) -> str:
    """Legacy ``fs:read`` spelling becomes ``fsRead``."""
    if ":" not in name:
        return name
    prefix, _, suffix = name.partition(":")
    return prefix + (suffix[:1].upper() + suffix[1:] if suffix else "")


def mcp_plugin_id(tool_name: str) -> str | None:
    if not tool_name.startswith(MCP_TOOL_PREFIX):
        return None
    plugin, sep, _ = tool_name[len(MCP_TOOL_PREFIX) :].partition("_")
    return plugin if sep and plugin else None


def plugin_checker(config: dict[str, Any]):
    default = config.get("mcpEnabled") is not False
    overrides = config.get("mcpPlugins") if isinstance(config.get("mcpPlugins"), dict) else {}

    def enabled(plugin_id: str | None) -> bool:
        if not plugin_id:
            return True
        if plugin_id in overrides:
            return overrides[plugin_id] is not False
        return default

    return enabled


def merge_tools(selected: list[Tool], available: list[Tool], enabled) -> list[Tool]:
    """Selected tools first, then every enabled MCP tool; de-duplicated by name."""
    seen: set[str] = set()
    merged: list[Tool] = []

    def add(tool: Tool) -> None:
        if not enabled(mcp_plugin_id(tool.name)) or tool.name in seen:
            return
        seen.add(tool.name)
        merged.append(tool)

    for tool in selected:
        add(tool)
    for tool in available:
        if mcp_plugin_id(tool.name):
            add(tool)
    return merged


def _select(available: list[Tool], names: list[Any]) -> list[Tool]:
    requested = {normalize_tool_name(n) for n in names if isinstance(n, str)}
    return [t for t in available if t.name in requested]


async def tools_node(flow_api, context, data, inputs, config) -> NodeOutput:
    available = flow_api.tools.list()
    requested = config.get("tools") or "auto"

    if requested == "auto":
        selected = available
    elif isinstance(requested, list):
        selected = _select(available, requested)
    else:
        flow_api.log.warning(f"Ignoring unsupported tools config: {requested!r}")
        selected = []

    dynamic = data
    if dynamic is None and inputs.has("data"):
        dynamic = await inputs.pull("data")
    if isinstance(dynamic, str) and dynamic.strip():
        try:
            names = json.loads(dynamic)
        except json.JSONDecodeError:
            names = None
        if isinstance(names, list):
            selected = _select(available, names)
            flow_api.log.debug(f"Dynamic tool selection: {len(selected)} of {len(names)} found")

    output = merge_tools(selected, available, plugin_checker(config))
    flow_api.log.debug(f"Providing {len(output)} tool(s)")
    return NodeOutput.success(context=context, tools=output)
