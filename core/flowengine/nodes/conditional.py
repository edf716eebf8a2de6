"""
conditional - picks an output branch by testing the incoming data.

Config:
    conditions: [{"operator": "contains", "value": "refund"}, ...]
        operator is one of contains, equals, regex, empty; the Nth condition
        maps to port ``out-N``. ``caseSensitive`` defaults to False.

The first matching condition wins; with no match the value goes to ``else``.
Each branch also emits the context on ``{branch}-context`` so a branch can
be wired without the plain ``context`` port, which fires on every route.
"""

import re
from typing import Any

from flowengine.graph.node import NodeMetadata, NodeOutput
from flowengine.nodes.common import as_text, resolve_data

METADATA = NodeMetadata(description="Routes data to the first output whose condition matches.")

OPERATORS = ("contains", "equals", "regex", "empty")


def evaluate(condition: dict[str, Any], value: Any) -> bool:
    operator = condition.get("operator", "contains")
    if operator == "empty":
        return value is None or as_text(value).strip() == ""

    text = as_text(value)
    expected = str(condition.get("value", ""))
    flags = 0
    if not condition.get("caseSensitive", False):
        text, expected = text.lower(), expected.lower()
        flags = re.IGNORECASE
    if operator == "contains":
        return expected in text
    if operator == "equals":
        return text.strip() == expected.strip()
    if operator == "regex":
        return re.search(str(condition.get("value", "")), as_text(value), flags) is not None
    raise ValueError(f"Unknown condition operator '{operator}'")


async def conditional_node(flow_api, context, data, inputs, config) -> NodeOutput:
    value = await resolve_data(data, inputs)
    conditions = config.get("conditions") or []

    for index, condition in enumerate(conditions, start=1):
        if condition.get("operator", "contains") not in OPERATORS:
            return NodeOutput.failure(f"Condition {index} has unknown operator {condition.get('operator')!r}")
        try:
            matched = evaluate(condition, value)
        except re.error as e:
            return NodeOutput.failure(f"Condition {index} has an invalid regex: {e}")
        if matched:
            flow_api.log.debug(f"Condition {index} matched")
            return NodeOutput.success(
                context=context,
                ports={f"out-{index}": value, f"out-{index}-context": context},
                metadata={"branch": f"out-{index}"},
            )

    flow_api.log.debug("No condition matched; routing to else")
    return NodeOutput.success(
        context=context, ports={"else": value, "else-context": context}, metadata={"branch": "else"}
    )
