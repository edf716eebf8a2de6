"""
redactor - scrubs secrets and personal data from string values.

Config:
    enabled: default True
    rules: any of "emails", "apiKeys", "awsKeys", "numbers16" (default: all);
        the editor's ``ruleEmails``/``ruleApiKeys``/``ruleAwsKeys``/
        ``ruleNumbers16`` flags are honoured too
"""

import re
from typing import Any

from flowengine.graph.node import NodeMetadata, NodeOutput
from flowengine.nodes.common import resolve_data

METADATA = NodeMetadata(description="Redacts emails, API keys, AWS keys and long digit runs from text.")

RULES: dict[str, tuple[re.Pattern, str]] = {
    "emails": (re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"), "[REDACTED_EMAIL]"),
    "awsKeys": (re.compile(r"\b(?:AKIA|ASIA)[0-9A-Z]{16}\b"), "[REDACTED_AWS_KEY]"),
    "apiKeys": (
        re.compile(r"\b(?:sk|pk|rk)-[A-Za-z0-9_-]{16,}\b|\b(?:ghp|gho|xox[abp])[-_][A-Za-z0-9-]{16,}\b"),
        "[REDACTED_API_KEY]",
    ),
    "numbers16": (re.compile(r"\b\d(?:[ -]?\d){15,}\b"), "[REDACTED_NUMBER]"),
}

_FLAG_NAMES = {
    "ruleEmails": "emails",
    "ruleApiKeys": "apiKeys",
    "ruleAwsKeys": "awsKeys",
    "ruleNumbers16": "numbers16",
}


def active_rules(config: dict[str, Any]) -> list[str]:
    if isinstance(config.get("rules"), list):
        return [r for r in config["rules"] if r in RULES]
    flagged = [rule for flag, rule in _FLAG_NAMES.items() if config.get(flag)]
    if any(flag in config for flag in _FLAG_NAMES):
        return flagged
    return list(RULES)


def redact_text(text: str, rules: list[str]) -> tuple[str, dict[str, int]]:
    counts: dict[str, int] = {}
    for rule in rules:
        pattern, replacement = RULES[rule]
        text, n = pattern.subn(replacement, text)
        if n:
            counts[rule] = n
    return text, counts


def redact_value(value: Any, rules: list[str], counts: dict[str, int]) -> Any:
    """Redact strings anywhere inside lists and dicts."""
    if isinstance(value, str):
        redacted, found = redact_text(value, rules)
        for rule, n in found.items():
            counts[rule] = counts.get(rule, 0) + n
        return redacted
    if isinstance(value, list):
        return [redact_value(v, rules, counts) for v in value]
    if isinstance(value, dict):
        return {k: redact_value(v, rules, counts) for k, v in value.items()}
    return value


async def redactor_node(flow_api, context, data, inputs, config) -> NodeOutput:
    value = await resolve_data(data, inputs)
    if config.get("enabled", True) is False:
        return NodeOutput.success(context=context, data=value, metadata={"redactions": {}})

    counts: dict[str, int] = {}
    redacted = redact_value(value, active_rules(config), counts)
    if counts:
        flow_api.log.info(f"Redacted {sum(counts.values())} item(s): {counts}")
    return NodeOutput.success(context=context, data=redacted, metadata={"redactions": counts})
