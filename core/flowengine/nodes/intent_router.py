"""
intentRouter - routes a message to one of several named branches.

Config:
    routes: {"greeting": "User is saying hello", "question": ["?", "how"]}
        A string value describes the intent for the model; a list value gives
        keywords for offline matching.
    provider, model: classifier model (defaults to the active context's)
    mode: "llm" (default when a provider is available) or "keywords"
    defaultIntent: used when keyword matching finds nothing

Only the matched intent's ``{intent}-context`` and ``{intent}-data`` ports
are emitted, so only that branch runs.
"""

import json
import re

from flowengine.graph.node import NodeMetadata, NodeOutput
from flowengine.llm.provider import stream_completion
from flowengine.nodes.common import as_text, resolve_data
from flowengine.runtime.cancellation import is_cancellation
from flowengine.runtime.event_bus import FlowEventType

METADATA = NodeMetadata(
    description="Classifies the message into one of the configured intents and routes to that branch."
)


def build_classification_prompt(message: str, routes: dict) -> str:
    lines = []
    for intent, description in routes.items():
        if isinstance(description, list):
            description = ", ".join(str(k) for k in description)
        lines.append(f"- {intent}: {description}")
    intent_list = "\n".join(lines)
    return (
        "You are an intent classifier. Given a user message, classify it into one of "
        f"the following intents:\n{intent_list}\n\n"
        f'User message: "{message}"\n\n'
        'Reply with JSON only: {"intent": "<one of the intents above>"}'
    )


def parse_intent(text: str, intents: list[str]) -> str | None:
    """Read ``{"intent": ...}``; fall back to the first intent named in the text."""
    match = re.search(r"\{.*\}", text, re.DOTALL)
    if match:
        try:
            intent = json.loads(match.group(0)).get("intent")
        except (json.JSONDecodeError, AttributeError):
            intent = None
        if intent in intents:
            return intent
    lowered = text.lower()
    for intent in intents:
        if intent.lower() in lowered:
            return intent
    return None


def match_keywords(message: str, routes: dict) -> str | None:
    lowered = message.lower()
    for intent, route in routes.items():
        keywords = route if isinstance(route, list) else [intent]
        if any(str(k).lower() in lowered for k in keywords if str(k)):
            return intent
    return None


async def intent_router_node(flow_api, context, data, inputs, config) -> NodeOutput:
    message = as_text(await resolve_data(data, inputs))
    if not message:
        return NodeOutput.failure("intentRouter node requires data input (user message)")

    routes = config.get("routes")
    if not isinstance(routes, dict) or not routes:
        return NodeOutput.failure("intentRouter node requires at least one intent in config.routes")
    intents = list(routes)

    active = flow_api.context.get()
    provider_name = config.get("provider") or active.provider
    model = config.get("model") or active.model
    use_llm = config.get("mode", "llm") != "keywords" and flow_api.provider is not None

    if use_llm:
        flow_api.log.debug(f"Classifying intent with {provider_name}/{model} over {intents}")
        try:
            response = await stream_completion(
                flow_api.provider,
                messages=[{"role": "user", "content": build_classification_prompt(message, routes)}],
                model=model,
                provider_name=provider_name,
                temperature=0.0,
                token=flow_api.token,
            )
        except Exception as e:
            if is_cancellation(e):
                raise
            return NodeOutput.failure(f"Intent classification failed: {e}")
        flow_api.usage.report(provider_name, model, response.input_tokens, response.output_tokens)
        intent = parse_intent(response.content, intents)
        if intent is None:
            return NodeOutput.failure(
                f"Invalid intent returned from LLM: {response.content!r}. Expected one of: {', '.join(intents)}"
            )
    else:
        intent = match_keywords(message, routes) or config.get("defaultIntent")
        if intent not in routes:
            return NodeOutput.failure(f"No intent matched and no valid defaultIntent (got {intent!r})")

    flow_api.log.info(f"Intent classified: {intent}")
    flow_api.emit_event(FlowEventType.INTENT_DETECTED, intent=intent, provider=provider_name, model=model)

    return NodeOutput.success(
        context=context,
        data=message,
        ports={f"{intent}-context": context, f"{intent}-data": message},
        metadata={"intent": intent},
    )
