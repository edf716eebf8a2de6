"""LiteLLM-backed provider adapter.

Runs the tool-use loop itself: stream a completion, execute any requested
tools, feed the results back, and repeat until the model answers in text.
"""

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

import litellm

from flowengine.llm.provider import (
    LLMResponse,
    ProviderAdapter,
    Tool,
    ToolResult,
    ToolUse,
)

logger = logging.getLogger(__name__)


class _TaskHandle:
    def __init__(self, task: asyncio.Task):
        self._task = task

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()


class LiteLLMAdapter(ProviderAdapter):
    """
    ProviderAdapter over ``litellm.acompletion``.

    Args:
        api_key: Forwarded to litellm; None lets litellm read provider env vars
        api_base: Optional custom endpoint
        max_tool_iterations: Upper bound on tool round-trips per request
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        max_tool_iterations: int = 10,
    ):
        self.api_key = api_key
        self.api_base = api_base
        self.max_tool_iterations = max_tool_iterations

    def agent_stream(
        self,
        *,
        messages: list[dict[str, Any]],
        tools: list[Tool],
        model: str,
        provider: str = "",
        system: str = "",
        temperature: float | None = None,
        reasoning_effort: str | None = None,
        on_chunk: Callable[[str], None],
        on_done: Callable[[LLMResponse], None],
        on_error: Callable[[Exception], None],
        on_tool_start: Callable[[ToolUse], None] | None = None,
        on_tool_end: Callable[[ToolResult], None] | None = None,
    ) -> _TaskHandle:
        model_id = model if "/" in model or not provider else f"{provider}/{model}"

        async def run() -> None:
            try:
                response = await self._run_loop(
                    model_id=model_id,
                    messages=messages,
                    tools=tools,
                    system=system,
                    temperature=temperature,
                    reasoning_effort=reasoning_effort,
                    on_chunk=on_chunk,
                    on_tool_start=on_tool_start,
                    on_tool_end=on_tool_end,
                )
            except asyncio.CancelledError:
                logger.debug(f"Stream for {model_id} cancelled")
                raise
            except Exception as e:
                logger.error(f"LiteLLM stream failed for {model_id}: {e}")
                on_error(e)
                return
            on_done(response)

        return _TaskHandle(asyncio.create_task(run()))

    async def _run_loop(
        self,
        *,
        model_id: str,
        messages: list[dict[str, Any]],
        tools: list[Tool],
        system: str,
        temperature: float | None,
        reasoning_effort: str | None,
        on_chunk: Callable[[str], None],
        on_tool_start: Callable[[ToolUse], None] | None,
        on_tool_end: Callable[[ToolResult], None] | None,
    ) -> LLMResponse:
        conversation: list[dict[str, Any]] = []
        if system:
            conversation.append({"role": "system", "content": system})
        conversation.extend(messages)
        tools_by_name = {t.name: t for t in tools}

        input_tokens = 0
        output_tokens = 0
        text = ""
        stop_reason = ""

        for _ in range(self.max_tool_iterations):
            kwargs: dict[str, Any] = {
                "model": model_id,
                "messages": conversation,
                "stream": True,
                "stream_options": {"include_usage": True},
            }
            if tools:
                kwargs["tools"] = [t.to_schema() for t in tools]
            if temperature is not None:
                kwargs["temperature"] = temperature
            if reasoning_effort:
                kwargs["reasoning_effort"] = reasoning_effort
            if self.api_key:
                kwargs["api_key"] = self.api_key
            if self.api_base:
                kwargs["api_base"] = self.api_base

            stream = await litellm.acompletion(**kwargs)
            text = ""
            pending_calls: dict[int, dict[str, str]] = {}

            async for chunk in stream:
                usage = getattr(chunk, "usage", None)
                if usage:
                    input_tokens += getattr(usage, "prompt_tokens", 0) or 0
                    output_tokens += getattr(usage, "completion_tokens", 0) or 0
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                if getattr(delta, "content", None):
                    text += delta.content
                    on_chunk(delta.content)
                for call in getattr(delta, "tool_calls", None) or []:
                    slot = pending_calls.setdefault(
                        call.index, {"id": "", "name": "", "arguments": ""}
                    )
                    if call.id:
                        slot["id"] = call.id
                    if call.function and call.function.name:
                        slot["name"] = call.function.name
                    if call.function and call.function.arguments:
                        slot["arguments"] += call.function.arguments
                if choice.finish_reason:
                    stop_reason = choice.finish_reason

            if not pending_calls:
                break

            calls = [pending_calls[i] for i in sorted(pending_calls)]
            conversation.append(
                {
                    "role": "assistant",
                    "content": text or None,
                    "tool_calls": [
                        {
                            "id": c["id"],
                            "type": "function",
                            "function": {"name": c["name"], "arguments": c["arguments"] or "{}"},
                        }
                        for c in calls
                    ],
                }
            )
            for call in calls:
                result = await self._run_tool(call, tools_by_name, on_tool_start, on_tool_end)
                conversation.append(
                    {"role": "tool", "tool_call_id": result.tool_use_id, "content": result.content}
                )

        return LLMResponse(
            content=text,
            model=model_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            stop_reason=stop_reason,
        )

    async def _run_tool(
        self,
        call: dict[str, str],
        tools_by_name: dict[str, Tool],
        on_tool_start: Callable[[ToolUse], None] | None,
        on_tool_end: Callable[[ToolResult], None] | None,
    ) -> ToolResult:
        try:
            args = json.loads(call["arguments"] or "{}")
        except json.JSONDecodeError:
            args = {}
        tool_use = ToolUse(id=call["id"], name=call["name"], input=args)
        if on_tool_start:
            on_tool_start(tool_use)

        tool = tools_by_name.get(call["name"])
        if tool is None or tool.run is None:
            result = ToolResult(
                tool_use_id=call["id"], content=f"Unknown tool: {call['name']}", is_error=True
            )
        else:
            try:
                output = await tool.run(args, {"tool_call_id": call["id"]})
                content = output if isinstance(output, str) else json.dumps(output, default=str)
                result = ToolResult(tool_use_id=call["id"], content=content)
            except Exception as e:
                logger.warning(f"Tool '{call['name']}' raised: {e}")
                result = ToolResult(tool_use_id=call["id"], content=str(e), is_error=True)

        if on_tool_end:
            on_tool_end(result)
        return result
