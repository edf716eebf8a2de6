"""Provider adapter abstraction and the tool contract nodes hand to providers."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from flowengine.runtime.cancellation import CancellationToken, FlowCancelledError

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Final result of one streamed completion."""

    content: str
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str = ""
    reasoning: str = ""
    raw_response: Any = None


@dataclass
class Tool:
    """
    A tool the LLM can call.

    ``run(args, meta)`` may raise; callers translate exceptions into a
    node-level ``status="error"``.
    """

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)
    run: Callable[[dict[str, Any], dict[str, Any]], Awaitable[Any]] | None = None

    def to_schema(self) -> dict[str, Any]:
        """OpenAI-style function schema, the lingua franca of provider SDKs."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters or {"type": "object", "properties": {}},
            },
        }


@dataclass
class ToolUse:
    """A tool call requested by the LLM."""

    id: str
    name: str
    input: dict[str, Any]


@dataclass
class ToolResult:
    """Result of executing a tool."""

    tool_use_id: str
    content: str
    is_error: bool = False


class StreamHandle(Protocol):
    def cancel(self) -> None: ...


class ProviderAdapter(ABC):
    """
    Streaming chat/tool-call interface driven by ``llmRequest`` nodes.

    Implementations must call exactly one of ``on_done`` / ``on_error`` per
    invocation and must not call ``on_chunk`` after that.
    """

    @abstractmethod
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
    ) -> StreamHandle:
        """Start a streamed completion and return a handle that can cancel it."""


async def stream_completion(
    provider: ProviderAdapter,
    *,
    messages: list[dict[str, Any]],
    tools: list[Tool] | None = None,
    model: str,
    provider_name: str = "",
    system: str = "",
    temperature: float | None = None,
    reasoning_effort: str | None = None,
    token: CancellationToken | None = None,
    on_chunk: Callable[[str], None] | None = None,
    on_tool_start: Callable[[ToolUse], None] | None = None,
    on_tool_end: Callable[[ToolResult], None] | None = None,
) -> LLMResponse:
    """
    Await one ``agent_stream`` call.

    The callback API is settled into a single future: the first of
    on_done/on_error wins and everything after settlement is dropped.
    Cancelling ``token`` cancels the provider stream and raises
    FlowCancelledError.
    """
    loop = asyncio.get_running_loop()
    result: asyncio.Future[LLMResponse] = loop.create_future()

    def settled() -> bool:
        return result.done()

    def handle_chunk(text: str) -> None:
        if settled():
            logger.debug("Dropping chunk received after stream settled")
            return
        if on_chunk is not None:
            on_chunk(text)

    def handle_done(response: LLMResponse) -> None:
        if not settled():
            result.set_result(response)

    def handle_error(error: Exception) -> None:
        if not settled():
            result.set_exception(error)

    if token is not None:
        token.check()

    handle = provider.agent_stream(
        messages=messages,
        tools=tools or [],
        model=model,
        provider=provider_name,
        system=system,
        temperature=temperature,
        reasoning_effort=reasoning_effort,
        on_chunk=handle_chunk,
        on_done=handle_done,
        on_error=handle_error,
        on_tool_start=on_tool_start,
        on_tool_end=on_tool_end,
    )

    def abort() -> None:
        handle.cancel()
        if not settled():
            result.set_exception(FlowCancelledError())

    remove = token.add_callback(abort) if token is not None else (lambda: None)
    try:
        return await result
    finally:
        remove()
