"""LLM provider abstraction."""

from flowengine.llm.provider import (
    LLMResponse,
    ProviderAdapter,
    StreamHandle,
    Tool,
    ToolResult,
    ToolUse,
    stream_completion,
)

__all__ = [
    "LLMResponse",
    "ProviderAdapter",
    "StreamHandle",
    "Tool",
    "ToolResult",
    "ToolUse",
    "stream_completion",
]
