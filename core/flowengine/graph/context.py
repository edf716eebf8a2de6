"""
Conversational context threaded through a flow.

A FlowContext is immutable by convention: nodes never mutate one in place,
they produce a replacement with ``model_copy(update=...)`` (or through the
ContextManager, which does the same and commits the result to its binding).
``context_id`` names the logical conversation thread; ``context_type`` is
fixed when the thread is created.
"""

import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

VALID_ROLES = ("system", "user", "assistant")


class ContextType(StrEnum):
    MAIN = "main"
    ISOLATED = "isolated"


class Message(BaseModel):
    """A single conversation message."""

    role: Literal["system", "user", "assistant"]
    content: str
    reasoning: str | None = None
    metadata: dict[str, Any] | None = None

    model_config = {"extra": "allow", "alias_generator": to_camel, "populate_by_name": True}

    def to_llm_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}


def sanitize_message(message: Any) -> Message | None:
    """Normalize one raw message; None if it carries no string content."""
    if isinstance(message, Message):
        raw = message.model_dump(exclude_none=True)
    elif isinstance(message, dict):
        raw = dict(message)
    else:
        return None

    content = raw.get("content")
    if not isinstance(content, str):
        return None
    role = raw.get("role")
    raw["role"] = role if role in VALID_ROLES else "assistant"
    if raw.get("reasoning") is not None:
        raw["reasoning"] = str(raw["reasoning"])
    if raw.get("metadata") is not None:
        raw["metadata"] = dict(raw["metadata"])
    return Message.model_validate(raw)


def sanitize_messages(messages: Iterable[Any] | None) -> list[Message]:
    """Drop malformed entries and map unknown roles to ``assistant``."""
    if not messages or isinstance(messages, str | bytes | dict):
        return []
    sanitized = []
    for message in messages:
        normalized = sanitize_message(message)
        if normalized is not None:
            sanitized.append(normalized)
    return sanitized


def new_context_id() -> str:
    return str(uuid.uuid4())


class FlowContext(BaseModel):
    """
    Conversational state: which model to talk to, how, and what was said.

    JSON uses camelCase (``contextId``, ``messageHistory``); both spellings
    are accepted on input.
    """

    context_id: str = Field(default_factory=new_context_id)
    context_type: ContextType | None = Field(
        default=None, description="main or isolated; None until bound"
    )
    provider: str = ""
    model: str = ""
    system_instructions: str = ""
    temperature: float | None = None
    reasoning_effort: str | None = None
    message_history: list[Message] = Field(default_factory=list)

    # Lineage (set for isolated contexts)
    label: str | None = None
    parent_context_id: str | None = None
    created_by_node_id: str | None = None
    created_at: str | None = None

    model_config = {"extra": "allow", "alias_generator": to_camel, "populate_by_name": True}

    @field_validator("message_history", mode="before")
    @classmethod
    def _sanitize_history(cls, value: Any) -> list[Message]:
        return sanitize_messages(value)

    @property
    def is_main(self) -> bool:
        return self.context_type == ContextType.MAIN

    @property
    def is_isolated(self) -> bool:
        return self.context_type == ContextType.ISOLATED

    def with_messages(self, *messages: Message | dict[str, Any]) -> "FlowContext":
        """Return a copy with ``messages`` appended to the history."""
        return self.model_copy(
            update={"message_history": [*self.message_history, *sanitize_messages(messages)]}
        )

    def last_message(self, role: str | None = None) -> Message | None:
        for message in reversed(self.message_history):
            if role is None or message.role == role:
                return message
        return None

    def to_llm_messages(self) -> list[dict[str, Any]]:
        return [m.to_llm_dict() for m in self.message_history]

    def clone(self) -> "FlowContext":
        return self.model_copy(deep=True)


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()
