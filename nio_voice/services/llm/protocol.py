"""LLM service protocol and data types."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal, Protocol, Union


class Role(str, Enum):
    """Message role in conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class FinishReason(str, Enum):
    """Why the model stopped generating."""

    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool_calls"
    CONTENT_FILTER = "content_filter"


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A model request to run an external function.

    The id correlates the request with the tool message that reports
    its result.
    """

    id: str
    name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Message:
    """A single message in conversation history."""

    role: Role
    content: str
    name: str | None = None  # originating tool for role=tool
    tool_call_id: str | None = None
    tool_calls: tuple[ToolCall, ...] = ()  # requested by an assistant message
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True, slots=True)
class Tool:
    """Function the model may call, described by a JSON schema."""

    name: str
    description: str
    parameters: Mapping[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


ToolChoice = Union[Literal["auto", "required", "none"], Mapping[str, str]]


@dataclass(frozen=True, slots=True)
class TokenUsage:
    """Token accounting reported by the backend."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class CompletionRequest:
    """Everything the backend needs for one completion.

    messages already carries the system message (when there is one);
    system_prompt is repeated for backends that take it out of band.
    """

    messages: list[Message]
    system_prompt: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    tools: list[Tool] | None = None
    tool_choice: ToolChoice | None = None


@dataclass
class CompletionResult:
    """Normalized completion returned by a backend."""

    text: str
    role: Literal["assistant"] = "assistant"
    tool_calls: list[ToolCall] | None = None
    usage: TokenUsage | None = None
    finish_reason: FinishReason | None = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class LLMProvider(Protocol):
    """Protocol for language model backends."""

    async def initialize(self) -> None:
        """Prepare the client. Must be awaited before complete()."""
        ...

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        """Generate a completion for the request."""
        ...

    async def stream(
        self,
        request: CompletionRequest,
        on_chunk: Callable[[str], None],
    ) -> CompletionResult:
        """Generate a completion, passing each text delta to on_chunk.

        Returns:
            The assembled result once the stream is exhausted
        """
        ...

    async def close(self) -> None:
        """Close the client connection."""
        ...

    async def health_check(self) -> bool:
        """Check if the service is operational."""
        ...
