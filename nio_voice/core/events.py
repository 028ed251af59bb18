"""Agent events and the synchronous event bus that delivers them.

Each event reaches the listeners registered for all events and then the
listeners registered for its type.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

from nio_voice.logging_config import get_logger

if TYPE_CHECKING:
    from nio_voice.core.session import Session
    from nio_voice.services.llm.protocol import CompletionRequest, CompletionResult, ToolCall
    from nio_voice.services.stt.protocol import Transcript

logger: Any = get_logger(__name__)


class EventType(str, Enum):
    """Event tags, matching the channel names listeners subscribe to."""

    SESSION_START = "session:start"
    SESSION_END = "session:end"
    AUDIO_INPUT = "audio:input"
    TRANSCRIPT_PARTIAL = "transcript:partial"
    TRANSCRIPT_FINAL = "transcript:final"
    COMPLETION_START = "llm:start"
    COMPLETION_STREAM = "llm:stream"
    COMPLETION_RESPONSE = "llm:response"
    TOOL_CALL = "tool:call"
    TOOL_RESULT = "tool:result"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class AudioChunk:
    """Raw audio payload as received by the agent."""

    data: bytes
    timestamp: float  # unix seconds
    sequence_number: int | None = None


@dataclass(frozen=True)
class SessionStartEvent:
    session: Session
    type: EventType = field(default=EventType.SESSION_START, init=False)


@dataclass(frozen=True)
class SessionEndEvent:
    session: Session
    type: EventType = field(default=EventType.SESSION_END, init=False)


@dataclass(frozen=True)
class AudioInputEvent:
    session_id: str
    audio: AudioChunk
    type: EventType = field(default=EventType.AUDIO_INPUT, init=False)


@dataclass(frozen=True)
class TranscriptPartialEvent:
    session_id: str
    transcript: Transcript
    type: EventType = field(default=EventType.TRANSCRIPT_PARTIAL, init=False)


@dataclass(frozen=True)
class TranscriptFinalEvent:
    session_id: str
    transcript: Transcript
    type: EventType = field(default=EventType.TRANSCRIPT_FINAL, init=False)


@dataclass(frozen=True)
class CompletionStartEvent:
    session_id: str
    request: CompletionRequest
    type: EventType = field(default=EventType.COMPLETION_START, init=False)


@dataclass(frozen=True)
class CompletionStreamEvent:
    session_id: str
    chunk: str
    type: EventType = field(default=EventType.COMPLETION_STREAM, init=False)


@dataclass(frozen=True)
class CompletionResponseEvent:
    session_id: str
    response: CompletionResult
    type: EventType = field(default=EventType.COMPLETION_RESPONSE, init=False)


@dataclass(frozen=True)
class ToolCallEvent:
    session_id: str
    tool_call: ToolCall
    type: EventType = field(default=EventType.TOOL_CALL, init=False)


@dataclass(frozen=True)
class ToolResultEvent:
    session_id: str
    tool_call: ToolCall
    result: Any
    type: EventType = field(default=EventType.TOOL_RESULT, init=False)


@dataclass(frozen=True)
class ErrorEvent:
    error: BaseException
    session_id: str | None = None
    type: EventType = field(default=EventType.ERROR, init=False)


AgentEvent = Union[
    SessionStartEvent,
    SessionEndEvent,
    AudioInputEvent,
    TranscriptPartialEvent,
    TranscriptFinalEvent,
    CompletionStartEvent,
    CompletionStreamEvent,
    CompletionResponseEvent,
    ToolCallEvent,
    ToolResultEvent,
    ErrorEvent,
]

EventListener = Callable[[AgentEvent], None]


class EventBus:
    """Delivers events synchronously to registered listeners.

    Listeners run in registration order, "any event" listeners first.
    A listener that raises aborts the publish and the exception reaches
    whoever published.
    """

    def __init__(self) -> None:
        self._listeners: dict[EventType | None, list[EventListener]] = {}
        self._lock = threading.Lock()

    def subscribe(self, listener: EventListener, event_type: EventType | None = None) -> None:
        """Register a listener.

        Args:
            listener: Callable receiving each event
            event_type: Restrict delivery to one event type; None for all events
        """
        with self._lock:
            self._listeners.setdefault(event_type, []).append(listener)

    def unsubscribe(self, listener: EventListener, event_type: EventType | None = None) -> bool:
        """Remove a listener. Returns whether it was registered."""
        with self._lock:
            listeners = self._listeners.get(event_type, [])
            if listener not in listeners:
                return False
            listeners.remove(listener)
            return True

    def publish(self, event: AgentEvent) -> None:
        """Deliver an event to "any" listeners, then to its type's listeners."""
        with self._lock:
            any_listeners = list(self._listeners.get(None, ()))
            typed_listeners = list(self._listeners.get(event.type, ()))

        logger.trace(
            f"Publishing {event.type.value} to "
            f"{len(any_listeners) + len(typed_listeners)} listeners"
        )
        for listener in any_listeners:
            listener(event)
        for listener in typed_listeners:
            listener(event)

    def listener_count(self, event_type: EventType | None = None) -> int:
        return len(self._listeners.get(event_type, ()))

    def clear(self) -> None:
        """Remove every listener."""
        with self._lock:
            self._listeners.clear()
