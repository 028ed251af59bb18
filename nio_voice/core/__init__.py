"""Core voice agent components.

This module provides the session/turn orchestration engine:
- SessionStore: Session lifecycle status
- ConversationLedger: Per-session message history
- TranscriptionStep / CompletionStep: Provider calls with failure normalization
- EventBus: Synchronous event delivery
- VoiceAgent: Orchestrates audio → transcript → completion turns
"""

from nio_voice.core.agent import TurnResult, VoiceAgent
from nio_voice.core.events import (
    AgentEvent,
    AudioChunk,
    AudioInputEvent,
    CompletionResponseEvent,
    CompletionStartEvent,
    CompletionStreamEvent,
    ErrorEvent,
    EventBus,
    EventListener,
    EventType,
    SessionEndEvent,
    SessionStartEvent,
    ToolCallEvent,
    ToolResultEvent,
    TranscriptFinalEvent,
    TranscriptPartialEvent,
)
from nio_voice.core.ledger import ConversationLedger
from nio_voice.core.session import (
    EndpointingConfig,
    Session,
    SessionConfig,
    SessionStatus,
    SessionStore,
)
from nio_voice.core.steps import CompletionStep, TranscriptionStep

__all__ = [
    # Sessions
    "Session",
    "SessionConfig",
    "SessionStatus",
    "SessionStore",
    "EndpointingConfig",
    "ConversationLedger",
    # Pipeline
    "TranscriptionStep",
    "CompletionStep",
    "VoiceAgent",
    "TurnResult",
    # Events
    "EventBus",
    "EventType",
    "EventListener",
    "AgentEvent",
    "AudioChunk",
    "SessionStartEvent",
    "SessionEndEvent",
    "AudioInputEvent",
    "TranscriptPartialEvent",
    "TranscriptFinalEvent",
    "CompletionStartEvent",
    "CompletionStreamEvent",
    "CompletionResponseEvent",
    "ToolCallEvent",
    "ToolResultEvent",
    "ErrorEvent",
]
