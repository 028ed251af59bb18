"""nio-voice: multi-turn voice agent orchestration."""

from nio_voice.core import (
    EventBus,
    EventType,
    Session,
    SessionConfig,
    SessionStatus,
    TurnResult,
    VoiceAgent,
)
from nio_voice.exceptions import (
    DuplicateSessionIdError,
    InvalidConfigError,
    NotInitializedError,
    ProviderFailure,
    SessionNotFoundError,
    VoiceAgentError,
)
from nio_voice.services.llm.protocol import (
    CompletionResult,
    Message,
    Role,
    Tool,
    ToolCall,
)
from nio_voice.services.stt.protocol import Transcript

__version__ = "0.1.0"

__all__ = [
    "VoiceAgent",
    "TurnResult",
    "EventBus",
    "EventType",
    "Session",
    "SessionConfig",
    "SessionStatus",
    "Message",
    "Role",
    "Tool",
    "ToolCall",
    "CompletionResult",
    "Transcript",
    "VoiceAgentError",
    "SessionNotFoundError",
    "DuplicateSessionIdError",
    "ProviderFailure",
    "NotInitializedError",
    "InvalidConfigError",
]
