"""LLM services (Groq)."""

from nio_voice.services.llm.groq import GroqLLMProvider
from nio_voice.services.llm.protocol import (
    CompletionRequest,
    CompletionResult,
    FinishReason,
    LLMProvider,
    Message,
    Role,
    TokenUsage,
    Tool,
    ToolCall,
    ToolChoice,
)

__all__ = [
    # Protocol and types
    "LLMProvider",
    "Message",
    "Role",
    "Tool",
    "ToolCall",
    "ToolChoice",
    "TokenUsage",
    "FinishReason",
    "CompletionRequest",
    "CompletionResult",
    # Implementation
    "GroqLLMProvider",
]
