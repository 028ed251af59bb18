"""Custom exceptions for the voice agent core and its providers."""

from __future__ import annotations

from typing import Any


class VoiceAgentError(Exception):
    """Base exception for voice agent errors."""

    def __init__(
        self,
        message: str,
        code: str = "VOICE_AGENT_ERROR",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class SessionNotFoundError(VoiceAgentError):
    """Raised when an operation references an unknown or deleted session."""

    def __init__(self, session_id: str):
        super().__init__(
            f"Session not found: {session_id}",
            "SESSION_NOT_FOUND",
            {"session_id": session_id},
        )
        self.session_id = session_id


class DuplicateSessionIdError(VoiceAgentError):
    """Raised when a caller-supplied session id is already in use."""

    def __init__(self, session_id: str):
        super().__init__(
            f"Session already exists: {session_id}",
            "DUPLICATE_SESSION_ID",
            {"session_id": session_id},
        )
        self.session_id = session_id


class ProviderFailure(VoiceAgentError):
    """Raised when the speech or LLM backend call fails.

    Attributes:
        backend: "speech" or "llm"
        cause: The original exception raised by the backend
    """

    def __init__(self, backend: str, message: str, cause: BaseException | None = None):
        super().__init__(
            message,
            "PROVIDER_ERROR",
            {"backend": backend, "cause": repr(cause) if cause else None},
        )
        self.backend = backend
        self.cause = cause


class NotInitializedError(VoiceAgentError):
    """Raised when a provider is used before initialize() was awaited."""

    def __init__(self, provider: str):
        super().__init__(
            "Provider not initialized. Call initialize() first.",
            "NOT_INITIALIZED",
            {"provider": provider},
        )
        self.provider = provider


class InvalidConfigError(VoiceAgentError):
    """Raised when a provider is missing required configuration."""

    def __init__(self, message: str, provider: str):
        super().__init__(message, "INVALID_CONFIG", {"provider": provider})
        self.provider = provider
