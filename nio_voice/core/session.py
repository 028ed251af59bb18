"""Voice session lifecycle management.

The store is a ledger of session status: it records transitions but does
not reject edges that skip states. Callers drive the lifecycle
IDLE -> CONNECTING -> ACTIVE <-> PAUSED -> ENDING -> ENDED (or ERROR).
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from nio_voice.exceptions import DuplicateSessionIdError, SessionNotFoundError
from nio_voice.logging_config import get_logger

logger: Any = get_logger(__name__)

DEFAULT_MAX_AGE_SECONDS = 3600.0


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SessionStatus(str, Enum):
    """Voice session status."""

    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    PAUSED = "paused"
    ENDING = "ending"
    ENDED = "ended"
    ERROR = "error"


@dataclass(frozen=True)
class EndpointingConfig:
    """Silence-based end-of-utterance detection."""

    enabled: bool = True
    silence_threshold_ms: int | None = None
    end_threshold_ms: int | None = None


@dataclass
class SessionConfig:
    """Per-session configuration supplied when the session starts."""

    id: str | None = None
    language: str | None = None
    sample_rate: int | None = None
    encoding: str | None = None
    interruptible: bool = True
    endpointing: EndpointingConfig | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    system_prompt: str | None = None  # overrides the agent's prompt


@dataclass
class Session:
    """A bounded conversational context.

    duration is set only while status is ENDED.
    """

    id: str
    config: SessionConfig
    status: SessionStatus = SessionStatus.IDLE
    started_at: datetime = field(default_factory=_utcnow)
    ended_at: datetime | None = None
    duration: float | None = None  # seconds
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status in (SessionStatus.ACTIVE, SessionStatus.CONNECTING)


class SessionStore:
    """In-memory registry of live sessions keyed by id.

    Mutations take a lock so concurrent turns on different sessions cannot
    interleave a read-modify-write on the same entry.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def create(self, config: SessionConfig | None = None) -> Session:
        """Create a new IDLE session.

        Args:
            config: Session configuration; config.id is used when supplied

        Raises:
            DuplicateSessionIdError: If config.id is already registered
        """
        config = config or SessionConfig()

        with self._lock:
            session_id = config.id or self._generate_id()
            if session_id in self._sessions:
                raise DuplicateSessionIdError(session_id)

            session = Session(
                id=session_id,
                config=config,
                metadata=dict(config.metadata),
            )
            self._sessions[session_id] = session

        logger.debug(f"Session created: {session_id}")
        return session

    def get(self, session_id: str) -> Session | None:
        """Look up a session; returns None when unknown."""
        return self._sessions.get(session_id)

    def transition(self, session_id: str, status: SessionStatus) -> Session:
        """Set a session's status.

        Entering ENDED stamps ended_at and duration once; repeating ENDED
        keeps the original timestamps. Leaving ENDED clears both.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)

            old_status = session.status
            session.status = status

            if status == SessionStatus.ENDED:
                if old_status != SessionStatus.ENDED or session.ended_at is None:
                    session.ended_at = _utcnow()
                session.duration = (session.ended_at - session.started_at).total_seconds()
            elif old_status == SessionStatus.ENDED:
                session.ended_at = None
                session.duration = None

        logger.debug(f"Session {session_id}: {old_status.value} → {status.value}")
        return session

    def end(self, session_id: str) -> Session:
        """Mark a session ENDED."""
        return self.transition(session_id, SessionStatus.ENDED)

    def update_metadata(self, session_id: str, metadata: dict[str, Any]) -> Session:
        """Merge metadata into a session's existing metadata.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            session.metadata = {**session.metadata, **metadata}
        return session

    def delete(self, session_id: str) -> bool:
        """Remove a session. Returns whether it existed."""
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def list_active(self) -> list[Session]:
        """Sessions currently ACTIVE or CONNECTING."""
        with self._lock:
            return [s for s in self._sessions.values() if s.is_active]

    def sweep_expired(self, max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS) -> int:
        """Delete ENDED sessions whose end time is older than max_age_seconds.

        Returns:
            Number of sessions removed
        """
        return len(self.sweep_expired_ids(max_age_seconds))

    def sweep_expired_ids(
        self, max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS
    ) -> list[str]:
        """Delete expired ENDED sessions and return their ids.

        A session ended exactly max_age_seconds ago is kept.
        """
        cutoff = _utcnow() - timedelta(seconds=max_age_seconds)

        with self._lock:
            expired = [
                session_id
                for session_id, session in self._sessions.items()
                if session.status == SessionStatus.ENDED
                and session.ended_at is not None
                and session.ended_at < cutoff
            ]
            for session_id in expired:
                del self._sessions[session_id]

        if expired:
            logger.info(f"Swept {len(expired)} expired sessions")
        return expired

    def stats(self) -> dict[str, int]:
        """Point-in-time session counts."""
        with self._lock:
            sessions = list(self._sessions.values())

        return {
            "total": len(sessions),
            "active": sum(1 for s in sessions if s.status == SessionStatus.ACTIVE),
            "ended": sum(1 for s in sessions if s.status == SessionStatus.ENDED),
            "error": sum(1 for s in sessions if s.status == SessionStatus.ERROR),
        }

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def _generate_id(self) -> str:
        session_id = str(uuid.uuid4())
        while session_id in self._sessions:
            session_id = str(uuid.uuid4())
        return session_id
