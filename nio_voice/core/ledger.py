"""Per-session conversation history."""

from __future__ import annotations

import threading

from nio_voice.services.llm.protocol import Message, Role

SPEAKER_LABELS = {
    Role.SYSTEM: "System",
    Role.USER: "Caller",
    Role.ASSISTANT: "Agent",
    Role.TOOL: "Tool",
}


class ConversationLedger:
    """Ordered, append-only message history for each session.

    The history is replayed verbatim to the language model, so entries are
    never edited or reordered; only clearing a whole session removes them.
    """

    def __init__(self) -> None:
        self._ledgers: dict[str, list[Message]] = {}
        self._lock = threading.Lock()

    def open(self, session_id: str) -> None:
        """Start an empty ledger for a session."""
        with self._lock:
            self._ledgers[session_id] = []

    def append(self, session_id: str, message: Message) -> Message:
        """Append a message to a session's history."""
        with self._lock:
            self._ledgers.setdefault(session_id, []).append(message)
        return message

    def read(self, session_id: str) -> list[Message]:
        """Copy of a session's history; empty for unknown sessions."""
        with self._lock:
            return list(self._ledgers.get(session_id, ()))

    def clear(self, session_id: str) -> None:
        """Discard a session's history."""
        with self._lock:
            self._ledgers.pop(session_id, None)

    def clear_all(self) -> None:
        """Discard every session's history."""
        with self._lock:
            self._ledgers.clear()

    def get_transcript(self, session_id: str) -> str:
        """Get conversation transcript for logging."""
        lines = []
        for msg in self.read(session_id):
            speaker = SPEAKER_LABELS[msg.role]
            if msg.role == Role.TOOL and msg.name:
                speaker = f"Tool({msg.name})"
            lines.append(f"[{msg.timestamp.isoformat()}] {speaker}: {msg.content}")
        return "\n".join(lines)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._ledgers
