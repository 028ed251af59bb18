"""STT (Speech-to-Text) service protocol and data types."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from nio_voice.core.session import SessionConfig


@dataclass(frozen=True, slots=True)
class TranscriptWord:
    """Word-level timing and confidence."""

    word: str
    start: float  # seconds from audio start
    end: float
    confidence: float = 0.0


@dataclass(frozen=True, slots=True)
class Transcript:
    """Result of one transcription call.

    One-shot transcription always yields a final transcript; interim
    results only exist for streaming recognition.
    """

    text: str
    confidence: float = 0.0
    is_final: bool = True
    words: tuple[TranscriptWord, ...] | None = None
    language: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    duration: float | None = None  # seconds of audio


class SpeechProvider(Protocol):
    """Protocol for speech-to-text backends."""

    async def initialize(self) -> None:
        """Prepare the client. Must be awaited before transcribe()."""
        ...

    async def transcribe(
        self,
        audio: bytes,
        config: SessionConfig | None = None,
    ) -> Transcript:
        """Transcribe a complete audio payload.

        Args:
            audio: Raw audio bytes
            config: Session configuration (language, sample rate, encoding)

        Returns:
            Final transcript for the payload
        """
        ...

    def transcribe_stream(
        self,
        audio_chunks: AsyncIterator[bytes],
        config: SessionConfig | None = None,
    ) -> AsyncIterator[Transcript]:
        """Transcribe audio as it arrives.

        Args:
            audio_chunks: Async iterator yielding raw audio bytes
            config: Session configuration (language, sample rate, encoding, endpointing)

        Yields:
            Interim transcripts (is_final=False) and final ones as the
            backend settles on them
        """
        ...

    async def close(self) -> None:
        """Close any open connections and clean up resources."""
        ...

    async def health_check(self) -> bool:
        """Check if the service is operational."""
        ...
