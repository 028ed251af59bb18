"""Speech-to-Text services (Deepgram)."""

from nio_voice.services.stt.deepgram import DeepgramSpeechProvider
from nio_voice.services.stt.protocol import SpeechProvider, Transcript, TranscriptWord

__all__ = [
    "DeepgramSpeechProvider",
    "SpeechProvider",
    "Transcript",
    "TranscriptWord",
]
