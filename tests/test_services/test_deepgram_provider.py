"""Tests for the Deepgram speech provider."""

import os
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from deepgram import LiveTranscriptionEvents

from nio_voice.core.session import EndpointingConfig, SessionConfig
from nio_voice.exceptions import InvalidConfigError, NotInitializedError, ProviderFailure
from nio_voice.services.stt.deepgram import DeepgramSpeechProvider
from nio_voice.services.stt.protocol import Transcript, TranscriptWord


def deepgram_response(transcript="what are your hours", confidence=0.93, words=None):
    """Build an object shaped like a Deepgram prerecorded response."""
    alternative = SimpleNamespace(
        transcript=transcript,
        confidence=confidence,
        words=words,
    )
    channel = SimpleNamespace(alternatives=[alternative], detected_language="en")
    return SimpleNamespace(
        results=SimpleNamespace(channels=[channel]),
        metadata=SimpleNamespace(duration=1.75),
    )


@pytest.fixture
def provider(settings_factory) -> DeepgramSpeechProvider:
    return DeepgramSpeechProvider(settings=settings_factory())


@pytest.fixture
def transcribe_file(provider: DeepgramSpeechProvider) -> MagicMock:
    """Install a mock Deepgram client and return its transcribe_file mock."""
    client = MagicMock()
    transcribe = client.listen.rest.v.return_value.transcribe_file
    transcribe.return_value = deepgram_response()
    provider._client = client
    return transcribe


class TestTranscript:
    """Tests for the Transcript dataclass."""

    def test_defaults(self) -> None:
        transcript = Transcript(text="Hello")
        assert transcript.is_final is True
        assert transcript.confidence == 0.0
        assert transcript.words is None
        assert transcript.timestamp is not None

    def test_with_words(self) -> None:
        word = TranscriptWord(word="hi", start=0.1, end=0.4, confidence=0.9)
        transcript = Transcript(text="hi", words=(word,))
        assert transcript.words[0].end == 0.4


class TestDeepgramInitialization:
    """Tests for client setup and teardown."""

    def test_default_model(self, provider: DeepgramSpeechProvider) -> None:
        assert provider._model == "nova-2"

    def test_custom_model(self, settings_factory) -> None:
        provider = DeepgramSpeechProvider(settings=settings_factory(), model="nova-2-general")
        assert provider._model == "nova-2-general"

    def test_client_unavailable_before_initialize(
        self, provider: DeepgramSpeechProvider
    ) -> None:
        assert provider.is_initialized is False
        with pytest.raises(NotInitializedError):
            _ = provider.client

    @pytest.mark.asyncio
    async def test_transcribe_before_initialize(self, provider: DeepgramSpeechProvider) -> None:
        with pytest.raises(NotInitializedError):
            await provider.transcribe(b"audio")

    @pytest.mark.asyncio
    async def test_initialize_requires_api_key(self, settings_factory) -> None:
        provider = DeepgramSpeechProvider(settings=settings_factory(deepgram_api_key=None))

        with pytest.raises(InvalidConfigError):
            await provider.initialize()

    @pytest.mark.asyncio
    async def test_initialize_and_close(self, provider: DeepgramSpeechProvider) -> None:
        await provider.initialize()
        assert provider.is_initialized is True
        assert await provider.health_check() is True

        await provider.close()
        assert provider._client is None
        assert await provider.health_check() is False


class TestDeepgramTranscribe:
    """Tests for transcribe() against a mocked client."""

    @pytest.mark.asyncio
    async def test_transcribe_maps_response(
        self, provider: DeepgramSpeechProvider, transcribe_file: MagicMock
    ) -> None:
        transcript = await provider.transcribe(b"audio")

        assert transcript.text == "what are your hours"
        assert transcript.confidence == 0.93
        assert transcript.is_final is True
        assert transcript.language == "en"
        assert transcript.duration == 1.75
        assert transcript.words is None

        source, options = transcribe_file.call_args.args
        assert source == {"buffer": b"audio"}
        assert options.model == "nova-2"
        assert options.language == "en"

    @pytest.mark.asyncio
    async def test_session_language_used(
        self, provider: DeepgramSpeechProvider, transcribe_file: MagicMock
    ) -> None:
        await provider.transcribe(b"audio", SessionConfig(language="hi"))

        _, options = transcribe_file.call_args.args
        assert options.language == "hi"

    @pytest.mark.asyncio
    async def test_word_timings(
        self, provider: DeepgramSpeechProvider, transcribe_file: MagicMock
    ) -> None:
        transcribe_file.return_value = deepgram_response(
            transcript="hi there",
            words=[
                SimpleNamespace(word="hi", start=0.0, end=0.3, confidence=0.99),
                SimpleNamespace(word="there", start=0.3, end=0.7, confidence=0.95),
            ],
        )

        transcript = await provider.transcribe(b"audio")

        assert [w.word for w in transcript.words] == ["hi", "there"]
        assert transcript.words[1].start == 0.3

    @pytest.mark.asyncio
    async def test_no_alternatives(
        self, provider: DeepgramSpeechProvider, transcribe_file: MagicMock
    ) -> None:
        transcribe_file.return_value = SimpleNamespace(
            results=SimpleNamespace(channels=[]), metadata=None
        )

        with pytest.raises(ProviderFailure) as exc_info:
            await provider.transcribe(b"audio")

        assert exc_info.value.backend == "speech"

    @pytest.mark.asyncio
    async def test_request_error_wrapped(
        self, provider: DeepgramSpeechProvider, transcribe_file: MagicMock
    ) -> None:
        error = ConnectionError("network down")
        transcribe_file.side_effect = error

        with pytest.raises(ProviderFailure) as exc_info:
            await provider.transcribe(b"audio")

        assert exc_info.value.backend == "speech"
        assert exc_info.value.cause is error

    @pytest.mark.asyncio
    async def test_audio_format_from_settings(
        self, provider: DeepgramSpeechProvider, transcribe_file: MagicMock
    ) -> None:
        await provider.transcribe(b"audio")

        _, options = transcribe_file.call_args.args
        assert options.encoding == "linear16"
        assert options.sample_rate == 16000

    @pytest.mark.asyncio
    async def test_session_audio_format_used(
        self, provider: DeepgramSpeechProvider, transcribe_file: MagicMock
    ) -> None:
        await provider.transcribe(b"audio", SessionConfig(encoding="mulaw", sample_rate=8000))

        _, options = transcribe_file.call_args.args
        assert options.encoding == "mulaw"
        assert options.sample_rate == 8000

    @pytest.mark.asyncio
    async def test_containerized_audio_sends_no_format(self, settings_factory) -> None:
        provider = DeepgramSpeechProvider(settings=settings_factory(default_encoding=""))
        client = MagicMock()
        transcribe = client.listen.rest.v.return_value.transcribe_file
        transcribe.return_value = deepgram_response()
        provider._client = client

        await provider.transcribe(b"RIFF....WAVE")

        _, options = transcribe.call_args.args
        assert options.encoding is None
        assert options.sample_rate is None


def live_result(text, is_final=True, confidence=0.9, duration=0.8):
    """Build an object shaped like a Deepgram live Transcript message."""
    alternative = SimpleNamespace(
        transcript=text, confidence=confidence, words=None, languages=["en"]
    )
    return SimpleNamespace(
        channel=SimpleNamespace(alternatives=[alternative]),
        is_final=is_final,
        duration=duration,
    )


async def audio_stream(*chunks: bytes):
    for chunk in chunks:
        yield chunk


@pytest.fixture
def live(provider: DeepgramSpeechProvider) -> MagicMock:
    """Install a mock live connection that records its event handlers."""
    client = MagicMock()
    connection = client.listen.websocket.v.return_value
    connection.handlers = {}
    connection.on.side_effect = lambda event, handler: connection.handlers.__setitem__(
        event, handler
    )
    connection.start.return_value = True
    connection.finish.side_effect = lambda: connection.handlers[LiveTranscriptionEvents.Close](
        connection, close=SimpleNamespace()
    )
    provider._client = client
    return connection


async def collect(stream) -> list[Transcript]:
    return [transcript async for transcript in stream]


class TestDeepgramLiveOptions:
    """Tests for live connection options."""

    def test_defaults(self, provider: DeepgramSpeechProvider) -> None:
        options = provider._live_options(None)

        assert options.model == "nova-2"
        assert options.interim_results is True
        assert options.encoding == "linear16"
        assert options.sample_rate == 16000
        assert options.endpointing is None

    def test_endpointing_default_threshold(self, provider: DeepgramSpeechProvider) -> None:
        config = SessionConfig(endpointing=EndpointingConfig(enabled=True))

        assert provider._live_options(config).endpointing == 300

    def test_endpointing_thresholds(self, provider: DeepgramSpeechProvider) -> None:
        config = SessionConfig(
            language="hi",
            sample_rate=8000,
            encoding="mulaw",
            endpointing=EndpointingConfig(silence_threshold_ms=500, end_threshold_ms=1000),
        )

        options = provider._live_options(config)

        assert options.endpointing == 500
        assert options.utterance_end_ms == 1000
        assert options.language == "hi"
        assert options.encoding == "mulaw"
        assert options.sample_rate == 8000

    def test_endpointing_disabled(self, provider: DeepgramSpeechProvider) -> None:
        config = SessionConfig(endpointing=EndpointingConfig(enabled=False))

        assert provider._live_options(config).endpointing is False


class TestDeepgramStream:
    """Tests for transcribe_stream() against a mocked live connection."""

    @pytest.mark.asyncio
    async def test_yields_interim_and_final(
        self, provider: DeepgramSpeechProvider, live: MagicMock
    ) -> None:
        replies = iter([live_result("what", is_final=False), live_result("what are your hours")])
        live.send.side_effect = lambda data: live.handlers[LiveTranscriptionEvents.Transcript](
            live, result=next(replies)
        )

        transcripts = await collect(provider.transcribe_stream(audio_stream(b"a", b"b")))

        assert [(t.text, t.is_final) for t in transcripts] == [
            ("what", False),
            ("what are your hours", True),
        ]
        assert transcripts[1].language == "en"
        assert transcripts[1].duration == 0.8
        assert [c.args[0] for c in live.send.call_args_list] == [b"a", b"b"]
        live.finish.assert_called_once()

    @pytest.mark.asyncio
    async def test_empty_results_skipped(
        self, provider: DeepgramSpeechProvider, live: MagicMock
    ) -> None:
        live.send.side_effect = lambda data: live.handlers[LiveTranscriptionEvents.Transcript](
            live, result=live_result("")
        )

        assert await collect(provider.transcribe_stream(audio_stream(b"a"))) == []

    @pytest.mark.asyncio
    async def test_connect_failure(self, provider: DeepgramSpeechProvider, live: MagicMock) -> None:
        live.start.return_value = False

        with pytest.raises(ProviderFailure) as exc_info:
            await collect(provider.transcribe_stream(audio_stream(b"a")))

        assert exc_info.value.backend == "speech"

    @pytest.mark.asyncio
    async def test_socket_error_raised(
        self, provider: DeepgramSpeechProvider, live: MagicMock
    ) -> None:
        live.send.side_effect = lambda data: live.handlers[LiveTranscriptionEvents.Error](
            live, error="bad audio"
        )

        with pytest.raises(ProviderFailure, match="bad audio"):
            await collect(provider.transcribe_stream(audio_stream(b"a")))

    @pytest.mark.asyncio
    async def test_send_failure_wrapped(
        self, provider: DeepgramSpeechProvider, live: MagicMock
    ) -> None:
        error = ConnectionError("socket closed")
        live.send.side_effect = error

        with pytest.raises(ProviderFailure) as exc_info:
            await collect(provider.transcribe_stream(audio_stream(b"a")))

        assert exc_info.value.cause is error
        live.finish.assert_called_once()

    @pytest.mark.asyncio
    async def test_stream_before_initialize(self, provider: DeepgramSpeechProvider) -> None:
        with pytest.raises(NotInitializedError):
            await collect(provider.transcribe_stream(audio_stream(b"a")))


def _has_deepgram_key() -> bool:
    return bool(os.environ.get("DEEPGRAM_API_KEY"))


@pytest.mark.skipif(not _has_deepgram_key(), reason="DEEPGRAM_API_KEY not set")
class TestDeepgramIntegration:
    """Integration tests for Deepgram (env-gated)."""

    @pytest.mark.asyncio
    async def test_transcribe_sample(self, settings_factory) -> None:
        audio_path = Path(os.environ.get("DEEPGRAM_SAMPLE_AUDIO", "tests/fixtures/sample.wav"))
        if not audio_path.exists():
            pytest.skip(f"Sample audio not found: {audio_path}")

        provider = DeepgramSpeechProvider(
            settings=settings_factory(deepgram_api_key=os.environ["DEEPGRAM_API_KEY"])
        )
        await provider.initialize()

        transcript = await provider.transcribe(audio_path.read_bytes())

        assert transcript.is_final is True
        await provider.close()
