"""Deepgram STT provider: one-shot (prerecorded) and live WebSocket transcription."""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncGenerator, AsyncIterator
from typing import TYPE_CHECKING, Any

from nio_voice.config import Settings, get_settings
from nio_voice.exceptions import InvalidConfigError, NotInitializedError, ProviderFailure
from nio_voice.logging_config import get_logger
from nio_voice.services.stt.protocol import Transcript, TranscriptWord

if TYPE_CHECKING:
    from deepgram import DeepgramClient

    from nio_voice.core.session import SessionConfig

logger: Any = get_logger(__name__)

PROVIDER_NAME = "deepgram"

# Seconds to wait for the next live result before giving up on the stream
STREAM_RESULT_TIMEOUT = 30.0

# Silence (ms) that ends an utterance when endpointing is on without a threshold
DEFAULT_ENDPOINTING_MS = 300


class DeepgramSpeechProvider:
    """Deepgram speech-to-text provider.

    transcribe() sends a complete payload to the prerecorded endpoint;
    transcribe_stream() relays audio over the live WebSocket and yields
    interim and final results as they arrive.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        model: str | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._model = model or self._settings.deepgram_model
        self._client: DeepgramClient | None = None

    @property
    def client(self) -> DeepgramClient:
        """Deepgram client; only available after initialize()."""
        if self._client is None:
            raise NotInitializedError(PROVIDER_NAME)
        return self._client

    @property
    def is_initialized(self) -> bool:
        return self._client is not None

    async def initialize(self) -> None:
        """Create the Deepgram client.

        Raises:
            InvalidConfigError: When no API key is configured
            ProviderFailure: When the client cannot be constructed
        """
        if self._settings.deepgram_api_key is None:
            raise InvalidConfigError("Deepgram API key is required", PROVIDER_NAME)

        from deepgram import DeepgramClient

        try:
            self._client = DeepgramClient(
                api_key=self._settings.deepgram_api_key.get_secret_value(),
            )
        except Exception as e:
            logger.error(f"Failed to initialize Deepgram: {e}")
            raise ProviderFailure("speech", f"Failed to initialize Deepgram: {e}", e) from e

        logger.debug(f"Deepgram client ready (model={self._model})")

    async def transcribe(
        self,
        audio: bytes,
        config: SessionConfig | None = None,
    ) -> Transcript:
        """Transcribe a complete audio payload.

        Args:
            audio: Raw audio bytes
            config: Session configuration; its language and audio format
                override the configured defaults

        Returns:
            Final transcript with word timings when Deepgram returns them

        Raises:
            NotInitializedError: When initialize() has not been awaited
            ProviderFailure: When the Deepgram request fails
        """
        from deepgram import PrerecordedOptions

        client = self.client
        encoding, sample_rate = self._audio_format(config)

        # Headerless audio needs its format spelled out
        audio_format: dict[str, Any] = (
            {"encoding": encoding, "sample_rate": sample_rate} if encoding else {}
        )

        options = PrerecordedOptions(
            model=self._model,
            language=self._language(config),
            punctuate=True,
            smart_format=True,
            diarize=False,
            **audio_format,
        )

        start_time = time.perf_counter()
        try:
            response = await asyncio.to_thread(
                client.listen.rest.v("1").transcribe_file,
                {"buffer": audio},
                options,
            )
        except Exception as e:
            logger.error(f"Deepgram transcription error: {e}")
            raise ProviderFailure("speech", f"Transcription failed: {e}", e) from e

        latency_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(f"Deepgram transcription took {latency_ms:.1f}ms")

        return self._to_transcript(response)

    async def transcribe_stream(
        self,
        audio_chunks: AsyncIterator[bytes],
        config: SessionConfig | None = None,
    ) -> AsyncGenerator[Transcript, None]:
        """Transcribe streaming audio over the Deepgram WebSocket.

        Args:
            audio_chunks: Async iterator yielding raw audio bytes
            config: Session configuration (language, audio format, endpointing)

        Yields:
            Interim and final transcripts in the order Deepgram sends them

        Raises:
            NotInitializedError: When initialize() has not been awaited
            ProviderFailure: When the connection fails or Deepgram reports an error
        """
        from deepgram import LiveTranscriptionEvents

        client = self.client
        loop = asyncio.get_running_loop()
        # None marks the end of the stream
        results: asyncio.Queue[Transcript | ProviderFailure | None] = asyncio.Queue()

        def on_transcript(self_live: Any, result: Any, **kwargs: Any) -> None:
            transcript = self._live_to_transcript(result)
            if transcript is not None:
                loop.call_soon_threadsafe(results.put_nowait, transcript)

        def on_error(self_live: Any, error: Any, **kwargs: Any) -> None:
            logger.error(f"Deepgram WebSocket error: {error}")
            failure = ProviderFailure("speech", f"Deepgram streaming error: {error}")
            loop.call_soon_threadsafe(results.put_nowait, failure)

        def on_close(self_live: Any, close: Any, **kwargs: Any) -> None:
            logger.debug("Deepgram WebSocket closed")
            loop.call_soon_threadsafe(results.put_nowait, None)

        live = client.listen.websocket.v("1")
        live.on(LiveTranscriptionEvents.Transcript, on_transcript)
        live.on(LiveTranscriptionEvents.Error, on_error)
        live.on(LiveTranscriptionEvents.Close, on_close)

        try:
            started = await asyncio.to_thread(live.start, self._live_options(config))
        except Exception as e:
            logger.error(f"Deepgram WebSocket connect error: {e}")
            raise ProviderFailure("speech", f"Failed to connect to Deepgram: {e}", e) from e
        if not started:
            raise ProviderFailure("speech", "Failed to connect to Deepgram")

        logger.debug("Deepgram WebSocket connected")

        async def send_audio() -> None:
            try:
                async for data in audio_chunks:
                    await asyncio.to_thread(live.send, data)
            finally:
                await asyncio.to_thread(live.finish)

        send_task = asyncio.create_task(send_audio())
        timed_out = False
        try:
            while True:
                try:
                    item = await asyncio.wait_for(results.get(), timeout=STREAM_RESULT_TIMEOUT)
                except TimeoutError:
                    logger.warning(
                        f"Transcription timeout - no results for {STREAM_RESULT_TIMEOUT:.0f}s"
                    )
                    timed_out = True
                    break
                if item is None:
                    break
                if isinstance(item, ProviderFailure):
                    raise item
                yield item

            if timed_out:
                return
            try:
                await send_task
            except Exception as e:
                logger.error(f"Error sending audio to Deepgram: {e}")
                raise ProviderFailure("speech", f"Failed to send audio: {e}", e) from e
        finally:
            if not send_task.done():
                send_task.cancel()

    def _language(self, config: SessionConfig | None) -> str:
        return (config.language if config else None) or self._settings.default_language

    def _audio_format(self, config: SessionConfig | None) -> tuple[str | None, int]:
        """Session encoding and sample rate, falling back to the configured defaults."""
        encoding = (config.encoding if config else None) or self._settings.default_encoding
        sample_rate = (config.sample_rate if config else None) or self._settings.default_sample_rate
        return encoding or None, sample_rate

    def _live_options(self, config: SessionConfig | None) -> Any:
        from deepgram import LiveOptions

        encoding, sample_rate = self._audio_format(config)

        endpointing: dict[str, Any] = {}
        policy = config.endpointing if config else None
        if policy is not None:
            if policy.enabled:
                endpointing["endpointing"] = policy.silence_threshold_ms or DEFAULT_ENDPOINTING_MS
                if policy.end_threshold_ms:
                    endpointing["utterance_end_ms"] = policy.end_threshold_ms
            else:
                endpointing["endpointing"] = False

        return LiveOptions(
            model=self._model,
            language=self._language(config),
            punctuate=True,
            smart_format=True,
            interim_results=True,
            encoding=encoding or "linear16",
            sample_rate=sample_rate,
            channels=1,
            **endpointing,
        )

    def _convert_words(self, alternative: Any) -> tuple[TranscriptWord, ...] | None:
        raw_words = getattr(alternative, "words", None)
        if not raw_words:
            return None
        return tuple(
            TranscriptWord(
                word=w.word,
                start=w.start,
                end=w.end,
                confidence=getattr(w, "confidence", 0.0) or 0.0,
            )
            for w in raw_words
        )

    def _live_to_transcript(self, result: Any) -> Transcript | None:
        """Map a live Transcript message; None when it carries no text."""
        alternatives = result.channel.alternatives
        if not alternatives or not alternatives[0].transcript:
            return None

        alternative = alternatives[0]
        languages = getattr(alternative, "languages", None)

        return Transcript(
            text=alternative.transcript,
            confidence=getattr(alternative, "confidence", 0.0) or 0.0,
            is_final=bool(result.is_final),
            words=self._convert_words(alternative),
            language=languages[0] if languages else None,
            duration=getattr(result, "duration", None),
        )

    def _to_transcript(self, response: Any) -> Transcript:
        """Map a Deepgram prerecorded response to a Transcript."""
        results = response.results
        channels = results.channels if results else []
        if not channels or not channels[0].alternatives:
            raise ProviderFailure("speech", "Deepgram returned no transcription alternatives")

        channel = channels[0]
        alternative = channel.alternatives[0]

        metadata = getattr(response, "metadata", None)
        duration = getattr(metadata, "duration", None) if metadata else None

        return Transcript(
            text=alternative.transcript or "",
            confidence=getattr(alternative, "confidence", 0.0) or 0.0,
            is_final=True,
            words=self._convert_words(alternative),
            language=getattr(channel, "detected_language", None),
            duration=duration,
        )

    async def close(self) -> None:
        """Release the Deepgram client."""
        self._client = None

    async def health_check(self) -> bool:
        """Check if the provider has a usable client."""
        return self._client is not None
