"""Provider-facing pipeline steps.

Each step calls one backend, normalizes its result and turns backend
failures into ProviderFailure. Neither step touches conversation history.
"""

from __future__ import annotations

import dataclasses
import time
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from typing import TYPE_CHECKING, Any

from nio_voice.exceptions import NotInitializedError, ProviderFailure
from nio_voice.logging_config import get_logger
from nio_voice.observability.metrics import record_provider_failure, record_provider_latency
from nio_voice.services.llm.protocol import (
    CompletionRequest,
    CompletionResult,
    Message,
    Role,
    Tool,
    ToolChoice,
)
from nio_voice.services.stt.protocol import Transcript

if TYPE_CHECKING:
    from nio_voice.core.session import SessionConfig
    from nio_voice.services.llm.protocol import LLMProvider
    from nio_voice.services.stt.protocol import SpeechProvider

logger: Any = get_logger(__name__)


class TranscriptionStep:
    """Audio bytes -> final Transcript via the speech provider."""

    def __init__(self, provider: SpeechProvider) -> None:
        self._provider = provider

    async def transcribe(self, audio: bytes, config: SessionConfig | None = None) -> Transcript:
        """Transcribe one audio payload.

        Raises:
            NotInitializedError: When the provider was never initialized
            ProviderFailure: When the speech backend fails
        """
        start_time = time.perf_counter()
        try:
            transcript = await self._provider.transcribe(audio, config)
        except NotInitializedError:
            raise
        except ProviderFailure:
            record_provider_failure("speech")
            raise
        except Exception as e:
            logger.error(f"Speech backend failed: {e}")
            record_provider_failure("speech")
            raise ProviderFailure("speech", f"Transcription failed: {e}", e) from e

        record_provider_latency("speech", (time.perf_counter() - start_time) * 1000)

        if not transcript.is_final:
            transcript = dataclasses.replace(transcript, is_final=True)
        return transcript

    async def transcribe_stream(
        self,
        audio_chunks: AsyncIterator[bytes],
        config: SessionConfig | None = None,
        *,
        on_audio: Callable[[bytes], None] | None = None,
        on_partial: Callable[[Transcript], None] | None = None,
    ) -> Transcript:
        """Stream audio to the provider and return the utterance's final transcript.

        on_audio sees each chunk before it is sent and on_partial each
        interim result. Final results are joined in arrival order; when the
        stream yields none, the last interim result is promoted.

        Exceptions raised by the callbacks reach the caller unwrapped.

        Raises:
            NotInitializedError: When the provider was never initialized
            ProviderFailure: When the speech backend fails
        """
        callback_errors: list[Exception] = []

        async def relay() -> AsyncIterator[bytes]:
            async for data in audio_chunks:
                if on_audio is not None:
                    try:
                        on_audio(data)
                    except Exception as e:
                        callback_errors.append(e)
                        raise
                yield data

        start_time = time.perf_counter()
        finals: list[Transcript] = []
        last_partial: Transcript | None = None

        async with aclosing(self._provider.transcribe_stream(relay(), config)) as results:
            while True:
                try:
                    transcript = await anext(results)
                except StopAsyncIteration:
                    break
                except NotInitializedError:
                    raise
                except Exception as e:
                    callback_error = _callback_error(e, callback_errors)
                    if callback_error is not None:
                        raise callback_error from None
                    if isinstance(e, ProviderFailure):
                        record_provider_failure("speech")
                        raise
                    logger.error(f"Speech stream failed: {e}")
                    record_provider_failure("speech")
                    raise ProviderFailure("speech", f"Transcription failed: {e}", e) from e

                if transcript.is_final:
                    finals.append(transcript)
                else:
                    last_partial = transcript
                    if on_partial is not None:
                        on_partial(transcript)

        record_provider_latency("speech", (time.perf_counter() - start_time) * 1000)
        return _merge_finals(finals, last_partial)


def _callback_error(error: Exception, callback_errors: list[Exception]) -> Exception | None:
    """The callback exception behind error, if error came from a callback."""
    for candidate in callback_errors:
        if error is candidate:
            return candidate
        if isinstance(error, ProviderFailure) and error.cause is candidate:
            return candidate
    return None


def _merge_finals(finals: list[Transcript], last_partial: Transcript | None) -> Transcript:
    if not finals:
        if last_partial is None:
            return Transcript(text="", is_final=True)
        return dataclasses.replace(last_partial, is_final=True)
    if len(finals) == 1:
        return finals[0]

    words = tuple(word for t in finals for word in (t.words or ()))
    durations = [t.duration for t in finals if t.duration is not None]
    return Transcript(
        text=" ".join(t.text for t in finals if t.text),
        confidence=sum(t.confidence for t in finals) / len(finals),
        is_final=True,
        words=words or None,
        language=next((t.language for t in finals if t.language), None),
        duration=sum(durations) if durations else None,
    )


class CompletionStep:
    """Conversation history -> CompletionResult via the LLM provider."""

    def __init__(self, provider: LLMProvider) -> None:
        self._provider = provider

    def build_request(
        self,
        history: list[Message],
        system_prompt: str | None = None,
        tools: list[Tool] | None = None,
        tool_choice: ToolChoice | None = None,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> CompletionRequest:
        """Build the request: system message (if any) followed by history verbatim."""
        messages: list[Message] = []
        if system_prompt:
            messages.append(Message(role=Role.SYSTEM, content=system_prompt))
        messages.extend(history)

        return CompletionRequest(
            messages=messages,
            system_prompt=system_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            tools=tools,
            tool_choice=tool_choice,
        )

    async def complete(
        self,
        history: list[Message],
        system_prompt: str | None = None,
        tools: list[Tool] | None = None,
        tool_choice: ToolChoice | None = None,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> CompletionResult:
        """Build a request from history and run it."""
        request = self.build_request(
            history,
            system_prompt,
            tools,
            tool_choice,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return await self.run(request)

    async def run(self, request: CompletionRequest) -> CompletionResult:
        """Send a prepared request to the LLM provider.

        Raises:
            NotInitializedError: When the provider was never initialized
            ProviderFailure: When the LLM backend fails
        """
        start_time = time.perf_counter()
        try:
            result = await self._provider.complete(request)
        except NotInitializedError:
            raise
        except ProviderFailure:
            record_provider_failure("llm")
            raise
        except Exception as e:
            logger.error(f"LLM backend failed: {e}")
            record_provider_failure("llm")
            raise ProviderFailure("llm", f"Completion failed: {e}", e) from e

        record_provider_latency("llm", (time.perf_counter() - start_time) * 1000)
        return _normalize_result(result)

    async def stream(
        self,
        request: CompletionRequest,
        on_chunk: Callable[[str], None],
    ) -> CompletionResult:
        """Stream a prepared request, handing each text delta to on_chunk.

        Exceptions raised by on_chunk reach the caller unwrapped.

        Raises:
            NotInitializedError: When the provider was never initialized
            ProviderFailure: When the LLM backend fails
        """
        callback_errors: list[Exception] = []

        def relay(chunk: str) -> None:
            try:
                on_chunk(chunk)
            except Exception as e:
                callback_errors.append(e)
                raise

        start_time = time.perf_counter()
        try:
            result = await self._provider.stream(request, relay)
        except NotInitializedError:
            raise
        except Exception as e:
            callback_error = _callback_error(e, callback_errors)
            if callback_error is not None:
                raise callback_error from None
            if isinstance(e, ProviderFailure):
                record_provider_failure("llm")
                raise
            logger.error(f"LLM stream failed: {e}")
            record_provider_failure("llm")
            raise ProviderFailure("llm", f"Completion failed: {e}", e) from e

        record_provider_latency("llm", (time.perf_counter() - start_time) * 1000)
        return _normalize_result(result)


def _normalize_result(result: CompletionResult) -> CompletionResult:
    if result.tool_calls is not None and not result.tool_calls:
        return dataclasses.replace(result, tool_calls=None)
    return result
