"""Shared pytest fixtures for nio-voice tests."""

from __future__ import annotations

import re
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from nio_voice.config import Settings
from nio_voice.core.agent import VoiceAgent
from nio_voice.core.events import AgentEvent
from nio_voice.services.llm.protocol import CompletionRequest, CompletionResult
from nio_voice.services.stt.protocol import Transcript


def build_settings(**overrides) -> Settings:
    """Create a Settings object with safe test defaults."""
    base = {
        "groq_api_key": "test-groq-key",
        "deepgram_api_key": "test-deepgram-key",
        "system_prompt": "You are a test agent.",
        "session_retention_seconds": 3600.0,
    }
    base.update(overrides)
    return Settings(**base)


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    """Return a factory to build Settings with overrides."""
    return build_settings


@pytest.fixture
def settings(settings_factory: Callable[..., Settings]) -> Settings:
    """Default Settings fixture."""
    return settings_factory()


# =============================================================================
# Fake Providers
# =============================================================================


class FakeSpeechProvider:
    """Scripted speech provider.

    Returns queued transcripts in order, repeating the last one. A stream
    reads every chunk, then yields stream_results.
    """

    def __init__(
        self,
        transcripts: list[Transcript] | None = None,
        error: Exception | None = None,
        stream_results: list[Transcript] | None = None,
    ) -> None:
        self.transcripts = list(transcripts or [Transcript(text="hello", confidence=0.9)])
        self.error = error
        self.stream_results = list(stream_results or [Transcript(text="hello", confidence=0.9)])
        self.calls: list[tuple[bytes, Any]] = []
        self.streamed: list[bytes] = []
        self.initialized = False
        self.closed = False

    async def initialize(self) -> None:
        self.initialized = True

    async def transcribe(self, audio: bytes, config: Any = None) -> Transcript:
        self.calls.append((audio, config))
        if self.error is not None:
            raise self.error
        if len(self.transcripts) > 1:
            return self.transcripts.pop(0)
        return self.transcripts[0]

    async def transcribe_stream(
        self, audio_chunks: AsyncIterator[bytes], config: Any = None
    ) -> AsyncIterator[Transcript]:
        async for data in audio_chunks:
            self.streamed.append(data)
        if self.error is not None:
            raise self.error
        for transcript in self.stream_results:
            yield transcript

    async def close(self) -> None:
        self.closed = True

    async def health_check(self) -> bool:
        return True


class FakeLLMProvider:
    """Scripted LLM provider that records every request."""

    def __init__(
        self,
        results: list[CompletionResult] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.results = list(results or [CompletionResult(text="Hi there")])
        self.error = error
        self.requests: list[CompletionRequest] = []
        self.initialized = False
        self.closed = False

    async def initialize(self) -> None:
        self.initialized = True

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]

    async def stream(
        self, request: CompletionRequest, on_chunk: Callable[[str], None]
    ) -> CompletionResult:
        """Like complete(), handing the text to on_chunk word by word."""
        result = await self.complete(request)
        for chunk in re.findall(r"\S+\s*", result.text):
            on_chunk(chunk)
        return result

    async def close(self) -> None:
        self.closed = True

    async def health_check(self) -> bool:
        return True


@pytest.fixture
def speech_factory() -> type[FakeSpeechProvider]:
    """Return the fake speech provider class for scripted construction."""
    return FakeSpeechProvider


@pytest.fixture
def llm_factory() -> type[FakeLLMProvider]:
    """Return the fake LLM provider class for scripted construction."""
    return FakeLLMProvider


@pytest.fixture
def speech() -> FakeSpeechProvider:
    return FakeSpeechProvider()


@pytest.fixture
def llm() -> FakeLLMProvider:
    return FakeLLMProvider()


@pytest.fixture
def agent(settings: Settings, speech: FakeSpeechProvider, llm: FakeLLMProvider) -> VoiceAgent:
    """VoiceAgent wired to fake providers."""
    return VoiceAgent(speech=speech, llm=llm, settings=settings)


@pytest.fixture
def recorded_events(agent: VoiceAgent) -> list[AgentEvent]:
    """Every event the agent publishes, in order."""
    events: list[AgentEvent] = []
    agent.subscribe(events.append)
    return events
