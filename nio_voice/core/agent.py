"""Voice agent orchestrator.

Runs one conversational turn at a time per session:
- Audio → transcript (speech provider)
- Transcript appended to the session ledger
- Ledger → completion (LLM provider), response appended
- Requested tool calls surfaced as events for the caller to execute

process_stream_turn does the same for a stream of audio chunks, publishing
interim transcripts as they arrive. With stream_completions set, every
completion is streamed and its text deltas published as llm:stream events.

Events are published at each checkpoint. Session status only changes via
the explicit lifecycle methods, never as a side effect of a failed turn.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import time
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from nio_voice.config import Settings, get_settings
from nio_voice.core.events import (
    AgentEvent,
    AudioChunk,
    AudioInputEvent,
    CompletionResponseEvent,
    CompletionStartEvent,
    CompletionStreamEvent,
    ErrorEvent,
    EventBus,
    EventListener,
    EventType,
    SessionEndEvent,
    SessionStartEvent,
    ToolCallEvent,
    ToolResultEvent,
    TranscriptFinalEvent,
    TranscriptPartialEvent,
)
from nio_voice.core.ledger import ConversationLedger
from nio_voice.core.session import Session, SessionConfig, SessionStatus, SessionStore
from nio_voice.core.steps import CompletionStep, TranscriptionStep
from nio_voice.exceptions import ProviderFailure, SessionNotFoundError
from nio_voice.logging_config import get_logger, sanitize_for_log
from nio_voice.observability.metrics import (
    record_session_discarded,
    record_session_ended,
    record_session_reopened,
    record_session_started,
    record_tool_call,
    record_turn,
)
from nio_voice.services.llm.protocol import (
    CompletionRequest,
    CompletionResult,
    Message,
    Role,
    Tool,
    ToolCall,
)

if TYPE_CHECKING:
    from nio_voice.services.llm.protocol import LLMProvider, ToolChoice
    from nio_voice.services.stt.protocol import SpeechProvider, Transcript

logger: Any = get_logger(__name__)


@dataclass(frozen=True)
class TurnResult:
    """Outcome of one audio turn."""

    transcript: Transcript
    response_text: str
    tool_calls: list[ToolCall] | None = None


class VoiceAgent:
    """Orchestrates sessions and speech → LLM turns.

    Turns for the same session are serialized with a per-session lock;
    turns for different sessions may run concurrently.
    """

    def __init__(
        self,
        speech: SpeechProvider,
        llm: LLMProvider,
        system_prompt: str | None = None,
        *,
        tools: Sequence[Tool] | None = None,
        tool_choice: ToolChoice | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        settings: Settings | None = None,
        event_bus: EventBus | None = None,
        stream_completions: bool = False,
    ) -> None:
        self._settings = settings or get_settings()
        self._speech = speech
        self._llm = llm
        self._system_prompt = (
            system_prompt if system_prompt is not None else self._settings.system_prompt
        )
        self._tools = list(tools) if tools else None
        self._tool_choice = tool_choice
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._stream_completions = stream_completions

        self._sessions = SessionStore()
        self._ledger = ConversationLedger()
        self._events = event_bus or EventBus()
        self._transcription = TranscriptionStep(speech)
        self._completion = CompletionStep(llm)

        self._turn_locks: dict[str, asyncio.Lock] = {}
        # Sessions counted in the active-sessions gauge
        self._counted: set[str] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        **kwargs: Any,
    ) -> VoiceAgent:
        """Create an agent backed by Deepgram (speech) and Groq (LLM)."""
        from nio_voice.services.llm.groq import GroqLLMProvider
        from nio_voice.services.stt.deepgram import DeepgramSpeechProvider

        s = settings or get_settings()
        return cls(
            speech=DeepgramSpeechProvider(settings=s),
            llm=GroqLLMProvider(settings=s),
            settings=s,
            **kwargs,
        )

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    async def initialize(self) -> None:
        """Initialize both providers."""
        await asyncio.gather(self._speech.initialize(), self._llm.initialize())
        logger.info("Voice agent initialized")

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    def start_session(self, config: SessionConfig | None = None) -> Session:
        """Create a session, open its ledger and mark it ACTIVE.

        Raises:
            DuplicateSessionIdError: If config.id is already in use
        """
        session = self._sessions.create(config)
        self._ledger.open(session.id)

        self._publish(SessionStartEvent(session=session))
        self._sessions.transition(session.id, SessionStatus.ACTIVE)
        self._counted.add(session.id)
        record_session_started()

        logger.info(
            f"Session started: {session.id} metadata={sanitize_for_log(session.metadata)}"
        )
        return session

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def transition_session(self, session_id: str, status: SessionStatus) -> Session:
        """Move a session to any status (no reachability check).

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        if status == SessionStatus.ENDED:
            return self.end_session(session_id)

        session = self._require_session(session_id)
        reopened = session.status == SessionStatus.ENDED
        session = self._sessions.transition(session_id, status)

        if reopened:
            # History was discarded on end; the revived session starts fresh
            self._ledger.open(session_id)
            if session_id not in self._counted:
                self._counted.add(session_id)
                record_session_reopened()
            logger.info(f"Session reopened: {session_id} ({status.value})")
        return session

    def end_session(self, session_id: str) -> Session:
        """End a session and discard its history.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        session = self._finish_session(session_id)
        self._publish(SessionEndEvent(session=session))
        return session

    def _finish_session(self, session_id: str) -> Session:
        session = self._require_session(session_id)

        self._sessions.end(session_id)
        self._ledger.clear(session_id)
        self._turn_locks.pop(session_id, None)

        if session_id in self._counted:
            self._counted.discard(session_id)
            record_session_ended(session.duration)
            logger.info(f"Session ended: {session_id} ({session.duration:.1f}s)")
        return session

    def fail_session(self, session_id: str, error: BaseException) -> Session:
        """Mark a session as ERROR and publish an error event.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        session = self._sessions.transition(session_id, SessionStatus.ERROR)
        logger.warning(f"Session {session_id} failed: {error}")
        self._publish(ErrorEvent(error=error, session_id=session_id))
        return session

    def delete_session(self, session_id: str) -> bool:
        """Remove a session and its history. Returns whether it existed."""
        existed = self._sessions.delete(session_id)
        self._ledger.clear(session_id)
        self._turn_locks.pop(session_id, None)

        if session_id in self._counted:
            self._counted.discard(session_id)
            record_session_discarded()
        return existed

    def list_active_sessions(self) -> list[Session]:
        return self._sessions.list_active()

    def sweep_expired_sessions(self, max_age_seconds: float | None = None) -> int:
        """Delete ended sessions older than the retention window, with their history."""
        if max_age_seconds is None:
            max_age_seconds = self._settings.session_retention_seconds

        expired = self._sessions.sweep_expired_ids(max_age_seconds)
        for session_id in expired:
            self._ledger.clear(session_id)
            self._turn_locks.pop(session_id, None)
        return len(expired)

    def get_stats(self) -> dict[str, int]:
        return self._sessions.stats()

    def get_history(self, session_id: str) -> list[Message]:
        """Ordered conversation history; empty for unknown sessions."""
        return self._ledger.read(session_id)

    def get_transcript(self, session_id: str) -> str:
        return self._ledger.get_transcript(session_id)

    # =========================================================================
    # Turns
    # =========================================================================

    async def process_turn(self, session_id: str, audio: bytes) -> TurnResult:
        """Run one audio → transcript → completion turn.

        A failed transcription leaves the ledger untouched. A failed
        completion keeps the user message already appended.

        Raises:
            SessionNotFoundError: If the session does not exist
            ProviderFailure: If the speech or LLM backend fails
        """
        session = self._require_session(session_id)

        async with self._turn_lock(session_id):
            try:
                result = await self._run_turn(session, audio)
            except ProviderFailure as e:
                record_turn("audio", e.backend)
                logger.warning(f"Turn failed for {session_id} ({e.backend}): {e}")
                raise

        record_turn("audio", "success")
        return result

    async def _run_turn(self, session: Session, audio: bytes) -> TurnResult:
        session_id = session.id

        self._publish(
            AudioInputEvent(
                session_id=session_id,
                audio=AudioChunk(data=audio, timestamp=time.time()),
            )
        )

        transcript = await self._transcription.transcribe(audio, session.config)
        return await self._respond(session, transcript)

    async def process_stream_turn(
        self,
        session_id: str,
        audio_chunks: AsyncIterator[bytes],
    ) -> TurnResult:
        """Run one turn over streamed audio.

        Each chunk is published as audio:input with its sequence number and
        each interim result as transcript:partial. Once the stream ends, the
        joined final transcript goes through the same completion path as
        process_turn.

        Raises:
            SessionNotFoundError: If the session does not exist
            ProviderFailure: If the speech or LLM backend fails
        """
        session = self._require_session(session_id)

        async with self._turn_lock(session_id):
            try:
                result = await self._run_stream_turn(session, audio_chunks)
            except ProviderFailure as e:
                record_turn("stream", e.backend)
                logger.warning(f"Stream turn failed for {session_id} ({e.backend}): {e}")
                raise

        record_turn("stream", "success")
        return result

    async def _run_stream_turn(
        self, session: Session, audio_chunks: AsyncIterator[bytes]
    ) -> TurnResult:
        session_id = session.id
        sequence = itertools.count()

        def on_audio(data: bytes) -> None:
            chunk = AudioChunk(data=data, timestamp=time.time(), sequence_number=next(sequence))
            self._publish(AudioInputEvent(session_id=session_id, audio=chunk))

        def on_partial(transcript: Transcript) -> None:
            self._publish(TranscriptPartialEvent(session_id=session_id, transcript=transcript))

        transcript = await self._transcription.transcribe_stream(
            audio_chunks,
            session.config,
            on_audio=on_audio,
            on_partial=on_partial,
        )
        return await self._respond(session, transcript)

    async def _respond(self, session: Session, transcript: Transcript) -> TurnResult:
        session_id = session.id

        self._publish(TranscriptFinalEvent(session_id=session_id, transcript=transcript))
        logger.debug(f"Transcript for {session_id}: {transcript.text[:50]}")

        self._append(session_id, Message(role=Role.USER, content=transcript.text))

        request = self._completion.build_request(
            self._ledger.read(session_id),
            self._system_prompt_for(session),
            self._tools,
            self._tool_choice,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )
        self._publish(CompletionStartEvent(session_id=session_id, request=request))

        response = await self._complete(session_id, request)

        self._append_assistant(session_id, response)
        self._publish(CompletionResponseEvent(session_id=session_id, response=response))

        self._surface_tool_calls(session_id, response)

        return TurnResult(
            transcript=transcript,
            response_text=response.text,
            tool_calls=response.tool_calls,
        )

    async def submit_tool_result(
        self,
        session_id: str,
        tool_call: ToolCall,
        result: Any,
    ) -> str:
        """Report a tool's result and get the model's follow-up response.

        The tool call id is trusted as given; it is not checked against the
        calls surfaced earlier.

        Raises:
            SessionNotFoundError: If the session does not exist
            ProviderFailure: If the LLM backend fails
        """
        session = self._require_session(session_id)

        async with self._turn_lock(session_id):
            self._append(
                session_id,
                Message(
                    role=Role.TOOL,
                    content=json.dumps(result, default=str),
                    name=tool_call.name,
                    tool_call_id=tool_call.id,
                ),
            )

            request = self._completion.build_request(
                self._ledger.read(session_id),
                self._system_prompt_for(session),
                self._tools,
                self._tool_choice,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
            try:
                response = await self._complete(session_id, request)
            except ProviderFailure as e:
                record_turn("tool_result", e.backend)
                logger.warning(f"Tool result follow-up failed for {session_id}: {e}")
                raise

            self._append_assistant(session_id, response)
            self._publish(
                ToolResultEvent(session_id=session_id, tool_call=tool_call, result=result)
            )
            # Chained calls requested by the follow-up response
            self._surface_tool_calls(session_id, response)

        record_turn("tool_result", "success")
        return response.text

    # =========================================================================
    # Events
    # =========================================================================

    def subscribe(self, listener: EventListener, event_type: EventType | None = None) -> None:
        """Listen to all events, or only to one event type."""
        self._events.subscribe(listener, event_type)

    def unsubscribe(self, listener: EventListener, event_type: EventType | None = None) -> bool:
        return self._events.unsubscribe(listener, event_type)

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def close(self) -> None:
        """Release providers, end active sessions quietly, then drop all history.

        Sessions ended here publish no session:end event.
        """
        await asyncio.gather(self._speech.close(), self._llm.close())

        for session in self._sessions.list_active():
            self._finish_session(session.id)

        self._ledger.clear_all()
        self._turn_locks.clear()
        logger.info("Voice agent closed")

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_session(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _turn_lock(self, session_id: str) -> asyncio.Lock:
        lock = self._turn_locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._turn_locks[session_id] = lock
        return lock

    def _system_prompt_for(self, session: Session) -> str | None:
        return session.config.system_prompt or self._system_prompt or None

    def _append(self, session_id: str, message: Message) -> None:
        session = self._sessions.get(session_id)
        if session is None or session.status == SessionStatus.ENDED:
            # Ended or deleted mid-turn; its history is already gone
            logger.debug(f"Dropping {message.role.value} message for closed session {session_id}")
            return
        self._ledger.append(session_id, message)

    async def _complete(self, session_id: str, request: CompletionRequest) -> CompletionResult:
        if not self._stream_completions:
            return await self._completion.run(request)

        def on_chunk(chunk: str) -> None:
            self._publish(CompletionStreamEvent(session_id=session_id, chunk=chunk))

        return await self._completion.stream(request, on_chunk)

    def _append_assistant(self, session_id: str, response: CompletionResult) -> None:
        self._append(
            session_id,
            Message(
                role=Role.ASSISTANT,
                content=response.text,
                tool_calls=tuple(response.tool_calls or ()),
            ),
        )

    def _surface_tool_calls(self, session_id: str, response: CompletionResult) -> None:
        for tool_call in response.tool_calls or ():
            record_tool_call(tool_call.name)
            self._publish(ToolCallEvent(session_id=session_id, tool_call=tool_call))

    def _publish(self, event: AgentEvent) -> None:
        self._events.publish(event)
