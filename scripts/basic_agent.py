#!/usr/bin/env python3
"""Basic voice agent walkthrough: two spoken turns against Deepgram and Groq.

Needs DEEPGRAM_API_KEY and GROQ_API_KEY in the environment (or .env).

    python scripts/basic_agent.py sample-audio.wav followup-audio.wav
    python scripts/basic_agent.py --stream sample-audio.raw
"""

import argparse
import asyncio
from collections.abc import AsyncIterator
from pathlib import Path

from nio_voice import SessionConfig, VoiceAgent
from nio_voice.core.events import (
    AgentEvent,
    CompletionResponseEvent,
    ErrorEvent,
    TranscriptFinalEvent,
    TranscriptPartialEvent,
)
from nio_voice.logging_config import setup_logging

SYSTEM_PROMPT = "You are a helpful customer service agent. Be concise and friendly."

# 250ms of 16kHz 16-bit mono audio
STREAM_CHUNK_BYTES = 8000


def print_event(event: AgentEvent) -> None:
    if isinstance(event, TranscriptPartialEvent):
        print(f"   … {event.transcript.text}")
    elif isinstance(event, TranscriptFinalEvent):
        print(f'🎤 User: "{event.transcript.text}"')
        print(f"   Confidence: {event.transcript.confidence * 100:.1f}%\n")
    elif isinstance(event, CompletionResponseEvent):
        print(f'🤖 Agent: "{event.response.text}"')
        if event.response.usage:
            print(f"   Tokens: {event.response.usage.total_tokens}")
        print()
    elif isinstance(event, ErrorEvent):
        print(f"❌ Error: {event.error}")


async def read_chunks(path: Path) -> AsyncIterator[bytes]:
    """Replay a raw audio file in real-time sized chunks."""
    data = path.read_bytes()
    for offset in range(0, len(data), STREAM_CHUNK_BYTES):
        yield data[offset : offset + STREAM_CHUNK_BYTES]
        await asyncio.sleep(0.25)


async def main(audio_files: list[Path], stream: bool) -> None:
    print("🎙️  nio-voice - Basic Agent\n")

    agent = VoiceAgent.from_settings(system_prompt=SYSTEM_PROMPT)

    print("Initializing voice agent...")
    await agent.initialize()
    print("✓ Agent initialized\n")

    session = agent.start_session(SessionConfig(language="en", sample_rate=16000))
    print(f"✓ Session started: {session.id}\n")

    agent.subscribe(print_event)

    try:
        for path in audio_files:
            print(f"Processing {path.name}...\n")
            if stream:
                result = await agent.process_stream_turn(session.id, read_chunks(path))
            else:
                result = await agent.process_turn(session.id, path.read_bytes())

            print("─" * 50)
            print(f'  Transcript: "{result.transcript.text}"')
            print(f'  Response: "{result.response_text}"')
            print("─" * 50 + "\n")

        history = agent.get_history(session.id)
        print(f"📜 Conversation History ({len(history)} messages):")
        for i, message in enumerate(history, start=1):
            print(f"  {i}. [{message.role.value}] {message.content}")

        agent.end_session(session.id)
        print("\n✓ Session ended")
    finally:
        await agent.close()
        print("✓ Agent closed\n")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run two voice turns through nio-voice")
    parser.add_argument(
        "audio",
        type=Path,
        nargs="+",
        help="Audio files, one per turn",
    )
    parser.add_argument(
        "--stream",
        action="store_true",
        help="Send raw linear16 audio over the live connection instead of one-shot",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override LOG_LEVEL (DEBUG, INFO, WARNING, ERROR)",
    )
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    setup_logging(args.log_level)
    asyncio.run(main(args.audio, args.stream))
