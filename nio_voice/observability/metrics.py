"""Prometheus metrics for the nio-voice agent.

Provides metrics for monitoring session lifecycle, turn outcomes and
provider latency.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

# =============================================================================
# Counters
# =============================================================================

SESSION_TOTAL = Counter(
    "nio_voice_session_total",
    "Total sessions by lifecycle event",
    ["event"],
)

TURN_TOTAL = Counter(
    "nio_voice_turn_total",
    "Total conversational turns by outcome",
    ["kind", "outcome"],
)

TOOL_CALL_TOTAL = Counter(
    "nio_voice_tool_call_total",
    "Tool calls surfaced by the language model",
    ["tool"],
)

PROVIDER_FAILURE_TOTAL = Counter(
    "nio_voice_provider_failure_total",
    "Failed backend calls",
    ["backend"],
)

# =============================================================================
# Gauges
# =============================================================================

ACTIVE_SESSIONS = Gauge(
    "nio_voice_active_sessions",
    "Sessions started and not yet ended",
)

# =============================================================================
# Histograms
# =============================================================================

SESSION_DURATION = Histogram(
    "nio_voice_session_duration_seconds",
    "Session duration in seconds",
    buckets=[10, 30, 60, 120, 300, 600, 900, 1800],
)

STT_LATENCY = Histogram(
    "nio_voice_stt_latency_seconds",
    "Speech-to-text latency per transcription call",
    buckets=[0.1, 0.25, 0.5, 0.75, 1.0, 1.5, 2.0, 3.0, 5.0],
)

LLM_LATENCY = Histogram(
    "nio_voice_llm_latency_seconds",
    "Language model latency per completion call",
    buckets=[0.1, 0.25, 0.5, 0.75, 1.0, 1.5, 2.0, 3.0, 5.0, 10.0],
)

# =============================================================================
# Helper Functions
# =============================================================================


def record_session_started() -> None:
    """Record a session entering the active set."""
    SESSION_TOTAL.labels(event="started").inc()
    ACTIVE_SESSIONS.inc()


def record_session_ended(duration_seconds: float | None) -> None:
    """Record a session leaving the active set.

    Args:
        duration_seconds: Session duration, when the session reached ENDED
    """
    SESSION_TOTAL.labels(event="ended").inc()
    ACTIVE_SESSIONS.dec()
    if duration_seconds is not None:
        SESSION_DURATION.observe(duration_seconds)


def record_session_discarded() -> None:
    """Record a session deleted before it ended."""
    SESSION_TOTAL.labels(event="discarded").inc()
    ACTIVE_SESSIONS.dec()


def record_session_reopened() -> None:
    """Record an ENDED session brought back to life."""
    SESSION_TOTAL.labels(event="reopened").inc()
    ACTIVE_SESSIONS.inc()


def record_turn(kind: str, outcome: str) -> None:
    """Record a finished turn.

    Args:
        kind: "audio" for process_turn, "tool_result" for submit_tool_result
        outcome: "success" or the failing backend name
    """
    TURN_TOTAL.labels(kind=kind, outcome=outcome).inc()


def record_tool_call(tool_name: str) -> None:
    """Record a tool call surfaced to the caller."""
    TOOL_CALL_TOTAL.labels(tool=tool_name).inc()


def record_provider_latency(backend: str, latency_ms: float) -> None:
    """Record backend latency (milliseconds, converted to seconds)."""
    if latency_ms <= 0:
        return
    histogram = STT_LATENCY if backend == "speech" else LLM_LATENCY
    histogram.observe(latency_ms / 1000)


def record_provider_failure(backend: str) -> None:
    """Record a failed backend call."""
    PROVIDER_FAILURE_TOTAL.labels(backend=backend).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output.

    Returns:
        Metrics in Prometheus text exposition format.
    """
    return generate_latest()


def get_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
