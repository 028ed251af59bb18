"""Observability module for Prometheus metrics."""

from nio_voice.observability.metrics import (
    ACTIVE_SESSIONS,
    LLM_LATENCY,
    PROVIDER_FAILURE_TOTAL,
    SESSION_DURATION,
    SESSION_TOTAL,
    STT_LATENCY,
    TOOL_CALL_TOTAL,
    TURN_TOTAL,
    get_content_type,
    get_metrics,
)

__all__ = [
    "SESSION_TOTAL",
    "TURN_TOTAL",
    "TOOL_CALL_TOTAL",
    "PROVIDER_FAILURE_TOTAL",
    "ACTIVE_SESSIONS",
    "SESSION_DURATION",
    "STT_LATENCY",
    "LLM_LATENCY",
    "get_metrics",
    "get_content_type",
]
