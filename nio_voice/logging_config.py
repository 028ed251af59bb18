"""Loguru setup for nio-voice.

Library modules only call get_logger(__name__); nothing is routed until an
application calls setup_logging(). Session metadata is caller-supplied, so
it goes through sanitize_for_log() before it reaches a sink.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger

if TYPE_CHECKING:
    from nio_voice.config import Settings

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{line} | {message}"

SENSITIVE_KEY_MARKERS = ("api_key", "token", "secret", "password")


def setup_logging(
    level: str | None = None,
    log_dir: str | Path | None = None,
    *,
    settings: Settings | None = None,
) -> None:
    """Route logs to stderr and, when log_dir is given, to a daily file.

    Args:
        level: Minimum level; defaults to Settings.log_level
        log_dir: Directory for nio_voice_<date>.log files; None for console only
        settings: Settings to read the level and environment from

    Tracebacks only render local variables outside production, since those
    can hold transcripts and caller metadata.
    """
    if settings is None:
        from nio_voice.config import get_settings

        settings = get_settings()

    level = level or settings.log_level
    diagnose = not settings.is_production

    logger.remove()
    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level=level,
        colorize=True,
        backtrace=True,
        diagnose=diagnose,
    )

    if log_dir is not None:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_path / "nio_voice_{time:YYYY-MM-DD}.log",
            format=FILE_FORMAT,
            level=level,
            rotation="00:00",
            retention="14 days",
            compression="gz",
            backtrace=True,
            diagnose=False,
        )

    logger.info(f"Logging at {level} ({settings.environment})")


def get_logger(name: str) -> Any:
    """Logger bound to a module name: ``logger = get_logger(__name__)``."""
    return logger.bind(name=name)


def mask_phone(phone: str) -> str:
    """98XXXXXXXX -> 98XXXX1234."""
    if not phone or len(phone) < 6:
        return "XXXX"
    return f"{phone[:2]}XXXX{phone[-4:]}"


def sanitize_for_log(data: dict[str, Any]) -> dict[str, Any]:
    """Copy of data with credential-like keys redacted and phone fields masked.

    Nested dicts are sanitized too; the input is never modified.
    """
    result: dict[str, Any] = {}

    for key, value in data.items():
        lowered = str(key).lower()
        if any(marker in lowered for marker in SENSITIVE_KEY_MARKERS):
            result[key] = "[REDACTED]"
        elif "phone" in lowered and isinstance(value, str):
            result[key] = mask_phone(value)
        elif isinstance(value, dict):
            result[key] = sanitize_for_log(value)
        else:
            result[key] = value

    return result
