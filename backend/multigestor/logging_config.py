"""
Logging setup using loguru.

Three sinks: stdout (text or JSON), a rotating ``app.log`` and an append-only
``audit.log`` that only receives records bound with ``audit=True``.
"""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

from .config import settings


def _text_formatter(record: dict) -> str:
    base_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
        "<level>{message}</level>"
    )
    if record["extra"]:
        base_format += " | {extra}"
    return base_format + "\n{exception}"


def _is_audit(record: dict) -> bool:
    return bool(record["extra"].get("audit"))


def _not_audit(record: dict) -> bool:
    return not _is_audit(record)


def setup_logging(log_dir: str | None = None, level: str | None = None) -> None:
    logger.remove()

    level = (level or settings.log_level).upper()
    log_path = Path(log_dir or settings.log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    if settings.log_format.lower() == "json":
        logger.add(sys.stdout, format="{message}", level=level, serialize=True, filter=_not_audit)
    else:
        logger.add(sys.stdout, format=_text_formatter, level=level, colorize=True, filter=_not_audit)

    logger.add(
        log_path / "app.log",
        format=_text_formatter,
        level=level,
        rotation="10 MB",
        retention=5,
        encoding="utf8",
        enqueue=True,
        filter=_not_audit,
    )
    # audit entries only
    logger.add(
        log_path / "audit.log",
        format="{time:YYYY-MM-DDTHH:mm:ss.SSSZ} | {message}",
        level="INFO",
        encoding="utf8",
        enqueue=True,
        catch=True,
        filter=_is_audit,
    )

    logger.info(f"Logging configured (level={level}, format={settings.log_format}, dir={log_path})")
