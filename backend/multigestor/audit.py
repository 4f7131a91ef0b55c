"""Audit trail for login attempts and session events (``audit.log``)."""

from __future__ import annotations

from datetime import datetime, timezone

from loguru import logger

_audit = logger.bind(audit=True)


def login_attempt(ip: str, email: str, method: str, user_agent: str, outcome: str) -> None:
    # never let the sink change an authentication outcome
    try:
        ts = datetime.now(timezone.utc).isoformat()
        _audit.info(
            f"{ts} | IP: {ip} | Correo: {email or 'No especificado'} | Método: {method} "
            f"| User-Agent: {user_agent} | Resultado: {outcome}"
        )
    except Exception:  # noqa: BLE001
        logger.exception("audit log write failed")


def session_event(message: str) -> None:
    try:
        _audit.info(message)
    except Exception:  # noqa: BLE001
        logger.exception("audit log write failed")
