"""
Login and logout.

An attempt moves through Received -> Identified -> Verified -> Authorized and
ends in SessionEstablished or Rejected. Callers only ever see
``AuthOutcome.public_message``; the internal ``reason`` goes to the logs.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from . import audit, lockout, users
from .auth import burn_verification, verify_password_async
from .auth_sessions import create_session, destroy_session, now_s
from .models import User
from .session_deps import RequestContext

GENERIC_FAILURE = "Correo electrónico o contraseña incorrectos."
LOCKED_FAILURE = "La cuenta está bloqueada temporalmente. Intente más tarde."


class AuthState(str, enum.Enum):
    RECEIVED = "received"
    IDENTIFIED = "identified"
    VERIFIED = "verified"
    AUTHORIZED = "authorized"
    SESSION_ESTABLISHED = "session_established"
    REJECTED = "rejected"


class RejectReason(str, enum.Enum):
    UNKNOWN_CREDENTIAL = "unknown_credential"
    LOCKED = "locked"
    INVALID_CREDENTIAL = "invalid_credential"


@dataclass
class AuthOutcome:
    state: AuthState
    reason: RejectReason | None = None
    user: User | None = None
    sid: str | None = None

    @property
    def ok(self) -> bool:
        return self.state is AuthState.SESSION_ESTABLISHED

    @property
    def public_message(self) -> str | None:
        if self.reason is RejectReason.LOCKED:
            return LOCKED_FAILURE
        if self.reason is not None:
            return GENERIC_FAILURE
        return None


class Authenticator:
    def __init__(self, policy: lockout.LockoutPolicy | None = None):
        self.policy = policy or lockout.LockoutPolicy.from_settings()

    async def authenticate(
        self,
        db: AsyncSession,
        email: str,
        password: str,
        ctx: RequestContext,
        now: int | None = None,
    ) -> AuthOutcome:
        now = now_s() if now is None else now
        outcome = await self._run(db, email, password, now)

        label = outcome.state.value if outcome.ok else f"rejected:{outcome.reason.value}"
        audit.login_attempt(ctx.client_ip, email, ctx.method, ctx.user_agent, label)
        if outcome.ok:
            audit.session_event(f"Usuario {outcome.user.email} ({outcome.user.id}) inició sesión")
        else:
            logger.info(f"login rejected reason={outcome.reason.value} cid={ctx.correlation_id}")
        return outcome

    async def _run(self, db: AsyncSession, email: str, password: str, now: int) -> AuthOutcome:
        # Received -> Identified
        user = await users.find_active_by_email(db, email)
        if user is None:
            await burn_verification(password or "")
            return AuthOutcome(AuthState.REJECTED, RejectReason.UNKNOWN_CREDENTIAL)

        # Identified -> Verified
        if lockout.is_locked(user, now):
            return AuthOutcome(AuthState.REJECTED, RejectReason.LOCKED, user=user)

        # Verified -> Authorized
        if not await verify_password_async(password or "", user.password_hash):
            state = await lockout.record_attempt(db, user.id, False, now, self.policy)
            if not state.applied:
                # another request locked the account in the meantime
                return AuthOutcome(AuthState.REJECTED, RejectReason.LOCKED, user=user)
            if state.locked(now):
                logger.warning(f"account locked user_id={user.id} until={state.lock_until}")
            return AuthOutcome(AuthState.REJECTED, RejectReason.INVALID_CREDENTIAL, user=user)

        # Authorized -> SessionEstablished
        await lockout.record_attempt(db, user.id, True, now, self.policy)
        sid = await create_session(db, user.id, now)
        user = await users.get_user(db, user.id)
        return AuthOutcome(AuthState.SESSION_ESTABLISHED, user=user, sid=sid)

    async def logout(self, db: AsyncSession, ctx: RequestContext) -> None:
        """Drop the server-side session. Never fails from the caller's view."""
        if ctx.user is not None:
            audit.session_event(f"Usuario {ctx.user.email} ({ctx.user.id}) cerró sesión")
        if not ctx.sid:
            return
        try:
            await destroy_session(db, ctx.sid)
        except Exception:  # noqa: BLE001
            logger.exception(f"session invalidation failed cid={ctx.correlation_id}")
            try:
                await db.rollback()
            except Exception:  # noqa: BLE001
                logger.exception("rollback after failed logout also failed")
