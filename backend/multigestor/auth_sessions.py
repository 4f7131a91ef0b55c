from __future__ import annotations

import secrets
import time

from sqlalchemy import BigInteger, Column, ForeignKey, Integer, String, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from .config import settings
from .models import Base, User


class SessionRow(Base):
    __tablename__ = "sessions"

    sid = Column(String(64), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    expires_at = Column(BigInteger, nullable=False)  # unix seconds


def new_sid() -> str:
    return secrets.token_hex(32)


def now_s() -> int:
    return int(time.time())


async def create_session(db: AsyncSession, user_id: int, now: int | None = None) -> str:
    now = now_s() if now is None else now
    await db.execute(delete(SessionRow).where(SessionRow.expires_at < now))
    sid = new_sid()
    db.add(SessionRow(sid=sid, user_id=int(user_id), expires_at=now + settings.session_ttl_seconds))
    await db.commit()
    return sid


async def resolve_session(db: AsyncSession, sid: str | None, now: int | None = None) -> User | None:
    """Map a session id to a freshly loaded, active user."""
    if not sid:
        return None
    now = now_s() if now is None else now
    row = (await db.execute(select(SessionRow).where(SessionRow.sid == sid))).scalars().first()
    if row is None or int(row.expires_at) < now:
        return None
    u = (
        await db.execute(
            select(User).where(User.id == int(row.user_id)).execution_options(populate_existing=True)
        )
    ).scalars().first()
    if u is None or not bool(u.is_active):
        return None
    return u


async def destroy_session(db: AsyncSession, sid: str) -> None:
    await db.execute(delete(SessionRow).where(SessionRow.sid == sid))
    await db.commit()


async def destroy_user_sessions(db: AsyncSession, user_id: int) -> None:
    await db.execute(delete(SessionRow).where(SessionRow.user_id == int(user_id)))
    await db.commit()
