"""
Failed-login counters and temporary account locks.

Counter updates are single UPDATE statements so concurrent attempts for the
same account never lose an increment. A failure that arrives while the
account is locked does not match the WHERE clause and leaves the counter
untouched.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import and_, case, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .config import settings
from .models import User


@dataclass(frozen=True)
class LockoutPolicy:
    threshold: int = 5
    lock_seconds: int = 30 * 60

    @classmethod
    def from_settings(cls) -> "LockoutPolicy":
        return cls(threshold=settings.lockout_threshold, lock_seconds=settings.lockout_seconds)


@dataclass(frozen=True)
class LockState:
    failed_login_count: int
    lock_until: int | None
    applied: bool

    def locked(self, now: int) -> bool:
        return self.lock_until is not None and self.lock_until > now


def is_locked(user: User, now: int) -> bool:
    lock_until = getattr(user, "lock_until", None)
    return lock_until is not None and int(lock_until) > now


async def _read_state(db: AsyncSession, user_id: int, applied: bool) -> LockState:
    row = (
        await db.execute(select(User.failed_login_count, User.lock_until).where(User.id == int(user_id)))
    ).first()
    if row is None:
        return LockState(failed_login_count=0, lock_until=None, applied=applied)
    count, lock_until = row
    return LockState(
        failed_login_count=int(count or 0),
        lock_until=int(lock_until) if lock_until is not None else None,
        applied=applied,
    )


async def record_attempt(
    db: AsyncSession,
    user_id: int,
    succeeded: bool,
    now: int,
    policy: LockoutPolicy | None = None,
) -> LockState:
    policy = policy or LockoutPolicy.from_settings()

    if succeeded:
        stmt = (
            update(User)
            .where(User.id == int(user_id))
            .values(failed_login_count=0, lock_until=None, last_login=now, updated_at=now)
        )
    else:
        not_locked = or_(User.lock_until.is_(None), User.lock_until <= now)
        lock_expired = and_(User.lock_until.is_not(None), User.lock_until <= now)
        # an expired lock starts a fresh count
        next_count = case((lock_expired, 1), else_=User.failed_login_count + 1)
        stmt = (
            update(User)
            .where(User.id == int(user_id), not_locked)
            .values(
                failed_login_count=next_count,
                lock_until=case((next_count >= policy.threshold, now + policy.lock_seconds), else_=None),
                updated_at=now,
            )
        )

    result = await db.execute(stmt.execution_options(synchronize_session=False))
    await db.commit()
    return await _read_state(db, user_id, applied=bool(result.rowcount))


async def clear(db: AsyncSession, user_id: int, now: int) -> None:
    await db.execute(
        update(User)
        .where(User.id == int(user_id))
        .values(failed_login_count=0, lock_until=None, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
