from __future__ import annotations

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from . import lockout
from .auth import hash_password_async
from .auth_sessions import destroy_user_sessions, now_s
from .errors import NotFound, PersistenceFailure, ValidationError
from .models import User
from .validation import Violation, clean_name, normalize_email, validate_signup

ALREADY_REGISTERED = Violation(
    field="email", rule="already_registered", message="El correo electrónico ya está registrado"
)


async def find_by_email(db: AsyncSession, email: str) -> User | None:
    email = normalize_email(email)
    return (await db.execute(select(User).where(func.lower(User.email) == email))).scalars().first()


async def find_active_by_email(db: AsyncSession, email: str) -> User | None:
    email = normalize_email(email)
    return (
        await db.execute(
            select(User)
            .where(func.lower(User.email) == email, User.is_active.is_(True))
            .execution_options(populate_existing=True)
        )
    ).scalars().first()


async def get_user(db: AsyncSession, user_id: int) -> User:
    u = await db.get(User, int(user_id), populate_existing=True)
    if u is None:
        raise NotFound("user not found")
    return u


async def signup(db: AsyncSession, name: str, email: str, password: str, confirm_password: str) -> User:
    name = clean_name(name)
    email = normalize_email(email)
    password = password or ""

    violations = validate_signup(name, email, password, confirm_password or "")
    if violations:
        raise ValidationError(violations)

    if await find_by_email(db, email) is not None:
        raise ValidationError([ALREADY_REGISTERED])

    now = now_s()
    u = User(
        name=name,
        email=email,
        password_hash=await hash_password_async(password),
        role="user",
        is_active=True,
        email_verified=False,
        failed_login_count=0,
        lock_until=None,
        created_at=now,
        updated_at=now,
    )
    db.add(u)
    try:
        await db.commit()
    except IntegrityError:
        # concurrent signup for the same email
        await db.rollback()
        raise ValidationError([ALREADY_REGISTERED])
    except SQLAlchemyError as exc:
        await db.rollback()
        raise PersistenceFailure() from exc
    await db.refresh(u)
    logger.info(f"new user registered id={u.id}")
    return u


async def list_users(db: AsyncSession) -> list[User]:
    return list((await db.execute(select(User).order_by(User.id.asc()))).scalars().all())


async def deactivate(db: AsyncSession, user_id: int) -> User:
    """Logical delete: the record stays, login and sessions stop working."""
    u = await get_user(db, user_id)
    await db.execute(
        update(User)
        .where(User.id == int(user_id))
        .values(is_active=False, updated_at=now_s())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await destroy_user_sessions(db, user_id)
    return await get_user(db, u.id)


async def unlock(db: AsyncSession, user_id: int) -> User:
    await get_user(db, user_id)
    await lockout.clear(db, user_id, now_s())
    return await get_user(db, user_id)


async def ensure_bootstrap_admin(db: AsyncSession, email: str, password: str) -> User:
    email = normalize_email(email)
    u = await find_by_email(db, email)
    now = now_s()
    if u is None:
        u = User(
            name="Administrador",
            email=email,
            password_hash=await hash_password_async(password),
            role="admin",
            is_active=True,
            email_verified=True,
            failed_login_count=0,
            lock_until=None,
            created_at=now,
            updated_at=now,
        )
        db.add(u)
        await db.commit()
        logger.info(f"bootstrap admin created: {email}")
    elif u.role != "admin":
        u.role = "admin"
        u.updated_at = now
        db.add(u)
        await db.commit()
        logger.info(f"bootstrap admin promoted: {email}")
    return u
