from __future__ import annotations

import uuid
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from .auth_sessions import resolve_session
from .config import settings
from .db import get_db
from .errors import Unauthenticated
from .models import User


@dataclass
class RequestContext:
    """Per-request identity and bookkeeping, passed explicitly to every call."""

    correlation_id: str
    client_ip: str
    user_agent: str
    method: str
    sid: str | None = None
    user: User | None = None

    @property
    def user_id(self) -> int | None:
        return int(self.user.id) if self.user is not None else None

    @property
    def is_admin(self) -> bool:
        return self.user is not None and self.user.role == "admin"


def client_ip(request: Request) -> str:
    ip = request.client.host if request.client else ""
    if ip in {"::1", "::ffff:127.0.0.1"}:
        ip = "127.0.0.1"
    return ip or "Desconocido"


def correlation_id(request: Request) -> str:
    cid = getattr(request.state, "correlation_id", None)
    return cid or uuid.uuid4().hex


async def get_context(request: Request, db: AsyncSession = Depends(get_db)) -> RequestContext:
    sid = request.cookies.get(settings.session_cookie)
    user = await resolve_session(db, sid)
    request.state.user_id = int(user.id) if user is not None else None
    return RequestContext(
        correlation_id=correlation_id(request),
        client_ip=client_ip(request),
        user_agent=request.headers.get("user-agent", "Desconocido"),
        method=request.method,
        sid=sid if user is not None else None,
        user=user,
    )


async def require_user(ctx: RequestContext = Depends(get_context)) -> RequestContext:
    if ctx.user is None:
        raise Unauthenticated()
    return ctx


async def require_admin(ctx: RequestContext = Depends(require_user)) -> RequestContext:
    if not ctx.is_admin:
        raise HTTPException(status_code=403, detail="admin required")
    return ctx
