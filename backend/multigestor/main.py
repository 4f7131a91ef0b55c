from __future__ import annotations

import asyncio
import math
import random
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.sessions import SessionMiddleware

from . import db as database
from . import users
from .admin_schemas import AdminUserOut, ContactMessageOut
from .authenticator import Authenticator
from .config import DEV_SESSION_SECRET, settings
from .contacts import ContactRepository
from .db import get_db
from .errors import Forbidden, NotFound, PersistenceFailure, TransientExternalFailure, Unauthenticated, ValidationError
from .logging_config import setup_logging
from .notes import NoteRepository
from .schemas import NoteOut, NotePage, UserOut
from .session_deps import RequestContext, get_context, require_admin, require_user
from .validation import validate_search
from .views import redirect, render

LOGIN_URL = "/usuarios/ingreso"
SIGNUP_URL = "/usuarios/registro"
NOTES_URL = "/notas"
FLASH_SESSION_COOKIE = "mg_session"

authenticator = Authenticator()
r = aioredis.from_url(settings.redis_url, decode_responses=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    if settings.app_env == "prod" and settings.session_secret == DEV_SESSION_SECRET:
        raise RuntimeError("SESSION_SECRET must be set in production")
    database.configure()

    # the database container may not be ready when the app boots
    last_exc: Exception | None = None
    for _ in range(30):
        try:
            await database.init_db()
            break
        except Exception as exc:  # noqa: BLE001
            last_exc = exc
            logger.warning(f"database not ready yet: {exc}")
            await asyncio.sleep(1.0)
    else:
        raise RuntimeError(f"DB init failed after retries: {last_exc}")

    admin_email = settings.admin_bootstrap_email.strip()
    admin_pw = settings.admin_bootstrap_password.strip()
    if settings.app_env == "dev":
        admin_email = admin_email or "admin@multigestor.local"
        admin_pw = admin_pw or "Admin1234"
    if admin_email and admin_pw:
        async with database.async_session() as s:
            await users.ensure_bootstrap_admin(s, admin_email, admin_pw)

    logger.info("Multigestor ready")
    yield
    await database.close_db()
    await r.aclose()


app = FastAPI(title="Multigestor", lifespan=lifespan)

# signed cookie holding flash messages between a redirect and the next view
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.session_secret,
    session_cookie=FLASH_SESSION_COOKIE,
    max_age=settings.session_ttl_seconds,
    same_site="lax",
    https_only=settings.cookie_secure,
)


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    cid = request.headers.get("x-request-id") or uuid.uuid4().hex
    request.state.correlation_id = cid
    with logger.contextualize(correlation_id=cid):
        response = await call_next(request)
    response.headers["X-Request-ID"] = cid
    return response


# --- error handling -------------------------------------------------------


@app.exception_handler(Unauthenticated)
async def _unauthenticated(request: Request, exc: Unauthenticated):
    return redirect(request, LOGIN_URL, exc.public_message, "error_msg")


@app.exception_handler(NotFound)
async def _not_found(request: Request, exc: NotFound):
    if request.url.path.startswith("/admin"):
        return JSONResponse({"detail": exc.message}, status_code=404)
    return redirect(request, NOTES_URL, "La nota solicitada no existe", "error_msg")


@app.exception_handler(Forbidden)
async def _forbidden(request: Request, exc: Forbidden):
    logger.warning(
        f"forbidden: user_id={getattr(request.state, 'user_id', None)} "
        f"{request.method} {request.url.path}: {exc.message}"
    )
    return redirect(request, NOTES_URL, "No tienes permiso para modificar esta nota", "error_msg")


@app.exception_handler(PersistenceFailure)
@app.exception_handler(SQLAlchemyError)
async def _persistence_failure(request: Request, exc: Exception):
    logger.opt(exception=exc).error(f"persistence failure on {request.method} {request.url.path}")
    return render(request, "error", {"message": PersistenceFailure.public_message}, status_code=500)


@app.exception_handler(Exception)
async def _unexpected(request: Request, exc: Exception):
    logger.opt(exception=exc).error(f"unhandled error on {request.method} {request.url.path}")
    return render(request, "error", {"message": "Ocurrió un error inesperado"}, status_code=500)


# --- helpers --------------------------------------------------------------


async def _fields(request: Request, *names: str) -> dict[str, str]:
    if request.headers.get("content-type", "").startswith("application/json"):
        body = await request.json()
        if not isinstance(body, dict):
            body = {}
    else:
        body = await request.form()
    return {n: str(body.get(n) or "") for n in names}


async def _pad_rejection(started: float) -> None:
    """Make every rejected signup take about the same time."""
    elapsed = time.monotonic() - started
    delay = max(0.0, settings.signup_reject_min_seconds - elapsed)
    if settings.signup_reject_jitter_seconds > 0:
        delay += random.uniform(0, settings.signup_reject_jitter_seconds)
    if delay > 0:
        await asyncio.sleep(delay)


def _user_out(ctx: RequestContext) -> dict[str, Any] | None:
    return UserOut.model_validate(ctx.user).model_dump() if ctx.user is not None else None


# --- health ---------------------------------------------------------------


async def _ping_redis() -> None:
    try:
        await r.ping()
    except Exception as exc:  # noqa: BLE001
        raise TransientExternalFailure(f"redis unreachable: {exc}") from exc


@app.get("/health")
async def health():
    try:
        await _ping_redis()
        redis_ok = True
    except TransientExternalFailure as exc:
        logger.warning(exc.message)
        redis_ok = False

    db_ok = False
    if database.async_session is not None:
        try:
            async with database.async_session() as s:
                await s.execute(text("SELECT 1"))
            db_ok = True
        except SQLAlchemyError:
            logger.exception("database health check failed")
    return {"ok": True, "db": db_ok, "redis": redis_ok}


@app.get("/healthz")
async def healthz():
    return {"ok": True}


# --- index / faq / contact ------------------------------------------------


@app.get("/")
async def index(request: Request, ctx: RequestContext = Depends(get_context)):
    return render(request, "index", {"user": _user_out(ctx)})


@app.get("/faq")
async def faq(request: Request, ctx: RequestContext = Depends(require_user)):
    referer = request.headers.get("referer")
    own_origin = f"{request.url.scheme}://{request.headers.get('host', '')}"
    if referer and not referer.startswith(own_origin):
        logger.warning(f"faq blocked for foreign referer user_id={ctx.user_id}")
        return PlainTextResponse("Acceso no autorizado.", status_code=403)
    return render(request, "faq", {"user": _user_out(ctx)})


@app.get("/contacto")
async def contact_form(request: Request, ctx: RequestContext = Depends(get_context)):
    return render(request, "contact", {"user": _user_out(ctx)})


@app.post("/contacto")
async def contact_submit(
    request: Request,
    ctx: RequestContext = Depends(get_context),
    db: AsyncSession = Depends(get_db),
):
    f = await _fields(request, "name", "email", "subject", "message")
    try:
        await ContactRepository(db).create(
            f["name"], f["email"], f["subject"], f["message"], user_id=ctx.user_id, ip_address=ctx.client_ip
        )
    except ValidationError as exc:
        return render(request, "contact", {"errors": exc.violations, **f}, status_code=400)
    return redirect(request, "/", "Mensaje enviado correctamente. Te responderemos pronto.")


# --- users ----------------------------------------------------------------


@app.get(SIGNUP_URL)
async def signup_form(request: Request):
    return render(request, "users/signup", {"title": "Registro de usuario"})


@app.post(SIGNUP_URL)
async def signup(request: Request, db: AsyncSession = Depends(get_db)):
    started = time.monotonic()
    f = await _fields(request, "name", "email", "password", "confirm_password")
    try:
        await users.signup(db, f["name"], f["email"], f["password"], f["confirm_password"])
    except ValidationError as exc:
        await _pad_rejection(started)
        return render(
            request,
            "users/signup",
            {"errors": exc.violations, "name": f["name"], "email": f["email"]},
            status_code=400,
        )
    return redirect(request, LOGIN_URL, "Usuario registrado correctamente. Ahora puedes iniciar sesión.")


@app.get(LOGIN_URL)
async def signin_form(request: Request):
    return render(request, "users/signin", {"title": "Iniciar sesión"})


@app.post(LOGIN_URL)
async def signin(
    request: Request,
    ctx: RequestContext = Depends(get_context),
    db: AsyncSession = Depends(get_db),
):
    f = await _fields(request, "email", "password")
    if not f["email"].strip() or not f["password"]:
        return redirect(request, LOGIN_URL, "Todos los campos son obligatorios", "error_msg")

    outcome = await authenticator.authenticate(db, f["email"], f["password"], ctx)
    if not outcome.ok:
        return redirect(request, LOGIN_URL, outcome.public_message, "error_msg")

    resp = redirect(request, NOTES_URL)
    resp.set_cookie(
        key=settings.session_cookie,
        value=outcome.sid,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
        path="/",
        max_age=settings.session_ttl_seconds,
    )
    return resp


@app.get("/usuarios/salir")
async def logout(
    request: Request,
    ctx: RequestContext = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    await authenticator.logout(db, ctx)
    resp = redirect(request, LOGIN_URL, "Has cerrado sesión correctamente")
    resp.delete_cookie(key=settings.session_cookie, path="/")
    return resp


@app.get("/api/me", response_model=UserOut)
async def me(ctx: RequestContext = Depends(require_user)):
    return UserOut.model_validate(ctx.user)


# --- notes ----------------------------------------------------------------


@app.get(NOTES_URL)
async def list_notes(
    request: Request,
    search: str | None = None,
    page: int = Query(default=1, ge=1),
    ctx: RequestContext = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    violations = validate_search(search or "")
    if violations:
        return render(
            request,
            "notes/all-notes",
            {"errors": violations, "search": search, "user": _user_out(ctx)},
            status_code=400,
        )

    page_size = settings.notes_page_size
    items, total = await NoteRepository(db).list_for_owner(ctx.user_id, search=search, page=page, page_size=page_size)
    result = NotePage(
        items=[NoteOut.model_validate(n) for n in items],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if total else 0,
        search=search,
    )
    return render(request, "notes/all-notes", {"notes": result, "user": _user_out(ctx)})


@app.get("/notas/agregar")
async def new_note_form(request: Request, ctx: RequestContext = Depends(require_user)):
    return render(request, "notes/new-note", {"user": _user_out(ctx)})


@app.post("/notas/nota-nueva")
async def create_note(
    request: Request,
    ctx: RequestContext = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    f = await _fields(request, "title", "description")
    try:
        await NoteRepository(db).create(ctx.user_id, f["title"], f["description"])
    except ValidationError as exc:
        return render(request, "notes/new-note", {"errors": exc.violations, **f}, status_code=400)
    return redirect(request, NOTES_URL, "Nota creada correctamente")


@app.get("/notas/editar/{note_id}")
async def edit_note_form(
    note_id: str,
    request: Request,
    ctx: RequestContext = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    note = await NoteRepository(db).get_for_owner(note_id, ctx.user_id)
    return render(request, "notes/edit-note", {"note": NoteOut.model_validate(note)})


@app.put("/notas/editar/{note_id}")
async def update_note(
    note_id: str,
    request: Request,
    ctx: RequestContext = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    f = await _fields(request, "title", "description")
    try:
        await NoteRepository(db).update(note_id, ctx.user_id, f["title"], f["description"])
    except ValidationError as exc:
        return render(request, "notes/edit-note", {"errors": exc.violations, "id": note_id, **f}, status_code=400)
    return redirect(request, NOTES_URL, "Nota actualizada correctamente")


@app.delete("/notas/borrar/{note_id}")
async def delete_note(
    note_id: str,
    request: Request,
    ctx: RequestContext = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    await NoteRepository(db).soft_delete(note_id, ctx.user_id)
    return redirect(request, NOTES_URL, "Nota eliminada correctamente")


# --- admin ----------------------------------------------------------------


@app.get("/admin/usuarios", response_model=list[AdminUserOut])
async def admin_list_users(ctx: RequestContext = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return [AdminUserOut.model_validate(u) for u in await users.list_users(db)]


@app.post("/admin/usuarios/{user_id}/desactivar", response_model=AdminUserOut)
async def admin_deactivate_user(
    user_id: int,
    ctx: RequestContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    u = await users.deactivate(db, user_id)
    logger.info(f"user {user_id} deactivated by admin {ctx.user_id}")
    return AdminUserOut.model_validate(u)


@app.post("/admin/usuarios/{user_id}/desbloquear", response_model=AdminUserOut)
async def admin_unlock_user(
    user_id: int,
    ctx: RequestContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    u = await users.unlock(db, user_id)
    logger.info(f"user {user_id} unlocked by admin {ctx.user_id}")
    return AdminUserOut.model_validate(u)


@app.get("/admin/contactos", response_model=list[ContactMessageOut])
async def admin_list_contacts(
    request: Request,
    status: str = "pending",
    ctx: RequestContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    status = status.strip().lower()
    try:
        rows = await ContactRepository(db).list_messages(status)
    except ValidationError as exc:
        return render(request, "error", {"errors": exc.violations}, status_code=400)
    return [ContactMessageOut.model_validate(m) for m in rows]


@app.post("/admin/contactos/{message_id}/leido", response_model=ContactMessageOut)
async def admin_mark_contact_read(
    message_id: int,
    ctx: RequestContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return ContactMessageOut.model_validate(await ContactRepository(db).mark_read(message_id))


@app.post("/admin/contactos/{message_id}/respondido", response_model=ContactMessageOut)
async def admin_mark_contact_replied(
    message_id: int,
    ctx: RequestContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return ContactMessageOut.model_validate(await ContactRepository(db).mark_replied(message_id))
