"""
Render layer.

Views are returned as JSON payloads ``{"view": name, "flash": [...], ...}``;
turning them into HTML is left to whatever front end consumes them. Flash
messages survive exactly one redirect inside the signed Starlette session.
"""

from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, RedirectResponse

FLASH_KEY = "flash"


def _session(request: Request) -> dict[str, Any]:
    # absent when rendering from outside SessionMiddleware (unhandled errors)
    return request.scope.get("session", {})


def flash(request: Request, message: str, category: str = "success_msg") -> None:
    session = _session(request)
    messages = list(session.get(FLASH_KEY) or [])
    messages.append({"category": category, "text": message})
    session[FLASH_KEY] = messages


def pop_flashes(request: Request) -> list[dict[str, str]]:
    data = _session(request).pop(FLASH_KEY, None)
    if not isinstance(data, list):
        return []
    return [m for m in data if isinstance(m, dict) and "category" in m and "text" in m]


def redirect(
    request: Request,
    url: str,
    message: str | None = None,
    category: str = "success_msg",
) -> RedirectResponse:
    if message:
        _session(request).pop(FLASH_KEY, None)
        flash(request, message, category)
    return RedirectResponse(url, status_code=303)


def render(
    request: Request,
    view: str,
    data: dict[str, Any] | None = None,
    status_code: int = 200,
) -> JSONResponse:
    payload: dict[str, Any] = {"view": view, "flash": pop_flashes(request)}
    payload.update(jsonable_encoder(data or {}))
    return JSONResponse(payload, status_code=status_code)
