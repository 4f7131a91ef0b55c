from __future__ import annotations

import re

from pydantic import BaseModel

NAME_MAX = 50
TITLE_MAX = 30
DESCRIPTION_MAX = 500
PASSWORD_MIN = 8
PASSWORD_MAX = 20
SEARCH_MAX = 100

_EMAIL_RE = re.compile(r"^[\w-]+(\.[\w-]+)*@([\w-]+\.)+[a-zA-Z]{2,7}$")
_CONTACT_EMAIL_RE = re.compile(r"^\S+@\S+\.\S+$")
_TAG_RE = re.compile(r"<[^>]*>")


class Violation(BaseModel):
    field: str
    rule: str
    message: str


def strip_markup(text: str) -> str:
    return _TAG_RE.sub("", text or "")


def clean_name(name: str) -> str:
    return (name or "").replace("<", "").replace(">", "").strip()


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _required(out: list[Violation], field: str, value: str, message: str) -> bool:
    if not value:
        out.append(Violation(field=field, rule="required", message=message))
        return False
    return True


def _length(out: list[Violation], field: str, value: str, lo: int | None, hi: int | None, message: str) -> None:
    if lo is not None and len(value) < lo:
        out.append(Violation(field=field, rule="min_length", message=message))
    elif hi is not None and len(value) > hi:
        out.append(Violation(field=field, rule="max_length", message=message))


def validate_signup(name: str, email: str, password: str, confirm_password: str) -> list[Violation]:
    """Check a signup form. Expects ``name`` and ``email`` already cleaned."""
    out: list[Violation] = []

    if _required(out, "name", name, "El nombre es obligatorio"):
        _length(out, "name", name, None, NAME_MAX, f"El nombre no puede tener más de {NAME_MAX} caracteres")

    if _required(out, "email", email, "El correo electrónico es obligatorio"):
        if not _EMAIL_RE.match(email):
            out.append(
                Violation(field="email", rule="format", message="Por favor ingresa un correo electrónico válido")
            )

    if _required(out, "password", password, "La contraseña es obligatoria"):
        _length(
            out,
            "password",
            password,
            PASSWORD_MIN,
            PASSWORD_MAX,
            f"Las contraseñas deben tener entre {PASSWORD_MIN} y {PASSWORD_MAX} caracteres",
        )
        if not (re.search(r"[a-z]", password) and re.search(r"[A-Z]", password) and re.search(r"\d", password)):
            out.append(
                Violation(
                    field="password",
                    rule="complexity",
                    message="La contraseña debe contener al menos una letra minúscula, una mayúscula y un número",
                )
            )
        if password != confirm_password:
            out.append(Violation(field="confirm_password", rule="mismatch", message="Las contraseñas no coinciden"))

    return out


def validate_note(title: str, description: str) -> list[Violation]:
    """Check an already trimmed and markup-stripped note."""
    out: list[Violation] = []
    if _required(out, "title", title, "El título es obligatorio."):
        _length(out, "title", title, None, TITLE_MAX, f"El título no puede tener más de {TITLE_MAX} caracteres.")
    if _required(out, "description", description, "La descripción es obligatoria."):
        _length(
            out,
            "description",
            description,
            None,
            DESCRIPTION_MAX,
            f"La descripción no puede tener más de {DESCRIPTION_MAX} caracteres.",
        )
    return out


def validate_search(search: str) -> list[Violation]:
    out: list[Violation] = []
    _length(out, "search", search, None, SEARCH_MAX, f"La búsqueda no puede tener más de {SEARCH_MAX} caracteres")
    return out


def validate_contact(name: str, email: str, subject: str, message: str) -> list[Violation]:
    out: list[Violation] = []
    if _required(out, "name", name, "El nombre es obligatorio"):
        _length(out, "name", name, 2, 100, "El nombre debe tener entre 2 y 100 caracteres")
    if _required(out, "email", email, "El correo electrónico es obligatorio"):
        if not _CONTACT_EMAIL_RE.match(email):
            out.append(
                Violation(field="email", rule="format", message="Por favor ingresa un correo electrónico válido")
            )
    if _required(out, "subject", subject, "El asunto es obligatorio"):
        _length(out, "subject", subject, 3, 200, "El asunto debe tener entre 3 y 200 caracteres")
    if _required(out, "message", message, "El mensaje es obligatorio"):
        _length(out, "message", message, 10, 2000, "El mensaje debe tener entre 10 y 2000 caracteres")
    return out
