from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    role: str
    email_verified: bool
    last_login: int | None = None


class NoteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str
    is_active: bool
    created_at: int
    updated_at: int


class NotePage(BaseModel):
    items: list[NoteOut]
    total: int
    page: int
    page_size: int
    total_pages: int
    search: str | None = None
