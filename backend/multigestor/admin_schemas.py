from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class AdminUserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    role: str
    is_active: bool
    failed_login_count: int
    lock_until: int | None = None
    last_login: int | None = None


class ContactMessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    subject: str
    message: str
    status: str
    status_text: str
    user_id: int | None = None
    ip_address: str | None = None
    created_at: int
