from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .auth_sessions import now_s
from .errors import NotFound, ValidationError
from .models import ContactMessage
from .validation import Violation, normalize_email, validate_contact

STATUSES = ("pending", "read", "replied")


class ContactRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        name: str,
        email: str,
        subject: str,
        message: str,
        user_id: int | None = None,
        ip_address: str | None = None,
    ) -> ContactMessage:
        name = (name or "").strip()
        email = normalize_email(email)
        subject = (subject or "").strip()
        message = (message or "").strip()
        violations = validate_contact(name, email, subject, message)
        if violations:
            raise ValidationError(violations)

        now = now_s()
        msg = ContactMessage(
            name=name,
            email=email,
            subject=subject,
            message=message,
            status="pending",
            user_id=user_id,
            ip_address=ip_address,
            created_at=now,
            updated_at=now,
        )
        self.db.add(msg)
        await self.db.commit()
        await self.db.refresh(msg)
        return msg

    async def list_messages(self, status: str | None = None) -> list[ContactMessage]:
        q = select(ContactMessage)
        if status and status != "all":
            if status not in STATUSES:
                raise ValidationError([Violation(field="status", rule="enum", message="Estado no válido")])
            q = q.where(ContactMessage.status == status)
        rows = (await self.db.execute(q.order_by(ContactMessage.created_at.desc(), ContactMessage.id.desc()))).scalars()
        return list(rows.all())

    async def mark_read(self, message_id: int) -> ContactMessage:
        # a replied message stays replied
        return await self._advance(message_id, "read", allowed_from=("pending",))

    async def mark_replied(self, message_id: int) -> ContactMessage:
        return await self._advance(message_id, "replied", allowed_from=("pending", "read"))

    async def _advance(self, message_id: int, status: str, allowed_from: tuple[str, ...]) -> ContactMessage:
        await self.db.execute(
            update(ContactMessage)
            .where(ContactMessage.id == int(message_id), ContactMessage.status.in_(allowed_from))
            .values(status=status, updated_at=now_s())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        msg = await self.db.get(ContactMessage, int(message_id), populate_existing=True)
        if msg is None:
            raise NotFound("contact message not found")
        return msg
