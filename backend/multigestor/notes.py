"""
Owner-scoped note storage.

Every mutation carries ``user_id == requester`` inside its own UPDATE.
Deletion only flips ``is_active``.
"""

from __future__ import annotations

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .auth_sessions import now_s
from .errors import Forbidden, NotFound, PersistenceFailure, ValidationError
from .models import Note
from .validation import strip_markup, validate_note

MAX_PAGE_SIZE = 100


def parse_note_id(raw) -> int:
    try:
        note_id = int(str(raw).strip())
    except (TypeError, ValueError):
        raise NotFound("note not found")
    if note_id <= 0:
        raise NotFound("note not found")
    return note_id


def clean_fields(title: str | None, description: str | None) -> tuple[str, str]:
    title = (title or "").strip()
    description = strip_markup(description or "").strip()
    violations = validate_note(title, description)
    if violations:
        raise ValidationError(violations)
    return title, description


class NoteRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, owner_id: int, title: str, description: str) -> Note:
        title, description = clean_fields(title, description)
        now = now_s()
        note = Note(
            user_id=int(owner_id),
            title=title,
            description=description,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        self.db.add(note)
        await self._commit()
        await self.db.refresh(note)
        return note

    async def list_for_owner(
        self,
        owner_id: int,
        search: str | None = None,
        page: int = 1,
        page_size: int = 10,
        include_inactive: bool = False,
    ) -> tuple[list[Note], int]:
        page = max(1, int(page))
        page_size = min(max(1, int(page_size)), MAX_PAGE_SIZE)

        conds = [Note.user_id == int(owner_id)]
        if not include_inactive:
            conds.append(Note.is_active.is_(True))
        search = (search or "").strip()
        if search:
            pattern = f"%{_escape_like(search)}%"
            conds.append(
                or_(Note.title.ilike(pattern, escape="\\"), Note.description.ilike(pattern, escape="\\"))
            )

        total = (await self.db.execute(select(func.count()).select_from(Note).where(*conds))).scalar_one()
        rows = (
            await self.db.execute(
                select(Note)
                .where(*conds)
                .order_by(Note.updated_at.desc(), Note.id.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
        ).scalars().all()
        return list(rows), int(total)

    async def get(self, note_id, include_inactive: bool = False) -> Note:
        note = await self._load(parse_note_id(note_id))
        if note is None or (not include_inactive and not bool(note.is_active)):
            raise NotFound("note not found")
        return note

    async def get_for_owner(self, note_id, requester_id: int) -> Note:
        note = await self.get(note_id)
        if int(note.user_id) != int(requester_id):
            raise Forbidden("note belongs to another user")
        return note

    async def update(self, note_id, requester_id: int, title: str, description: str) -> Note:
        nid = parse_note_id(note_id)
        title, description = clean_fields(title, description)
        result = await self.db.execute(
            update(Note)
            .where(Note.id == nid, Note.user_id == int(requester_id), Note.is_active.is_(True))
            .values(title=title, description=description, updated_at=now_s())
            .execution_options(synchronize_session=False)
        )
        await self._commit()
        if not result.rowcount:
            await self._raise_for_miss(nid, requester_id)
        return await self.get(nid)

    async def soft_delete(self, note_id, requester_id: int) -> None:
        nid = parse_note_id(note_id)
        result = await self.db.execute(
            update(Note)
            .where(Note.id == nid, Note.user_id == int(requester_id), Note.is_active.is_(True))
            .values(is_active=False, updated_at=now_s())
            .execution_options(synchronize_session=False)
        )
        await self._commit()
        if result.rowcount:
            return
        note = await self._load(nid)
        if note is None:
            raise NotFound("note not found")
        if int(note.user_id) != int(requester_id):
            raise Forbidden("note belongs to another user")
        # already inactive: nothing to do

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise PersistenceFailure() from exc

    async def _load(self, nid: int) -> Note | None:
        return await self.db.get(Note, nid, populate_existing=True)

    async def _raise_for_miss(self, nid: int, requester_id: int) -> None:
        note = await self._load(nid)
        if note is None:
            raise NotFound("note not found")
        if int(note.user_id) != int(requester_id):
            raise Forbidden("note belongs to another user")
        # the owner's own note, already inactive
        raise NotFound("note not found")


def _escape_like(s: str) -> str:
    return s.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
