# routers/notes.py - Quick project notes
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from access import ProjectContext, require_project_member
from audit import AuditTrail, get_audit_trail
from database import get_db_session
from models import Note, AuditAction, utcnow
from serializers import ts, clean_text

router = APIRouter(prefix="/api/projects/{project_id}/notes", tags=["Notes"])

DEFAULT_NOTE_TITLE = "Untitled"


class NoteCreate(BaseModel):
    title: Optional[str] = Field(None, max_length=500)
    body: Optional[str] = None


class NoteUpdate(BaseModel):
    title: Optional[str] = Field(None, max_length=500)
    body: Optional[str] = None


def _note_out(n: Note) -> dict:
    return {
        "id": n.id,
        "project_id": n.project_id,
        "title": n.title,
        "body": n.body,
        "created_at": ts(n.created_at),
        "updated_at": ts(n.updated_at),
    }


@router.get("")
async def list_notes(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    ctx: ProjectContext = Depends(require_project_member),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(
        select(Note)
        .where(Note.project_id == ctx.project_id)
        .order_by(Note.updated_at.desc())
        .offset(offset).limit(limit)
    )
    return {"notes": [_note_out(n) for n in result.scalars().all()], "limit": limit, "offset": offset}


@router.post("", status_code=201)
async def create_note(
    data: NoteCreate,
    ctx: ProjectContext = Depends(require_project_member),
    audit: AuditTrail = Depends(get_audit_trail),
    db: AsyncSession = Depends(get_db_session),
):
    note = Note(
        project_id=ctx.project_id,
        title=clean_text(data.title) or DEFAULT_NOTE_TITLE,
        body=clean_text(data.body),
    )
    db.add(note)
    await db.commit()
    await db.refresh(note)

    audit.record(ctx.project_id, ctx.identity, AuditAction.CREATE, "note", note.id)
    return _note_out(note)


@router.patch("/{note_id}")
async def update_note(
    note_id: str,
    data: NoteUpdate,
    ctx: ProjectContext = Depends(require_project_member),
    audit: AuditTrail = Depends(get_audit_trail),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(select(Note).where(Note.id == note_id, Note.project_id == ctx.project_id))
    note = result.scalar_one_or_none()
    if not note:
        raise HTTPException(status_code=404, detail="Note not found")

    if data.title is not None:
        note.title = data.title.strip()
    if "body" in data.model_fields_set:
        note.body = clean_text(data.body)
    note.updated_at = utcnow()
    await db.commit()
    await db.refresh(note)

    audit.record(ctx.project_id, ctx.identity, AuditAction.UPDATE, "note", note.id)
    return _note_out(note)


@router.delete("/{note_id}")
async def delete_note(
    note_id: str,
    ctx: ProjectContext = Depends(require_project_member),
    audit: AuditTrail = Depends(get_audit_trail),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(delete(Note).where(Note.id == note_id, Note.project_id == ctx.project_id))
    await db.commit()
    if (result.rowcount or 0) == 0:
        raise HTTPException(status_code=404, detail="Note not found")

    audit.record(ctx.project_id, ctx.identity, AuditAction.DELETE, "note", note_id)
    return {"success": True}
