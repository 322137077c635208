# routers/documents.py - Project documents (title + free-form content)
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from access import ProjectContext, require_project_member
from audit import AuditTrail, get_audit_trail
from database import get_db_session
from models import Document, AuditAction, utcnow
from serializers import ts, clean_text

router = APIRouter(prefix="/api/projects/{project_id}/documents", tags=["Documents"])


# ── Schemas ──────────────────────────────────────────────────

class DocumentCreate(BaseModel):
    title: str = Field(..., max_length=500)
    content: Optional[str] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title is required")
        return v


class DocumentUpdate(BaseModel):
    title: Optional[str] = Field(None, max_length=500)
    content: Optional[str] = None


def _document_out(d: Document) -> dict:
    return {
        "id": d.id,
        "project_id": d.project_id,
        "title": d.title,
        "content": d.content,
        "created_at": ts(d.created_at),
        "updated_at": ts(d.updated_at),
    }


# ── Documents ────────────────────────────────────────────────

@router.get("")
async def list_documents(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    ctx: ProjectContext = Depends(require_project_member),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(
        select(Document)
        .where(Document.project_id == ctx.project_id)
        .order_by(Document.updated_at.desc())
        .offset(offset).limit(limit)
    )
    return {"documents": [_document_out(d) for d in result.scalars().all()], "limit": limit, "offset": offset}


@router.post("", status_code=201)
async def create_document(
    data: DocumentCreate,
    ctx: ProjectContext = Depends(require_project_member),
    audit: AuditTrail = Depends(get_audit_trail),
    db: AsyncSession = Depends(get_db_session),
):
    doc = Document(project_id=ctx.project_id, title=data.title, content=clean_text(data.content))
    db.add(doc)
    await db.commit()
    await db.refresh(doc)

    audit.record(ctx.project_id, ctx.identity, AuditAction.CREATE, "document", doc.id, {"title": doc.title})
    return _document_out(doc)


@router.patch("/{document_id}")
async def update_document(
    document_id: str,
    data: DocumentUpdate,
    ctx: ProjectContext = Depends(require_project_member),
    audit: AuditTrail = Depends(get_audit_trail),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(
        select(Document).where(Document.id == document_id, Document.project_id == ctx.project_id)
    )
    doc = result.scalar_one_or_none()
    if not doc:
        raise HTTPException(status_code=404, detail="Document not found")

    if data.title is not None:
        title = data.title.strip()
        if not title:
            raise HTTPException(status_code=400, detail="title cannot be empty")
        doc.title = title
    if "content" in data.model_fields_set:
        doc.content = clean_text(data.content)
    doc.updated_at = utcnow()
    await db.commit()
    await db.refresh(doc)

    audit.record(ctx.project_id, ctx.identity, AuditAction.UPDATE, "document", doc.id)
    return _document_out(doc)


@router.delete("/{document_id}")
async def delete_document(
    document_id: str,
    ctx: ProjectContext = Depends(require_project_member),
    audit: AuditTrail = Depends(get_audit_trail),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(
        delete(Document).where(Document.id == document_id, Document.project_id == ctx.project_id)
    )
    await db.commit()
    if (result.rowcount or 0) == 0:
        raise HTTPException(status_code=404, detail="Document not found")

    audit.record(ctx.project_id, ctx.identity, AuditAction.DELETE, "document", document_id)
    return {"success": True}
