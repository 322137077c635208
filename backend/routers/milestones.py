# routers/milestones.py - Project milestones
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from access import ProjectContext, require_project_member
from audit import AuditTrail, get_audit_trail
from database import get_db_session
from models import Milestone, AuditAction, utcnow
from serializers import ts, clean_text, OptionalDate, OptionalDateTime

router = APIRouter(prefix="/api/projects/{project_id}/milestones", tags=["Milestones"])


class MilestoneCreate(BaseModel):
    title: str = Field(..., max_length=500)
    description: Optional[str] = None
    due_date: OptionalDate = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title is required")
        return v


class MilestoneUpdate(BaseModel):
    title: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = None
    due_date: OptionalDate = None
    completed_at: OptionalDateTime = None


def _milestone_out(m: Milestone) -> dict:
    return {
        "id": m.id,
        "project_id": m.project_id,
        "title": m.title,
        "description": m.description,
        "due_date": ts(m.due_date),
        "completed_at": ts(m.completed_at),
        "created_at": ts(m.created_at),
        "updated_at": ts(m.updated_at),
    }


async def _get_milestone(db: AsyncSession, project_id: str, milestone_id: str) -> Milestone:
    result = await db.execute(
        select(Milestone).where(Milestone.id == milestone_id, Milestone.project_id == project_id)
    )
    milestone = result.scalar_one_or_none()
    if not milestone:
        raise HTTPException(status_code=404, detail="Milestone not found")
    return milestone


@router.get("")
async def list_milestones(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    ctx: ProjectContext = Depends(require_project_member),
    db: AsyncSession = Depends(get_db_session),
):
    """Milestones by due date, soonest first"""
    result = await db.execute(
        select(Milestone)
        .where(Milestone.project_id == ctx.project_id)
        .order_by(Milestone.due_date.asc())
        .offset(offset).limit(limit)
    )
    return {"milestones": [_milestone_out(m) for m in result.scalars().all()], "limit": limit, "offset": offset}


@router.post("", status_code=201)
async def create_milestone(
    data: MilestoneCreate,
    ctx: ProjectContext = Depends(require_project_member),
    audit: AuditTrail = Depends(get_audit_trail),
    db: AsyncSession = Depends(get_db_session),
):
    milestone = Milestone(
        project_id=ctx.project_id,
        title=data.title,
        description=clean_text(data.description),
        due_date=data.due_date,
    )
    db.add(milestone)
    await db.commit()
    await db.refresh(milestone)

    audit.record(ctx.project_id, ctx.identity, AuditAction.CREATE, "milestone", milestone.id, {"title": milestone.title})
    return _milestone_out(milestone)


@router.patch("/{milestone_id}")
async def update_milestone(
    milestone_id: str,
    data: MilestoneUpdate,
    ctx: ProjectContext = Depends(require_project_member),
    audit: AuditTrail = Depends(get_audit_trail),
    db: AsyncSession = Depends(get_db_session),
):
    milestone = await _get_milestone(db, ctx.project_id, milestone_id)
    fields = data.model_fields_set
    if "title" in fields and data.title is not None:
        title = data.title.strip()
        if not title:
            raise HTTPException(status_code=400, detail="title cannot be empty")
        milestone.title = title
    if "description" in fields:
        milestone.description = clean_text(data.description)
    if "due_date" in fields:
        milestone.due_date = data.due_date
    if "completed_at" in fields:
        milestone.completed_at = data.completed_at
    milestone.updated_at = utcnow()
    await db.commit()
    await db.refresh(milestone)

    audit.record(ctx.project_id, ctx.identity, AuditAction.UPDATE, "milestone", milestone.id)
    return _milestone_out(milestone)


@router.delete("/{milestone_id}")
async def delete_milestone(
    milestone_id: str,
    ctx: ProjectContext = Depends(require_project_member),
    audit: AuditTrail = Depends(get_audit_trail),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(
        delete(Milestone).where(Milestone.id == milestone_id, Milestone.project_id == ctx.project_id)
    )
    await db.commit()
    if (result.rowcount or 0) == 0:
        raise HTTPException(status_code=404, detail="Milestone not found")

    audit.record(ctx.project_id, ctx.identity, AuditAction.DELETE, "milestone", milestone_id)
    return {"success": True}
