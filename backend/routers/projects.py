# routers/projects.py - Projects: listing, creation, access probe, owner-only edits
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select, func, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from access import ProjectContext, evaluate_access, require_project_owner
from audit import AuditTrail, get_audit_trail
from database import get_db_session
from identity import Identity, get_current_identity, require_identity
from models import Project, ProjectMember, MemberRole, AuditAction, utcnow
from serializers import ts, clean_text
from storage import ErrorKind, SCHEMA_HINT, classify

router = APIRouter(prefix="/api/projects", tags=["Projects"])


# ============================================================
# SCHEMAS
# ============================================================

class ProjectCreate(BaseModel):
    name: str = Field(..., max_length=200)
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name is required")
        return v


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None


def _project_out(p: Project) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "description": p.description,
        "created_at": ts(p.created_at),
        "updated_at": ts(p.updated_at),
    }


async def _get_project_or_404(db: AsyncSession, project_id: str) -> Project:
    result = await db.execute(select(Project).where(Project.id == project_id))
    project = result.scalar_one_or_none()
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


# ============================================================
# ENDPOINTS
# ============================================================

@router.get("")
async def list_projects(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db_session),
):
    """All projects, most recently updated first"""
    total = (await db.execute(select(func.count(Project.id)))).scalar() or 0
    result = await db.execute(
        select(Project).order_by(Project.updated_at.desc()).offset(offset).limit(limit)
    )
    return {
        "projects": [_project_out(p) for p in result.scalars().all()],
        "limit": limit,
        "offset": offset,
        "total": total,
    }


@router.post("", status_code=201)
async def create_project(
    data: ProjectCreate,
    identity: Identity = Depends(require_identity),
    audit: AuditTrail = Depends(get_audit_trail),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a project; the caller becomes its owner"""
    project = Project(name=data.name, description=clean_text(data.description))
    db.add(project)
    await db.flush()
    db.add(ProjectMember(project_id=project.id, user_id=identity.id, role=MemberRole.OWNER))
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        if classify(e) == ErrorKind.SCHEMA_MISSING:
            return JSONResponse(status_code=503, content={"error": SCHEMA_HINT, "detail": str(getattr(e, "orig", e))})
        raise
    await db.refresh(project)

    audit.record(project.id, identity, AuditAction.CREATE, "project", project.id, {"name": project.name})
    return _project_out(project)


@router.get("/{project_id}/access")
async def get_project_access(
    project_id: str,
    identity: Optional[Identity] = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
):
    """The caller's access to a project: ``{canAccess, role, hasPendingRequest}``"""
    await _get_project_or_404(db, project_id)
    access = await evaluate_access(db, project_id, identity)
    return access.to_dict()


@router.get("/{project_id}")
async def get_project(
    project_id: str,
    identity: Optional[Identity] = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
):
    project = await _get_project_or_404(db, project_id)
    access = await evaluate_access(db, project_id, identity)
    if not access.can_access:
        raise HTTPException(status_code=403, detail={"error": "Not a project member", "can_request": True})
    return _project_out(project)


@router.patch("/{project_id}")
async def update_project(
    data: ProjectUpdate,
    ctx: ProjectContext = Depends(require_project_owner("update")),
    audit: AuditTrail = Depends(get_audit_trail),
    db: AsyncSession = Depends(get_db_session),
):
    project = await _get_project_or_404(db, ctx.project_id)
    if data.name is not None:
        name = data.name.strip()
        if not name:
            raise HTTPException(status_code=400, detail="name cannot be empty")
        project.name = name
    if data.description is not None:
        project.description = clean_text(data.description)
    project.updated_at = utcnow()
    await db.commit()
    await db.refresh(project)

    audit.record(ctx.project_id, ctx.identity, AuditAction.UPDATE, "project", project.id)
    return _project_out(project)


@router.delete("/{project_id}")
async def delete_project(
    ctx: ProjectContext = Depends(require_project_owner("delete")),
    audit: AuditTrail = Depends(get_audit_trail),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a project and everything under it"""
    await db.execute(delete(Project).where(Project.id == ctx.project_id))
    await db.commit()

    audit.record(ctx.project_id, ctx.identity, AuditAction.DELETE, "project", ctx.project_id)
    return {"success": True}
