# routers/files.py - Project files: upload → research-service ingestion, SharePoint pull
"""
The research service holds the file content; this service keeps only a
metadata row per project, written after ingestion reports success.
"""
import logging
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, Depends, HTTPException, Query, UploadFile, File as FastAPIFile, Form
from pydantic import BaseModel, Field, model_validator
from sqlalchemy import select, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from access import ProjectContext, require_project_member
from audit import AuditTrail, get_audit_trail
from database import get_db_session
from models import ProjectFile, AuditAction
from serializers import ts
from sharepoint import SharePointClient, get_sharepoint_client
from storage import ErrorKind, classify
from upstream import ResearchClient, UpstreamError, get_research_client

logger = logging.getLogger("project-hub.files")

router = APIRouter(prefix="/api/projects/{project_id}/files", tags=["Files"])

MAX_UPLOAD_BYTES = 50 * 1024 * 1024


class SharePointPull(BaseModel):
    site_url: Optional[str] = Field(None, max_length=2000)
    site_id: Optional[str] = Field(None, max_length=200)
    folder_path: str = Field("", max_length=2000)
    drive_id: Optional[str] = Field(None, max_length=200)

    @model_validator(mode="after")
    def site_required(self):
        if not self.site_url and not self.site_id:
            raise ValueError("Either site_url or site_id is required")
        return self


def _file_out(f: ProjectFile) -> dict:
    return {
        "id": f.id,
        "project_id": f.project_id,
        "original_name": f.original_name,
        "created_at": ts(f.created_at),
    }


async def _record_file(db: AsyncSession, project_id: str, original_name: str) -> ProjectFile:
    row = ProjectFile(project_id=project_id, original_name=original_name)
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return row


@router.get("")
async def list_files(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    ctx: ProjectContext = Depends(require_project_member),
    db: AsyncSession = Depends(get_db_session),
):
    try:
        result = await db.execute(
            select(ProjectFile)
            .where(ProjectFile.project_id == ctx.project_id)
            .order_by(ProjectFile.created_at.desc())
            .offset(offset).limit(limit)
        )
    except SQLAlchemyError as e:
        if classify(e) != ErrorKind.SCHEMA_MISSING:
            raise
        await db.rollback()
        logger.warning("project_files table missing, returning empty list")
        return {"files": [], "limit": limit, "offset": offset}
    return {"files": [_file_out(f) for f in result.scalars().all()], "limit": limit, "offset": offset}


@router.post("", status_code=201)
async def upload_file(
    file: Optional[UploadFile] = FastAPIFile(None),
    originalName: Optional[str] = Form(None),
    ctx: ProjectContext = Depends(require_project_member),
    audit: AuditTrail = Depends(get_audit_trail),
    research: ResearchClient = Depends(get_research_client),
    db: AsyncSession = Depends(get_db_session),
):
    """Upload one file (multipart ``file``, optional UTF-8 ``originalName``) for ingestion"""
    if file is None:
        raise HTTPException(status_code=400, detail="No file provided")
    if not research.configured:
        raise HTTPException(status_code=503, detail="RESEARCH_SERVICE_URL not set; cannot ingest files")

    content = await file.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large (limit 50 MB)")
    original_name = (originalName or "").strip() or file.filename or "file"

    await research.ingest_file(original_name, content)
    row = await _record_file(db, ctx.project_id, original_name)

    audit.record(ctx.project_id, ctx.identity, AuditAction.CREATE, "project_file", row.id, {"original_name": original_name})
    return _file_out(row)


@router.post("/pull-sharepoint")
async def pull_sharepoint(
    data: SharePointPull,
    ctx: ProjectContext = Depends(require_project_member),
    audit: AuditTrail = Depends(get_audit_trail),
    research: ResearchClient = Depends(get_research_client),
    sharepoint: SharePointClient = Depends(get_sharepoint_client),
    db: AsyncSession = Depends(get_db_session),
):
    """Ingest every file directly inside a SharePoint folder"""
    if not sharepoint.configured:
        raise HTTPException(
            status_code=503,
            detail="SharePoint integration not configured (SHAREPOINT_TENANT_ID, SHAREPOINT_CLIENT_ID, SHAREPOINT_CLIENT_SECRET)",
        )
    if not research.configured:
        raise HTTPException(status_code=503, detail="RESEARCH_SERVICE_URL not set; cannot ingest files")

    site_id = data.site_id or await sharepoint.resolve_site_id(data.site_url)
    if not site_id:
        raise HTTPException(status_code=400, detail="Could not resolve SharePoint site (check site_url or site_id)")

    items = await sharepoint.list_folder_files(site_id, data.folder_path, data.drive_id)
    ingested: List[Dict[str, Any]] = []
    failures: List[Dict[str, Any]] = []
    for item in items:
        name = item.get("name") or "file"
        item_id = item.get("id")
        if not item_id:
            failures.append({"name": name, "error": "SharePoint item has no id"})
            continue
        try:
            content = await sharepoint.download(site_id, item_id)
            await research.ingest_file(name, content)
            row = await _record_file(db, ctx.project_id, name)
        except UpstreamError as e:
            failures.append({"name": name, "error": e.message})
            continue
        except SQLAlchemyError as e:
            await db.rollback()
            failures.append({"name": name, "error": str(getattr(e, "orig", e))})
            continue
        audit.record(
            ctx.project_id, ctx.identity, AuditAction.CREATE, "project_file", row.id,
            {"original_name": name, "source": "sharepoint"},
        )
        ingested.append({"id": row.id, "original_name": name})

    logger.info(f"SharePoint pull for project {ctx.project_id}: {len(ingested)} ingested, {len(failures)} failed")
    return {"pulled": len(ingested), "failed": len(failures), "ingested": ingested, "failures": failures}


@router.delete("/{file_id}")
async def delete_file(
    file_id: str,
    ctx: ProjectContext = Depends(require_project_member),
    audit: AuditTrail = Depends(get_audit_trail),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(
        delete(ProjectFile).where(ProjectFile.id == file_id, ProjectFile.project_id == ctx.project_id)
    )
    await db.commit()
    if (result.rowcount or 0) == 0:
        raise HTTPException(status_code=404, detail="File not found")

    audit.record(ctx.project_id, ctx.identity, AuditAction.DELETE, "project_file", file_id)
    return {"success": True}
