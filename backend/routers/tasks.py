# routers/tasks.py - Tasks with an enforcing status workflow, status history, project audit feed
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select, func, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from access import ProjectContext, require_project_member
from audit import AuditTrail, get_audit_trail
from database import get_db_session
from models import Task, TaskHistory, TaskStatus, TaskPriority, AuditLog, AuditAction, utcnow
from serializers import ts, enum_value, OptionalDate
from task_transitions import (
    InvalidTransitionError, validate_transition, is_status_change, get_allowed_transitions,
)

logger = logging.getLogger("project-hub.tasks")

router = APIRouter(prefix="/api/projects/{project_id}", tags=["Tasks"])

# Conditional writes retried when another writer moved the status in between
MAX_STATUS_WRITE_ATTEMPTS = 3


# ============================================================
# SCHEMAS
# ============================================================

class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: OptionalDate = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title is required")
        return v


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: OptionalDate = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("title cannot be empty")
        return v


def _task_out(t: Task) -> dict:
    status = TaskStatus(t.status)
    return {
        "id": t.id,
        "project_id": t.project_id,
        "title": t.title,
        "status": status.value,
        "priority": enum_value(t.priority),
        "due_date": ts(t.due_date),
        "allowed_transitions": [s.value for s in get_allowed_transitions(status)],
        "created_at": ts(t.created_at),
        "updated_at": ts(t.updated_at),
    }


def _history_out(h: TaskHistory) -> dict:
    return {
        "id": h.id,
        "task_id": h.task_id,
        "user_id": h.user_id,
        "from_status": h.from_status,
        "to_status": h.to_status,
        "request_id": h.request_id,
        "created_at": ts(h.created_at),
    }


def _audit_out(a: AuditLog) -> dict:
    return {
        "id": a.id,
        "project_id": a.project_id,
        "user_id": a.user_id,
        "username": a.username,
        "action": a.action,
        "entity_type": a.entity_type,
        "entity_id": a.entity_id,
        "details": a.details,
        "request_id": a.request_id,
        "created_at": ts(a.created_at),
    }


async def _get_task(db: AsyncSession, project_id: str, task_id: str) -> Optional[Task]:
    result = await db.execute(
        select(Task)
        .where(Task.id == task_id, Task.project_id == project_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


# ============================================================
# TASK ENDPOINTS
# ============================================================

@router.get("/tasks")
async def list_tasks(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    ctx: ProjectContext = Depends(require_project_member),
    db: AsyncSession = Depends(get_db_session),
):
    total = (await db.execute(
        select(func.count(Task.id)).where(Task.project_id == ctx.project_id)
    )).scalar() or 0
    result = await db.execute(
        select(Task)
        .where(Task.project_id == ctx.project_id)
        .order_by(Task.created_at.desc())
        .offset(offset).limit(limit)
    )
    return {
        "tasks": [_task_out(t) for t in result.scalars().all()],
        "limit": limit,
        "offset": offset,
        "total": total,
    }


@router.post("/tasks", status_code=201)
async def create_task(
    data: TaskCreate,
    ctx: ProjectContext = Depends(require_project_member),
    audit: AuditTrail = Depends(get_audit_trail),
    db: AsyncSession = Depends(get_db_session),
):
    task = Task(
        project_id=ctx.project_id,
        title=data.title,
        status=data.status,
        priority=data.priority,
        due_date=data.due_date,
    )
    db.add(task)
    await db.flush()
    db.add(TaskHistory(
        task_id=task.id,
        user_id=ctx.identity.id,
        from_status=None,
        to_status=data.status.value,
        request_id=audit.request_id,
    ))
    await db.commit()
    await db.refresh(task)

    audit.record(ctx.project_id, ctx.identity, AuditAction.CREATE, "task", task.id, {"title": task.title})
    return _task_out(task)


@router.patch("/tasks/{task_id}")
async def update_task(
    task_id: str,
    data: TaskUpdate,
    ctx: ProjectContext = Depends(require_project_member),
    audit: AuditTrail = Depends(get_audit_trail),
    db: AsyncSession = Depends(get_db_session),
):
    """
    Update a task. A status change is checked against the workflow and
    written with ``WHERE status = <status it was validated against>``; if
    another writer got there first, the new current status is re-read and
    re-validated.
    """
    task = await _get_task(db, ctx.project_id, task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")

    fields = data.model_fields_set
    values = {}
    if "title" in fields and data.title is not None:
        values["title"] = data.title
    if "priority" in fields and data.priority is not None:
        values["priority"] = data.priority
    if "due_date" in fields:
        values["due_date"] = data.due_date

    requested = data.status if "status" in fields else None

    if requested is None:
        if not values:
            return _task_out(task)
        await db.execute(
            update(Task)
            .where(Task.id == task_id, Task.project_id == ctx.project_id)
            .values(updated_at=utcnow(), **values)
        )
        await db.commit()
        task = await _get_task(db, ctx.project_id, task_id)
        if not task:
            raise HTTPException(status_code=404, detail="Task not found")
        audit.record(ctx.project_id, ctx.identity, AuditAction.UPDATE, "task", task.id, {"title": task.title})
        return _task_out(task)

    for _ in range(MAX_STATUS_WRITE_ATTEMPTS):
        before = TaskStatus(task.status)
        try:
            validate_transition(before, requested)
        except InvalidTransitionError as e:
            raise HTTPException(status_code=409, detail=e.to_body())

        changing = is_status_change(before, requested)
        result = await db.execute(
            update(Task)
            .where(Task.id == task_id, Task.project_id == ctx.project_id, Task.status == before)
            .values(status=requested, updated_at=utcnow(), **values)
        )
        if (result.rowcount or 0) == 1:
            if changing:
                db.add(TaskHistory(
                    task_id=task_id,
                    user_id=ctx.identity.id,
                    from_status=before.value,
                    to_status=requested.value,
                    request_id=audit.request_id,
                ))
            await db.commit()
            break

        await db.rollback()
        task = await _get_task(db, ctx.project_id, task_id)
        if not task:
            raise HTTPException(status_code=404, detail="Task not found")
        logger.info(f"Task {task_id} status moved concurrently to {enum_value(task.status)}; re-validating")
    else:
        raise HTTPException(status_code=409, detail={
            "error": "Task status changed concurrently; retry the update",
            "from": enum_value(task.status),
            "to": requested.value,
        })

    task = await _get_task(db, ctx.project_id, task_id)
    audit.record(
        ctx.project_id, ctx.identity, AuditAction.UPDATE, "task", task_id,
        {"before": {"status": before.value}, "after": {"status": enum_value(task.status)}},
    )
    return _task_out(task)


@router.delete("/tasks/{task_id}")
async def delete_task(
    task_id: str,
    ctx: ProjectContext = Depends(require_project_member),
    audit: AuditTrail = Depends(get_audit_trail),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(
        delete(Task).where(Task.id == task_id, Task.project_id == ctx.project_id)
    )
    await db.commit()
    if (result.rowcount or 0) == 0:
        raise HTTPException(status_code=404, detail="Task not found")

    audit.record(ctx.project_id, ctx.identity, AuditAction.DELETE, "task", task_id)
    return {"success": True}


@router.get("/tasks/{task_id}/history")
async def get_task_history(
    task_id: str,
    ctx: ProjectContext = Depends(require_project_member),
    db: AsyncSession = Depends(get_db_session),
):
    """Status changes of a task, oldest first"""
    if not await _get_task(db, ctx.project_id, task_id):
        raise HTTPException(status_code=404, detail="Task not found")
    result = await db.execute(
        select(TaskHistory)
        .where(TaskHistory.task_id == task_id)
        .order_by(TaskHistory.created_at.asc())
    )
    return {"history": [_history_out(h) for h in result.scalars().all()]}


# ============================================================
# AUDIT FEED
# ============================================================

@router.get("/audit")
async def get_project_audit(
    limit: int = Query(10, ge=1, le=50),
    ctx: ProjectContext = Depends(require_project_member),
    db: AsyncSession = Depends(get_db_session),
):
    """Most recent audit entries for the project"""
    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.project_id == ctx.project_id)
        .order_by(AuditLog.created_at.desc())
        .limit(limit)
    )
    return {"audit": [_audit_out(a) for a in result.scalars().all()]}
