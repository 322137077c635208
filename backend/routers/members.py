# routers/members.py - Join requests, membership management, user directory
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from access import ProjectContext, evaluate_access, require_project_owner
from audit import AuditTrail, get_audit_trail
from database import get_db_session
from identity import Identity, IdentityClient, get_identity_client, require_identity
from membership import (
    MembershipError, UserNotFoundError,
    project_exists, get_membership, list_members, member_user_ids, add_member, remove_member,
    create_join_request, list_pending_requests, approve_join_request, reject_join_request,
)
from models import AuditAction
from serializers import ts, enum_value
from user_cache import find_user_id, usernames_for, list_cached_users, remember_users

router = APIRouter(prefix="/api", tags=["Members"])


class MemberAdd(BaseModel):
    username: str = Field(..., min_length=1, max_length=200)


def _request_out(r) -> dict:
    return {
        "id": r.id,
        "project_id": r.project_id,
        "user_id": r.user_id,
        "username": r.username,
        "status": enum_value(r.status),
        "created_at": ts(r.created_at),
    }


def _http_error(e: MembershipError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=str(e))


# ============================================================
# JOIN REQUESTS
# ============================================================

@router.post("/projects/{project_id}/request", status_code=201)
async def request_to_join(
    project_id: str,
    identity: Identity = Depends(require_identity),
    audit: AuditTrail = Depends(get_audit_trail),
    db: AsyncSession = Depends(get_db_session),
):
    """Ask the project owner for membership"""
    if not await project_exists(db, project_id):
        raise HTTPException(status_code=404, detail="Project not found")
    access = await evaluate_access(db, project_id, identity)
    try:
        join_request = await create_join_request(
            db, project_id, identity.id, identity.username,
            can_access=access.can_access, pending=access.has_pending_request,
        )
    except MembershipError as e:
        raise _http_error(e)

    audit.record(project_id, identity, AuditAction.REQUEST_CREATE, "project_join_request", join_request.id)
    return {"success": True}


@router.get("/projects/{project_id}/requests")
async def list_join_requests(
    ctx: ProjectContext = Depends(require_project_owner("see requests")),
    db: AsyncSession = Depends(get_db_session),
):
    requests = await list_pending_requests(db, ctx.project_id)
    return {"requests": [_request_out(r) for r in requests]}


@router.post("/projects/{project_id}/requests/{request_id}/approve")
async def approve_request(
    request_id: str,
    ctx: ProjectContext = Depends(require_project_owner("approve")),
    audit: AuditTrail = Depends(get_audit_trail),
    db: AsyncSession = Depends(get_db_session),
):
    try:
        join_request = await approve_join_request(db, ctx.project_id, request_id)
    except MembershipError as e:
        raise _http_error(e)

    audit.record(
        ctx.project_id, ctx.identity, AuditAction.REQUEST_APPROVE, "project_join_request",
        request_id, {"username": join_request.username},
    )
    return {"success": True}


@router.post("/projects/{project_id}/requests/{request_id}/reject")
async def reject_request(
    request_id: str,
    ctx: ProjectContext = Depends(require_project_owner("reject")),
    audit: AuditTrail = Depends(get_audit_trail),
    db: AsyncSession = Depends(get_db_session),
):
    """Reject a pending request; resolving an already-resolved one is a no-op"""
    flipped = await reject_join_request(db, ctx.project_id, request_id)
    if flipped:
        audit.record(ctx.project_id, ctx.identity, AuditAction.REQUEST_REJECT, "project_join_request", request_id)
    return {"success": True}


# ============================================================
# USER DIRECTORY
# ============================================================

@router.get("/users")
async def list_users(
    request: Request,
    background_tasks: BackgroundTasks,
    project_id: Optional[str] = Query(None),
    identity: Identity = Depends(require_identity),
    client: IdentityClient = Depends(get_identity_client),
    db: AsyncSession = Depends(get_db_session),
):
    """Users for the "add member" picker, minus current members of ``project_id``"""
    users = await client.list_identities(request.headers.get("Authorization"))
    if users:
        background_tasks.add_task(remember_users, users)
    else:
        users = await list_cached_users(db)

    if project_id:
        exclude = set(await member_user_ids(db, project_id))
        users = [u for u in users if u["user_id"] not in exclude]
    return {"users": users}


# ============================================================
# MEMBERS
# ============================================================

@router.get("/projects/{project_id}/members")
async def get_members(
    project_id: str,
    identity: Identity = Depends(require_identity),
    db: AsyncSession = Depends(get_db_session),
):
    if await get_membership(db, project_id, identity.id) is None:
        raise HTTPException(status_code=403, detail="Not a project member")
    rows = await list_members(db, project_id)
    names = await usernames_for(db, list({m.user_id for m in rows}))
    return {
        "members": [
            {
                "user_id": m.user_id,
                "username": names.get(m.user_id, str(m.user_id)),
                "role": enum_value(m.role),
                "created_at": ts(m.created_at),
            }
            for m in rows
        ]
    }


@router.post("/projects/{project_id}/members", status_code=201)
async def add_project_member(
    data: MemberAdd,
    ctx: ProjectContext = Depends(require_project_owner("add members")),
    audit: AuditTrail = Depends(get_audit_trail),
    db: AsyncSession = Depends(get_db_session),
):
    """Add a user by username. They must have signed in here at least once."""
    username = data.username.strip()
    if not username:
        raise HTTPException(status_code=400, detail="username is required")
    user_id = await find_user_id(db, username)
    try:
        if user_id is None:
            raise UserNotFoundError(username)
        await add_member(db, ctx.project_id, user_id)
    except MembershipError as e:
        raise _http_error(e)

    audit.record(ctx.project_id, ctx.identity, AuditAction.MEMBER_ADD, "project_member", user_id, {"username": username})
    return {"success": True}


@router.delete("/projects/{project_id}/members/{user_id}")
async def remove_project_member(
    user_id: int,
    ctx: ProjectContext = Depends(require_project_owner("remove members")),
    audit: AuditTrail = Depends(get_audit_trail),
    db: AsyncSession = Depends(get_db_session),
):
    try:
        await remove_member(db, ctx.project_id, ctx.identity.id, user_id)
    except MembershipError as e:
        raise _http_error(e)

    audit.record(ctx.project_id, ctx.identity, AuditAction.MEMBER_REMOVE, "project_member", user_id)
    return {"success": True}
