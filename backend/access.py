# access.py - Project access evaluation and RBAC guards
"""
Every project-scoped route passes through one of two guards:

- ``require_project_member``: 401 without identity, 404 for an unknown
  project, 403 unless :func:`evaluate_access` grants access.
- ``require_project_owner(action)``: 401 without identity, 403 unless the
  caller holds an ``owner`` membership row. It never adopts the caller.

Membership is re-read on every call; nothing here is cached across requests.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from identity import Identity, get_current_identity, require_identity
from membership import (
    project_exists, count_members, get_membership, has_pending_request,
    is_owner, adopt_ownerless_project,
)
from models import MemberRole

logger = logging.getLogger("project-hub.access")


@dataclass
class ProjectAccess:
    can_access: bool
    role: Optional[MemberRole] = None
    has_pending_request: bool = False

    def to_dict(self) -> dict:
        return {
            "canAccess": self.can_access,
            "role": self.role.value if self.role else None,
            "hasPendingRequest": self.has_pending_request,
        }


@dataclass
class ProjectContext:
    """What a guarded handler receives: who is calling, on which project, with what role"""
    project_id: str
    identity: Identity
    access: ProjectAccess


async def evaluate_access(
    db: AsyncSession, project_id: str, identity: Optional[Identity],
) -> ProjectAccess:
    """
    Decide whether ``identity`` may access ``project_id``.

    A project without any membership row is a legacy project: an
    authenticated caller is adopted as its owner, and read access stays open
    for anonymous callers.
    """
    if await count_members(db, project_id) == 0:
        if identity is None:
            return ProjectAccess(can_access=True)
        try:
            adopted = await adopt_ownerless_project(db, project_id, identity.id)
        except SQLAlchemyError as e:
            await db.rollback()
            logger.warning(f"Owner adoption failed for project {project_id}: {e.__class__.__name__}")
            return ProjectAccess(can_access=True, role=MemberRole.OWNER)
        if adopted:
            logger.info(f"Legacy project {project_id} adopted by user {identity.id} as owner")
            return ProjectAccess(can_access=True, role=MemberRole.OWNER)
        # Someone else became a member in between; fall through to a normal lookup

    if identity is None:
        return ProjectAccess(can_access=False)

    member = await get_membership(db, project_id, identity.id)
    if member is not None:
        return ProjectAccess(can_access=True, role=MemberRole(member.role))

    pending = await has_pending_request(db, project_id, identity.id)
    return ProjectAccess(can_access=False, has_pending_request=pending)


# ============================================================
# GUARDS (FastAPI dependencies)
# ============================================================

async def require_project_member(
    project_id: str,
    identity: Optional[Identity] = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> ProjectContext:
    """Member guard for routes declaring a ``{project_id}`` path parameter"""
    if identity is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    if not await project_exists(db, project_id):
        raise HTTPException(status_code=404, detail="Project not found")
    access = await evaluate_access(db, project_id, identity)
    if not access.can_access:
        raise HTTPException(status_code=403, detail="Not a project member")
    return ProjectContext(project_id=project_id, identity=identity, access=access)


def require_project_owner(action: str):
    """Dependency factory: caller must hold the owner role on ``{project_id}``"""
    async def _check(
        project_id: str,
        identity: Identity = Depends(require_identity),
        db: AsyncSession = Depends(get_db_session),
    ) -> ProjectContext:
        if not await is_owner(db, project_id, identity.id):
            raise HTTPException(status_code=403, detail=f"Only project owner can {action}")
        return ProjectContext(
            project_id=project_id,
            identity=identity,
            access=ProjectAccess(can_access=True, role=MemberRole.OWNER),
        )
    return _check
