# membership.py - Project membership store and join-request workflow
"""
Reads and writes ``project_members`` / ``project_join_requests``.

Join requests move ``pending → approved | rejected`` and stay there. The
storage layer carries the uniqueness rules (one membership per user and
project, one pending request per user and project); violations surface as
domain errors instead of duplicate rows.
"""
import logging
from typing import List, Optional

from sqlalchemy import select, func, update, delete, insert, exists, literal, DateTime
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models import (
    Project, ProjectMember, ProjectJoinRequest, MemberRole, JoinRequestStatus,
    new_uuid, utcnow,
)

logger = logging.getLogger("project-hub.membership")


# ============================================================
# DOMAIN ERRORS
# ============================================================

class MembershipError(Exception):
    """Base class for membership workflow rejections."""
    status_code = 400


class AlreadyMemberError(MembershipError):
    def __init__(self):
        super().__init__("Already a member")


class RequestAlreadyPendingError(MembershipError):
    def __init__(self):
        super().__init__("Request already pending")


class JoinRequestNotFoundError(MembershipError):
    status_code = 404

    def __init__(self):
        super().__init__("Request not found")


class MemberNotFoundError(MembershipError):
    status_code = 404

    def __init__(self):
        super().__init__("Member not found")


class CannotRemoveSelfError(MembershipError):
    def __init__(self):
        super().__init__("Cannot remove yourself")


class CannotRemoveOwnerError(MembershipError):
    def __init__(self):
        super().__init__("Cannot remove project owner")


class UserNotFoundError(MembershipError):
    status_code = 404

    def __init__(self, username: str):
        super().__init__(f"User not found: {username}")


# ============================================================
# MEMBERSHIP READS
# ============================================================

async def project_exists(db: AsyncSession, project_id: str) -> bool:
    result = await db.execute(select(Project.id).where(Project.id == project_id))
    return result.scalar_one_or_none() is not None


async def count_members(db: AsyncSession, project_id: str) -> int:
    result = await db.execute(
        select(func.count(ProjectMember.id)).where(ProjectMember.project_id == project_id)
    )
    return result.scalar() or 0


async def get_membership(db: AsyncSession, project_id: str, user_id: int) -> Optional[ProjectMember]:
    result = await db.execute(
        select(ProjectMember).where(
            ProjectMember.project_id == project_id,
            ProjectMember.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def is_owner(db: AsyncSession, project_id: str, user_id: int) -> bool:
    result = await db.execute(
        select(ProjectMember.id).where(
            ProjectMember.project_id == project_id,
            ProjectMember.user_id == user_id,
            ProjectMember.role == MemberRole.OWNER,
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def has_pending_request(db: AsyncSession, project_id: str, user_id: int) -> bool:
    result = await db.execute(
        select(ProjectJoinRequest.id).where(
            ProjectJoinRequest.project_id == project_id,
            ProjectJoinRequest.user_id == user_id,
            ProjectJoinRequest.status == JoinRequestStatus.PENDING,
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def list_members(db: AsyncSession, project_id: str) -> List[ProjectMember]:
    result = await db.execute(
        select(ProjectMember)
        .where(ProjectMember.project_id == project_id)
        .order_by(ProjectMember.created_at.asc())
    )
    return list(result.scalars().all())


async def member_user_ids(db: AsyncSession, project_id: str) -> List[int]:
    result = await db.execute(
        select(ProjectMember.user_id).where(ProjectMember.project_id == project_id)
    )
    return [row[0] for row in result]


# ============================================================
# MEMBERSHIP WRITES
# ============================================================

async def adopt_ownerless_project(db: AsyncSession, project_id: str, user_id: int) -> bool:
    """
    Insert ``user_id`` as owner only while the project has no members.

    The emptiness check and the insert are a single statement. Returns True
    when the row was written; False when another member appeared first.
    """
    row = select(
        literal(new_uuid()),
        literal(project_id),
        literal(user_id),
        literal(MemberRole.OWNER.value),
        literal(utcnow(), DateTime(timezone=True)),
    ).where(~exists().where(ProjectMember.project_id == project_id))
    stmt = insert(ProjectMember).from_select(
        ["id", "project_id", "user_id", "role", "created_at"], row,
    )
    result = await db.execute(stmt)
    await db.commit()
    return (result.rowcount or 0) > 0


async def add_member(
    db: AsyncSession, project_id: str, user_id: int, role: MemberRole = MemberRole.MEMBER,
) -> ProjectMember:
    member = ProjectMember(project_id=project_id, user_id=user_id, role=role)
    db.add(member)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise AlreadyMemberError()
    await db.refresh(member)
    return member


async def remove_member(db: AsyncSession, project_id: str, actor_id: int, target_user_id: int) -> None:
    if target_user_id == actor_id:
        raise CannotRemoveSelfError()
    target = await get_membership(db, project_id, target_user_id)
    if target is None:
        raise MemberNotFoundError()
    if target.role == MemberRole.OWNER:
        raise CannotRemoveOwnerError()
    await db.execute(
        delete(ProjectMember).where(
            ProjectMember.project_id == project_id,
            ProjectMember.user_id == target_user_id,
        )
    )
    await db.commit()


# ============================================================
# JOIN-REQUEST WORKFLOW
# ============================================================

async def create_join_request(
    db: AsyncSession, project_id: str, user_id: int, username: str,
    can_access: bool, pending: bool,
) -> ProjectJoinRequest:
    """Open a pending request for a caller who has no access yet."""
    if can_access:
        raise AlreadyMemberError()
    if pending:
        raise RequestAlreadyPendingError()
    join_request = ProjectJoinRequest(
        project_id=project_id,
        user_id=user_id,
        username=username,
        status=JoinRequestStatus.PENDING,
    )
    db.add(join_request)
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent submission won the partial unique index
        await db.rollback()
        raise RequestAlreadyPendingError()
    await db.refresh(join_request)
    return join_request


async def list_pending_requests(db: AsyncSession, project_id: str) -> List[ProjectJoinRequest]:
    result = await db.execute(
        select(ProjectJoinRequest)
        .where(
            ProjectJoinRequest.project_id == project_id,
            ProjectJoinRequest.status == JoinRequestStatus.PENDING,
        )
        .order_by(ProjectJoinRequest.created_at.desc())
    )
    return list(result.scalars().all())


async def _get_pending_request(db: AsyncSession, project_id: str, request_id: str) -> Optional[ProjectJoinRequest]:
    result = await db.execute(
        select(ProjectJoinRequest).where(
            ProjectJoinRequest.id == request_id,
            ProjectJoinRequest.project_id == project_id,
            ProjectJoinRequest.status == JoinRequestStatus.PENDING,
        )
    )
    return result.scalar_one_or_none()


async def approve_join_request(db: AsyncSession, project_id: str, request_id: str) -> ProjectJoinRequest:
    """
    Flip a pending request to approved and add the requester as member.

    Both writes share one transaction; the status flip is conditional on the
    row still being pending, so of two concurrent approvals only one commits.
    """
    join_request = await _get_pending_request(db, project_id, request_id)
    if join_request is None:
        raise JoinRequestNotFoundError()

    flipped = await db.execute(
        update(ProjectJoinRequest)
        .where(
            ProjectJoinRequest.id == request_id,
            ProjectJoinRequest.status == JoinRequestStatus.PENDING,
        )
        .values(status=JoinRequestStatus.APPROVED)
    )
    if (flipped.rowcount or 0) == 0:
        await db.rollback()
        raise JoinRequestNotFoundError()

    requester_id = join_request.user_id
    already = await get_membership(db, project_id, requester_id)
    if already is None:
        db.add(ProjectMember(project_id=project_id, user_id=requester_id, role=MemberRole.MEMBER))
    try:
        await db.commit()
    except IntegrityError:
        # Membership appeared concurrently: keep it, still resolve the request
        await db.rollback()
        await db.execute(
            update(ProjectJoinRequest)
            .where(
                ProjectJoinRequest.id == request_id,
                ProjectJoinRequest.status == JoinRequestStatus.PENDING,
            )
            .values(status=JoinRequestStatus.APPROVED)
        )
        await db.commit()
    await db.refresh(join_request)
    return join_request


async def reject_join_request(db: AsyncSession, project_id: str, request_id: str) -> bool:
    """
    Reject a pending request. Already-resolved or unknown requests are left
    untouched; returns whether a row actually changed.
    """
    result = await db.execute(
        update(ProjectJoinRequest)
        .where(
            ProjectJoinRequest.id == request_id,
            ProjectJoinRequest.project_id == project_id,
            ProjectJoinRequest.status == JoinRequestStatus.PENDING,
        )
        .values(status=JoinRequestStatus.REJECTED)
    )
    await db.commit()
    return (result.rowcount or 0) > 0
