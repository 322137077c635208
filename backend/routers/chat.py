# routers/chat.py - Per-project chat
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from access import evaluate_access
from audit import AuditTrail, get_audit_trail
from database import get_db_session
from identity import Identity, get_current_identity, require_identity
from membership import project_exists
from models import ChatMessage, AuditAction
from serializers import ts
from storage import ErrorKind, classify

logger = logging.getLogger("project-hub.chat")

router = APIRouter(prefix="/api/projects/{project_id}/chat", tags=["Chat"])

CHAT_UNAVAILABLE = "Chat not available: the project_chat_messages table is missing. Run the database migrations."


class ChatMessageCreate(BaseModel):
    body: str = Field(..., max_length=10000)


def _message_out(m: ChatMessage) -> dict:
    return {
        "id": m.id,
        "project_id": m.project_id,
        "user_id": m.user_id,
        "username": m.username,
        "body": m.body,
        "created_at": ts(m.created_at),
    }


async def _require_chat_access(db: AsyncSession, project_id: str, identity: Optional[Identity]) -> None:
    if not await project_exists(db, project_id):
        raise HTTPException(status_code=404, detail="Project not found")
    if identity is None:
        raise HTTPException(status_code=403, detail="Access required")
    access = await evaluate_access(db, project_id, identity)
    if not access.can_access:
        raise HTTPException(status_code=403, detail="Access required")


@router.get("")
async def list_messages(
    project_id: str,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    identity: Optional[Identity] = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
):
    """Chat history, oldest first"""
    await _require_chat_access(db, project_id, identity)
    try:
        result = await db.execute(
            select(ChatMessage)
            .where(ChatMessage.project_id == project_id)
            .order_by(ChatMessage.created_at.asc())
            .offset(offset).limit(limit)
        )
    except SQLAlchemyError as e:
        if classify(e) != ErrorKind.SCHEMA_MISSING:
            raise
        await db.rollback()
        logger.warning("project_chat_messages table missing, returning empty chat")
        return {"messages": [], "limit": limit, "offset": offset}
    return {"messages": [_message_out(m) for m in result.scalars().all()], "limit": limit, "offset": offset}


@router.post("", status_code=201)
async def post_message(
    project_id: str,
    data: ChatMessageCreate,
    identity: Identity = Depends(require_identity),
    audit: AuditTrail = Depends(get_audit_trail),
    db: AsyncSession = Depends(get_db_session),
):
    await _require_chat_access(db, project_id, identity)
    body = data.body.strip()
    if not body:
        raise HTTPException(status_code=400, detail="body is required")

    message = ChatMessage(project_id=project_id, user_id=identity.id, username=identity.username or "User", body=body)
    db.add(message)
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        if classify(e) == ErrorKind.SCHEMA_MISSING:
            raise HTTPException(status_code=503, detail=CHAT_UNAVAILABLE)
        raise
    await db.refresh(message)

    audit.record(project_id, identity, AuditAction.CREATE, "chat_message", message.id)
    return _message_out(message)
