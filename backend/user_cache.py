# user_cache.py - Eventually-consistent username projection
"""
``user_cache`` maps identity ids to display names. It is refreshed after
responses, whenever an identity is observed, and is only ever read for
display and for "add member by username". Access decisions never consult it.
"""
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_context
from models import UserCache, utcnow

logger = logging.getLogger("project-hub.user-cache")


async def remember_user(user_id: Optional[int], username: Optional[str]) -> None:
    """Upsert one cache row in its own session. Failures are logged only."""
    if user_id is None or not username or not str(username).strip():
        return
    try:
        async with get_db_context() as db:
            await db.merge(UserCache(user_id=int(user_id), username=str(username).strip(), updated_at=utcnow()))
    except SQLAlchemyError as e:
        logger.warning(f"user_cache upsert failed for {user_id}: {e.__class__.__name__}")


async def remember_users(users: Iterable[Dict]) -> None:
    for u in users:
        await remember_user(u.get("user_id"), u.get("username"))


async def find_user_id(db: AsyncSession, username: str) -> Optional[int]:
    result = await db.execute(
        select(UserCache.user_id).where(UserCache.username == username.strip()).limit(1)
    )
    return result.scalar_one_or_none()


async def usernames_for(db: AsyncSession, user_ids: List[int]) -> Dict[int, str]:
    if not user_ids:
        return {}
    result = await db.execute(
        select(UserCache.user_id, UserCache.username).where(UserCache.user_id.in_(user_ids))
    )
    return {row.user_id: row.username for row in result}


async def list_cached_users(db: AsyncSession) -> List[Dict]:
    result = await db.execute(select(UserCache).order_by(UserCache.username.asc()))
    return [{"user_id": u.user_id, "username": u.username} for u in result.scalars().all()]
