# audit.py - Append-only audit trail (actor, entity, action, before/after, request_id)
"""
Audit rows are written after the response-determining mutation has been
committed, from a FastAPI background task with its own session. A failed
audit write is logged and dropped; it never reaches the caller and never
rolls back the mutation. Because background tasks only run for successful
responses, an operation that was rejected is never recorded.
"""
import logging
from typing import Optional, Dict, Any, Union

from fastapi import BackgroundTasks, Request
from sqlalchemy.exc import SQLAlchemyError

from database import get_db_context
from identity import Identity
from models import AuditLog, AuditAction, RunFsmTrace

logger = logging.getLogger("project-hub.audit")


async def record_audit(
    project_id: Optional[str],
    user_id: Optional[int],
    username: Optional[str],
    action: str,
    entity_type: str,
    entity_id: Optional[Union[str, int]] = None,
    details: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
) -> None:
    """Append one audit row in its own session. Failures are swallowed."""
    entry = AuditLog(
        project_id=project_id or None,
        user_id=user_id,
        username=username or None,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        details=details if isinstance(details, dict) else None,
        request_id=request_id or None,
    )
    try:
        async with get_db_context() as db:
            db.add(entry)
    except SQLAlchemyError as e:
        logger.warning(
            f"Audit write dropped ({action} {entity_type} {entity_id}) "
            f"[rid={request_id}]: {e.__class__.__name__}"
        )


async def append_run_trace(
    run_id: str,
    from_state: Optional[str],
    to_state: str,
    rule_id: Optional[str] = None,
) -> None:
    """Append one run FSM trace row. Failures are swallowed."""
    try:
        async with get_db_context() as db:
            db.add(RunFsmTrace(run_id=run_id, from_state=from_state, to_state=to_state, rule_id=rule_id or None))
    except SQLAlchemyError as e:
        logger.warning(f"Run trace write dropped for {run_id} ({from_state} → {to_state}): {e.__class__.__name__}")


class AuditTrail:
    """Per-request handle that schedules audit/trace writes after the response."""

    def __init__(self, background_tasks: BackgroundTasks, request_id: Optional[str] = None):
        self._tasks = background_tasks
        self.request_id = request_id

    def record(
        self,
        project_id: Optional[str],
        actor: Identity,
        action: AuditAction,
        entity_type: str,
        entity_id: Optional[Union[str, int]] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._tasks.add_task(
            record_audit,
            project_id,
            actor.id,
            actor.username,
            action.value if isinstance(action, AuditAction) else str(action),
            entity_type,
            entity_id,
            details,
            self.request_id,
        )

    def trace_run(self, run_id: str, from_state: Optional[str], to_state: str, rule_id: Optional[str] = None) -> None:
        self._tasks.add_task(append_run_trace, run_id, from_state, to_state, rule_id)


def get_audit_trail(request: Request, background_tasks: BackgroundTasks) -> AuditTrail:
    """FastAPI dependency: audit handle bound to the request correlation id"""
    return AuditTrail(background_tasks, getattr(request.state, "request_id", None))
