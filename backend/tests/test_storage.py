"""Tests for storage error classification and audit failure isolation"""
import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError

from audit import record_audit, append_run_trace
from database import engine
from models import AuditLog
from storage import ErrorKind, classify
from tests.conftest import fetch_all


class _PgError(Exception):
    def __init__(self, sqlstate):
        super().__init__("pg error")
        self.sqlstate = sqlstate


def test_classify_postgres_codes():
    assert classify(ProgrammingError("SELECT", {}, _PgError("42P01"))) == ErrorKind.SCHEMA_MISSING
    assert classify(ProgrammingError("SELECT", {}, _PgError("42703"))) == ErrorKind.SCHEMA_MISSING
    assert classify(IntegrityError("INSERT", {}, _PgError("23505"))) == ErrorKind.CONFLICT
    assert classify(OperationalError("SELECT", {}, _PgError("53300"))) == ErrorKind.OTHER


def test_classify_non_driver_error():
    assert classify(ValueError("nope")) == ErrorKind.OTHER


@pytest.mark.asyncio
async def test_classify_sqlite_missing_table(db_engine):
    async with engine.connect() as conn:
        with pytest.raises(OperationalError) as exc:
            await conn.execute(text("SELECT * FROM no_such_relation"))
    assert classify(exc.value) == ErrorKind.SCHEMA_MISSING


@pytest.mark.asyncio
async def test_audit_write_failure_is_swallowed(db_engine):
    async with engine.begin() as conn:
        await conn.execute(text("DROP TABLE audit_log"))
    # Neither call raises
    await record_audit("p1", 1, "alice", "create", "task", "t1", {"title": "x"}, "rid")
    await append_run_trace("missing-run", None, "draft")


@pytest.mark.asyncio
async def test_record_audit_normalises_fields(db_engine):
    await record_audit("p1", 1, "", "member_add", "project_member", 42, ["not", "a", "dict"], "")
    [entry] = await fetch_all(select(AuditLog))
    assert entry.entity_id == "42"
    assert entry.username is None
    assert entry.details is None
    assert entry.request_id is None
