"""Tests for milestones, documents and notes"""
import pytest
from httpx import AsyncClient
from sqlalchemy import select

from models import AuditLog
from tests.conftest import auth_headers, fetch_all


async def _audit_for(entity_type):
    return [
        (a.action, a.entity_id)
        for a in await fetch_all(select(AuditLog).where(AuditLog.entity_type == entity_type).order_by(AuditLog.created_at))
    ]


# ── Milestones ───────────────────────────────────────────────

@pytest.mark.asyncio
async def test_milestone_lifecycle(client: AsyncClient, project_with_member):
    base = f"/api/projects/{project_with_member['id']}/milestones"
    r = await client.post(base, json={"title": "Launch", "due_date": "2026-11-01"}, headers=auth_headers("bob"))
    assert r.status_code == 201
    milestone = r.json()
    assert milestone["due_date"] == "2026-11-01"
    assert milestone["completed_at"] is None

    r = await client.patch(
        f"{base}/{milestone['id']}", json={"completed_at": "2026-10-30T12:00:00Z"}, headers=auth_headers("bob"),
    )
    assert r.status_code == 200
    assert r.json()["completed_at"].startswith("2026-10-30T12:00:00")
    assert r.json()["title"] == "Launch"

    r = await client.get(base, headers=auth_headers("alice"))
    assert [m["title"] for m in r.json()["milestones"]] == ["Launch"]

    r = await client.delete(f"{base}/{milestone['id']}", headers=auth_headers("bob"))
    assert r.status_code == 200
    assert await _audit_for("milestone") == [
        ("create", milestone["id"]), ("update", milestone["id"]), ("delete", milestone["id"]),
    ]


@pytest.mark.asyncio
async def test_milestone_validation(client: AsyncClient, project):
    base = f"/api/projects/{project['id']}/milestones"
    r = await client.post(base, json={"title": ""}, headers=auth_headers("alice"))
    assert r.status_code == 422
    r = await client.post(base, json={"title": "Bad date", "due_date": "tomorrow"}, headers=auth_headers("alice"))
    assert r.status_code == 422
    r = await client.patch(f"{base}/missing", json={"title": "x"}, headers=auth_headers("alice"))
    assert r.status_code == 404


# ── Documents ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_document_lifecycle(client: AsyncClient, project):
    base = f"/api/projects/{project['id']}/documents"
    r = await client.post(base, json={"title": "Charter", "content": "Scope"}, headers=auth_headers("alice"))
    assert r.status_code == 201
    doc = r.json()

    r = await client.patch(f"{base}/{doc['id']}", json={"content": "   "}, headers=auth_headers("alice"))
    assert r.status_code == 200
    assert r.json()["content"] is None
    assert r.json()["title"] == "Charter"

    r = await client.get(base, headers=auth_headers("alice"))
    assert len(r.json()["documents"]) == 1

    r = await client.delete(f"{base}/{doc['id']}", headers=auth_headers("alice"))
    assert r.status_code == 200
    r = await client.delete(f"{base}/{doc['id']}", headers=auth_headers("alice"))
    assert r.status_code == 404
    assert [action for action, _ in await _audit_for("document")] == ["create", "update", "delete"]


@pytest.mark.asyncio
async def test_documents_forbidden_for_outsider(client: AsyncClient, project):
    r = await client.get(f"/api/projects/{project['id']}/documents", headers=auth_headers("carol"))
    assert r.status_code == 403


# ── Notes ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_note_defaults_and_update(client: AsyncClient, project):
    base = f"/api/projects/{project['id']}/notes"
    r = await client.post(base, json={"body": "Call vendor"}, headers=auth_headers("alice"))
    assert r.status_code == 201
    note = r.json()
    assert note["title"] == "Untitled"

    r = await client.patch(f"{base}/{note['id']}", json={"title": "Vendor"}, headers=auth_headers("alice"))
    assert r.json()["title"] == "Vendor"
    assert r.json()["body"] == "Call vendor"

    r = await client.get(base, headers=auth_headers("alice"))
    assert [n["title"] for n in r.json()["notes"]] == ["Vendor"]

    r = await client.delete(f"{base}/{note['id']}", headers=auth_headers("alice"))
    assert r.status_code == 200
    assert [action for action, _ in await _audit_for("note")] == ["create", "update", "delete"]
