"""Tests for the Projects router"""
import pytest
from httpx import AsyncClient
from sqlalchemy import select

from models import AuditLog, MemberRole, Project, Task
from tests.conftest import auth_headers, fetch_all, members_of


@pytest.mark.asyncio
async def test_create_project_makes_caller_owner(client: AsyncClient):
    r = await client.post("/api/projects", json={"name": "  Apollo  ", "description": ""}, headers=auth_headers("alice"))
    assert r.status_code == 201
    data = r.json()
    assert data["name"] == "Apollo"
    assert data["description"] is None

    [member] = await members_of(data["id"])
    assert member.user_id == 1
    assert member.role == MemberRole.OWNER

    [entry] = await fetch_all(select(AuditLog))
    assert entry.action == "create"
    assert entry.entity_type == "project"
    assert entry.details == {"name": "Apollo"}


@pytest.mark.asyncio
async def test_create_project_requires_identity_and_name(client: AsyncClient):
    r = await client.post("/api/projects", json={"name": "Apollo"})
    assert r.status_code == 401
    r = await client.post("/api/projects", json={"name": "   "}, headers=auth_headers("alice"))
    assert r.status_code == 422
    assert await fetch_all(select(Project)) == []


@pytest.mark.asyncio
async def test_list_projects(client: AsyncClient, project):
    await client.post("/api/projects", json={"name": "Gemini"}, headers=auth_headers("bob"))
    r = await client.get("/api/projects?limit=1")
    assert r.status_code == 200
    data = r.json()
    assert data["total"] == 2
    assert len(data["projects"]) == 1
    assert data["projects"][0]["name"] == "Gemini"


@pytest.mark.asyncio
async def test_get_project_forbidden_carries_request_hint(client: AsyncClient, project):
    r = await client.get(f"/api/projects/{project['id']}", headers=auth_headers("carol"))
    assert r.status_code == 403
    body = r.json()
    assert body["error"] == "Not a project member"
    assert body["can_request"] is True
    assert body["request_id"]

    r = await client.get(f"/api/projects/{project['id']}", headers=auth_headers("alice"))
    assert r.status_code == 200
    assert r.json()["name"] == "Apollo"


@pytest.mark.asyncio
async def test_access_probe(client: AsyncClient, project_with_member):
    pid = project_with_member["id"]
    r = await client.get(f"/api/projects/{pid}/access", headers=auth_headers("bob"))
    assert r.json() == {"canAccess": True, "role": "member", "hasPendingRequest": False}
    r = await client.get(f"/api/projects/{pid}/access")
    assert r.json() == {"canAccess": False, "role": None, "hasPendingRequest": False}
    r = await client.get("/api/projects/missing/access")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_owner_updates_project(client: AsyncClient, project):
    r = await client.patch(
        f"/api/projects/{project['id']}", json={"name": "Apollo 11"}, headers=auth_headers("alice"),
    )
    assert r.status_code == 200
    assert r.json()["name"] == "Apollo 11"
    assert r.json()["description"] == "Lunar"

    r = await client.patch(f"/api/projects/{project['id']}", json={"name": " "}, headers=auth_headers("alice"))
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_owner_deletes_project_and_contents(client: AsyncClient, project):
    await client.post(f"/api/projects/{project['id']}/tasks", json={"title": "T"}, headers=auth_headers("alice"))
    r = await client.delete(f"/api/projects/{project['id']}", headers=auth_headers("alice"))
    assert r.status_code == 200
    assert r.json() == {"success": True}

    assert await fetch_all(select(Project)) == []
    assert await fetch_all(select(Task)) == []
    assert await members_of(project["id"]) == []
    # Audit entries outlive the project
    actions = [a.action for a in await fetch_all(select(AuditLog).where(AuditLog.entity_type == "project"))]
    assert sorted(actions) == ["create", "delete"]


@pytest.mark.asyncio
async def test_health_and_root(client: AsyncClient):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json()["database"] == "connected"
    assert r.json()["ok"] is True
    assert "X-Request-ID" in r.headers

    r = await client.get("/")
    assert r.json()["service"] == "project-hub"


@pytest.mark.asyncio
async def test_request_id_is_echoed(client: AsyncClient):
    r = await client.get("/api/projects/missing/access", headers={"X-Request-ID": "rid-123"})
    assert r.status_code == 404
    assert r.headers["X-Request-ID"] == "rid-123"
    assert r.json()["request_id"] == "rid-123"
