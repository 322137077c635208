"""Tests for membership management and the user directory"""
import pytest
from httpx import AsyncClient
from sqlalchemy import select

from models import AuditLog, MemberRole, UserCache
from tests.conftest import auth_headers, fetch_all, members_of


@pytest.mark.asyncio
async def test_list_members_with_usernames(client: AsyncClient, project_with_member, cached_users):
    r = await client.get(f"/api/projects/{project_with_member['id']}/members", headers=auth_headers("bob"))
    assert r.status_code == 200
    members = {m["username"]: m["role"] for m in r.json()["members"]}
    assert members == {"alice": "owner", "bob": "member"}


@pytest.mark.asyncio
async def test_list_members_requires_membership(client: AsyncClient, project):
    r = await client.get(f"/api/projects/{project['id']}/members", headers=auth_headers("carol"))
    assert r.status_code == 403
    r = await client.get(f"/api/projects/{project['id']}/members")
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_add_member_by_username(client: AsyncClient, project, cached_users):
    r = await client.post(
        f"/api/projects/{project['id']}/members", json={"username": " carol "}, headers=auth_headers("alice"),
    )
    assert r.status_code == 201
    roles = {m.user_id: m.role for m in await members_of(project["id"])}
    assert roles[3] == MemberRole.MEMBER

    [entry] = await fetch_all(select(AuditLog).where(AuditLog.action == "member_add"))
    assert entry.entity_id == "3"
    assert entry.details == {"username": "carol"}

    r = await client.post(
        f"/api/projects/{project['id']}/members", json={"username": "carol"}, headers=auth_headers("alice"),
    )
    assert r.status_code == 400
    assert r.json()["error"] == "Already a member"


@pytest.mark.asyncio
async def test_add_unknown_user(client: AsyncClient, project):
    r = await client.post(
        f"/api/projects/{project['id']}/members", json={"username": "dave"}, headers=auth_headers("alice"),
    )
    assert r.status_code == 404
    assert r.json()["error"] == "User not found: dave"


@pytest.mark.asyncio
async def test_remove_member(client: AsyncClient, project_with_member):
    pid = project_with_member["id"]
    r = await client.delete(f"/api/projects/{pid}/members/2", headers=auth_headers("alice"))
    assert r.status_code == 200
    assert [m.user_id for m in await members_of(pid)] == [1]
    assert len(await fetch_all(select(AuditLog).where(AuditLog.action == "member_remove"))) == 1

    r = await client.delete(f"/api/projects/{pid}/members/2", headers=auth_headers("alice"))
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_owner_cannot_remove_self(client: AsyncClient, project):
    r = await client.delete(f"/api/projects/{project['id']}/members/1", headers=auth_headers("alice"))
    assert r.status_code == 400
    assert r.json()["error"] == "Cannot remove yourself"


@pytest.mark.asyncio
async def test_cannot_remove_another_owner(client: AsyncClient, project, db_session):
    from models import ProjectMember
    db_session.add(ProjectMember(project_id=project["id"], user_id=2, role=MemberRole.OWNER))
    await db_session.commit()
    r = await client.delete(f"/api/projects/{project['id']}/members/2", headers=auth_headers("alice"))
    assert r.status_code == 400
    assert r.json()["error"] == "Cannot remove project owner"


@pytest.mark.asyncio
async def test_user_directory_excludes_members(client: AsyncClient, project_with_member):
    r = await client.get(f"/api/users?project_id={project_with_member['id']}", headers=auth_headers("alice"))
    assert r.status_code == 200
    assert [u["username"] for u in r.json()["users"]] == ["carol"]

    # The listing refreshed the cache
    cached = await fetch_all(select(UserCache).order_by(UserCache.user_id))
    assert [u.username for u in cached] == ["alice", "bob", "carol"]


@pytest.mark.asyncio
async def test_user_directory_falls_back_to_cache(client: AsyncClient, identity_client, cached_users):
    import httpx

    def users_down(request):
        if request.url.path == "/auth/users":
            return httpx.Response(500, json={"error": "boom"})
        return httpx.Response(200, json={"id": 1, "username": "alice"})

    identity_client._transport = httpx.MockTransport(users_down)
    r = await client.get("/api/users", headers=auth_headers("alice"))
    assert r.status_code == 200
    assert [u["username"] for u in r.json()["users"]] == ["alice", "bob", "carol"]


@pytest.mark.asyncio
async def test_user_directory_skips_malformed_entries(client: AsyncClient, identity_client):
    import httpx

    def users_with_bad_id(request):
        if request.url.path == "/auth/users":
            return httpx.Response(200, json={"users": [
                {"user_id": "abc", "username": "x"},
                {"user_id": 3, "username": "carol"},
            ]})
        return httpx.Response(200, json={"id": 1, "username": "alice"})

    identity_client._transport = httpx.MockTransport(users_with_bad_id)
    r = await client.get("/api/users", headers=auth_headers("alice"))
    assert r.status_code == 200
    assert r.json()["users"] == [{"user_id": 3, "username": "carol"}]


@pytest.mark.asyncio
async def test_user_directory_all_malformed_uses_cache(client: AsyncClient, identity_client, cached_users):
    import httpx

    def users_all_bad(request):
        if request.url.path == "/auth/users":
            return httpx.Response(200, json={"users": [{"user_id": "abc", "username": "x"}]})
        return httpx.Response(200, json={"id": 1, "username": "alice"})

    identity_client._transport = httpx.MockTransport(users_all_bad)
    r = await client.get("/api/users", headers=auth_headers("alice"))
    assert r.status_code == 200
    assert [u["username"] for u in r.json()["users"]] == ["alice", "bob", "carol"]


@pytest.mark.asyncio
async def test_user_directory_requires_identity(client: AsyncClient):
    r = await client.get("/api/users")
    assert r.status_code == 401
