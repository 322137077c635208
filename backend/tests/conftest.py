# tests/conftest.py - Shared test fixtures
import os
import json

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["IDENTITY_SERVICE_URL"] = "http://identity.test"
os.environ["RESEARCH_SERVICE_URL"] = ""
os.environ["ENVIRONMENT"] = "test"

from database import engine, async_session_maker
from identity import IdentityClient, get_identity_client
from models import Base, Project, ProjectMember, MemberRole, UserCache
from upstream import ResearchClient, get_research_client
from main import app

# Bearer token → identity-service user
USERS = {
    "token-alice": {"id": 1, "username": "alice"},
    "token-bob": {"id": 2, "username": "bob"},
    "token-carol": {"id": 3, "username": "carol"},
}


def identity_handler(request: httpx.Request) -> httpx.Response:
    """Stand-in for the identity service behind IDENTITY_SERVICE_URL"""
    token = request.headers.get("Authorization", "").removeprefix("Bearer ").strip()
    user = USERS.get(token)
    path = request.url.path

    if path == "/auth/me":
        if user is None:
            return httpx.Response(401, json={"error": "Invalid token"})
        return httpx.Response(200, json=user)
    if path == "/auth/users":
        if user is None:
            return httpx.Response(401, json={"error": "Invalid token"})
        return httpx.Response(200, json={
            "users": [{"user_id": u["id"], "username": u["username"]} for u in USERS.values()]
        })
    if path in ("/auth/login", "/auth/signup"):
        body = json.loads(request.content or b"{}")
        for known_token, u in USERS.items():
            if u["username"] == body.get("username"):
                return httpx.Response(200, json={"token": known_token, "user": u})
        return httpx.Response(401, json={"error": "Invalid credentials"})
    return httpx.Response(404, json={"error": "Not found"})


def auth_headers(username: str) -> dict:
    """Authorization header for one of the USERS"""
    for token, u in USERS.items():
        if u["username"] == username:
            return {"Authorization": f"Bearer {token}"}
    raise KeyError(username)


async def fetch_all(stmt):
    """Run a query in a short-lived session (keeps SQLite locks out of the app's way)"""
    async with async_session_maker() as session:
        result = await session.execute(stmt)
        return list(result.scalars().all())


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    async with async_session_maker() as session:
        yield session


@pytest.fixture
def identity_client():
    return IdentityClient("http://identity.test", transport=httpx.MockTransport(identity_handler))


@pytest.fixture
def research_client():
    """Research client without a URL; tests that need one override it"""
    return ResearchClient("")


@pytest_asyncio.fixture(scope="function")
async def client(db_engine, identity_client, research_client):
    """HTTP test client wired to the stand-in identity service"""
    app.dependency_overrides[get_identity_client] = lambda: identity_client
    app.dependency_overrides[get_research_client] = lambda: research_client
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def cached_users(db_session):
    """The user_cache as it looks once every test user has signed in"""
    for u in USERS.values():
        await db_session.merge(UserCache(user_id=u["id"], username=u["username"]))
    await db_session.commit()
    return USERS


@pytest_asyncio.fixture
async def project(client):
    """A project owned by alice"""
    r = await client.post("/api/projects", json={"name": "Apollo", "description": "Lunar"}, headers=auth_headers("alice"))
    assert r.status_code == 201
    return r.json()


@pytest_asyncio.fixture
async def project_with_member(project, db_session):
    """alice's project with bob as a plain member"""
    db_session.add(ProjectMember(project_id=project["id"], user_id=2, role=MemberRole.MEMBER))
    await db_session.commit()
    return project


@pytest_asyncio.fixture
async def legacy_project(db_session):
    """A project that predates membership rows: nobody is a member"""
    p = Project(name="Legacy", description=None)
    db_session.add(p)
    await db_session.commit()
    return {"id": p.id, "name": p.name}


async def members_of(project_id: str):
    return await fetch_all(select(ProjectMember).where(ProjectMember.project_id == project_id))
