"""Tests for project chat"""
import pytest
from httpx import AsyncClient
from sqlalchemy import text

from database import engine
from tests.conftest import auth_headers


@pytest.mark.asyncio
async def test_post_and_list_messages(client: AsyncClient, project_with_member):
    base = f"/api/projects/{project_with_member['id']}/chat"
    r = await client.post(base, json={"body": "  hello  "}, headers=auth_headers("bob"))
    assert r.status_code == 201
    assert r.json()["body"] == "hello"
    assert r.json()["username"] == "bob"
    await client.post(base, json={"body": "hi bob"}, headers=auth_headers("alice"))

    r = await client.get(base, headers=auth_headers("alice"))
    assert r.status_code == 200
    assert [m["body"] for m in r.json()["messages"]] == ["hello", "hi bob"]


@pytest.mark.asyncio
async def test_chat_access_rules(client: AsyncClient, project):
    base = f"/api/projects/{project['id']}/chat"
    r = await client.get(base)
    assert r.status_code == 403
    assert r.json()["error"] == "Access required"
    r = await client.get(base, headers=auth_headers("carol"))
    assert r.status_code == 403
    r = await client.post(base, json={"body": "hi"}, headers=auth_headers("carol"))
    assert r.status_code == 403
    r = await client.get("/api/projects/missing/chat", headers=auth_headers("alice"))
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_empty_message_rejected(client: AsyncClient, project):
    r = await client.post(f"/api/projects/{project['id']}/chat", json={"body": "   "}, headers=auth_headers("alice"))
    assert r.status_code == 400
    assert r.json()["error"] == "body is required"


@pytest.mark.asyncio
async def test_missing_chat_table(client: AsyncClient, project):
    async with engine.begin() as conn:
        await conn.execute(text("DROP TABLE project_chat_messages"))

    base = f"/api/projects/{project['id']}/chat"
    r = await client.get(base, headers=auth_headers("alice"))
    assert r.status_code == 200
    assert r.json()["messages"] == []

    r = await client.post(base, json={"body": "hello"}, headers=auth_headers("alice"))
    assert r.status_code == 503
    assert "migrations" in r.json()["error"]
