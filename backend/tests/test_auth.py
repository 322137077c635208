"""Tests for the identity-service auth proxy and identity resolution"""
import httpx
import pytest
from httpx import AsyncClient
from sqlalchemy import select

from identity import IdentityClient
from models import UserCache
from tests.conftest import auth_headers, fetch_all


@pytest.mark.asyncio
async def test_login_forwards_and_caches_user(client: AsyncClient):
    r = await client.post("/api/auth/login", json={"username": "carol", "password": "pw"})
    assert r.status_code == 200
    assert r.json()["token"] == "token-carol"

    [cached] = await fetch_all(select(UserCache))
    assert (cached.user_id, cached.username) == (3, "carol")


@pytest.mark.asyncio
async def test_login_failure_passes_status_through(client: AsyncClient):
    r = await client.post("/api/auth/login", json={"username": "mallory", "password": "pw"})
    assert r.status_code == 401
    assert r.json()["error"] == "Invalid credentials"
    assert await fetch_all(select(UserCache)) == []


@pytest.mark.asyncio
async def test_signup_forwards(client: AsyncClient):
    r = await client.post("/api/auth/signup", json={"username": "bob", "password": "pw"})
    assert r.status_code == 200
    assert r.json()["user"]["username"] == "bob"


@pytest.mark.asyncio
async def test_me(client: AsyncClient):
    r = await client.get("/api/auth/me", headers=auth_headers("alice"))
    assert r.status_code == 200
    assert r.json() == {"id": 1, "username": "alice"}

    r = await client.get("/api/auth/me")
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_me_when_identity_service_fails(client: AsyncClient, identity_client):
    identity_client._transport = httpx.MockTransport(lambda request: httpx.Response(500, json={"error": "db down"}))
    r = await client.get("/api/auth/me", headers=auth_headers("alice"))
    assert r.status_code == 503
    assert r.json()["detail"] == "db down"

    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    identity_client._transport = httpx.MockTransport(refuse)
    r = await client.get("/api/auth/me", headers=auth_headers("alice"))
    assert r.status_code == 503
    assert "identity service" in r.json()["detail"]


@pytest.mark.asyncio
async def test_auth_proxy_unconfigured(client: AsyncClient, identity_client):
    identity_client.base_url = ""
    r = await client.post("/api/auth/login", json={"username": "alice"})
    assert r.status_code == 503
    assert r.json()["error"] == "IDENTITY_SERVICE_URL not set"


# ── IdentityClient.verify ────────────────────────────────────

@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(401, json={"error": "expired"}),
    httpx.Response(200, json={"username": "no-id"}),
    httpx.Response(200, text="<html>"),
    httpx.Response(200, json={"id": "abc", "username": "x"}),
])
async def test_verify_collapses_bad_answers_to_none(response):
    client = IdentityClient("http://identity.test", transport=httpx.MockTransport(lambda request: response))
    assert await client.verify("Bearer whatever") is None


@pytest.mark.asyncio
async def test_verify_timeout_is_none():
    def slow(request):
        raise httpx.ReadTimeout("slow", request=request)

    client = IdentityClient("http://identity.test", transport=httpx.MockTransport(slow))
    assert await client.verify("Bearer token-alice") is None


@pytest.mark.asyncio
async def test_verify_without_credentials_skips_the_call():
    def fail(request):
        raise AssertionError("identity service must not be called")

    client = IdentityClient("http://identity.test", transport=httpx.MockTransport(fail))
    assert await client.verify(None) is None
    assert await client.verify("") is None
