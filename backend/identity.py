# identity.py - Caller identity resolution via the upstream identity service
# Features:
# - Bearer credential → {id, username} by delegating to GET /auth/me
# - Fail-closed: any upstream problem resolves to "no identity"
# - User listing with best-effort semantics (caller falls back to user_cache)
# - Auth proxy (login / signup / me) forwarding to the same service

import os
import logging
from typing import Optional, Dict, Any, List

import httpx
from fastapi import BackgroundTasks, Depends, HTTPException, Request
from pydantic import BaseModel

from upstream import UpstreamError
from user_cache import remember_user

logger = logging.getLogger("project-hub.identity")

# ============================================================
# CONFIGURATION
# ============================================================

IDENTITY_SERVICE_URL = (
    os.getenv("IDENTITY_SERVICE_URL") or os.getenv("RESEARCH_SERVICE_URL", "")
).rstrip("/")
IDENTITY_TIMEOUT_SECONDS = float(os.getenv("IDENTITY_TIMEOUT_SECONDS", "8"))
USER_LIST_TIMEOUT_SECONDS = float(os.getenv("USER_LIST_TIMEOUT_SECONDS", "10"))
AUTH_PROXY_TIMEOUT_SECONDS = float(os.getenv("AUTH_PROXY_TIMEOUT_SECONDS", "15"))


class Identity(BaseModel):
    id: int
    username: str


# ============================================================
# IDENTITY CLIENT
# ============================================================

class IdentityClient:
    """Thin async client for the identity service."""

    def __init__(self, base_url: str = IDENTITY_SERVICE_URL, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=self._transport)

    async def verify(self, authorization: Optional[str]) -> Optional[Identity]:
        """Resolve an Authorization header to an Identity, or None."""
        if not authorization or not self.configured:
            return None
        try:
            async with self._client(IDENTITY_TIMEOUT_SECONDS) as client:
                resp = await client.get("/auth/me", headers={"Authorization": authorization})
            if resp.status_code != 200:
                return None
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Identity verification failed: {type(e).__name__}")
            return None
        if not isinstance(data, dict) or data.get("id") is None:
            return None
        try:
            return Identity(id=int(data["id"]), username=str(data.get("username") or data["id"]))
        except (TypeError, ValueError):
            return None

    async def list_identities(self, authorization: Optional[str]) -> List[Dict[str, Any]]:
        """List known users as ``{user_id, username}``. Empty on any failure."""
        if not authorization or not self.configured:
            return []
        try:
            async with self._client(USER_LIST_TIMEOUT_SECONDS) as client:
                resp = await client.get("/auth/users", headers={"Authorization": authorization})
            resp.raise_for_status()
            users = resp.json().get("users")
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.info(f"User listing unavailable, using cache: {type(e).__name__}")
            return []
        if not isinstance(users, list):
            return []
        out = []
        for u in users:
            if not (isinstance(u, dict) and u.get("user_id") is not None and u.get("username")):
                continue
            try:
                out.append({"user_id": int(u["user_id"]), "username": str(u["username"])})
            except (TypeError, ValueError):
                logger.info(f"Skipping malformed user entry from identity service: {u.get('user_id')!r}")
        return out

    async def forward(
        self, method: str, path: str, authorization: Optional[str] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Proxy an auth call; returns the upstream response whatever its status."""
        if not self.configured:
            raise UpstreamError(503, "IDENTITY_SERVICE_URL not set")
        headers = {"Content-Type": "application/json"}
        if authorization:
            headers["Authorization"] = authorization
        try:
            async with self._client(AUTH_PROXY_TIMEOUT_SECONDS) as client:
                return await client.request(method, f"/auth{path}", headers=headers, json=body)
        except (httpx.ConnectError, httpx.TimeoutException) as e:
            logger.error(f"Auth forward {method} {path} → {type(e).__name__}")
            raise UpstreamError(503, "Cannot reach the identity service. Check IDENTITY_SERVICE_URL.")
        except httpx.HTTPError as e:
            logger.error(f"Auth forward {method} {path} → {e}")
            raise UpstreamError(502, "Auth request failed")


_identity_client = IdentityClient()


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

def get_identity_client() -> IdentityClient:
    return _identity_client


async def get_current_identity(
    request: Request,
    background_tasks: BackgroundTasks,
    client: IdentityClient = Depends(get_identity_client),
) -> Optional[Identity]:
    """The caller's identity, or None. Never raises."""
    identity = await client.verify(request.headers.get("Authorization"))
    if identity is not None:
        background_tasks.add_task(remember_user, identity.id, identity.username)
    return identity


async def require_identity(
    identity: Optional[Identity] = Depends(get_current_identity),
) -> Identity:
    if identity is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return identity
