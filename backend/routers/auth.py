# routers/auth.py - Authentication proxy (login / signup / me) to the identity service
import logging
from typing import Optional, Dict, Any

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Request
from fastapi.responses import JSONResponse

from identity import IdentityClient, get_identity_client
from upstream import UpstreamError
from user_cache import remember_user

logger = logging.getLogger("project-hub.auth")

router = APIRouter(prefix="/api/auth", tags=["Authentication"])

AUTH_UNAVAILABLE = "Auth service unavailable. Check that the identity service is running and its database is configured."


def _json_body(resp) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {"error": resp.text or "Auth request failed"}
    return data if isinstance(data, dict) else {"data": data}


async def _forward_credentials(
    path: str, request: Request, background_tasks: BackgroundTasks,
    body: Optional[Dict[str, Any]], client: IdentityClient,
) -> JSONResponse:
    resp = await client.forward("POST", path, request.headers.get("Authorization"), body or {})
    data = _json_body(resp)
    user = data.get("user")
    if resp.status_code == 200 and isinstance(user, dict) and user.get("id") is not None and user.get("username"):
        background_tasks.add_task(remember_user, user["id"], user["username"])
    return JSONResponse(status_code=resp.status_code, content=data, background=background_tasks)


@router.post("/login")
async def login(
    request: Request,
    background_tasks: BackgroundTasks,
    body: Optional[Dict[str, Any]] = Body(None),
    client: IdentityClient = Depends(get_identity_client),
):
    return await _forward_credentials("/login", request, background_tasks, body, client)


@router.post("/signup")
async def signup(
    request: Request,
    background_tasks: BackgroundTasks,
    body: Optional[Dict[str, Any]] = Body(None),
    client: IdentityClient = Depends(get_identity_client),
):
    return await _forward_credentials("/signup", request, background_tasks, body, client)


@router.get("/me")
async def me(
    request: Request,
    background_tasks: BackgroundTasks,
    client: IdentityClient = Depends(get_identity_client),
):
    """Current user as reported by the identity service"""
    try:
        resp = await client.forward("GET", "/me", request.headers.get("Authorization"))
    except UpstreamError as e:
        if not client.configured:
            raise
        return JSONResponse(status_code=503, content={"error": AUTH_UNAVAILABLE, "detail": e.message})

    data = _json_body(resp)
    if resp.status_code >= 500:
        logger.error(f"GET /api/auth/me → identity service returned {resp.status_code}")
        return JSONResponse(status_code=503, content={"error": AUTH_UNAVAILABLE, "detail": data.get("error")})
    if resp.status_code == 200 and data.get("id") is not None and data.get("username"):
        background_tasks.add_task(remember_user, data["id"], data["username"])
    return JSONResponse(status_code=resp.status_code, content=data, background=background_tasks)
