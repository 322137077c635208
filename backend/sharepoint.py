# sharepoint.py - Microsoft Graph client for pulling SharePoint folders
"""
Client-credentials access to Graph. The access token lives in a
:class:`GraphTokenCache` (``{value, expires_at}``) that is refreshed lazily,
60 seconds before expiry, with a double-checked asyncio.Lock so concurrent
pulls trigger at most one token request.
"""
import os
import time
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, List, Dict, Any
from urllib.parse import urlparse

import httpx

from upstream import UpstreamError

logger = logging.getLogger("project-hub.sharepoint")

SHAREPOINT_TENANT_ID = os.getenv("SHAREPOINT_TENANT_ID", "")
SHAREPOINT_CLIENT_ID = os.getenv("SHAREPOINT_CLIENT_ID", "")
SHAREPOINT_CLIENT_SECRET = os.getenv("SHAREPOINT_CLIENT_SECRET", "")

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
LOGIN_BASE_URL = "https://login.microsoftonline.com"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"

GRAPH_TIMEOUT_SECONDS = 15.0
DOWNLOAD_TIMEOUT_SECONDS = 120.0
REFRESH_MARGIN_SECONDS = 60.0


@dataclass
class GraphToken:
    value: str
    expires_at: float

    def is_fresh(self, now: Optional[float] = None) -> bool:
        now = time.monotonic() if now is None else now
        return now < self.expires_at - REFRESH_MARGIN_SECONDS


class GraphTokenCache:
    """Process-wide Graph token with single-flight refresh."""

    def __init__(self, tenant_id: str, client_id: str, client_secret: str,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self._transport = transport
        self._token: Optional[GraphToken] = None
        self._lock: Optional[asyncio.Lock] = None
        self.refresh_count = 0

    @property
    def configured(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)

    async def get(self) -> str:
        token = self._token
        if token is not None and token.is_fresh():
            return token.value

        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            # Another caller may have refreshed while we waited
            token = self._token
            if token is not None and token.is_fresh():
                return token.value
            self._token = await self._fetch()
            return self._token.value

    def invalidate(self) -> None:
        self._token = None

    async def _fetch(self) -> GraphToken:
        url = f"{LOGIN_BASE_URL}/{self.tenant_id}/oauth2/v2.0/token"
        form = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "scope": GRAPH_SCOPE,
        }
        try:
            async with httpx.AsyncClient(timeout=GRAPH_TIMEOUT_SECONDS, transport=self._transport) as client:
                resp = await client.post(url, data=form)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Graph token request rejected: {e.response.status_code}")
            raise UpstreamError(e.response.status_code, "Graph token request rejected")
        except httpx.HTTPError as e:
            logger.error(f"Graph token request failed: {type(e).__name__}")
            raise UpstreamError(503, "Cannot reach the Microsoft identity platform")

        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            raise UpstreamError(502, "No access_token in Graph response")
        expires_in = float(data.get("expires_in") or 3600)
        self.refresh_count += 1
        logger.info("Graph access token refreshed")
        return GraphToken(value=access_token, expires_at=time.monotonic() + expires_in)


def _graph_error(exc: httpx.HTTPError) -> UpstreamError:
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            body = exc.response.json()
        except ValueError:
            body = {}
        err = body.get("error") if isinstance(body, dict) else None
        message = err.get("message") if isinstance(err, dict) else err
        return UpstreamError(exc.response.status_code, message or "Graph request failed")
    if isinstance(exc, httpx.TimeoutException):
        return UpstreamError(502, "Graph request timed out")
    return UpstreamError(503, "Cannot reach Microsoft Graph")


class SharePointClient:
    """Lists and downloads drive items from a SharePoint site."""

    def __init__(self, tokens: GraphTokenCache, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.tokens = tokens
        self._transport = transport

    @property
    def configured(self) -> bool:
        return self.tokens.configured

    async def _get(self, url: str, timeout: float = GRAPH_TIMEOUT_SECONDS) -> httpx.Response:
        token = await self.tokens.get()
        try:
            async with httpx.AsyncClient(
                timeout=timeout, transport=self._transport, follow_redirects=True,
            ) as client:
                resp = await client.get(url, headers={"Authorization": f"Bearer {token}"})
                resp.raise_for_status()
                return resp
        except httpx.HTTPError as e:
            raise _graph_error(e)

    async def resolve_site_id(self, site_url: str) -> Optional[str]:
        parsed = urlparse(site_url)
        path = parsed.path.rstrip("/") or "/"
        resp = await self._get(f"{GRAPH_BASE_URL}/sites/{parsed.hostname}:{path}")
        return resp.json().get("id")

    async def list_folder_files(self, site_id: str, folder_path: str = "", drive_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Files (not sub-folders) directly inside ``folder_path``"""
        drive = (
            f"{GRAPH_BASE_URL}/sites/{site_id}/drives/{drive_id}"
            if drive_id else f"{GRAPH_BASE_URL}/sites/{site_id}/drive"
        )
        folder = folder_path.lstrip("/").strip()
        url = f"{drive}/root:/{folder}:/children" if folder else f"{drive}/root/children"
        resp = await self._get(url)
        children = resp.json().get("value") or []
        return [item for item in children if item.get("file") is not None]

    async def download(self, site_id: str, item_id: str) -> bytes:
        resp = await self._get(
            f"{GRAPH_BASE_URL}/sites/{site_id}/drive/items/{item_id}/content",
            timeout=DOWNLOAD_TIMEOUT_SECONDS,
        )
        return resp.content


_sharepoint_client = SharePointClient(
    GraphTokenCache(SHAREPOINT_TENANT_ID, SHAREPOINT_CLIENT_ID, SHAREPOINT_CLIENT_SECRET)
)


def get_sharepoint_client() -> SharePointClient:
    return _sharepoint_client
