# upstream.py - Client for the research / ingestion service
"""
Files are pushed to ``/ingest/file``; search and research calls are proxied
with the caller's Authorization header. Transport failures are translated
into :class:`UpstreamError` carrying the HTTP status the API should answer
with: unreachable → 503, reset/timeout → 502, upstream 5xx gateway errors
passed through.
"""
import os
import logging
from typing import Optional, Dict, Any

import httpx

logger = logging.getLogger("project-hub.upstream")

RESEARCH_SERVICE_URL = os.getenv("RESEARCH_SERVICE_URL", "").rstrip("/")

INGEST_TIMEOUT_SECONDS = 120.0
SEARCH_TIMEOUT_SECONDS = 60.0
RESEARCH_RUN_TIMEOUT_SECONDS = 120.0
RESEARCH_SESSION_TIMEOUT_SECONDS = 10.0
HEALTH_TIMEOUT_SECONDS = 5.0


class UpstreamError(Exception):
    """An upstream service could not produce a usable response."""

    def __init__(self, status_code: int, message: str, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.payload = payload or {}

    def to_body(self) -> Dict[str, Any]:
        return {**self.payload, "error": self.message}


def translate_http_error(exc: httpx.HTTPError, service: str = "research service") -> UpstreamError:
    """Map an httpx failure to the status/message the API answers with."""
    if isinstance(exc, httpx.ConnectError):
        return UpstreamError(503, f"Cannot connect to the {service}. Check that it is running and its URL is configured.")
    if isinstance(exc, httpx.TimeoutException):
        return UpstreamError(502, f"The {service} request timed out. Try again or shorten the request.")
    if isinstance(exc, (httpx.RemoteProtocolError, httpx.ReadError)):
        return UpstreamError(502, f"The connection to the {service} was reset. Try again.")
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        try:
            body = exc.response.json()
        except ValueError:
            body = None
        payload = body if isinstance(body, dict) else {}
        if status in (502, 503, 504):
            return UpstreamError(status, f"The {service} is unavailable right now (server error). Try again.", payload)
        message = payload.get("error") if isinstance(payload.get("error"), str) else str(exc)
        return UpstreamError(status or 500, message, payload)
    return UpstreamError(500, str(exc) or f"{service} request failed")


class ResearchClient:
    """Async client for the research/RAG service."""

    def __init__(self, base_url: str = RESEARCH_SERVICE_URL, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def _require_configured(self) -> None:
        if not self.configured:
            raise UpstreamError(503, "RESEARCH_SERVICE_URL not set")

    async def _send(
        self, method: str, path: str, timeout: float,
        authorization: Optional[str] = None, **kwargs,
    ) -> Dict[str, Any]:
        self._require_configured()
        headers = kwargs.pop("headers", {})
        if authorization:
            headers["Authorization"] = authorization
        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=self._transport) as client:
                resp = await client.request(method, path, headers=headers, **kwargs)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as e:
            err = translate_http_error(e)
            logger.error(f"{method} {path} → research service error: {type(e).__name__} ({err.status_code})")
            raise err
        except ValueError:
            raise UpstreamError(502, "The research service returned a non-JSON response")
        return data if isinstance(data, dict) else {"data": data}

    async def health(self) -> bool:
        if not self.configured:
            return False
        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=HEALTH_TIMEOUT_SECONDS, transport=self._transport) as client:
                resp = await client.get("/health")
            return resp.status_code < 500
        except httpx.HTTPError:
            return False

    async def ingest_file(self, filename: str, content: bytes) -> Dict[str, Any]:
        """Push a file into the search index. Raises unless the service reports success."""
        data = await self._send(
            "POST", "/ingest/file", INGEST_TIMEOUT_SECONDS,
            files={"file": (filename, content)},
        )
        if not data.get("success"):
            raise UpstreamError(502, data.get("error") or "Ingestion failed", data)
        return data

    async def search(self, params: Dict[str, Any], authorization: Optional[str] = None) -> Dict[str, Any]:
        return await self._send("GET", "/search", SEARCH_TIMEOUT_SECONDS, authorization, params=params)

    async def research_run(self, body: Dict[str, Any], authorization: Optional[str] = None) -> Dict[str, Any]:
        return await self._send("POST", "/api/research/run", RESEARCH_RUN_TIMEOUT_SECONDS, authorization, json=body)

    async def research_session(self, body: Dict[str, Any], authorization: Optional[str] = None) -> Dict[str, Any]:
        return await self._send("POST", "/research/session", RESEARCH_SESSION_TIMEOUT_SECONDS, authorization, json=body)


_research_client = ResearchClient()


def get_research_client() -> ResearchClient:
    return _research_client
