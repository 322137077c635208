"""Tests for file upload / SharePoint pull into the research service"""
import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import select

from main import app
from models import AuditLog, ProjectFile
from sharepoint import GraphTokenCache, SharePointClient, get_sharepoint_client
from upstream import ResearchClient
from tests.conftest import auth_headers, fetch_all

INGESTED = []


def research_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/ingest/file":
        body = request.content
        if b"broken.txt" in body:
            return httpx.Response(200, json={"success": False, "error": "Unsupported format"})
        INGESTED.append(body)
        return httpx.Response(200, json={"success": True, "chunks": 3})
    return httpx.Response(404)


@pytest.fixture
def research_client():
    INGESTED.clear()
    return ResearchClient("http://research.test", transport=httpx.MockTransport(research_handler))


def graph_handler(request: httpx.Request) -> httpx.Response:
    url = str(request.url)
    if "oauth2/v2.0/token" in url:
        return httpx.Response(200, json={"access_token": "graph-token", "expires_in": 3600})
    assert request.headers["Authorization"] == "Bearer graph-token"
    if url.endswith("/sites/contoso.sharepoint.com:/sites/research"):
        return httpx.Response(200, json={"id": "site-1"})
    if "/root:/Shared Documents/Reports:/children" in request.url.path:
        return httpx.Response(200, json={"value": [
            {"id": "i1", "name": "q1.pdf", "file": {}},
            {"id": "i2", "name": "archive", "folder": {"childCount": 2}},
            {"id": "i3", "name": "broken.txt", "file": {}},
        ]})
    if "/root:/Shared Documents/Unsorted:/children" in request.url.path:
        return httpx.Response(200, json={"value": [
            {"name": "orphan.pdf", "file": {}},
            {"id": "i1", "name": "q1.pdf", "file": {}},
        ]})
    if request.url.path.endswith("/items/i1/content"):
        return httpx.Response(200, content=b"%PDF q1")
    if request.url.path.endswith("/items/i3/content"):
        return httpx.Response(200, content=b"???")
    return httpx.Response(404, json={"error": {"message": "itemNotFound"}})


@pytest_asyncio.fixture
async def sharepoint_client(client):
    transport = httpx.MockTransport(graph_handler)
    sp = SharePointClient(GraphTokenCache("tenant", "app", "secret", transport=transport), transport=transport)
    app.dependency_overrides[get_sharepoint_client] = lambda: sp
    return sp


@pytest.mark.asyncio
async def test_upload_ingests_then_records(client: AsyncClient, project):
    r = await client.post(
        f"/api/projects/{project['id']}/files",
        files={"file": ("notes.txt", b"hello world", "text/plain")},
        data={"originalName": "Projektnotizen.txt"},
        headers=auth_headers("alice"),
    )
    assert r.status_code == 201
    assert r.json()["original_name"] == "Projektnotizen.txt"
    assert len(INGESTED) == 1

    r = await client.get(f"/api/projects/{project['id']}/files", headers=auth_headers("alice"))
    assert [f["original_name"] for f in r.json()["files"]] == ["Projektnotizen.txt"]
    [entry] = await fetch_all(select(AuditLog).where(AuditLog.entity_type == "project_file"))
    assert entry.details == {"original_name": "Projektnotizen.txt"}


@pytest.mark.asyncio
async def test_upload_without_file(client: AsyncClient, project):
    r = await client.post(f"/api/projects/{project['id']}/files", headers=auth_headers("alice"))
    assert r.status_code == 400
    assert r.json()["error"] == "No file provided"


@pytest.mark.asyncio
async def test_failed_ingestion_records_nothing(client: AsyncClient, project):
    r = await client.post(
        f"/api/projects/{project['id']}/files",
        files={"file": ("broken.txt", b"???", "text/plain")},
        headers=auth_headers("alice"),
    )
    assert r.status_code == 502
    assert r.json()["error"] == "Unsupported format"
    assert await fetch_all(select(ProjectFile)) == []


@pytest.mark.asyncio
async def test_upload_needs_research_service(client: AsyncClient, project, research_client):
    research_client.base_url = ""
    r = await client.post(
        f"/api/projects/{project['id']}/files",
        files={"file": ("a.txt", b"a", "text/plain")},
        headers=auth_headers("alice"),
    )
    assert r.status_code == 503


@pytest.mark.asyncio
async def test_research_service_unreachable(client: AsyncClient, project, research_client):
    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    research_client._transport = httpx.MockTransport(refuse)
    r = await client.post(
        f"/api/projects/{project['id']}/files",
        files={"file": ("a.txt", b"a", "text/plain")},
        headers=auth_headers("alice"),
    )
    assert r.status_code == 503
    assert "Cannot connect" in r.json()["error"]


@pytest.mark.asyncio
async def test_delete_file(client: AsyncClient, project):
    r = await client.post(
        f"/api/projects/{project['id']}/files",
        files={"file": ("a.txt", b"a", "text/plain")},
        headers=auth_headers("alice"),
    )
    file_id = r.json()["id"]
    r = await client.delete(f"/api/projects/{project['id']}/files/{file_id}", headers=auth_headers("alice"))
    assert r.status_code == 200
    r = await client.delete(f"/api/projects/{project['id']}/files/{file_id}", headers=auth_headers("alice"))
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_pull_sharepoint_folder(client: AsyncClient, project, sharepoint_client):
    r = await client.post(
        f"/api/projects/{project['id']}/files/pull-sharepoint",
        json={"site_url": "https://contoso.sharepoint.com/sites/research", "folder_path": "/Shared Documents/Reports"},
        headers=auth_headers("alice"),
    )
    assert r.status_code == 200
    data = r.json()
    assert data["pulled"] == 1
    assert data["failed"] == 1
    assert data["ingested"][0]["original_name"] == "q1.pdf"
    assert data["failures"] == [{"name": "broken.txt", "error": "Unsupported format"}]

    assert [f.original_name for f in await fetch_all(select(ProjectFile))] == ["q1.pdf"]
    assert sharepoint_client.tokens.refresh_count == 1


@pytest.mark.asyncio
async def test_pull_sharepoint_item_without_id(client: AsyncClient, project, sharepoint_client):
    r = await client.post(
        f"/api/projects/{project['id']}/files/pull-sharepoint",
        json={"site_id": "site-1", "folder_path": "/Shared Documents/Unsorted"},
        headers=auth_headers("alice"),
    )
    assert r.status_code == 200
    data = r.json()
    assert data["pulled"] == 1
    assert data["failures"] == [{"name": "orphan.pdf", "error": "SharePoint item has no id"}]
    assert [f.original_name for f in await fetch_all(select(ProjectFile))] == ["q1.pdf"]


@pytest.mark.asyncio
async def test_pull_sharepoint_requires_site(client: AsyncClient, project, sharepoint_client):
    r = await client.post(
        f"/api/projects/{project['id']}/files/pull-sharepoint", json={"folder_path": "x"}, headers=auth_headers("alice"),
    )
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_pull_sharepoint_unconfigured(client: AsyncClient, project):
    app.dependency_overrides[get_sharepoint_client] = lambda: SharePointClient(GraphTokenCache("", "", ""))
    r = await client.post(
        f"/api/projects/{project['id']}/files/pull-sharepoint", json={"site_id": "site-1"}, headers=auth_headers("alice"),
    )
    assert r.status_code == 503
    assert "SHAREPOINT_TENANT_ID" in r.json()["error"]
