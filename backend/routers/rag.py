# routers/rag.py - Proxy to the research/RAG service
from typing import Optional, Dict, Any

from fastapi import APIRouter, Body, Depends, Request
from pydantic import BaseModel

from upstream import ResearchClient, get_research_client

router = APIRouter(prefix="/api/rag", tags=["Research"])


class SearchRequest(BaseModel):
    query: Optional[str] = None
    n_results: Optional[int] = None
    session_id: Optional[str] = None
    stage: Optional[str] = None
    generate_answer: Optional[bool] = None
    filename: Optional[str] = None


def _search_params(data: SearchRequest) -> Dict[str, Any]:
    params = {k: v for k, v in data.model_dump().items() if v not in (None, "")}
    if "generate_answer" in params:
        params["generate_answer"] = str(params["generate_answer"]).lower()
    return params


@router.get("/health")
async def rag_health(research: ResearchClient = Depends(get_research_client)):
    if not research.configured:
        return {"ok": False, "error": "RESEARCH_SERVICE_URL not set"}
    return {"ok": await research.health(), "research_url": research.base_url}


@router.post("/search")
async def rag_search(
    request: Request,
    data: Optional[SearchRequest] = Body(None),
    research: ResearchClient = Depends(get_research_client),
):
    return await research.search(_search_params(data or SearchRequest()), request.headers.get("Authorization"))


@router.post("/research/run")
async def rag_research_run(
    request: Request,
    body: Optional[Dict[str, Any]] = Body(None),
    research: ResearchClient = Depends(get_research_client),
):
    return await research.research_run(body or {}, request.headers.get("Authorization"))


@router.post("/research/session")
async def rag_research_session(
    request: Request,
    body: Optional[Dict[str, Any]] = Body(None),
    research: ResearchClient = Depends(get_research_client),
):
    return await research.research_session(body or {}, request.headers.get("Authorization"))
