from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session

from scanstore.db import get_session
from scanstore.dependencies import (
    get_repository,
    get_search_history,
    get_search_index,
    to_http_error,
)
from scanstore.models.document import DocumentRead
from scanstore.models.search_history import SearchHistoryRead
from scanstore.services.repository import DocumentRepository, DocumentRepositoryError
from scanstore.services.search_history import SearchHistoryService
from scanstore.services.search_index import SearchIndexError, SearchIndexManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/search", tags=["search"])


@router.get("", response_model=list[DocumentRead])
async def search_documents(
    q: str = Query("", description="Free-text query over title, description and OCR text"),
    repo: DocumentRepository = Depends(get_repository),
    history: SearchHistoryService = Depends(get_search_history),
) -> list[DocumentRead]:
    try:
        results = await repo.search(q)
    except DocumentRepositoryError as exc:
        raise to_http_error(exc) from exc
    if q.strip():
        history.record(q, len(results))
    return results


@router.get("/history", response_model=list[SearchHistoryRead])
async def recent_searches(
    limit: int = Query(10, ge=1, le=100),
    history: SearchHistoryService = Depends(get_search_history),
) -> list[SearchHistoryRead]:
    return [SearchHistoryRead.model_validate(h) for h in history.recent(limit)]


@router.delete("/history", status_code=204)
async def clear_history(
    q: str | None = Query(None, description="Remove only this query"),
    history: SearchHistoryService = Depends(get_search_history),
) -> None:
    if q is None:
        history.clear()
    else:
        history.remove(q)


@router.post("/rebuild", status_code=204)
async def rebuild_index(
    search_index: SearchIndexManager = Depends(get_search_index),
    session: Session = Depends(get_session),
) -> None:
    """Recompute the full-text index from the documents table."""
    try:
        await search_index.rebuild_index(session)
    except SearchIndexError as exc:
        logger.error("Search index rebuild failed", exc_info=True)
        raise HTTPException(status_code=500, detail="Search index rebuild failed") from exc
