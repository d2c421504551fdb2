"""FastAPI dependency injection for the document store services."""

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request
from sqlmodel import Session

from scanstore.config import get_settings
from scanstore.db import get_session
from scanstore.services.cache import ThumbnailCache
from scanstore.services.encryption import EncryptionService
from scanstore.services.repository import (
    DocumentNotFoundError,
    DocumentRepository,
    DocumentRepositoryError,
    DuplicateTagError,
    InvalidRequestError,
    TagNotFoundError,
)
from scanstore.services.search_history import SearchHistoryService
from scanstore.services.search_index import SearchIndexManager

logger = logging.getLogger(__name__)


def get_search_index(request: Request) -> SearchIndexManager:
    return request.app.state.search_index


def get_thumbnail_cache(request: Request) -> ThumbnailCache:
    return request.app.state.thumbnail_cache


def get_encryption_service(request: Request) -> EncryptionService:
    return request.app.state.encryption_service


def get_repository(
    session: Session = Depends(get_session),
    search_index: SearchIndexManager = Depends(get_search_index),
    thumbnail_cache: ThumbnailCache = Depends(get_thumbnail_cache),
    encryption: EncryptionService = Depends(get_encryption_service),
) -> DocumentRepository:
    """Build a repository bound to this request's session."""
    return DocumentRepository(
        session=session,
        search_index=search_index,
        thumbnail_cache=thumbnail_cache,
        encryption=encryption,
        settings=get_settings(),
    )


def get_search_history(session: Session = Depends(get_session)) -> SearchHistoryService:
    return SearchHistoryService(session, max_entries=get_settings().search_history_max_entries)


def to_http_error(exc: DocumentRepositoryError) -> HTTPException:
    """Map a repository error onto the matching HTTP status."""
    if isinstance(exc, (DocumentNotFoundError, TagNotFoundError)):
        return HTTPException(status_code=404, detail=exc.message)
    if isinstance(exc, DuplicateTagError):
        return HTTPException(status_code=409, detail=exc.message)
    if isinstance(exc, InvalidRequestError):
        return HTTPException(status_code=422, detail=exc.message)
    logger.error("Repository failure: %s", exc, exc_info=exc)
    return HTTPException(status_code=500, detail="Document store error")
