from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, text

from scanstore.db import get_session
from scanstore.dependencies import (
    get_encryption_service,
    get_search_index,
    get_thumbnail_cache,
)
from scanstore.services.cache import ThumbnailCache
from scanstore.services.encryption import EncryptionService
from scanstore.services.search_index import SearchIndexManager

router = APIRouter(prefix="/api", tags=["health"])

SERVICE_NAME = "scanstore"
VERSION = "0.1.0"


def _check_database(session: Session) -> str:
    try:
        session.exec(text("SELECT 1"))
    except SQLAlchemyError as exc:
        return f"error: {exc}"
    return "ok"


@router.get("/health")
async def health(
    session: Session = Depends(get_session),
    search_index: SearchIndexManager = Depends(get_search_index),
    thumbnail_cache: ThumbnailCache = Depends(get_thumbnail_cache),
    encryption: EncryptionService = Depends(get_encryption_service),
):
    db_status = _check_database(session)
    capability = search_index.capability
    search_status = "uninitialized" if capability is None else capability.name.lower()

    return {
        "status": "healthy" if db_status == "ok" else "unhealthy",
        "service": SERVICE_NAME,
        "version": VERSION,
        "checks": {
            "database": db_status,
            "search": search_status,
            "encryption": "ready" if encryption.is_ready() else "not_initialized",
            "thumbnail_cache": thumbnail_cache.stats(),
        },
    }


@router.get("/health/ready")
async def readiness(
    session: Session = Depends(get_session),
    encryption: EncryptionService = Depends(get_encryption_service),
):
    db_status = _check_database(session)
    if db_status != "ok":
        return JSONResponse(
            status_code=503,
            content={"status": "not ready", "service": SERVICE_NAME, "error": db_status},
        )
    if not encryption.is_ready():
        return JSONResponse(
            status_code=503,
            content={
                "status": "not ready",
                "service": SERVICE_NAME,
                "error": "encryption key not initialized",
            },
        )
    return {"status": "ready", "service": SERVICE_NAME}
