from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session

import scanstore.models  # noqa: F401  register SQLModel tables

from scanstore.config import get_settings
from scanstore.db import engine
from scanstore.routers import cache, documents, health, search, tags
from scanstore.services.cache import ThumbnailCache
from scanstore.services.encryption import EncryptionService
from scanstore.services.repository import DocumentRepository
from scanstore.services.search_index import SearchIndexManager
from scanstore.services.secure_storage import SecureStorage

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tmp_dir.mkdir(parents=True, exist_ok=True)

    # Process-wide services; repositories are built per request on top of them
    max_bytes, max_items = settings.cache_limits
    app.state.search_index = SearchIndexManager()
    app.state.thumbnail_cache = ThumbnailCache(max_size_bytes=max_bytes, max_items=max_items)
    app.state.encryption_service = EncryptionService(
        SecureStorage(settings.secure_storage_file)
    )

    with Session(engine) as session:
        repo = DocumentRepository(
            session=session,
            search_index=app.state.search_index,
            thumbnail_cache=app.state.thumbnail_cache,
            encryption=app.state.encryption_service,
            settings=settings,
        )
        await repo.initialize()
        await repo.cleanup_temp_files()

    logger.info(
        "Document store ready (search=%s, thumbnail cache=%d bytes/%d items)",
        app.state.search_index.capability.name, max_bytes, max_items,
    )

    yield

    app.state.thumbnail_cache.clear()


app = FastAPI(
    title="scanstore",
    description="Encrypted local document store with full-text search",
    version="0.1.0",
    lifespan=lifespan,
)

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(documents.router)
app.include_router(search.router)
app.include_router(tags.router)
app.include_router(cache.router)
