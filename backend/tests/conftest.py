from __future__ import annotations

import asyncio
import io
import os
import sqlite3
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Set test environment BEFORE importing scanstore modules.
# scanstore.db creates the engine at module level from get_settings().db_url.
_test_tmp = tempfile.mkdtemp(prefix="scanstore-test-")
os.environ.setdefault("DATA_DIR", os.path.join(_test_tmp, "data"))
os.environ.setdefault("TMP_DIR", os.path.join(_test_tmp, "tmp"))
os.environ.setdefault("DB_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy import event
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import scanstore.models  # noqa: F401  register SQLModel tables
from scanstore.config import Settings
from scanstore.db import get_session
from scanstore.dependencies import (
    get_encryption_service,
    get_repository,
    get_search_index,
    get_thumbnail_cache,
)
from scanstore.main import app as fastapi_app
from scanstore.models.document import Document, DocumentPage, OcrStatus
from scanstore.services.cache import ThumbnailCache
from scanstore.services.encryption import EncryptionService
from scanstore.services.repository import DocumentRepository
from scanstore.services.search_index import SearchIndexManager
from scanstore.services.secure_storage import SecureStorage


def run_sync(coro):
    """Run a coroutine to completion from sync code (fixtures, sync tests)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ── Database fixtures ─────────────────────────────────────────────────


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite shared by every connection (StaticPool), fresh per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture(name="block_fts_modules")
def block_fts_modules_fixture(engine):
    """Make the engine behave like a SQLite build without some FTS modules.

    Call with the module names to hide, e.g. ``block_fts_modules("fts5")``.
    Every executed statement is recorded in the returned list.
    """
    executed: list[str] = []
    blocked: set[str] = set()

    def _hook(conn, cursor, statement, parameters, context, executemany):
        executed.append(statement)
        for module in blocked:
            if f"using {module}" in statement.lower():
                raise sqlite3.OperationalError(f"no such module: {module}")

    event.listen(engine, "before_cursor_execute", _hook)

    def _block(*modules: str) -> list[str]:
        blocked.update(modules)
        return executed

    yield _block
    event.remove(engine, "before_cursor_execute", _hook)


# ── Service fixtures ──────────────────────────────────────────────────


@pytest.fixture(name="settings")
def settings_fixture(tmp_path: Path) -> Settings:
    settings = Settings(
        _env_file=None,
        data_dir=tmp_path / "data",
        tmp_dir=tmp_path / "tmp",
        secure_storage_path=tmp_path / "secure" / "storage.json",
        thumbnail_max_px=64,
    )
    for directory in (settings.documents_dir, settings.thumbnails_dir, settings.tmp_dir):
        directory.mkdir(parents=True, exist_ok=True)
    return settings


@pytest.fixture(name="secure_storage")
def secure_storage_fixture(settings: Settings) -> SecureStorage:
    return SecureStorage(settings.secure_storage_file)


@pytest.fixture(name="encryption_service")
def encryption_service_fixture(secure_storage: SecureStorage) -> EncryptionService:
    """EncryptionService with a master key already generated."""
    service = EncryptionService(secure_storage)
    service.ensure_key_initialized()
    return service


@pytest.fixture(name="thumbnail_cache")
def thumbnail_cache_fixture() -> ThumbnailCache:
    return ThumbnailCache(max_size_bytes=1024 * 1024, max_items=10)


@pytest.fixture(name="search_index")
def search_index_fixture(session: Session) -> SearchIndexManager:
    """Search index manager initialized against the test database."""
    manager = SearchIndexManager()
    run_sync(manager.initialize(session))
    return manager


@pytest.fixture(name="repository")
def repository_fixture(
    session: Session,
    search_index: SearchIndexManager,
    thumbnail_cache: ThumbnailCache,
    encryption_service: EncryptionService,
    settings: Settings,
) -> DocumentRepository:
    return DocumentRepository(
        session=session,
        search_index=search_index,
        thumbnail_cache=thumbnail_cache,
        encryption=encryption_service,
        settings=settings,
    )


# ── HTTP client fixtures ──────────────────────────────────────────────


@pytest.fixture(name="client")
def client_fixture(
    session: Session,
    repository: DocumentRepository,
    search_index: SearchIndexManager,
    thumbnail_cache: ThumbnailCache,
    encryption_service: EncryptionService,
):
    """TestClient wired to the per-test database and services."""

    def _get_session_override():
        yield session

    fastapi_app.dependency_overrides[get_session] = _get_session_override
    fastapi_app.dependency_overrides[get_repository] = lambda: repository
    fastapi_app.dependency_overrides[get_search_index] = lambda: search_index
    fastapi_app.dependency_overrides[get_thumbnail_cache] = lambda: thumbnail_cache
    fastapi_app.dependency_overrides[get_encryption_service] = lambda: encryption_service
    with TestClient(fastapi_app) as client:
        yield client
    fastapi_app.dependency_overrides.clear()


# ── Data helpers ──────────────────────────────────────────────────────


def make_image_bytes(color=(200, 30, 30), size=(320, 200), fmt="PNG") -> bytes:
    img = Image.new("RGB", size, color=color)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture(name="image_file")
def image_file_fixture(tmp_path: Path):
    """Factory writing a small image to disk and returning its path."""
    counter = {"n": 0}

    def _make(name: str | None = None, color=(200, 30, 30), fmt="PNG") -> Path:
        counter["n"] += 1
        ext = ".png" if fmt == "PNG" else ".jpg"
        path = tmp_path / "scans" / (name or f"scan_{counter['n']}{ext}")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(make_image_bytes(color=color, fmt=fmt))
        return path

    return _make


_BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def add_document(
    session: Session,
    title: str,
    *,
    description: str | None = None,
    ocr_text: str | None = None,
    pages: int = 1,
    age_minutes: int = 0,
    folder_id: str | None = None,
    is_favorite: bool = False,
) -> Document:
    """Insert a document row plus page rows directly, without any files.

    Larger *age_minutes* means an older created_at.
    """
    created = _BASE_TIME - timedelta(minutes=age_minutes)
    doc = Document(
        title=title,
        description=description,
        file_path="",
        page_count=pages,
        ocr_text=ocr_text,
        ocr_status=OcrStatus.COMPLETED.value if ocr_text else OcrStatus.PENDING.value,
        created_at=created,
        updated_at=created,
        folder_id=folder_id,
        is_favorite=is_favorite,
    )
    doc.file_path = f"/store/documents/{doc.id}_0.png.enc"
    session.add(doc)
    for n in range(pages):
        session.add(
            DocumentPage(
                document_id=doc.id,
                page_number=n,
                file_path=f"/store/documents/{doc.id}_{n}.png.enc",
            )
        )
    session.commit()
    session.refresh(doc)
    return doc
