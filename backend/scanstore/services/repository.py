"""Document repository: the single query and mutation surface for documents.

A document is stored across several tables (documents, document_pages,
document_tags) plus encrypted files on disk. The repository hides that
layout behind DocumentRead values and keeps the pieces consistent:

- list queries hydrate pages and tags with one IN query per kind, never
  one query per document;
- every write stamps a strictly newer updated_at;
- OCR text is only ever written together with a completed status.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, delete, func, select, update

from scanstore.config import Settings
from scanstore.db import create_db_and_tables
from scanstore.models.document import (
    Document,
    DocumentPage,
    DocumentRead,
    OcrStatus,
    as_utc,
)
from scanstore.models.tag import DocumentTag, Tag
from scanstore.services.cache import ThumbnailCache
from scanstore.services.encryption import EncryptionError, EncryptionService
from scanstore.services.search_index import SearchIndexError, SearchIndexManager
from scanstore.services.secure_storage import SecureStorageError
from scanstore.utils.formats import guess_mime_type, is_image_mime, make_thumbnail

logger = logging.getLogger(__name__)

_SORTABLE_COLUMNS = {
    "created_at": Document.created_at,
    "updated_at": Document.updated_at,
    "title": Document.title,
    "file_size": Document.file_size,
}
_MIME_SNIFF_BYTES = 2048


class DocumentRepositoryError(Exception):
    """Repository failure with an optional underlying cause."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        text = f"{type(self).__name__}: {self.message}"
        if self.cause is not None:
            text += f" (caused by: {self.cause})"
        return text


class DocumentNotFoundError(DocumentRepositoryError):
    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class TagNotFoundError(DocumentRepositoryError):
    def __init__(self, tag_id: str) -> None:
        super().__init__(f"Tag not found: {tag_id}")
        self.tag_id = tag_id


class DuplicateTagError(DocumentRepositoryError):
    """A tag with the same normalized name already exists."""


class InvalidRequestError(DocumentRepositoryError):
    """The caller passed arguments the store cannot act on."""


@dataclass(frozen=True, slots=True)
class StorageInfo:
    document_count: int
    documents_bytes: int
    thumbnails_bytes: int
    temp_bytes: int
    indexed_documents: int = 0

    @property
    def total_bytes(self) -> int:
        return self.documents_bytes + self.thumbnails_bytes + self.temp_bytes


def _next_stamp(prior: datetime | None) -> datetime:
    """Current time, or one microsecond past *prior* if the clock has not moved."""
    now = datetime.now(timezone.utc)
    if prior is not None and now <= as_utc(prior):
        return as_utc(prior) + timedelta(microseconds=1)
    return now


def _dir_size(path: Path) -> int:
    if not path.exists():
        return 0
    return sum(p.stat().st_size for p in path.rglob("*") if p.is_file())


class DocumentRepository:
    """Per-request repository bound to one database session.

    The search index manager, thumbnail cache and encryption service are
    process-wide and shared by every repository instance.
    """

    __slots__ = ("_session", "_search_index", "_thumbnails", "_encryption", "_settings")

    def __init__(
        self,
        session: Session,
        search_index: SearchIndexManager,
        thumbnail_cache: ThumbnailCache,
        encryption: EncryptionService,
        settings: Settings,
    ) -> None:
        self._session = session
        self._search_index = search_index
        self._thumbnails = thumbnail_cache
        self._encryption = encryption
        self._settings = settings

    # ── Lifecycle ─────────────────────────────────────────────────────

    def is_ready(self) -> bool:
        return self._encryption.is_ready()

    async def initialize(self) -> bool:
        """Set up tables, the search index, key material and storage dirs.

        Returns True when any of it was created for the first time.
        """
        try:
            fresh_db = create_db_and_tables(self._session.get_bind())
            await self._search_index.initialize(self._session)
        except (SQLAlchemyError, SearchIndexError) as exc:
            raise DocumentRepositoryError("Failed to initialize database", exc) from exc

        try:
            key_created = self._encryption.ensure_key_initialized()
        except (EncryptionError, SecureStorageError) as exc:
            raise DocumentRepositoryError("Failed to initialize encryption key", exc) from exc

        for directory in (
            self._settings.documents_dir,
            self._settings.thumbnails_dir,
            self._settings.tmp_dir,
        ):
            directory.mkdir(parents=True, exist_ok=True)

        if fresh_db or key_created:
            logger.info(
                "Document store initialized (new database=%s, new key=%s)",
                fresh_db, key_created,
            )
        return fresh_db or key_created

    # ── Queries ───────────────────────────────────────────────────────

    async def get(self, document_id: str, include_tags: bool = False) -> DocumentRead | None:
        try:
            row = self._fetch_row(document_id)
            if row is None:
                return None
            pages = self._page_paths([document_id])[document_id]
            tags = self._tag_ids([document_id])[document_id] if include_tags else None
        except SQLAlchemyError as exc:
            raise DocumentRepositoryError(f"Failed to load document {document_id}", exc) from exc
        return DocumentRead.from_row(row, pages=pages or None, tags=tags)

    async def get_all(
        self,
        order_by: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[DocumentRead]:
        """All documents, newest first unless *order_by* says otherwise.

        *order_by* names a column, prefixed with ``-`` for descending,
        e.g. ``"title"`` or ``"-updated_at"``.
        """
        statement = select(Document).order_by(self._order_clause(order_by))
        if limit is not None:
            statement = statement.limit(limit)
        if offset is not None:
            statement = statement.offset(offset)
        return self._list(statement, "Failed to list documents")

    async def get_in_folder(self, folder_id: str | None) -> list[DocumentRead]:
        """Documents directly inside *folder_id*; None means the root."""
        if folder_id is None:
            condition = col(Document.folder_id).is_(None)
        else:
            condition = col(Document.folder_id) == folder_id
        statement = (
            select(Document).where(condition).order_by(col(Document.created_at).desc())
        )
        return self._list(statement, f"Failed to list folder {folder_id}")

    async def get_favorites(self) -> list[DocumentRead]:
        statement = (
            select(Document)
            .where(col(Document.is_favorite).is_(True))
            .order_by(col(Document.created_at).desc())
        )
        return self._list(statement, "Failed to list favorites")

    async def get_by_tag(self, tag_id: str) -> list[DocumentRead]:
        statement = (
            select(Document)
            .join(DocumentTag, col(DocumentTag.document_id) == col(Document.id))
            .where(DocumentTag.tag_id == tag_id)
            .order_by(col(Document.created_at).desc())
        )
        return self._list(statement, f"Failed to list documents for tag {tag_id}")

    async def search(self, query: str) -> list[DocumentRead]:
        """Full-text search, hydrated the same way as the list queries."""
        try:
            rows = await self._search_index.search(self._session, query)
            return self._hydrate(rows)
        except (SearchIndexError, SQLAlchemyError) as exc:
            raise DocumentRepositoryError(f"Search failed for {query!r}", exc) from exc

    async def count(self) -> int:
        try:
            return self._session.exec(select(func.count()).select_from(Document)).one()
        except SQLAlchemyError as exc:
            raise DocumentRepositoryError("Failed to count documents", exc) from exc

    async def get_batch_page_paths(self, document_ids: list[str]) -> dict[str, list[str]]:
        """Page file paths for every id, ordered by page number.

        Every requested id is a key of the result; ids without pages map
        to an empty list.
        """
        try:
            return self._page_paths(document_ids)
        except SQLAlchemyError as exc:
            raise DocumentRepositoryError("Failed to load page paths", exc) from exc

    async def get_batch_tags(self, document_ids: list[str]) -> dict[str, list[str]]:
        """Tag ids for every id; untagged documents map to an empty list."""
        try:
            return self._tag_ids(document_ids)
        except SQLAlchemyError as exc:
            raise DocumentRepositoryError("Failed to load tags", exc) from exc

    # ── Mutations ─────────────────────────────────────────────────────

    async def create(
        self,
        title: str,
        source_paths: list[Path | str],
        description: str | None = None,
        thumbnail_source: Path | str | None = None,
        folder_id: str | None = None,
        is_favorite: bool = False,
        original_file_name: str | None = None,
    ) -> DocumentRead:
        """Encrypt the page files into the store and insert the document.

        Pages land in ``<data_dir>/documents/<id>_<n><ext>.enc``. Without a
        *thumbnail_source*, a JPEG thumbnail is rendered from the first page
        when it is an image. Files written before a failure are removed.
        """
        if not source_paths:
            raise InvalidRequestError("A document needs at least one page")

        document_id = str(uuid4())
        written: list[Path] = []
        try:
            sources = [Path(p) for p in source_paths]
            for src in sources:
                if not src.is_file():
                    raise DocumentRepositoryError(f"Source file not found: {src}")

            page_paths: list[str] = []
            for n, src in enumerate(sources):
                dest = self._settings.documents_dir / f"{document_id}_{n}{src.suffix.lower()}.enc"
                self._encryption.encrypt_file(src, dest)
                written.append(dest)
                page_paths.append(str(dest))

            first = sources[0]
            with first.open("rb") as f:
                mime_type = guess_mime_type(first.name, f.read(_MIME_SNIFF_BYTES))

            thumbnail_path = self._store_thumbnail(
                document_id, thumbnail_source, first, mime_type
            )
            if thumbnail_path is not None:
                written.append(thumbnail_path)

            row = Document(
                id=document_id,
                title=title,
                description=description,
                file_path=page_paths[0],
                thumbnail_path=str(thumbnail_path) if thumbnail_path else None,
                original_file_name=original_file_name or first.name,
                page_count=len(page_paths),
                file_size=sum(src.stat().st_size for src in sources),
                mime_type=mime_type,
                folder_id=folder_id,
                is_favorite=is_favorite,
            )
            self._session.add(row)
            self._session.add_all(
                DocumentPage(document_id=document_id, page_number=n, file_path=path)
                for n, path in enumerate(page_paths)
            )
            self._session.commit()
        except DocumentRepositoryError:
            self._remove_files(written)
            raise
        except (EncryptionError, SQLAlchemyError, OSError) as exc:
            self._session.rollback()
            self._remove_files(written)
            raise DocumentRepositoryError(f"Failed to create document {title!r}", exc) from exc

        logger.info("Created document %s with %d page(s)", document_id, len(page_paths))
        return DocumentRead.from_row(row, pages=page_paths, tags=[])

    async def update(self, document: DocumentRead) -> DocumentRead:
        """Persist the editable metadata of *document*.

        OCR fields are left untouched; use update_ocr() for those.
        """
        stamp = _next_stamp(document.updated_at)
        self._write(
            document.id,
            title=document.title,
            description=document.description,
            thumbnail_path=document.thumbnail_path,
            original_file_name=document.original_file_name,
            folder_id=document.folder_id,
            is_favorite=document.is_favorite,
            updated_at=stamp,
        )
        return document.model_copy(update={"updated_at": stamp})

    async def update_ocr(
        self,
        document_id: str,
        text: str | None,
        status: OcrStatus = OcrStatus.COMPLETED,
    ) -> DocumentRead:
        """Write OCR text and status together. Passing text=None clears the text."""
        if text is not None and status != OcrStatus.COMPLETED:
            raise InvalidRequestError(
                f"OCR text can only be stored with status 'completed', got {status.value!r}"
            )
        row = self._require_row(document_id)
        self._write(
            document_id,
            ocr_text=text,
            ocr_status=status.value,
            updated_at=_next_stamp(row.updated_at),
        )
        return await self._reload(document_id)

    async def toggle_favorite(self, document_id: str) -> DocumentRead:
        row = self._require_row(document_id)
        self._write(
            document_id,
            is_favorite=not row.is_favorite,
            updated_at=_next_stamp(row.updated_at),
        )
        return await self._reload(document_id)

    async def move_to_folder(self, document_id: str, folder_id: str | None) -> DocumentRead:
        row = self._require_row(document_id)
        self._write(document_id, folder_id=folder_id, updated_at=_next_stamp(row.updated_at))
        return await self._reload(document_id)

    async def update_thumbnail(
        self, document_id: str, source_path: Path | str | None
    ) -> DocumentRead:
        """Replace the encrypted thumbnail, or drop it when *source_path* is None."""
        row = self._require_row(document_id)
        thumbnail_path: str | None = None
        try:
            if source_path is not None:
                dest = self._thumbnail_file(document_id)
                self._encryption.encrypt_file(source_path, dest)
                thumbnail_path = str(dest)
            elif row.thumbnail_path:
                self._remove_files([Path(row.thumbnail_path)])
        except EncryptionError as exc:
            raise DocumentRepositoryError(
                f"Failed to store thumbnail for {document_id}", exc
            ) from exc

        self._thumbnails.remove_thumbnail(document_id)
        self._write(
            document_id,
            thumbnail_path=thumbnail_path,
            updated_at=_next_stamp(row.updated_at),
        )
        return await self._reload(document_id)

    async def update_file(
        self, document_id: str, source_path: Path | str, page: int = 0
    ) -> DocumentRead:
        """Re-encrypt *source_path* over one page of the document.

        The old encrypted page is removed only after the rows point at the
        new one. Replacing the first page also refreshes the MIME type, the
        original file name and the generated thumbnail.
        """
        row = self._require_row(document_id)
        src = Path(source_path)
        if not src.is_file():
            raise DocumentRepositoryError(f"Source file not found: {src}")
        try:
            pages = self._page_paths([document_id])[document_id] or [row.file_path]
        except SQLAlchemyError as exc:
            raise DocumentRepositoryError(f"Failed to load pages of {document_id}", exc) from exc
        if not 0 <= page < len(pages):
            raise InvalidRequestError(f"Document {document_id} has no page {page}")

        old = Path(pages[page])
        dest = self._settings.documents_dir / f"{document_id}_{page}{src.suffix.lower()}.enc"
        old_size = self._encryption.plaintext_size(old) if old.is_file() else 0
        stale: list[Path] = [old] if dest != old else []
        values: dict = {
            "file_size": max(0, row.file_size - old_size) + src.stat().st_size,
            "updated_at": _next_stamp(row.updated_at),
        }
        try:
            self._encryption.encrypt_file(src, dest)
            if page == 0:
                with src.open("rb") as f:
                    mime_type = guess_mime_type(src.name, f.read(_MIME_SNIFF_BYTES))
                thumbnail = self._store_thumbnail(document_id, None, src, mime_type)
                if thumbnail is None and row.thumbnail_path:
                    stale.append(Path(row.thumbnail_path))
                values.update(
                    file_path=str(dest),
                    original_file_name=src.name,
                    mime_type=mime_type,
                    thumbnail_path=str(thumbnail) if thumbnail else None,
                )
        except (EncryptionError, OSError) as exc:
            if dest != old:
                self._remove_files([dest])
            raise DocumentRepositoryError(
                f"Failed to replace page {page} of {document_id}", exc
            ) from exc

        try:
            self._session.merge(
                DocumentPage(document_id=document_id, page_number=page, file_path=str(dest))
            )
            self._write(document_id, **values)
        except (DocumentRepositoryError, SQLAlchemyError) as exc:
            self._session.rollback()
            if dest != old:
                self._remove_files([dest])
            if isinstance(exc, DocumentRepositoryError):
                raise
            raise DocumentRepositoryError(
                f"Failed to update document {document_id}", exc
            ) from exc

        self._remove_files(stale)
        self._thumbnails.remove_thumbnail(document_id)
        logger.info("Replaced page %d of document %s", page, document_id)
        return await self._reload(document_id)

    async def delete(self, document_id: str) -> None:
        """Remove the document, its page and tag rows, and its files."""
        row = self._require_row(document_id)
        files = [Path(p) for p in self._page_paths([document_id])[document_id]]
        if not files:
            files.append(Path(row.file_path))
        if row.thumbnail_path:
            files.append(Path(row.thumbnail_path))

        try:
            self._session.exec(delete(DocumentPage).where(DocumentPage.document_id == document_id))
            self._session.exec(delete(DocumentTag).where(DocumentTag.document_id == document_id))
            result = self._session.exec(delete(Document).where(Document.id == document_id))
            if result.rowcount == 0:
                self._session.rollback()
                raise DocumentNotFoundError(document_id)
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            raise DocumentRepositoryError(f"Failed to delete document {document_id}", exc) from exc

        self._remove_files(files)
        self._thumbnails.remove_thumbnail(document_id)
        logger.info("Deleted document %s", document_id)

    async def delete_many(self, document_ids: list[str]) -> None:
        """Delete several documents; nothing is deleted if any id is unknown."""
        unique_ids = list(dict.fromkeys(document_ids))
        if not unique_ids:
            return
        try:
            found = set(
                self._session.exec(
                    select(Document.id).where(col(Document.id).in_(unique_ids))
                ).all()
            )
        except SQLAlchemyError as exc:
            raise DocumentRepositoryError("Failed to look up documents", exc) from exc
        missing = [i for i in unique_ids if i not in found]
        if missing:
            raise DocumentNotFoundError(missing[0])
        for document_id in unique_ids:
            await self.delete(document_id)

    # ── Tags ──────────────────────────────────────────────────────────

    async def get_tags(self, document_id: str) -> list[Tag]:
        try:
            return list(
                self._session.exec(
                    select(Tag)
                    .join(DocumentTag, col(DocumentTag.tag_id) == col(Tag.id))
                    .where(DocumentTag.document_id == document_id)
                    .order_by(Tag.name)
                ).all()
            )
        except SQLAlchemyError as exc:
            raise DocumentRepositoryError(f"Failed to load tags of {document_id}", exc) from exc

    async def add_tag(self, document_id: str, tag_id: str) -> None:
        """Attach a tag; attaching one that is already there is a no-op."""
        self._require_row(document_id)
        try:
            if self._session.get(Tag, tag_id) is None:
                raise TagNotFoundError(tag_id)
            if self._session.get(DocumentTag, (document_id, tag_id)) is not None:
                return
            self._session.add(DocumentTag(document_id=document_id, tag_id=tag_id))
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            raise DocumentRepositoryError(
                f"Failed to tag {document_id} with {tag_id}", exc
            ) from exc

    async def remove_tag(self, document_id: str, tag_id: str) -> None:
        try:
            self._session.exec(
                delete(DocumentTag).where(
                    DocumentTag.document_id == document_id, DocumentTag.tag_id == tag_id
                )
            )
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            raise DocumentRepositoryError(
                f"Failed to untag {document_id} from {tag_id}", exc
            ) from exc

    async def create_tag(self, name: str, color: str | None = None) -> Tag:
        """Create a tag; names are stored trimmed and lowercased and must be unique."""
        normalized = name.strip().lower()
        if not normalized:
            raise InvalidRequestError("Tag name must not be empty")
        try:
            existing = self._session.exec(select(Tag).where(Tag.name == normalized)).first()
            if existing is not None:
                raise DuplicateTagError(f"Tag already exists: {normalized}")
            tag = Tag(name=normalized, color=color)
            self._session.add(tag)
            self._session.commit()
            self._session.refresh(tag)
        except SQLAlchemyError as exc:
            self._session.rollback()
            raise DocumentRepositoryError(f"Failed to create tag {normalized!r}", exc) from exc
        return tag

    async def list_tags(self) -> list[Tag]:
        try:
            return list(self._session.exec(select(Tag).order_by(Tag.name)).all())
        except SQLAlchemyError as exc:
            raise DocumentRepositoryError("Failed to list tags", exc) from exc

    async def delete_tag(self, tag_id: str) -> None:
        """Delete a tag and detach it from every document."""
        try:
            if self._session.get(Tag, tag_id) is None:
                raise TagNotFoundError(tag_id)
            self._session.exec(delete(DocumentTag).where(DocumentTag.tag_id == tag_id))
            self._session.exec(delete(Tag).where(Tag.id == tag_id))
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            raise DocumentRepositoryError(f"Failed to delete tag {tag_id}", exc) from exc

    # ── Files ─────────────────────────────────────────────────────────

    async def get_thumbnail_bytes(self, document: DocumentRead) -> bytes | None:
        """Decrypted thumbnail, served from the cache when possible.

        Concurrent misses for the same document may both decrypt; the last
        write to the cache wins.
        """
        if not document.thumbnail_path:
            return None
        cached = self._thumbnails.get_thumbnail(document.id)
        if cached is not None:
            return cached

        temp = self._settings.tmp_dir / f"thumb_{document.id}_{uuid4().hex}.jpg"
        try:
            self._encryption.decrypt_file(document.thumbnail_path, temp)
            data = temp.read_bytes()
        except (EncryptionError, OSError) as exc:
            raise DocumentRepositoryError(
                f"Failed to decrypt thumbnail of {document.id}", exc
            ) from exc
        finally:
            temp.unlink(missing_ok=True)

        self._thumbnails.put_thumbnail(document.id, data)
        return data

    async def get_decrypted_file_path(self, document: DocumentRead, page: int = 0) -> Path:
        """Decrypt one page into the temp dir. The caller deletes the file."""
        self._check_page(document, page)
        encrypted = Path(document.pages[page])
        # "<id>_<n>.jpg.enc" -> "<id>_<n>.jpg"
        plain_name = encrypted.name.removesuffix(".enc")
        dest = self._settings.tmp_dir / f"{uuid4().hex}_{plain_name}"
        try:
            self._encryption.decrypt_file(encrypted, dest)
        except EncryptionError as exc:
            raise DocumentRepositoryError(
                f"Failed to decrypt page {page} of {document.id}", exc
            ) from exc
        return dest

    async def get_page_bytes(self, document: DocumentRead, page: int = 0) -> bytes:
        """Decrypt one page straight into memory, without touching the temp dir."""
        self._check_page(document, page)
        try:
            return self._encryption.decrypt_file_bytes(document.pages[page])
        except EncryptionError as exc:
            raise DocumentRepositoryError(
                f"Failed to decrypt page {page} of {document.id}", exc
            ) from exc

    async def cleanup_temp_files(self) -> int:
        """Delete every file left in the temp dir. Returns how many were removed."""
        tmp_dir = self._settings.tmp_dir
        if not tmp_dir.exists():
            return 0
        removed = 0
        for path in tmp_dir.iterdir():
            if path.is_file():
                try:
                    path.unlink()
                    removed += 1
                except OSError:
                    logger.warning("Could not remove temp file %s", path, exc_info=True)
        if removed:
            logger.info("Removed %d temp file(s)", removed)
        return removed

    async def get_storage_info(self) -> StorageInfo:
        try:
            indexed = await self._search_index.index_size(self._session)
        except SearchIndexError as exc:
            raise DocumentRepositoryError("Failed to read search index size", exc) from exc
        return StorageInfo(
            document_count=await self.count(),
            indexed_documents=indexed,
            documents_bytes=_dir_size(self._settings.documents_dir),
            thumbnails_bytes=_dir_size(self._settings.thumbnails_dir),
            temp_bytes=_dir_size(self._settings.tmp_dir),
        )

    # ── Internals ─────────────────────────────────────────────────────

    def _fetch_row(self, document_id: str) -> Document | None:
        return self._session.exec(select(Document).where(Document.id == document_id)).first()

    def _require_row(self, document_id: str) -> Document:
        try:
            row = self._fetch_row(document_id)
        except SQLAlchemyError as exc:
            raise DocumentRepositoryError(f"Failed to load document {document_id}", exc) from exc
        if row is None:
            raise DocumentNotFoundError(document_id)
        return row

    async def _reload(self, document_id: str) -> DocumentRead:
        document = await self.get(document_id, include_tags=True)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    def _write(self, document_id: str, **values) -> None:
        """UPDATE one documents row; zero affected rows means it vanished."""
        try:
            result = self._session.exec(
                update(Document).where(Document.id == document_id).values(**values)
            )
            if result.rowcount == 0:
                self._session.rollback()
                raise DocumentNotFoundError(document_id)
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            raise DocumentRepositoryError(f"Failed to update document {document_id}", exc) from exc

    def _list(self, statement, message: str) -> list[DocumentRead]:
        try:
            rows = list(self._session.exec(statement).all())
            return self._hydrate(rows)
        except SQLAlchemyError as exc:
            raise DocumentRepositoryError(message, exc) from exc

    def _hydrate(self, rows: list[Document]) -> list[DocumentRead]:
        ids = [row.id for row in rows]
        pages = self._page_paths(ids)
        tags = self._tag_ids(ids)
        return [
            DocumentRead.from_row(row, pages=pages[row.id] or None, tags=tags[row.id])
            for row in rows
        ]

    def _page_paths(self, document_ids: list[str]) -> dict[str, list[str]]:
        result: dict[str, list[str]] = {i: [] for i in document_ids}
        if not result:
            return result
        rows = self._session.exec(
            select(DocumentPage)
            .where(col(DocumentPage.document_id).in_(list(result)))
            .order_by(DocumentPage.document_id, DocumentPage.page_number)
        ).all()
        for page in rows:
            result[page.document_id].append(page.file_path)
        return result

    def _tag_ids(self, document_ids: list[str]) -> dict[str, list[str]]:
        result: dict[str, list[str]] = {i: [] for i in document_ids}
        if not result:
            return result
        rows = self._session.exec(
            select(DocumentTag.document_id, DocumentTag.tag_id)
            .where(col(DocumentTag.document_id).in_(list(result)))
            .order_by(DocumentTag.created_at)
        ).all()
        for document_id, tag_id in rows:
            result[document_id].append(tag_id)
        return result

    @staticmethod
    def _order_clause(order_by: str | None):
        if not order_by:
            return col(Document.created_at).desc()
        descending = order_by.startswith("-")
        name = order_by.lstrip("-")
        column = _SORTABLE_COLUMNS.get(name)
        if column is None:
            raise InvalidRequestError(
                f"Cannot order by {name!r}; expected one of {sorted(_SORTABLE_COLUMNS)}"
            )
        return col(column).desc() if descending else col(column).asc()

    @staticmethod
    def _check_page(document: DocumentRead, page: int) -> None:
        if not 0 <= page < len(document.pages):
            raise InvalidRequestError(
                f"Document {document.id} has no page {page} ({len(document.pages)} pages)"
            )

    def _thumbnail_file(self, document_id: str) -> Path:
        return self._settings.thumbnails_dir / f"{document_id}.jpg.enc"

    def _store_thumbnail(
        self,
        document_id: str,
        thumbnail_source: Path | str | None,
        first_page: Path,
        mime_type: str | None,
    ) -> Path | None:
        dest = self._thumbnail_file(document_id)
        if thumbnail_source is not None:
            self._encryption.encrypt_file(thumbnail_source, dest)
            return dest
        if not is_image_mime(mime_type):
            return None
        try:
            data = make_thumbnail(first_page.read_bytes(), self._settings.thumbnail_max_px)
        except (OSError, ValueError):
            # Pillow cannot decode every scan format (e.g. HEIC without a plugin)
            logger.warning("Could not render thumbnail for %s", document_id, exc_info=True)
            return None
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(self._encryption.encrypt(data))
        return dest

    @staticmethod
    def _remove_files(paths: list[Path]) -> None:
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError:
                logger.warning("Could not remove %s", path, exc_info=True)
