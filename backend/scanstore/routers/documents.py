"""Document router: listing, metadata edits, OCR results, tags and uploads."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from uuid import uuid4

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel

from scanstore.config import get_settings
from scanstore.dependencies import get_repository, to_http_error
from scanstore.models.document import DocumentRead, DocumentUpdate, MoveRequest, OcrUpdate
from scanstore.models.tag import AddTagRequest, TagRead
from scanstore.services.repository import DocumentRepository, DocumentRepositoryError
from scanstore.utils.formats import extension_to_mime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/documents", tags=["documents"])

# PATCH may omit these but never clear them
_NON_NULLABLE_FIELDS = ("title", "is_favorite")


class BulkDeleteRequest(BaseModel):
    ids: list[str]


class StorageInfoRead(BaseModel):
    document_count: int
    indexed_documents: int
    documents_bytes: int
    thumbnails_bytes: int
    temp_bytes: int
    total_bytes: int


async def _require(repo: DocumentRepository, document_id: str) -> DocumentRead:
    try:
        document = await repo.get(document_id, include_tags=True)
    except DocumentRepositoryError as exc:
        raise to_http_error(exc) from exc
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return document


@router.get("", response_model=list[DocumentRead])
async def list_documents(
    order_by: str | None = Query(None, description="Column name, '-' prefix for descending"),
    limit: int | None = Query(None, ge=1, le=500),
    offset: int | None = Query(None, ge=0),
    repo: DocumentRepository = Depends(get_repository),
) -> list[DocumentRead]:
    try:
        return await repo.get_all(order_by=order_by, limit=limit, offset=offset)
    except DocumentRepositoryError as exc:
        raise to_http_error(exc) from exc


@router.post("", response_model=DocumentRead, status_code=201)
async def upload_document(
    title: str = Form(...),
    description: str | None = Form(None),
    folder_id: str | None = Form(None),
    files: list[UploadFile] = File(...),
    repo: DocumentRepository = Depends(get_repository),
) -> DocumentRead:
    """Store scanned pages, in upload order, as one encrypted document."""
    settings = get_settings()
    staging = settings.tmp_dir / f"upload_{uuid4().hex}"
    staging.mkdir(parents=True, exist_ok=True)
    try:
        sources: list[Path] = []
        for n, upload in enumerate(files):
            suffix = Path(upload.filename or "").suffix.lower()
            dest = staging / f"page_{n}{suffix}"
            with dest.open("wb") as out:
                shutil.copyfileobj(upload.file, out)
            sources.append(dest)

        original_name = files[0].filename if files else None
        return await repo.create(
            title=title,
            source_paths=sources,
            description=description,
            folder_id=folder_id,
            original_file_name=original_name,
        )
    except DocumentRepositoryError as exc:
        raise to_http_error(exc) from exc
    finally:
        shutil.rmtree(staging, ignore_errors=True)


@router.get("/favorites", response_model=list[DocumentRead])
async def list_favorites(
    repo: DocumentRepository = Depends(get_repository),
) -> list[DocumentRead]:
    try:
        return await repo.get_favorites()
    except DocumentRepositoryError as exc:
        raise to_http_error(exc) from exc


@router.get("/folder", response_model=list[DocumentRead])
async def list_folder(
    folder_id: str | None = Query(None, description="Omit for the root folder"),
    repo: DocumentRepository = Depends(get_repository),
) -> list[DocumentRead]:
    try:
        return await repo.get_in_folder(folder_id)
    except DocumentRepositoryError as exc:
        raise to_http_error(exc) from exc


@router.get("/storage", response_model=StorageInfoRead)
async def storage_info(
    repo: DocumentRepository = Depends(get_repository),
) -> StorageInfoRead:
    try:
        info = await repo.get_storage_info()
    except DocumentRepositoryError as exc:
        raise to_http_error(exc) from exc
    return StorageInfoRead(
        document_count=info.document_count,
        indexed_documents=info.indexed_documents,
        documents_bytes=info.documents_bytes,
        thumbnails_bytes=info.thumbnails_bytes,
        temp_bytes=info.temp_bytes,
        total_bytes=info.total_bytes,
    )


@router.post("/bulk-delete", status_code=204)
async def bulk_delete(
    body: BulkDeleteRequest,
    repo: DocumentRepository = Depends(get_repository),
) -> None:
    try:
        await repo.delete_many(body.ids)
    except DocumentRepositoryError as exc:
        raise to_http_error(exc) from exc


@router.get("/{document_id}", response_model=DocumentRead)
async def get_document(
    document_id: str,
    repo: DocumentRepository = Depends(get_repository),
) -> DocumentRead:
    return await _require(repo, document_id)


@router.get("/{document_id}/thumbnail")
async def get_thumbnail(
    document_id: str,
    repo: DocumentRepository = Depends(get_repository),
) -> Response:
    document = await _require(repo, document_id)
    try:
        data = await repo.get_thumbnail_bytes(document)
    except DocumentRepositoryError as exc:
        raise to_http_error(exc) from exc
    if data is None:
        raise HTTPException(status_code=404, detail="Document has no thumbnail")
    return Response(content=data, media_type="image/jpeg")


@router.patch("/{document_id}", response_model=DocumentRead)
async def update_document(
    document_id: str,
    body: DocumentUpdate,
    repo: DocumentRepository = Depends(get_repository),
) -> DocumentRead:
    document = await _require(repo, document_id)
    changes = body.model_dump(exclude_unset=True)
    for field in _NON_NULLABLE_FIELDS:
        if field in changes and changes[field] is None:
            raise HTTPException(status_code=422, detail=f"{field} cannot be null")
    if "title" in changes and not changes["title"].strip():
        raise HTTPException(status_code=422, detail="Title cannot be empty")
    try:
        return await repo.update(document.model_copy(update=changes))
    except DocumentRepositoryError as exc:
        raise to_http_error(exc) from exc


@router.post("/{document_id}/favorite", response_model=DocumentRead)
async def toggle_favorite(
    document_id: str,
    repo: DocumentRepository = Depends(get_repository),
) -> DocumentRead:
    try:
        return await repo.toggle_favorite(document_id)
    except DocumentRepositoryError as exc:
        raise to_http_error(exc) from exc


@router.post("/{document_id}/move", response_model=DocumentRead)
async def move_document(
    document_id: str,
    body: MoveRequest,
    repo: DocumentRepository = Depends(get_repository),
) -> DocumentRead:
    try:
        return await repo.move_to_folder(document_id, body.folder_id)
    except DocumentRepositoryError as exc:
        raise to_http_error(exc) from exc


@router.put("/{document_id}/ocr", response_model=DocumentRead)
async def update_ocr(
    document_id: str,
    body: OcrUpdate,
    repo: DocumentRepository = Depends(get_repository),
) -> DocumentRead:
    try:
        return await repo.update_ocr(document_id, body.text, body.status)
    except DocumentRepositoryError as exc:
        raise to_http_error(exc) from exc


@router.get("/{document_id}/pages/{page}")
async def get_page(
    document_id: str,
    page: int,
    repo: DocumentRepository = Depends(get_repository),
) -> Response:
    """Decrypted content of one page."""
    document = await _require(repo, document_id)
    try:
        data = await repo.get_page_bytes(document, page)
    except DocumentRepositoryError as exc:
        raise to_http_error(exc) from exc
    # "<id>_<n>.png.enc" -> ".png"
    plain_name = Path(document.pages[page]).name.removesuffix(".enc")
    media_type = extension_to_mime(plain_name) or "application/octet-stream"
    return Response(content=data, media_type=media_type)


@router.put("/{document_id}/pages/{page}", response_model=DocumentRead)
async def replace_page(
    document_id: str,
    page: int,
    file: UploadFile = File(...),
    repo: DocumentRepository = Depends(get_repository),
) -> DocumentRead:
    """Swap one scanned page for a new file (e.g. a re-scan)."""
    settings = get_settings()
    staging = settings.tmp_dir / f"upload_{uuid4().hex}"
    staging.mkdir(parents=True, exist_ok=True)
    try:
        dest = staging / Path(file.filename or f"page_{page}").name
        with dest.open("wb") as out:
            shutil.copyfileobj(file.file, out)
        return await repo.update_file(document_id, dest, page=page)
    except DocumentRepositoryError as exc:
        raise to_http_error(exc) from exc
    finally:
        shutil.rmtree(staging, ignore_errors=True)


@router.delete("/{document_id}", status_code=204)
async def delete_document(
    document_id: str,
    repo: DocumentRepository = Depends(get_repository),
) -> None:
    try:
        await repo.delete(document_id)
    except DocumentRepositoryError as exc:
        raise to_http_error(exc) from exc


# --- Document-tag associations ---


@router.get("/{document_id}/tags", response_model=list[TagRead])
async def get_document_tags(
    document_id: str,
    repo: DocumentRepository = Depends(get_repository),
) -> list[TagRead]:
    await _require(repo, document_id)
    try:
        tags = await repo.get_tags(document_id)
    except DocumentRepositoryError as exc:
        raise to_http_error(exc) from exc
    return [TagRead.model_validate(t) for t in tags]


@router.post("/{document_id}/tags", response_model=list[TagRead])
async def add_document_tag(
    document_id: str,
    body: AddTagRequest,
    repo: DocumentRepository = Depends(get_repository),
) -> list[TagRead]:
    try:
        await repo.add_tag(document_id, body.tag_id)
        tags = await repo.get_tags(document_id)
    except DocumentRepositoryError as exc:
        raise to_http_error(exc) from exc
    return [TagRead.model_validate(t) for t in tags]


@router.delete("/{document_id}/tags/{tag_id}", status_code=204)
async def remove_document_tag(
    document_id: str,
    tag_id: str,
    repo: DocumentRepository = Depends(get_repository),
) -> None:
    try:
        await repo.remove_tag(document_id, tag_id)
    except DocumentRepositoryError as exc:
        raise to_http_error(exc) from exc
