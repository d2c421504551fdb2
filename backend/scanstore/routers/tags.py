"""Tag router: tag CRUD and tag-filtered document listing."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from scanstore.dependencies import get_repository, to_http_error
from scanstore.models.document import DocumentRead
from scanstore.models.tag import TagCreate, TagRead
from scanstore.services.repository import DocumentRepository, DocumentRepositoryError

router = APIRouter(prefix="/api/tags", tags=["tags"])


@router.post("", response_model=TagRead, status_code=201)
async def create_tag(
    body: TagCreate,
    repo: DocumentRepository = Depends(get_repository),
) -> TagRead:
    try:
        tag = await repo.create_tag(body.name, body.color)
    except DocumentRepositoryError as exc:
        raise to_http_error(exc) from exc
    return TagRead.model_validate(tag)


@router.get("", response_model=list[TagRead])
async def list_tags(
    repo: DocumentRepository = Depends(get_repository),
) -> list[TagRead]:
    try:
        tags = await repo.list_tags()
    except DocumentRepositoryError as exc:
        raise to_http_error(exc) from exc
    return [TagRead.model_validate(t) for t in tags]


@router.delete("/{tag_id}", status_code=204)
async def delete_tag(
    tag_id: str,
    repo: DocumentRepository = Depends(get_repository),
) -> None:
    try:
        await repo.delete_tag(tag_id)
    except DocumentRepositoryError as exc:
        raise to_http_error(exc) from exc


@router.get("/{tag_id}/documents", response_model=list[DocumentRead])
async def documents_with_tag(
    tag_id: str,
    repo: DocumentRepository = Depends(get_repository),
) -> list[DocumentRead]:
    try:
        return await repo.get_by_tag(tag_id)
    except DocumentRepositoryError as exc:
        raise to_http_error(exc) from exc
