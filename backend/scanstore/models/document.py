from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, computed_field
from sqlalchemy import CheckConstraint
from sqlmodel import Field, SQLModel


def as_utc(value: datetime) -> datetime:
    # SQLite hands datetimes back naive; they were written as UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class OcrStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Document(SQLModel, table=True):
    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(
            "ocr_status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_documents_ocr_status",
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    title: str
    description: str | None = Field(default=None)

    # Encrypted first page; the full ordered list lives in document_pages
    file_path: str
    thumbnail_path: str | None = Field(default=None)
    original_file_name: str | None = Field(default=None)
    page_count: int = Field(default=1)
    file_size: int = Field(default=0)
    mime_type: str | None = Field(default=None)

    ocr_text: str | None = Field(default=None)
    ocr_status: str = Field(default=OcrStatus.PENDING.value)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), index=True
    )
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Weak reference: folder existence is not enforced
    folder_id: str | None = Field(default=None, index=True)
    is_favorite: bool = Field(default=False, index=True)


class DocumentPage(SQLModel, table=True):
    """One encrypted page file of a document, ordered by page_number."""
    __tablename__ = "document_pages"

    document_id: str = Field(foreign_key="documents.id", primary_key=True)
    page_number: int = Field(primary_key=True)
    file_path: str


# --- Pydantic schemas ---

class DocumentRead(BaseModel):
    """A document with its pages and tag ids hydrated."""
    id: str
    title: str
    description: str | None
    pages: list[str] = []
    thumbnail_path: str | None
    original_file_name: str | None
    file_size: int
    mime_type: str | None
    ocr_text: str | None
    ocr_status: OcrStatus
    created_at: datetime
    updated_at: datetime
    folder_id: str | None
    is_favorite: bool
    tags: list[str] = []

    model_config = {"from_attributes": True}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def file_path(self) -> str:
        return self.pages[0] if self.pages else ""

    @property
    def has_ocr_text(self) -> bool:
        return self.ocr_status == OcrStatus.COMPLETED and self.ocr_text is not None

    @property
    def has_thumbnail(self) -> bool:
        return self.thumbnail_path is not None

    @classmethod
    def from_row(
        cls,
        row: Document,
        pages: list[str] | None = None,
        tags: list[str] | None = None,
    ) -> DocumentRead:
        return cls(
            id=row.id,
            title=row.title,
            description=row.description,
            pages=pages if pages is not None else [row.file_path],
            thumbnail_path=row.thumbnail_path,
            original_file_name=row.original_file_name,
            file_size=row.file_size,
            mime_type=row.mime_type,
            ocr_text=row.ocr_text,
            ocr_status=OcrStatus(row.ocr_status),
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
            folder_id=row.folder_id,
            is_favorite=row.is_favorite,
            tags=tags or [],
        )


class DocumentUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    folder_id: str | None = None
    is_favorite: bool | None = None


class OcrUpdate(BaseModel):
    text: str | None = None
    status: OcrStatus = OcrStatus.COMPLETED


class MoveRequest(BaseModel):
    folder_id: str | None = None
