"""Tag model: tags and document-tag associations."""
from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel
from sqlmodel import Field, SQLModel


class DocumentTag(SQLModel, table=True):
    """Many-to-many junction table between documents and tags."""
    __tablename__ = "document_tags"

    document_id: str = Field(foreign_key="documents.id", primary_key=True)
    tag_id: str = Field(foreign_key="tags.id", primary_key=True, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Tag(SQLModel, table=True):
    __tablename__ = "tags"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)  # Normalized tag name (lowercase, trimmed)
    color: str | None = Field(default=None)      # Optional hex color for UI (e.g. "#4a90d9")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# --- Pydantic schemas ---

class TagCreate(BaseModel):
    name: str
    color: str | None = None


class TagRead(BaseModel):
    id: str
    name: str
    color: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class AddTagRequest(BaseModel):
    tag_id: str
