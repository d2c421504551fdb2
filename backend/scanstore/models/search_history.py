from __future__ import annotations

from pydantic import BaseModel
from sqlmodel import Field, SQLModel


class SearchHistory(SQLModel, table=True):
    __tablename__ = "search_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id: int | None = Field(default=None, primary_key=True)
    query: str
    timestamp: str = Field(index=True)  # ISO-8601
    result_count: int = Field(default=0)


class SearchHistoryRead(BaseModel):
    query: str
    timestamp: str
    result_count: int

    model_config = {"from_attributes": True}
