"""Recent search queries.

History is a convenience: every failure here is logged and swallowed so a
broken history table can never break a search.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, delete, func, select

from scanstore.models.search_history import SearchHistory

logger = logging.getLogger(__name__)


class SearchHistoryService:
    __slots__ = ("_session", "max_entries")

    def __init__(self, session: Session, max_entries: int = 20) -> None:
        self._session = session
        self.max_entries = max_entries

    def record(self, query: str, result_count: int) -> None:
        """Store *query* as the newest entry.

        An earlier entry with the same text (ignoring case) is replaced, and
        the oldest entries beyond max_entries are dropped.
        """
        query = query.strip()
        if not query:
            return
        try:
            self._delete_query(query)
            self._session.add(
                SearchHistory(
                    query=query,
                    timestamp=datetime.now(timezone.utc).isoformat(),
                    result_count=result_count,
                )
            )
            self._session.flush()
            self._trim()
            self._session.commit()
        except SQLAlchemyError:
            self._session.rollback()
            logger.warning("Failed to record search %r", query, exc_info=True)

    def recent(self, limit: int = 10) -> list[SearchHistory]:
        try:
            return list(
                self._session.exec(
                    select(SearchHistory)
                    .order_by(col(SearchHistory.timestamp).desc(), col(SearchHistory.id).desc())
                    .limit(limit)
                ).all()
            )
        except SQLAlchemyError:
            logger.warning("Failed to load search history", exc_info=True)
            return []

    def remove(self, query: str) -> None:
        try:
            self._delete_query(query.strip())
            self._session.commit()
        except SQLAlchemyError:
            self._session.rollback()
            logger.warning("Failed to remove %r from search history", query, exc_info=True)

    def clear(self) -> None:
        try:
            self._session.exec(delete(SearchHistory))
            self._session.commit()
        except SQLAlchemyError:
            self._session.rollback()
            logger.warning("Failed to clear search history", exc_info=True)

    def _delete_query(self, query: str) -> None:
        self._session.exec(
            delete(SearchHistory).where(func.lower(SearchHistory.query) == query.lower())
        )

    def _trim(self) -> None:
        keep = (
            select(SearchHistory.id)
            .order_by(col(SearchHistory.timestamp).desc(), col(SearchHistory.id).desc())
            .limit(self.max_entries)
        )
        self._session.exec(
            delete(SearchHistory).where(col(SearchHistory.id).not_in(keep))
        )
