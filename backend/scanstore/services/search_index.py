"""Full-text search index over documents with capability fallback.

On first initialization the manager checks what the SQLite build supports,
in order: an FTS5 shadow index, an FTS4 shadow index, or no index at all
(substring scanning with LIKE). The outcome is held as a SearchCapability
on the manager instance and every query is dispatched on it.

The shadow index is external-content: it stores only tokens and points
back at documents.rowid, and triggers keep it in sync with the documents
table. It can always be recomputed with rebuild_index().
"""

from __future__ import annotations

import logging
import re
import sqlite3
from enum import IntEnum

from sqlalchemy.exc import DBAPIError
from sqlmodel import Session, select, text

from scanstore.models.document import Document

logger = logging.getLogger(__name__)

FTS_TABLE = "documents_fts"
FTS_COLUMNS = ("title", "description", "ocr_text")
TRIGGER_NAMES = ("documents_ai", "documents_ad", "documents_au", "documents_bu")

_WHITESPACE_RE = re.compile(r"\s+")
_DIALECT_RE = re.compile(r"\busing\s+(fts[45])\b", re.IGNORECASE)


class SearchCapability(IntEnum):
    """Full-text search support detected for the current database."""

    DISABLED = 0
    FTS4 = 4
    FTS5 = 5


class UnsupportedFeatureError(Exception):
    """The SQLite build does not provide the requested FTS module."""

    def __init__(self, module: str, cause: BaseException | None = None) -> None:
        super().__init__(f"SQLite module not available: {module}")
        self.module = module
        self.cause = cause


class SearchIndexError(Exception):
    """Raised for storage failures that are not a missing FTS module."""


def escape_fts_query(query: str) -> str:
    """Quote every whitespace-separated term so MATCH treats it literally.

    Embedded double quotes are doubled, which neutralizes FTS operators
    such as ``*``, ``-``, ``+`` and ``^``.
    """
    terms = [t for t in _WHITESPACE_RE.split(query.strip()) if t]
    return " ".join('"' + t.replace('"', '""') + '"' for t in terms)


def escape_like_term(term: str) -> str:
    """Escape LIKE wildcards so *term* only matches literally (ESCAPE '\\')."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _fts_schema(capability: SearchCapability) -> list[str]:
    """DDL for the shadow index and its sync triggers in one FTS dialect.

    FTS5 removes index entries with the 'delete' command, which carries the
    old column values itself, so all three triggers can run AFTER the row
    change. FTS4 external-content tables read the old values back from
    documents, so removal has to happen BEFORE the row is changed.
    """
    cols = ", ".join(FTS_COLUMNS)
    new_vals = ", ".join(f"NEW.{c}" for c in FTS_COLUMNS)
    old_vals = ", ".join(f"OLD.{c}" for c in FTS_COLUMNS)

    if capability is SearchCapability.FTS5:
        insert_new = (
            f"INSERT INTO {FTS_TABLE}(rowid, {cols}) VALUES (NEW.rowid, {new_vals});"
        )
        delete_old = (
            f"INSERT INTO {FTS_TABLE}({FTS_TABLE}, rowid, {cols}) "
            f"VALUES ('delete', OLD.rowid, {old_vals});"
        )
        return [
            f"CREATE VIRTUAL TABLE {FTS_TABLE} USING fts5("
            f"{cols}, content=documents, content_rowid=rowid)",
            f"CREATE TRIGGER documents_ai AFTER INSERT ON documents BEGIN {insert_new} END",
            f"CREATE TRIGGER documents_ad AFTER DELETE ON documents BEGIN {delete_old} END",
            f"CREATE TRIGGER documents_au AFTER UPDATE ON documents BEGIN "
            f"{delete_old} {insert_new} END",
        ]

    if capability is SearchCapability.FTS4:
        insert_new = (
            f"INSERT INTO {FTS_TABLE}(docid, {cols}) VALUES (NEW.rowid, {new_vals});"
        )
        delete_old = f"DELETE FROM {FTS_TABLE} WHERE docid = OLD.rowid;"
        return [
            f'CREATE VIRTUAL TABLE {FTS_TABLE} USING fts4({cols}, content="documents")',
            f"CREATE TRIGGER documents_ai AFTER INSERT ON documents BEGIN {insert_new} END",
            f"CREATE TRIGGER documents_ad BEFORE DELETE ON documents BEGIN {delete_old} END",
            f"CREATE TRIGGER documents_bu BEFORE UPDATE ON documents BEGIN {delete_old} END",
            f"CREATE TRIGGER documents_au AFTER UPDATE ON documents BEGIN {insert_new} END",
        ]

    raise ValueError(f"No shadow index for capability {capability!r}")


def _is_missing_module(exc: BaseException) -> bool:
    orig = getattr(exc, "orig", None) or exc
    return isinstance(orig, sqlite3.OperationalError) and str(orig).startswith(
        "no such module"
    )


class SearchIndexManager:
    """Owns the search capability, the shadow index and query dispatch.

    The capability is None until initialize() has run; pass one to the
    constructor to pin it (e.g. to exercise a specific dispatch path).
    """

    __slots__ = ("_capability",)

    def __init__(self, capability: SearchCapability | None = None) -> None:
        self._capability = capability

    @property
    def capability(self) -> SearchCapability | None:
        return self._capability

    @property
    def is_initialized(self) -> bool:
        return self._capability is not None

    @property
    def is_available(self) -> bool:
        """True when an FTS shadow index backs searches."""
        return bool(self._capability)

    def reset(self) -> None:
        """Forget the detected capability so the next initialize() detects it again."""
        self._capability = None

    async def initialize(self, session: Session) -> SearchCapability:
        """Detect or provision the best available shadow index.

        Runs once; later calls return the capability already held. Only a
        missing FTS module moves the cascade on to the next strategy. Any
        other database failure is raised as SearchIndexError and leaves the
        manager uninitialized.
        """
        if self._capability is not None:
            return self._capability

        existing = self._existing_capability(session)
        if existing is not None:
            self._capability = existing
            logger.info("Using existing FTS%d search index", existing)
            return existing

        for candidate in (SearchCapability.FTS5, SearchCapability.FTS4):
            try:
                self._provision(session, candidate)
            except UnsupportedFeatureError as exc:
                logger.info("%s, trying next search strategy", exc)
                continue
            self._capability = candidate
            logger.info("FTS%d search index initialized", candidate)
            return candidate

        self._capability = SearchCapability.DISABLED
        logger.warning("Full-text search unavailable, using substring search")
        return self._capability

    async def search(self, session: Session, query: str) -> list[Document]:
        """Return documents matching *query*, best matches first.

        FTS5 orders by the engine's rank; FTS4 and substring search order
        by creation time, newest first.
        """
        if not query.strip():
            return []
        if self._capability is None:
            raise SearchIndexError("Search index is not initialized")

        if self._capability is SearchCapability.FTS5:
            sql = (
                f"SELECT d.* FROM documents d "
                f"JOIN {FTS_TABLE} ON d.rowid = {FTS_TABLE}.rowid "
                f"WHERE {FTS_TABLE} MATCH :query "
                f"ORDER BY {FTS_TABLE}.rank"
            )
            params: dict[str, str] = {"query": escape_fts_query(query)}
        elif self._capability is SearchCapability.FTS4:
            sql = (
                f"SELECT d.* FROM documents d "
                f"JOIN {FTS_TABLE} ON d.rowid = {FTS_TABLE}.docid "
                f"WHERE {FTS_TABLE} MATCH :query "
                f"ORDER BY d.created_at DESC"
            )
            params = {"query": escape_fts_query(query)}
        else:
            sql, params = self._substring_query(query)

        statement = select(Document).from_statement(text(sql).bindparams(**params))
        try:
            return list(session.exec(statement).scalars().all())
        except DBAPIError as exc:
            raise SearchIndexError(f"Search failed for query {query!r}") from exc

    async def rebuild_index(self, session: Session) -> None:
        """Recompute the shadow index from the documents table."""
        if not self._capability:
            logger.info("Full-text search disabled, skipping index rebuild")
            return

        try:
            session.exec(text(f"INSERT INTO {FTS_TABLE}({FTS_TABLE}) VALUES('rebuild')"))
            session.commit()
        except DBAPIError as exc:
            session.rollback()
            raise SearchIndexError("Failed to rebuild search index") from exc
        logger.info("FTS%d index rebuilt", self._capability)

    async def index_size(self, session: Session) -> int:
        """Number of rows visible through the shadow index (0 when disabled)."""
        if not self._capability:
            return 0
        try:
            row = session.exec(text(f"SELECT COUNT(*) FROM {FTS_TABLE}")).first()
        except DBAPIError as exc:
            raise SearchIndexError("Failed to read search index size") from exc
        return int(row[0]) if row else 0

    @staticmethod
    def _substring_query(query: str) -> tuple[str, dict[str, str]]:
        terms = [t for t in _WHITESPACE_RE.split(query.strip()) if t]
        conditions = []
        params: dict[str, str] = {}
        for i, term in enumerate(terms):
            name = f"t{i}"
            params[name] = f"%{escape_like_term(term)}%"
            conditions.append(
                "("
                + " OR ".join(f"{col} LIKE :{name} ESCAPE '\\'" for col in FTS_COLUMNS)
                + ")"
            )
        sql = (
            "SELECT * FROM documents WHERE "
            + " AND ".join(conditions)
            + " ORDER BY created_at DESC"
        )
        return sql, params

    @staticmethod
    def _existing_capability(session: Session) -> SearchCapability | None:
        row = session.exec(
            text(
                "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = :name"
            ).bindparams(name=FTS_TABLE)
        ).first()
        if row is None or not row[0]:
            return None
        match = _DIALECT_RE.search(row[0])
        if match is None:
            return None
        return SearchCapability(int(match.group(1)[-1]))

    def _provision(self, session: Session, capability: SearchCapability) -> None:
        """Create the shadow index and triggers, or leave nothing behind.

        The new index is filled from rows already in ``documents`` so it
        never starts out of step with its content table.
        """
        try:
            for statement in _fts_schema(capability):
                session.exec(text(statement))
            session.exec(text(f"INSERT INTO {FTS_TABLE}({FTS_TABLE}) VALUES('rebuild')"))
            session.commit()
        except (DBAPIError, sqlite3.Error) as exc:
            session.rollback()
            self._drop_fts_objects(session)
            if _is_missing_module(exc):
                raise UnsupportedFeatureError(f"fts{int(capability)}", cause=exc) from exc
            raise SearchIndexError(
                f"Failed to provision FTS{int(capability)} search index"
            ) from exc

    @staticmethod
    def _drop_fts_objects(session: Session) -> None:
        try:
            for trigger in TRIGGER_NAMES:
                session.exec(text(f"DROP TRIGGER IF EXISTS {trigger}"))
            session.exec(text(f"DROP TABLE IF EXISTS {FTS_TABLE}"))
            session.commit()
        except (DBAPIError, sqlite3.Error):
            session.rollback()
            logger.warning("Failed to clean up partial search index", exc_info=True)
