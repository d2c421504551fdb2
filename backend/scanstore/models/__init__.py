from __future__ import annotations

from scanstore.models.document import Document, DocumentPage  # noqa: F401
from scanstore.models.tag import Tag, DocumentTag  # noqa: F401
from scanstore.models.search_history import SearchHistory  # noqa: F401
