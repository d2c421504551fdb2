"""Thumbnail cache maintenance, for clients relaying memory-pressure warnings."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from scanstore.dependencies import get_thumbnail_cache
from scanstore.services.cache import ThumbnailCache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cache", tags=["cache"])


@router.post("/trim")
async def trim_cache(
    target_bytes: int | None = Query(
        None, ge=0, description="Size to shrink to; defaults to half the current size"
    ),
    thumbnail_cache: ThumbnailCache = Depends(get_thumbnail_cache),
) -> dict:
    """Evict least recently used thumbnails until the cache fits *target_bytes*."""
    if target_bytes is None:
        target_bytes = thumbnail_cache.current_size_bytes // 2
    thumbnail_cache.trim_to_size(target_bytes)
    logger.info("Thumbnail cache trimmed to at most %d bytes", target_bytes)
    return thumbnail_cache.stats()


@router.delete("", status_code=204)
async def clear_cache(
    thumbnail_cache: ThumbnailCache = Depends(get_thumbnail_cache),
) -> None:
    thumbnail_cache.clear()
