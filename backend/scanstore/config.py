from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

CacheTier = Literal["low", "mid", "high"]

# (max bytes, max items) per device memory tier
CACHE_TIER_LIMITS: dict[str, tuple[int, int]] = {
    "low": (20 * 1024 * 1024, 30),
    "mid": (50 * 1024 * 1024, 50),
    "high": (100 * 1024 * 1024, 100),
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    data_dir: Path = Path("./data")
    tmp_dir: Path = Path("./tmp")
    db_url: str = "sqlite:///./data/scanstore.db"
    # Encryption key material lives here (0600); defaults to <data_dir>/secure_storage.json
    secure_storage_path: Path | None = None

    # Thumbnail cache sizing. Explicit limits override the tier preset.
    cache_tier: CacheTier = "mid"
    thumbnail_cache_max_bytes: int | None = None
    thumbnail_cache_max_items: int | None = None
    thumbnail_max_px: int = 256

    search_history_max_entries: int = 20

    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    @model_validator(mode="after")
    def _check_cache_limits(self) -> Settings:
        for name in ("thumbnail_cache_max_bytes", "thumbnail_cache_max_items"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f"{name.upper()} must be a positive integer")
        return self

    @property
    def cache_limits(self) -> tuple[int, int]:
        """Effective (max_bytes, max_items) for the thumbnail cache."""
        tier_bytes, tier_items = CACHE_TIER_LIMITS[self.cache_tier]
        return (
            self.thumbnail_cache_max_bytes or tier_bytes,
            self.thumbnail_cache_max_items or tier_items,
        )

    @property
    def documents_dir(self) -> Path:
        return self.data_dir / "documents"

    @property
    def thumbnails_dir(self) -> Path:
        return self.data_dir / "thumbnails"

    @property
    def secure_storage_file(self) -> Path:
        return self.secure_storage_path or self.data_dir / "secure_storage.json"


@lru_cache
def get_settings() -> Settings:
    return Settings()
