"""
Central feature flags. One file controls every external dependency.

Set via environment variables (prefix FF_) or .env file.
When a flag is OFF, the system uses a local fallback. Nothing crashes.
"""

from functools import lru_cache
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FeatureFlags(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────────
    storage_backend: str = Field(default="http", alias="FF_STORAGE_BACKEND")
    # "http"     → JSON objects in the remote object store. Needs OBJECT_STORE_ENDPOINT.
    # "database" → JSON rows via SQLAlchemy. Needs DATABASE_URL.
    # "memory"   → Process-local dict. Lost on restart.

    # ── Embeddings ───────────────────────────────────────────────────
    use_embeddings: bool = Field(default=True, alias="FF_USE_EMBEDDINGS")
    # ON  → Vector service at VECTOR_DB_ENDPOINT embeds, indexes and searches.
    # OFF → No network calls. Entries get zero vectors, search returns nothing.

    # ── Locks / Realtime ─────────────────────────────────────────────
    use_redis: bool = Field(default=False, alias="FF_USE_REDIS")
    # ON  → Per-user write locks held in Redis (safe across processes)
    #       and change events published on user:{user_id}. Needs REDIS_URL.
    # OFF → asyncio locks inside this process. Events silently skipped.

    @field_validator("storage_backend")
    @classmethod
    def _normalise_backend(cls, value: str) -> str:
        return value.strip().lower()


@lru_cache
def get_flags() -> FeatureFlags:
    return FeatureFlags()
