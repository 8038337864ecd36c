"""
Embedding / vector search service client.

  POST /embed  {text}                          → {embedding: [...]}
  POST /store  {id, userId, embedding, metadata} → ok
  POST /search {userId, embedding, limit}      → {results: [{id, score}]}

Every failure raises EmbeddingServiceError. The memory service treats this
service as best-effort and decides what to fall back to.
"""

import logging
from typing import Optional

import httpx

from ..core.config import get_settings
from ..core.flags import get_flags
from .memory_types import MemoryEntry, SimilarityHit

logger = logging.getLogger(__name__)


class EmbeddingServiceError(Exception):
    """The vector service could not embed, index or search."""


class EmbeddingClient:
    def __init__(
        self,
        endpoint: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        enabled: Optional[bool] = None,
    ):
        settings = get_settings()
        self.endpoint = (endpoint or settings.vector_db_endpoint).rstrip("/")
        self.enabled = get_flags().use_embeddings if enabled is None else enabled
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            settings = get_settings()
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    connect=settings.http_connect_timeout,
                    read=settings.http_read_timeout,
                    write=settings.http_write_timeout,
                    pool=10,
                ),
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _post(self, path: str, payload: dict) -> httpx.Response:
        if not self.enabled:
            raise EmbeddingServiceError("embeddings disabled (FF_USE_EMBEDDINGS=false)")

        url = f"{self.endpoint}{path}"
        try:
            resp = await self._get_client().post(url, json=payload)
            if resp.status_code >= 400:
                logger.error(
                    "Vector service error %d on %s: %s",
                    resp.status_code, path, resp.text[:300],
                )
            resp.raise_for_status()
            return resp
        except httpx.HTTPError as e:
            raise EmbeddingServiceError(f"POST {path} failed: {e}") from e

    async def embed(self, text: str) -> list[float]:
        resp = await self._post("/embed", {"text": text})
        try:
            vector = resp.json()["embedding"]
            return [float(x) for x in vector]
        except (ValueError, KeyError, TypeError) as e:
            raise EmbeddingServiceError(f"Malformed /embed response: {e}") from e

    async def index(self, entry: MemoryEntry) -> None:
        """Register an entry's embedding so /search can find it."""
        await self._post(
            "/store",
            {
                "id": entry.id,
                "userId": entry.user_id,
                "embedding": entry.embedding,
                "metadata": {
                    "type": entry.type.value,
                    "timestamp": entry.timestamp,
                },
            },
        )
        logger.debug("Indexed embedding %s for user %s", entry.id, entry.user_id)

    async def search(self, user_id: str, embedding: list[float], limit: int) -> list[SimilarityHit]:
        resp = await self._post(
            "/search",
            {"userId": user_id, "embedding": embedding, "limit": limit},
        )
        try:
            results = resp.json()["results"]
            return [SimilarityHit.model_validate(r) for r in results]
        except (ValueError, KeyError, TypeError) as e:
            raise EmbeddingServiceError(f"Malformed /search response: {e}") from e
