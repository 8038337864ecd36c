from __future__ import annotations

import asyncio
from typing import Any, List, Optional, Sequence

import pytest

from agent_memory.services.embeddings import EmbeddingServiceError
from agent_memory.services.memory import MemoryService
from agent_memory.services.memory_types import MemoryEntry, SimilarityHit
from agent_memory.services.object_store import InMemoryObjectStore, StorageError


class FakeEmbeddingClient:
    """Embeds by text length; search returns what was indexed for the user."""

    def __init__(
        self,
        *,
        embed_available: bool = True,
        index_available: bool = True,
        search_available: bool = True,
        hits: Optional[Sequence[str]] = None,
    ) -> None:
        self.embed_available = embed_available
        self.index_available = index_available
        self.search_available = search_available
        self.hits = list(hits) if hits is not None else None
        self.indexed: List[MemoryEntry] = []
        self.searches: List[tuple[str, List[float], int]] = []

    async def embed(self, text: str) -> List[float]:
        if not self.embed_available:
            raise EmbeddingServiceError("connection refused")
        return [float(len(text)), 1.0, 0.5]

    async def index(self, entry: MemoryEntry) -> None:
        if not self.index_available:
            raise EmbeddingServiceError("connection refused")
        self.indexed.append(entry)

    async def search(self, user_id: str, embedding: List[float], limit: int) -> List[SimilarityHit]:
        if not self.search_available:
            raise EmbeddingServiceError("connection refused")
        self.searches.append((user_id, embedding, limit))
        if self.hits is not None:
            ids = self.hits
        else:
            ids = [e.id for e in self.indexed if e.user_id == user_id]
        return [SimilarityHit(id=i, score=1.0) for i in ids[:limit]]

    async def close(self) -> None:
        return None


class FlakyObjectStore(InMemoryObjectStore):
    """In-memory store whose operations can be switched to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_put = False
        self.fail_get = False
        self.fail_delete = False
        self.puts: List[tuple[str, str, Any]] = []

    async def put(self, user_id: str, data_type: str, data: Any) -> None:
        # yield so concurrent writers get a chance to interleave
        await asyncio.sleep(0)
        if self.fail_put:
            raise StorageError("503 Service Unavailable")
        self.puts.append((user_id, data_type, data))
        await super().put(user_id, data_type, data)

    async def get(self, user_id: str, data_type: str) -> Any:
        if self.fail_get:
            raise StorageError("503 Service Unavailable")
        return await super().get(user_id, data_type)

    async def delete(self, user_id: str) -> None:
        if self.fail_delete:
            raise StorageError("503 Service Unavailable")
        await super().delete(user_id)


@pytest.fixture
def store() -> FlakyObjectStore:
    return FlakyObjectStore()


@pytest.fixture
def embeddings() -> FakeEmbeddingClient:
    return FakeEmbeddingClient()


@pytest.fixture
def service(store: FlakyObjectStore, embeddings: FakeEmbeddingClient) -> MemoryService:
    return MemoryService(store=store, embeddings=embeddings)
