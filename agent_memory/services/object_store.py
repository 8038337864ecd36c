"""
Durable JSON storage keyed by {user_id}/{data_type}.

Three backends, selected by FF_STORAGE_BACKEND:
  - http     → remote object store (PUT/GET/DELETE {endpoint}/{bucket}/...)
  - database → one SQL row per (user, data type)
  - memory   → process-local dict, gone on restart

All backends raise StorageError on failure. Callers decide whether to
propagate or swallow.
"""

import copy
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import get_settings
from ..core.database import session_scope
from ..core.flags import get_flags
from ..models.memory import MemoryObject

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """A durable read, write or delete did not complete."""


class ObjectStore(ABC):
    @abstractmethod
    async def put(self, user_id: str, data_type: str, data: Any) -> None:
        """Overwrite the JSON document for user_id/data_type."""
        ...

    @abstractmethod
    async def get(self, user_id: str, data_type: str) -> Optional[Any]:
        """Return the JSON document, or None if it was never written."""
        ...

    @abstractmethod
    async def delete(self, user_id: str) -> None:
        """Remove every document for user_id."""
        ...

    async def close(self) -> None:
        return None


# ── Remote object store ──────────────────────────────────────────────

class HttpObjectStore(ObjectStore):
    def __init__(
        self,
        endpoint: Optional[str] = None,
        bucket: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self.endpoint = (endpoint or settings.object_store_endpoint).rstrip("/")
        self.bucket = bucket or settings.object_store_bucket
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

    def _object_url(self, user_id: str, data_type: str) -> str:
        return f"{self.endpoint}/{self.bucket}/{user_id}/{data_type}.json"

    async def put(self, user_id: str, data_type: str, data: Any) -> None:
        url = self._object_url(user_id, data_type)
        try:
            resp = await self._get_client().put(
                url,
                content=json.dumps(data),
                headers={"Content-Type": "application/json"},
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Object store PUT %s failed (%d): %s",
                url, e.response.status_code, e.response.text[:300],
            )
            raise StorageError(f"PUT {user_id}/{data_type} returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("Object store PUT %s failed: %s", url, e)
            raise StorageError(f"PUT {user_id}/{data_type} failed: {e}") from e

    async def get(self, user_id: str, data_type: str) -> Optional[Any]:
        url = self._object_url(user_id, data_type)
        try:
            resp = await self._get_client().get(url)
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            logger.error("Object store GET %s failed (%d)", url, e.response.status_code)
            raise StorageError(f"GET {user_id}/{data_type} returned {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Object store GET %s failed: %s", url, e)
            raise StorageError(f"GET {user_id}/{data_type} failed: {e}") from e

    async def delete(self, user_id: str) -> None:
        url = f"{self.endpoint}/{self.bucket}/{user_id}"
        try:
            resp = await self._get_client().delete(url)
            if resp.status_code == 404:
                return
            resp.raise_for_status()
            logger.info("Object store: deleted %s", user_id)
        except httpx.HTTPStatusError as e:
            logger.error("Object store DELETE %s failed (%d)", url, e.response.status_code)
            raise StorageError(f"DELETE {user_id} returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("Object store DELETE %s failed: %s", url, e)
            raise StorageError(f"DELETE {user_id} failed: {e}") from e

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


# ── SQL ──────────────────────────────────────────────────────────────

class DatabaseObjectStore(ObjectStore):
    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory

    async def put(self, user_id: str, data_type: str, data: Any) -> None:
        try:
            async with session_scope(self._session_factory) as db:
                result = await db.execute(
                    select(MemoryObject).where(
                        MemoryObject.user_id == user_id,
                        MemoryObject.data_type == data_type,
                    )
                )
                record = result.scalar_one_or_none()
                if record:
                    record.payload = data
                else:
                    db.add(MemoryObject(user_id=user_id, data_type=data_type, payload=data))
        except Exception as e:
            logger.error("Database PUT %s/%s failed: %s", user_id, data_type, e)
            raise StorageError(f"PUT {user_id}/{data_type} failed: {e}") from e

    async def get(self, user_id: str, data_type: str) -> Optional[Any]:
        try:
            async with session_scope(self._session_factory) as db:
                result = await db.execute(
                    select(MemoryObject.payload).where(
                        MemoryObject.user_id == user_id,
                        MemoryObject.data_type == data_type,
                    )
                )
                return result.scalar_one_or_none()
        except Exception as e:
            logger.error("Database GET %s/%s failed: %s", user_id, data_type, e)
            raise StorageError(f"GET {user_id}/{data_type} failed: {e}") from e

    async def delete(self, user_id: str) -> None:
        try:
            async with session_scope(self._session_factory) as db:
                await db.execute(delete(MemoryObject).where(MemoryObject.user_id == user_id))
        except Exception as e:
            logger.error("Database DELETE %s failed: %s", user_id, e)
            raise StorageError(f"DELETE {user_id} failed: {e}") from e


# ── In-process ───────────────────────────────────────────────────────

class InMemoryObjectStore(ObjectStore):
    """Dict-backed store. Documents are deep-copied in and out, like a real round trip."""

    def __init__(self):
        self.objects: dict[tuple[str, str], Any] = {}

    async def put(self, user_id: str, data_type: str, data: Any) -> None:
        self.objects[(user_id, data_type)] = copy.deepcopy(data)

    async def get(self, user_id: str, data_type: str) -> Optional[Any]:
        return copy.deepcopy(self.objects.get((user_id, data_type)))

    async def delete(self, user_id: str) -> None:
        for key in [k for k in self.objects if k[0] == user_id]:
            del self.objects[key]


def get_object_store() -> ObjectStore:
    """Return the active storage backend based on feature flags."""
    backend = get_flags().storage_backend
    if backend == "database":
        return DatabaseObjectStore()
    if backend == "memory":
        return InMemoryObjectStore()
    if backend != "http":
        raise ValueError(f"Unsupported storage backend '{backend}'")
    return HttpObjectStore()
