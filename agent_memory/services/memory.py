"""
Per-user memory, feedback and preference store.

Memories and feedback live in a process-local cache and are mirrored to
the durable object store as whole lists ({user_id}/memories.json,
{user_id}/feedback.json). Preferences are cache-first with a durable
fallback. Semantic search goes through the embedding service.

Failure policy:
  - durable writes raise StorageError to the caller
  - embedding / index / search failures degrade (zero vector, "degraded"
    status, empty results) and are only logged
  - clear_user_data never raises; the remote outcome is in EraseResult
"""

import logging
import uuid
from contextlib import AsyncExitStack
from datetime import timezone, tzinfo
from typing import Optional

from pydantic import ValidationError

from ..core.config import get_settings
from ..core.locks import KeyedLocks, LocalLocks, LockTimeout, get_locks
from . import realtime
from .embeddings import EmbeddingClient, EmbeddingServiceError
from .feedback import analyze_feedback, render_learnings, resolve_timezone
from .memory_cache import MemoryCache
from .memory_types import (
    EraseResult,
    FeedbackEntry,
    FeedbackStats,
    MemoryEntry,
    MemoryType,
    StoreResult,
    StoreStatus,
    UserPreferences,
    now_ms,
)
from .object_store import ObjectStore, StorageError, get_object_store

logger = logging.getLogger(__name__)

MEMORIES = "memories"
FEEDBACK = "feedback"
PREFERENCES = "preferences"

DEFAULT_EMBEDDING_DIMENSIONS = 768


class MemoryService:
    def __init__(
        self,
        store: ObjectStore,
        embeddings: EmbeddingClient,
        cache: Optional[MemoryCache] = None,
        locks: Optional[KeyedLocks] = None,
        embedding_dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS,
        tz: Optional[tzinfo] = None,
    ):
        self.store = store
        self.embeddings = embeddings
        self.cache = cache or MemoryCache()
        self.locks = locks or LocalLocks()
        self.embedding_dimensions = embedding_dimensions
        self.tz = tz or timezone.utc

    # ------------------------------------------------------------------
    # Memories
    # ------------------------------------------------------------------
    async def store_memory(self, entry: MemoryEntry) -> StoreResult:
        """
        Embed (if needed), append to the user's list, persist the list,
        then register the embedding for search.

        Raises StorageError if the durable write fails; the entry is then
        not kept in the cache either.
        """
        reason = None
        if entry.embedding is None:
            try:
                vector = await self.embeddings.embed(entry.content)
            except EmbeddingServiceError as e:
                logger.error("Failed to generate embedding for %s: %s", entry.id, e)
                vector = [0.0] * self.embedding_dimensions
                reason = "embedding unavailable"
            entry = entry.model_copy(update={"embedding": vector})

        async with self.locks.hold(f"{MEMORIES}:{entry.user_id}"):
            await self._hydrate_memories(entry.user_id)
            snapshot = self.cache.append_memory(entry)
            try:
                await self.store.put(
                    entry.user_id, MEMORIES, [m.to_json() for m in snapshot]
                )
            except StorageError as e:
                self.cache.remove_memory(entry)
                logger.error("Failed to store memory for user %s: %s", entry.user_id, e)
                raise

        try:
            await self.embeddings.index(entry)
        except EmbeddingServiceError as e:
            logger.error("Failed to store embedding %s: %s", entry.id, e)
            reason = reason or "index unavailable"

        status = StoreStatus.DEGRADED if reason else StoreStatus.STORED
        logger.info(
            "Memory stored for user %s: %s (%s)", entry.user_id, entry.type.value, status.value
        )
        await realtime.memory_stored(entry.user_id, entry.id, status.value)
        return StoreResult(status=status, entry=entry, reason=reason)

    async def retrieve_memories(
        self, user_id: str, query: str, limit: int = 10
    ) -> list[MemoryEntry]:
        """
        Entries most similar to ``query``, as far as this process has seen
        them. Ids the search returns but the cache lacks are dropped.
        Returns [] when the embedding service is unavailable.
        """
        if limit <= 0:
            return []
        try:
            query_embedding = await self.embeddings.embed(query)
            hits = await self.embeddings.search(user_id, query_embedding, limit)
        except EmbeddingServiceError as e:
            logger.error("Failed to retrieve memories for user %s: %s", user_id, e)
            return []

        wanted = {hit.id for hit in hits}
        matches = [
            m for m in self.cache.memories(user_id)
            if m.id in wanted and m.user_id == user_id
        ]
        return matches[:limit]

    async def get_conversation_history(
        self, user_id: str, limit: int = 50
    ) -> list[MemoryEntry]:
        """Last ``limit`` conversation entries in insertion order. Cache only."""
        if limit <= 0:
            return []
        conversation = [
            m for m in self.cache.memories(user_id) if m.type == MemoryType.CONVERSATION
        ]
        return conversation[-limit:]

    async def clear_user_data(self, user_id: str) -> EraseResult:
        """
        Forget the user locally, then try to delete their durable objects.

        Holds every write lock for the user, so an in-flight store cannot
        persist its list after the delete.
        """
        try:
            async with AsyncExitStack() as stack:
                for data_type in (MEMORIES, FEEDBACK, PREFERENCES):
                    await stack.enter_async_context(
                        self.locks.hold(f"{data_type}:{user_id}")
                    )
                self._forget_user(user_id)
                result = await self._delete_durable(user_id)
        except LockTimeout as e:
            logger.error("Could not lock user %s for erasure: %s", user_id, e)
            self._forget_user(user_id)
            result = EraseResult(user_id=user_id, remote_deleted=False, error=str(e))

        await realtime.user_cleared(user_id, result.remote_deleted)
        return result

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------
    async def store_feedback(self, feedback: FeedbackEntry) -> None:
        """
        Append and persist feedback, nudge the user's engagement goal, and
        record each learning as a feedback memory. Any failure raises.
        """
        async with self.locks.hold(f"{FEEDBACK}:{feedback.user_id}"):
            await self._hydrate_feedback(feedback.user_id)
            snapshot = self.cache.append_feedback(feedback)
            try:
                await self.store.put(
                    feedback.user_id, FEEDBACK, [f.to_json() for f in snapshot]
                )
            except StorageError as e:
                self.cache.remove_feedback(feedback)
                logger.error("Failed to store feedback for user %s: %s", feedback.user_id, e)
                raise

        await self._update_preferences_from_feedback(feedback)

        for learning in feedback.learnings:
            await self.store_memory(
                MemoryEntry(
                    id=f"learning_{now_ms()}_{uuid.uuid4().hex[:8]}",
                    user_id=feedback.user_id,
                    type=MemoryType.FEEDBACK,
                    content=learning,
                    metadata={"actionId": feedback.action_id},
                )
            )

        logger.info("Feedback stored for user %s: %s", feedback.user_id, feedback.outcome.value)
        await realtime.feedback_stored(
            feedback.user_id, feedback.action_id, feedback.outcome.value
        )

    async def analyze_feedback(self, user_id: str) -> Optional[FeedbackStats]:
        """Statistics over the cached feedback history, or None if there is none."""
        return analyze_feedback(self.cache.feedback(user_id), self.tz)

    async def learn_from_feedback(self, user_id: str) -> list[str]:
        """Readable summary lines of analyze_feedback(). Empty without feedback."""
        return render_learnings(await self.analyze_feedback(user_id))

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------
    async def get_user_preferences(self, user_id: str) -> Optional[UserPreferences]:
        cached = self.cache.preferences(user_id)
        if cached is not None:
            return cached.model_copy(deep=True)
        if self.cache.is_hydrated(user_id, PREFERENCES):
            return None

        try:
            data = await self.store.get(user_id, PREFERENCES)
        except StorageError as e:
            logger.error("Failed to load preferences for user %s: %s", user_id, e)
            return None
        if not data:
            return None

        try:
            preferences = UserPreferences.model_validate(data)
        except ValidationError as e:
            logger.error("Stored preferences for user %s are invalid: %s", user_id, e)
            return None

        self.cache.set_preferences(preferences)
        return preferences.model_copy(deep=True)

    async def update_user_preferences(self, preferences: UserPreferences) -> None:
        """Replace the whole record. Raises StorageError if the durable write fails."""
        async with self.locks.hold(f"{PREFERENCES}:{preferences.user_id}"):
            await self._write_preferences(preferences)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _write_preferences(self, preferences: UserPreferences) -> None:
        record = preferences.model_copy(deep=True)
        try:
            await self.store.put(record.user_id, PREFERENCES, record.to_json())
        except StorageError as e:
            logger.error("Failed to update preferences for user %s: %s", record.user_id, e)
            raise
        self.cache.set_preferences(record)
        logger.info("Preferences updated for user %s", record.user_id)
        await realtime.preferences_updated(record.user_id)

    def _forget_user(self, user_id: str) -> None:
        self.cache.clear_user(user_id)
        # the emptied cache is authoritative from here on, even if the
        # remote delete fails and stale objects survive
        for data_type in (MEMORIES, FEEDBACK, PREFERENCES):
            self.cache.mark_hydrated(user_id, data_type)

    async def _delete_durable(self, user_id: str) -> EraseResult:
        try:
            await self.store.delete(user_id)
        except StorageError as e:
            logger.error("Failed to delete durable data for user %s: %s", user_id, e)
            return EraseResult(user_id=user_id, remote_deleted=False, error=str(e))
        logger.info("All data cleared for user %s", user_id)
        return EraseResult(user_id=user_id, remote_deleted=True)

    async def _update_preferences_from_feedback(self, feedback: FeedbackEntry) -> None:
        engagement = feedback.metrics.engagement
        if engagement is None:
            return

        async with self.locks.hold(f"{PREFERENCES}:{feedback.user_id}"):
            preferences = await self.get_user_preferences(feedback.user_id)
            if preferences is None:
                return

            goals = dict(preferences.engagement_goals)
            current = goals.get("overall", 0.0)
            goals["overall"] = (current + engagement) / 2
            preferences.engagement_goals = goals
            await self._write_preferences(preferences)

    async def _load_list(self, user_id: str, data_type: str, model) -> list:
        """Durable list for ``data_type``; a malformed document is a StorageError."""
        data = await self.store.get(user_id, data_type) or []
        if not isinstance(data, list):
            raise StorageError(f"Stored {data_type} for user {user_id} is not a list")
        try:
            return [model.model_validate(item) for item in data]
        except ValidationError as e:
            logger.error("Stored %s for user %s are invalid: %s", data_type, user_id, e)
            raise StorageError(f"Stored {data_type} for user {user_id} are invalid") from e

    async def _hydrate_memories(self, user_id: str) -> None:
        """Load the durable list once per process before the first write."""
        if self.cache.is_hydrated(user_id, MEMORIES):
            return
        stored = await self._load_list(user_id, MEMORIES, MemoryEntry)
        known = {m.id for m in stored}
        self.cache.set_memories(
            user_id, stored + [m for m in self.cache.memories(user_id) if m.id not in known]
        )
        self.cache.mark_hydrated(user_id, MEMORIES)
        if stored:
            logger.info("Hydrated %d memories for user %s", len(stored), user_id)

    async def _hydrate_feedback(self, user_id: str) -> None:
        if self.cache.is_hydrated(user_id, FEEDBACK):
            return
        stored = await self._load_list(user_id, FEEDBACK, FeedbackEntry)
        self.cache.set_feedback(user_id, stored + self.cache.feedback(user_id))
        self.cache.mark_hydrated(user_id, FEEDBACK)
        if stored:
            logger.info("Hydrated %d feedback entries for user %s", len(stored), user_id)


# ── Shared instance ──────────────────────────────────────────────────

_service: Optional[MemoryService] = None


def get_memory_service() -> MemoryService:
    """Process-wide service wired from settings and feature flags."""
    global _service
    if _service is None:
        settings = get_settings()
        _service = MemoryService(
            store=get_object_store(),
            embeddings=EmbeddingClient(),
            locks=get_locks(),
            embedding_dimensions=settings.embedding_dimensions,
            tz=resolve_timezone(settings.learning_timezone),
        )
    return _service


async def close_memory_service() -> None:
    """Close HTTP clients. Call on app shutdown."""
    global _service
    if _service is not None:
        await _service.store.close()
        await _service.embeddings.close()
        _service = None
