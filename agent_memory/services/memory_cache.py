"""
Process-local view of each user's memories, feedback and preferences.

Injected into MemoryService so each instance (and each test) owns its
state instead of sharing module globals. Lists keep insertion order.
"""

from typing import Optional

from .memory_types import FeedbackEntry, MemoryEntry, UserPreferences


class MemoryCache:
    def __init__(self):
        self._memories: dict[str, list[MemoryEntry]] = {}
        self._feedback: dict[str, list[FeedbackEntry]] = {}
        self._preferences: dict[str, UserPreferences] = {}
        # (user_id, data_type) pairs already loaded from the durable store
        self._hydrated: set[tuple[str, str]] = set()

    # ── Memories ─────────────────────────────────────────────────────

    def memories(self, user_id: str) -> list[MemoryEntry]:
        return list(self._memories.get(user_id, []))

    def set_memories(self, user_id: str, entries: list[MemoryEntry]) -> None:
        self._memories[user_id] = list(entries)

    def append_memory(self, entry: MemoryEntry) -> list[MemoryEntry]:
        """Append and return a snapshot of the user's list."""
        entries = self._memories.setdefault(entry.user_id, [])
        entries.append(entry)
        return list(entries)

    def remove_memory(self, entry: MemoryEntry) -> None:
        entries = self._memories.get(entry.user_id, [])
        self._memories[entry.user_id] = [e for e in entries if e is not entry]

    # ── Feedback ─────────────────────────────────────────────────────

    def feedback(self, user_id: str) -> list[FeedbackEntry]:
        return list(self._feedback.get(user_id, []))

    def set_feedback(self, user_id: str, entries: list[FeedbackEntry]) -> None:
        self._feedback[user_id] = list(entries)

    def append_feedback(self, entry: FeedbackEntry) -> list[FeedbackEntry]:
        entries = self._feedback.setdefault(entry.user_id, [])
        entries.append(entry)
        return list(entries)

    def remove_feedback(self, entry: FeedbackEntry) -> None:
        entries = self._feedback.get(entry.user_id, [])
        self._feedback[entry.user_id] = [e for e in entries if e is not entry]

    # ── Preferences ──────────────────────────────────────────────────

    def preferences(self, user_id: str) -> Optional[UserPreferences]:
        return self._preferences.get(user_id)

    def set_preferences(self, preferences: UserPreferences) -> None:
        self._preferences[preferences.user_id] = preferences

    # ── Hydration / erasure ──────────────────────────────────────────

    def is_hydrated(self, user_id: str, data_type: str) -> bool:
        return (user_id, data_type) in self._hydrated

    def mark_hydrated(self, user_id: str, data_type: str) -> None:
        self._hydrated.add((user_id, data_type))

    def clear_user(self, user_id: str) -> None:
        self._memories.pop(user_id, None)
        self._feedback.pop(user_id, None)
        self._preferences.pop(user_id, None)
        self._hydrated = {key for key in self._hydrated if key[0] != user_id}
