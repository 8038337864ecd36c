"""
Change notifications. Thin wrapper around core.redis.
Provides typed event helpers for the memory service.
"""

from ..core import redis as _redis


# ── Memory events ────────────────────────────────────────────────────

async def memory_stored(user_id: str, memory_id: str, status: str):
    await _redis.notify_user(
        user_id, "memory.stored", {"id": memory_id, "status": status}
    )


async def feedback_stored(user_id: str, action_id: str, outcome: str):
    await _redis.notify_user(
        user_id, "feedback.stored", {"actionId": action_id, "outcome": outcome}
    )


async def preferences_updated(user_id: str):
    await _redis.notify_user(user_id, "preferences.updated")


async def user_cleared(user_id: str, remote_deleted: bool):
    await _redis.notify_user(
        user_id, "user.cleared", {"remoteDeleted": remote_deleted}
    )
