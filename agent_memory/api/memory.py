"""
Memory API.

POST   /v1/memory                         - Store a memory entry
POST   /v1/memory/search                  - Semantic search over a user's memories
GET    /v1/memory/conversation/{user_id}  - Recent conversation entries
GET    /v1/memory/preferences/{user_id}   - Get preferences
PUT    /v1/memory/preferences             - Replace preferences
POST   /v1/memory/feedback                - Record action feedback
GET    /v1/memory/learnings/{user_id}     - Readable feedback summary
GET    /v1/memory/stats/{user_id}         - Structured feedback statistics
DELETE /v1/memory/{user_id}               - Erase all data for a user
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import Field

from ..core.dependencies import get_memory_service_dep
from ..core.locks import LockTimeout
from ..services.memory import MemoryService
from ..services.memory_types import (
    CamelModel,
    EraseResult,
    FeedbackEntry,
    FeedbackStats,
    MemoryEntry,
    StoreResult,
    UserPreferences,
)
from ..services.object_store import StorageError

logger = logging.getLogger(__name__)

memory_router = APIRouter(prefix="/memory", tags=["memory"])


class SearchRequest(CamelModel):
    user_id: str
    query: str
    limit: int = Field(default=10, ge=1)


class LearningsResponse(CamelModel):
    user_id: str
    learnings: list[str] = []


BACKEND_ERRORS = (StorageError, LockTimeout)


def _storage_failed(e: Exception) -> HTTPException:
    return HTTPException(status_code=502, detail=f"Durable storage unavailable: {e}")


@memory_router.post("", response_model=StoreResult)
async def store_memory(
    entry: MemoryEntry,
    service: MemoryService = Depends(get_memory_service_dep),
):
    try:
        return await service.store_memory(entry)
    except BACKEND_ERRORS as e:
        raise _storage_failed(e)


@memory_router.post("/search", response_model=list[MemoryEntry])
async def search_memories(
    request: SearchRequest,
    service: MemoryService = Depends(get_memory_service_dep),
):
    return await service.retrieve_memories(request.user_id, request.query, request.limit)


@memory_router.get("/conversation/{user_id}", response_model=list[MemoryEntry])
async def get_conversation(
    user_id: str,
    limit: int = 50,
    service: MemoryService = Depends(get_memory_service_dep),
):
    return await service.get_conversation_history(user_id, limit)


@memory_router.get("/preferences/{user_id}", response_model=UserPreferences)
async def get_preferences(
    user_id: str,
    service: MemoryService = Depends(get_memory_service_dep),
):
    preferences = await service.get_user_preferences(user_id)
    if preferences is None:
        raise HTTPException(status_code=404, detail="Preferences not found")
    return preferences


@memory_router.put("/preferences")
async def update_preferences(
    preferences: UserPreferences,
    service: MemoryService = Depends(get_memory_service_dep),
):
    try:
        await service.update_user_preferences(preferences)
    except BACKEND_ERRORS as e:
        raise _storage_failed(e)
    return {"updated": True, "userId": preferences.user_id}


@memory_router.post("/feedback")
async def store_feedback(
    feedback: FeedbackEntry,
    service: MemoryService = Depends(get_memory_service_dep),
):
    try:
        await service.store_feedback(feedback)
    except BACKEND_ERRORS as e:
        raise _storage_failed(e)
    return {"stored": True, "actionId": feedback.action_id}


@memory_router.get("/learnings/{user_id}", response_model=LearningsResponse)
async def get_learnings(
    user_id: str,
    service: MemoryService = Depends(get_memory_service_dep),
):
    learnings = await service.learn_from_feedback(user_id)
    return LearningsResponse(user_id=user_id, learnings=learnings)


@memory_router.get("/stats/{user_id}", response_model=FeedbackStats)
async def get_stats(
    user_id: str,
    service: MemoryService = Depends(get_memory_service_dep),
):
    stats = await service.analyze_feedback(user_id)
    if stats is None:
        raise HTTPException(status_code=404, detail="No feedback recorded")
    return stats


@memory_router.delete("/{user_id}", response_model=EraseResult)
async def clear_user_data(
    user_id: str,
    service: MemoryService = Depends(get_memory_service_dep),
):
    result = await service.clear_user_data(user_id)
    if not result.remote_deleted:
        logger.warning("Erase for %s only cleared the local cache", user_id)
    return result
