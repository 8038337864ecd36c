"""
Memory, feedback and preference records.

Python attributes are snake_case; the JSON form (object store, vector
service, HTTP API) uses camelCase keys, e.g. ``userId``, ``engagementGoals``.
"""

import time
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class MemoryType(str, Enum):
    CONVERSATION = "conversation"
    PREFERENCE = "preference"
    ACTION = "action"
    FEEDBACK = "feedback"


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PARTIAL = "partial"


# ── Stored records ───────────────────────────────────────────────────

class MemoryEntry(CamelModel):
    id: str
    user_id: str
    type: MemoryType
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: int = Field(default_factory=now_ms)
    embedding: Optional[list[float]] = None


class FeedbackMetrics(CamelModel):
    engagement: Optional[float] = None
    clicks: Optional[float] = None
    impressions: Optional[float] = None
    sentiment: Optional[float] = None


class FeedbackEntry(CamelModel):
    action_id: str
    user_id: str
    outcome: Outcome
    metrics: FeedbackMetrics = Field(default_factory=FeedbackMetrics)
    learnings: list[str] = Field(default_factory=list)
    timestamp: int = Field(default_factory=now_ms)


class PostingSchedule(CamelModel):
    twitter: Optional[list[str]] = None
    telegram: Optional[list[str]] = None
    discord: Optional[list[str]] = None
    instagram: Optional[list[str]] = None
    facebook: Optional[list[str]] = None


class UserPreferences(CamelModel):
    """Complete preference record. No field is optional: updates replace the whole thing."""

    user_id: str
    writing_style: list[str]
    posting_schedule: PostingSchedule
    content_topics: list[str]
    avoid_topics: list[str]
    tone_preference: str
    hashtag_strategy: str
    engagement_goals: dict[str, float]


# ── Operation results ────────────────────────────────────────────────

class StoreStatus(str, Enum):
    STORED = "stored"        # persisted and searchable
    DEGRADED = "degraded"    # persisted, not searchable


class StoreResult(CamelModel):
    status: StoreStatus
    entry: MemoryEntry
    reason: Optional[str] = None

    @property
    def searchable(self) -> bool:
        return self.status == StoreStatus.STORED


class EraseResult(CamelModel):
    user_id: str
    remote_deleted: bool
    error: Optional[str] = None


class SimilarityHit(CamelModel):
    id: str
    score: float = 0.0


class FeedbackStats(CamelModel):
    """Descriptive statistics over one user's feedback history."""

    sample_count: int
    success_count: int
    failure_count: int
    partial_count: int
    success_rate: float
    average_engagement: float
    success_engagement: Optional[float] = None
    best_hour: int
    best_hour_engagement: float
    hourly_engagement: dict[int, float] = Field(default_factory=dict)
