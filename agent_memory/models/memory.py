"""
Durable memory objects for FF_STORAGE_BACKEND=database.

One row per (user, data type) holding the JSON document the object store
keeps at {user_id}/{data_type}.json.
Data types: memories, feedback, preferences
"""

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import String, JSON, DateTime, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryObject(Base):
    __tablename__ = "memory_objects"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: uuid.uuid4().hex
    )
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    data_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[Any] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=_utcnow
    )

    __table_args__ = (
        Index("ix_memory_objects_user_type", "user_id", "data_type", unique=True),
    )
