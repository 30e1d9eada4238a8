"""Pydantic schemas for Queue endpoints."""

from datetime import datetime
from typing import Optional

from .base import APIModel


class QueueItem(APIModel):
    """Schema for queue item."""

    id: int
    job_type: str
    analysis_id: Optional[int] = None
    status: str
    priority: int
    attempts: int
    max_attempts: int
    last_error: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    scheduled_for: datetime


class QueueStatusResponse(APIModel):
    """Schema for queue status response."""

    pending: int
    running: int
    completed: int
    dead: int
    items: list[QueueItem] = []


class QueueRetryResponse(APIModel):
    id: int
    status: str
    message: str
