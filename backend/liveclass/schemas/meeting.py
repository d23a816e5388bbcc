"""Pydantic schemas for meeting scheduling and lifecycle."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict, model_validator


class MeetingCreate(BaseModel):
    title: str = Field(..., min_length=2, max_length=200)
    scheduled_start: datetime
    scheduled_end: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_schedule(self):
        if self.scheduled_end is not None and self.scheduled_end <= self.scheduled_start:
            raise ValueError("scheduled_end must be after scheduled_start")
        return self


class MeetingResponse(BaseModel):
    id: int
    title: str
    scheduled_start: datetime
    scheduled_end: Optional[datetime] = None
    status: str
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MeetingStartResponse(BaseModel):
    id: int
    status: str
    started_at: datetime


class MeetingEndResponse(BaseModel):
    id: int
    status: str
    ended_at: datetime
    closed_sessions: int
