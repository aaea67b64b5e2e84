from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import CheckpointType, ShiftType, TaskStatus


def _ensure_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TaskCreate(BaseModel):
    sealed_pack_code: str = Field(..., min_length=3, max_length=100)
    source_location: Optional[str] = None
    destination_location: Optional[str] = None
    assigned_courier_id: str = Field(..., min_length=1, max_length=64)
    start_time: datetime
    end_time: datetime
    expected_travel_minutes: Optional[int] = Field(None, ge=1)
    is_double_shift: bool = False
    shift_type: Optional[ShiftType] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return _ensure_utc(value)


class TaskOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sealed_pack_code: str
    source_location: Optional[str]
    destination_location: Optional[str]
    assigned_courier_id: str
    status: TaskStatus
    start_time: datetime
    end_time: datetime
    expected_travel_minutes: Optional[int]
    is_double_shift: bool
    shift_type: Optional[ShiftType]
    created_at: datetime
    updated_at: datetime

    @field_validator("start_time", "end_time", "created_at", "updated_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return _ensure_utc(value)


class TaskEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    task_id: UUID
    checkpoint_type: CheckpointType
    evidence_reference: str
    evidence_hash: str
    latitude: float
    longitude: float
    server_recorded_at: datetime

    @field_validator("server_recorded_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return _ensure_utc(value)


class AllowedCheckpointsOut(BaseModel):
    task_id: UUID
    checkpoints: List[CheckpointType]
