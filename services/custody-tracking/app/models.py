"""SQLAlchemy models for the custody ledger."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from .db import Base


class TaskStatus(str, enum.Enum):
    """Status reported to clients, derived from stage and review flag."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    SUSPICIOUS = "SUSPICIOUS"


class TaskStage(str, enum.Enum):
    """Workflow progress of a transport task."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class ShiftType(str, enum.Enum):
    MORNING = "MORNING"
    AFTERNOON = "AFTERNOON"


class CheckpointType(str, enum.Enum):
    """Checkpoints of the custody chain, in the order they are expected."""

    PICKUP = "PICKUP"
    ARRIVAL = "ARRIVAL"
    OPENING_SEAL = "OPENING_SEAL"
    SEALING_ANSWER_SHEETS = "SEALING_ANSWER_SHEETS"
    SUBMISSION = "SUBMISSION"


CHECKPOINT_SEQUENCE: tuple[CheckpointType, ...] = tuple(CheckpointType)

# Satisfied by the morning half of a double shift.
MORNING_ONLY_CHECKPOINTS: frozenset[CheckpointType] = frozenset(
    {CheckpointType.PICKUP, CheckpointType.ARRIVAL}
)


class Task(Base):
    """One physical transport assignment of a sealed pack."""

    __tablename__ = "tasks"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    sealed_pack_code: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    source_location: Mapped[str | None] = mapped_column(Text)
    destination_location: Mapped[str | None] = mapped_column(Text)
    assigned_courier_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    stage: Mapped[TaskStage] = mapped_column(Enum(TaskStage), nullable=False, default=TaskStage.PENDING)
    flagged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expected_travel_minutes: Mapped[int | None] = mapped_column(Integer)
    is_double_shift: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    shift_type: Mapped[ShiftType | None] = mapped_column(Enum(ShiftType))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    events: Mapped[list["TaskEvent"]] = relationship(
        back_populates="task", order_by="TaskEvent.server_recorded_at"
    )

    @property
    def status(self) -> TaskStatus:
        if self.flagged:
            return TaskStatus.SUSPICIOUS
        return TaskStatus(self.stage.value)

    @property
    def is_locked(self) -> bool:
        return self.stage is TaskStage.COMPLETED

    @property
    def is_afternoon_shift(self) -> bool:
        return bool(self.is_double_shift) and self.shift_type is ShiftType.AFTERNOON


class TaskEvent(Base):
    """Write-once checkpoint evidence. There is no update or delete path."""

    __tablename__ = "task_events"
    __table_args__ = (
        UniqueConstraint("task_id", "checkpoint_type", name="uq_task_events_task_checkpoint"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    task_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tasks.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    checkpoint_type: Mapped[CheckpointType] = mapped_column(Enum(CheckpointType), nullable=False)
    evidence_reference: Mapped[str] = mapped_column(Text, nullable=False)
    evidence_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    server_recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    task: Mapped[Task] = relationship(back_populates="events")


class AuditLog(Base):
    """Append-only record of security-relevant actions."""

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(64), index=True)
    actor_id: Mapped[str | None] = mapped_column(String(64), index=True)
    ip_address: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
