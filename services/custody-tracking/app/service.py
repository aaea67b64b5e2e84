from __future__ import annotations

import logging
from typing import List
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .audit import AuditAction, AuditSink
from .errors import InvalidTaskWindow, SealedPackCodeTaken, TaskNotFound, Unauthorized
from .ledger import TaskLedger
from .models import (
    CHECKPOINT_SEQUENCE,
    MORNING_ONLY_CHECKPOINTS,
    CheckpointType,
    Task,
    TaskEvent,
    TaskStage,
    TaskStatus,
)
from .schemas import TaskCreate

logger = logging.getLogger(__name__)


def _status_clause(status: TaskStatus):
    if status is TaskStatus.SUSPICIOUS:
        return Task.flagged.is_(True)
    return and_(Task.flagged.is_(False), Task.stage == TaskStage(status.value))


async def create_task(
    db: AsyncSession,
    data: TaskCreate,
    audit: AuditSink,
    actor_id: str | None = None,
    ip_address: str | None = None,
) -> Task:
    """Register a transport task in PENDING. Used by the scheduling hook."""

    if data.end_time <= data.start_time:
        raise InvalidTaskWindow("End time must be after start time")

    existing = await db.execute(select(Task.id).where(Task.sealed_pack_code == data.sealed_pack_code))
    if existing.first() is not None:
        raise SealedPackCodeTaken(f"Task with sealed pack code '{data.sealed_pack_code}' already exists")

    task = Task(
        sealed_pack_code=data.sealed_pack_code,
        source_location=data.source_location,
        destination_location=data.destination_location,
        assigned_courier_id=data.assigned_courier_id,
        start_time=data.start_time,
        end_time=data.end_time,
        expected_travel_minutes=data.expected_travel_minutes,
        is_double_shift=data.is_double_shift,
        shift_type=data.shift_type if data.is_double_shift else None,
        stage=TaskStage.PENDING,
        flagged=False,
    )
    db.add(task)
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise SealedPackCodeTaken(
            f"Task with sealed pack code '{data.sealed_pack_code}' already exists"
        ) from exc

    await audit.log(AuditAction.TASK_CREATED, "Task", str(task.id), actor_id, ip_address)

    await db.commit()
    await db.refresh(task)
    logger.info("Task created task_id=%s courier=%s", task.id, task.assigned_courier_id)
    return task


async def list_tasks(
    db: AsyncSession,
    courier_id: str,
    statuses: List[TaskStatus] | None = None,
) -> List[Task]:
    stmt = select(Task).where(Task.assigned_courier_id == courier_id)
    if statuses:
        stmt = stmt.where(or_(*(_status_clause(status) for status in statuses)))
    res = await db.execute(stmt.order_by(Task.created_at.desc()))
    return list(res.scalars())


async def get_task_for_courier(db: AsyncSession, task_id: UUID, courier_id: str) -> Task:
    task = await TaskLedger(db).get_task(task_id)
    if task is None:
        raise TaskNotFound(f"Task with ID '{task_id}' not found")
    if task.assigned_courier_id != courier_id:
        raise Unauthorized("You are not assigned to this task")
    return task


async def list_events(db: AsyncSession, task_id: UUID, courier_id: str) -> List[TaskEvent]:
    await get_task_for_courier(db, task_id, courier_id)
    return await TaskLedger(db).list_events(task_id)


async def allowed_checkpoints(db: AsyncSession, task_id: UUID, courier_id: str) -> List[CheckpointType]:
    """Checkpoints the courier may still submit, in sequence order.

    Derived state for prompting the client only. Duplicate rejection always
    goes through the ledger at write time.
    """

    task = await get_task_for_courier(db, task_id, courier_id)
    if task.is_locked:
        return []

    sequence = [
        checkpoint
        for checkpoint in CHECKPOINT_SEQUENCE
        if not (task.is_afternoon_shift and checkpoint in MORNING_ONLY_CHECKPOINTS)
    ]
    recorded = await TaskLedger(db).recorded_types(task_id)
    return [checkpoint for checkpoint in sequence if checkpoint not in recorded]
