"""Custody ledger: session-bound access to tasks and their checkpoint events."""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import DuplicateCheckpoint
from .models import CheckpointType, Task, TaskEvent
from .state_machine import TaskState

logger = logging.getLogger(__name__)


class TaskLedger:
    """The task lookup, status update and event store the recorder depends on.

    It exposes inserts for events and a state write for tasks, nothing else:
    events cannot be updated or deleted through it.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_task(self, task_id: UUID, *, for_update: bool = False) -> Task | None:
        stmt = select(Task).where(Task.id == task_id)
        if for_update:
            stmt = stmt.with_for_update()
        res = await self.session.execute(stmt)
        return res.scalar_one_or_none()

    async def find_event(self, task_id: UUID, checkpoint_type: CheckpointType) -> TaskEvent | None:
        res = await self.session.execute(
            select(TaskEvent).where(
                TaskEvent.task_id == task_id,
                TaskEvent.checkpoint_type == checkpoint_type,
            )
        )
        return res.scalar_one_or_none()

    async def list_events(self, task_id: UUID) -> list[TaskEvent]:
        res = await self.session.execute(
            select(TaskEvent)
            .where(TaskEvent.task_id == task_id)
            .order_by(TaskEvent.server_recorded_at.asc())
        )
        return list(res.scalars())

    async def recorded_types(self, task_id: UUID) -> set[CheckpointType]:
        res = await self.session.execute(
            select(TaskEvent.checkpoint_type).where(TaskEvent.task_id == task_id)
        )
        return set(res.scalars())

    async def add_event(
        self,
        *,
        task_id: UUID,
        checkpoint_type: CheckpointType,
        evidence_reference: str,
        evidence_hash: str,
        latitude: float,
        longitude: float,
        server_recorded_at: datetime,
    ) -> TaskEvent:
        """Insert a checkpoint event; the unique index decides duplicates."""

        event = TaskEvent(
            task_id=task_id,
            checkpoint_type=checkpoint_type,
            evidence_reference=evidence_reference,
            evidence_hash=evidence_hash,
            latitude=latitude,
            longitude=longitude,
            server_recorded_at=server_recorded_at,
        )
        self.session.add(event)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            logger.warning(
                "Uniqueness violation for task_id=%s checkpoint=%s", task_id, checkpoint_type.value
            )
            raise DuplicateCheckpoint(
                f"Checkpoint '{checkpoint_type.value}' has already been recorded for this task"
            ) from exc
        return event

    async def save_state(self, task: Task, state: TaskState) -> None:
        task.stage = state.stage
        task.flagged = state.flagged
        await self.session.flush()

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()
