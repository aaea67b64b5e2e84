"""Checkpoint recorder: validates, stores and audits one checkpoint submission."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable
from uuid import UUID

from .anomaly import check_travel_time
from .audit import AuditAction, AuditSink
from .config import Settings, get_settings
from .errors import (
    CheckpointNotApplicable,
    CustodyError,
    DuplicateCheckpoint,
    EvidenceRequired,
    EvidenceTooLarge,
    EvidenceUploadFailed,
    InvalidCoordinates,
    TaskLocked,
    TaskNotFound,
    Unauthorized,
    UnsupportedEvidenceType,
)
from .hashing import evidence_hash
from .ledger import TaskLedger
from .models import MORNING_ONLY_CHECKPOINTS, CheckpointType, Task, TaskEvent
from .state_machine import TaskState, advance
from .storage import EvidenceStore, EvidenceStoreError

logger = logging.getLogger(__name__)

MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_timezone(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def is_within_window(moment: datetime, start_time: datetime, end_time: datetime) -> bool:
    return ensure_timezone(start_time) <= moment <= ensure_timezone(end_time)


class CheckpointRecorder:
    """Records one checkpoint per call, all-or-nothing.

    The event insert, the task state change and the success audit entries are
    committed together. Every rejection rolls back whatever was staged and
    commits a single audit entry describing it.
    """

    def __init__(
        self,
        ledger: TaskLedger,
        store: EvidenceStore,
        audit: AuditSink,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.ledger = ledger
        self.store = store
        self.audit = audit
        self.settings = settings or get_settings()
        self._clock = clock

    async def record_checkpoint(
        self,
        task_id: UUID,
        courier_id: str,
        checkpoint_type: CheckpointType,
        evidence: bytes | None,
        latitude: float,
        longitude: float,
        ip_address: str | None,
        *,
        mime_type: str = "image/jpeg",
    ) -> TaskEvent:
        try:
            return await self._record(
                task_id, courier_id, checkpoint_type, evidence, latitude, longitude, ip_address, mime_type
            )
        except CustodyError as exc:
            await self._reject(exc, task_id, courier_id, checkpoint_type, ip_address)
            raise
        except Exception:
            await self.ledger.rollback()
            raise

    async def _record(
        self,
        task_id: UUID,
        courier_id: str,
        checkpoint_type: CheckpointType,
        evidence: bytes | None,
        latitude: float,
        longitude: float,
        ip_address: str | None,
        mime_type: str,
    ) -> TaskEvent:
        task = await self.ledger.get_task(task_id, for_update=True)
        if task is None:
            raise TaskNotFound(f"Task with ID '{task_id}' not found")
        if task.assigned_courier_id != courier_id:
            raise Unauthorized("You are not assigned to this task")
        if task.is_locked:
            raise TaskLocked("Task is already completed. No more checkpoints can be recorded.")
        if task.is_afternoon_shift and checkpoint_type in MORNING_ONLY_CHECKPOINTS:
            raise CheckpointNotApplicable(
                f"Checkpoint '{checkpoint_type.value}' is covered by the morning shift"
            )

        # Fast path only; the unique index on insert is what actually decides.
        if await self.ledger.find_event(task_id, checkpoint_type) is not None:
            raise DuplicateCheckpoint(
                f"Checkpoint '{checkpoint_type.value}' has already been recorded for this task"
            )

        if not evidence:
            raise EvidenceRequired("Evidence image is required")
        if mime_type.lower() not in self.settings.evidence_allowed_mime_types:
            raise UnsupportedEvidenceType("Only JPEG, PNG, and WebP images are allowed")
        if len(evidence) > self.settings.max_evidence_bytes:
            raise EvidenceTooLarge(f"Evidence exceeds {self.settings.max_evidence_bytes} bytes")
        if not -90 <= latitude <= 90 or not -180 <= longitude <= 180:
            raise InvalidCoordinates(
                f"Coordinates out of range: latitude={latitude}, longitude={longitude}"
            )

        digest = evidence_hash(evidence)
        reference = await self._upload(task_id, checkpoint_type, evidence, mime_type)

        recorded_at = self._clock()
        within_window = is_within_window(recorded_at, task.start_time, task.end_time)

        event = await self.ledger.add_event(
            task_id=task_id,
            checkpoint_type=checkpoint_type,
            evidence_reference=reference,
            evidence_hash=digest,
            latitude=latitude,
            longitude=longitude,
            server_recorded_at=recorded_at,
        )

        state = advance(TaskState(task.stage, task.flagged), checkpoint_type, within_window)
        if not within_window:
            logger.warning(
                "Checkpoint outside window task_id=%s checkpoint=%s recorded_at=%s",
                task_id,
                checkpoint_type.value,
                recorded_at.isoformat(),
            )

        anomalous = False
        if checkpoint_type is CheckpointType.ARRIVAL:
            anomalous = await self._travel_time_exceeded(task, recorded_at)
            if anomalous:
                state = TaskState(stage=state.stage, flagged=True)

        await self.ledger.save_state(task, state)

        if anomalous:
            await self.audit.log(AuditAction.ANOMALOUS_TRAVEL_TIME, "Task", str(task_id), courier_id, ip_address)
        await self.audit.log(AuditAction.EVENT_RECORDED, "TaskEvent", str(event.id), courier_id, ip_address)

        await self.ledger.commit()
        logger.info(
            "Checkpoint recorded task_id=%s checkpoint=%s event_id=%s status=%s",
            task_id,
            checkpoint_type.value,
            event.id,
            state.status.value,
        )
        return event

    async def _upload(
        self, task_id: UUID, checkpoint_type: CheckpointType, evidence: bytes, mime_type: str
    ) -> str:
        extension = MIME_EXTENSIONS.get(mime_type, "bin")
        name = f"task-events/{task_id}/{checkpoint_type.value}_{int(self._clock().timestamp() * 1000)}.{extension}"
        try:
            return await asyncio.wait_for(
                self.store.upload(evidence, name, mime_type),
                timeout=self.settings.evidence_upload_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise EvidenceUploadFailed("Evidence upload timed out. Please try again.") from exc
        except EvidenceStoreError as exc:
            raise EvidenceUploadFailed("Failed to upload evidence. Please try again.") from exc

    async def _travel_time_exceeded(self, task: Task, arrival_at: datetime) -> bool:
        pickup = await self.ledger.find_event(task.id, CheckpointType.PICKUP)
        if pickup is None:
            return False

        check = check_travel_time(
            ensure_timezone(pickup.server_recorded_at),
            arrival_at,
            task.expected_travel_minutes,
            multiplier=self.settings.anomaly_multiplier,
            fallback_minutes=self.settings.default_expected_travel_minutes,
        )
        if check.triggered:
            logger.warning(
                "Travel time red flag task_id=%s elapsed=%.1fmin threshold=%.1fmin",
                task.id,
                check.elapsed_minutes,
                check.threshold_minutes,
            )
        return check.triggered

    async def _reject(
        self,
        exc: CustodyError,
        task_id: UUID,
        courier_id: str,
        checkpoint_type: CheckpointType,
        ip_address: str | None,
    ) -> None:
        await self.ledger.rollback()
        logger.info(
            "Checkpoint rejected kind=%s task_id=%s checkpoint=%s courier=%s",
            exc.kind,
            task_id,
            checkpoint_type.value,
            courier_id,
        )
        if exc.audit_action is None:
            return
        await self.audit.log(exc.audit_action, "TaskEvent", None, courier_id, ip_address)
        await self.ledger.commit()
