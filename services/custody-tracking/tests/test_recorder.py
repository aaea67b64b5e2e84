"""Checkpoint recorder behaviour against a real (SQLite) ledger."""

from __future__ import annotations

import asyncio
import uuid
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from app import audit as audit_module
from app.audit import SqlAuditSink
from app.config import Settings
from app.errors import (
    CheckpointNotApplicable,
    DuplicateCheckpoint,
    EvidenceRequired,
    EvidenceTooLarge,
    EvidenceUploadFailed,
    InvalidCoordinates,
    TaskLocked,
    TaskNotFound,
    Unauthorized,
)
from app.hashing import evidence_hash, verify_evidence
from app.ledger import TaskLedger
from app.models import CheckpointType, ShiftType, Task, TaskEvent, TaskStage, TaskStatus
from app.recorder import CheckpointRecorder

from fakes import FakeEvidenceStore, FixedClock, RecordingAuditSink, at, seed_task

pytestmark = pytest.mark.asyncio

PHOTO = b"\xff\xd8\xff\xe0 sealed pack photo"


class Harness:
    def __init__(self, session_factory, store=None, settings=None) -> None:
        self.session_factory = session_factory
        self.store = store or FakeEvidenceStore()
        self.audit = RecordingAuditSink()
        self.clock = FixedClock(at(9))
        self.settings = settings or Settings()

    async def submit(self, task_id, checkpoint, *, courier="courier-1", when=None, evidence=PHOTO,
                     latitude=26.14, longitude=91.73, ledger_patch=None):
        if when is not None:
            self.clock.now = when
        async with self.session_factory() as session:
            ledger = TaskLedger(session)
            if ledger_patch:
                ledger_patch(ledger)
            recorder = CheckpointRecorder(ledger, self.store, self.audit, self.settings, clock=self.clock)
            return await recorder.record_checkpoint(
                task_id, courier, checkpoint, evidence, latitude, longitude, "10.0.0.7"
            )

    async def task(self, task_id) -> Task:
        async with self.session_factory() as session:
            return await session.get(Task, task_id)

    async def events(self, task_id) -> list[TaskEvent]:
        async with self.session_factory() as session:
            return await TaskLedger(session).list_events(task_id)


@pytest.fixture()
def harness(session_factory):
    return Harness(session_factory)


async def test_pickup_inside_window_starts_task(harness):
    task = await seed_task(harness.session_factory)

    event = await harness.submit(task.id, CheckpointType.PICKUP, when=at(9, 5))

    assert event.checkpoint_type is CheckpointType.PICKUP
    assert event.server_recorded_at == at(9, 5)
    assert event.evidence_hash == evidence_hash(PHOTO)
    stored = await harness.task(task.id)
    assert stored.status is TaskStatus.IN_PROGRESS
    assert harness.audit.entries == [
        ("EVENT_RECORDED", "TaskEvent", str(event.id), "courier-1", "10.0.0.7"),
    ]


async def test_submission_outside_window_is_kept_and_flagged(harness):
    task = await seed_task(harness.session_factory)
    await harness.submit(task.id, CheckpointType.PICKUP, when=at(9, 5))

    event = await harness.submit(task.id, CheckpointType.SUBMISSION, when=at(18))

    stored = await harness.task(task.id)
    assert stored.status is TaskStatus.SUSPICIOUS
    assert stored.stage is TaskStage.COMPLETED
    assert [e.id for e in await harness.events(task.id)][-1] == event.id


async def test_completed_task_rejects_everything(harness):
    task = await seed_task(harness.session_factory)
    await harness.submit(task.id, CheckpointType.SUBMISSION, when=at(16))
    assert (await harness.task(task.id)).status is TaskStatus.COMPLETED

    with pytest.raises(TaskLocked):
        await harness.submit(task.id, CheckpointType.OPENING_SEAL, when=at(16, 30))

    assert len(await harness.events(task.id)) == 1
    assert harness.audit.actions()[-1] == "EVENT_REJECTED_TASK_LOCKED"
    assert len(harness.store.objects) == 1


async def test_flagged_submission_still_locks_task(harness):
    task = await seed_task(harness.session_factory)
    await harness.submit(task.id, CheckpointType.SUBMISSION, when=at(18))

    with pytest.raises(TaskLocked):
        await harness.submit(task.id, CheckpointType.PICKUP, when=at(18, 5))


async def test_excessive_travel_time_raises_red_flag(harness):
    task = await seed_task(harness.session_factory, expected_travel_minutes=20)
    await harness.submit(task.id, CheckpointType.PICKUP, when=at(10))
    harness.audit.entries.clear()

    event = await harness.submit(task.id, CheckpointType.ARRIVAL, when=at(10, 35))

    stored = await harness.task(task.id)
    assert stored.status is TaskStatus.SUSPICIOUS
    assert stored.stage is TaskStage.IN_PROGRESS
    assert harness.audit.entries == [
        ("ANOMALOUS_TRAVEL_TIME", "Task", str(task.id), "courier-1", "10.0.0.7"),
        ("EVENT_RECORDED", "TaskEvent", str(event.id), "courier-1", "10.0.0.7"),
    ]


async def test_travel_time_within_threshold_is_not_flagged(harness):
    task = await seed_task(harness.session_factory, expected_travel_minutes=20)
    await harness.submit(task.id, CheckpointType.PICKUP, when=at(10))

    await harness.submit(task.id, CheckpointType.ARRIVAL, when=at(10, 30))

    assert (await harness.task(task.id)).status is TaskStatus.IN_PROGRESS
    assert "ANOMALOUS_TRAVEL_TIME" not in harness.audit.actions()


async def test_travel_time_falls_back_to_configured_default(harness):
    task = await seed_task(harness.session_factory, expected_travel_minutes=None)
    await harness.submit(task.id, CheckpointType.PICKUP, when=at(10))

    await harness.submit(task.id, CheckpointType.ARRIVAL, when=at(10, 46))

    # default 30 minutes * 1.5
    assert (await harness.task(task.id)).status is TaskStatus.SUSPICIOUS


async def test_arrival_without_pickup_skips_travel_check(harness):
    task = await seed_task(harness.session_factory)

    await harness.submit(task.id, CheckpointType.ARRIVAL, when=at(16))

    assert (await harness.task(task.id)).status is TaskStatus.PENDING
    assert harness.audit.actions() == ["EVENT_RECORDED"]


async def test_duplicate_checkpoint_is_a_conflict(harness):
    task = await seed_task(harness.session_factory)
    await harness.submit(task.id, CheckpointType.PICKUP, when=at(9, 5))

    with pytest.raises(DuplicateCheckpoint):
        await harness.submit(task.id, CheckpointType.PICKUP, when=at(9, 6))

    assert len(await harness.events(task.id)) == 1
    assert harness.audit.actions() == ["EVENT_RECORDED", "EVENT_REJECTED_DUPLICATE"]


async def test_unique_index_rejects_duplicate_when_precheck_misses(harness):
    task = await seed_task(harness.session_factory)

    def blind_precheck(ledger):
        ledger.find_event = AsyncMock(return_value=None)

    await harness.submit(task.id, CheckpointType.PICKUP, when=at(9, 5), ledger_patch=blind_precheck)
    with pytest.raises(DuplicateCheckpoint):
        await harness.submit(task.id, CheckpointType.PICKUP, when=at(9, 6), ledger_patch=blind_precheck)

    async with harness.session_factory() as session:
        count = await session.scalar(select(func.count()).select_from(TaskEvent))
    assert count == 1
    assert (await harness.task(task.id)).status is TaskStatus.IN_PROGRESS


async def test_wrong_courier_is_denied_and_audited(harness):
    task = await seed_task(harness.session_factory)

    with pytest.raises(Unauthorized):
        await harness.submit(task.id, CheckpointType.PICKUP, courier="courier-2")

    assert await harness.events(task.id) == []
    assert harness.audit.entries == [
        ("EVENT_UPLOAD_DENIED_NOT_ASSIGNED", "TaskEvent", None, "courier-2", "10.0.0.7"),
    ]


async def test_unknown_task(harness):
    with pytest.raises(TaskNotFound):
        await harness.submit(uuid.uuid4(), CheckpointType.PICKUP)


async def test_missing_evidence_writes_nothing(harness):
    task = await seed_task(harness.session_factory)

    with pytest.raises(EvidenceRequired):
        await harness.submit(task.id, CheckpointType.PICKUP, evidence=b"")

    assert await harness.events(task.id) == []
    assert harness.store.objects == {}
    assert harness.audit.actions() == ["EVENT_REJECTED_NO_EVIDENCE"]


@pytest.mark.parametrize("latitude,longitude", [(91.0, 10.0), (-90.5, 0.0), (0.0, 180.01), (0.0, -181.0)])
async def test_out_of_range_coordinates(harness, latitude, longitude):
    task = await seed_task(harness.session_factory)

    with pytest.raises(InvalidCoordinates):
        await harness.submit(task.id, CheckpointType.PICKUP, latitude=latitude, longitude=longitude)

    assert harness.store.objects == {}


async def test_upload_failure_aborts_submission(session_factory):
    harness = Harness(session_factory, store=FakeEvidenceStore(fail=True))
    task = await seed_task(session_factory)

    with pytest.raises(EvidenceUploadFailed):
        await harness.submit(task.id, CheckpointType.PICKUP, when=at(9, 5))

    assert await harness.events(task.id) == []
    assert (await harness.task(task.id)).status is TaskStatus.PENDING
    assert harness.audit.actions() == ["EVENT_REJECTED_UPLOAD_FAILED"]


async def test_upload_timeout_aborts_submission(session_factory):
    settings = Settings(evidence_upload_timeout_seconds=0.05)
    harness = Harness(session_factory, store=FakeEvidenceStore(delay=1.0), settings=settings)
    task = await seed_task(session_factory)

    with pytest.raises(EvidenceUploadFailed):
        await harness.submit(task.id, CheckpointType.PICKUP, when=at(9, 5))

    assert await harness.events(task.id) == []


async def test_afternoon_shift_rejects_morning_checkpoints(harness):
    task = await seed_task(harness.session_factory, is_double_shift=True, shift_type=ShiftType.AFTERNOON)

    with pytest.raises(CheckpointNotApplicable):
        await harness.submit(task.id, CheckpointType.PICKUP, when=at(13))

    await harness.submit(task.id, CheckpointType.OPENING_SEAL, when=at(13, 30))
    assert [e.checkpoint_type for e in await harness.events(task.id)] == [CheckpointType.OPENING_SEAL]


async def test_stored_evidence_verifies_against_hash(harness):
    task = await seed_task(harness.session_factory)
    event = await harness.submit(task.id, CheckpointType.PICKUP, when=at(9, 5))

    assert await verify_evidence(event, harness.store)

    harness.store.objects[event.evidence_reference] = PHOTO + b"edited"
    assert not await verify_evidence(event, harness.store)


async def test_sql_audit_sink_commits_with_outcome(session_factory):
    task = await seed_task(session_factory)
    store = FakeEvidenceStore()
    clock = FixedClock(at(10))

    async with session_factory() as session:
        recorder = CheckpointRecorder(TaskLedger(session), store, SqlAuditSink(session), Settings(), clock=clock)
        event = await recorder.record_checkpoint(
            task.id, "courier-1", CheckpointType.PICKUP, PHOTO, 26.1, 91.7, "10.0.0.7"
        )

    async with session_factory() as session:
        recorder = CheckpointRecorder(TaskLedger(session), store, SqlAuditSink(session), Settings(), clock=clock)
        with pytest.raises(Unauthorized):
            await recorder.record_checkpoint(
                task.id, "intruder", CheckpointType.ARRIVAL, PHOTO, 26.1, 91.7, "10.0.0.9"
            )

    async with session_factory() as session:
        recorded = await audit_module.list_entries(session, entity_id=str(event.id))
        everything = await audit_module.list_entries(session)

    assert [entry.action for entry in recorded] == ["EVENT_RECORDED"]
    denied = [entry for entry in everything if entry.action == "EVENT_UPLOAD_DENIED_NOT_ASSIGNED"]
    assert len(denied) == 1
    assert denied[0].actor_id == "intruder"
    assert denied[0].entity_id is None


async def test_window_bounds_are_inclusive(harness):
    task = await seed_task(harness.session_factory)

    await harness.submit(task.id, CheckpointType.PICKUP, when=at(9))
    await harness.submit(task.id, CheckpointType.ARRIVAL, when=at(9, 20))
    await harness.submit(task.id, CheckpointType.SUBMISSION, when=at(17))

    stored = await harness.task(task.id)
    assert stored.status is TaskStatus.COMPLETED
    assert not stored.flagged


class FailingAuditSink(RecordingAuditSink):
    async def log(self, action, entity_type, entity_id, actor_id, ip_address) -> None:
        if action.value == "EVENT_RECORDED":
            raise RuntimeError("audit store unavailable")
        await super().log(action, entity_type, entity_id, actor_id, ip_address)


async def test_audit_failure_rolls_back_checkpoint(harness):
    harness.audit = FailingAuditSink()
    task = await seed_task(harness.session_factory)

    with pytest.raises(RuntimeError):
        await harness.submit(task.id, CheckpointType.PICKUP, when=at(9, 5))

    assert await harness.events(task.id) == []
    assert (await harness.task(task.id)).status is TaskStatus.PENDING


async def test_simultaneous_duplicates_record_once(harness):
    task = await seed_task(harness.session_factory)

    results = await asyncio.gather(
        harness.submit(task.id, CheckpointType.PICKUP),
        harness.submit(task.id, CheckpointType.PICKUP),
        return_exceptions=True,
    )

    assert sorted(type(result).__name__ for result in results) == ["DuplicateCheckpoint", "TaskEvent"]
    assert len(await harness.events(task.id)) == 1
    assert sorted(harness.audit.actions()) == ["EVENT_RECORDED", "EVENT_REJECTED_DUPLICATE"]


async def test_oversized_evidence_is_rejected_and_audited(session_factory):
    harness = Harness(session_factory, settings=Settings(max_evidence_bytes=8))
    task = await seed_task(session_factory)

    with pytest.raises(EvidenceTooLarge):
        await harness.submit(task.id, CheckpointType.PICKUP, when=at(9, 5))

    assert harness.store.objects == {}
    assert harness.audit.actions() == ["EVENT_REJECTED_EVIDENCE_TOO_LARGE"]
