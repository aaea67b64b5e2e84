import logging
from typing import List, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from . import service
from .audit import SqlAuditSink
from .auth import Principal, client_ip, get_current_principal, require_admin, require_courier
from .config import get_settings
from .db import SessionLocal, init_db
from .errors import CustodyError
from .ledger import TaskLedger
from .models import CheckpointType, TaskStatus
from .recorder import CheckpointRecorder
from .schemas import AllowedCheckpointsOut, TaskCreate, TaskEventOut, TaskOut
from .storage import EvidenceStore, get_evidence_store

logger = logging.getLogger("custody_tracking")
logging.basicConfig(level=logging.INFO)

app = FastAPI(title="Custody Tracking", version="0.1.0")


async def get_db():
    async with SessionLocal() as session:
        yield session


def get_audit_sink(db: AsyncSession = Depends(get_db)) -> SqlAuditSink:
    return SqlAuditSink(db)


def get_recorder(
    db: AsyncSession = Depends(get_db),
    store: EvidenceStore = Depends(get_evidence_store),
    audit: SqlAuditSink = Depends(get_audit_sink),
) -> CheckpointRecorder:
    return CheckpointRecorder(TaskLedger(db), store, audit)


@app.on_event("startup")
async def on_startup():
    await init_db()


@app.get("/health")
async def health():
    return {"status": "ok"}


def _to_http_error(exc: CustodyError) -> HTTPException:
    """Convert a custody rejection into an HTTP error carrying its stable kind."""
    logger.info("Rejected with status=%s kind=%s", exc.status_code, exc.kind)
    return HTTPException(status_code=exc.status_code, detail={"error": exc.kind, "message": exc.message})


# Tasks assigned to the calling courier
@app.get("/tasks", response_model=List[TaskOut])
async def get_tasks(
    status_filter: List[TaskStatus] = Query(default=[], alias="status"),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await service.list_tasks(db, principal.user_id, statuses=status_filter or None)


# Scheduling hook; task assignment rules live outside this service
@app.post("/tasks", response_model=TaskOut, status_code=201)
async def create_task(
    payload: TaskCreate,
    request: Request,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    audit: SqlAuditSink = Depends(get_audit_sink),
):
    try:
        return await service.create_task(db, payload, audit, principal.user_id, client_ip(request))
    except CustodyError as exc:
        raise _to_http_error(exc) from exc


@app.get("/tasks/{task_id}", response_model=TaskOut)
async def get_task(
    task_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.get_task_for_courier(db, task_id, principal.user_id)
    except CustodyError as exc:
        raise _to_http_error(exc) from exc


@app.get("/tasks/{task_id}/allowed-checkpoints", response_model=AllowedCheckpointsOut)
async def get_allowed_checkpoints(
    task_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    try:
        checkpoints = await service.allowed_checkpoints(db, task_id, principal.user_id)
    except CustodyError as exc:
        raise _to_http_error(exc) from exc
    return AllowedCheckpointsOut(task_id=task_id, checkpoints=checkpoints)


@app.get("/tasks/{task_id}/events", response_model=List[TaskEventOut])
async def get_task_events(
    task_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.list_events(db, task_id, principal.user_id)
    except CustodyError as exc:
        raise _to_http_error(exc) from exc


async def _read_evidence(evidence: Optional[UploadFile]) -> tuple[bytes, str]:
    """Read an uploaded image, stopping one byte past the size limit."""
    if evidence is None:
        return b"", "application/octet-stream"
    data = await evidence.read(get_settings().max_evidence_bytes + 1)
    return data, (evidence.content_type or "").lower()


@app.post("/tasks/{task_id}/events", response_model=TaskEventOut, status_code=201)
async def submit_checkpoint(
    task_id: UUID,
    request: Request,
    checkpoint_type: CheckpointType = Form(...),
    latitude: float = Form(...),
    longitude: float = Form(...),
    evidence: Optional[UploadFile] = File(None),
    principal: Principal = Depends(require_courier),
    recorder: CheckpointRecorder = Depends(get_recorder),
):
    data, mime_type = await _read_evidence(evidence)
    try:
        return await recorder.record_checkpoint(
            task_id,
            principal.user_id,
            checkpoint_type,
            data,
            latitude,
            longitude,
            client_ip(request),
            mime_type=mime_type,
        )
    except CustodyError as exc:
        raise _to_http_error(exc) from exc
