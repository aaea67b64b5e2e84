"""Audit sink: the append-only log of security-relevant actions."""

from __future__ import annotations

import enum
import logging
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import AuditLog

logger = logging.getLogger(__name__)


class AuditAction(str, enum.Enum):
    TASK_CREATED = "TASK_CREATED"
    EVENT_RECORDED = "EVENT_RECORDED"
    ANOMALOUS_TRAVEL_TIME = "ANOMALOUS_TRAVEL_TIME"
    EVENT_REJECTED_TASK_NOT_FOUND = "EVENT_REJECTED_TASK_NOT_FOUND"
    EVENT_UPLOAD_DENIED_NOT_ASSIGNED = "EVENT_UPLOAD_DENIED_NOT_ASSIGNED"
    EVENT_REJECTED_TASK_LOCKED = "EVENT_REJECTED_TASK_LOCKED"
    EVENT_REJECTED_NOT_APPLICABLE = "EVENT_REJECTED_NOT_APPLICABLE"
    EVENT_REJECTED_DUPLICATE = "EVENT_REJECTED_DUPLICATE"
    EVENT_REJECTED_NO_EVIDENCE = "EVENT_REJECTED_NO_EVIDENCE"
    EVENT_REJECTED_UNSUPPORTED_EVIDENCE = "EVENT_REJECTED_UNSUPPORTED_EVIDENCE"
    EVENT_REJECTED_EVIDENCE_TOO_LARGE = "EVENT_REJECTED_EVIDENCE_TOO_LARGE"
    EVENT_REJECTED_INVALID_COORDINATES = "EVENT_REJECTED_INVALID_COORDINATES"
    EVENT_REJECTED_UPLOAD_FAILED = "EVENT_REJECTED_UPLOAD_FAILED"


class AuditSink(Protocol):
    async def log(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: str | None,
        actor_id: str | None,
        ip_address: str | None,
    ) -> None:
        ...


class SqlAuditSink:
    """Writes audit rows into the caller's session.

    Rows become durable with the caller's commit, so an audit entry and the
    change it describes land in the same transaction.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def log(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: str | None,
        actor_id: str | None,
        ip_address: str | None,
    ) -> None:
        entry = AuditLog(
            action=AuditAction(action).value,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            ip_address=ip_address,
        )
        self._session.add(entry)
        await self._session.flush()
        logger.info(
            "audit action=%s entity=%s:%s actor=%s ip=%s",
            entry.action,
            entity_type,
            entity_id,
            actor_id,
            ip_address,
        )


async def list_entries(session: AsyncSession, entity_id: str | None = None) -> list[AuditLog]:
    stmt = select(AuditLog)
    if entity_id is not None:
        stmt = stmt.where(AuditLog.entity_id == entity_id)
    res = await session.execute(stmt.order_by(AuditLog.created_at.asc()))
    return list(res.scalars())
