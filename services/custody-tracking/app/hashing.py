"""Integrity hashing of checkpoint evidence."""

from __future__ import annotations

import hashlib
import hmac
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import TaskEvent
    from .storage import EvidenceStore


def evidence_hash(data: bytes) -> str:
    """Hex SHA-256 of the exact evidence bytes, taken before upload."""

    return hashlib.sha256(data).hexdigest()


async def verify_evidence(event: "TaskEvent", store: "EvidenceStore") -> bool:
    """Re-fetch stored evidence and check it still matches the recorded hash."""

    data = await store.download(event.evidence_reference)
    return hmac.compare_digest(evidence_hash(data), event.evidence_hash)
