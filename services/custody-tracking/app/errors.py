"""Rejection kinds raised by the custody ledger and checkpoint recorder."""

from __future__ import annotations

from .audit import AuditAction


class CustodyError(Exception):
    """Base class for every rejected custody operation.

    ``kind`` is the stable identifier surfaced to clients, ``status_code`` the
    HTTP status the API maps it to and ``audit_action`` the action written to
    the audit sink when a checkpoint submission is rejected.
    """

    kind: str = "CustodyError"
    status_code: int = 400
    audit_action: AuditAction | None = None

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class TaskNotFound(CustodyError):
    kind = "TaskNotFound"
    status_code = 404
    audit_action = AuditAction.EVENT_REJECTED_TASK_NOT_FOUND


class Unauthorized(CustodyError):
    kind = "Unauthorized"
    status_code = 403
    audit_action = AuditAction.EVENT_UPLOAD_DENIED_NOT_ASSIGNED


class TaskLocked(CustodyError):
    kind = "TaskLocked"
    status_code = 423
    audit_action = AuditAction.EVENT_REJECTED_TASK_LOCKED


class CheckpointNotApplicable(CustodyError):
    kind = "CheckpointNotApplicable"
    status_code = 422
    audit_action = AuditAction.EVENT_REJECTED_NOT_APPLICABLE


class DuplicateCheckpoint(CustodyError):
    """The checkpoint type is already recorded. A conflict, not a retryable error."""

    kind = "DuplicateCheckpoint"
    status_code = 409
    audit_action = AuditAction.EVENT_REJECTED_DUPLICATE


class EvidenceRequired(CustodyError):
    kind = "EvidenceRequired"
    status_code = 400
    audit_action = AuditAction.EVENT_REJECTED_NO_EVIDENCE


class UnsupportedEvidenceType(CustodyError):
    kind = "UnsupportedEvidenceType"
    status_code = 415
    audit_action = AuditAction.EVENT_REJECTED_UNSUPPORTED_EVIDENCE


class EvidenceTooLarge(CustodyError):
    kind = "EvidenceTooLarge"
    status_code = 413
    audit_action = AuditAction.EVENT_REJECTED_EVIDENCE_TOO_LARGE


class InvalidCoordinates(CustodyError):
    kind = "InvalidCoordinates"
    status_code = 422
    audit_action = AuditAction.EVENT_REJECTED_INVALID_COORDINATES


class EvidenceUploadFailed(CustodyError):
    kind = "EvidenceUploadFailed"
    status_code = 503
    audit_action = AuditAction.EVENT_REJECTED_UPLOAD_FAILED


class InvalidTaskWindow(CustodyError):
    kind = "InvalidTaskWindow"
    status_code = 422


class SealedPackCodeTaken(CustodyError):
    kind = "SealedPackCodeTaken"
    status_code = 409
