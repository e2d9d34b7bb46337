"""Workflow error taxonomy.

Every error is terminal for the call that raised it and carries enough structured
detail (document id, attempted action, reason) for the caller to render a message.
Only ConcurrencyConflict is expected to be retried, and only by the caller.
"""
from __future__ import annotations
from typing import Any, Dict, Optional


class WorkflowError(Exception):
    code: str = 'WORKFLOW_ERROR'
    title: str = 'Workflow Error'
    message: str = 'Workflow error'
    status_code: int = 400

    def __init__(self, message: Optional[str] = None, **details: Any):
        if message is not None:
            self.message = message
        self.details: Dict[str, Any] = {k: v for k, v in details.items() if v is not None}
        super().__init__(self.message)

    @property
    def reason(self) -> Optional[str]:
        return self.details.get('reason')

    def to_dict(self) -> Dict[str, Any]:
        body = {
            'status': self.status_code,
            'title': self.title,
            'detail': self.message,
            'code': self.code,
        }
        body.update(self.details)
        return body


class NotFound(WorkflowError):
    code = 'NOT_FOUND'
    title = 'Not Found'
    message = 'Document not found'
    status_code = 404


class LockedDocument(WorkflowError):
    code = 'LOCKED_DOCUMENT'
    title = 'Locked'
    message = 'Document is locked'
    status_code = 423


class InvalidTransition(WorkflowError):
    code = 'INVALID_TRANSITION'
    title = 'Invalid Transition'
    message = 'Transition not allowed from current status'
    status_code = 400


class PermissionDenied(WorkflowError):
    code = 'PERMISSION_DENIED'
    title = 'Forbidden'
    message = 'Permission denied'
    status_code = 403

    def __init__(self, message: Optional[str] = None, **details: Any):
        # Never carry the missing capability; only identify what was attempted.
        details.pop('capability', None)
        super().__init__(message, **details)


class ValidationError(WorkflowError):
    code = 'VALIDATION_ERROR'
    title = 'Validation Error'
    message = 'Payload validation failed'
    status_code = 400


class ConcurrencyConflict(WorkflowError):
    code = 'CONCURRENCY_CONFLICT'
    title = 'Conflict'
    message = 'Document changed since it was read; re-fetch and retry'
    status_code = 409


class ImmutableRole(WorkflowError):
    code = 'IMMUTABLE_ROLE'
    title = 'Immutable Role'
    message = 'Superuser grants cannot be modified'
    status_code = 400


class ThresholdViolation(WorkflowError):
    code = 'THRESHOLD_VIOLATION'
    title = 'Threshold Violation'
    message = 'Amount is inconsistent with the approval route'
    status_code = 400


class UnknownCapability(WorkflowError):
    """Configuration fault: a capability was referenced that the catalog does not declare."""
    code = 'UNKNOWN_CAPABILITY'
    title = 'Configuration Error'
    message = 'Unknown capability'
    status_code = 500


class AuditLogImmutable(WorkflowError):
    code = 'AUDIT_IMMUTABLE'
    title = 'Audit Log Immutable'
    message = 'Audit entries cannot be updated or deleted'
    status_code = 400


__all__ = [
    'WorkflowError', 'NotFound', 'LockedDocument', 'InvalidTransition', 'PermissionDenied',
    'ValidationError', 'ConcurrencyConflict', 'ImmutableRole', 'ThresholdViolation',
    'UnknownCapability', 'AuditLogImmutable',
]
