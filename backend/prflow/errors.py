"""Workflow error taxonomy.

Every error carries the HTTP status the unified handler in ``create_app`` renders it with,
so services raise domain errors and never call ``abort`` themselves.
"""
from __future__ import annotations
from typing import Any, Dict, Optional


class WorkflowError(Exception):
    status_code = 400
    title = 'Bad Request'
    code = 'workflow_error'

    def __init__(self, detail: str = '', **extra: Any):
        super().__init__(detail)
        self.detail = detail
        self.extra = extra

    def to_payload(self) -> Dict[str, Any]:
        body = {
            'status': self.status_code,
            'title': self.title,
            'detail': self.detail,
            'code': self.code,
        }
        body.update(self.extra)
        return {'error': body}


class ValidationError(WorkflowError):
    status_code = 400
    title = 'Bad Request'
    code = 'validation_error'


class InvalidTransitionError(WorkflowError):
    status_code = 409
    title = 'Conflict'
    code = 'invalid_transition'

    def __init__(self, current: str, requested: str, unmet: str, detail: Optional[str] = None):
        super().__init__(
            detail or f'Cannot move request from {current} to {requested}: {unmet} precondition unmet',
            current=current,
            requested=requested,
            unmet=unmet,
        )
        self.current = current
        self.requested = requested
        self.unmet = unmet


class SlotLockedError(WorkflowError):
    status_code = 409
    title = 'Conflict'
    code = 'slot_locked'

    def __init__(self, slot: str):
        super().__init__(f'Document slot {slot} is already filled', slot=slot)
        self.slot = slot


class ConcurrentModificationError(WorkflowError):
    status_code = 409
    title = 'Conflict'
    code = 'concurrent_modification'

    def __init__(self, expected: Optional[str], actual: Optional[str] = None):
        detail = f'Request is no longer {expected}' if expected else 'Request was modified concurrently'
        super().__init__(detail, expected=expected, actual=actual)
        self.expected = expected
        self.actual = actual


class PermissionDeniedError(WorkflowError):
    status_code = 403
    title = 'Forbidden'
    code = 'permission_denied'


class NotFoundError(WorkflowError):
    status_code = 404
    title = 'Not Found'
    code = 'not_found'

    def __init__(self, detail: str = 'Request not found'):
        super().__init__(detail)


class UpstreamError(WorkflowError):
    status_code = 503
    title = 'Service Unavailable'
    code = 'upstream_error'


__all__ = [
    'WorkflowError', 'ValidationError', 'InvalidTransitionError', 'SlotLockedError',
    'ConcurrentModificationError', 'PermissionDeniedError', 'NotFoundError', 'UpstreamError',
]
