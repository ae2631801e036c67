"""Document gate: which slots exist, who may fill them and which transitions they unblock.

A slot is either empty or filled-and-locked. Nothing in the normal flow replaces a
filled slot; the repository enforces the same rule at write time with a conditional
update, so two uploaders racing for one slot cannot both win. Every upload attempt is
stored under its own token directory, so a losing attempt never touches the file the
winner's URL points at.
"""
from __future__ import annotations
import os
import uuid
from typing import Dict, Optional, Tuple

from prflow.errors import SlotLockedError, ValidationError, PermissionDeniedError
from prflow.models.purchase_request import PurchaseRequest

SLOTS = PurchaseRequest.ALL_SLOTS

# Slot that must be filled before a request may enter the keyed status
TRANSITION_DOCUMENTS: Dict[str, str] = {
    PurchaseRequest.STATUS_APPROVED: PurchaseRequest.SLOT_QUOTATION,
    PurchaseRequest.STATUS_COMPLETED: PurchaseRequest.SLOT_TAX_INVOICE,
}

# role -> restricted to own requests?
SLOT_UPLOADERS: Dict[str, Dict[str, bool]] = {
    PurchaseRequest.SLOT_QUOTATION: {'user': True, 'admin': False},
    PurchaseRequest.SLOT_TAX_INVOICE: {'user': True, 'admin': False},
    PurchaseRequest.SLOT_SIGNED_QUOTATION: {'approver': False, 'admin': False},
}

SIGNED_QUOTATION_FILENAME = 'signed_quotation.pdf'
SIGNED_DOCUMENT_FILENAME = 'signed_document.pdf'


def url_column(slot: str) -> str:
    return f'{slot}_url'


def name_column(slot: str) -> str:
    return f'{slot}_name'


def validate_slot(slot: str) -> str:
    if slot not in SLOTS:
        raise ValidationError(f'unknown document slot {slot}')
    return slot


def is_filled(request, slot: str) -> bool:
    return bool(getattr(request, url_column(slot), None))


def assert_slot_open(request, slot: str):
    if is_filled(request, slot):
        raise SlotLockedError(slot)


def required_document(to_status: str, require_quotation: bool = True) -> Optional[str]:
    slot = TRANSITION_DOCUMENTS.get(to_status)
    if slot == PurchaseRequest.SLOT_QUOTATION and not require_quotation:
        return None
    return slot


def is_transition_unblocked(request, to_status: str, require_quotation: bool = True) -> bool:
    slot = required_document(to_status, require_quotation)
    return slot is None or is_filled(request, slot)


def assert_can_attach(actor, request, slot: str):
    uploaders = SLOT_UPLOADERS.get(slot, {})
    if actor.role not in uploaders:
        raise PermissionDeniedError(f'{actor.role} may not attach {slot}')
    if uploaders[actor.role] and request.created_by != actor.id:
        raise PermissionDeniedError(f'only the requester may attach {slot}')


def safe_filename(filename: str, allowed_extensions: Tuple[str, ...] = ('.pdf',)) -> str:
    from werkzeug.utils import secure_filename
    cleaned = secure_filename(filename or '')
    if not cleaned:
        raise ValidationError('file name required')
    ext = os.path.splitext(cleaned)[1].lower()
    if allowed_extensions and ext not in allowed_extensions:
        raise ValidationError(f'only {", ".join(allowed_extensions)} files accepted')
    return cleaned


def storage_path(request_id: str, slot: str, filename: str, token: Optional[str] = None) -> str:
    return f'requests/{request_id}/{slot}/{token or uuid.uuid4().hex}/{filename}'


def slot_patch(slot: str, name: str, url: str) -> Dict[str, str]:
    return {name_column(slot): name, url_column(slot): url}


__all__ = [
    'SLOTS', 'TRANSITION_DOCUMENTS', 'SLOT_UPLOADERS', 'is_filled', 'assert_slot_open',
    'required_document', 'is_transition_unblocked', 'assert_can_attach', 'safe_filename',
    'storage_path', 'slot_patch', 'validate_slot',
]
