"""Use cases for purchase requests.

RequestService wires the pure pieces (validation, lifecycle table, document gate,
access filter) to the collaborators (repository, account directory, document store,
notification dispatcher). Rules are checked against a fresh read, then the write is a
conditional update against the status that read observed; a lost race surfaces as
ConcurrentModificationError and leaves the row untouched.
"""
from __future__ import annotations
import logging
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.exc import IntegrityError

from prflow.errors import (
    ConcurrentModificationError, NotFoundError, PermissionDeniedError, SlotLockedError,
    UpstreamError, ValidationError,
)
from prflow.models.purchase_request import (
    PurchaseRequest, RequestItem, generate_request_number, recompute_total,
)
from prflow.services import documents, lifecycle, policy, signature
from prflow.utils.validation import validate_items, validate_request_input, validate_status

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = {
    'REQUIRE_QUOTATION_FOR_APPROVAL': True,
    'REQUEST_NUMBER_ATTEMPTS': 5,
    'ALLOWED_DOCUMENT_EXTENSIONS': ('.pdf',),
}


class RequestService:
    def __init__(self, repository, directory, store, notifier, settings: Optional[Mapping[str, Any]] = None):
        self.repository = repository
        self.directory = directory
        self.store = store
        self.notifier = notifier
        self.settings = dict(DEFAULT_SETTINGS)
        if settings:
            self.settings.update({k: settings[k] for k in DEFAULT_SETTINGS if k in settings})

    @property
    def require_quotation(self) -> bool:
        return bool(self.settings['REQUIRE_QUOTATION_FOR_APPROVAL'])

    # ---------- reads ---------- #

    def get_request(self, actor: policy.Actor, request_id: str) -> PurchaseRequest:
        return policy.assert_visible(actor, self.repository.find(request_id))

    def list_visible(self, actor: policy.Actor) -> List[PurchaseRequest]:
        return policy.visible_requests(self.repository.list(policy.creator_filter(actor)), actor)

    def allowed_actions(self, actor: policy.Actor, request: PurchaseRequest) -> List[str]:
        return lifecycle.allowed_transitions(request, actor, self.require_quotation)

    def summary(self, actor: policy.Actor) -> Dict[str, Any]:
        counts = {s: 0 for s in PurchaseRequest.ALL_STATUSES}
        total = Decimal('0')
        for request in self.list_visible(actor):
            counts[request.status] += 1
            total += request.total_amount
        return {
            'total_requests': sum(counts.values()),
            'total_amount': total,
            'pending': counts[PurchaseRequest.STATUS_PENDING],
            'by_status': counts,
        }

    # ---------- creation & items ---------- #

    def create_request(self, actor: policy.Actor, data: Mapping[str, Any], now=None) -> PurchaseRequest:
        fields = validate_request_input(data)
        account = self.directory.resolve(actor.id)
        if account is not None:
            fields['department'] = fields['department'] or account.department
            fields['requester_name'] = fields['requester_name'] or account.name
        now = now or lifecycle.utcnow()
        attempts = max(1, int(self.settings['REQUEST_NUMBER_ATTEMPTS']))
        for attempt in range(attempts):
            number = generate_request_number(now)
            if self.repository.number_taken(number):
                logger.warning('Request number %s already used, retrying', number)
                continue
            request = self._build(actor, fields, number, now)
            try:
                self.repository.insert(request)
            except IntegrityError:
                # Lost the race for the number to a concurrent insert
                self.repository.rollback()
                logger.warning('Request number %s collided on insert, retrying', number)
                continue
            logger.info('Created %s (%s) for account %s, total %s', request.request_number, request.id,
                        actor.id, request.total_amount)
            self.notifier.request_created(request)
            return request
        raise UpstreamError(f'Could not allocate a unique request number after {attempts} attempts')

    def _build(self, actor, fields, number, now) -> PurchaseRequest:
        request = PurchaseRequest(
            request_number=number,
            title=fields['title'],
            description=fields['description'],
            department=fields['department'],
            requester_name=fields['requester_name'],
            created_by=actor.id,
            status=PurchaseRequest.STATUS_PENDING,
            created_at=now,
            updated_at=now,
        )
        request.items = [RequestItem(position=i, **item) for i, item in enumerate(fields['items'])]
        request.recompute_total()
        return request

    def update_items(self, actor: policy.Actor, request_id: str, raw_items: Any,
                     expected_status: Optional[str] = None) -> PurchaseRequest:
        request = self.get_request(actor, request_id)
        self._expect(request, expected_status)
        if not policy.can_edit_items(actor, request):
            raise PermissionDeniedError('items can only be changed by the requester while pending')
        items = validate_items(raw_items)
        patch = {
            'total_amount': recompute_total(items),
            'updated_at': lifecycle.next_timestamp(request.updated_at),
        }
        if not self.repository.replace_items(request.id, PurchaseRequest.STATUS_PENDING, items, patch):
            raise self._conflict(request.id, PurchaseRequest.STATUS_PENDING)
        logger.info('Replaced items on %s, total now %s', request.request_number, request.total_amount)
        return request

    # ---------- transitions ---------- #

    def transition(self, actor: policy.Actor, request_id: str, target: str, reason: Optional[str] = None,
                   expected_status: Optional[str] = None) -> PurchaseRequest:
        validate_status(target, PurchaseRequest.ALL_STATUSES)
        request = self.get_request(actor, request_id)
        self._expect(request, expected_status)
        source = request.status
        patch = lifecycle.plan_transition(request, actor, target, reason, require_quotation=self.require_quotation)
        if not self.repository.update(request.id, source, patch):
            raise self._conflict(request.id, source)
        logger.info('%s: %s -> %s by account %s', request.request_number, source, target, actor.id)
        self.notifier.status_changed(request, target, patch.get('rejection_reason'))
        return request

    def approve_with_signature(self, actor: policy.Actor, request_id: str, signature_png: bytes,
                               expected_status: Optional[str] = None) -> PurchaseRequest:
        """Stamp the signature, store it as signed_quotation and approve, all or nothing.

        Nothing is written to the request unless rendering and upload both succeed; the
        slot fill and the status change then land in one conditional update.
        """
        slot = PurchaseRequest.SLOT_SIGNED_QUOTATION
        target = PurchaseRequest.STATUS_APPROVED
        request = self.get_request(actor, request_id)
        self._expect(request, expected_status)
        source = request.status
        lifecycle.check_transition(request, actor, target, require_quotation=self.require_quotation)
        documents.assert_slot_open(request, slot)

        quotation_pdf = None
        if documents.is_filled(request, PurchaseRequest.SLOT_QUOTATION):
            try:
                quotation_pdf = self.store.fetch(request.quotation_url)
            except NotFoundError as exc:
                raise UpstreamError('Quotation document could not be retrieved') from exc
        signed_pdf = signature.render_signed_document(signature_png, quotation_pdf)
        filename = documents.SIGNED_QUOTATION_FILENAME if quotation_pdf is not None else documents.SIGNED_DOCUMENT_FILENAME
        url = self.store.store(signed_pdf, documents.storage_path(request.id, slot, filename))

        patch = lifecycle.plan_transition(request, actor, target, require_quotation=self.require_quotation)
        patch.update(documents.slot_patch(slot, filename, url))
        if not self.repository.update(request.id, source, patch, empty_slots=(slot,)):
            logger.warning('Signed approval of %s lost a race; stored %s is orphaned', request.request_number, url)
            fresh = self.repository.find(request.id)
            if fresh is not None and fresh.status == source and documents.is_filled(fresh, slot):
                raise SlotLockedError(slot)
            raise ConcurrentModificationError(source, fresh.status if fresh else None)
        logger.info('%s: %s -> %s with signature by account %s', request.request_number, source, target, actor.id)
        self.notifier.status_changed(request, target)
        return request

    # ---------- documents ---------- #

    def attach_document(self, actor: policy.Actor, request_id: str, slot: str, filename: str,
                        data: bytes) -> PurchaseRequest:
        documents.validate_slot(slot)
        request = self.get_request(actor, request_id)
        documents.assert_can_attach(actor, request, slot)
        documents.assert_slot_open(request, slot)
        name = documents.safe_filename(filename, tuple(self.settings['ALLOWED_DOCUMENT_EXTENSIONS']))
        if not data:
            raise ValidationError('file is empty')
        if name.lower().endswith('.pdf') and not data.startswith(b'%PDF'):
            raise ValidationError('file is not a PDF document')
        url = self.store.store(data, documents.storage_path(request.id, slot, name))
        patch = documents.slot_patch(slot, name, url)
        patch['updated_at'] = lifecycle.next_timestamp(request.updated_at)
        if not self.repository.update(request.id, None, patch, empty_slots=(slot,)):
            raise SlotLockedError(slot)
        logger.info('Attached %s to %s as %s', name, request.request_number, slot)
        return request

    # ---------- admin ---------- #

    def delete_request(self, actor: policy.Actor, request_id: str) -> None:
        request = self.get_request(actor, request_id)
        if actor.role != 'admin':
            raise PermissionDeniedError('only admins may delete requests')
        self.repository.delete(request.id)
        logger.info('Deleted %s (%s) by account %s', request.request_number, request.id, actor.id)

    # ---------- helpers ---------- #

    @staticmethod
    def _expect(request: PurchaseRequest, expected_status: Optional[str]):
        if expected_status and request.status != expected_status:
            raise ConcurrentModificationError(expected_status, request.status)

    def _conflict(self, request_id: str, expected: str) -> ConcurrentModificationError:
        fresh = self.repository.find(request_id)
        logger.warning('Conditional update on %s failed, expected %s', request_id, expected)
        return ConcurrentModificationError(expected, fresh.status if fresh else None)


__all__ = ['RequestService']
