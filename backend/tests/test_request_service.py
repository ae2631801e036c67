"""Service-level tests for races the HTTP layer cannot stage deterministically."""
from types import SimpleNamespace

import pytest
from flask import current_app
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import IntegrityError

from prflow import get_db
from prflow.errors import ConcurrentModificationError, SlotLockedError
from prflow.models.purchase_request import PurchaseRequest
from prflow.repositories.purchase_requests import SqlRequestRepository
from prflow.services import lifecycle
from prflow.services.directory import SqlAccountDirectory
from prflow.services.notifications import LoggingNotificationSink, NotificationDispatcher
from prflow.services.policy import Actor
from prflow.services.requests import RequestService
from tests.test_utils_seed import seed_trio
from tests.test_lifecycle_helpers import LAPTOPS, make_pdf, make_png


class RacingRepository(SqlRequestRepository):
    """Lets a competing write land between the service's read and its conditional update."""

    def __init__(self, session, competing_patch):
        super().__init__(session)
        self.competing_patch = competing_patch

    def update(self, request_id, expected_status, patch, empty_slots=()):
        if self.competing_patch is not None:
            competing, self.competing_patch = self.competing_patch, None
            assert super().update(request_id, None, competing)
        return super().update(request_id, expected_status, patch, empty_slots)


class StaleReadRepository(SqlRequestRepository):
    """Serves one snapshot taken before a competing upload, as a slower reader would see it."""

    def __init__(self, session, snapshot):
        super().__init__(session)
        self.snapshot = snapshot

    def find(self, request_id):
        if self.snapshot is not None:
            stale, self.snapshot = self.snapshot, None
            return stale
        return super().find(request_id)


def _snapshot(pr):
    return SimpleNamespace(**{attr.key: getattr(pr, attr.key) for attr in sa_inspect(PurchaseRequest).column_attrs})


@pytest.fixture()
def actors(app_context):
    user, approver, admin = seed_trio('svc')
    return Actor(user.id, user.role), Actor(approver.id, approver.role), Actor(admin.id, admin.role)


def _service(repository=None, sink=None):
    session = get_db()
    directory = SqlAccountDirectory(session)
    store = current_app.extensions['prflow.document_store']
    notifier = NotificationDispatcher(sink or LoggingNotificationSink(), directory)
    return RequestService(repository or SqlRequestRepository(session), directory, store, notifier)


def test_total_invariant(actors):
    user, _, _ = actors
    service = _service()
    pr = service.create_request(user, LAPTOPS)
    assert pr.total_amount == sum(i.quantity * i.estimated_price for i in pr.items)
    service.update_items(user, pr.id, [{'name': 'Cable', 'quantity': 7, 'estimated_price': '12.50'}])
    fresh = service.get_request(user, pr.id)
    assert str(fresh.total_amount) == '87.50'
    assert fresh.total_amount == sum(i.quantity * i.estimated_price for i in fresh.items)


def test_lost_race_raises_and_keeps_winner(actors):
    user, approver, _ = actors
    service = _service()
    pr = service.create_request(user, LAPTOPS)
    service.attach_document(user, pr.id, 'quotation', 'q.pdf', make_pdf())
    cancelled = {'status': 'cancelled', 'updated_at': lifecycle.utcnow()}
    racing = _service(RacingRepository(get_db(), cancelled))
    with pytest.raises(ConcurrentModificationError) as exc:
        racing.transition(approver, pr.id, 'approved', expected_status='pending')
    assert exc.value.expected == 'pending'
    assert exc.value.actual == 'cancelled'
    fresh = service.get_request(user, pr.id)
    assert fresh.status == 'cancelled'
    assert fresh.approved_at is None


def test_slot_race_keeps_first_document(actors):
    user, _, admin = actors
    service = _service()
    pr = service.create_request(user, LAPTOPS)
    before = _snapshot(service.get_request(user, pr.id))
    winner, loser = make_pdf() + b'%WINNER', make_pdf() + b'%LOSER'
    service.attach_document(admin, pr.id, 'quotation', 'q.pdf', winner)

    slow = _service(StaleReadRepository(get_db(), before))
    with pytest.raises(SlotLockedError):
        slow.attach_document(user, pr.id, 'quotation', 'q.pdf', loser)
    fresh = service.get_request(user, pr.id)
    assert fresh.quotation_name == 'q.pdf'
    assert current_app.extensions['prflow.document_store'].fetch(fresh.quotation_url) == winner


def test_signed_approval_race_keeps_first_document(actors):
    user, approver, admin = actors
    service = _service()
    pr = service.create_request(user, LAPTOPS)
    service.attach_document(user, pr.id, 'quotation', 'q.pdf', make_pdf())
    before = _snapshot(service.get_request(user, pr.id))
    winner = make_pdf(text='Signed elsewhere') + b'%WINNER'
    service.attach_document(admin, pr.id, 'signed_quotation', 'signed_quotation.pdf', winner)

    slow = _service(StaleReadRepository(get_db(), before))
    with pytest.raises(SlotLockedError):
        slow.approve_with_signature(approver, pr.id, make_png())
    fresh = service.get_request(user, pr.id)
    assert fresh.status == 'pending'
    assert current_app.extensions['prflow.document_store'].fetch(fresh.signed_quotation_url) == winner


def test_conditional_update_returns_false_on_stale_status(actors):
    user, _, _ = actors
    service = _service()
    pr = service.create_request(user, LAPTOPS)
    repo = SqlRequestRepository(get_db())
    assert repo.update(pr.id, 'pending', {'status': 'cancelled'}) is True
    assert repo.update(pr.id, 'pending', {'status': 'approved'}) is False
    assert repo.find(pr.id).status == 'cancelled'


def test_request_number_retry_on_collision(actors, monkeypatch):
    user, _, _ = actors
    service = _service()
    taken = service.create_request(user, LAPTOPS).request_number
    numbers = iter([taken, taken, 'PR-0001-0001'])
    monkeypatch.setattr('prflow.services.requests.generate_request_number', lambda now: next(numbers))
    pr = service.create_request(user, LAPTOPS)
    assert pr.request_number == 'PR-0001-0001'


def test_request_number_insert_collision_is_retried(actors, monkeypatch):
    user, _, _ = actors
    service = _service()
    calls = []
    real_insert = service.repository.insert

    def flaky_insert(request):
        calls.append(request.request_number)
        if len(calls) == 1:
            raise IntegrityError('INSERT', {}, Exception('UNIQUE constraint failed'))
        return real_insert(request)
    monkeypatch.setattr(service.repository, 'insert', flaky_insert)
    pr = service.create_request(user, LAPTOPS)
    assert len(calls) == 2
    assert pr.request_number == calls[1]


def test_notification_failure_does_not_block(actors):
    user, _, _ = actors

    class Broken:
        def notify(self, recipients, subject, body):
            raise OSError('mail server gone')
    pr = _service(sink=Broken()).create_request(user, LAPTOPS)
    assert pr.status == PurchaseRequest.STATUS_PENDING
