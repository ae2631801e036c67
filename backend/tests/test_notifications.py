from decimal import Decimal
from types import SimpleNamespace

from prflow.services.notifications import (
    LoggingNotificationSink, NotificationDispatcher, SmtpNotificationSink, build_notification_sink,
)
from tests.test_lifecycle_helpers import RecordingNotificationSink


class FakeDirectory:
    def __init__(self, accounts):
        self.accounts = {a.id: a for a in accounts}

    def resolve(self, account_id):
        return self.accounts.get(account_id)

    def list_by_role(self, role):
        return [a for a in self.accounts.values() if a.role == role]


class BrokenSink:
    def notify(self, recipients, subject, body):
        raise ConnectionRefusedError('smtp down')


ACCOUNTS = [
    SimpleNamespace(id=1, role='user', email='somchai@example.com'),
    SimpleNamespace(id=2, role='approver', email='head@example.com'),
    SimpleNamespace(id=3, role='admin', email='it@example.com'),
]

REQUEST = SimpleNamespace(
    id='abc123', request_number='PR-2603-0042', title='Laptops', requester_name='Somchai',
    department='Accounting', total_amount=Decimal('50000.00'), created_by=1,
)


def test_creation_mails_reviewers():
    sink = RecordingNotificationSink()
    dispatcher = NotificationDispatcher(sink, FakeDirectory(ACCOUNTS), 'http://prflow.test/')
    assert dispatcher.request_created(REQUEST)
    [mail] = sink.sent
    assert mail['recipients'] == ['head@example.com', 'it@example.com']
    assert mail['subject'] == '[New Request] PR-2603-0042: Laptops'
    assert '50,000.00' in mail['body']
    assert 'http://prflow.test/requests/abc123' in mail['body']


def test_status_change_mails_creator_with_reason():
    sink = RecordingNotificationSink()
    dispatcher = NotificationDispatcher(sink, FakeDirectory(ACCOUNTS))
    assert dispatcher.status_changed(REQUEST, 'rejected', 'over budget')
    [mail] = sink.sent
    assert mail['recipients'] == ['somchai@example.com']
    assert mail['subject'] == '[Update] PR-2603-0042: status changed to rejected'
    assert 'Reason: over budget' in mail['body']


def test_unknown_creator_is_skipped():
    sink = RecordingNotificationSink()
    dispatcher = NotificationDispatcher(sink, FakeDirectory(ACCOUNTS))
    orphan = SimpleNamespace(**{**vars(REQUEST), 'created_by': 99})
    assert not dispatcher.status_changed(orphan, 'approved')
    assert sink.sent == []


def test_sink_failure_is_swallowed(caplog):
    dispatcher = NotificationDispatcher(BrokenSink(), FakeDirectory(ACCOUNTS))
    with caplog.at_level('ERROR'):
        assert dispatcher.request_created(REQUEST) is False
        assert dispatcher.status_changed(REQUEST, 'approved') is False
    assert 'failed' in caplog.text


def test_sink_from_config():
    assert isinstance(build_notification_sink({}), LoggingNotificationSink)
    smtp = build_notification_sink({'NOTIFY_BACKEND': 'smtp', 'SMTP_HOST': 'mail', 'SMTP_PORT': 2525,
                                    'SMTP_SENDER': 'it@example.com', 'NOTIFY_TIMEOUT_SECONDS': 3})
    assert isinstance(smtp, SmtpNotificationSink)
    assert (smtp.host, smtp.port, smtp.timeout) == ('mail', 2525, 3.0)


def test_logging_sink_only_logs(caplog):
    sink = LoggingNotificationSink()
    with caplog.at_level('INFO', logger='prflow.services.notifications'):
        sink.notify(['head@example.com'], '[New Request] PR-2603-0042: Laptops', 'body')
    assert '[New Request] PR-2603-0042' in caplog.text
    assert not hasattr(sink, 'sent')
