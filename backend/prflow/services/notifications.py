"""Best-effort e-mail notifications.

Sinks may raise; the dispatcher never lets that reach the workflow. A failed
notification is logged with its traceback and dropped - no retry, no surfacing.
"""
from __future__ import annotations
import logging
import smtplib
from email.message import EmailMessage
from typing import Any, Mapping, Protocol, Sequence

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def notify(self, recipients: Sequence[str], subject: str, body: str) -> None: ...


class LoggingNotificationSink:
    """Default sink: writes the message to the log instead of sending it."""

    def notify(self, recipients, subject, body):
        logger.info('[EMAIL] To %s | Subject: %s', ', '.join(recipients), subject)
        logger.debug('[EMAIL] Body:\n%s', body)


class SmtpNotificationSink:
    def __init__(self, host: str, port: int, sender: str, timeout: float = 10.0):
        self.host = host
        self.port = port
        self.sender = sender
        self.timeout = timeout

    def notify(self, recipients, subject, body):
        msg = EmailMessage()
        msg['From'] = self.sender
        msg['To'] = ', '.join(recipients)
        msg['Subject'] = subject
        msg.set_content(body)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.send_message(msg)


def build_notification_sink(config: Mapping[str, Any]) -> NotificationSink:
    backend = (config.get('NOTIFY_BACKEND') or 'log').lower()
    if backend == 'smtp':
        return SmtpNotificationSink(
            config['SMTP_HOST'], int(config['SMTP_PORT']), config['SMTP_SENDER'],
            timeout=float(config.get('NOTIFY_TIMEOUT_SECONDS', 10)),
        )
    return LoggingNotificationSink()


class NotificationDispatcher:
    def __init__(self, sink: NotificationSink, directory, base_url: str = ''):
        self.sink = sink
        self.directory = directory
        self.base_url = base_url.rstrip('/')

    def _link(self, request) -> str:
        return f'{self.base_url}/requests/{request.id}'

    def _send(self, recipients: Sequence[str], subject: str, body: str) -> bool:
        recipients = [r for r in recipients if r]
        if not recipients:
            return False
        try:
            self.sink.notify(recipients, subject, body)
        except Exception:
            logger.exception('Notification "%s" to %s failed', subject, recipients)
            return False
        return True

    def request_created(self, request) -> bool:
        try:
            reviewers = self.directory.list_by_role('approver') + self.directory.list_by_role('admin')
        except Exception:
            logger.exception('Could not resolve reviewers for %s', request.request_number)
            return False
        subject = f'[New Request] {request.request_number}: {request.title}'
        body = (
            'A new purchase request is waiting for review.\n\n'
            f'Number: {request.request_number}\n'
            f'Title: {request.title}\n'
            f'Requester: {request.requester_name}\n'
            f'Department: {request.department}\n'
            f'Total: {request.total_amount:,.2f}\n\n'
            f'Review it here: {self._link(request)}\n'
        )
        return self._send(sorted({a.email for a in reviewers}), subject, body)

    def status_changed(self, request, status: str, reason: str = None) -> bool:
        try:
            creator = self.directory.resolve(request.created_by) if request.created_by is not None else None
        except Exception:
            logger.exception('Could not resolve requester for %s', request.request_number)
            return False
        if creator is None:
            return False
        subject = f'[Update] {request.request_number}: status changed to {status}'
        body = (
            f'Dear {request.requester_name},\n\n'
            f'Your purchase request {request.request_number} is now {status}.\n'
        )
        if reason:
            body += f'\nReason: {reason}\n'
        body += f'\nDetails: {self._link(request)}\n'
        return self._send([creator.email], subject, body)


__all__ = [
    'NotificationSink', 'LoggingNotificationSink', 'SmtpNotificationSink',
    'build_notification_sink', 'NotificationDispatcher',
]
