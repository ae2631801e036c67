from __future__ import annotations
import base64
import binascii
from flask import Blueprint, Response, current_app, request
from sqlalchemy import func, or_

from prflow import get_db
from prflow.decorators.auth import require_permissions
from prflow.decorators.audit import audit_log
from prflow.errors import ConcurrentModificationError, ValidationError
from prflow.models.purchase_request import PurchaseRequest
from prflow.repositories.purchase_requests import SqlRequestRepository
from prflow.services import export, lifecycle
from prflow.services.directory import SqlAccountDirectory
from prflow.services.notifications import NotificationDispatcher
from prflow.services.policy import current_actor, scope_query
from prflow.services.requests import RequestService
from prflow.utils.filters import apply_filters
from prflow.utils.listing import (
    apply_pagination, as_utc, compute_item_etag, handle_conditional, iso, make_cached_item_response,
    make_cached_list_response, strip_body_for_head,
)
from prflow.utils.sorting import apply_multi_sort
from prflow.utils.validation import validate_reason, validate_status

requests_bp = Blueprint('requests', __name__)


def _service() -> RequestService:
    session = get_db()
    directory = SqlAccountDirectory(session)
    notifier = NotificationDispatcher(
        current_app.extensions['prflow.notification_sink'], directory, current_app.config['APP_BASE_URL'],
    )
    return RequestService(
        SqlRequestRepository(session), directory, current_app.extensions['prflow.document_store'],
        notifier, current_app.config,
    )


def _money(value) -> str:
    return f'{value:.2f}'


def _item_json(item):
    return {
        'id': item.id,
        'name': item.name,
        'quantity': item.quantity,
        'unit': item.unit,
        'estimated_price': _money(item.estimated_price),
        'line_total': _money(item.quantity * item.estimated_price),
    }


def _document_json(pr: PurchaseRequest, slot: str):
    doc = pr.document(slot)
    if doc is None:
        return None
    name, url = doc
    return {'name': name, 'url': url}


def _request_json(pr: PurchaseRequest, include_items: bool = True):
    body = {
        'id': pr.id,
        'request_number': pr.request_number,
        'title': pr.title,
        'description': pr.description,
        'department': pr.department,
        'requester_name': pr.requester_name,
        'created_by': pr.created_by,
        'total_amount': _money(pr.total_amount),
        'status': pr.status,
        'rejection_reason': pr.rejection_reason,
        'documents': {slot: _document_json(pr, slot) for slot in PurchaseRequest.ALL_SLOTS},
        'created_at': iso(pr.created_at),
        'updated_at': iso(pr.updated_at),
        'approved_at': iso(pr.approved_at),
        'ordered_at': iso(pr.ordered_at),
        'completed_at': iso(pr.completed_at),
        'cancelled_at': iso(pr.cancelled_at),
        'items_count': len(pr.items),
    }
    if include_items:
        body['items'] = [_item_json(i) for i in pr.items]
    return body


def _etag(pr: PurchaseRequest) -> str:
    return compute_item_etag(pr.id, pr.updated_at, pr.status)


def _payload() -> dict:
    return request.get_json(silent=True) or {}


def _expected_status(service: RequestService, actor, request_id: str):
    """State the caller claims to have read: expected_status, or an If-Match detail ETag."""
    expected = _payload().get('expected_status') or request.form.get('expected_status')
    if expected:
        validate_status(expected, PurchaseRequest.ALL_STATUSES, 'expected_status')
    if_match = request.headers.get('If-Match')
    if if_match and if_match.strip() != '*':
        current = service.get_request(actor, request_id)
        tags = {t.strip().replace('W/', '').strip('"') for t in if_match.split(',')}
        if _etag(current) not in tags:
            raise ConcurrentModificationError(expected, current.status)
        expected = expected or current.status
    return expected


def _prefetch_request(request_id: str):
    pr = get_db().get(PurchaseRequest, request_id)
    if pr is None:
        return None
    return {'status': pr.status, 'total_amount': _money(pr.total_amount), 'items_count': len(pr.items)}


# ---------- reads ---------- #

@requests_bp.route('', methods=['GET', 'HEAD'])
@require_permissions('PR.READ')
def list_requests():
    actor = current_actor()
    service = _service()
    q = scope_query(service.repository.query(), actor)
    filter_specs = {
        'status': {'op': lambda qu, v: qu.filter(PurchaseRequest.status == v),
                   'validate': lambda v: v in PurchaseRequest.ALL_STATUSES},
        'department': {'op': lambda qu, v: qu.filter(PurchaseRequest.department == v)},
        'q': {'op': lambda qu, v: qu.filter(or_(PurchaseRequest.title.ilike(f'%{v}%'),
                                                PurchaseRequest.request_number.ilike(f'%{v}%')))},
    }
    q = apply_filters(q, filter_specs, request.args)
    latest_ts = as_utc(q.with_entities(func.max(PurchaseRequest.updated_at)).scalar())
    allowed = {
        'created_at': PurchaseRequest.created_at,
        'updated_at': PurchaseRequest.updated_at,
        'total_amount': PurchaseRequest.total_amount,
        'request_number': PurchaseRequest.request_number,
        'status': PurchaseRequest.status,
        'title': PurchaseRequest.title,
    }
    q = apply_multi_sort(q, request.args.get('sort'), allowed, PurchaseRequest.id,
                         default=PurchaseRequest.created_at.desc())
    paged_q, total, limit, offset = apply_pagination(q)
    rows_json = [_request_json(r, include_items=False) for r in paged_q.all()]
    resp, etag = make_cached_list_response(rows_json, total, limit, offset, latest_ts)
    cond = handle_conditional(etag, latest_ts)
    if cond:
        return cond
    return strip_body_for_head(resp)


@requests_bp.get('/summary')
@require_permissions('PR.READ')
def summary():
    stats = _service().summary(current_actor())
    stats['total_amount'] = _money(stats['total_amount'])
    return stats


@requests_bp.get('/export.csv')
@require_permissions('PR.EXPORT')
def export_csv():
    period = export.parse_period(request.args)
    rows = export.filter_by_period(_service().list_visible(current_actor()), period)
    rows.sort(key=lambda r: (as_utc(r.created_at), r.request_number))
    return Response(
        export.render_csv(rows),
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename="{export.export_filename(period)}"'},
    )


@requests_bp.route('/<request_id>', methods=['GET', 'HEAD'])
@require_permissions('PR.READ')
def get_request(request_id: str):
    actor = current_actor()
    service = _service()
    pr = service.get_request(actor, request_id)
    etag = _etag(pr)
    cond = handle_conditional(etag, pr.updated_at)
    if cond:
        return cond
    body = _request_json(pr)
    body['actions'] = service.allowed_actions(actor, pr)
    return strip_body_for_head(make_cached_item_response(body, etag, pr.updated_at))


# ---------- writes ---------- #

@requests_bp.post('')
@require_permissions('PR.CREATE')
@audit_log('PR.CREATE', entity='PurchaseRequest', entity_id_key='id',
           meta_keys=['request_number', 'total_amount', 'items_count'])
def create_request():
    pr = _service().create_request(current_actor(), _payload())
    return _request_json(pr), 201


@requests_bp.put('/<request_id>/items')
@require_permissions('PR.CREATE')
@audit_log(
    'PR.ITEMS.UPDATE',
    entity='PurchaseRequest',
    entity_id_key='id',
    diff_keys=['total_amount', 'items_count'],
    pre_fetch=lambda a, kw: _prefetch_request(kw.get('request_id')),
)
def replace_items(request_id: str):
    actor = current_actor()
    service = _service()
    expected = _expected_status(service, actor, request_id)
    pr = service.update_items(actor, request_id, _payload().get('items'), expected_status=expected)
    return _request_json(pr)


def _transition(request_id: str, action: str):
    actor = current_actor()
    service = _service()
    expected = _expected_status(service, actor, request_id)
    target = lifecycle.ACTIONS[action]
    reason = _payload().get('reason')
    if reason is not None:
        reason = validate_reason(reason)
    pr = service.transition(actor, request_id, target, reason=reason, expected_status=expected)
    return _request_json(pr)


def _transition_audit(code: str, *meta):
    return audit_log(
        code,
        entity='PurchaseRequest',
        entity_id_key='id',
        diff_keys=['status'],
        pre_fetch=lambda a, kw: _prefetch_request(kw.get('request_id')),
        meta_keys=['request_number', *meta],
    )


@requests_bp.post('/<request_id>/approve')
@require_permissions('PR.READ')
@_transition_audit('PR.APPROVE')
def approve(request_id: str):
    return _transition(request_id, 'approve')


@requests_bp.post('/<request_id>/reject')
@require_permissions('PR.READ')
@_transition_audit('PR.REJECT', 'rejection_reason')
def reject(request_id: str):
    return _transition(request_id, 'reject')


@requests_bp.post('/<request_id>/cancel')
@require_permissions('PR.READ')
@_transition_audit('PR.CANCEL')
def cancel(request_id: str):
    return _transition(request_id, 'cancel')


@requests_bp.post('/<request_id>/order')
@require_permissions('PR.READ')
@_transition_audit('PR.ORDER')
def order(request_id: str):
    return _transition(request_id, 'order')


@requests_bp.post('/<request_id>/complete')
@require_permissions('PR.READ')
@_transition_audit('PR.COMPLETE')
def complete(request_id: str):
    return _transition(request_id, 'complete')


def _signature_bytes() -> bytes:
    """Multipart `signature` file, or a base64 / data-URL string in the JSON body."""
    upload = request.files.get('signature')
    if upload is not None:
        return upload.read()
    raw = _payload().get('signature')
    if not isinstance(raw, str) or not raw:
        raise ValidationError('signature image required')
    if raw.startswith('data:'):
        raw = raw.split(',', 1)[-1]
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError('signature is not valid base64')


@requests_bp.post('/<request_id>/approve-signed')
@require_permissions('PR.READ')
@_transition_audit('PR.APPROVE.SIGNED')
def approve_signed(request_id: str):
    actor = current_actor()
    service = _service()
    expected = _expected_status(service, actor, request_id)
    pr = service.approve_with_signature(actor, request_id, _signature_bytes(), expected_status=expected)
    return _request_json(pr)


@requests_bp.post('/<request_id>/documents/<slot>')
@require_permissions('PR.READ')
@audit_log('PR.DOCUMENT.ATTACH', entity='PurchaseRequest', entity_id_key='id',
           meta_builder=lambda data, rv, a, kw: {'slot': kw.get('slot'),
                                                 'document': (data.get('documents') or {}).get(kw.get('slot'))})
def attach_document(request_id: str, slot: str):
    upload = request.files.get('file')
    if upload is None:
        raise ValidationError('file required')
    pr = _service().attach_document(current_actor(), request_id, slot, upload.filename, upload.read())
    return _request_json(pr), 201


@requests_bp.delete('/<request_id>')
@require_permissions('PR.DELETE')
@audit_log('PR.DELETE', entity='PurchaseRequest', entity_id_arg='request_id')
def delete_request(request_id: str):
    _service().delete_request(current_actor(), request_id)
    return '', 204
