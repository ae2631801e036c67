from __future__ import annotations
from flask import Blueprint, request
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from prflow import get_db
from prflow.decorators.auth import require_permissions
from prflow.decorators.audit import audit_log
from prflow.errors import NotFoundError, ValidationError
from prflow.models.account import Account
from prflow.services.audit import audit_query
from prflow.routes.auth import account_json
from prflow.utils.filters import apply_filters
from prflow.utils.listing import (
    apply_pagination, as_utc, build_list_payload, handle_conditional, iso, make_cached_list_response,
    strip_body_for_head,
)
from prflow.utils.validation import validate_status

accounts_bp = Blueprint('accounts', __name__)

MIN_PASSWORD_LENGTH = 8


def _password(value) -> str:
    if not isinstance(value, str) or len(value) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f'password must be at least {MIN_PASSWORD_LENGTH} characters')
    return value


def _name(value, field: str) -> str:
    text = value.strip() if isinstance(value, str) else ''
    if not text:
        raise ValidationError(f'{field} required')
    return text


def _prefetch_account(account_id: int):
    account = get_db().get(Account, account_id)
    return account_json(account) if account else None


@accounts_bp.get('/accounts')
@require_permissions('ADMIN.ACCOUNT.MANAGE')
def list_accounts():
    q = get_db().query(Account)
    filter_specs = {
        'role': {'op': lambda qu, v: qu.filter(Account.role == v), 'validate': lambda v: v in Account.ALL_ROLES},
        'department': {'op': lambda qu, v: qu.filter(Account.department == v)},
        'q': {'op': lambda qu, v: qu.filter(Account.name.ilike(f'%{v}%') | Account.email.ilike(f'%{v}%'))},
    }
    q = apply_filters(q, filter_specs, request.args).order_by(Account.id)
    paged_q, total, limit, offset = apply_pagination(q)
    return build_list_payload([account_json(a) for a in paged_q.all()], total, limit, offset)


@accounts_bp.post('/accounts')
@require_permissions('ADMIN.ACCOUNT.MANAGE')
@audit_log('ACCOUNT.CREATE', entity='Account', entity_id_key='id', meta_keys=['email', 'role'])
def create_account():
    session = get_db()
    data = request.get_json(silent=True) or {}
    email = _name(data.get('email'), 'email').lower()
    if '@' not in email:
        raise ValidationError('email is not valid')
    if session.execute(select(Account.id).where(Account.email == email)).first():
        raise ValidationError('email already registered')
    account = Account(
        name=_name(data.get('name'), 'name'),
        email=email,
        department=(data.get('department') or '').strip(),
        role=validate_status(data.get('role') or Account.ROLE_USER, Account.ALL_ROLES, 'role'),
        is_active=True,
    )
    account.set_password(_password(data.get('password')))
    session.add(account)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ValidationError('email already registered')
    return account_json(account), 201


@accounts_bp.patch('/accounts/<int:account_id>')
@require_permissions('ADMIN.ACCOUNT.MANAGE')
@audit_log(
    'ACCOUNT.UPDATE',
    entity='Account',
    entity_id_key='id',
    diff_keys=['role', 'is_active', 'department', 'name'],
    pre_fetch=lambda a, kw: _prefetch_account(kw.get('account_id')),
)
def update_account(account_id: int):
    session = get_db()
    account = session.get(Account, account_id)
    if account is None:
        raise NotFoundError('Account not found')
    data = request.get_json(silent=True) or {}
    if 'role' in data:
        account.role = validate_status(data['role'], Account.ALL_ROLES, 'role')
    if 'active' in data:
        if not isinstance(data['active'], bool):
            raise ValidationError('active must be a boolean')
        account.is_active = data['active']
    if 'department' in data:
        account.department = (data['department'] or '').strip()
    if 'name' in data:
        account.name = _name(data['name'], 'name')
    if 'password' in data:
        account.set_password(_password(data['password']))
    session.commit()
    return account_json(account)


@accounts_bp.route('/audit/logs', methods=['GET', 'HEAD'])
@require_permissions('ADMIN.AUDIT.READ')
def list_audit_logs():
    actor = request.args.get('actor_account_id')
    if actor:
        try:
            actor = int(actor)
        except ValueError:
            raise ValidationError('actor_account_id must be int')
    q = audit_query(
        actor=actor or None,
        action=request.args.get('action'),
        entity=request.args.get('entity'),
        entity_id=request.args.get('entity_id'),
    )
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    data = [
        {
            'id': r.id,
            'actor_account_id': r.actor_account_id,
            'action': r.action,
            'entity': r.entity,
            'entity_id': r.entity_id,
            'meta': r.meta,
            'created_at': iso(r.created_at),
        } for r in rows
    ]
    # newest entry first, so its timestamp invalidates cached pages when logs arrive
    latest_ts = as_utc(rows[0].created_at) if rows else None
    resp, etag = make_cached_list_response(data, total, limit, offset, latest_ts)
    cond = handle_conditional(etag, latest_ts)
    if cond:
        return cond
    return strip_body_for_head(resp)
