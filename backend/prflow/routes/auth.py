from __future__ import annotations
from flask import Blueprint, request, abort
from flask_jwt_extended import create_access_token, jwt_required, get_jwt, get_jwt_identity
from sqlalchemy import select

from prflow import get_db
from prflow.constants.permissions import permissions_for_role
from prflow.models.account import Account

auth_bp = Blueprint('auth', __name__)


def account_json(account: Account):
    return {
        'id': account.id,
        'name': account.name,
        'email': account.email,
        'department': account.department,
        'role': account.role,
        'is_active': bool(account.is_active),
    }


@auth_bp.post('/login')
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    password = data.get('password')
    if not email or not password:
        abort(400, description='email & password required')
    session = get_db()
    account = session.execute(select(Account).where(Account.email == email)).scalar_one_or_none()
    if not account or not account.verify_password(password):
        abort(401, description='invalid credentials')
    if not account.is_active:
        abort(403, description='account disabled')
    claims = {
        'role': account.role,
        'perms': permissions_for_role(account.role),
    }
    # JWT identity must be a string (flask-jwt-extended v4 requirement)
    token = create_access_token(identity=str(account.id), additional_claims=claims)
    return {'access_token': token, 'account': account_json(account)}


@auth_bp.get('/me')
@jwt_required()
def me():
    account = get_db().get(Account, int(get_jwt_identity()))
    if account is None or not account.is_active:
        abort(401, description='account no longer active')
    claims = get_jwt()
    body = account_json(account)
    body['perms'] = claims.get('perms', [])
    return body
