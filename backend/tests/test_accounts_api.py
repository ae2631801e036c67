import pytest
from prflow import get_db
from prflow.models.audit import AuditLog
from tests.test_utils_seed import ensure_account
from tests.test_lifecycle_helpers import headers_for


@pytest.fixture()
def admin_headers(app_context):
    return headers_for(ensure_account('acct_admin@example.com', 'admin'))


def test_create_list_and_update_account(client, admin_headers):
    resp = client.post('/admin/accounts', json={
        'name': 'New Approver', 'email': 'New.Approver@example.com', 'department': 'Finance',
        'role': 'approver', 'password': 'long-enough-pw',
    }, headers=admin_headers)
    assert resp.status_code == 201, resp.get_json()
    created = resp.get_json()
    assert created['email'] == 'new.approver@example.com'
    assert created['is_active'] is True

    listing = client.get('/admin/accounts?role=approver&q=New Approver', headers=admin_headers).get_json()
    assert [a['email'] for a in listing['data']] == ['new.approver@example.com']

    resp = client.patch(f"/admin/accounts/{created['id']}", json={'role': 'user', 'active': False},
                        headers=admin_headers)
    assert resp.status_code == 200
    assert resp.get_json()['role'] == 'user'
    assert resp.get_json()['is_active'] is False

    # deactivated accounts cannot log in any more
    login = client.post('/auth/login', json={'email': 'new.approver@example.com', 'password': 'long-enough-pw'})
    assert login.status_code == 403

    log = get_db().query(AuditLog).filter_by(action='ACCOUNT.UPDATE', entity_id=str(created['id'])).one()
    assert log.meta['changes']['role'] == {'before': 'approver', 'after': 'user'}
    assert log.meta['changes']['is_active'] == {'before': True, 'after': False}


def test_password_reset(client, admin_headers):
    acct = ensure_account('acct_reset@example.com', password='old-password')
    resp = client.patch(f'/admin/accounts/{acct.id}', json={'password': 'brand-new-pw'}, headers=admin_headers)
    assert resp.status_code == 200
    assert client.post('/auth/login', json={'email': 'acct_reset@example.com', 'password': 'brand-new-pw'}).status_code == 200
    assert client.post('/auth/login', json={'email': 'acct_reset@example.com', 'password': 'old-password'}).status_code == 401


@pytest.mark.parametrize('payload', [
    {'name': 'X', 'email': 'acct_x@example.com', 'password': 'short'},
    {'name': 'X', 'email': 'not-an-email', 'password': 'long-enough-pw'},
    {'name': '', 'email': 'acct_y@example.com', 'password': 'long-enough-pw'},
    {'name': 'X', 'email': 'acct_z@example.com', 'password': 'long-enough-pw', 'role': 'superuser'},
])
def test_invalid_account_payloads(client, admin_headers, payload):
    resp = client.post('/admin/accounts', json=payload, headers=admin_headers)
    assert resp.status_code == 400


def test_duplicate_email_rejected(client, admin_headers):
    ensure_account('acct_dup@example.com')
    resp = client.post('/admin/accounts', json={'name': 'Dup', 'email': 'acct_dup@example.com',
                                                'password': 'long-enough-pw'}, headers=admin_headers)
    assert resp.status_code == 400


def test_unknown_account(client, admin_headers):
    resp = client.patch('/admin/accounts/999999', json={'role': 'user'}, headers=admin_headers)
    assert resp.status_code == 404


def test_non_admins_cannot_manage_accounts(client, app_context):
    for role in ('user', 'approver'):
        headers = headers_for(ensure_account(f'acct_{role}@example.com', role))
        resp = client.get('/admin/accounts', headers=headers)
        assert resp.status_code == 403
        assert resp.get_json()['error']['code'] == 'permission_denied'


def test_audit_log_listing(client, admin_headers):
    created = client.post('/admin/accounts', json={'name': 'Audited', 'email': 'acct_audited@example.com',
                                                   'password': 'long-enough-pw'}, headers=admin_headers).get_json()
    resp = client.get(f"/admin/audit/logs?entity=Account&entity_id={created['id']}", headers=admin_headers)
    assert resp.status_code == 200
    body = resp.get_json()
    assert [r['action'] for r in body['data']] == ['ACCOUNT.CREATE']
    assert body['data'][0]['meta']['email'] == 'acct_audited@example.com'
    assert body['pagination']['total'] == 1

    etag = resp.headers['ETag']
    again = client.get(f"/admin/audit/logs?entity=Account&entity_id={created['id']}",
                       headers={**admin_headers, 'If-None-Match': etag})
    assert again.status_code == 304

    bad = client.get('/admin/audit/logs?actor_account_id=abc', headers=admin_headers)
    assert bad.status_code == 400


def test_audit_log_requires_admin(client, app_context):
    headers = headers_for(ensure_account('acct_audit_approver@example.com', 'approver'))
    assert client.get('/admin/audit/logs', headers=headers).status_code == 403
