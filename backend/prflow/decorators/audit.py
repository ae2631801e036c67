"""Audit logging decorator for route handlers.

Usage:

@audit_log('PR.APPROVE', entity='PurchaseRequest', entity_id_key='id', meta_keys=['status'])
def approve(request_id):
    ... return {'id': pr.id, 'status': pr.status}, 200

@audit_log('ACCOUNT.UPDATE', entity='Account', entity_id_arg='account_id',
           diff_keys=['role', 'is_active'], pre_fetch=lambda args, kwargs: {...})
def update_account(account_id): ...

Parameters:
  action: audit action code
  entity: entity label
  entity_id_key: key in the returned JSON whose value becomes entity_id
  entity_id_arg: view argument used when entity_id_key is absent from the payload
  meta_keys: keys projected from the returned JSON into meta
  meta_builder: callable (data, rv, args, kwargs) -> dict; overrides meta_keys
  diff_keys / pre_fetch: pre_fetch snapshots the entity before the call; changed
    diff_keys are recorded under meta['changes']

Views return a dict, (dict, status) or (dict, status, headers); only the dict is
inspected and the original return value is passed through. Nothing is recorded when
the view raises. Audit failures are logged and never change the response.
"""
from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Callable, Iterable, Optional, Dict

from flask import Response

from prflow import get_db
from prflow.services.audit import add_audit

logger = logging.getLogger(__name__)


def _extract_payload(rv: Any):
    if isinstance(rv, tuple) and rv:
        rv = rv[0]
    if isinstance(rv, Response):
        return rv.get_json(silent=True)
    return rv


def _changes(before: Dict[str, Any], after: Dict[str, Any], keys: Iterable[str]) -> Dict[str, Any]:
    changes = {}
    for k in keys:
        if k in before and k in after and before.get(k) != after.get(k):
            changes[k] = {'before': before.get(k), 'after': after.get(k)}
    return changes


def audit_log(
    action: str,
    *,
    entity: Optional[str] = None,
    entity_id_key: Optional[str] = None,
    entity_id_arg: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
    meta_builder: Optional[Callable[[dict, Any, tuple, dict], dict]] = None,
    commit: bool = True,
    diff_keys: Optional[Iterable[str]] = None,
    pre_fetch: Optional[Callable[[tuple, dict], Dict[str, Any]]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            before = pre_fetch(args, kwargs) if diff_keys and pre_fetch else None
            rv = fn(*args, **kwargs)
            try:
                data = _extract_payload(rv)
                if not isinstance(data, dict):
                    data = {}
                entity_id = data.get(entity_id_key) if entity_id_key else None
                if entity_id is None and entity_id_arg:
                    entity_id = kwargs.get(entity_id_arg)
                meta = None
                if meta_builder:
                    meta = meta_builder(data, rv, args, kwargs)
                elif meta_keys:
                    meta = {k: data.get(k) for k in meta_keys if k in data}
                if diff_keys and isinstance(before, dict):
                    changes = _changes(before, data, diff_keys)
                    if changes:
                        meta = dict(meta or {})
                        meta['changes'] = changes
                add_audit(action, entity, entity_id, meta)
                if commit:
                    get_db().commit()
            except Exception:
                logger.exception('Audit entry %s could not be written', action)
                get_db().rollback()
            return rv
        return wrapper
    return outer
