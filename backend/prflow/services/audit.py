from __future__ import annotations
import logging
from typing import Any, Dict, Optional
from flask_jwt_extended import get_jwt_identity, get_jwt

from prflow import get_db
from prflow.models.audit import AuditLog

logger = logging.getLogger(__name__)


def _claims() -> Dict[str, Any]:
    try:
        return get_jwt() or {}
    except RuntimeError:
        # outside a verified request (scripts, background work)
        return {}


def add_audit(action: str, entity: Optional[str] = None, entity_id: Optional[str] = None,
              meta: Optional[Dict[str, Any]] = None, actor_account_id: Optional[int] = None):
    """Stage an audit entry in the current DB session.

    Parameters:
      action: action code e.g. PR.APPROVE, PR.DOCUMENT.ATTACH, ACCOUNT.UPDATE
      entity: entity label (PurchaseRequest, Account)
      entity_id: primary key as string
      meta: JSON-safe dict (shallow copied)
      actor_account_id: explicit actor; defaults to the JWT identity
    """
    claims = _claims()
    actor = actor_account_id
    if actor is None and claims:
        ident = get_jwt_identity()
        actor = int(ident) if ident is not None else None
    log = AuditLog(
        actor_account_id=actor or 0,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        perms_snapshot={'perms': claims.get('perms', [])},
        meta=dict(meta or {}),
    )
    get_db().add(log)
    # caller owns the commit
    return log


def audit_query(actor: Optional[int] = None, action: Optional[str] = None,
                entity: Optional[str] = None, entity_id: Optional[str] = None):
    q = get_db().query(AuditLog)
    if actor is not None:
        q = q.filter(AuditLog.actor_account_id == actor)
    if action:
        q = q.filter(AuditLog.action == action)
    if entity:
        q = q.filter(AuditLog.entity == entity)
    if entity_id:
        q = q.filter(AuditLog.entity_id == str(entity_id))
    return q.order_by(AuditLog.id.desc())
