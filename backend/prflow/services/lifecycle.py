"""Purchase request lifecycle.

pending -> approved -> ordered -> completed
pending -> rejected
pending -> cancelled

TRANSITIONS is the only place role rights for status changes are defined; the access
filter and the HTTP layer both consult it. Functions here are pure: they inspect a
request (anything exposing status, created_by and the slot url columns) and an actor
(id, role) and either raise InvalidTransitionError or return the field patch to write.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, FrozenSet, List, Optional

from prflow.errors import InvalidTransitionError
from prflow.models.purchase_request import PurchaseRequest as PR
from prflow.services import documents
from prflow.utils.fsm import TransitionValidator

MIN_TICK = timedelta(microseconds=1)


@dataclass(frozen=True)
class TransitionRule:
    source: str
    target: str
    roles: FrozenSet[str]
    # subset of roles that may only act on requests they created
    owner_roles: FrozenSet[str] = frozenset()
    requires_reason: bool = False
    stamp: Optional[str] = None
    action: str = ''


TRANSITIONS = (
    TransitionRule(PR.STATUS_PENDING, PR.STATUS_APPROVED, frozenset({'approver', 'admin'}),
                   stamp='approved_at', action='approve'),
    TransitionRule(PR.STATUS_PENDING, PR.STATUS_REJECTED, frozenset({'approver', 'admin'}),
                   requires_reason=True, action='reject'),
    TransitionRule(PR.STATUS_PENDING, PR.STATUS_CANCELLED, frozenset({'user', 'admin'}), frozenset({'user'}),
                   stamp='cancelled_at', action='cancel'),
    TransitionRule(PR.STATUS_APPROVED, PR.STATUS_ORDERED, frozenset({'user', 'admin'}), frozenset({'user'}),
                   stamp='ordered_at', action='order'),
    TransitionRule(PR.STATUS_ORDERED, PR.STATUS_COMPLETED, frozenset({'user', 'admin'}), frozenset({'user'}),
                   stamp='completed_at', action='complete'),
)

RULES: Dict[tuple, TransitionRule] = {(r.source, r.target): r for r in TRANSITIONS}
ACTIONS: Dict[str, str] = {r.action: r.target for r in TRANSITIONS}

REQUEST_FSM = TransitionValidator.from_edges(RULES.keys(), PR.ALL_STATUSES)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_timestamp(previous: Optional[datetime], now: Optional[datetime] = None) -> datetime:
    """Return ``now`` nudged past ``previous`` so updated_at strictly increases."""
    now = now or utcnow()
    if previous is None:
        return now
    if previous.tzinfo is None:
        previous = previous.replace(tzinfo=timezone.utc)
    if now <= previous:
        return previous + MIN_TICK
    return now


def rule_for(current: str, target: str) -> TransitionRule:
    REQUEST_FSM.assert_can_transition(current, target)
    return RULES[(current, target)]


def unmet_role(rule: TransitionRule, actor, request) -> Optional[str]:
    """'role' or 'ownership' when the actor may not fire rule on request, else None."""
    if actor is None or actor.role not in rule.roles:
        return 'role'
    if actor.role in rule.owner_roles and request.created_by != actor.id:
        return 'ownership'
    return None


def check_transition(request, actor, target: str, reason: Optional[str] = None,
                     require_quotation: bool = True) -> TransitionRule:
    current = request.status
    rule = rule_for(current, target)
    unmet = unmet_role(rule, actor, request)
    if unmet:
        raise InvalidTransitionError(current, target, unmet)
    slot = documents.required_document(target, require_quotation)
    if slot and not documents.is_filled(request, slot):
        raise InvalidTransitionError(current, target, f'document:{slot}')
    if rule.requires_reason and not (reason or '').strip():
        raise InvalidTransitionError(current, target, 'reason')
    return rule


def plan_transition(request, actor, target: str, reason: Optional[str] = None,
                    now: Optional[datetime] = None, require_quotation: bool = True) -> Dict[str, object]:
    """Validate and return the column patch for moving request to target.

    The patch never clears an earlier stage timestamp, so stamps accumulate.
    """
    rule = check_transition(request, actor, target, reason, require_quotation)
    stamp = next_timestamp(request.updated_at, now)
    patch: Dict[str, object] = {'status': rule.target, 'updated_at': stamp}
    if rule.stamp:
        patch[rule.stamp] = stamp
    if rule.requires_reason:
        patch['rejection_reason'] = reason.strip()
    return patch


def allowed_transitions(request, actor, require_quotation: bool = True) -> List[str]:
    """Targets the actor could move request to right now (reason-gated targets included)."""
    out = []
    for target in sorted(REQUEST_FSM.targets(request.status)):
        rule = RULES[(request.status, target)]
        if unmet_role(rule, actor, request):
            continue
        if not documents.is_transition_unblocked(request, target, require_quotation):
            continue
        out.append(target)
    return out


__all__ = [
    'TransitionRule', 'TRANSITIONS', 'RULES', 'ACTIONS', 'REQUEST_FSM', 'utcnow', 'next_timestamp',
    'rule_for', 'unmet_role', 'check_transition', 'plan_transition', 'allowed_transitions',
]
