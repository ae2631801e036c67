from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set
from flask_jwt_extended import get_jwt, get_jwt_identity

from prflow.errors import NotFoundError, InvalidTransitionError
from prflow.models.purchase_request import PurchaseRequest
from prflow.services import lifecycle

# Roles that see every request; anything else only sees its own
VIEW_ALL_ROLES = frozenset({'approver', 'admin'})


@dataclass(frozen=True)
class Actor:
    id: int
    role: str
    perms: Set[str] = field(default_factory=set)

    @property
    def sees_all(self) -> bool:
        return self.role in VIEW_ALL_ROLES


def current_actor() -> Actor:
    claims = get_jwt()
    return Actor(id=int(get_jwt_identity()), role=claims.get('role', ''), perms=set(claims.get('perms', [])))


def current_permissions() -> Set[str]:
    claims = get_jwt()
    return set(claims.get('perms', []))


def has_permissions(*codes: str) -> bool:
    perms = current_permissions()
    return all(c in perms for c in codes)


def can_view(actor: Actor, request: PurchaseRequest) -> bool:
    return actor.sees_all or request.created_by == actor.id


def visible_requests(all_requests: Iterable[PurchaseRequest], actor: Actor) -> List[PurchaseRequest]:
    return [r for r in all_requests if can_view(actor, r)]


def scope_query(query, actor: Actor):
    """Same rule as visible_requests, pushed down into SQL."""
    if actor.sees_all:
        return query
    return query.filter(PurchaseRequest.created_by == actor.id)


def creator_filter(actor: Actor) -> Optional[int]:
    return None if actor.sees_all else actor.id


def assert_visible(actor: Actor, request: Optional[PurchaseRequest]) -> PurchaseRequest:
    # Unknown and not-yours look identical to the caller
    if request is None or not can_view(actor, request):
        raise NotFoundError()
    return request


def can_act(actor: Actor, request: PurchaseRequest, to_status: str) -> bool:
    """Role column of the transition table; fails closed when no rule matches."""
    if not can_view(actor, request):
        return False
    try:
        rule = lifecycle.rule_for(request.status, to_status)
    except InvalidTransitionError:
        return False
    return lifecycle.unmet_role(rule, actor, request) is None


def can_edit_items(actor: Actor, request: PurchaseRequest) -> bool:
    if request.status != PurchaseRequest.STATUS_PENDING:
        return False
    return actor.role == 'admin' or request.created_by == actor.id
