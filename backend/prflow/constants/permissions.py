"""Central enum-like definitions to avoid typos in permission strings.
Extend cautiously; never rename codes silently - tokens already issued carry the old codes.
Transition rights are not listed here: the lifecycle transition table owns them.
"""
from __future__ import annotations
from typing import List, Dict

SERVICES = ['PR', 'ADMIN']

SERVICE_ACTIONS = {
    'PR': ['READ', 'CREATE', 'EXPORT', 'DELETE'],
    'ADMIN': ['ACCOUNT.MANAGE', 'AUDIT.READ'],
}


def build_all_permission_codes() -> List[str]:
    codes: List[str] = []
    for svc, actions in SERVICE_ACTIONS.items():
        for act in actions:
            codes.append(f"{svc}.{act}")
    return codes

ALL_PERMISSION_CODES = build_all_permission_codes()

ROLE_PRESETS: Dict[str, List[str]] = {
    'user': ['PR.READ', 'PR.CREATE'],
    'approver': ['PR.READ', 'PR.CREATE', 'PR.EXPORT'],
    'admin': ['*'],
}


def permissions_for_role(role: str) -> List[str]:
    perms = ROLE_PRESETS.get(role, [])
    if '*' in perms:
        return list(ALL_PERMISSION_CODES)
    return list(perms)
