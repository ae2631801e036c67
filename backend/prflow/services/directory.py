from __future__ import annotations
from typing import List, Optional
from sqlalchemy import select

from prflow.models.account import Account


class SqlAccountDirectory:
    """Account lookups for the workflow; the workflow never writes accounts."""

    def __init__(self, session):
        self.session = session

    def resolve(self, account_id: int) -> Optional[Account]:
        if account_id is None:
            return None
        return self.session.get(Account, account_id)

    def list_by_role(self, role: str) -> List[Account]:
        stmt = select(Account).where(Account.role == role, Account.is_active.is_(True)).order_by(Account.id)
        return list(self.session.execute(stmt).scalars())
