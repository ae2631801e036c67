from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy import select, update, delete

from prflow.models.purchase_request import PurchaseRequest, RequestItem


class SqlRequestRepository:
    """Persistence for purchase requests. Holds no business rules.

    Every mutating call commits on success and rolls back on conflict, so callers see
    either the whole write or none of it.
    """

    def __init__(self, session):
        self.session = session

    def insert(self, request: PurchaseRequest) -> str:
        self.session.add(request)
        self.session.commit()
        return request.id

    def rollback(self):
        self.session.rollback()

    def find(self, request_id: str) -> Optional[PurchaseRequest]:
        """Fresh read of a request (identity map values are overwritten)."""
        if not request_id:
            return None
        return self.session.get(PurchaseRequest, request_id, populate_existing=True)

    def query(self, creator: Optional[int] = None):
        q = self.session.query(PurchaseRequest)
        if creator is not None:
            q = q.filter(PurchaseRequest.created_by == creator)
        return q

    def list(self, creator: Optional[int] = None) -> List[PurchaseRequest]:
        return self.query(creator).order_by(PurchaseRequest.created_at.desc(), PurchaseRequest.id).all()

    def number_taken(self, request_number: str) -> bool:
        stmt = select(PurchaseRequest.id).where(PurchaseRequest.request_number == request_number)
        return self.session.execute(stmt).first() is not None

    def _conditional_update(self, request_id: str, expected_status: Optional[str], patch: Dict[str, Any],
                            empty_slots: Iterable[str] = ()) -> bool:
        stmt = update(PurchaseRequest).where(PurchaseRequest.id == request_id)
        if expected_status is not None:
            stmt = stmt.where(PurchaseRequest.status == expected_status)
        for slot in empty_slots:
            stmt = stmt.where(getattr(PurchaseRequest, f'{slot}_url').is_(None))
        stmt = stmt.values(**patch).execution_options(synchronize_session=False)
        return self.session.execute(stmt).rowcount == 1

    def _refresh(self, request_id: str):
        obj = self.session.get(PurchaseRequest, request_id)
        if obj is not None:
            self.session.refresh(obj)
        return obj

    def update(self, request_id: str, expected_status: Optional[str], patch: Dict[str, Any],
               empty_slots: Iterable[str] = ()) -> bool:
        """Compare-and-set write.

        Commits only if the row still has expected_status (None skips the check) and
        every slot in empty_slots is still empty. Returns False on conflict.
        """
        if not self._conditional_update(request_id, expected_status, patch, empty_slots):
            self.session.rollback()
            return False
        self.session.commit()
        self._refresh(request_id)
        return True

    def replace_items(self, request_id: str, expected_status: str, items: List[Dict[str, Any]],
                      patch: Dict[str, Any]) -> bool:
        """Swap the line items and write patch (total, updated_at) in one transaction."""
        if not self._conditional_update(request_id, expected_status, patch):
            self.session.rollback()
            return False
        self.session.execute(delete(RequestItem).where(RequestItem.request_id == request_id))
        for position, item in enumerate(items):
            self.session.add(RequestItem(request_id=request_id, position=position, **item))
        self.session.commit()
        obj = self.session.get(PurchaseRequest, request_id)
        if obj is not None:
            self.session.expire(obj, ['items'])
            self.session.refresh(obj)
        return True

    def delete(self, request_id: str) -> bool:
        obj = self.session.get(PurchaseRequest, request_id)
        if obj is None:
            return False
        self.session.delete(obj)
        self.session.commit()
        return True


__all__ = ['SqlRequestRepository']
