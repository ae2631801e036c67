from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional
import random
import uuid

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, Numeric, ForeignKey, DateTime, UniqueConstraint

from .account import Base

PRICE_QUANT = Decimal('0.01')


def _new_id() -> str:
    return uuid.uuid4().hex


def generate_request_number(now: datetime, rng: Optional[random.Random] = None) -> str:
    """Display number ``PR-YYMM-NNNN``; the suffix is random, so collisions are possible."""
    rng = rng or random
    return f"PR-{now.strftime('%y%m')}-{rng.randrange(10000):04d}"


def recompute_total(items: Iterable) -> Decimal:
    """Sum of quantity * estimated_price over items (objects or dicts)."""
    total = Decimal('0')
    for item in items:
        if isinstance(item, dict):
            qty, price = item['quantity'], item['estimated_price']
        else:
            qty, price = item.quantity, item.estimated_price
        total += Decimal(qty) * Decimal(str(price))
    return total.quantize(PRICE_QUANT)


class PurchaseRequest(Base):
    __tablename__ = 'purchase_requests'
    # Status constants
    STATUS_PENDING = 'pending'
    STATUS_APPROVED = 'approved'
    STATUS_REJECTED = 'rejected'
    STATUS_ORDERED = 'ordered'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    ALL_STATUSES = (
        STATUS_PENDING,
        STATUS_APPROVED,
        STATUS_REJECTED,
        STATUS_ORDERED,
        STATUS_COMPLETED,
        STATUS_CANCELLED,
    )

    # Document slots. One set covers both deployment flavours: signed approval fills
    # signed_quotation, invoicing fills tax_invoice. Neither slot stands in for the other.
    SLOT_QUOTATION = 'quotation'
    SLOT_SIGNED_QUOTATION = 'signed_quotation'
    SLOT_TAX_INVOICE = 'tax_invoice'
    ALL_SLOTS = (SLOT_QUOTATION, SLOT_SIGNED_QUOTATION, SLOT_TAX_INVOICE)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    request_number: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default='')
    department: Mapped[str] = mapped_column(String(128), nullable=False, default='', index=True)
    requester_name: Mapped[str] = mapped_column(String(128), nullable=False, default='')
    # Weak reference: no foreign key so accounts can change or disappear
    created_by: Mapped[Optional[int]] = mapped_column(Integer, index=True, nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0'))
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_PENDING, index=True)

    quotation_name: Mapped[Optional[str]] = mapped_column(String(255))
    quotation_url: Mapped[Optional[str]] = mapped_column(String(1024))
    signed_quotation_name: Mapped[Optional[str]] = mapped_column(String(255))
    signed_quotation_url: Mapped[Optional[str]] = mapped_column(String(1024))
    tax_invoice_name: Mapped[Optional[str]] = mapped_column(String(255))
    tax_invoice_url: Mapped[Optional[str]] = mapped_column(String(1024))

    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    ordered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    items: Mapped[List['RequestItem']] = relationship(
        'RequestItem',
        back_populates='request',
        cascade='all, delete-orphan',
        order_by='RequestItem.position',
    )

    __table_args__ = (UniqueConstraint('request_number', name='uq_purchase_requests_number'),)

    def recompute_total(self) -> Decimal:
        self.total_amount = recompute_total(self.items)
        return self.total_amount

    def document(self, slot: str):
        """Return (name, url) for a slot, or None while it is empty."""
        url = getattr(self, f'{slot}_url')
        if not url:
            return None
        return getattr(self, f'{slot}_name'), url


class RequestItem(Base):
    __tablename__ = 'request_items'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    request_id: Mapped[str] = mapped_column(ForeignKey('purchase_requests.id', ondelete='CASCADE'), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit: Mapped[str] = mapped_column(String(32), nullable=False, default='')
    estimated_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    request = relationship('PurchaseRequest', back_populates='items')
