"""Reusable validation helpers for purchase request input.

Every helper raises ValidationError with a message naming the offending field, so the
API can hand it back verbatim.
"""
from __future__ import annotations
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional

from prflow.errors import ValidationError
from prflow.models.purchase_request import PRICE_QUANT


def validate_status(new_status: str, allowed: Iterable[str], field_name: str = 'status') -> str:
    """Validate that new_status is inside allowed.

    Returns the status (to enable inline usage) or raises ValidationError.
    """
    if new_status not in allowed:
        raise ValidationError(f"{field_name} invalid")
    return new_status


def _text(value: Any, field: str, required: bool = False, max_len: Optional[int] = None) -> str:
    if value is None:
        value = ''
    if not isinstance(value, str):
        raise ValidationError(f'{field} must be a string')
    value = value.strip()
    if required and not value:
        raise ValidationError(f'{field} required')
    if max_len and len(value) > max_len:
        raise ValidationError(f'{field} too long (max {max_len})')
    return value


def _quantity(value: Any, field: str) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be a positive integer')
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int) or value < 1:
        raise ValidationError(f'{field} must be a positive integer')
    return value


def _price(value: Any, field: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f'{field} must be a number')
    try:
        price = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f'{field} must be a number')
    if not price.is_finite() or price < 0:
        raise ValidationError(f'{field} must be zero or more')
    return price.quantize(PRICE_QUANT)


def validate_items(raw: Any) -> List[Dict[str, Any]]:
    """Normalize line items; accepts camelCase ``estimatedPrice`` as sent by the web client."""
    if not isinstance(raw, list) or not raw:
        raise ValidationError('at least one item required')
    items = []
    for idx, entry in enumerate(raw):
        if not isinstance(entry, Mapping):
            raise ValidationError(f'items[{idx}] must be an object')
        price_raw = entry.get('estimated_price', entry.get('estimatedPrice'))
        items.append({
            'name': _text(entry.get('name'), f'items[{idx}].name', required=True, max_len=255),
            'quantity': _quantity(entry.get('quantity'), f'items[{idx}].quantity'),
            'unit': _text(entry.get('unit'), f'items[{idx}].unit', max_len=32),
            'estimated_price': _price(price_raw, f'items[{idx}].estimated_price'),
        })
    return items


def validate_request_input(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate a create payload; returns the cleaned fields."""
    if not isinstance(data, Mapping):
        raise ValidationError('request body must be an object')
    return {
        'title': _text(data.get('title'), 'title', required=True, max_len=255),
        'description': _text(data.get('description'), 'description'),
        'department': _text(data.get('department'), 'department', max_len=128),
        'requester_name': _text(data.get('requester_name', data.get('requesterName')), 'requester_name', max_len=128),
        'items': validate_items(data.get('items')),
    }


def validate_reason(value: Any) -> str:
    return _text(value, 'reason')


__all__ = ['validate_status', 'validate_items', 'validate_request_input', 'validate_reason']
