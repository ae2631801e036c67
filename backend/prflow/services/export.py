"""CSV export of visible requests.

A pure projection: filter by created_at period, then one row per request followed by
its item detail rows. Output starts with a UTF-8 BOM so spreadsheet tools pick the
right encoding.
"""
from __future__ import annotations
import csv
import io
from calendar import monthrange
from datetime import date, datetime, timezone
from typing import Iterable, List, Mapping, Optional, Tuple

from prflow.errors import ValidationError
from prflow.utils.listing import as_utc

BOM = '\ufeff'
MODES = ('month', 'year', 'range')

HEADERS = [
    'Request No.', 'Title', 'Department', 'Requester', 'Items', 'Total', 'Status',
    'Created', 'Approved', 'Note',
]
ITEM_HEADERS = ['', 'Item', 'Quantity', 'Unit', 'Unit price', 'Line total']

Period = Tuple[datetime, datetime]


def _int(params: Mapping[str, str], key: str) -> int:
    raw = params.get(key)
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f'{key} must be an integer')


def _month(value: Optional[str], key: str) -> date:
    try:
        return datetime.strptime(value or '', '%Y-%m').date()
    except ValueError:
        raise ValidationError(f'{key} must be YYYY-MM')


def _start(d: date) -> datetime:
    return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)


def _month_end(year: int, month: int) -> datetime:
    return datetime(year, month, monthrange(year, month)[1], 23, 59, 59, 999999, tzinfo=timezone.utc)


def parse_period(params: Mapping[str, str]) -> Optional[Period]:
    """Inclusive (start, end) bounds from query params, or None for no filter."""
    mode = params.get('mode')
    if not mode:
        return None
    if mode not in MODES:
        raise ValidationError('mode must be month, year or range')
    if mode == 'month':
        year, month = _int(params, 'year'), _int(params, 'month')
        if not 1 <= month <= 12:
            raise ValidationError('month must be 1-12')
        return _start(date(year, month, 1)), _month_end(year, month)
    if mode == 'year':
        year = _int(params, 'year')
        return _start(date(year, 1, 1)), _month_end(year, 12)
    first, last = _month(params.get('from'), 'from'), _month(params.get('to'), 'to')
    if last < first:
        raise ValidationError('to must not be before from')
    return _start(first), _month_end(last.year, last.month)


def filter_by_period(requests: Iterable, period: Optional[Period]) -> List:
    if period is None:
        return list(requests)
    start, end = period
    return [r for r in requests if start <= as_utc(r.created_at) <= end]


def _date(dt: Optional[datetime]) -> str:
    return as_utc(dt).strftime('%Y-%m-%d') if dt else '-'


def _money(value) -> str:
    return f'{value:.2f}'


def render_csv(requests: Iterable) -> str:
    buf = io.StringIO()
    buf.write(BOM)
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator='\n')
    writer.writerow(HEADERS)
    for r in requests:
        writer.writerow([
            r.request_number,
            r.title,
            r.department,
            r.requester_name,
            len(r.items),
            _money(r.total_amount),
            r.status,
            _date(r.created_at),
            _date(r.approved_at),
            r.rejection_reason or '-',
        ])
        if r.items:
            writer.writerow(ITEM_HEADERS)
            for item in r.items:
                writer.writerow([
                    '',
                    item.name,
                    item.quantity,
                    item.unit,
                    _money(item.estimated_price),
                    _money(item.quantity * item.estimated_price),
                ])
    return buf.getvalue()


def export_filename(period: Optional[Period]) -> str:
    if period is None:
        return 'purchase-requests.csv'
    start, end = period
    return f"purchase-requests_{start.strftime('%Y-%m')}_{end.strftime('%Y-%m')}.csv"
