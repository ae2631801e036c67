import csv
import io
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
import pytest

from prflow.errors import ValidationError
from prflow.services import export


def _request(number, created_at, items=(), **extra):
    fields = dict(
        request_number=number, title=f'Request {number}', department='IT', requester_name='Somchai',
        total_amount=sum((i.quantity * i.estimated_price for i in items), Decimal('0')),
        status='pending', created_at=created_at, approved_at=None, rejection_reason=None,
        items=list(items),
    )
    fields.update(extra)
    return SimpleNamespace(**fields)


def _item(name, qty, price):
    return SimpleNamespace(name=name, quantity=qty, unit='pcs', estimated_price=Decimal(price))


def test_parse_month_year_range():
    start, end = export.parse_period({'mode': 'month', 'year': '2024', 'month': '2'})
    assert start == datetime(2024, 2, 1, tzinfo=timezone.utc)
    assert (end.month, end.day) == (2, 29)
    start, end = export.parse_period({'mode': 'year', 'year': '2025'})
    assert (start.month, end.month, end.day) == (1, 12, 31)
    start, end = export.parse_period({'mode': 'range', 'from': '2025-11', 'to': '2026-01'})
    assert start == datetime(2025, 11, 1, tzinfo=timezone.utc)
    assert (end.year, end.month, end.day) == (2026, 1, 31)
    assert export.parse_period({}) is None


@pytest.mark.parametrize('params', [
    {'mode': 'week'},
    {'mode': 'month', 'year': '2025'},
    {'mode': 'month', 'year': '2025', 'month': '13'},
    {'mode': 'year', 'year': 'soon'},
    {'mode': 'range', 'from': '2025-03', 'to': '2025-01'},
    {'mode': 'range', 'from': '2025/01', 'to': '2025-02'},
])
def test_bad_periods(params):
    with pytest.raises(ValidationError):
        export.parse_period(params)


def test_filter_inclusive_months():
    rows = [
        _request('PR-1', datetime(2025, 10, 31, 23, 59, tzinfo=timezone.utc)),
        _request('PR-2', datetime(2025, 11, 1, 0, 0, tzinfo=timezone.utc)),
        _request('PR-3', datetime(2026, 1, 31, 23, 59, 59)),  # naive values are UTC
        _request('PR-4', datetime(2026, 2, 1, tzinfo=timezone.utc)),
    ]
    period = export.parse_period({'mode': 'range', 'from': '2025-11', 'to': '2026-01'})
    assert [r.request_number for r in export.filter_by_period(rows, period)] == ['PR-2', 'PR-3']
    assert len(export.filter_by_period(rows, None)) == 4


def test_render_csv_rows_and_item_details():
    created = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
    laptops = _request('PR-2603-0001', created, [_item('Laptop', 2, '25000.00')], title='Laptops, "fast"')
    rejected = _request('PR-2603-0002', created, [], status='rejected', rejection_reason='over budget')
    text = export.render_csv([laptops, rejected])
    assert text.startswith('\ufeff')
    rows = list(csv.reader(io.StringIO(text[1:])))
    assert rows[0] == export.HEADERS
    assert rows[1][:7] == ['PR-2603-0001', 'Laptops, "fast"', 'IT', 'Somchai', '1', '50000.00', 'pending']
    assert rows[1][7:] == ['2026-03-02', '-', '-']
    assert rows[2] == export.ITEM_HEADERS
    assert rows[3] == ['', 'Laptop', '2', 'pcs', '25000.00', '50000.00']
    assert rows[4][0] == 'PR-2603-0002'
    assert rows[4][-1] == 'over budget'
    assert len(rows) == 5


def test_export_filename():
    assert export.export_filename(None) == 'purchase-requests.csv'
    period = export.parse_period({'mode': 'year', 'year': '2025'})
    assert export.export_filename(period) == 'purchase-requests_2025-01_2025-12.csv'
