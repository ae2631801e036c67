from datetime import datetime, timezone
from decimal import Decimal
import random
import re
import pytest

from prflow.errors import ValidationError
from prflow.models.purchase_request import generate_request_number, recompute_total
from prflow.utils.validation import validate_items, validate_request_input, validate_status


def test_items_are_normalized():
    items = validate_items([
        {'name': ' Laptop ', 'quantity': 2, 'unit': 'pcs', 'estimated_price': 25000},
        {'name': 'Mouse', 'quantity': '3', 'estimatedPrice': '199.999'},
    ])
    assert items[0] == {'name': 'Laptop', 'quantity': 2, 'unit': 'pcs', 'estimated_price': Decimal('25000.00')}
    assert items[1]['quantity'] == 3
    assert items[1]['unit'] == ''
    assert items[1]['estimated_price'] == Decimal('200.00')


@pytest.mark.parametrize('raw', [
    None,
    [],
    'laptop',
    [{'name': '', 'quantity': 1, 'estimated_price': 1}],
    [{'name': 'X', 'quantity': 0, 'estimated_price': 1}],
    [{'name': 'X', 'quantity': -1, 'estimated_price': 1}],
    [{'name': 'X', 'quantity': 1.5, 'estimated_price': 1}],
    [{'name': 'X', 'quantity': True, 'estimated_price': 1}],
    [{'name': 'X', 'quantity': 1, 'estimated_price': -5}],
    [{'name': 'X', 'quantity': 1, 'estimated_price': 'abc'}],
    [{'name': 'X', 'quantity': 1}],
    [{'name': 'X', 'quantity': 1, 'estimated_price': 'NaN'}],
])
def test_bad_items_rejected(raw):
    with pytest.raises(ValidationError):
        validate_items(raw)


def test_request_input_requires_title():
    with pytest.raises(ValidationError) as exc:
        validate_request_input({'title': '  ', 'items': [{'name': 'X', 'quantity': 1, 'estimated_price': 1}]})
    assert 'title' in exc.value.detail
    fields = validate_request_input({
        'title': 'Printer', 'requesterName': 'Somchai',
        'items': [{'name': 'Printer', 'quantity': 1, 'estimated_price': 4500}],
    })
    assert fields['requester_name'] == 'Somchai'
    assert fields['department'] == ''


def test_total_is_sum_of_lines():
    items = validate_items([
        {'name': 'Laptop', 'quantity': 2, 'estimated_price': 25000},
        {'name': 'Dock', 'quantity': 3, 'estimated_price': '1250.50'},
    ])
    assert recompute_total(items) == Decimal('53751.50')
    assert recompute_total([]) == Decimal('0.00')


def test_request_number_format():
    now = datetime(2026, 2, 14, tzinfo=timezone.utc)
    number = generate_request_number(now, random.Random(7))
    assert re.fullmatch(r'PR-2602-\d{4}', number)
    assert generate_request_number(now, random.Random(7)) == number


def test_validate_status():
    assert validate_status('pending', ['pending']) == 'pending'
    with pytest.raises(ValidationError):
        validate_status('archived', ['pending'])
