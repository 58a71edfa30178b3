"""
Unit tests for purchase/sale line and document totals.
"""

import pytest
from decimal import Decimal

from backoffice.exceptions import InvalidInputError
from backoffice.services.purchase_service import (
    calculate_item_totals, calculate_purchase_totals, payment_status_for
)


class TestItemTotals:

    def test_line_with_tax(self):
        """10 x 100 at 21% -> subtotal 1000, tax 210, total 1210."""
        line = calculate_item_totals({'quantity': 10, 'unit_price': '100', 'tax_rate': 21})
        assert line['subtotal'] == Decimal('1000.00')
        assert line['tax_amount'] == Decimal('210.00')
        assert line['line_total'] == Decimal('1210.00')

    def test_line_discount_before_tax(self):
        line = calculate_item_totals({
            'quantity': 3, 'unit_price': '33.33', 'discount_percent': 10, 'tax_rate': Decimal('10.5')
        })
        # gross 99.99, discount 10.00 (9.999 rounded), subtotal 89.99
        assert line['discount_amount'] == Decimal('10.00')
        assert line['subtotal'] == Decimal('89.99')
        assert line['tax_amount'] == Decimal('9.45')
        assert line['line_total'] == Decimal('99.44')

    @pytest.mark.parametrize('item', [
        {'quantity': 0, 'unit_price': 10},
        {'quantity': -1, 'unit_price': 10},
        {'quantity': 1, 'unit_price': -10},
        {'quantity': 1, 'unit_price': 10, 'discount_percent': 101},
        {'quantity': 1, 'unit_price': 10, 'tax_rate': -21},
        {'quantity': 'x', 'unit_price': 10},
    ])
    def test_invalid_lines(self, item):
        with pytest.raises(InvalidInputError):
            calculate_item_totals(item)


class TestDocumentTotals:

    def test_totals_add_up(self):
        lines = [
            calculate_item_totals({'quantity': 10, 'unit_price': 100, 'tax_rate': 21}),
            calculate_item_totals({'quantity': 1, 'unit_price': 50}),
        ]
        totals = calculate_purchase_totals(lines)
        assert totals['subtotal'] == Decimal('1050.00')
        assert totals['tax_amount'] == Decimal('210.00')
        assert totals['total_amount'] == Decimal('1260.00')
        assert totals['total_amount'] == totals['subtotal'] + totals['tax_amount']

    def test_document_discount(self):
        lines = [calculate_item_totals({'quantity': 1, 'unit_price': 200})]
        totals = calculate_purchase_totals(lines, discount_percent=5)
        assert totals['discount_amount'] == Decimal('10.00')
        assert totals['total_amount'] == Decimal('190.00')

    def test_invalid_document_discount(self):
        with pytest.raises(InvalidInputError):
            calculate_purchase_totals([], discount_percent=-1)


class TestPaymentStatus:

    @pytest.mark.parametrize('paid,total,expected', [
        ('0', '1210', 'pending'),
        ('605', '1210', 'partial'),
        ('1210', '1210', 'paid'),
        ('0', '0', 'pending'),
    ])
    def test_payment_status(self, paid, total, expected):
        assert payment_status_for(Decimal(paid), Decimal(total)) == expected
