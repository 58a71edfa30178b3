"""
Unit tests for the running balance arithmetic.
"""

import pytest
from decimal import Decimal
from types import SimpleNamespace

from backoffice.exceptions import InvalidInputError
from backoffice.models import MovementNature, StockMovementType
from backoffice.services.balance_calculator import (
    to_decimal, money, coerce_enum, next_balance, next_quantity,
    replay_balances, replay_quantities
)


class TestNextBalance:
    """DEBIT raises the balance, CREDIT lowers it."""

    def test_debit_adds(self):
        assert next_balance(Decimal('0'), MovementNature.DEBIT, Decimal('1000')) == Decimal('1000')

    def test_credit_subtracts(self):
        assert next_balance(Decimal('1000'), MovementNature.CREDIT, Decimal('300')) == Decimal('700')

    def test_credit_can_go_negative(self):
        """Overpaid customers carry a negative (in favour) balance."""
        assert next_balance(Decimal('100'), 'CREDIT', Decimal('150')) == Decimal('-50')

    def test_nature_as_string(self):
        assert next_balance('10.50', 'DEBIT', '0.25') == Decimal('10.75')

    def test_unknown_nature(self):
        with pytest.raises(InvalidInputError):
            next_balance(Decimal('0'), 'SIDEWAYS', Decimal('1'))


class TestNextQuantity:
    """IN adds, OUT subtracts, TRANSFER has no direction."""

    def test_in_and_out(self):
        assert next_quantity(Decimal('10'), StockMovementType.IN, Decimal('2.5')) == Decimal('12.5')
        assert next_quantity(Decimal('10'), StockMovementType.OUT, Decimal('3')) == Decimal('7')

    def test_transfer_rejected(self):
        with pytest.raises(InvalidInputError):
            next_quantity(Decimal('10'), StockMovementType.TRANSFER, Decimal('1'))


class TestConversions:

    def test_money_rounds_half_up(self):
        assert money('2.675') == Decimal('2.68')
        assert money(Decimal('2.665')) == Decimal('2.67')
        assert money(None) == Decimal('0.00')

    def test_to_decimal_goes_through_str(self):
        assert to_decimal(0.1) == Decimal('0.1')

    def test_to_decimal_invalid(self):
        with pytest.raises(InvalidInputError) as exc:
            to_decimal('abc', 'Monto')
        assert 'Monto' in exc.value.message

    def test_coerce_enum(self):
        assert coerce_enum(MovementNature, 'DEBIT', 'Naturaleza') is MovementNature.DEBIT
        assert coerce_enum(MovementNature, MovementNature.CREDIT, 'Naturaleza') is MovementNature.CREDIT
        with pytest.raises(InvalidInputError):
            coerce_enum(MovementNature, 'debit', 'Naturaleza')


class TestReplay:
    """Replaying movements from zero reproduces the stored balances."""

    def test_replay_balances(self):
        movements = [
            SimpleNamespace(nature=MovementNature.DEBIT, amount=Decimal('1000')),
            SimpleNamespace(nature=MovementNature.CREDIT, amount=Decimal('300')),
            SimpleNamespace(nature=MovementNature.DEBIT, amount=Decimal('50')),
        ]
        balances = [balance for _, balance in replay_balances(movements)]
        assert balances == [Decimal('1000'), Decimal('700'), Decimal('750')]

    def test_replay_balances_with_opening(self):
        movements = [SimpleNamespace(nature=MovementNature.CREDIT, amount=Decimal('100'))]
        assert [b for _, b in replay_balances(movements, opening=Decimal('40'))] == [Decimal('-60')]

    def test_replay_quantities_skips_legacy_transfer(self):
        movements = [
            SimpleNamespace(movement_type=StockMovementType.IN, quantity=Decimal('10')),
            SimpleNamespace(movement_type=StockMovementType.TRANSFER, quantity=Decimal('4')),
            SimpleNamespace(movement_type=StockMovementType.OUT, quantity=Decimal('3')),
        ]
        quantities = [q for _, q in replay_quantities(movements)]
        assert quantities == [Decimal('10'), Decimal('10'), Decimal('7')]

    def test_replay_empty(self):
        assert list(replay_balances([])) == []
