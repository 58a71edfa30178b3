"""
Unit tests for formatting and date helpers.
"""

import pytest
from datetime import datetime, date, timezone, timedelta
from decimal import Decimal

from backoffice.utils.formatters import num_ar, money_ar_2, datetime_ar
from backoffice.utils import time_utils
from backoffice.utils.time_utils import parse_datetime, posting_datetime, to_naive
from backoffice.exceptions import InsufficientStockError, InvalidInputError


class TestNumAr:

    def test_thousands_and_decimals(self):
        assert num_ar(1500) == '1.500'
        assert num_ar(Decimal('1500.50')) == '1.500,5'
        assert num_ar(Decimal('8.000')) == '8'
        assert num_ar(-1234567) == '-1.234.567'

    def test_empty_values(self):
        assert num_ar(None) == '-'
        assert num_ar('abc') == '-'
        assert num_ar(0) == '0'


class TestMoneyAr2:

    def test_two_decimals(self):
        assert money_ar_2(Decimal('1210')) == '1.210,00'
        assert money_ar_2('-605.5') == '-605,50'
        assert money_ar_2(None) == '-'


class TestDatetimeAr:

    def test_format(self):
        value = datetime(2024, 3, 5, 14, 7)
        assert datetime_ar(value) == '05/03/2024 14:07'
        assert datetime_ar(value, with_time=False) == '05/03/2024'
        assert datetime_ar(None) == '-'


class TestParseDatetime:

    def test_date_bounds(self):
        assert parse_datetime('2024-03-05') == datetime(2024, 3, 5, 0, 0)
        end = parse_datetime(date(2024, 3, 5), end_of_day=True)
        assert (end.year, end.month, end.day, end.hour, end.minute) == (2024, 3, 5, 23, 59)

    def test_empty(self):
        assert parse_datetime(None) is None
        assert parse_datetime('  ') is None

    def test_naive_datetime_untouched(self):
        value = datetime(2024, 3, 5, 10, 30)
        assert parse_datetime(value) == value
        assert parse_datetime('2024-03-05T10:30:00') == value

    def test_aware_values_become_naive(self):
        aware = datetime(2024, 3, 5, 10, 30, tzinfo=timezone(timedelta(hours=-3)))
        naive = to_naive(aware)
        assert naive.tzinfo is None
        assert parse_datetime('2024-03-05T13:30:00Z').tzinfo is None

    @pytest.mark.parametrize('value', ['05/03/2024', '2024-13-01', 'ayer'])
    def test_invalid_string(self, value):
        with pytest.raises(InvalidInputError):
            parse_datetime(value)


class TestPostingDatetime:

    def test_none_is_now(self):
        before = datetime.now()
        assert before <= posting_datetime(None) <= datetime.now()

    def test_date_keeps_time_of_day(self, monkeypatch):
        monkeypatch.setattr(time_utils, 'now', lambda: datetime(2026, 1, 1, 15, 30))
        assert posting_datetime('2024-03-05') == datetime(2024, 3, 5, 15, 30)
        assert posting_datetime(date(2024, 3, 5)) == datetime(2024, 3, 5, 15, 30)

    def test_datetime_untouched(self):
        value = datetime(2024, 3, 5, 10, 30)
        assert posting_datetime(value) == value


class TestInsufficientStockMessage:

    def test_message_uses_local_number_format(self):
        error = InsufficientStockError('Tornillo', Decimal('1500'), Decimal('8.000'), 'Central')
        assert error.status_code == 409
        assert error.message == 'Stock insuficiente para Tornillo: se requieren 1.500, disponible 8 en Central'
        assert error.to_dict()['available'] == '8.000'
