"""
Integration tests for warehouse stock, kardex and inventory reports.
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from backoffice.exceptions import InsufficientStockError, InvalidInputError, InvalidStateError, NotFoundError
from backoffice.models import StockMovement, StockMovementType, StockDocumentType, WarehouseStock
from backoffice.services.inventory_service import (
    create_warehouse, update_warehouse, delete_warehouse, get_warehouses,
    create_stock_movement, transfer_stock, get_product_stock, get_warehouse_stock,
    get_low_stock, get_stock_movements, get_stock_movement
)
from backoffice.services.inventory_report_service import (
    get_inventory_valuation, get_movements_summary, get_product_kardex, verify_kardex
)


def _receive(session, tenant, warehouse, product, quantity, unit_cost=None):
    return create_stock_movement(
        session, tenant.id, warehouse.id, product.id, StockMovementType.IN, quantity,
        unit_cost=unit_cost, document_type=StockDocumentType.MANUAL
    )


def _quantity(session, warehouse, product):
    stock = session.query(WarehouseStock).filter(
        WarehouseStock.warehouse_id == warehouse.id,
        WarehouseStock.product_id == product.id
    ).first()
    return stock.quantity if stock else None


class TestWarehouses:

    def test_first_warehouse_becomes_default(self, session, tenant1):
        first = create_warehouse(session, tenant1.id, {'code': '1', 'name': 'Central'})
        second = create_warehouse(session, tenant1.id, {'code': '2', 'name': 'Norte'})
        assert first.is_default is True
        assert second.is_default is False

        update_warehouse(session, tenant1.id, second.id, {'is_default': True})
        session.refresh(first)
        assert first.is_default is False

    def test_duplicate_code_rejected(self, session, tenant1, warehouse):
        with pytest.raises(InvalidInputError):
            create_warehouse(session, tenant1.id, {'code': warehouse.code, 'name': 'Otro'})

    def test_delete_with_stock_refused(self, session, tenant1, warehouse, product):
        _receive(session, tenant1, warehouse, product, 1)
        with pytest.raises(InvalidStateError):
            delete_warehouse(session, tenant1.id, warehouse.id)

    def test_delete_is_soft(self, session, tenant1, warehouse, warehouse2):
        delete_warehouse(session, tenant1.id, warehouse2.id)
        assert [w.id for w in get_warehouses(session, tenant1.id)] == [warehouse.id]
        session.refresh(warehouse2)
        assert warehouse2.is_active is False


class TestStockPostings:

    def test_in_creates_stock_row(self, session, tenant1, warehouse, product):
        movement = _receive(session, tenant1, warehouse, product, '10', unit_cost='12.5')
        assert movement.total_cost == Decimal('125.00')
        assert _quantity(session, warehouse, product) == Decimal('10')
        session.refresh(product)
        assert product.current_stock == Decimal('10')

    def test_out_never_goes_negative(self, session, tenant1, warehouse, product):
        """An OUT larger than the quantity on hand is rejected and writes nothing."""
        _receive(session, tenant1, warehouse, product, 5)
        with pytest.raises(InsufficientStockError) as exc:
            create_stock_movement(session, tenant1.id, warehouse.id, product.id, 'OUT', 8)
        assert exc.value.status_code == 409
        assert _quantity(session, warehouse, product) == Decimal('5')
        assert session.query(StockMovement).count() == 1

    def test_out_without_stock_row(self, session, tenant1, warehouse, product):
        with pytest.raises(InsufficientStockError):
            create_stock_movement(session, tenant1.id, warehouse.id, product.id, 'OUT', 1)
        assert _quantity(session, warehouse, product) is None

    def test_out_of_exact_quantity(self, session, tenant1, warehouse, product):
        _receive(session, tenant1, warehouse, product, 5)
        create_stock_movement(session, tenant1.id, warehouse.id, product.id, 'OUT', 5)
        assert _quantity(session, warehouse, product) == Decimal('0')

    @pytest.mark.parametrize('movement_type,quantity', [
        ('IN', 0),
        ('IN', -3),
        ('TRANSFER', 1),
        ('SIDEWAYS', 1),
    ])
    def test_invalid_postings(self, session, tenant1, warehouse, product, movement_type, quantity):
        with pytest.raises(InvalidInputError):
            create_stock_movement(session, tenant1.id, warehouse.id, product.id, movement_type, quantity)
        assert session.query(StockMovement).count() == 0

    def test_inactive_warehouse_rejected(self, session, tenant1, warehouse, warehouse2, product):
        delete_warehouse(session, tenant1.id, warehouse2.id)
        with pytest.raises(InvalidStateError):
            _receive(session, tenant1, warehouse2, product, 1)

    def test_transfer_moves_between_warehouses(self, session, tenant1, warehouse, warehouse2, product):
        _receive(session, tenant1, warehouse, product, 10)
        result = transfer_stock(session, tenant1.id, warehouse.id, warehouse2.id, product.id, 4)

        assert result['out'].movement_type == StockMovementType.OUT
        assert result['in'].movement_type == StockMovementType.IN
        assert result['in'].document_type == StockDocumentType.TRANSFER
        assert _quantity(session, warehouse, product) == Decimal('6')
        assert _quantity(session, warehouse2, product) == Decimal('4')
        assert get_product_stock(session, tenant1.id, product.id)['total_stock'] == Decimal('10')

    def test_transfer_over_stock_is_atomic(self, session, tenant1, warehouse, warehouse2, product):
        _receive(session, tenant1, warehouse, product, 3)
        with pytest.raises(InsufficientStockError):
            transfer_stock(session, tenant1.id, warehouse.id, warehouse2.id, product.id, 4)
        assert _quantity(session, warehouse2, product) is None

    def test_transfer_to_same_warehouse(self, session, tenant1, warehouse, product):
        with pytest.raises(InvalidInputError):
            transfer_stock(session, tenant1.id, warehouse.id, warehouse.id, product.id, 1)


class TestKardex:

    @pytest.fixture
    def moves(self, session, tenant1, warehouse, product):
        _receive(session, tenant1, warehouse, product, 10, unit_cost=100)
        create_stock_movement(session, tenant1.id, warehouse.id, product.id, 'OUT', 3)
        _receive(session, tenant1, warehouse, product, 2, unit_cost=110)

    def test_running_balance(self, session, tenant1, product, moves):
        kardex = get_product_kardex(session, tenant1.id, product.id)
        assert [row['balance'] for row in kardex['movements']] == [Decimal('10'), Decimal('7'), Decimal('9')]
        assert kardex['movements'][1]['exit'] == Decimal('3')
        assert kardex['opening_balance'] == Decimal('0')
        assert kardex['final_balance'] == Decimal('9')

    def test_opening_balance_from_earlier_movements(self, session, tenant1, product, moves):
        tomorrow = date.today() + timedelta(days=1)
        kardex = get_product_kardex(session, tenant1.id, product.id, start_date=tomorrow)
        assert kardex['movements'] == []
        assert kardex['opening_balance'] == Decimal('9')
        assert kardex['final_balance'] == Decimal('9')

    def test_replay_matches_stock(self, session, tenant1, product, moves):
        assert verify_kardex(session, tenant1.id, product.id) == []

    def test_movement_listing(self, session, tenant1, warehouse, product, moves):
        movements = get_stock_movements(session, tenant1.id, product_id=product.id)
        # newest first
        assert [m.quantity for m in movements] == [Decimal('2'), Decimal('3'), Decimal('10')]
        outs = get_stock_movements(session, tenant1.id, movement_type='OUT')
        assert len(outs) == 1
        assert get_stock_movement(session, tenant1.id, outs[0].id).quantity == Decimal('3')

    def test_unknown_product(self, session, tenant1):
        with pytest.raises(NotFoundError):
            get_product_kardex(session, tenant1.id, 999999)


class TestReports:

    def test_valuation(self, session, tenant1, warehouse, product):
        _receive(session, tenant1, warehouse, product, 4)
        valuation = get_inventory_valuation(session, tenant1.id)
        assert len(valuation['items']) == 1
        # valued at cost_price 100
        assert valuation['total_value'] == Decimal('400.00')

    def test_movements_summary(self, session, tenant1, warehouse, warehouse2, product):
        _receive(session, tenant1, warehouse, product, 10, unit_cost=100)
        transfer_stock(session, tenant1.id, warehouse.id, warehouse2.id, product.id, 2)
        summary = get_movements_summary(session, tenant1.id, start_date=date.today())
        assert summary['entries_count'] == 2
        assert summary['exits_count'] == 1
        assert summary['total_entries'] == Decimal('12')
        assert summary['total_exits'] == Decimal('2')
        assert summary['transfers_count'] == 0

    def test_low_stock(self, session, tenant1, warehouse, product, service_product):
        low = get_low_stock(session, tenant1.id)
        assert [row['product_id'] for row in low] == [product.id]
        assert low[0]['stock_status'] == 'out_of_stock'

        _receive(session, tenant1, warehouse, product, 3)
        low = get_low_stock(session, tenant1.id)
        assert low[0]['stock_status'] == 'low_stock'

        _receive(session, tenant1, warehouse, product, 10)
        assert get_low_stock(session, tenant1.id) == []

    def test_warehouse_stock(self, session, tenant1, warehouse, product):
        _receive(session, tenant1, warehouse, product, 1)
        rows = get_warehouse_stock(session, tenant1.id, warehouse.id)
        assert [row.product_id for row in rows] == [product.id]
