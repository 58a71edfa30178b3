"""
Critical integration tests for tenant isolation.
These tests ensure that data is properly isolated between tenants.
"""

import pytest
from decimal import Decimal

from backoffice.exceptions import NotFoundError
from backoffice.models import Entity, Product, Warehouse, PaymentMethod
from backoffice.services.entity_account_service import (
    create_entity_movement, get_entity_balance, get_entity_movements, get_entities_with_balance
)
from backoffice.services.inventory_service import create_stock_movement, get_stock, get_warehouse, get_low_stock
from backoffice.services.inventory_report_service import get_inventory_valuation, get_product_kardex
from backoffice.services.purchase_service import create_purchase, get_purchase, list_purchases


@pytest.fixture
def tenant2_setup(session, tenant2):
    """Warehouse, product, supplier and payment method of tenant2."""
    warehouse = Warehouse(tenant_id=tenant2.id, code='1', name='Central T2', is_default=True)
    product = Product(tenant_id=tenant2.id, name='Product T2', sku='TOR-10', sale_price=200, cost_price=50)
    supplier = Entity(tenant_id=tenant2.id, name='Supplier T2', is_supplier=True)
    method = PaymentMethod(tenant_id=tenant2.id, name='Efectivo')
    session.add_all([warehouse, product, supplier, method])
    session.commit()
    return {'warehouse': warehouse, 'product': product, 'supplier': supplier, 'payment_method': method}


class TestCrossTenantAccess:
    """A tenant can never read or post to another tenant's records."""

    def test_entity_of_other_tenant(self, session, tenant2, customer):
        with pytest.raises(NotFoundError):
            get_entity_balance(session, tenant2.id, customer.id)
        with pytest.raises(NotFoundError):
            create_entity_movement(session, tenant2.id, customer.id, 'SALE', 'DEBIT', 10)
        with pytest.raises(NotFoundError):
            get_entity_movements(session, tenant2.id, customer.id)

    def test_warehouse_of_other_tenant(self, session, tenant2, warehouse, tenant2_setup):
        with pytest.raises(NotFoundError):
            get_warehouse(session, tenant2.id, warehouse.id)
        with pytest.raises(NotFoundError):
            create_stock_movement(
                session, tenant2.id, warehouse.id, tenant2_setup['product'].id, 'IN', 1
            )

    def test_product_of_other_tenant(self, session, tenant1, warehouse, tenant2_setup):
        with pytest.raises(NotFoundError):
            create_stock_movement(session, tenant1.id, warehouse.id, tenant2_setup['product'].id, 'IN', 1)
        with pytest.raises(NotFoundError):
            get_product_kardex(session, tenant1.id, tenant2_setup['product'].id)

    def test_purchase_with_foreign_references(self, session, tenant1, supplier, warehouse, tenant2_setup):
        with pytest.raises(NotFoundError):
            create_purchase(
                session, tenant1.id, supplier.id, warehouse.id,
                items=[{'product_id': tenant2_setup['product'].id, 'quantity': 1, 'unit_price': 1}]
            )
        with pytest.raises(NotFoundError):
            create_purchase(
                session, tenant1.id, supplier.id, warehouse.id,
                items=[{'product_name': 'Flete', 'quantity': 1, 'unit_price': 1}],
                payments=[{'payment_method_id': tenant2_setup['payment_method'].id, 'amount': 1}]
            )


class TestIsolatedReads:

    def test_stock_and_reports(self, session, tenant1, tenant2, warehouse, product, tenant2_setup):
        create_stock_movement(session, tenant1.id, warehouse.id, product.id, 'IN', 3)
        create_stock_movement(
            session, tenant2.id, tenant2_setup['warehouse'].id, tenant2_setup['product'].id, 'IN', 7
        )

        assert [s.product_id for s in get_stock(session, tenant1.id)] == [product.id]
        assert get_inventory_valuation(session, tenant2.id)['total_value'] == Decimal('350.00')
        assert [row['product_id'] for row in get_low_stock(session, tenant1.id)] == [product.id]

    def test_same_sku_in_both_tenants(self, session, tenant1, product, tenant2_setup):
        assert product.sku == tenant2_setup['product'].sku
        tenant1_product = session.query(Product).filter(
            Product.tenant_id == tenant1.id,
            Product.sku == 'TOR-10'
        ).one()
        assert tenant1_product.id == product.id

    def test_purchases_and_numbering(self, session, tenant1, tenant2, supplier, warehouse, tenant2_setup):
        first = create_purchase(
            session, tenant1.id, supplier.id, warehouse.id,
            items=[{'product_name': 'Flete', 'quantity': 1, 'unit_price': 10}]
        )
        other = create_purchase(
            session, tenant2.id, tenant2_setup['supplier'].id, tenant2_setup['warehouse'].id,
            items=[{'product_name': 'Flete', 'quantity': 1, 'unit_price': 20}]
        )
        # Each tenant has its own sequence
        assert first.purchase_number == other.purchase_number == 'COMPRA-0001'

        assert [p.id for p in list_purchases(session, tenant1.id)['data']] == [first.id]
        with pytest.raises(NotFoundError):
            get_purchase(session, tenant2.id, first.id)

    def test_account_listing(self, session, tenant1, tenant2, customer, tenant2_setup):
        create_entity_movement(session, tenant1.id, customer.id, 'SALE', 'DEBIT', 10)
        rows = get_entities_with_balance(session, tenant2.id, has_balance=True)
        assert rows == []
