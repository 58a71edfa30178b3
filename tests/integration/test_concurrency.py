"""
Concurrent postings against a file-backed database: no lost updates and no
duplicate document numbers.
"""

import pytest
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

from sqlalchemy.orm import scoped_session, sessionmaker

from backoffice import database
from backoffice.database import Base
from backoffice.models import Tenant, Entity, Product, Warehouse, PaymentMethod, StockMovement
from backoffice.services.entity_account_service import (
    create_entity_movement, register_customer_payment, get_entity_balance, verify_entity_chain
)
from backoffice.services.inventory_service import create_stock_movement
from backoffice.services.inventory_report_service import verify_kardex
from backoffice.services.purchase_service import create_purchase

WORKERS = 8


@pytest.fixture
def shared_db(app, tmp_path):
    """Thread-local sessions on a SQLite file, seeded with one tenant's catalogue."""
    engine = database.make_engine(f"sqlite:///{tmp_path / 'concurrency.db'}")
    Base.metadata.create_all(engine)
    Session = scoped_session(sessionmaker(autoflush=False, bind=engine))

    tenant = Tenant(slug='concurrency', name='Concurrency', active=True)
    Session.add(tenant)
    Session.flush()
    customer = Entity(tenant_id=tenant.id, name='Juan Pérez', is_customer=True)
    supplier = Entity(tenant_id=tenant.id, name='Ferretera Sur', is_supplier=True)
    warehouse = Warehouse(tenant_id=tenant.id, code='1', name='Depósito Central', is_default=True)
    product = Product(tenant_id=tenant.id, name='Tornillo 10mm', sku='TOR-10',
                      sale_price=150, cost_price=100, track_stock=True)
    method = PaymentMethod(tenant_id=tenant.id, name='Efectivo')
    Session.add_all([customer, supplier, warehouse, product, method])
    Session.commit()

    ids = {
        'tenant': tenant.id, 'customer': customer.id, 'supplier': supplier.id,
        'warehouse': warehouse.id, 'product': product.id, 'payment_method': method.id,
    }
    # Release the seeding connection before the workers start
    Session.remove()

    yield Session, ids

    Session.remove()
    engine.dispose()


def _run_concurrently(app, Session, task):
    def worker(i):
        with app.app_context():
            try:
                task(i)
            finally:
                Session.remove()

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        # list() re-raises the first worker failure
        list(pool.map(worker, range(WORKERS)))


def test_concurrent_payments_keep_the_chain(app, shared_db):
    Session, ids = shared_db
    with app.app_context():
        create_entity_movement(Session, ids['tenant'], ids['customer'], 'SALE', 'DEBIT', 1000)
        Session.remove()

    _run_concurrently(app, Session, lambda i: register_customer_payment(
        Session, ids['tenant'], ids['customer'], 25, ids['payment_method'], reference=f'REC-{i}'
    ))

    with app.app_context():
        balance = get_entity_balance(Session, ids['tenant'], ids['customer'])
        assert balance['current_balance'] == Decimal('1000.00') - WORKERS * Decimal('25.00')
        assert balance['movement_count'] == WORKERS + 1
        assert verify_entity_chain(Session, ids['tenant'], ids['customer']) == []
        Session.remove()


def test_concurrent_stock_entries_keep_the_kardex(app, shared_db):
    Session, ids = shared_db

    _run_concurrently(app, Session, lambda i: create_stock_movement(
        Session, ids['tenant'], ids['warehouse'], ids['product'], 'IN', 5, unit_cost=100
    ))

    with app.app_context():
        assert Session.query(StockMovement).count() == WORKERS
        product = Session.query(Product).filter(Product.id == ids['product']).one()
        assert product.current_stock == Decimal(5 * WORKERS)
        assert verify_kardex(Session, ids['tenant'], ids['product']) == []
        Session.remove()


def test_concurrent_purchases_get_distinct_numbers(app, shared_db):
    Session, ids = shared_db
    numbers = []

    def buy(i):
        purchase = create_purchase(
            Session, ids['tenant'], ids['supplier'], ids['warehouse'],
            items=[{'product_id': ids['product'], 'quantity': 1, 'unit_price': 100}]
        )
        numbers.append(purchase.purchase_number)

    _run_concurrently(app, Session, buy)

    assert sorted(numbers) == [f'COMPRA-{n:04d}' for n in range(1, WORKERS + 1)]
    with app.app_context():
        assert verify_kardex(Session, ids['tenant'], ids['product']) == []
        assert verify_entity_chain(Session, ids['tenant'], ids['supplier']) == []
        assert get_entity_balance(Session, ids['tenant'], ids['supplier'])['current_balance'] == \
            WORKERS * Decimal('100.00')
        Session.remove()
