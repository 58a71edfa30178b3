import pytest
from decimal import Decimal
import uuid

from backoffice import create_app
from backoffice import database
from backoffice.database import Base
from backoffice.models import Tenant, Entity, Product, Warehouse, PaymentMethod, CashAccount


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing (in-memory SQLite, cache disabled)."""
    app = create_app('config.TestingConfig')
    ctx = app.app_context()
    ctx.push()
    database.create_all()
    yield app
    ctx.pop()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Database session; every table is emptied after the test."""
    session = database.get_session()
    yield session
    session.rollback()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    session.remove()


def _tenant(session, label):
    suffix = str(uuid.uuid4())[:8]
    tenant = Tenant(
        slug=f'test-tenant-{label}-{suffix}',
        name=f'Test Tenant {label} {suffix}',
        active=True
    )
    session.add(tenant)
    session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant1(session):
    """Create first test tenant."""
    return _tenant(session, 1)


@pytest.fixture(scope='function')
def tenant2(session):
    """Create second test tenant for isolation tests."""
    return _tenant(session, 2)


@pytest.fixture(scope='function')
def warehouse(session, tenant1):
    """Default warehouse of tenant1 (code 1 -> sale numbers 00001-...)."""
    warehouse = Warehouse(tenant_id=tenant1.id, code='1', name='Depósito Central', is_default=True)
    session.add(warehouse)
    session.commit()
    return warehouse


@pytest.fixture(scope='function')
def warehouse2(session, tenant1):
    """Second warehouse of tenant1."""
    warehouse = Warehouse(tenant_id=tenant1.id, code='2', name='Sucursal Norte')
    session.add(warehouse)
    session.commit()
    return warehouse


@pytest.fixture(scope='function')
def product(session, tenant1):
    """Stock-tracked product of tenant1."""
    product = Product(
        tenant_id=tenant1.id,
        name='Tornillo 10mm',
        sku='TOR-10',
        sale_price=Decimal('150.00'),
        cost_price=Decimal('100.00'),
        min_stock=Decimal('5'),
        active=True,
        track_stock=True
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def service_product(session, tenant1):
    """Product without stock control (a service)."""
    product = Product(
        tenant_id=tenant1.id,
        name='Instalación',
        sku='SRV-01',
        sale_price=Decimal('500.00'),
        active=True,
        track_stock=False
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def supplier(session, tenant1):
    """Supplier of tenant1."""
    supplier = Entity(tenant_id=tenant1.id, code='P001', name='Ferretera Sur', is_supplier=True)
    session.add(supplier)
    session.commit()
    return supplier


@pytest.fixture(scope='function')
def customer(session, tenant1):
    """Customer of tenant1."""
    customer = Entity(tenant_id=tenant1.id, code='C001', name='Juan Pérez', is_customer=True)
    session.add(customer)
    session.commit()
    return customer


@pytest.fixture(scope='function')
def cash_account(session, tenant1):
    """Default cash account (caja) of tenant1."""
    account = CashAccount(tenant_id=tenant1.id, name='Caja principal', type='cash',
                          initial_balance=Decimal('1000.00'), is_default=True, is_active=True)
    session.add(account)
    session.commit()
    return account


@pytest.fixture(scope='function')
def payment_method(session, tenant1, cash_account):
    """Cash payment method of tenant1, paying in and out of the default cash account."""
    method = PaymentMethod(tenant_id=tenant1.id, name='Efectivo', type='CASH', cash_account_id=cash_account.id)
    session.add(method)
    session.commit()
    return method
