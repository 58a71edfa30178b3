"""
Integration tests for the application shell: error handlers, metrics and CLI.
"""

from backoffice.exceptions import NotFoundError, InsufficientStockError
from backoffice.models import EntityMovement
from backoffice.services.entity_account_service import create_entity_movement
from backoffice.services.inventory_service import create_stock_movement


def test_metrics_endpoint(client):
    client.get('/does-not-exist')
    response = client.get('/metrics')
    assert response.status_code == 200
    assert b'http_requests_total' in response.data


def test_not_found_is_json(client):
    response = client.get('/does-not-exist')
    assert response.status_code == 404
    assert response.get_json()['status'] == 'error'


def test_backoffice_error_handler(app):
    with app.test_request_context():
        response = app.make_response(app.handle_user_exception(NotFoundError('Compra no encontrada')))
    assert response.status_code == 404
    assert response.get_json() == {
        'status': 'error',
        'error': 'NotFoundError',
        'message': 'Compra no encontrada',
    }


def test_insufficient_stock_payload(app):
    with app.test_request_context():
        response = app.make_response(app.handle_user_exception(InsufficientStockError('Tornillo', 5, 2)))
    assert response.status_code == 409
    body = response.get_json()
    assert body['required'] == '5'
    assert body['available'] == '2'


class TestVerifyLedgerCommand:

    def test_sound_ledger(self, app, session, tenant1, customer, warehouse, product):
        create_entity_movement(session, tenant1.id, customer.id, 'SALE', 'DEBIT', 100)
        create_stock_movement(session, tenant1.id, warehouse.id, product.id, 'IN', 3)

        result = app.test_cli_runner().invoke(args=['verify-ledger', '--tenant-id', str(tenant1.id)])
        assert result.exit_code == 0
        assert 'verificados' in result.output

    def test_broken_chain_is_reported(self, app, session, tenant1, customer):
        create_entity_movement(session, tenant1.id, customer.id, 'SALE', 'DEBIT', 100)
        # Bypass the ORM listeners to corrupt a stored balance
        session.execute(EntityMovement.__table__.update().values(balance=5))
        session.commit()

        result = app.test_cli_runner().invoke(args=['verify-ledger', '--tenant-id', str(tenant1.id)])
        assert result.exit_code == 1
        assert 'Juan Pérez' in result.output


def test_outbox_dispatch_command(app, session, tenant1):
    result = app.test_cli_runner().invoke(args=['outbox-dispatch', '--tenant-id', str(tenant1.id)])
    assert result.exit_code == 0
    assert 'Despachadas: 0' in result.output
