"""
Integration tests for the append-only movement log and document numbering.
"""

import pytest
from decimal import Decimal

from backoffice.exceptions import InvalidStateError
from backoffice.models import EntityMovement, StockMovement, DocumentSequence
from backoffice.services.entity_account_service import create_entity_movement
from backoffice.services.inventory_service import create_stock_movement
from backoffice.services.sequence_service import next_document_number


class TestImmutableMovements:

    def test_entity_movement_cannot_be_updated(self, session, tenant1, customer):
        movement = create_entity_movement(session, tenant1.id, customer.id, 'SALE', 'DEBIT', 100)
        movement.amount = Decimal('1')
        with pytest.raises(InvalidStateError):
            session.commit()
        session.rollback()
        assert session.query(EntityMovement).one().amount == Decimal('100.00')

    def test_entity_movement_cannot_be_deleted(self, session, tenant1, customer):
        movement = create_entity_movement(session, tenant1.id, customer.id, 'SALE', 'DEBIT', 100)
        session.delete(movement)
        with pytest.raises(InvalidStateError):
            session.flush()
        session.rollback()
        assert session.query(EntityMovement).count() == 1

    def test_stock_movement_cannot_be_updated(self, session, tenant1, warehouse, product):
        movement = create_stock_movement(session, tenant1.id, warehouse.id, product.id, 'IN', 5)
        movement.quantity = Decimal('50')
        with pytest.raises(InvalidStateError):
            session.flush()
        session.rollback()
        assert session.query(StockMovement).one().quantity == Decimal('5')


class TestDocumentSequence:

    def test_sequence_per_tenant_and_series(self, session, tenant1, tenant2):
        assert next_document_number(session, tenant1.id, 'TEST', 'T-{number:03d}') == 'T-001'
        assert next_document_number(session, tenant1.id, 'TEST', 'T-{number:03d}') == 'T-002'
        assert next_document_number(session, tenant1.id, 'OTHER') == '1'
        assert next_document_number(session, tenant2.id, 'TEST', 'T-{number:03d}') == 'T-001'
        session.commit()

        assert session.query(DocumentSequence).count() == 3

    def test_rollback_releases_number(self, session, tenant1):
        next_document_number(session, tenant1.id, 'TEST')
        session.rollback()
        assert next_document_number(session, tenant1.id, 'TEST') == '1'
