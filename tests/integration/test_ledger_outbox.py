"""
Integration tests for the ledger outbox: best-effort supplier and cash postings.
"""

import pytest
from datetime import datetime
from decimal import Decimal

from backoffice.exceptions import InvalidInputError
from backoffice.models import EntityMovement, LedgerOutbox, OutboxStatus, MovementType, MovementNature, Purchase
from backoffice.services import ledger_outbox_service
from backoffice.services.cash_movement_service import get_account_balance
from backoffice.services.entity_account_service import create_entity_movement, get_entity_balance
from backoffice.services.ledger_outbox_service import (
    enqueue_ledger_posting, dispatch_entry, dispatch_pending, get_outbox_entries
)
from backoffice.services.purchase_service import create_purchase


def _failing_post(*args, **kwargs):
    raise RuntimeError('ledger unavailable')


@pytest.fixture
def failed_purchase(session, tenant1, supplier, warehouse, product, payment_method, monkeypatch):
    """A purchase whose supplier postings failed at creation time."""
    monkeypatch.setattr(ledger_outbox_service, 'post_entity_movement', _failing_post)
    purchase = create_purchase(
        session, tenant1.id, supplier.id, warehouse.id,
        items=[{'product_id': product.id, 'quantity': 10, 'unit_price': 100, 'tax_rate': 21}],
        payments=[{'payment_method_id': payment_method.id, 'amount': 605}]
    )
    monkeypatch.undo()
    return purchase


class TestFailedDispatch:

    def test_purchase_stands_when_posting_fails(self, session, tenant1, supplier, failed_purchase):
        assert session.query(Purchase).count() == 1
        assert failed_purchase.total_amount == Decimal('1210.00')
        assert session.query(EntityMovement).count() == 0

        entries = get_outbox_entries(session, tenant1.id, status='FAILED')
        assert len(entries) == 2
        assert all(e.attempts == 1 for e in entries)
        assert all('RuntimeError: ledger unavailable' in e.last_error for e in entries)

    def test_retry_posts_movements(self, session, tenant1, supplier, cash_account, failed_purchase):
        result = dispatch_pending(session, tenant_id=tenant1.id)
        assert result == {'dispatched': 2, 'failed': 0}

        entries = get_outbox_entries(session, tenant1.id, ledger='ENTITY')
        assert [e.status for e in entries] == ['DONE', 'DONE']
        assert [e.attempts for e in entries] == [2, 2]
        assert all(e.last_error is None for e in entries)
        assert get_entity_balance(session, tenant1.id, supplier.id)['current_balance'] == Decimal('605.00')

        # The cash posting did not depend on the entity ledger and went through the first time
        [cash_entry] = get_outbox_entries(session, tenant1.id, ledger='CASH')
        assert (cash_entry.status, cash_entry.attempts) == ('DONE', 1)
        assert get_account_balance(session, tenant1.id, cash_account.id)['balance'] == Decimal('395.00')

        # Nothing left to dispatch
        assert dispatch_pending(session, tenant_id=tenant1.id) == {'dispatched': 0, 'failed': 0}

    def test_exhausted_entries_are_skipped(self, app, session, tenant1, failed_purchase):
        for entry in session.query(LedgerOutbox).all():
            entry.attempts = app.config['OUTBOX_MAX_ATTEMPTS']
        session.commit()

        assert dispatch_pending(session, tenant_id=tenant1.id) == {'dispatched': 0, 'failed': 0}

    def test_other_tenant_not_dispatched(self, session, tenant2, failed_purchase):
        assert dispatch_pending(session, tenant_id=tenant2.id) == {'dispatched': 0, 'failed': 0}
        assert session.query(LedgerOutbox).filter(LedgerOutbox.status == 'FAILED').count() == 2


class TestDispatchEntry:

    def test_done_entry_not_posted_twice(self, session, tenant1, supplier):
        entry = enqueue_ledger_posting(
            session, tenant1.id, 'MANUAL', supplier.id, MovementType.DEBIT_NOTE, MovementNature.DEBIT,
            50, datetime.now(), description='Nota de débito'
        )
        session.commit()

        assert dispatch_entry(session, entry.id) is True
        assert dispatch_entry(session, entry.id) is True
        assert session.query(EntityMovement).count() == 1

    def test_stale_date_posted_after_last_movement(self, session, tenant1, supplier):
        """An entry older than the account's last movement is posted at that movement's time."""
        entry = enqueue_ledger_posting(
            session, tenant1.id, 'MANUAL', supplier.id, MovementType.PURCHASE, MovementNature.DEBIT, 100,
            datetime(2020, 1, 1)
        )
        session.commit()
        last = create_entity_movement(session, tenant1.id, supplier.id, 'PURCHASE', 'DEBIT', 10)

        assert dispatch_entry(session, entry.id) is True
        entry = session.query(LedgerOutbox).filter(LedgerOutbox.id == entry.id).one()
        movement = session.query(EntityMovement).filter(EntityMovement.id == entry.movement_id).one()
        assert movement.date == last.date
        assert movement.balance == Decimal('110.00')
        assert entry.status == OutboxStatus.DONE.value

    def test_missing_entry(self, session):
        assert dispatch_entry(session, 999999) is False

    def test_unknown_status_filter(self, session, tenant1):
        with pytest.raises(InvalidInputError):
            get_outbox_entries(session, tenant1.id, status='LOST')
