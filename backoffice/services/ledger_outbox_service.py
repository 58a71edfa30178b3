"""
Ledger outbox: entity and cash postings queued by a document transaction and
dispatched after it commits.

A purchase must not fail because its supplier or cash posting failed. The
posting is written as a PENDING outbox row in the purchase transaction, then
dispatched in a transaction of its own. A failed dispatch leaves the row
FAILED with the error and attempt count, to be retried by
`flask outbox-dispatch`.
"""
import logging

from sqlalchemy.exc import SQLAlchemyError

from backoffice.models import LedgerOutbox, OutboxStatus, OutboxLedger
from backoffice.blueprints.metrics import ledger_outbox_failures_total, ledger_outbox_dispatched_total
from backoffice.services.balance_calculator import money, coerce_enum
from backoffice.services.cache_service import ACCOUNTS_MODULE, CASH_MODULE, invalidate_tenant_cache
from backoffice.services.cash_movement_service import post_cash_movement
from backoffice.services.concurrency import lock_for_update
from backoffice.services.entity_account_service import post_entity_movement
from backoffice.utils.settings import get_setting
from backoffice.utils.time_utils import now, to_naive

logger = logging.getLogger(__name__)


def enqueue_ledger_posting(
    session,
    tenant_id: int,
    event_type: str,
    entity_id: int,
    movement_type,
    nature,
    amount,
    movement_date,
    description: str = None,
    notes: str = None,
    purchase_id: int = None,
    sale_id: int = None,
    purchase_payment_id: int = None
) -> LedgerOutbox:
    """Queue an entity posting inside the caller's transaction. Does not commit."""
    entry = LedgerOutbox(
        tenant_id=tenant_id,
        ledger=OutboxLedger.ENTITY.value,
        event_type=event_type,
        entity_id=entity_id,
        movement_type=movement_type,
        nature=nature,
        amount=money(amount),
        movement_date=movement_date,
        description=description,
        notes=notes,
        purchase_id=purchase_id,
        sale_id=sale_id,
        purchase_payment_id=purchase_payment_id,
        status=OutboxStatus.PENDING.value,
        attempts=0,
        created_at=now()
    )
    session.add(entry)
    session.flush()
    return entry


def enqueue_cash_posting(
    session,
    tenant_id: int,
    event_type: str,
    cash_movement_type,
    category: str,
    amount,
    movement_date,
    description: str,
    payment_method_id: int = None,
    reference: str = None,
    notes: str = None,
    purchase_id: int = None,
    sale_id: int = None,
    purchase_payment_id: int = None,
    sale_payment_id: int = None
) -> LedgerOutbox:
    """Queue a cash posting inside the caller's transaction. Does not commit.

    The cash account is resolved at dispatch time from the payment method
    (or the tenant's default account).
    """
    entry = LedgerOutbox(
        tenant_id=tenant_id,
        ledger=OutboxLedger.CASH.value,
        event_type=event_type,
        cash_movement_type=cash_movement_type,
        category=category,
        amount=money(amount),
        movement_date=movement_date,
        description=description,
        payment_method_id=payment_method_id,
        reference=reference,
        notes=notes,
        purchase_id=purchase_id,
        sale_id=sale_id,
        purchase_payment_id=purchase_payment_id,
        sale_payment_id=sale_payment_id,
        status=OutboxStatus.PENDING.value,
        attempts=0,
        created_at=now()
    )
    session.add(entry)
    session.flush()
    return entry


def _load_entry(session, entry_id: int, lock: bool = False):
    query = session.query(LedgerOutbox).filter(LedgerOutbox.id == entry_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def _mark_failed(session, entry_id: int, error: Exception) -> None:
    try:
        entry = _load_entry(session, entry_id, lock=True)
        entry.attempts = (entry.attempts or 0) + 1
        entry.status = OutboxStatus.FAILED.value
        entry.last_error = f'{type(error).__name__}: {error}'[:2000]
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception(f"[OUTBOX] Could not record failure of entry {entry_id}")


def _post_entity(session, entry: LedgerOutbox) -> None:
    movement = post_entity_movement(
        session,
        entry.tenant_id,
        entry.entity_id,
        entry.movement_type,
        entry.nature,
        entry.amount,
        date=to_naive(entry.movement_date),
        # A later movement may have been posted while this entry waited for a retry
        clamp_date=True,
        description=entry.description,
        notes=entry.notes,
        sale_id=entry.sale_id,
        purchase_id=entry.purchase_id
    )
    entry.movement_id = movement.id


def _post_cash(session, entry: LedgerOutbox) -> None:
    movement = post_cash_movement(
        session,
        entry.tenant_id,
        entry.cash_movement_type,
        entry.category,
        entry.amount,
        entry.description,
        payment_method_id=entry.payment_method_id,
        date=to_naive(entry.movement_date),
        reference=entry.reference,
        notes=entry.notes,
        sale_id=entry.sale_id,
        purchase_id=entry.purchase_id,
        sale_payment_id=entry.sale_payment_id,
        purchase_payment_id=entry.purchase_payment_id
    )
    entry.cash_movement_id = movement.id


_POSTERS = {
    OutboxLedger.ENTITY.value: (_post_entity, ACCOUNTS_MODULE),
    OutboxLedger.CASH.value: (_post_cash, CASH_MODULE),
}


def dispatch_entry(session, entry_id: int) -> bool:
    """
    Post one outbox entry to its ledger (entity or cash account) in its own
    transaction.

    Returns True when the entry is DONE. Never raises: failures are recorded
    on the entry, logged and counted.
    """
    entry = _load_entry(session, entry_id)
    if entry is None:
        logger.warning(f"[OUTBOX] Entry {entry_id} not found")
        return False
    event_type = entry.event_type
    tenant_id = entry.tenant_id
    ledger = entry.ledger or OutboxLedger.ENTITY.value
    post, cache_module = _POSTERS[ledger]

    try:
        entry = _load_entry(session, entry_id, lock=True)
        if entry.status == OutboxStatus.DONE.value:
            session.rollback()
            return True

        post(session, entry)

        entry.status = OutboxStatus.DONE.value
        entry.attempts = (entry.attempts or 0) + 1
        entry.last_error = None
        entry.processed_at = now()
        session.commit()
    except Exception as e:
        session.rollback()
        logger.exception(f"[OUTBOX] Dispatch of entry {entry_id} ({event_type}) failed: {e}")
        ledger_outbox_failures_total.labels(event_type=event_type).inc()
        _mark_failed(session, entry_id, e)
        return False

    ledger_outbox_dispatched_total.labels(event_type=event_type).inc()
    invalidate_tenant_cache(tenant_id, cache_module)
    logger.info(f"[OUTBOX] Entry {entry_id} ({event_type}) posted to the {ledger.lower()} ledger")
    return True


def dispatch_pending(session, tenant_id: int = None, limit: int = None, entry_ids: list = None) -> dict:
    """
    Dispatch PENDING and FAILED entries below OUTBOX_MAX_ATTEMPTS, oldest first.

    Returns {'dispatched': n, 'failed': m}.
    """
    max_attempts = get_setting('OUTBOX_MAX_ATTEMPTS', 5)
    limit = limit or get_setting('OUTBOX_BATCH_SIZE', 100)

    query = session.query(LedgerOutbox.id).filter(
        LedgerOutbox.status.in_([OutboxStatus.PENDING.value, OutboxStatus.FAILED.value]),
        LedgerOutbox.attempts < max_attempts
    )
    if tenant_id:
        query = query.filter(LedgerOutbox.tenant_id == tenant_id)
    if entry_ids is not None:
        if not entry_ids:
            return {'dispatched': 0, 'failed': 0}
        query = query.filter(LedgerOutbox.id.in_(entry_ids))

    ids = [row.id for row in query.order_by(LedgerOutbox.id).limit(limit).all()]
    # Release the read transaction before dispatching each entry on its own
    session.commit()

    result = {'dispatched': 0, 'failed': 0}
    for entry_id in ids:
        if dispatch_entry(session, entry_id):
            result['dispatched'] += 1
        else:
            result['failed'] += 1

    if ids:
        logger.info(f"[OUTBOX] Dispatched {result['dispatched']}, failed {result['failed']}")
    return result


def get_outbox_entries(session, tenant_id: int, status: str = None, purchase_id: int = None,
                       ledger: str = None, sale_id: int = None) -> list:
    """Outbox entries of the tenant in id order (reconciliation view)."""
    query = session.query(LedgerOutbox).filter(LedgerOutbox.tenant_id == tenant_id)
    if status:
        query = query.filter(LedgerOutbox.status == coerce_enum(OutboxStatus, status, 'Estado').value)
    if ledger:
        query = query.filter(LedgerOutbox.ledger == coerce_enum(OutboxLedger, ledger, 'Libro').value)
    if purchase_id:
        query = query.filter(LedgerOutbox.purchase_id == purchase_id)
    if sale_id:
        query = query.filter(LedgerOutbox.sale_id == sale_id)
    return query.order_by(LedgerOutbox.id).all()
