"""Document numbering: per-tenant, per-series counters."""
import logging

from backoffice.models import DocumentSequence
from backoffice.services.concurrency import lock_for_update

logger = logging.getLogger(__name__)

# Series and formats
PURCHASE_SERIES = 'PURCHASE'
PURCHASE_NUMBER_FORMAT = 'COMPRA-{number:04d}'
ADJUSTMENT_SERIES = 'ADJUSTMENT'
ADJUSTMENT_NUMBER_FORMAT = 'ADJ-{number:06d}'


def sale_series(warehouse) -> str:
    """Sales are numbered per warehouse (point of sale)."""
    return f"SALE:{warehouse.id}"


def sale_number_format(warehouse) -> str:
    """{warehouse code, zero-padded to 5}-{number:08d}, e.g. 00001-00000042."""
    return f"{warehouse.code:0>5}-" + "{number:08d}"


def next_document_number(session, tenant_id: int, series: str, fmt: str = '{number}') -> str:
    """
    Reserve the next number of a series and return it formatted.

    Runs inside the caller's transaction: the sequence row stays locked until
    the caller commits, and a rollback gives the number back.
    A missing sequence row is created at 0; if two transactions create it at
    the same time, one fails with IntegrityError and is retried by run_with_retry.
    """
    sequence = lock_for_update(
        session.query(DocumentSequence).filter(
            DocumentSequence.tenant_id == tenant_id,
            DocumentSequence.series == series
        )
    ).first()

    if sequence is None:
        sequence = DocumentSequence(tenant_id=tenant_id, series=series, last_value=0)
        session.add(sequence)
        session.flush()

    sequence.last_value = (sequence.last_value or 0) + 1
    session.flush()

    number = fmt.format(number=sequence.last_value)
    logger.debug(f"[SEQUENCE] tenant={tenant_id} series={series} -> {number}")
    return number
