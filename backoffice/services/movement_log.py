"""
Append-only movement log.

Entity, stock and cash movements are only ever inserted. The mapper listeners at the
bottom of this module reject any UPDATE or DELETE of a persisted movement;
corrections are new movements (credit notes, adjustments, cancellations).
"""
import logging

from sqlalchemy import event, inspect

from backoffice.exceptions import InvalidStateError
from backoffice.models import EntityMovement, StockMovement, CashMovement
from backoffice.services.balance_calculator import money, to_decimal
from backoffice.utils.time_utils import now, to_naive

logger = logging.getLogger(__name__)


def append_entity_movement(session, **fields) -> EntityMovement:
    """Insert an entity movement and flush it to get its id. Does not commit."""
    fields.setdefault('created_at', now())
    movement = EntityMovement(**fields)
    session.add(movement)
    session.flush()
    return movement


def last_entity_movement(session, tenant_id: int, entity_id: int, before=None):
    """Latest movement of the entity by (date desc, id desc).

    With before, only movements dated strictly earlier are considered
    (opening balance of a statement window).
    """
    query = session.query(EntityMovement).filter(
        EntityMovement.tenant_id == tenant_id,
        EntityMovement.entity_id == entity_id
    )
    if before is not None:
        query = query.filter(EntityMovement.date < to_naive(before))

    return query.order_by(EntityMovement.date.desc(), EntityMovement.id.desc()).first()


def append_stock_movement(session, **fields) -> StockMovement:
    """Insert a stock movement (kardex row). Does not commit.

    total_cost is derived as quantity x unit_cost when a unit cost is given.
    """
    unit_cost = fields.get('unit_cost')
    if unit_cost is not None and fields.get('total_cost') is None:
        fields['total_cost'] = money(to_decimal(fields['quantity']) * to_decimal(unit_cost))
    fields.setdefault('created_at', now())

    movement = StockMovement(**fields)
    session.add(movement)
    session.flush()
    return movement


def append_cash_movement(session, **fields) -> CashMovement:
    """Insert a cash movement and flush it to get its id. Does not commit."""
    fields.setdefault('created_at', now())
    movement = CashMovement(**fields)
    session.add(movement)
    session.flush()
    return movement


def _changed_columns(mapper, target):
    state = inspect(target)
    return [
        prop.key for prop in mapper.column_attrs
        if state.attrs[prop.key].history.has_changes()
    ]


@event.listens_for(EntityMovement, 'before_update')
@event.listens_for(StockMovement, 'before_update')
@event.listens_for(CashMovement, 'before_update')
def _reject_movement_update(mapper, connection, target):
    changed = _changed_columns(mapper, target)
    if changed:
        logger.error(f"[LEDGER] Rejected update of {type(target).__name__} {target.id}: {changed}")
        raise InvalidStateError(
            'Los movimientos son inmutables: registre un movimiento de corrección',
            {'movement_id': target.id}
        )


@event.listens_for(EntityMovement, 'before_delete')
@event.listens_for(StockMovement, 'before_delete')
@event.listens_for(CashMovement, 'before_delete')
def _reject_movement_delete(mapper, connection, target):
    logger.error(f"[LEDGER] Rejected delete of {type(target).__name__} {target.id}")
    raise InvalidStateError(
        'Los movimientos son inmutables y no pueden eliminarse',
        {'movement_id': target.id}
    )
