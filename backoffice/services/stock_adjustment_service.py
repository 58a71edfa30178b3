"""
Stock adjustment workflow (ajustes por conteo físico).

draft -> approved | cancelled. A draft has no effect on stock; approval
writes one kardex movement per item whose counted quantity differs from the
system quantity and sets the stock row to the counted quantity.
"""
import logging

from backoffice.exceptions import NotFoundError, InvalidInputError, InvalidStateError
from backoffice.models import (
    StockAdjustment, StockAdjustmentItem, AdjustmentStatus, Product,
    StockMovementType, StockDocumentType, AuditAction
)
from backoffice.blueprints.metrics import stock_movements_total
from backoffice.services.audit_service import log_action
from backoffice.services.balance_calculator import ZERO, money, to_decimal, coerce_enum
from backoffice.services.cache_service import INVENTORY_MODULE, invalidate_tenant_cache
from backoffice.services.concurrency import lock_for_update, run_with_retry
from backoffice.services.inventory_service import get_warehouse, set_stock_quantity
from backoffice.services.movement_log import append_stock_movement
from backoffice.services.sequence_service import (
    next_document_number, ADJUSTMENT_SERIES, ADJUSTMENT_NUMBER_FORMAT
)
from backoffice.utils.time_utils import now

logger = logging.getLogger(__name__)


def _validate_items(session, tenant_id: int, items: list) -> list:
    """Normalize adjustment lines; every product must belong to the tenant."""
    if not items:
        raise InvalidInputError('El ajuste debe tener al menos un producto')

    lines = []
    seen = set()
    for index, item in enumerate(items, start=1):
        product_id = item.get('product_id')
        if not product_id:
            raise InvalidInputError(f'Línea {index}: el producto es requerido')
        if product_id in seen:
            raise InvalidInputError(f'Línea {index}: el producto está repetido en el ajuste')
        seen.add(product_id)

        product = session.query(Product).filter(
            Product.id == product_id,
            Product.tenant_id == tenant_id
        ).first()
        if not product:
            raise NotFoundError(f'Producto {product_id} no encontrado o no pertenece a su negocio')

        current_qty = to_decimal(item.get('current_qty'), 'Cantidad actual')
        adjusted_qty = to_decimal(item.get('adjusted_qty'), 'Cantidad ajustada')
        unit_cost = item.get('unit_cost')
        unit_cost = to_decimal(product.cost_price if unit_cost is None else unit_cost, 'Costo unitario')

        if current_qty < 0 or adjusted_qty < 0:
            raise InvalidInputError(f'Línea {index}: las cantidades no pueden ser negativas')
        if unit_cost < 0:
            raise InvalidInputError(f'Línea {index}: el costo unitario no puede ser negativo')

        difference = adjusted_qty - current_qty
        lines.append({
            'product_id': product.id,
            'current_qty': current_qty,
            'adjusted_qty': adjusted_qty,
            'difference': difference,
            'unit_cost': unit_cost,
            'total_value': money(difference * unit_cost),
            'reason': item.get('reason'),
        })
    return lines


def create_adjustment(session, tenant_id: int, warehouse_id: int, reason: str, items: list,
                      notes: str = None, user_id: int = None) -> StockAdjustment:
    """Create a draft adjustment numbered ADJ-000001, ADJ-000002, ... per tenant."""
    if not reason or not reason.strip():
        raise InvalidInputError('El motivo del ajuste es requerido')

    warehouse = get_warehouse(session, tenant_id, warehouse_id)
    if not warehouse.is_active:
        raise InvalidStateError(f'El almacén {warehouse.name} está inactivo')
    lines = _validate_items(session, tenant_id, items)

    def _op():
        try:
            adjustment_number = next_document_number(
                session, tenant_id, ADJUSTMENT_SERIES, ADJUSTMENT_NUMBER_FORMAT
            )
            adjustment = StockAdjustment(
                tenant_id=tenant_id,
                adjustment_number=adjustment_number,
                warehouse_id=warehouse.id,
                adjustment_date=now(),
                reason=reason.strip(),
                notes=notes,
                status=AdjustmentStatus.DRAFT.value,
                total_value=sum((line['total_value'] for line in lines), ZERO),
                created_by=user_id,
                created_at=now()
            )
            adjustment.items = [StockAdjustmentItem(**line) for line in lines]
            session.add(adjustment)
            session.flush()

            log_action(
                session, tenant_id, AuditAction.ADJUSTMENT_CREATED,
                resource_type='stock_adjustment', resource_id=adjustment.id,
                details={'number': adjustment_number, 'items': len(lines)},
                user_id=user_id
            )
            session.commit()
            return adjustment
        except Exception:
            session.rollback()
            raise

    adjustment = run_with_retry(session, _op, operation='create_adjustment')
    logger.info(f"[STOCK] Adjustment {adjustment.adjustment_number} created (draft)")
    return adjustment


def get_adjustment(session, tenant_id: int, adjustment_id: int, lock: bool = False) -> StockAdjustment:
    query = session.query(StockAdjustment).filter(
        StockAdjustment.id == adjustment_id,
        StockAdjustment.tenant_id == tenant_id
    )
    if lock:
        query = lock_for_update(query)
    adjustment = query.first()
    if not adjustment:
        raise NotFoundError('Ajuste no encontrado')
    return adjustment


def get_adjustments(session, tenant_id: int, status: str = None, warehouse_id: int = None) -> list:
    """Adjustments of the tenant, newest first."""
    query = session.query(StockAdjustment).filter(StockAdjustment.tenant_id == tenant_id)
    if status:
        query = query.filter(StockAdjustment.status == coerce_enum(AdjustmentStatus, status, 'Estado').value)
    if warehouse_id:
        query = query.filter(StockAdjustment.warehouse_id == warehouse_id)
    return query.order_by(StockAdjustment.created_at.desc(), StockAdjustment.id.desc()).all()


def approve_adjustment(session, tenant_id: int, adjustment_id: int, user_id: int = None) -> StockAdjustment:
    """
    Apply a draft adjustment to stock in one transaction.

    For each item with a non-zero difference an IN (surplus) or OUT (shrinkage)
    movement of |difference| is appended; every item's stock row is then set
    to the counted quantity. If stock moved between the count and the approval,
    the counted quantity still wins and verify_kardex reports the gap.
    """
    def _op():
        try:
            adjustment = get_adjustment(session, tenant_id, adjustment_id, lock=True)
            if adjustment.status != AdjustmentStatus.DRAFT.value:
                raise InvalidStateError('Solo se pueden aprobar ajustes en borrador')

            for item in adjustment.items:
                difference = to_decimal(item.difference)
                if difference != 0:
                    movement_type = StockMovementType.IN if difference > 0 else StockMovementType.OUT
                    append_stock_movement(
                        session,
                        tenant_id=tenant_id,
                        warehouse_id=adjustment.warehouse_id,
                        product_id=item.product_id,
                        movement_type=movement_type,
                        quantity=abs(difference),
                        unit_cost=item.unit_cost,
                        document_type=StockDocumentType.ADJUSTMENT,
                        document_id=adjustment.id,
                        reference_number=adjustment.adjustment_number,
                        notes=f'Ajuste de inventario: {adjustment.reason}',
                        user_id=user_id
                    )
                    stock_movements_total.labels(
                        movement_type=movement_type.value,
                        document_type=StockDocumentType.ADJUSTMENT.value
                    ).inc()

                set_stock_quantity(
                    session, tenant_id, adjustment.warehouse_id, item.product_id, item.adjusted_qty
                )

            adjustment.status = AdjustmentStatus.APPROVED.value
            adjustment.approved_by = user_id
            adjustment.approved_at = now()

            log_action(
                session, tenant_id, AuditAction.ADJUSTMENT_APPROVED,
                resource_type='stock_adjustment', resource_id=adjustment.id,
                details={'number': adjustment.adjustment_number, 'total_value': str(adjustment.total_value)},
                user_id=user_id
            )
            session.commit()
            return adjustment
        except Exception:
            session.rollback()
            raise

    adjustment = run_with_retry(session, _op, operation='approve_adjustment')
    invalidate_tenant_cache(tenant_id, INVENTORY_MODULE)
    logger.info(f"[STOCK] Adjustment {adjustment.adjustment_number} approved")
    return adjustment


def cancel_adjustment(session, tenant_id: int, adjustment_id: int, user_id: int = None) -> StockAdjustment:
    """Cancel a draft adjustment. Approved adjustments are corrected with a new adjustment."""
    try:
        adjustment = get_adjustment(session, tenant_id, adjustment_id, lock=True)
        if adjustment.status != AdjustmentStatus.DRAFT.value:
            raise InvalidStateError('Solo se pueden cancelar ajustes en borrador')

        adjustment.status = AdjustmentStatus.CANCELLED.value
        adjustment.cancelled_at = now()

        log_action(
            session, tenant_id, AuditAction.ADJUSTMENT_CANCELLED,
            resource_type='stock_adjustment', resource_id=adjustment.id,
            details={'number': adjustment.adjustment_number},
            user_id=user_id
        )
        session.commit()
        return adjustment
    except Exception:
        session.rollback()
        raise
