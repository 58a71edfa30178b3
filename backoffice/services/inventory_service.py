"""
Warehouse stock service - Multi-Tenant.

WarehouseStock holds the quantity per (warehouse, product); StockMovement is
the kardex that explains it. post_stock_movement is the only way quantities
move (set_stock_quantity is reserved for approved physical counts) and both
run inside the caller's transaction.
"""
import logging
from decimal import Decimal

from sqlalchemy import func

from backoffice.exceptions import NotFoundError, InvalidInputError, InvalidStateError, InsufficientStockError
from backoffice.models import (
    Warehouse, WarehouseStock, Product, StockMovement, StockMovementType,
    StockDocumentType, AuditAction
)
from backoffice.blueprints.metrics import stock_movements_total
from backoffice.services.audit_service import log_action
from backoffice.services.balance_calculator import ZERO, to_decimal, coerce_enum, next_quantity
from backoffice.services.cache_service import INVENTORY_MODULE, cached_report, invalidate_tenant_cache
from backoffice.services.concurrency import lock_for_update, run_with_retry
from backoffice.services.movement_log import append_stock_movement
from backoffice.utils.settings import get_setting
from backoffice.utils.time_utils import now, parse_datetime

logger = logging.getLogger(__name__)


# ============================================================================
# Warehouses
# ============================================================================

def get_warehouses(session, tenant_id: int) -> list:
    """Active warehouses of the tenant, by name."""
    return session.query(Warehouse).filter(
        Warehouse.tenant_id == tenant_id,
        Warehouse.is_active == True  # noqa: E712
    ).order_by(Warehouse.name).all()


def get_warehouse(session, tenant_id: int, warehouse_id: int) -> Warehouse:
    """Get a warehouse of the tenant (active or not)."""
    warehouse = session.query(Warehouse).filter(
        Warehouse.id == warehouse_id,
        Warehouse.tenant_id == tenant_id
    ).first()
    if not warehouse:
        raise NotFoundError('Almacén no encontrado o no pertenece a su negocio')
    return warehouse


def _check_code_available(session, tenant_id: int, code: str, exclude_id: int = None):
    query = session.query(Warehouse.id).filter(
        Warehouse.tenant_id == tenant_id,
        Warehouse.code == code
    )
    if exclude_id:
        query = query.filter(Warehouse.id != exclude_id)
    if query.first():
        raise InvalidInputError(f'Ya existe un almacén con el código {code}')


def _clear_default(session, tenant_id: int, exclude_id: int = None):
    query = session.query(Warehouse).filter(
        Warehouse.tenant_id == tenant_id,
        Warehouse.is_default == True  # noqa: E712
    )
    if exclude_id:
        query = query.filter(Warehouse.id != exclude_id)
    for warehouse in query.all():
        warehouse.is_default = False


def create_warehouse(session, tenant_id: int, data: dict) -> Warehouse:
    """
    Create a warehouse. The code is unique per tenant; marking it as default
    (or creating the tenant's first warehouse) clears the other defaults.
    """
    code = (data.get('code') or '').strip()
    name = (data.get('name') or '').strip()
    if not code:
        raise InvalidInputError('El código del almacén es requerido')
    if not name:
        raise InvalidInputError('El nombre del almacén es requerido')

    try:
        _check_code_available(session, tenant_id, code)

        is_first = session.query(Warehouse.id).filter(Warehouse.tenant_id == tenant_id).first() is None
        is_default = bool(data.get('is_default')) or is_first
        if is_default:
            _clear_default(session, tenant_id)

        warehouse = Warehouse(
            tenant_id=tenant_id,
            code=code,
            name=name,
            address=data.get('address'),
            is_default=is_default,
            is_active=True,
            created_at=now(),
            updated_at=now()
        )
        session.add(warehouse)
        session.commit()

        logger.info(f"[STOCK] Warehouse {code} created for tenant {tenant_id}")
        return warehouse
    except Exception:
        session.rollback()
        raise


def update_warehouse(session, tenant_id: int, warehouse_id: int, data: dict) -> Warehouse:
    """Update name, code, address, default flag or active flag."""
    try:
        warehouse = get_warehouse(session, tenant_id, warehouse_id)

        if 'code' in data:
            code = (data.get('code') or '').strip()
            if not code:
                raise InvalidInputError('El código del almacén es requerido')
            _check_code_available(session, tenant_id, code, exclude_id=warehouse.id)
            warehouse.code = code

        if 'name' in data:
            name = (data.get('name') or '').strip()
            if not name:
                raise InvalidInputError('El nombre del almacén es requerido')
            warehouse.name = name

        if 'address' in data:
            warehouse.address = data.get('address')

        if data.get('is_default'):
            _clear_default(session, tenant_id, exclude_id=warehouse.id)
            warehouse.is_default = True
        elif 'is_default' in data:
            warehouse.is_default = False

        if 'is_active' in data:
            warehouse.is_active = bool(data['is_active'])

        warehouse.updated_at = now()
        session.commit()
        return warehouse
    except Exception:
        session.rollback()
        raise


def delete_warehouse(session, tenant_id: int, warehouse_id: int, user_id: int = None) -> Warehouse:
    """Soft delete (is_active=False). Refused while any product has stock in it."""
    try:
        warehouse = get_warehouse(session, tenant_id, warehouse_id)

        has_stock = session.query(WarehouseStock.id).filter(
            WarehouseStock.tenant_id == tenant_id,
            WarehouseStock.warehouse_id == warehouse.id,
            WarehouseStock.quantity > 0
        ).first()
        if has_stock:
            raise InvalidStateError('No se puede eliminar un almacén con stock')

        warehouse.is_active = False
        warehouse.is_default = False
        warehouse.updated_at = now()

        log_action(
            session, tenant_id, AuditAction.WAREHOUSE_DELETED,
            resource_type='warehouse', resource_id=warehouse.id,
            details={'code': warehouse.code}, user_id=user_id
        )
        session.commit()
        return warehouse
    except Exception:
        session.rollback()
        raise


# ============================================================================
# Stock postings
# ============================================================================

def _get_product(session, tenant_id: int, product_id: int) -> Product:
    product = session.query(Product).filter(
        Product.id == product_id,
        Product.tenant_id == tenant_id
    ).first()
    if not product:
        raise NotFoundError(f'Producto {product_id} no encontrado o no pertenece a su negocio')
    return product


def _lock_stock_row(session, tenant_id: int, warehouse_id: int, product_id: int):
    return lock_for_update(
        session.query(WarehouseStock).filter(
            WarehouseStock.tenant_id == tenant_id,
            WarehouseStock.warehouse_id == warehouse_id,
            WarehouseStock.product_id == product_id
        )
    ).first()


def _new_stock_row(session, tenant_id: int, warehouse_id: int, product_id: int) -> WarehouseStock:
    """Create the (warehouse, product) row at zero. A concurrent creator makes the flush
    fail with IntegrityError, which run_with_retry turns into a retry."""
    stock = WarehouseStock(
        tenant_id=tenant_id,
        warehouse_id=warehouse_id,
        product_id=product_id,
        quantity=ZERO,
        reserved_qty=ZERO,
        available_qty=ZERO
    )
    session.add(stock)
    session.flush()
    return stock


def _sync_product_stock(session, tenant_id: int, product: Product) -> Decimal:
    """Product.current_stock = sum of the product's warehouse quantities."""
    session.flush()
    total = session.query(func.coalesce(func.sum(WarehouseStock.quantity), 0)).filter(
        WarehouseStock.tenant_id == tenant_id,
        WarehouseStock.product_id == product.id
    ).scalar()
    product.current_stock = to_decimal(total)
    return product.current_stock


def post_stock_movement(
    session,
    tenant_id: int,
    warehouse_id: int,
    product_id: int,
    movement_type,
    quantity,
    unit_cost=None,
    document_type=None,
    document_id: int = None,
    reference_number: str = None,
    notes: str = None,
    user_id: int = None
) -> StockMovement:
    """
    Append a kardex movement and apply it to the warehouse stock row.

    Commit is handled by the caller. The WarehouseStock row is locked for the
    read-check-write, so an OUT can never take the quantity below zero even
    with concurrent sales.

    Raises:
        NotFoundError: warehouse or product not in the tenant
        InvalidInputError: quantity <= 0, TRANSFER, unknown type
        InvalidStateError: warehouse inactive
        InsufficientStockError: OUT larger than the quantity on hand
    """
    movement_type = coerce_enum(StockMovementType, movement_type, 'Tipo de movimiento')
    document_type = coerce_enum(StockDocumentType, document_type or StockDocumentType.MANUAL, 'Tipo de documento')
    if movement_type == StockMovementType.TRANSFER:
        raise InvalidInputError('Los movimientos TRANSFER deben registrarse como OUT e IN')

    quantity = to_decimal(quantity, 'Cantidad')
    if quantity <= 0:
        raise InvalidInputError('La cantidad debe ser mayor a 0')
    if unit_cost is not None:
        unit_cost = to_decimal(unit_cost, 'Costo unitario')
        if unit_cost < 0:
            raise InvalidInputError('El costo unitario no puede ser negativo')

    warehouse = get_warehouse(session, tenant_id, warehouse_id)
    if not warehouse.is_active:
        raise InvalidStateError(f'El almacén {warehouse.name} está inactivo')
    product = _get_product(session, tenant_id, product_id)

    stock = _lock_stock_row(session, tenant_id, warehouse.id, product.id)

    if movement_type == StockMovementType.OUT:
        available = stock.quantity if stock else ZERO
        if stock is None or quantity > stock.quantity:
            raise InsufficientStockError(product.name, quantity, available, warehouse.name)

    if stock is None:
        stock = _new_stock_row(session, tenant_id, warehouse.id, product.id)

    previous_quantity = to_decimal(stock.quantity)
    new_quantity = next_quantity(previous_quantity, movement_type, quantity)

    movement = append_stock_movement(
        session,
        tenant_id=tenant_id,
        warehouse_id=warehouse.id,
        product_id=product.id,
        movement_type=movement_type,
        quantity=quantity,
        unit_cost=unit_cost,
        document_type=document_type,
        document_id=document_id,
        reference_number=reference_number,
        notes=notes,
        user_id=user_id
    )

    stock.quantity = new_quantity
    stock.available_qty = new_quantity - to_decimal(stock.reserved_qty)
    stock.last_movement_at = movement.created_at
    _sync_product_stock(session, tenant_id, product)

    movement.previous_quantity = previous_quantity
    movement.new_quantity = new_quantity

    stock_movements_total.labels(
        movement_type=movement_type.value,
        document_type=document_type.value
    ).inc()
    logger.info(
        f"[STOCK] tenant={tenant_id} {movement_type.value} {quantity} x product {product.id} "
        f"in warehouse {warehouse.code}: {previous_quantity} -> {new_quantity} ({document_type.value})"
    )
    return movement


def set_stock_quantity(session, tenant_id: int, warehouse_id: int, product_id: int, quantity) -> WarehouseStock:
    """
    Set (not increment) the quantity of a stock row, creating it if needed.

    Used by adjustment approval, where the counted quantity wins. Commit is
    handled by the caller.
    """
    quantity = to_decimal(quantity, 'Cantidad')
    if quantity < 0:
        raise InvalidInputError('La cantidad no puede ser negativa')

    warehouse = get_warehouse(session, tenant_id, warehouse_id)
    product = _get_product(session, tenant_id, product_id)

    stock = _lock_stock_row(session, tenant_id, warehouse.id, product.id)
    if stock is None:
        stock = _new_stock_row(session, tenant_id, warehouse.id, product.id)

    stock.quantity = quantity
    stock.available_qty = quantity - to_decimal(stock.reserved_qty)
    stock.last_movement_at = now()
    _sync_product_stock(session, tenant_id, product)
    return stock


def create_stock_movement(
    session,
    tenant_id: int,
    warehouse_id: int,
    product_id: int,
    movement_type,
    quantity,
    unit_cost=None,
    document_type=None,
    document_id: int = None,
    reference_number: str = None,
    notes: str = None,
    user_id: int = None
) -> StockMovement:
    """Manual stock movement as its own transaction."""
    def _op():
        try:
            movement = post_stock_movement(
                session, tenant_id, warehouse_id, product_id, movement_type, quantity,
                unit_cost=unit_cost, document_type=document_type, document_id=document_id,
                reference_number=reference_number, notes=notes, user_id=user_id
            )
            log_action(
                session, tenant_id, AuditAction.STOCK_MOVEMENT_CREATED,
                resource_type='stock_movement', resource_id=movement.id,
                details={'warehouse_id': warehouse_id, 'product_id': product_id,
                         'type': movement.movement_type.value, 'quantity': str(movement.quantity)},
                user_id=user_id
            )
            session.commit()
            return movement
        except Exception:
            session.rollback()
            raise

    movement = run_with_retry(session, _op, operation='create_stock_movement')
    invalidate_tenant_cache(tenant_id, INVENTORY_MODULE)
    return movement


def transfer_stock(
    session,
    tenant_id: int,
    from_warehouse_id: int,
    to_warehouse_id: int,
    product_id: int,
    quantity,
    notes: str = None,
    user_id: int = None
) -> dict:
    """Move stock between two warehouses: an OUT and an IN in one transaction."""
    if from_warehouse_id == to_warehouse_id:
        raise InvalidInputError('El almacén de origen y destino deben ser distintos')

    def _op():
        try:
            product = _get_product(session, tenant_id, product_id)
            origin = get_warehouse(session, tenant_id, from_warehouse_id)
            destination = get_warehouse(session, tenant_id, to_warehouse_id)
            reference = f'{origin.code}>{destination.code}'

            # Lock rows in id order so two opposite transfers cannot deadlock
            first, second = sorted([origin.id, destination.id])
            _lock_stock_row(session, tenant_id, first, product.id)
            _lock_stock_row(session, tenant_id, second, product.id)

            out_movement = post_stock_movement(
                session, tenant_id, origin.id, product.id, StockMovementType.OUT, quantity,
                unit_cost=product.cost_price, document_type=StockDocumentType.TRANSFER,
                reference_number=reference, notes=notes, user_id=user_id
            )
            in_movement = post_stock_movement(
                session, tenant_id, destination.id, product.id, StockMovementType.IN, quantity,
                unit_cost=product.cost_price, document_type=StockDocumentType.TRANSFER,
                reference_number=reference, notes=notes, user_id=user_id
            )
            log_action(
                session, tenant_id, AuditAction.STOCK_MOVEMENT_CREATED,
                resource_type='stock_movement', resource_id=out_movement.id,
                details={'transfer': reference, 'product_id': product.id, 'quantity': str(quantity)},
                user_id=user_id
            )
            session.commit()
            return {'out': out_movement, 'in': in_movement}
        except Exception:
            session.rollback()
            raise

    result = run_with_retry(session, _op, operation='transfer_stock')
    invalidate_tenant_cache(tenant_id, INVENTORY_MODULE)
    return result


# ============================================================================
# Stock queries
# ============================================================================

def get_stock(session, tenant_id: int, warehouse_id: int = None, product_id: int = None) -> list:
    """Stock rows of the tenant, optionally for one warehouse and/or product."""
    query = session.query(WarehouseStock).filter(WarehouseStock.tenant_id == tenant_id)
    if warehouse_id:
        query = query.filter(WarehouseStock.warehouse_id == warehouse_id)
    if product_id:
        query = query.filter(WarehouseStock.product_id == product_id)
    return query.order_by(WarehouseStock.warehouse_id, WarehouseStock.product_id).all()


def get_product_stock(session, tenant_id: int, product_id: int) -> dict:
    """Stock of one product across warehouses."""
    product = _get_product(session, tenant_id, product_id)
    stocks = get_stock(session, tenant_id, product_id=product.id)

    total_stock = sum((to_decimal(s.quantity) for s in stocks), ZERO)
    total_reserved = sum((to_decimal(s.reserved_qty) for s in stocks), ZERO)

    return {
        'product_id': product.id,
        'total_stock': total_stock,
        'total_reserved': total_reserved,
        'total_available': total_stock - total_reserved,
        'by_warehouse': [
            {
                'warehouse_id': s.warehouse_id,
                'warehouse_name': s.warehouse.name,
                'quantity': s.quantity,
                'reserved_qty': s.reserved_qty,
                'available_qty': s.available_qty,
            }
            for s in stocks
        ],
    }


def get_warehouse_stock(session, tenant_id: int, warehouse_id: int) -> list:
    """Stock rows of one warehouse ordered by product name."""
    warehouse = get_warehouse(session, tenant_id, warehouse_id)
    return session.query(WarehouseStock).join(Product).filter(
        WarehouseStock.tenant_id == tenant_id,
        WarehouseStock.warehouse_id == warehouse.id
    ).order_by(Product.name).all()


def get_low_stock(session, tenant_id: int) -> list:
    """
    Active stock-tracked products whose total stock is at or below their
    minimum (LOW_STOCK_THRESHOLD when the product has none).
    """
    def _load():
        fallback = to_decimal(get_setting('LOW_STOCK_THRESHOLD', 0))
        totals = dict(
            session.query(WarehouseStock.product_id, func.coalesce(func.sum(WarehouseStock.quantity), 0))
            .filter(WarehouseStock.tenant_id == tenant_id)
            .group_by(WarehouseStock.product_id)
            .all()
        )
        products = session.query(Product).filter(
            Product.tenant_id == tenant_id,
            Product.active == True,  # noqa: E712
            Product.track_stock == True  # noqa: E712
        ).order_by(Product.name).all()

        low = []
        for product in products:
            total = to_decimal(totals.get(product.id, 0))
            minimum = to_decimal(product.min_stock) or fallback
            if total > minimum:
                continue
            low.append({
                'product_id': product.id,
                'sku': product.sku,
                'name': product.name,
                'current_stock': total,
                'min_stock': minimum,
                'stock_status': 'out_of_stock' if total <= 0 else 'low_stock',
            })
        return low

    return cached_report(tenant_id, INVENTORY_MODULE, 'low_stock', _load)


def get_stock_movements(
    session,
    tenant_id: int,
    warehouse_id: int = None,
    product_id: int = None,
    movement_type=None,
    document_type=None,
    start_date=None,
    end_date=None,
    limit: int = None
) -> list:
    """Kardex rows of the tenant, newest first."""
    query = session.query(StockMovement).filter(StockMovement.tenant_id == tenant_id)

    start = parse_datetime(start_date)
    end = parse_datetime(end_date, end_of_day=True)
    if start:
        query = query.filter(StockMovement.created_at >= start)
    if end:
        query = query.filter(StockMovement.created_at <= end)
    if warehouse_id:
        query = query.filter(StockMovement.warehouse_id == warehouse_id)
    if product_id:
        query = query.filter(StockMovement.product_id == product_id)
    if movement_type:
        query = query.filter(StockMovement.movement_type == coerce_enum(StockMovementType, movement_type, 'Tipo de movimiento'))
    if document_type:
        query = query.filter(StockMovement.document_type == coerce_enum(StockDocumentType, document_type, 'Tipo de documento'))

    query = query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
    if limit:
        query = query.limit(min(int(limit), get_setting('MAX_PAGE_SIZE', 500)))
    return query.all()


def get_stock_movement(session, tenant_id: int, movement_id: int) -> StockMovement:
    movement = session.query(StockMovement).filter(
        StockMovement.id == movement_id,
        StockMovement.tenant_id == tenant_id
    ).first()
    if not movement:
        raise NotFoundError('Movimiento no encontrado')
    return movement
