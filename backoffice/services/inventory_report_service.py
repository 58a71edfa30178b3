"""Read-only inventory reports: valuation, movement summary and product kardex."""
import logging

from sqlalchemy import func

from backoffice.exceptions import NotFoundError
from backoffice.models import WarehouseStock, Product, Warehouse, StockMovement, StockMovementType
from backoffice.services.balance_calculator import ZERO, money, to_decimal, replay_quantities
from backoffice.services.cache_service import INVENTORY_MODULE, cached_report
from backoffice.utils.time_utils import now, parse_datetime

logger = logging.getLogger(__name__)


def get_inventory_valuation(session, tenant_id: int, warehouse_id: int = None) -> dict:
    """Stock valued at the product's last purchase cost (Product.cost_price)."""
    def _load():
        query = session.query(WarehouseStock, Product, Warehouse).join(
            Product, WarehouseStock.product_id == Product.id
        ).join(
            Warehouse, WarehouseStock.warehouse_id == Warehouse.id
        ).filter(WarehouseStock.tenant_id == tenant_id)
        if warehouse_id:
            query = query.filter(WarehouseStock.warehouse_id == warehouse_id)

        items = []
        for stock, product, warehouse in query.order_by(Warehouse.name, Product.name).all():
            quantity = to_decimal(stock.quantity)
            unit_cost = to_decimal(product.cost_price)
            items.append({
                'warehouse_id': warehouse.id,
                'warehouse': warehouse.name,
                'product_id': product.id,
                'product': product.name,
                'sku': product.sku,
                'quantity': quantity,
                'unit_cost': unit_cost,
                'total_value': money(quantity * unit_cost),
            })

        return {
            'items': items,
            'total_value': sum((item['total_value'] for item in items), ZERO),
            'generated_at': now().isoformat(),
        }

    return cached_report(tenant_id, INVENTORY_MODULE, f'valuation:{warehouse_id or "all"}', _load)


def get_movements_summary(session, tenant_id: int, start_date=None, end_date=None) -> dict:
    """Quantities and values moved in and out over a period."""
    start = parse_datetime(start_date)
    end = parse_datetime(end_date, end_of_day=True)

    query = session.query(
        StockMovement.movement_type,
        func.count(StockMovement.id),
        func.coalesce(func.sum(StockMovement.quantity), 0),
        func.coalesce(func.sum(StockMovement.total_cost), 0)
    ).filter(StockMovement.tenant_id == tenant_id)
    if start:
        query = query.filter(StockMovement.created_at >= start)
    if end:
        query = query.filter(StockMovement.created_at <= end)

    rows = {
        movement_type: (count, to_decimal(quantity), money(value))
        for movement_type, count, quantity, value in query.group_by(StockMovement.movement_type).all()
    }
    entries = rows.get(StockMovementType.IN, (0, ZERO, money(0)))
    exits = rows.get(StockMovementType.OUT, (0, ZERO, money(0)))
    transfers = rows.get(StockMovementType.TRANSFER, (0, ZERO, money(0)))

    return {
        'entries_count': entries[0],
        'exits_count': exits[0],
        'transfers_count': transfers[0],
        'total_entries': entries[1],
        'total_exits': exits[1],
        'total_transfers': transfers[1],
        'total_value_in': entries[2],
        'total_value_out': exits[2],
    }


def _kardex_movements(session, tenant_id, product_id, warehouse_id=None, start=None, end=None, before=None):
    query = session.query(StockMovement).filter(
        StockMovement.tenant_id == tenant_id,
        StockMovement.product_id == product_id
    )
    if warehouse_id:
        query = query.filter(StockMovement.warehouse_id == warehouse_id)
    if start:
        query = query.filter(StockMovement.created_at >= start)
    if end:
        query = query.filter(StockMovement.created_at <= end)
    if before:
        query = query.filter(StockMovement.created_at < before)
    return query.order_by(StockMovement.created_at.asc(), StockMovement.id.asc()).all()


def _final_quantity(movements):
    quantity = ZERO
    for _, quantity in replay_quantities(movements):
        continue
    return quantity


def get_product_kardex(session, tenant_id: int, product_id: int, start_date=None, end_date=None,
                       warehouse_id: int = None) -> dict:
    """
    Kardex of a product: movements in (created_at, id) order with the running
    quantity. With start_date the running balance opens at the quantity
    accumulated before it.
    """
    product = session.query(Product).filter(
        Product.id == product_id,
        Product.tenant_id == tenant_id
    ).first()
    if not product:
        raise NotFoundError('Producto no encontrado o no pertenece a su negocio')

    start = parse_datetime(start_date)
    end = parse_datetime(end_date, end_of_day=True)

    opening = ZERO
    if start:
        opening = _final_quantity(_kardex_movements(session, tenant_id, product.id, warehouse_id, before=start))

    kardex = []
    balance = opening
    movements = _kardex_movements(session, tenant_id, product.id, warehouse_id, start, end)
    for movement, balance in replay_quantities(movements, opening=opening):
        is_entry = movement.movement_type == StockMovementType.IN
        kardex.append({
            'id': movement.id,
            'date': movement.created_at,
            'document': movement.reference_number or '-',
            'document_type': movement.document_type.value,
            'warehouse': movement.warehouse.name,
            'type': movement.movement_type.value,
            'entry': movement.quantity if is_entry else ZERO,
            'exit': ZERO if is_entry else movement.quantity,
            'balance': balance,
            'unit_cost': to_decimal(movement.unit_cost),
            'total_cost': to_decimal(movement.total_cost),
            'notes': movement.notes,
        })

    return {
        'product': {'id': product.id, 'sku': product.sku, 'name': product.name},
        'opening_balance': opening,
        'movements': kardex,
        'final_balance': balance,
    }


def verify_kardex(session, tenant_id: int, product_id: int) -> list:
    """
    Replay the product's movements per warehouse and compare with the stored
    WarehouseStock quantity.

    Returns one dict per warehouse that diverges. An adjustment approved with a
    stale counted quantity legitimately produces such a divergence; it is
    reported, never corrected here.
    """
    divergences = []
    stocks = session.query(WarehouseStock).filter(
        WarehouseStock.tenant_id == tenant_id,
        WarehouseStock.product_id == product_id
    ).all()

    for stock in stocks:
        replayed = _final_quantity(_kardex_movements(session, tenant_id, product_id, stock.warehouse_id))
        stored = to_decimal(stock.quantity)
        if replayed != stored:
            divergences.append({
                'warehouse_id': stock.warehouse_id,
                'product_id': product_id,
                'stored_quantity': stored,
                'replayed_quantity': replayed,
                'difference': stored - replayed,
            })

    if divergences:
        logger.warning(f"[STOCK] Kardex divergence for product {product_id}: {divergences}")
    return divergences
