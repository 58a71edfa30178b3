"""
Purchase service (compras a proveedores) - Multi-Tenant.

A purchase is one atomic unit: document, items, payments, IN stock movements,
cost price updates, audit row and the supplier and cash ledger postings queued in the
outbox. Both ledgers are posted after commit, best-effort: if a posting fails
the purchase stands and the outbox entry stays FAILED for a retry.
"""
import logging
import math
from decimal import Decimal

from sqlalchemy import or_

from backoffice.exceptions import NotFoundError, InvalidInputError, InvalidStateError, OverPaymentError
from backoffice.models import (
    Purchase, PurchaseItem, PurchasePayment, PurchaseStatus, PaymentStatus,
    Entity, Warehouse, Product, PaymentMethod, MovementType, MovementNature,
    StockMovementType, StockDocumentType, CashMovementType, AuditAction
)
from backoffice.services.audit_service import log_action
from backoffice.services.balance_calculator import ZERO, money, to_decimal, coerce_enum
from backoffice.services.cache_service import INVENTORY_MODULE, invalidate_tenant_cache
from backoffice.services.concurrency import lock_for_update, run_with_retry
from backoffice.services.inventory_service import post_stock_movement
from backoffice.services.ledger_outbox_service import (
    enqueue_ledger_posting, enqueue_cash_posting, dispatch_pending
)
from backoffice.services.sequence_service import (
    next_document_number, PURCHASE_SERIES, PURCHASE_NUMBER_FORMAT
)
from backoffice.utils.formatters import money_ar_2
from backoffice.utils.settings import get_setting
from backoffice.utils.time_utils import now, parse_datetime

logger = logging.getLogger(__name__)

HUNDRED = Decimal('100')

# Outbox event types
PURCHASE_CREATED = 'PURCHASE_CREATED'
PURCHASE_PAYMENT_ADDED = 'PURCHASE_PAYMENT_ADDED'
PURCHASE_CANCELLED = 'PURCHASE_CANCELLED'

# Cash movement categories
CASH_CATEGORY_PURCHASE = 'purchase'
CASH_CATEGORY_PURCHASE_PAYMENT = 'purchase_payment'


# ============================================================================
# Totals
# ============================================================================

def calculate_item_totals(item: dict) -> dict:
    """
    Line totals for a purchase (or sale) item.

    subtotal = qty x price - discount, tax = subtotal x rate / 100,
    line_total = subtotal + tax. Amounts rounded to cents, half up.
    """
    quantity = to_decimal(item.get('quantity'), 'Cantidad')
    unit_price = to_decimal(item.get('unit_price'), 'Precio unitario')
    discount_percent = to_decimal(item.get('discount_percent') or 0, 'Descuento')
    tax_rate = to_decimal(item.get('tax_rate') or 0, 'Alícuota')

    if quantity <= 0:
        raise InvalidInputError('La cantidad debe ser mayor a 0')
    if unit_price < 0:
        raise InvalidInputError('El precio unitario no puede ser negativo')
    if not ZERO <= discount_percent <= HUNDRED:
        raise InvalidInputError('El descuento debe estar entre 0 y 100')
    if tax_rate < 0:
        raise InvalidInputError('La alícuota no puede ser negativa')

    gross = quantity * unit_price
    discount_amount = money(gross * discount_percent / HUNDRED)
    subtotal = money(gross) - discount_amount
    tax_amount = money(subtotal * tax_rate / HUNDRED)

    return {
        'quantity': quantity,
        'unit_price': unit_price,
        'discount_percent': discount_percent,
        'discount_amount': discount_amount,
        'subtotal': subtotal,
        'tax_rate': tax_rate,
        'tax_amount': tax_amount,
        'line_total': subtotal + tax_amount,
    }


def calculate_purchase_totals(items: list, discount_percent=0) -> dict:
    """
    Document totals from calculated items.

    The document discount applies to the items subtotal; tax is the sum of the
    line taxes, so total_amount == subtotal + tax_amount always holds.
    """
    discount_percent = to_decimal(discount_percent or 0, 'Descuento')
    if not ZERO <= discount_percent <= HUNDRED:
        raise InvalidInputError('El descuento debe estar entre 0 y 100')

    items_subtotal = sum((item['subtotal'] for item in items), ZERO)
    tax_amount = sum((item['tax_amount'] for item in items), ZERO)
    discount_amount = money(items_subtotal * discount_percent / HUNDRED)
    subtotal = items_subtotal - discount_amount

    return {
        'subtotal': subtotal,
        'discount_percent': discount_percent,
        'discount_amount': discount_amount,
        'tax_amount': tax_amount,
        'total_amount': subtotal + tax_amount,
    }


def payment_status_for(paid_amount, total_amount) -> str:
    """pending when nothing is paid, paid when fully paid, partial otherwise."""
    paid_amount = to_decimal(paid_amount)
    if paid_amount <= 0:
        return PaymentStatus.PENDING.value
    if paid_amount >= to_decimal(total_amount):
        return PaymentStatus.PAID.value
    return PaymentStatus.PARTIAL.value


# ============================================================================
# Validation helpers
# ============================================================================

def _get_supplier(session, tenant_id: int, supplier_id: int) -> Entity:
    supplier = session.query(Entity).filter(
        Entity.id == supplier_id,
        Entity.tenant_id == tenant_id,
        Entity.is_supplier == True  # noqa: E712
    ).first()
    if not supplier:
        raise NotFoundError('Proveedor no encontrado')
    return supplier


def _get_warehouse(session, tenant_id: int, warehouse_id: int) -> Warehouse:
    warehouse = session.query(Warehouse).filter(
        Warehouse.id == warehouse_id,
        Warehouse.tenant_id == tenant_id
    ).first()
    if not warehouse:
        raise NotFoundError('Almacén no encontrado')
    return warehouse


def _payment_methods(session, tenant_id: int, payments: list) -> dict:
    """Map of payment_method_id -> PaymentMethod; every referenced method must exist."""
    ids = {p.get('payment_method_id') for p in payments}
    methods = session.query(PaymentMethod).filter(
        PaymentMethod.tenant_id == tenant_id,
        PaymentMethod.id.in_(ids)
    ).all() if ids else []
    by_id = {m.id: m for m in methods}
    missing = ids - set(by_id)
    if missing:
        raise NotFoundError('Método de pago no encontrado')
    return by_id


def _validated_payments(payments: list) -> list:
    validated = []
    for payment in payments or []:
        amount = money(payment.get('amount'))
        if amount <= 0:
            raise InvalidInputError('El monto de cada pago debe ser mayor a 0')
        if not payment.get('payment_method_id'):
            raise InvalidInputError('El método de pago es requerido')
        validated.append(dict(payment, amount=amount))
    return validated


def _prepare_items(session, tenant_id: int, items: list) -> list:
    """Calculate line totals and resolve product references."""
    if not items:
        raise InvalidInputError('Debe incluir al menos un item en la compra')

    prepared = []
    for index, item in enumerate(items, start=1):
        product = None
        if item.get('product_id'):
            product = session.query(Product).filter(
                Product.id == item['product_id'],
                Product.tenant_id == tenant_id
            ).first()
            if not product:
                raise NotFoundError(f'Producto {item["product_id"]} no encontrado o no pertenece a su negocio')

        name = item.get('product_name') or (product.name if product else None)
        if not name:
            raise InvalidInputError(f'Línea {index}: el nombre del producto es requerido')

        line = calculate_item_totals(item)
        line.update({
            'line_number': index,
            'product_id': product.id if product else None,
            'product_sku': item.get('product_sku') or (product.sku if product else None),
            'product_name': name,
        })
        prepared.append(line)
    return prepared


# ============================================================================
# Operations
# ============================================================================

def create_purchase(
    session,
    tenant_id: int,
    supplier_id: int,
    warehouse_id: int,
    items: list,
    payments: list = None,
    discount_percent=0,
    invoice_number: str = None,
    invoice_date=None,
    notes: str = None,
    user_id: int = None
) -> Purchase:
    """
    Register a purchase.

    Raises (before anything is written):
        NotFoundError: supplier, warehouse, product or payment method missing
        InvalidInputError: no items, invalid quantities/prices/amounts
        OverPaymentError: payments exceed the purchase total
    """
    supplier = _get_supplier(session, tenant_id, supplier_id)
    warehouse = _get_warehouse(session, tenant_id, warehouse_id)
    if not warehouse.is_active:
        raise InvalidStateError(f'El almacén {warehouse.name} está inactivo')

    lines = _prepare_items(session, tenant_id, items)
    totals = calculate_purchase_totals(lines, discount_percent)
    payments = _validated_payments(payments)
    methods = _payment_methods(session, tenant_id, payments)

    paid_amount = sum((p['amount'] for p in payments), ZERO)
    if paid_amount > totals['total_amount']:
        raise OverPaymentError(
            'El monto total de los pagos no puede ser mayor al total de la compra',
            {'total_amount': str(totals['total_amount']), 'paid_amount': str(paid_amount)}
        )

    supplier_name = supplier.name
    outbox_ids = []

    def _op():
        outbox_ids.clear()
        try:
            purchase_number = next_document_number(
                session, tenant_id, PURCHASE_SERIES, PURCHASE_NUMBER_FORMAT
            )
            purchase_date = now()

            purchase = Purchase(
                tenant_id=tenant_id,
                purchase_number=purchase_number,
                purchase_date=purchase_date,
                supplier_id=supplier_id,
                supplier_name=supplier_name,
                invoice_number=invoice_number,
                invoice_date=parse_datetime(invoice_date),
                warehouse_id=warehouse_id,
                subtotal=totals['subtotal'],
                discount_percent=totals['discount_percent'],
                discount_amount=totals['discount_amount'],
                tax_amount=totals['tax_amount'],
                total_amount=totals['total_amount'],
                paid_amount=paid_amount,
                balance_amount=totals['total_amount'] - paid_amount,
                payment_status=payment_status_for(paid_amount, totals['total_amount']),
                status=PurchaseStatus.COMPLETED.value,
                notes=notes,
                created_by=user_id,
                created_at=purchase_date
            )
            purchase.items = [PurchaseItem(**line) for line in lines]
            purchase.payments = [
                PurchasePayment(
                    payment_method_id=p['payment_method_id'],
                    payment_method_name=methods[p['payment_method_id']].name,
                    amount=p['amount'],
                    payment_date=purchase_date,
                    reference=p.get('reference'),
                    reference_date=parse_datetime(p.get('reference_date')),
                    notes=p.get('notes'),
                    created_by=user_id,
                    created_at=purchase_date
                )
                for p in payments
            ]
            session.add(purchase)
            session.flush()

            for line in lines:
                if not line['product_id']:
                    continue
                post_stock_movement(
                    session, tenant_id, warehouse_id, line['product_id'],
                    StockMovementType.IN, line['quantity'],
                    unit_cost=line['unit_price'],
                    document_type=StockDocumentType.PURCHASE,
                    document_id=purchase.id,
                    reference_number=purchase_number,
                    notes=f'Ingreso por compra {purchase_number}',
                    user_id=user_id
                )
                # Cost price follows the most recent purchase price
                product = session.query(Product).filter(Product.id == line['product_id']).first()
                product.cost_price = line['unit_price']

            # Supplier account: the purchase raises what we owe, each payment lowers it
            entry = enqueue_ledger_posting(
                session, tenant_id, PURCHASE_CREATED, supplier_id,
                MovementType.PURCHASE, MovementNature.DEBIT, purchase.total_amount,
                purchase_date,
                description=f'Compra {purchase_number}',
                notes=f'Factura {invoice_number}' if invoice_number else None,
                purchase_id=purchase.id
            )
            outbox_ids.append(entry.id)
            for payment in purchase.payments:
                entry = enqueue_ledger_posting(
                    session, tenant_id, PURCHASE_PAYMENT_ADDED, supplier_id,
                    MovementType.PURCHASE_PAYMENT, MovementNature.CREDIT, payment.amount,
                    purchase_date,
                    description=f'Pago de compra {purchase_number} - {payment.payment_method_name}',
                    notes=f'Ref: {payment.reference}' if payment.reference else None,
                    purchase_id=purchase.id,
                    purchase_payment_id=payment.id
                )
                outbox_ids.append(entry.id)
                # Cash account: every payment is money out of the till
                entry = enqueue_cash_posting(
                    session, tenant_id, PURCHASE_PAYMENT_ADDED, CashMovementType.EXPENSE,
                    CASH_CATEGORY_PURCHASE, payment.amount, purchase_date,
                    description=f'Pago de compra {purchase_number} - {supplier_name}',
                    payment_method_id=payment.payment_method_id,
                    reference=invoice_number or purchase_number,
                    notes=payment.notes,
                    purchase_id=purchase.id,
                    purchase_payment_id=payment.id
                )
                outbox_ids.append(entry.id)

            log_action(
                session, tenant_id, AuditAction.PURCHASE_CREATED,
                resource_type='purchase', resource_id=purchase.id,
                details={'number': purchase_number, 'supplier_id': supplier_id,
                         'total_amount': str(purchase.total_amount), 'items': len(lines)},
                user_id=user_id
            )

            session.commit()
            return purchase.id
        except Exception:
            session.rollback()
            raise

    purchase_id = run_with_retry(session, _op, operation='create_purchase')
    invalidate_tenant_cache(tenant_id, INVENTORY_MODULE)

    # Best-effort: a failed posting stays in the outbox, the purchase stands
    dispatch_pending(session, tenant_id=tenant_id, entry_ids=list(outbox_ids))

    purchase = get_purchase(session, tenant_id, purchase_id)
    logger.info(
        f"[PURCHASE] {purchase.purchase_number} created for tenant {tenant_id}: "
        f"total {money_ar_2(purchase.total_amount)}, status {purchase.payment_status}"
    )
    return purchase


def get_purchase(session, tenant_id: int, purchase_id: int, lock: bool = False) -> Purchase:
    query = session.query(Purchase).filter(
        Purchase.id == purchase_id,
        Purchase.tenant_id == tenant_id
    )
    if lock:
        query = lock_for_update(query)
    purchase = query.first()
    if not purchase:
        raise NotFoundError('Compra no encontrada')
    return purchase


def list_purchases(
    session,
    tenant_id: int,
    page: int = 1,
    limit: int = 20,
    date_from=None,
    date_to=None,
    supplier_id: int = None,
    payment_status: str = None,
    search: str = None
) -> dict:
    """Purchases of the tenant, newest first, paginated."""
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 20), 1), get_setting('MAX_PAGE_SIZE', 500))

    query = session.query(Purchase).filter(Purchase.tenant_id == tenant_id)

    start = parse_datetime(date_from)
    end = parse_datetime(date_to, end_of_day=True)
    if start:
        query = query.filter(Purchase.purchase_date >= start)
    if end:
        query = query.filter(Purchase.purchase_date <= end)
    if supplier_id:
        query = query.filter(Purchase.supplier_id == supplier_id)
    if payment_status:
        status = coerce_enum(PaymentStatus, payment_status, 'Estado de pago')
        query = query.filter(Purchase.payment_status == status.value)
    if search:
        pattern = f'%{search}%'
        query = query.filter(or_(
            Purchase.purchase_number.ilike(pattern),
            Purchase.supplier_name.ilike(pattern),
            Purchase.invoice_number.ilike(pattern)
        ))

    total = query.count()
    purchases = query.order_by(
        Purchase.purchase_date.desc(), Purchase.id.desc()
    ).offset((page - 1) * limit).limit(limit).all()

    return {
        'data': purchases,
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'total_pages': math.ceil(total / limit) if total else 0,
        },
    }


def add_purchase_payment(
    session,
    tenant_id: int,
    purchase_id: int,
    payment_method_id: int,
    amount,
    reference: str = None,
    reference_date=None,
    notes: str = None,
    user_id: int = None
) -> dict:
    """Register an additional payment. Returns {'payment', 'purchase'}."""
    amount = money(amount)
    if amount <= 0:
        raise InvalidInputError('El monto del pago debe ser mayor a 0')
    payment_method = _payment_methods(session, tenant_id, [{'payment_method_id': payment_method_id}])[payment_method_id]
    payment_method_name = payment_method.name
    outbox_ids = []

    def _op():
        outbox_ids.clear()
        try:
            purchase = get_purchase(session, tenant_id, purchase_id, lock=True)
            if purchase.status == PurchaseStatus.CANCELLED.value:
                raise InvalidStateError('No se puede agregar un pago a una compra cancelada')

            new_paid_amount = to_decimal(purchase.paid_amount) + amount
            if new_paid_amount > to_decimal(purchase.total_amount):
                raise OverPaymentError(
                    'El monto del pago excede el saldo pendiente de la compra',
                    {'balance_amount': str(purchase.balance_amount), 'amount': str(amount)}
                )

            payment_date = now()
            payment = PurchasePayment(
                purchase_id=purchase.id,
                payment_method_id=payment_method_id,
                payment_method_name=payment_method_name,
                amount=amount,
                payment_date=payment_date,
                reference=reference,
                reference_date=parse_datetime(reference_date),
                notes=notes,
                created_by=user_id,
                created_at=payment_date
            )
            session.add(payment)

            purchase.paid_amount = new_paid_amount
            purchase.balance_amount = to_decimal(purchase.total_amount) - new_paid_amount
            purchase.payment_status = payment_status_for(new_paid_amount, purchase.total_amount)
            session.flush()

            entry = enqueue_ledger_posting(
                session, tenant_id, PURCHASE_PAYMENT_ADDED, purchase.supplier_id,
                MovementType.PURCHASE_PAYMENT, MovementNature.CREDIT, amount,
                payment_date,
                description=f'Pago de compra {purchase.purchase_number} - {payment_method_name}',
                notes=f'Ref: {reference}' if reference else None,
                purchase_id=purchase.id,
                purchase_payment_id=payment.id
            )
            outbox_ids.append(entry.id)
            entry = enqueue_cash_posting(
                session, tenant_id, PURCHASE_PAYMENT_ADDED, CashMovementType.EXPENSE,
                CASH_CATEGORY_PURCHASE_PAYMENT, amount, payment_date,
                description=f'Pago adicional de compra {purchase.purchase_number} - {purchase.supplier_name}',
                payment_method_id=payment_method_id,
                reference=reference or purchase.purchase_number,
                notes=notes,
                purchase_id=purchase.id,
                purchase_payment_id=payment.id
            )
            outbox_ids.append(entry.id)

            log_action(
                session, tenant_id, AuditAction.PURCHASE_PAYMENT_ADDED,
                resource_type='purchase', resource_id=purchase.id,
                details={'payment_id': payment.id, 'amount': str(amount)},
                user_id=user_id
            )
            session.commit()
            return payment.id
        except Exception:
            session.rollback()
            raise

    payment_id = run_with_retry(session, _op, operation='add_purchase_payment')
    dispatch_pending(session, tenant_id=tenant_id, entry_ids=list(outbox_ids))

    payment = session.query(PurchasePayment).filter(PurchasePayment.id == payment_id).first()
    return {'payment': payment, 'purchase': get_purchase(session, tenant_id, purchase_id)}


def cancel_purchase(session, tenant_id: int, purchase_id: int, user_id: int = None) -> Purchase:
    """
    Cancel a purchase: OUT movements reverse its stock and a CREDIT_NOTE for the
    total is queued for the supplier account. Payments are not reversed.

    If part of the purchased stock was already consumed the reversal would go
    negative, so the cancellation fails with InsufficientStockError and nothing
    changes.
    """
    outbox_ids = []

    def _op():
        outbox_ids.clear()
        try:
            purchase = get_purchase(session, tenant_id, purchase_id, lock=True)
            if purchase.status == PurchaseStatus.CANCELLED.value:
                raise InvalidStateError('La compra ya está cancelada')

            for item in purchase.items:
                if not item.product_id:
                    continue
                post_stock_movement(
                    session, tenant_id, purchase.warehouse_id, item.product_id,
                    StockMovementType.OUT, item.quantity,
                    unit_cost=item.unit_price,
                    document_type=StockDocumentType.PURCHASE_CANCELLATION,
                    document_id=purchase.id,
                    reference_number=purchase.purchase_number,
                    notes=f'Reversión de compra cancelada {purchase.purchase_number}',
                    user_id=user_id
                )

            cancelled_at = now()
            purchase.status = PurchaseStatus.CANCELLED.value
            purchase.cancelled_at = cancelled_at

            if to_decimal(purchase.total_amount) > 0:
                entry = enqueue_ledger_posting(
                    session, tenant_id, PURCHASE_CANCELLED, purchase.supplier_id,
                    MovementType.CREDIT_NOTE, MovementNature.CREDIT, purchase.total_amount,
                    cancelled_at,
                    description=f'Anulación de compra {purchase.purchase_number}',
                    purchase_id=purchase.id
                )
                outbox_ids.append(entry.id)

            log_action(
                session, tenant_id, AuditAction.PURCHASE_CANCELLED,
                resource_type='purchase', resource_id=purchase.id,
                details={'number': purchase.purchase_number, 'total_amount': str(purchase.total_amount)},
                user_id=user_id
            )
            session.commit()
            return purchase.id
        except Exception:
            session.rollback()
            raise

    run_with_retry(session, _op, operation='cancel_purchase')
    invalidate_tenant_cache(tenant_id, INVENTORY_MODULE)
    dispatch_pending(session, tenant_id=tenant_id, entry_ids=list(outbox_ids))

    purchase = get_purchase(session, tenant_id, purchase_id)
    logger.info(f"[PURCHASE] {purchase.purchase_number} cancelled")
    return purchase
