"""
Sales service with transactional logic - Multi-Tenant.

A confirmed sale writes the document, OUT stock movements for stock-tracked
products and, when a customer is given, the customer account postings, all
in one transaction. Unlike purchases, the customer postings are not
best-effort: a sale on credit that is not on the customer's account would be
lost revenue, so any failure rolls the whole sale back. The cash income of
each payment goes through the ledger outbox like purchase payments do.
"""
import logging

from backoffice.exceptions import NotFoundError, InvalidInputError, InvalidStateError, OverPaymentError
from backoffice.models import (
    Sale, SaleItem, SalePayment, SaleStatus, Product, Entity, MovementType,
    MovementNature, StockMovementType, StockDocumentType, CashMovementType, AuditAction
)
from backoffice.services.audit_service import log_action
from backoffice.services.balance_calculator import ZERO, money
from backoffice.services.cache_service import INVENTORY_MODULE, ACCOUNTS_MODULE, invalidate_tenant_cache
from backoffice.services.concurrency import lock_for_update, run_with_retry
from backoffice.services.entity_account_service import post_entity_movement
from backoffice.services.inventory_service import get_warehouse, post_stock_movement
from backoffice.services.ledger_outbox_service import enqueue_cash_posting, dispatch_pending
from backoffice.services.purchase_service import (
    calculate_item_totals, calculate_purchase_totals, payment_status_for,
    _payment_methods, _validated_payments
)
from backoffice.services.sequence_service import next_document_number, sale_series, sale_number_format
from backoffice.utils.formatters import money_ar_2
from backoffice.utils.time_utils import now

logger = logging.getLogger(__name__)

# Outbox event types
SALE_PAYMENT_RECEIVED = 'SALE_PAYMENT_RECEIVED'

# Cash movement categories
CASH_CATEGORY_SALE = 'sale'


def _prepare_lines(session, tenant_id: int, items: list) -> list:
    if not items:
        raise InvalidInputError('La venta debe tener al menos un producto')

    product_ids = [item.get('product_id') for item in items]
    if not all(product_ids):
        raise InvalidInputError('Todos los items deben tener un producto')

    products = session.query(Product).filter(
        Product.id.in_(product_ids),
        Product.tenant_id == tenant_id
    ).all()
    products_dict = {p.id: p for p in products}
    if len(products_dict) != len(set(product_ids)):
        raise NotFoundError('Uno o más productos no encontrados o no pertenecen a su negocio')

    lines = []
    for index, item in enumerate(items, start=1):
        product = products_dict[item['product_id']]
        if not product.active:
            raise InvalidInputError(f'El producto "{product.name}" no está activo')

        unit_price = item.get('unit_price')
        totals = calculate_item_totals(dict(
            item, unit_price=product.sale_price if unit_price is None else unit_price
        ))
        lines.append({
            'line_number': index,
            'product_id': product.id,
            'product_name': product.name,
            'quantity': totals['quantity'],
            'unit_price': totals['unit_price'],
            'discount_percent': totals['discount_percent'],
            'subtotal': totals['subtotal'],
            'tax_rate': totals['tax_rate'],
            'tax_amount': totals['tax_amount'],
            'line_total': totals['line_total'],
            'stock_tracked': bool(product.track_stock),
        })
    return lines


def create_sale(
    session,
    tenant_id: int,
    warehouse_id: int,
    items: list,
    customer_id: int = None,
    payments: list = None,
    discount_percent=0,
    notes: str = None,
    user_id: int = None
) -> Sale:
    """
    Confirm a sale.

    Raises (nothing is written):
        NotFoundError: warehouse, customer, product or payment method missing
        InvalidInputError: no items, invalid amounts, unpaid balance without customer
        OverPaymentError: payments exceed the sale total
        InsufficientStockError: a stock-tracked product lacks stock in the warehouse
    """
    # 1. Validate header
    warehouse = get_warehouse(session, tenant_id, warehouse_id)
    if not warehouse.is_active:
        raise InvalidStateError(f'El almacén {warehouse.name} está inactivo')

    customer = None
    if customer_id:
        customer = session.query(Entity).filter(
            Entity.id == customer_id,
            Entity.tenant_id == tenant_id,
            Entity.is_customer == True  # noqa: E712
        ).first()
        if not customer:
            raise NotFoundError('Cliente no encontrado')

    # 2. Lines and totals
    lines = _prepare_lines(session, tenant_id, items)
    totals = calculate_purchase_totals(lines, discount_percent)
    payments = _validated_payments(payments)
    methods = _payment_methods(session, tenant_id, payments)

    paid_amount = sum((p['amount'] for p in payments), ZERO)
    if paid_amount > totals['total_amount']:
        raise OverPaymentError(
            'El monto total de los pagos no puede ser mayor al total de la venta',
            {'total_amount': str(totals['total_amount']), 'paid_amount': str(paid_amount)}
        )
    if paid_amount < totals['total_amount'] and customer is None:
        raise InvalidInputError('Una venta con saldo pendiente requiere un cliente')

    customer_name = customer.name if customer else None
    series = sale_series(warehouse)
    number_format = sale_number_format(warehouse)
    outbox_ids = []

    def _op():
        outbox_ids.clear()
        try:
            sale_number = next_document_number(session, tenant_id, series, number_format)
            sale_date = now()

            # 3. Create Sale
            sale = Sale(
                tenant_id=tenant_id,
                sale_number=sale_number,
                sale_date=sale_date,
                customer_id=customer_id,
                customer_name=customer_name,
                warehouse_id=warehouse_id,
                subtotal=totals['subtotal'],
                discount_percent=totals['discount_percent'],
                discount_amount=totals['discount_amount'],
                tax_amount=totals['tax_amount'],
                total_amount=totals['total_amount'],
                paid_amount=paid_amount,
                payment_status=payment_status_for(paid_amount, totals['total_amount']),
                status=SaleStatus.COMPLETED.value,
                notes=notes,
                created_by=user_id,
                created_at=sale_date
            )
            sale.items = [SaleItem(**line) for line in lines]
            sale.payments = [
                SalePayment(
                    payment_method_id=p['payment_method_id'],
                    payment_method_name=methods[p['payment_method_id']].name,
                    amount=p['amount'],
                    reference=p.get('reference'),
                    created_at=sale_date
                )
                for p in payments
            ]
            session.add(sale)
            session.flush()

            # 4. Stock out, in product id order so concurrent sales lock rows consistently
            for line in sorted(lines, key=lambda l: l['product_id']):
                if not line['stock_tracked']:
                    continue
                post_stock_movement(
                    session, tenant_id, warehouse_id, line['product_id'],
                    StockMovementType.OUT, line['quantity'],
                    unit_cost=None,
                    document_type=StockDocumentType.SALE,
                    document_id=sale.id,
                    reference_number=sale_number,
                    notes=f'Venta {sale_number}',
                    user_id=user_id
                )

            # 5. Customer account
            if customer_id:
                post_entity_movement(
                    session, tenant_id, customer_id, MovementType.SALE, MovementNature.DEBIT,
                    sale.total_amount, date=sale_date, clamp_date=True,
                    description=f'Venta {sale_number}', sale_id=sale.id
                )
                for payment in sale.payments:
                    post_entity_movement(
                        session, tenant_id, customer_id, MovementType.SALE_PAYMENT, MovementNature.CREDIT,
                        payment.amount, date=sale_date, clamp_date=True,
                        description=f'Cobro venta {sale_number} - {payment.payment_method_name}',
                        notes=f'Ref: {payment.reference}' if payment.reference else None,
                        sale_id=sale.id
                    )

            # 6. Cash account: each payment is money into the till, posted after commit
            for payment in sale.payments:
                entry = enqueue_cash_posting(
                    session, tenant_id, SALE_PAYMENT_RECEIVED, CashMovementType.INCOME,
                    CASH_CATEGORY_SALE, payment.amount, sale_date,
                    description=f'Cobro venta {sale_number}' + (f' - {customer_name}' if customer_name else ''),
                    payment_method_id=payment.payment_method_id,
                    reference=payment.reference or sale_number,
                    sale_id=sale.id,
                    sale_payment_id=payment.id
                )
                outbox_ids.append(entry.id)

            log_action(
                session, tenant_id, AuditAction.SALE_CREATED,
                resource_type='sale', resource_id=sale.id,
                details={'number': sale_number, 'total_amount': str(sale.total_amount),
                         'customer_id': customer_id},
                user_id=user_id
            )
            session.commit()
            return sale.id
        except Exception:
            session.rollback()
            raise

    sale_id = run_with_retry(session, _op, operation='create_sale')
    invalidate_tenant_cache(tenant_id, INVENTORY_MODULE, ACCOUNTS_MODULE)
    dispatch_pending(session, tenant_id=tenant_id, entry_ids=list(outbox_ids))

    sale = get_sale(session, tenant_id, sale_id)
    logger.info(f"[SALE] {sale.sale_number} confirmed for tenant {tenant_id}: total {money_ar_2(sale.total_amount)}")
    return sale


def get_sale(session, tenant_id: int, sale_id: int, lock: bool = False) -> Sale:
    query = session.query(Sale).filter(Sale.id == sale_id, Sale.tenant_id == tenant_id)
    if lock:
        query = lock_for_update(query)
    sale = query.first()
    if not sale:
        raise NotFoundError('Venta no encontrada o no pertenece a su negocio')
    return sale


def cancel_sale(session, tenant_id: int, sale_id: int, user_id: int = None) -> Sale:
    """
    Cancel a sale: IN movements give the stock back and a CREDIT_NOTE for the
    sale total is posted to the customer account, in one transaction.
    Payments are not refunded here.
    """
    def _op():
        try:
            sale = get_sale(session, tenant_id, sale_id, lock=True)
            if sale.status == SaleStatus.CANCELLED.value:
                raise InvalidStateError('La venta ya está cancelada')

            for item in sorted(sale.items, key=lambda i: i.product_id):
                if not item.stock_tracked:
                    continue
                post_stock_movement(
                    session, tenant_id, sale.warehouse_id, item.product_id,
                    StockMovementType.IN, item.quantity,
                    document_type=StockDocumentType.SALE_CANCELLATION,
                    document_id=sale.id,
                    reference_number=sale.sale_number,
                    notes=f'Reversión de venta cancelada {sale.sale_number}',
                    user_id=user_id
                )

            cancelled_at = now()
            if sale.customer_id and money(sale.total_amount) > 0:
                post_entity_movement(
                    session, tenant_id, sale.customer_id, MovementType.CREDIT_NOTE, MovementNature.CREDIT,
                    sale.total_amount, date=cancelled_at, clamp_date=True,
                    description=f'Anulación de venta {sale.sale_number}', sale_id=sale.id
                )

            sale.status = SaleStatus.CANCELLED.value
            sale.cancelled_at = cancelled_at

            log_action(
                session, tenant_id, AuditAction.SALE_CANCELLED,
                resource_type='sale', resource_id=sale.id,
                details={'number': sale.sale_number, 'total_amount': str(sale.total_amount)},
                user_id=user_id
            )
            session.commit()
            return sale.id
        except Exception:
            session.rollback()
            raise

    run_with_retry(session, _op, operation='cancel_sale')
    invalidate_tenant_cache(tenant_id, INVENTORY_MODULE, ACCOUNTS_MODULE)
    return get_sale(session, tenant_id, sale_id)
