"""
Entity account service (cuenta corriente de clientes y proveedores) - Multi-Tenant.

Every movement stores the running balance after it. For a customer a positive
balance is what the customer owes; for a supplier it is what we owe.
DEBIT increases the balance, CREDIT decreases it.

post_entity_movement is the posting primitive: it locks the entity row, reads
the last movement, appends the new one and never commits. The public commands
(create_entity_movement, register_*_payment) own their transaction.
"""
import logging
import math

from sqlalchemy import func, case, or_

from backoffice.exceptions import NotFoundError, InvalidInputError
from backoffice.models import (
    Entity, EntityMovement, EntityPayment, EntityPaymentType, MovementType,
    MovementNature, PaymentMethod, AuditAction
)
from backoffice.services.audit_service import log_action
from backoffice.services.balance_calculator import (
    ZERO, money, to_decimal, coerce_enum, next_balance, replay_balances
)
from backoffice.services.cache_service import ACCOUNTS_MODULE, cached_report, invalidate_tenant_cache
from backoffice.services.concurrency import lock_for_update, run_with_retry
from backoffice.services.movement_log import append_entity_movement, last_entity_movement
from backoffice.utils.formatters import datetime_ar
from backoffice.utils.settings import get_setting
from backoffice.utils.time_utils import now, to_naive, parse_datetime, posting_datetime

logger = logging.getLogger(__name__)


def _get_entity(session, tenant_id: int, entity_id: int, lock: bool = False) -> Entity:
    query = session.query(Entity).filter(Entity.id == entity_id, Entity.tenant_id == tenant_id)
    if lock:
        query = lock_for_update(query)
    entity = query.first()
    if not entity:
        raise NotFoundError('Entidad no encontrada')
    return entity


def _get_payment_method(session, tenant_id: int, payment_method_id: int) -> PaymentMethod:
    payment_method = session.query(PaymentMethod).filter(
        PaymentMethod.id == payment_method_id,
        PaymentMethod.tenant_id == tenant_id
    ).first()
    if not payment_method:
        raise NotFoundError('Método de pago no encontrado')
    return payment_method


def post_entity_movement(
    session,
    tenant_id: int,
    entity_id: int,
    movement_type,
    nature,
    amount,
    date=None,
    description: str = None,
    notes: str = None,
    sale_id: int = None,
    purchase_id: int = None,
    payment_id: int = None,
    clamp_date: bool = False
) -> EntityMovement:
    """
    Append a movement to the entity account with its running balance.

    Commit is handled by the caller. The entity row stays locked until then,
    so concurrent postings to the same entity are serialized and each one
    sees the balance left by the previous.

    A date earlier than the last movement but on the same calendar day is
    posted at the last movement's timestamp. With clamp_date (document and
    outbox postings) any earlier date is posted there.

    Raises:
        NotFoundError: entity does not belong to the tenant
        InvalidInputError: negative amount, unknown type/nature, or a date
            on a day before the entity's last movement
    """
    movement_type = coerce_enum(MovementType, movement_type, 'Tipo de movimiento')
    nature = coerce_enum(MovementNature, nature, 'Naturaleza')
    amount = money(amount)
    if amount < 0:
        raise InvalidInputError('El monto no puede ser negativo')

    movement_date = posting_datetime(date)

    _get_entity(session, tenant_id, entity_id, lock=True)

    last = last_entity_movement(session, tenant_id, entity_id)
    previous_balance = last.balance if last else ZERO

    # Balances chain in (date, id) order: a backdated row would invalidate every later balance
    last_date = to_naive(last.date) if last else None
    if last_date and movement_date < last_date:
        if not clamp_date and movement_date.date() < last_date.date():
            raise InvalidInputError(
                f'La fecha del movimiento no puede ser anterior al último movimiento de la cuenta '
                f'({datetime_ar(last_date)})'
            )
        movement_date = last_date

    balance = next_balance(previous_balance, nature, amount)

    movement = append_entity_movement(
        session,
        tenant_id=tenant_id,
        entity_id=entity_id,
        type=movement_type,
        nature=nature,
        amount=amount,
        balance=balance,
        date=movement_date,
        description=description,
        notes=notes,
        sale_id=sale_id,
        purchase_id=purchase_id,
        payment_id=payment_id
    )
    movement.previous_balance = previous_balance

    logger.info(
        f"[LEDGER] tenant={tenant_id} entity={entity_id} {movement_type.value} {nature.value} "
        f"{amount}: {previous_balance} -> {balance}"
    )
    return movement


def create_entity_movement(
    session,
    tenant_id: int,
    entity_id: int,
    movement_type,
    nature,
    amount,
    date=None,
    description: str = None,
    notes: str = None,
    sale_id: int = None,
    purchase_id: int = None,
    payment_id: int = None,
    user_id: int = None
) -> EntityMovement:
    """Post a single movement in its own transaction (manual adjustments, notes, opening balances)."""
    def _op():
        try:
            movement = post_entity_movement(
                session, tenant_id, entity_id, movement_type, nature, amount, date=date,
                description=description, notes=notes, sale_id=sale_id,
                purchase_id=purchase_id, payment_id=payment_id
            )
            log_action(
                session, tenant_id, AuditAction.ENTITY_MOVEMENT_CREATED,
                resource_type='entity_movement', resource_id=movement.id,
                details={'entity_id': entity_id, 'type': movement.type.value,
                         'nature': movement.nature.value, 'amount': str(movement.amount)},
                user_id=user_id
            )
            session.commit()
            return movement
        except Exception:
            session.rollback()
            raise

    movement = run_with_retry(session, _op, operation='create_entity_movement')
    invalidate_tenant_cache(tenant_id, ACCOUNTS_MODULE)
    return movement


def _register_payment(
    session,
    tenant_id: int,
    entity_id: int,
    payment_type: EntityPaymentType,
    amount,
    payment_method_id: int,
    date=None,
    reference: str = None,
    reference_date=None,
    notes: str = None,
    user_id: int = None
) -> dict:
    amount = money(amount)
    if amount <= 0:
        raise InvalidInputError('El monto debe ser mayor a 0')

    entity = _get_entity(session, tenant_id, entity_id)
    if payment_type == EntityPaymentType.CUSTOMER_PAYMENT and not entity.is_customer:
        raise InvalidInputError(f'{entity.name} no es un cliente')
    if payment_type == EntityPaymentType.SUPPLIER_PAYMENT and not entity.is_supplier:
        raise InvalidInputError(f'{entity.name} no es un proveedor')

    payment_method = _get_payment_method(session, tenant_id, payment_method_id)
    payment_method_name = payment_method.name
    payment_date = posting_datetime(date)

    if payment_type == EntityPaymentType.CUSTOMER_PAYMENT:
        movement_type = MovementType.SALE_PAYMENT
        description = f'Cobro - {payment_method_name}'
    else:
        movement_type = MovementType.PURCHASE_PAYMENT
        description = f'Pago a proveedor - {payment_method_name}'

    def _op():
        try:
            payment = EntityPayment(
                tenant_id=tenant_id,
                entity_id=entity_id,
                type=payment_type,
                amount=amount,
                payment_method_id=payment_method_id,
                payment_method_name=payment_method_name,
                date=payment_date,
                reference=reference,
                reference_date=parse_datetime(reference_date),
                notes=notes,
                created_by=user_id,
                created_at=now()
            )
            session.add(payment)
            session.flush()

            # Money received from a customer or paid to a supplier lowers the balance
            movement = post_entity_movement(
                session, tenant_id, entity_id, movement_type, MovementNature.CREDIT, amount,
                date=payment_date,
                description=description,
                notes=f'Ref: {reference}' if reference else None,
                payment_id=payment.id
            )

            log_action(
                session, tenant_id, AuditAction.ENTITY_PAYMENT_REGISTERED,
                resource_type='entity_payment', resource_id=payment.id,
                details={'entity_id': entity_id, 'type': payment_type.value,
                         'amount': str(amount), 'payment_method': payment_method_name},
                user_id=user_id
            )

            session.commit()
            return {'payment': payment, 'movement': movement}
        except Exception:
            session.rollback()
            raise

    result = run_with_retry(session, _op, operation='register_payment')
    invalidate_tenant_cache(tenant_id, ACCOUNTS_MODULE)

    logger.info(
        f"[LEDGER] Payment {result['payment'].id} registered for entity {entity_id}: "
        f"{payment_type.value} {amount}"
    )
    return result


def register_customer_payment(session, tenant_id: int, entity_id: int, amount, payment_method_id: int,
                              date=None, reference: str = None, reference_date=None,
                              notes: str = None, user_id: int = None) -> dict:
    """Cobro a cliente: EntityPayment + SALE_PAYMENT credit movement, atomically."""
    return _register_payment(
        session, tenant_id, entity_id, EntityPaymentType.CUSTOMER_PAYMENT, amount,
        payment_method_id, date, reference, reference_date, notes, user_id
    )


def register_supplier_payment(session, tenant_id: int, entity_id: int, amount, payment_method_id: int,
                              date=None, reference: str = None, reference_date=None,
                              notes: str = None, user_id: int = None) -> dict:
    """Pago a proveedor: EntityPayment + PURCHASE_PAYMENT credit movement, atomically."""
    return _register_payment(
        session, tenant_id, entity_id, EntityPaymentType.SUPPLIER_PAYMENT, amount,
        payment_method_id, date, reference, reference_date, notes, user_id
    )


def _totals(session, criteria):
    """Sum of debits, sum of credits and count over the movements matching criteria."""
    debit_sum = func.coalesce(func.sum(
        case((EntityMovement.nature == MovementNature.DEBIT, EntityMovement.amount), else_=0)
    ), 0)
    credit_sum = func.coalesce(func.sum(
        case((EntityMovement.nature == MovementNature.CREDIT, EntityMovement.amount), else_=0)
    ), 0)
    debits, credits, count = session.query(
        debit_sum, credit_sum, func.count(EntityMovement.id)
    ).filter(*criteria).one()
    return money(debits), money(credits), count


def get_entity_balance(session, tenant_id: int, entity_id: int) -> dict:
    """Current balance (balance of the latest movement) plus lifetime totals."""
    entity = _get_entity(session, tenant_id, entity_id)

    total_debits, total_credits, movement_count = _totals(session, [
        EntityMovement.tenant_id == tenant_id,
        EntityMovement.entity_id == entity_id
    ])
    last = last_entity_movement(session, tenant_id, entity_id)

    return {
        'entity_id': entity.id,
        'entity_name': entity.name,
        'entity_code': entity.code,
        'current_balance': last.balance if last else ZERO,
        'total_debits': total_debits,
        'total_credits': total_credits,
        'movement_count': movement_count,
        'last_movement_date': last.date if last else None,
    }


def _document_number(movement: EntityMovement):
    if movement.sale is not None:
        return movement.sale.sale_number
    if movement.purchase is not None:
        return movement.purchase.invoice_number or movement.purchase.purchase_number
    return None


def _movement_detail(movement: EntityMovement) -> dict:
    is_debit = movement.nature == MovementNature.DEBIT
    payment = movement.payment
    return {
        'id': movement.id,
        'date': movement.date,
        'type': movement.type.value,
        'nature': movement.nature.value,
        'description': movement.description or '',
        'debit': movement.amount if is_debit else ZERO,
        'credit': ZERO if is_debit else movement.amount,
        'balance': movement.balance,
        'document_number': _document_number(movement),
        'reference': payment.reference if payment else None,
        'payment_method': payment.payment_method_name if payment else None,
        'notes': movement.notes,
    }


def _page_args(page, limit):
    page = max(int(page or 1), 1)
    max_limit = get_setting('MAX_PAGE_SIZE', 500)
    limit = min(max(int(limit or get_setting('DEFAULT_PAGE_SIZE', 50)), 1), max_limit)
    return page, limit


def _movement_window(session, tenant_id, entity_id, date_from, date_to, movement_type):
    """Filter criteria and opening balance for a statement window."""
    start = parse_datetime(date_from)
    end = parse_datetime(date_to, end_of_day=True)

    criteria = [
        EntityMovement.tenant_id == tenant_id,
        EntityMovement.entity_id == entity_id
    ]
    if start:
        criteria.append(EntityMovement.date >= start)
    if end:
        criteria.append(EntityMovement.date <= end)
    if movement_type:
        criteria.append(EntityMovement.type == coerce_enum(MovementType, movement_type, 'Tipo de movimiento'))

    opening_balance = ZERO
    if start:
        previous = last_entity_movement(session, tenant_id, entity_id, before=start)
        if previous:
            opening_balance = previous.balance

    return criteria, opening_balance


def get_entity_movements(
    session,
    tenant_id: int,
    entity_id: int,
    date_from=None,
    date_to=None,
    movement_type=None,
    page: int = 1,
    limit: int = 50
) -> dict:
    """
    Paginated account movements in (date, id) order with a window summary.

    opening_balance is the balance of the last movement before date_from;
    debit/credit totals cover the whole filtered window, not only the page.
    """
    _get_entity(session, tenant_id, entity_id)
    page, limit = _page_args(page, limit)

    criteria, opening_balance = _movement_window(
        session, tenant_id, entity_id, date_from, date_to, movement_type
    )
    total_debits, total_credits, total = _totals(session, criteria)

    movements = session.query(EntityMovement).filter(*criteria).order_by(
        EntityMovement.date.asc(), EntityMovement.id.asc()
    ).offset((page - 1) * limit).limit(limit).all()

    return {
        'movements': [_movement_detail(m) for m in movements],
        'summary': {
            'opening_balance': opening_balance,
            'total_debits': total_debits,
            'total_credits': total_credits,
            'closing_balance': opening_balance + total_debits - total_credits,
        },
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'total_pages': math.ceil(total / limit) if total else 0,
        },
    }


def get_entity_statement(session, tenant_id: int, entity_id: int, date_from=None, date_to=None) -> dict:
    """Full statement (no pagination) with the entity header, for export."""
    entity = _get_entity(session, tenant_id, entity_id)

    criteria, opening_balance = _movement_window(session, tenant_id, entity_id, date_from, date_to, None)
    total_debits, total_credits, _ = _totals(session, criteria)

    movements = session.query(EntityMovement).filter(*criteria).order_by(
        EntityMovement.date.asc(), EntityMovement.id.asc()
    ).all()

    return {
        'entity': {
            'id': entity.id,
            'name': entity.name,
            'code': entity.code,
            'tax_id': entity.tax_id,
            'email': entity.email,
            'phone': entity.phone,
            'address': entity.address,
            'is_customer': entity.is_customer,
            'is_supplier': entity.is_supplier,
        },
        'movements': [_movement_detail(m) for m in movements],
        'summary': {
            'opening_balance': opening_balance,
            'total_debits': total_debits,
            'total_credits': total_credits,
            'closing_balance': opening_balance + total_debits - total_credits,
        },
    }


def get_entities_with_balance(
    session,
    tenant_id: int,
    is_customer: bool = None,
    is_supplier: bool = None,
    has_balance: bool = False,
    search: str = None
) -> list:
    """Entities with their current balance, largest absolute balance first."""
    def _load():
        query = session.query(Entity).filter(Entity.tenant_id == tenant_id)

        if is_customer is not None:
            query = query.filter(Entity.is_customer == is_customer)
        if is_supplier is not None:
            query = query.filter(Entity.is_supplier == is_supplier)
        if search:
            pattern = f'%{search}%'
            query = query.filter(or_(
                Entity.name.ilike(pattern),
                Entity.code.ilike(pattern),
                Entity.tax_id.ilike(pattern)
            ))

        balances = []
        for entity in query.order_by(Entity.name).all():
            balance = get_entity_balance(session, tenant_id, entity.id)
            if has_balance and balance['current_balance'] == 0:
                continue
            if balance['last_movement_date'] is not None:
                balance['last_movement_date'] = balance['last_movement_date'].isoformat()
            balances.append(balance)

        balances.sort(key=lambda b: abs(b['current_balance']), reverse=True)
        return balances

    key = f"entities:{is_customer}:{is_supplier}:{bool(has_balance)}:{search or ''}"
    return cached_report(tenant_id, ACCOUNTS_MODULE, key, _load)


def verify_entity_chain(session, tenant_id: int, entity_id: int) -> list:
    """
    Replay the entity's movements from zero and return the ids whose stored
    balance differs from the replayed one. An empty list means the chain is sound.
    """
    _get_entity(session, tenant_id, entity_id)

    movements = session.query(EntityMovement).filter(
        EntityMovement.tenant_id == tenant_id,
        EntityMovement.entity_id == entity_id
    ).order_by(EntityMovement.date.asc(), EntityMovement.id.asc()).all()

    mismatches = [
        movement.id for movement, expected in replay_balances(movements)
        if to_decimal(movement.balance) != expected
    ]
    if mismatches:
        logger.warning(f"[LEDGER] Entity {entity_id} balance chain broken at movements {mismatches}")
    return mismatches
