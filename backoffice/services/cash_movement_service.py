"""
Cash movement service (caja) - Multi-Tenant.

A cash account's balance is its initial balance plus its income movements
minus its expense movements. Movements carry no running balance, so they may
be posted in any date order.

post_cash_movement is the posting primitive and never commits. Purchase and
sale payments reach it through the ledger outbox; register_income and
register_expense are the manual commands and own their transaction.
"""
import logging
import math

from sqlalchemy import func, case

from backoffice.exceptions import NotFoundError, InvalidInputError
from backoffice.models import CashAccount, CashMovement, CashMovementType, PaymentMethod, AuditAction
from backoffice.services.audit_service import log_action
from backoffice.services.balance_calculator import ZERO, money, coerce_enum
from backoffice.services.cache_service import CASH_MODULE, cached_report, invalidate_tenant_cache
from backoffice.services.concurrency import run_with_retry
from backoffice.services.movement_log import append_cash_movement
from backoffice.utils.settings import get_setting
from backoffice.utils.time_utils import now, parse_datetime, posting_datetime

logger = logging.getLogger(__name__)


def _get_cash_account(session, tenant_id: int, cash_account_id: int = None) -> CashAccount:
    """The given account, or the tenant's active default account when none is given."""
    query = session.query(CashAccount).filter(CashAccount.tenant_id == tenant_id)
    if cash_account_id:
        account = query.filter(CashAccount.id == cash_account_id).first()
        if not account:
            raise NotFoundError('Cuenta no encontrada')
        return account

    account = query.filter(CashAccount.is_default.is_(True), CashAccount.is_active.is_(True)).first()
    if not account:
        raise NotFoundError('No se encontró una cuenta de caja activa')
    return account


def resolve_cash_account(session, tenant_id: int, cash_account_id: int = None,
                         payment_method_id: int = None) -> CashAccount:
    """Explicit account, else the payment method's account, else the default one."""
    if not cash_account_id and payment_method_id:
        cash_account_id = session.query(PaymentMethod.cash_account_id).filter(
            PaymentMethod.id == payment_method_id,
            PaymentMethod.tenant_id == tenant_id
        ).scalar()
    return _get_cash_account(session, tenant_id, cash_account_id)


def create_cash_account(
    session,
    tenant_id: int,
    name: str,
    account_type: str = 'cash',
    initial_balance=0,
    is_default: bool = None,
    user_id: int = None
) -> CashAccount:
    """Open a cash account. The tenant's first account becomes the default one."""
    name = (name or '').strip()
    if not name:
        raise InvalidInputError('El nombre de la cuenta es requerido')

    def _op():
        try:
            exists = session.query(CashAccount.id).filter(
                CashAccount.tenant_id == tenant_id,
                func.lower(CashAccount.name) == name.lower()
            ).first()
            if exists:
                raise InvalidInputError(f'Ya existe una cuenta llamada {name}')

            make_default = is_default
            if make_default is None:
                make_default = session.query(CashAccount.id).filter(
                    CashAccount.tenant_id == tenant_id
                ).first() is None
            if make_default:
                session.query(CashAccount).filter(
                    CashAccount.tenant_id == tenant_id,
                    CashAccount.is_default.is_(True)
                ).update({'is_default': False}, synchronize_session=False)

            account = CashAccount(
                tenant_id=tenant_id,
                name=name,
                type=account_type,
                initial_balance=money(initial_balance),
                is_default=bool(make_default),
                is_active=True,
                created_at=now()
            )
            session.add(account)
            session.flush()

            log_action(
                session, tenant_id, AuditAction.CASH_ACCOUNT_CREATED,
                resource_type='cash_account', resource_id=account.id,
                details={'name': name, 'initial_balance': str(account.initial_balance),
                         'is_default': account.is_default},
                user_id=user_id
            )
            session.commit()
            return account
        except Exception:
            session.rollback()
            raise

    account = run_with_retry(session, _op, operation='create_cash_account')
    invalidate_tenant_cache(tenant_id, CASH_MODULE)
    logger.info(f"[CASH] Account {account.id} '{name}' opened for tenant {tenant_id}")
    return account


def post_cash_movement(
    session,
    tenant_id: int,
    movement_type,
    category: str,
    amount,
    description: str,
    cash_account_id: int = None,
    payment_method_id: int = None,
    date=None,
    reference: str = None,
    notes: str = None,
    sale_id: int = None,
    purchase_id: int = None,
    sale_payment_id: int = None,
    purchase_payment_id: int = None,
    created_by: int = None
) -> CashMovement:
    """Append a cash movement inside the caller's transaction. Does not commit."""
    movement_type = coerce_enum(CashMovementType, movement_type, 'Tipo de movimiento de caja')
    amount = money(amount)
    if amount <= 0:
        raise InvalidInputError('El monto debe ser mayor a 0')
    if not category:
        raise InvalidInputError('La categoría es requerida')
    if not description:
        raise InvalidInputError('La descripción es requerida')

    account = resolve_cash_account(session, tenant_id, cash_account_id, payment_method_id)
    if not account.is_active:
        raise InvalidInputError(f'La cuenta {account.name} está inactiva')

    movement = append_cash_movement(
        session,
        tenant_id=tenant_id,
        cash_account_id=account.id,
        movement_type=movement_type,
        category=category,
        amount=amount,
        description=description,
        reference=reference,
        payment_method_id=payment_method_id,
        sale_id=sale_id,
        purchase_id=purchase_id,
        sale_payment_id=sale_payment_id,
        purchase_payment_id=purchase_payment_id,
        movement_date=posting_datetime(date),
        notes=notes,
        created_by=created_by
    )

    logger.info(
        f"[CASH] tenant={tenant_id} account={account.id} {movement_type.value} {category} {amount}"
    )
    return movement


def _register(session, tenant_id: int, movement_type: CashMovementType, amount, category: str,
              description: str, cash_account_id=None, payment_method_id=None, date=None,
              reference=None, notes=None, user_id=None) -> CashMovement:
    def _op():
        try:
            movement = post_cash_movement(
                session, tenant_id, movement_type, category, amount, description,
                cash_account_id=cash_account_id, payment_method_id=payment_method_id,
                date=date, reference=reference, notes=notes, created_by=user_id
            )
            log_action(
                session, tenant_id, AuditAction.CASH_MOVEMENT_CREATED,
                resource_type='cash_movement', resource_id=movement.id,
                details={'cash_account_id': movement.cash_account_id, 'type': movement_type.value,
                         'category': category, 'amount': str(movement.amount)},
                user_id=user_id
            )
            session.commit()
            return movement
        except Exception:
            session.rollback()
            raise

    movement = run_with_retry(session, _op, operation='register_cash_movement')
    invalidate_tenant_cache(tenant_id, CASH_MODULE)
    return movement


def register_income(session, tenant_id: int, amount, category: str, description: str,
                    cash_account_id: int = None, payment_method_id: int = None, date=None,
                    reference: str = None, notes: str = None, user_id: int = None) -> CashMovement:
    """Ingreso de caja (deposit, collection outside a sale, ...)."""
    return _register(
        session, tenant_id, CashMovementType.INCOME, amount, category, description,
        cash_account_id, payment_method_id, date, reference, notes, user_id
    )


def register_expense(session, tenant_id: int, amount, category: str, description: str,
                     cash_account_id: int = None, payment_method_id: int = None, date=None,
                     reference: str = None, notes: str = None, user_id: int = None) -> CashMovement:
    """Egreso de caja (withdrawal, expense outside a purchase, ...)."""
    return _register(
        session, tenant_id, CashMovementType.EXPENSE, amount, category, description,
        cash_account_id, payment_method_id, date, reference, notes, user_id
    )


def _account_balance(session, account: CashAccount) -> dict:
    income_sum = func.coalesce(func.sum(
        case((CashMovement.movement_type == CashMovementType.INCOME, CashMovement.amount), else_=0)
    ), 0)
    expense_sum = func.coalesce(func.sum(
        case((CashMovement.movement_type == CashMovementType.EXPENSE, CashMovement.amount), else_=0)
    ), 0)
    income, expense = session.query(income_sum, expense_sum).filter(
        CashMovement.tenant_id == account.tenant_id,
        CashMovement.cash_account_id == account.id
    ).one()

    initial = money(account.initial_balance or ZERO)
    income = money(income)
    expense = money(expense)
    return {
        'account_id': account.id,
        'name': account.name,
        'type': account.type,
        'is_default': account.is_default,
        'initial_balance': initial,
        'total_income': income,
        'total_expense': expense,
        'balance': initial + income - expense,
    }


def get_account_balance(session, tenant_id: int, cash_account_id: int) -> dict:
    """Balance of one account: initial + income - expense."""
    account = _get_cash_account(session, tenant_id, cash_account_id)
    return _account_balance(session, account)


def list_cash_movements(
    session,
    tenant_id: int,
    cash_account_id: int = None,
    movement_type=None,
    category: str = None,
    date_from=None,
    date_to=None,
    page: int = 1,
    limit: int = 50
) -> dict:
    """Cash movements of the tenant, newest first, paginated."""
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or get_setting('DEFAULT_PAGE_SIZE', 50)), 1), get_setting('MAX_PAGE_SIZE', 500))

    query = session.query(CashMovement).filter(CashMovement.tenant_id == tenant_id)
    if cash_account_id:
        query = query.filter(CashMovement.cash_account_id == cash_account_id)
    if movement_type:
        query = query.filter(
            CashMovement.movement_type == coerce_enum(CashMovementType, movement_type, 'Tipo de movimiento de caja')
        )
    if category:
        query = query.filter(CashMovement.category == category)

    start = parse_datetime(date_from)
    end = parse_datetime(date_to, end_of_day=True)
    if start:
        query = query.filter(CashMovement.movement_date >= start)
    if end:
        query = query.filter(CashMovement.movement_date <= end)

    total = query.count()
    movements = query.order_by(
        CashMovement.movement_date.desc(), CashMovement.id.desc()
    ).offset((page - 1) * limit).limit(limit).all()

    return {
        'data': movements,
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'total_pages': math.ceil(total / limit) if total else 0,
        },
    }


def get_accounts_summary(session, tenant_id: int) -> list:
    """Active accounts with their balances, default account first."""
    def _load():
        accounts = session.query(CashAccount).filter(
            CashAccount.tenant_id == tenant_id,
            CashAccount.is_active.is_(True)
        ).order_by(CashAccount.is_default.desc(), CashAccount.name).all()
        return [_account_balance(session, account) for account in accounts]

    return cached_report(tenant_id, CASH_MODULE, 'accounts_summary', _load)
