"""
Running balance arithmetic shared by entity accounts and warehouse stock.

Pure functions: no session, no I/O. DEBIT adds to an entity balance and
CREDIT subtracts; IN adds to a stock quantity and OUT subtracts.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Iterator, Tuple

from backoffice.exceptions import InvalidInputError
from backoffice.models.entity_movement import MovementNature
from backoffice.models.stock_movement import StockMovementType

CENT = Decimal('0.01')
ZERO = Decimal('0')


def to_decimal(value, field: str = 'valor') -> Decimal:
    """Convert any numeric input to Decimal through its string form."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidInputError(f'{field} inválido: {value}')


def money(value) -> Decimal:
    """Round to cents, half up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def coerce_enum(enum_cls, value, field: str):
    """Accept an enum member or its value; anything else is invalid input."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidInputError(f'{field} inválido: {value}')


def next_balance(previous, nature, amount) -> Decimal:
    """Balance after applying a movement of the given nature."""
    nature = coerce_enum(MovementNature, nature, 'Naturaleza')
    previous = to_decimal(previous)
    amount = to_decimal(amount)

    if nature == MovementNature.DEBIT:
        return previous + amount
    return previous - amount


def next_quantity(previous, movement_type, quantity) -> Decimal:
    """Quantity after applying a stock movement.

    TRANSFER has no direction of its own: a transfer is posted as an OUT in the
    origin warehouse and an IN in the destination.
    """
    movement_type = coerce_enum(StockMovementType, movement_type, 'Tipo de movimiento')
    previous = to_decimal(previous)
    quantity = to_decimal(quantity)

    if movement_type == StockMovementType.IN:
        return previous + quantity
    if movement_type == StockMovementType.OUT:
        return previous - quantity
    raise InvalidInputError('Los movimientos TRANSFER deben registrarse como OUT e IN')


def replay_balances(movements: Iterable, opening=ZERO) -> Iterator[Tuple[object, Decimal]]:
    """Yield (movement, expected_balance) for movements in (date, id) order."""
    balance = to_decimal(opening)
    for movement in movements:
        balance = next_balance(balance, movement.nature, movement.amount)
        yield movement, balance


def replay_quantities(movements: Iterable, opening=ZERO) -> Iterator[Tuple[object, Decimal]]:
    """Yield (movement, running_quantity) for stock movements in kardex order."""
    quantity = to_decimal(opening)
    for movement in movements:
        if movement.movement_type == StockMovementType.TRANSFER:
            # Legacy rows without direction do not move the balance
            yield movement, quantity
            continue
        quantity = next_quantity(quantity, movement.movement_type, movement.quantity)
        yield movement, quantity
