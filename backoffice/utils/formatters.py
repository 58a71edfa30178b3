"""
Utilidades de formateo para mensajes y reportes.
Formatos de números y fechas en estilo argentino.
"""
from decimal import Decimal, InvalidOperation
from datetime import datetime
from typing import Union, Optional


def num_ar(value: Union[int, float, Decimal, str, None], decimals: Optional[int] = None) -> str:
    """
    Formatea un número en estilo argentino:
    - Separador de miles: punto (.)
    - Separador decimal: coma (,)
    - Si no tiene decimales significativos, no los muestra

    Examples:
        num_ar(1500) -> "1.500"
        num_ar(1500.5) -> "1.500,5"
        num_ar(Decimal('8.000')) -> "8"
        num_ar(None) -> "-"
    """
    if value is None or value == "":
        return "-"

    try:
        if isinstance(value, str):
            value = value.replace(",", ".")
        num = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return "-"

    if num == 0:
        return "0"

    if decimals is not None:
        num = num.quantize(Decimal(10) ** -decimals)

    # Fixed-point string, never scientific notation
    num_str = f"{num:f}"

    if '.' in num_str:
        integer_part, decimal_part = num_str.split('.')
        decimal_part = decimal_part.rstrip('0')
    else:
        integer_part = num_str
        decimal_part = ""

    if integer_part.startswith('-'):
        sign_str = '-'
        integer_part = integer_part[1:]
    else:
        sign_str = ''

    return f"{sign_str}{_group_thousands(integer_part)}" + (f",{decimal_part}" if decimal_part else "")


def money_ar_2(value: Union[int, float, Decimal, str, None]) -> str:
    """
    Formatea un monto con exactamente 2 decimales: 1.500,00.
    Devuelve "-" si es inválido.
    """
    if value is None or value == "":
        return "-"

    try:
        normalized = str(value).replace(",", ".")
        num = Decimal(normalized).quantize(Decimal('0.01'))
    except (InvalidOperation, ValueError, TypeError):
        return "-"

    sign = "-" if num < 0 else ""
    integer_part, decimal_part = f"{abs(num):.2f}".split(".")

    return f"{sign}{_group_thousands(integer_part)},{decimal_part}"


def datetime_ar(value: Union[datetime, None], with_time: bool = True) -> str:
    """
    Formatea un datetime como DD/MM/YYYY HH:MM (o solo DD/MM/YYYY).
    """
    if not isinstance(value, datetime):
        return "-"

    return value.strftime("%d/%m/%Y %H:%M" if with_time else "%d/%m/%Y")


def _group_thousands(integer_part: str) -> str:
    reversed_int = integer_part[::-1]
    groups = [reversed_int[i:i+3] for i in range(0, len(reversed_int), 3)]
    return '.'.join(groups)[::-1]
