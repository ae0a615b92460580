"""Monetary arithmetic shared by the normalizer, the validators and the UBL writer.

Every stage that computes a total goes through these helpers so that the value
the validator recomputes is the value that ends up in the XML.
"""

import re
from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Any

from peppol_converter.api.v1.schemas import InvoiceLine

TOLERANCE = Decimal("0.01")
_CENT = Decimal("0.01")
_HUNDRED = Decimal("100")

_CURRENCY_NOISE = re.compile(r"[€$£\s\u00a0]|EUR|USD|GBP|CHF", re.IGNORECASE)
_THOUSANDS_COMMA = re.compile(r"-?\d{1,3}(,\d{3})+")


def _digits_needed(value: Decimal) -> int:
    # Integer digits plus the two decimals quantize has to keep.
    return max(value.adjusted(), 0) + 4


def round2(value: Decimal) -> Decimal:
    """Round half away from zero to two decimals, whatever the magnitude."""
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, _digits_needed(value))
        return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def parse_amount(value: Any) -> Decimal | None:
    """Best-effort conversion of a number or a localized amount string.

    Handles ``1000.00``, ``1.000,00``, ``1,000.00``, ``1000,5`` and ``€ 12``.
    Returns None for anything that does not look like a number.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int | float):
        return Decimal(str(value))
    if not isinstance(value, str):
        return None

    s = _CURRENCY_NOISE.sub("", value).rstrip("%")
    if not s:
        return None
    if "," in s and "." in s:
        # The separator that appears last is the decimal separator.
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif "," in s:
        if _THOUSANDS_COMMA.fullmatch(s):
            s = s.replace(",", "")
        else:
            s = s.replace(",", ".")
    elif s.count(".") > 1:
        s = s.replace(".", "")
    try:
        amount = Decimal(s)
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def line_amount(quantity: Decimal, unit_price: Decimal) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, _digits_needed(quantity) + _digits_needed(unit_price))
        return round2(quantity * unit_price)


def line_vat(line: InvoiceLine) -> Decimal:
    """Unrounded VAT of one line; zero when the line has no total or rate."""
    if line.lineTotal is None or line.vatRate is None:
        return Decimal("0")
    return line.lineTotal * line.vatRate / _HUNDRED


def sum_line_totals(lines: Iterable[InvoiceLine]) -> Decimal:
    return round2(sum((ln.lineTotal or Decimal("0") for ln in lines), Decimal("0")))


def sum_line_vat(lines: Iterable[InvoiceLine]) -> Decimal:
    return round2(sum((line_vat(ln) for ln in lines), Decimal("0")))


def differs(a: Decimal, b: Decimal) -> bool:
    return abs(a - b) > TOLERANCE


def format_amount(value: Decimal | None) -> str:
    return str(round2(value if value is not None else Decimal("0")))


def format_number(value: Decimal) -> str:
    """Plain decimal notation without trailing zeros (``21``, ``2.5``)."""
    if value == value.to_integral_value():
        with localcontext() as ctx:
            ctx.prec = max(ctx.prec, _digits_needed(value))
            return str(value.quantize(Decimal("1")))
    return format(value.normalize(), "f")
