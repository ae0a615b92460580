"""Canonicalizes an extracted invoice and fills in the values that can be derived.

``normalize`` never fails and never overwrites a value that is present: an
inconsistent total stays inconsistent so the business rules can report it.
"""

import re
from datetime import date
from decimal import Decimal
from typing import Any

from peppol_converter.api.v1.schemas import InvoiceLine, InvoiceNormalized, Party
from peppol_converter.services.amounts import (
    line_amount,
    round2,
    sum_line_totals,
    sum_line_vat,
)
from peppol_converter.services.dates import parse_loose_date

DEFAULT_CURRENCY = "EUR"
DEFAULT_VAT_CATEGORY = "S"
DEFAULT_UNIT = "C62"

_VAT_NOISE = re.compile(r"[\s.\-]")
_BARE_BE_VAT = re.compile(r"\d{10}")
_BARE_NL_VAT = re.compile(r"\d{9}B\d{2}")


def normalize_vat_number(vat: str) -> str:
    compact = _VAT_NOISE.sub("", vat).upper()
    if compact[:2].isalpha():
        return compact
    # Guess based on shape only. Other countries use the same shapes.
    if _BARE_BE_VAT.fullmatch(compact):
        return "BE" + compact
    if _BARE_NL_VAT.fullmatch(compact):
        return "NL" + compact
    return compact


def _compact_upper(value: str | None) -> str | None:
    if value is None:
        return None
    return re.sub(r"\s", "", value).upper()


def _normalize_date(value: date | str | None) -> date | str | None:
    if isinstance(value, str):
        parsed = parse_loose_date(value)
        return parsed if parsed is not None else value
    return value


def _normalize_party(party: Party | None) -> Party | None:
    if party is None:
        return None
    update: dict[str, Any] = {}
    if party.vatNumber:
        update["vatNumber"] = normalize_vat_number(party.vatNumber)
    if party.address is not None and party.address.countryCode:
        update["address"] = party.address.model_copy(
            update={"countryCode": party.address.countryCode.strip().upper()}
        )
    return party.model_copy(update=update)


def _normalize_line(line: InvoiceLine) -> InvoiceLine:
    quantity = line.quantity if line.quantity is not None else Decimal("1")
    line_total = line.lineTotal
    if line_total is None and line.unitPrice is not None:
        line_total = line_amount(quantity, line.unitPrice)
    vat_rate = round2(line.vatRate) if line.vatRate is not None else None
    vat_category = line.vatCategory
    if vat_rate is not None and not vat_category:
        vat_category = DEFAULT_VAT_CATEGORY
    return line.model_copy(
        update={
            "quantity": quantity,
            "lineTotal": line_total,
            "vatRate": vat_rate,
            "vatCategory": vat_category,
            "unitOfMeasure": line.unitOfMeasure or DEFAULT_UNIT,
        }
    )


def normalize(invoice: InvoiceNormalized) -> InvoiceNormalized:
    currency = (invoice.currency or "").strip().upper() or DEFAULT_CURRENCY
    lines = [_normalize_line(line) for line in invoice.lines]

    subtotal = invoice.subtotalExclVat
    vat_total = invoice.vatTotal
    total = invoice.totalInclVat
    if lines:
        if subtotal is None:
            subtotal = sum_line_totals(lines)
        if vat_total is None:
            vat_total = sum_line_vat(lines)
    if total is None and subtotal is not None and vat_total is not None:
        total = round2(subtotal + vat_total)

    return invoice.model_copy(
        update={
            "currency": currency,
            "issueDate": _normalize_date(invoice.issueDate),
            "dueDate": _normalize_date(invoice.dueDate),
            "supplier": _normalize_party(invoice.supplier),
            "customer": _normalize_party(invoice.customer),
            "iban": _compact_upper(invoice.iban),
            "bic": _compact_upper(invoice.bic),
            "lines": lines,
            "subtotalExclVat": subtotal,
            "vatTotal": vat_total,
            "totalInclVat": total,
        }
    )
