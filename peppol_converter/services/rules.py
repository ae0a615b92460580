"""Business rules (a subset of the Peppol BIS Billing 3.0 rules).

Missing data is reported as a warning because the UBL writer has a default
for every required element. Arithmetic and format violations are errors.
"""

import re
from collections.abc import Callable
from datetime import date

from peppol_converter.api.v1.schemas import (
    InvoiceNormalized,
    LocalizedMessage,
    Party,
    ValidationError,
)
from peppol_converter.services.amounts import (
    differs,
    format_amount,
    format_number,
    line_amount,
    round2,
    sum_line_totals,
    sum_line_vat,
)

_BE_VAT = re.compile(r"\d{10}")
_NL_VAT = re.compile(r"\d{9}B\d{2}")

_PARTY_LABELS = {"supplier": ("leverancier", "Supplier"), "customer": ("klant", "Customer")}


def finding(
    code: str,
    severity: str,
    nl: str,
    en: str,
    field_path: str | None = None,
    suggested_fix: str | None = None,
) -> ValidationError:
    return ValidationError(
        code=code,
        severity=severity,
        message=LocalizedMessage(nl=nl, en=en),
        fieldPath=field_path,
        suggestedFix=suggested_fix,
    )


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def check_vat_format(vat_number: str, role: str) -> ValidationError | None:
    """BE numbers carry 10 digits, NL numbers 9 digits + B + 2 digits. Other prefixes pass."""
    compact = re.sub(r"\s", "", vat_number).upper()
    country, rest = compact[:2], compact[2:]
    if country == "BE" and not _BE_VAT.fullmatch(rest):
        expected_nl, expected_en = "BE verwacht 10 cijfers", "BE expects 10 digits"
        fix = "Controleer het BTW-nummer formaat (BE + 10 cijfers)"
    elif country == "NL" and not _NL_VAT.fullmatch(rest):
        expected_nl = "NL verwacht 9 cijfers + B + 2 cijfers"
        expected_en = "NL expects 9 digits + B + 2 digits"
        fix = "Controleer het BTW-nummer formaat (NL + 9 cijfers + B + 2 cijfers)"
    else:
        return None
    label_nl, label_path = _PARTY_LABELS[role]
    return finding(
        "ERR_INVALID_VAT_FORMAT",
        "error",
        f"Ongeldig BTW-nummer formaat voor {label_nl} ({expected_nl})",
        f"Invalid VAT number format for {role} ({expected_en})",
        f"Invoice.Accounting{label_path}Party.Party.PartyTaxScheme.CompanyID",
        fix,
    )


class BusinessRuleValidator:
    def __init__(self, today: Callable[[], date] = date.today) -> None:
        self._today = today

    def validate(self, invoice: InvoiceNormalized) -> list[ValidationError]:
        return [
            *self._required_fields(invoice),
            *self._issue_date(invoice),
            *self._lines(invoice),
            *self._totals(invoice),
            *self._vat_numbers(invoice),
            *self._currency(invoice),
        ]

    def _required_fields(self, invoice: InvoiceNormalized) -> list[ValidationError]:
        found: list[ValidationError] = []
        supplier = invoice.supplier or Party()
        customer = invoice.customer or Party()
        if _blank(invoice.invoiceNumber):
            found.append(
                finding(
                    "WARN_MISSING_INVOICE_ID",
                    "warning",
                    'Factuurnummer ontbreekt (wordt "UNKNOWN" gebruikt)',
                    'Invoice ID is missing (will use "UNKNOWN")',
                    "Invoice.ID",
                    "Voeg een factuurnummer toe aan de factuur",
                )
            )
        if invoice.issueDate is None or invoice.issueDate == "":
            found.append(
                finding(
                    "WARN_MISSING_ISSUE_DATE",
                    "warning",
                    "Factuurdatum ontbreekt (wordt huidige datum gebruikt)",
                    "Invoice issue date is missing (will use today's date)",
                    "Invoice.IssueDate",
                    "Voeg een factuurdatum toe",
                )
            )
        if _blank(supplier.name):
            found.append(
                finding(
                    "WARN_MISSING_SUPPLIER_NAME",
                    "warning",
                    "Leveranciersnaam ontbreekt",
                    "Supplier name is missing",
                    "Invoice.AccountingSupplierParty.Party.PartyName.Name",
                    "Voeg de naam van de leverancier toe",
                )
            )
        if supplier.address is None or _blank(supplier.address.countryCode):
            found.append(
                finding(
                    "WARN_MISSING_SUPPLIER_COUNTRY",
                    "warning",
                    'Landcode leverancier ontbreekt (wordt "BE" gebruikt)',
                    'Supplier country code is missing (will use "BE")',
                    "Invoice.AccountingSupplierParty.Party.PostalAddress.Country.IdentificationCode",
                    "Voeg de landcode van de leverancier toe (bijv. BE, NL)",
                )
            )
        if _blank(customer.name):
            found.append(
                finding(
                    "WARN_MISSING_CUSTOMER_NAME",
                    "warning",
                    "Klantnaam ontbreekt",
                    "Customer name is missing",
                    "Invoice.AccountingCustomerParty.Party.PartyName.Name",
                    "Voeg de naam van de klant toe",
                )
            )
        if not invoice.lines:
            found.append(
                finding(
                    "WARN_NO_INVOICE_LINES",
                    "warning",
                    "Geen factuurregels gevonden (lege factuur wordt gegenereerd)",
                    "No invoice lines found (empty invoice will be generated)",
                    "Invoice.InvoiceLine",
                    "Voeg minimaal één factuurregel toe",
                )
            )
        return found

    def _issue_date(self, invoice: InvoiceNormalized) -> list[ValidationError]:
        issue_date = invoice.issueDate
        if isinstance(issue_date, str) and issue_date:
            return [
                finding(
                    "ERR_INVALID_ISSUE_DATE",
                    "error",
                    "Factuurdatum is ongeldig",
                    "Invoice issue date is invalid",
                    "Invoice.IssueDate",
                    "Controleer de datumnotatie",
                )
            ]
        if isinstance(issue_date, date) and issue_date > self._today():
            return [
                finding(
                    "WARN_FUTURE_ISSUE_DATE",
                    "warning",
                    "Factuurdatum ligt in de toekomst",
                    "Invoice issue date is in the future",
                    "Invoice.IssueDate",
                    "Controleer of de datum correct is",
                )
            ]
        return []

    def _lines(self, invoice: InvoiceNormalized) -> list[ValidationError]:
        found: list[ValidationError] = []
        for index, line in enumerate(invoice.lines):
            number = index + 1
            path = f"InvoiceLine[{index}]"
            if _blank(line.description):
                found.append(
                    finding(
                        "WARN_MISSING_LINE_DESCRIPTION",
                        "warning",
                        f"Omschrijving ontbreekt voor regel {number}",
                        f"Description missing for line {number}",
                        f"{path}.Item.Description",
                        "Voeg een omschrijving toe aan deze regel",
                    )
                )
            if line.quantity is None or line.unitPrice is None or line.lineTotal is None:
                continue
            expected = line_amount(line.quantity, line.unitPrice)
            actual = round2(line.lineTotal)
            if differs(expected, actual):
                found.append(
                    finding(
                        "ERR_INVALID_LINE_AMOUNT",
                        "error",
                        f"Regel {number}: totaal komt niet overeen ({actual} vs {expected})",
                        f"Line {number}: total does not match ({actual} vs {expected})",
                        f"{path}.LineExtensionAmount",
                        "Controleer de berekening: "
                        f"{format_number(line.quantity)} × {format_number(line.unitPrice)}"
                        f" = {expected}",
                    )
                )
        return found

    def _totals(self, invoice: InvoiceNormalized) -> list[ValidationError]:
        if not invoice.lines:
            return []
        found: list[ValidationError] = []
        subtotal = sum_line_totals(invoice.lines)
        vat_total = sum_line_vat(invoice.lines)

        if invoice.subtotalExclVat is not None and differs(invoice.subtotalExclVat, subtotal):
            stated = format_amount(invoice.subtotalExclVat)
            found.append(
                finding(
                    "ERR_INVALID_SUBTOTAL",
                    "error",
                    f"Subtotaal komt niet overeen met som van regels ({stated} vs {subtotal})",
                    f"Subtotal does not match sum of lines ({stated} vs {subtotal})",
                    "Invoice.LegalMonetaryTotal.TaxExclusiveAmount",
                    f"Controleer de berekening: som van regels = {subtotal}",
                )
            )

        # Lines without a rate say nothing about the VAT total.
        has_rates = any(line.vatRate is not None for line in invoice.lines)
        if (
            invoice.vatTotal is not None
            and has_rates
            and differs(invoice.vatTotal, vat_total)
        ):
            stated = format_amount(invoice.vatTotal)
            found.append(
                finding(
                    "ERR_INVALID_VAT_TOTAL",
                    "error",
                    f"BTW totaal komt niet overeen met som van regels ({stated} vs {vat_total})",
                    f"VAT total does not match sum of lines ({stated} vs {vat_total})",
                    "Invoice.TaxTotal.TaxAmount",
                    "Controleer de BTW berekening per regel",
                )
            )

        if invoice.totalInclVat is not None:
            base = invoice.subtotalExclVat if invoice.subtotalExclVat is not None else subtotal
            vat = invoice.vatTotal if invoice.vatTotal is not None else vat_total
            expected = round2(base + vat)
            actual = round2(invoice.totalInclVat)
            if differs(expected, actual):
                found.append(
                    finding(
                        "ERR_INVALID_TOTAL",
                        "error",
                        f"Totaal incl. BTW komt niet overeen ({actual} vs {expected})",
                        f"Total incl. VAT does not match ({actual} vs {expected})",
                        "Invoice.LegalMonetaryTotal.TaxInclusiveAmount",
                        f"Controleer: {format_amount(base)} + {format_amount(vat)} = {expected}",
                    )
                )
        return found

    def _vat_numbers(self, invoice: InvoiceNormalized) -> list[ValidationError]:
        found: list[ValidationError] = []
        for role, party in (("supplier", invoice.supplier), ("customer", invoice.customer)):
            if party is None or not party.vatNumber:
                continue
            error = check_vat_format(party.vatNumber, role)
            if error is not None:
                found.append(error)
        return found

    def _currency(self, invoice: InvoiceNormalized) -> list[ValidationError]:
        if not invoice.currency or invoice.currency == "EUR":
            return []
        return [
            finding(
                "WARN_NON_EUR_CURRENCY",
                "warning",
                f"Valuta is {invoice.currency}, controleer of dit correct is",
                f"Currency is {invoice.currency}, verify if this is correct",
                "Invoice.DocumentCurrencyCode",
                "Controleer of de valuta overeenkomt met de factuur",
            )
        ]
