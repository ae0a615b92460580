"""Plausibility checks on extracted data and the overall data-quality score.

These findings are advisory except for negative amounts and impossible VAT
rates, which are never legitimate on an invoice.
"""

from collections.abc import Callable
from datetime import date
from decimal import Decimal

from dateutil.relativedelta import relativedelta

from peppol_converter.api.v1.schemas import (
    DataQualityScore,
    InvoiceNormalized,
    MappingField,
    Party,
    ValidationError,
)
from peppol_converter.services import confidence
from peppol_converter.services.amounts import format_number
from peppol_converter.services.rules import finding

MAX_LINE_TOTAL = Decimal("10000000")
MAX_INVOICE_TOTAL = Decimal("100000000")
MAX_AGE = relativedelta(years=5)
MAX_AHEAD = relativedelta(years=1)

PLACEHOLDER_INVOICE_NUMBERS = frozenset({"UNKNOWN", "N/A", "NULL"})
PLACEHOLDER_NAMES = ("UNKNOWN", "N/A", "NULL", "TBD", "TO BE DETERMINED", "EXAMPLE", "TEST")
EUROPEAN_COUNTRY_CODES = frozenset(
    {
        "BE", "NL", "DE", "FR", "GB", "IT", "ES", "AT", "DK", "SE", "NO", "FI", "PL", "CZ",
        "HU", "RO", "BG", "HR", "SI", "SK", "EE", "LV", "LT", "IE", "PT", "GR", "LU", "MT",
        "CY",
    }
)

# (mapping path, UBL path, minimum confidence, Dutch label, English label)
CRITICAL_FIELDS = (
    ("invoiceNumber", "Invoice.ID", confidence.MIN_IDENTIFIER, "factuurnummer", "invoice number"),
    ("issueDate", "Invoice.IssueDate", confidence.MIN_DATE, "factuurdatum", "issue date"),
    (
        "supplier.name",
        "Invoice.AccountingSupplierParty.Party.PartyName.Name",
        confidence.MIN_IDENTIFIER,
        "leveranciersnaam",
        "supplier name",
    ),
    (
        "customer.name",
        "Invoice.AccountingCustomerParty.Party.PartyName.Name",
        confidence.MIN_IDENTIFIER,
        "klantnaam",
        "customer name",
    ),
)

_PARTY_PATHS = {
    "supplier": ("leverancier", "leveranciersnaam", "AccountingSupplierParty", "SUPPLIER"),
    "customer": ("klant", "klantnaam", "AccountingCustomerParty", "CUSTOMER"),
}


def _first_mapping(fields: list[MappingField], path: str) -> MappingField | None:
    return next((f for f in fields if f.field == path), None)


def is_placeholder_invoice_number(number: str) -> bool:
    normalized = number.strip().upper()
    return normalized in PLACEHOLDER_INVOICE_NUMBERS or len(normalized) < 3


def _percent(value: float) -> int:
    return round(value * 100)


class DataQualityValidator:
    def __init__(self, today: Callable[[], date] = date.today) -> None:
        self._today = today

    def validate(
        self, invoice: InvoiceNormalized, fields: list[MappingField]
    ) -> list[ValidationError]:
        return [
            *self._confidence(fields),
            *self._invoice_number(invoice),
            *self._issue_date(invoice),
            *self._lines(invoice),
            *self._total(invoice),
            *self._party_names(invoice),
            *self._country_codes(invoice),
            *self._line_confidence(invoice),
        ]

    def score(
        self,
        invoice: InvoiceNormalized,
        fields: list[MappingField],
        findings: list[ValidationError],
    ) -> DataQualityScore:
        score = 1.0
        issues: list[str] = []
        for path, _, _, _, label in CRITICAL_FIELDS:
            mapping = _first_mapping(fields, path)
            if mapping is None:
                score -= 0.1
                issues.append(f"Missing field: {label}")
            elif mapping.confidence < confidence.SCORE_LOW:
                score -= 0.15
                issues.append(f"Low confidence for {label}")
            elif mapping.confidence < confidence.SCORE_MEDIUM:
                score -= 0.05

        errors = sum(1 for f in findings if f.severity == "error")
        warnings = len(findings) - errors
        score -= errors * 0.1
        score -= warnings * 0.02
        if errors:
            issues.append(f"{errors} validation error(s)")

        if invoice.invoiceNumber and is_placeholder_invoice_number(invoice.invoiceNumber):
            score -= 0.1
            issues.append("Suspicious invoice number")

        score = round(max(0.0, min(1.0, score)), 2)
        if score >= 0.9:
            level = "excellent"
        elif score >= 0.7:
            level = "good"
        elif score >= 0.5:
            level = "fair"
        else:
            level = "poor"
        return DataQualityScore(score=score, level=level, issues=issues)

    def _confidence(self, fields: list[MappingField]) -> list[ValidationError]:
        found: list[ValidationError] = []
        for path, ubl_path, minimum, label_nl, label_en in CRITICAL_FIELDS:
            mapping = _first_mapping(fields, path)
            if mapping is None or mapping.confidence >= minimum:
                continue
            pct = _percent(mapping.confidence)
            found.append(
                finding(
                    "WARN_LOW_CONFIDENCE",
                    "warning",
                    f"Lage betrouwbaarheid voor {label_nl} ({pct}%). "
                    f'Controleer de waarde: "{mapping.value}"',
                    f'Low confidence for {label_en} ({pct}%). Verify the value: "{mapping.value}"',
                    ubl_path,
                    f'Controleer of "{mapping.rawValue or mapping.value}" correct is',
                )
            )
        return found

    def _invoice_number(self, invoice: InvoiceNormalized) -> list[ValidationError]:
        number = invoice.invoiceNumber
        if not number or not is_placeholder_invoice_number(number):
            return []
        return [
            finding(
                "WARN_SUSPICIOUS_INVOICE_NUMBER",
                "warning",
                f'Factuurnummer lijkt ongeldig of generiek: "{number}"',
                f'Invoice number seems invalid or generic: "{number}"',
                "Invoice.ID",
                "Controleer of het factuurnummer correct is gelezen",
            )
        ]

    def _issue_date(self, invoice: InvoiceNormalized) -> list[ValidationError]:
        issue_date = invoice.issueDate
        if not isinstance(issue_date, date):
            return []
        today = self._today()
        shown = issue_date.isoformat()
        if issue_date < today - MAX_AGE:
            return [
                finding(
                    "WARN_VERY_OLD_DATE",
                    "warning",
                    f"Factuurdatum is meer dan 5 jaar geleden: {shown}",
                    f"Invoice date is more than 5 years ago: {shown}",
                    "Invoice.IssueDate",
                    "Controleer of de datum correct is",
                )
            ]
        if issue_date > today + MAX_AHEAD:
            return [
                finding(
                    "WARN_FAR_FUTURE_DATE",
                    "warning",
                    f"Factuurdatum ligt meer dan 1 jaar in de toekomst: {shown}",
                    f"Invoice date is more than 1 year in the future: {shown}",
                    "Invoice.IssueDate",
                    "Controleer of de datum correct is",
                )
            ]
        return []

    def _lines(self, invoice: InvoiceNormalized) -> list[ValidationError]:
        found: list[ValidationError] = []
        for index, line in enumerate(invoice.lines):
            n = index + 1
            path = f"InvoiceLine[{index}]"
            if line.quantity is not None and line.quantity < 0:
                found.append(
                    finding(
                        "ERR_NEGATIVE_QUANTITY",
                        "error",
                        f"Regel {n}: Negatieve hoeveelheid gevonden: "
                        f"{format_number(line.quantity)}",
                        f"Line {n}: Negative quantity found: {format_number(line.quantity)}",
                        f"{path}.InvoicedQuantity",
                        "Controleer de hoeveelheid - negatieve waarden zijn niet toegestaan",
                    )
                )
            if line.unitPrice is not None and line.unitPrice < 0:
                found.append(
                    finding(
                        "ERR_NEGATIVE_PRICE",
                        "error",
                        f"Regel {n}: Negatieve prijs gevonden: {format_number(line.unitPrice)}",
                        f"Line {n}: Negative price found: {format_number(line.unitPrice)}",
                        f"{path}.Price.PriceAmount",
                        "Controleer de prijs - negatieve waarden zijn niet toegestaan",
                    )
                )
            if line.lineTotal is not None and line.lineTotal < 0:
                found.append(
                    finding(
                        "ERR_NEGATIVE_LINE_TOTAL",
                        "error",
                        f"Regel {n}: Negatief totaal gevonden: {format_number(line.lineTotal)}",
                        f"Line {n}: Negative line total found: {format_number(line.lineTotal)}",
                        f"{path}.LineExtensionAmount",
                        "Controleer het totaal - negatieve waarden zijn niet toegestaan",
                    )
                )
            if line.lineTotal is not None and line.lineTotal > MAX_LINE_TOTAL:
                found.append(
                    finding(
                        "WARN_SUSPICIOUSLY_LARGE_AMOUNT",
                        "warning",
                        f"Regel {n}: Zeer groot bedrag gevonden: {format_number(line.lineTotal)}."
                        " Dit kan een leesfout zijn.",
                        f"Line {n}: Very large amount found: {format_number(line.lineTotal)}."
                        " This might be a parsing error.",
                        f"{path}.LineExtensionAmount",
                        "Controleer of het bedrag correct is gelezen",
                    )
                )
            if (
                line.lineTotal is not None
                and line.lineTotal == 0
                and line.quantity is not None
                and line.quantity > 0
                and line.unitPrice is not None
                and line.unitPrice > 0
            ):
                found.append(
                    finding(
                        "WARN_ZERO_LINE_TOTAL",
                        "warning",
                        f"Regel {n}: Totaal is 0 terwijl hoeveelheid en prijs > 0 zijn."
                        " Mogelijk ontbrekende data.",
                        f"Line {n}: Total is 0 while quantity and price are > 0."
                        " Possible missing data.",
                        f"{path}.LineExtensionAmount",
                        "Controleer of alle gegevens correct zijn gelezen",
                    )
                )
            if line.vatRate is None:
                continue
            rate = format_number(line.vatRate)
            if line.vatRate < 0 or line.vatRate > 100:
                found.append(
                    finding(
                        "ERR_INVALID_VAT_RATE",
                        "error",
                        f"Regel {n}: Ongeldig BTW percentage: {rate}% (moet tussen 0 en 100 zijn)",
                        f"Line {n}: Invalid VAT rate: {rate}% (must be between 0 and 100)",
                        f"{path}.TaxCategory.Percent",
                        "Controleer het BTW percentage",
                    )
                )
            elif 0 < line.vatRate < 1:
                # Catches 0.21 written for 21%. Genuine rates below 1% are flagged too.
                found.append(
                    finding(
                        "WARN_VAT_RATE_FORMAT",
                        "warning",
                        f"Regel {n}: BTW percentage lijkt in decimaal formaat: {rate}."
                        " Verwacht percentage (bijv. 21 voor 21%)",
                        f"Line {n}: VAT rate seems in decimal format: {rate}."
                        " Expected percentage (e.g., 21 for 21%)",
                        f"{path}.TaxCategory.Percent",
                        "Controleer of het BTW percentage correct is (bijv. 21 voor 21%)",
                    )
                )
        return found

    def _total(self, invoice: InvoiceNormalized) -> list[ValidationError]:
        total = invoice.totalInclVat
        if total is None:
            return []
        found: list[ValidationError] = []
        if total < 0:
            found.append(
                finding(
                    "ERR_NEGATIVE_TOTAL",
                    "error",
                    "Totaal bedrag is negatief",
                    "Total amount is negative",
                    "Invoice.LegalMonetaryTotal.TaxInclusiveAmount",
                    "Controleer de totaalbedragen",
                )
            )
        if total > MAX_INVOICE_TOTAL:
            found.append(
                finding(
                    "WARN_SUSPICIOUSLY_LARGE_TOTAL",
                    "warning",
                    f"Zeer groot totaal bedrag: {format_number(total)}. Dit kan een leesfout zijn.",
                    f"Very large total amount: {format_number(total)}."
                    " This might be a parsing error.",
                    "Invoice.LegalMonetaryTotal.TaxInclusiveAmount",
                    "Controleer of het totaal bedrag correct is gelezen",
                )
            )
        return found

    def _party_names(self, invoice: InvoiceNormalized) -> list[ValidationError]:
        found: list[ValidationError] = []
        for role, party in (("supplier", invoice.supplier), ("customer", invoice.customer)):
            if party is None or not party.name:
                continue
            name = party.name.strip()
            upper = name.upper()
            if len(name) >= 2 and not any(p in upper for p in PLACEHOLDER_NAMES):
                continue
            _, label_nl, ubl_party, code = _PARTY_PATHS[role]
            found.append(
                finding(
                    f"WARN_SUSPICIOUS_{code}_NAME",
                    "warning",
                    f'{label_nl.capitalize()} lijkt ongeldig of generiek: "{name}"',
                    f'{role.capitalize()} name seems invalid or generic: "{name}"',
                    f"Invoice.{ubl_party}.Party.PartyName.Name",
                    f"Controleer of de {label_nl} correct is gelezen",
                )
            )
        return found

    def _country_codes(self, invoice: InvoiceNormalized) -> list[ValidationError]:
        found: list[ValidationError] = []
        for role, party in (("supplier", invoice.supplier), ("customer", invoice.customer)):
            party = party or Party()
            if party.address is None or not party.address.countryCode:
                continue
            code = party.address.countryCode.strip().upper()
            if code in EUROPEAN_COUNTRY_CODES:
                continue
            label_nl, _, ubl_party, _ = _PARTY_PATHS[role]
            found.append(
                finding(
                    "WARN_INVALID_COUNTRY_CODE",
                    "warning",
                    f'Ongeldige landcode voor {label_nl}: "{code}". '
                    "Gebruik een geldige ISO 3166-1 alpha-2 code (bijv. BE, NL, DE)",
                    f'Invalid country code for {role}: "{code}". '
                    "Use a valid ISO 3166-1 alpha-2 code (e.g., BE, NL, DE)",
                    f"Invoice.{ubl_party}.Party.PostalAddress.Country.IdentificationCode",
                    "Controleer de landcode (moet 2 letters zijn, bijv. BE, NL, DE)",
                )
            )
        return found

    def _line_confidence(self, invoice: InvoiceNormalized) -> list[ValidationError]:
        low = sum(
            1
            for line in invoice.lines
            if line.confidence is not None and line.confidence < confidence.MIN_LINE
        )
        if not low:
            return []
        return [
            finding(
                "WARN_LOW_CONFIDENCE_LINES",
                "warning",
                f"{low} factuurregel(s) hebben een lage betrouwbaarheid. "
                "Controleer of de gegevens correct zijn gelezen.",
                f"{low} invoice line(s) have low confidence. "
                "Verify if the data was read correctly.",
                "Invoice.InvoiceLine",
                "Controleer de factuurregels met lage betrouwbaarheid",
            )
        ]
