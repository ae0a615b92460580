from datetime import date
from decimal import Decimal

import pytest

from peppol_converter.api.v1.schemas import Address, InvoiceLine, InvoiceNormalized, Party
from peppol_converter.services.normalizer import normalize
from peppol_converter.services.rules import BusinessRuleValidator, check_vat_format


def _validator() -> BusinessRuleValidator:
    return BusinessRuleValidator(today=lambda: date(2024, 4, 1))


def _complete_invoice(**overrides: object) -> InvoiceNormalized:
    values: dict[str, object] = {
        "invoiceNumber": "INV-1",
        "issueDate": date(2024, 3, 15),
        "currency": "EUR",
        "supplier": Party(
            name="Acme BV",
            vatNumber="BE0123456789",
            address=Address(countryCode="BE"),
        ),
        "customer": Party(name="Globex NV"),
        "lines": [
            InvoiceLine(
                description="Consulting",
                quantity=Decimal("10"),
                unitPrice=Decimal("100"),
                vatRate=Decimal("21"),
                lineTotal=Decimal("1000"),
            )
        ],
        "subtotalExclVat": Decimal("1000"),
        "vatTotal": Decimal("210"),
        "totalInclVat": Decimal("1210"),
    }
    values.update(overrides)
    return InvoiceNormalized(**values)


def _codes(invoice: InvoiceNormalized) -> list[str]:
    return [f.code for f in _validator().validate(invoice)]


def test_complete_invoice_has_no_findings() -> None:
    assert _validator().validate(_complete_invoice()) == []


def test_empty_invoice_reports_missing_data_as_warnings() -> None:
    findings = _validator().validate(InvoiceNormalized())

    assert [f.code for f in findings] == [
        "WARN_MISSING_INVOICE_ID",
        "WARN_MISSING_ISSUE_DATE",
        "WARN_MISSING_SUPPLIER_NAME",
        "WARN_MISSING_SUPPLIER_COUNTRY",
        "WARN_MISSING_CUSTOMER_NAME",
        "WARN_NO_INVOICE_LINES",
    ]
    assert all(f.severity == "warning" for f in findings)


def test_findings_carry_dutch_and_english_messages() -> None:
    finding = _validator().validate(_complete_invoice(invoiceNumber=None))[0]

    assert finding.message.nl == 'Factuurnummer ontbreekt (wordt "UNKNOWN" gebruikt)'
    assert finding.message.en == 'Invoice ID is missing (will use "UNKNOWN")'
    assert finding.fieldPath == "Invoice.ID"


def test_unparseable_issue_date_is_an_error() -> None:
    assert _codes(_complete_invoice(issueDate="31/02/2024")) == ["ERR_INVALID_ISSUE_DATE"]


def test_future_issue_date_is_a_warning() -> None:
    assert _codes(_complete_invoice(issueDate=date(2024, 5, 1))) == ["WARN_FUTURE_ISSUE_DATE"]


def test_line_amount_mismatch() -> None:
    line = InvoiceLine(
        description="Consulting",
        quantity=Decimal("10"),
        unitPrice=Decimal("100"),
        vatRate=Decimal("21"),
        lineTotal=Decimal("900"),
    )

    findings = _validator().validate(
        _complete_invoice(
            lines=[line],
            subtotalExclVat=Decimal("900"),
            vatTotal=Decimal("189"),
            totalInclVat=Decimal("1089"),
        )
    )

    assert [f.code for f in findings] == ["ERR_INVALID_LINE_AMOUNT"]
    assert findings[0].fieldPath == "InvoiceLine[0].LineExtensionAmount"
    assert findings[0].suggestedFix == "Controleer de berekening: 10 × 100 = 1000.00"


def test_line_within_one_cent_is_accepted() -> None:
    line = InvoiceLine(
        description="Widget",
        quantity=Decimal("3"),
        unitPrice=Decimal("19.995"),
        lineTotal=Decimal("59.98"),
    )

    findings = _validator().validate(
        _complete_invoice(lines=[line], subtotalExclVat=None, vatTotal=None, totalInclVat=None)
    )

    assert findings == []


def test_missing_line_description_is_a_warning() -> None:
    line = InvoiceLine(quantity=Decimal("1"), unitPrice=Decimal("5"), lineTotal=Decimal("5"))

    codes = _codes(
        _complete_invoice(lines=[line], subtotalExclVat=None, vatTotal=None, totalInclVat=None)
    )

    assert codes == ["WARN_MISSING_LINE_DESCRIPTION"]


@pytest.mark.parametrize(
    ("overrides", "code"),
    [
        ({"subtotalExclVat": Decimal("1100")}, "ERR_INVALID_SUBTOTAL"),
        ({"vatTotal": Decimal("200")}, "ERR_INVALID_VAT_TOTAL"),
        ({"totalInclVat": Decimal("1300")}, "ERR_INVALID_TOTAL"),
    ],
)
def test_inconsistent_totals(overrides: dict[str, object], code: str) -> None:
    assert code in _codes(_complete_invoice(**overrides))


def test_vat_total_not_checked_when_no_line_has_a_rate() -> None:
    line = InvoiceLine(
        description="Consulting",
        quantity=Decimal("10"),
        unitPrice=Decimal("100"),
        lineTotal=Decimal("1000"),
    )

    codes = _codes(_complete_invoice(lines=[line]))

    assert "ERR_INVALID_VAT_TOTAL" not in codes


def test_normalized_totals_are_always_consistent() -> None:
    invoice = normalize(
        _complete_invoice(subtotalExclVat=None, vatTotal=None, totalInclVat=None)
    )

    codes = _codes(invoice)

    assert not [c for c in codes if c.startswith("ERR_INVALID") and "TOTAL" in c]


@pytest.mark.parametrize("vat", ["BE0123456789", "NL123456789B01", "DE123456789"])
def test_check_vat_format_accepts_valid_numbers(vat: str) -> None:
    assert check_vat_format(vat, "supplier") is None


def test_check_vat_format_rejects_short_belgian_number() -> None:
    codes = _codes(
        _complete_invoice(
            supplier=Party(name="Acme BV", vatNumber="BE123456789", address=Address(countryCode="BE"))
        )
    )

    assert codes == ["ERR_INVALID_VAT_FORMAT"]


def test_check_vat_format_dutch_message() -> None:
    error = check_vat_format("NL12345678B01", "customer")

    assert error is not None
    assert error.message.en == (
        "Invalid VAT number format for customer (NL expects 9 digits + B + 2 digits)"
    )
    assert error.fieldPath == "Invoice.AccountingCustomerParty.Party.PartyTaxScheme.CompanyID"


def test_non_eur_currency_is_a_warning() -> None:
    assert _codes(_complete_invoice(currency="USD")) == ["WARN_NON_EUR_CURRENCY"]
