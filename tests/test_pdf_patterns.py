from datetime import date
from decimal import Decimal

from peppol_converter.services import pdf_patterns as patterns
from peppol_converter.services.pdf_patterns import first_match

# --- invoice number ---


def test_invoice_number_keyword_match() -> None:
    match = first_match(patterns.INVOICE_NUMBER, "Factuurnummer: INV-2024-001")

    assert match is not None
    assert match.value == "INV-2024-001"
    assert match.confidence == 0.8


def test_invoice_number_skips_vat_number_label() -> None:
    text = "BTW nummer: BE0123456789\nInvoice number: 2024/17"

    match = first_match(patterns.INVOICE_NUMBER, text)

    assert match is not None
    assert match.value == "2024/17"


def test_invoice_number_is_never_a_date() -> None:
    assert first_match(patterns.INVOICE_NUMBER, "Factuur 15/03/2024") is None


def test_invoice_number_bare_prefix_fallback() -> None:
    match = first_match(patterns.INVOICE_NUMBER, "INV20240017\nThank you")

    assert match is not None
    assert match.value == "INV20240017"
    assert match.confidence == 0.5


# --- dates ---


def test_issue_and_due_date_keywords() -> None:
    text = "Factuurdatum: 15/03/2024\nVervaldatum: 14/04/2024"

    issue = first_match(patterns.ISSUE_DATE, text)
    due = first_match(patterns.DUE_DATE, text)

    assert issue is not None and issue.value == date(2024, 3, 15)
    assert due is not None and due.value == date(2024, 4, 14)


def test_issue_date_datum_does_not_match_inside_vervaldatum() -> None:
    text = "Vervaldatum: 14/04/2024\nDatum: 01/03/2024"

    match = first_match(patterns.ISSUE_DATE, text)

    assert match is not None
    assert match.value == date(2024, 3, 1)


def test_issue_date_with_dutch_month_name() -> None:
    match = first_match(patterns.ISSUE_DATE, "Factuurdatum: 5 maart 2024")

    assert match is not None
    assert match.value == date(2024, 3, 5)


def test_due_date_falls_back_to_first_date_with_low_confidence() -> None:
    match = first_match(patterns.DUE_DATE, "Printed on 01/02/2024")

    assert match is not None
    assert match.value == date(2024, 2, 1)
    assert match.confidence == 0.5


# --- currency ---


def test_currency_code_other_than_eur_is_confident() -> None:
    match = first_match(patterns.CURRENCY, "Totaal: 100,00 USD")

    assert match is not None
    assert match.value == "USD"
    assert match.confidence == 0.9


def test_currency_euro_symbol() -> None:
    match = first_match(patterns.CURRENCY, "Totaal: € 100,00")

    assert match is not None
    assert match.value == "EUR"
    assert match.confidence == 0.5


# --- identifiers ---


def test_belgian_vat_number_is_compacted() -> None:
    match = first_match(patterns.VAT_NUMBER, "BTW: BE 0123.456.789")

    assert match is not None
    assert match.value == "BE0123456789"


def test_dutch_vat_number() -> None:
    match = first_match(patterns.VAT_NUMBER, "VAT NL123456789B01")

    assert match is not None
    assert match.value == "NL123456789B01"


def test_iban_keyword() -> None:
    match = first_match(patterns.IBAN, "IBAN: BE68 5390 0754 7034")

    assert match is not None
    assert match.value == "BE68539007547034"


def test_bic_keyword() -> None:
    match = first_match(patterns.BIC, "BIC: GEBABEBB")

    assert match is not None
    assert match.value == "GEBABEBB"


def test_structured_payment_reference() -> None:
    match = first_match(patterns.PAYMENT_REFERENCE, "Mededeling: +++123/4567/89012+++")

    assert match is not None
    assert match.value == "+++123/4567/89012+++"


def test_registration_number_keeps_digits_only() -> None:
    match = first_match(patterns.REGISTRATION_NUMBER, "KBO: 0123.456.789")

    assert match is not None
    assert match.value == "0123456789"


# --- addresses ---


def test_find_postal_city_belgian() -> None:
    match = patterns.find_postal_city("1000 Brussel")

    assert match is not None
    assert match.value == ("1000", "Brussel")


def test_find_postal_city_dutch() -> None:
    match = patterns.find_postal_city("1012 AB Amsterdam")

    assert match is not None
    assert match.value == ("1012 AB", "Amsterdam")


def test_find_street_with_house_number() -> None:
    match = patterns.find_street("Kerkstraat 12")

    assert match is not None
    assert match.value == "Kerkstraat 12"


def test_find_street_french_number_first() -> None:
    match = patterns.find_street("12, rue de la Loi")

    assert match is not None
    assert match.value == "12, rue de la Loi"


def test_find_country_by_name() -> None:
    match = patterns.find_country("Brussels, Belgium")

    assert match is not None
    assert match.value == "BE"


# --- line items and totals ---


def test_find_line_items_skips_totals_rows() -> None:
    text = "Consulting 10 100.00 21% 1000.00\nTotaal 1 1000.00 21 1210.00"

    items = patterns.find_line_items(text)

    assert len(items) == 1
    item = items[0]
    assert item.description == "Consulting"
    assert item.quantity == Decimal("10")
    assert item.unit_price == Decimal("100.00")
    assert item.vat_rate == Decimal("21")
    assert item.line_total == Decimal("1000.00")


def test_totals_are_read_from_labelled_lines() -> None:
    text = "Subtotaal: 1.100,00\nBTW 21%: 231,00\nTotaal incl. BTW: 1.331,00"

    subtotal = first_match(patterns.SUBTOTAL, text)
    vat = first_match(patterns.VAT_TOTAL, text)
    total = first_match(patterns.GRAND_TOTAL, text)

    assert subtotal is not None and subtotal.value == Decimal("1100.00")
    assert vat is not None and vat.value == Decimal("231.00")
    assert total is not None and total.value == Decimal("1331.00")
