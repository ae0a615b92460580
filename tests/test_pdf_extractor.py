from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from peppol_converter.services.pdf_extractor import (
    PDFInvoiceExtractor,
    PlumberExtractor,
    extraction_confidence,
)
from tests.utils import INVOICE_TEXT, make_pdf_bytes

# --- PlumberExtractor ---


def test_extract_text_returns_expected_content() -> None:
    pdf_bytes = make_pdf_bytes("InvoiceNumber 12345")
    extractor = PlumberExtractor()
    result = extractor.extract_text(pdf_bytes)
    assert "InvoiceNumber" in result
    assert "12345" in result


def test_extract_text_raises_on_empty_input() -> None:
    extractor = PlumberExtractor()
    with pytest.raises(ValueError):
        extractor.extract_text(b"")


def test_page_texts_returns_one_entry_per_page() -> None:
    pages = PlumberExtractor().page_texts(make_pdf_bytes("hello"))

    assert len(pages) == 1
    assert "hello" in pages[0]


def test_plumber_extractor_returns_empty_string_for_zero_page_pdf() -> None:
    extractor = PlumberExtractor()
    mock_pdf = MagicMock()
    mock_pdf.pages = []
    mock_pdf.__enter__ = MagicMock(return_value=mock_pdf)
    mock_pdf.__exit__ = MagicMock(return_value=False)
    with patch("peppol_converter.services.pdf_extractor.pdfplumber.open", return_value=mock_pdf):
        assert extractor.page_texts(b"notempty") == []
        assert extractor.extract_text(b"notempty") == ""


# --- PDFInvoiceExtractor ---


def test_extract_from_text_reads_header_fields() -> None:
    invoice, _ = PDFInvoiceExtractor().extract_from_text(INVOICE_TEXT, "invoice.pdf")

    assert invoice.invoiceNumber == "INV-2024-001"
    assert invoice.issueDate == date(2024, 3, 15)
    assert invoice.sourceType == "pdf"
    assert invoice.sourceFile == "invoice.pdf"


def test_extract_from_text_reads_supplier_block() -> None:
    invoice, _ = PDFInvoiceExtractor().extract_from_text(INVOICE_TEXT, "invoice.pdf")

    supplier = invoice.supplier
    assert supplier is not None
    assert supplier.name == "Acme Consulting BV"
    assert supplier.vatNumber == "BE0123456789"
    assert supplier.address is not None
    assert supplier.address.street == "Kerkstraat 12"
    assert supplier.address.postalCode == "1000"
    assert supplier.address.city == "Brussel"
    assert supplier.address.countryCode == "BE"


def test_extract_from_text_reads_customer_block() -> None:
    invoice, _ = PDFInvoiceExtractor().extract_from_text(INVOICE_TEXT, "invoice.pdf")

    customer = invoice.customer
    assert customer is not None
    assert customer.name == "Globex NV"
    assert customer.vatNumber is None
    assert customer.address is not None
    assert customer.address.street == "Marktplein 5"
    assert customer.address.city == "Gent"


def test_extract_from_text_reads_line_items() -> None:
    invoice, fields = PDFInvoiceExtractor().extract_from_text(INVOICE_TEXT, "invoice.pdf")

    assert len(invoice.lines) == 1
    line = invoice.lines[0]
    assert line.description == "Consulting"
    assert line.quantity == Decimal("10")
    assert line.unitPrice == Decimal("100.00")
    assert line.vatRate == Decimal("21")
    assert line.lineTotal == Decimal("1000.00")
    assert line.source == "pdf-text"
    assert "lines[0].lineTotal" in {f.field for f in fields}


def test_extract_from_text_records_mapping_for_every_found_field() -> None:
    invoice, fields = PDFInvoiceExtractor().extract_from_text(INVOICE_TEXT, "invoice.pdf")

    by_field = {f.field: f for f in fields}
    assert by_field["invoiceNumber"].value == "INV-2024-001"
    assert by_field["invoiceNumber"].confidence == 0.8
    assert by_field["supplier.vatNumber"].confidence == 0.9
    assert all(f.source == "pdf-text" for f in fields)
    assert invoice.extractionConfidence == extraction_confidence(fields)


def test_extract_from_text_leaves_missing_totals_empty() -> None:
    invoice, fields = PDFInvoiceExtractor().extract_from_text(INVOICE_TEXT, "invoice.pdf")

    assert invoice.subtotalExclVat is None
    assert invoice.vatTotal is None
    assert invoice.totalInclVat is None
    assert "totalInclVat" not in {f.field for f in fields}


def test_extract_from_text_with_nothing_recognisable() -> None:
    invoice, fields = PDFInvoiceExtractor().extract_from_text("", "blank.pdf")

    assert fields == []
    assert invoice.invoiceNumber is None
    assert invoice.supplier is None
    assert invoice.lines == []
    assert invoice.extractionConfidence is None


def test_extract_reads_text_layer_of_a_real_pdf() -> None:
    pdf_bytes = make_pdf_bytes(*INVOICE_TEXT.splitlines())

    invoice, _ = PDFInvoiceExtractor().extract(pdf_bytes, "invoice.pdf")

    assert invoice.invoiceNumber == "INV-2024-001"
    assert invoice.issueDate == date(2024, 3, 15)
    assert len(invoice.lines) == 1


def test_extract_uses_injected_plumber() -> None:
    plumber = MagicMock(spec=PlumberExtractor)
    plumber.extract_text.return_value = "Factuurnummer: X-42"

    invoice, _ = PDFInvoiceExtractor(plumber=plumber).extract(b"%PDF-1.4", "x.pdf")

    plumber.extract_text.assert_called_once_with(b"%PDF-1.4")
    assert invoice.invoiceNumber == "X-42"


def test_extraction_confidence_is_none_without_fields() -> None:
    assert extraction_confidence([]) is None
