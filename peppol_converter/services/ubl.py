"""UBL 2.1 Invoice writer for the Peppol BIS Billing 3.0 profile.

``to_ubl`` always produces a complete document: every element the profile
requires is written, with a literal default when the invoice lacks the data.
"""

import re
from collections.abc import Callable
from datetime import date
from decimal import Decimal

from lxml import etree

from peppol_converter.api.v1.schemas import (
    InvoiceLine,
    InvoiceNormalized,
    Party,
    ValidationError,
)
from peppol_converter.services.amounts import (
    format_amount,
    format_number,
    line_amount,
    line_vat,
    round2,
    sum_line_totals,
    sum_line_vat,
)
from peppol_converter.services.rules import finding

NS_INVOICE = "urn:oasis:names:specification:ubl:schema:xsd:Invoice-2"
NS_CAC = "urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2"
NS_CBC = "urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2"
NSMAP = {None: NS_INVOICE, "cac": NS_CAC, "cbc": NS_CBC}

CUSTOMIZATION_ID = "urn:cen.eu:en16931:2017#compliant#urn:fdc:peppol.eu:2017:poacc:billing:3.0"
PROFILE_ID = "urn:fdc:peppol.eu:2017:poacc:billing:01:1.0"
INVOICE_TYPE_CODE = "380"
DEFAULT_INVOICE_ID = "UNKNOWN"
DEFAULT_COUNTRY = "BE"
DEFAULT_CURRENCY = "EUR"
DEFAULT_VAT_CATEGORY = "S"
DEFAULT_UNIT = "C62"
DEFAULT_ITEM_NAME = "Item"
PAYMENT_MEANS_SEPA_TRANSFER = "58"
PAYMENT_MEANS_CREDIT_TRANSFER = "30"
BELGIAN_ENTERPRISE_SCHEME = "0208"

REQUIRED_ELEMENTS = (
    "cbc:CustomizationID",
    "cbc:ProfileID",
    "cbc:ID",
    "cbc:IssueDate",
    "cbc:InvoiceTypeCode",
    "cbc:DocumentCurrencyCode",
    "cac:AccountingSupplierParty/cac:Party",
    "cac:AccountingCustomerParty/cac:Party",
    "cac:TaxTotal/cbc:TaxAmount",
    "cac:LegalMonetaryTotal/cbc:LineExtensionAmount",
    "cac:LegalMonetaryTotal/cbc:TaxExclusiveAmount",
    "cac:LegalMonetaryTotal/cbc:TaxInclusiveAmount",
    "cac:LegalMonetaryTotal/cbc:PayableAmount",
)

# Characters XML 1.0 cannot carry.
_XML_INVALID = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]")


def _text(value: object) -> str:
    return _XML_INVALID.sub("", str(value))


def _cac(parent: etree._Element, name: str) -> etree._Element:
    return etree.SubElement(parent, f"{{{NS_CAC}}}{name}")


def _cbc(parent: etree._Element, name: str, text: object = None, **attrs: str) -> etree._Element:
    element = etree.SubElement(parent, f"{{{NS_CBC}}}{name}", attrs)
    if text is not None:
        element.text = _text(text)
    return element


def _amount(parent: etree._Element, name: str, value: Decimal | None, currency: str) -> None:
    _cbc(parent, name, format_amount(value), currencyID=currency)


def _iso(value: date) -> str:
    return f"{value:%Y-%m-%d}"


def _tax_scheme(parent: etree._Element) -> None:
    _cbc(_cac(parent, "TaxScheme"), "ID", "VAT")


def _party(parent: etree._Element, wrapper: str, party: Party | None) -> None:
    party = party or Party()
    node = _cac(_cac(parent, wrapper), "Party")
    _cbc(_cac(node, "PartyName"), "Name", party.name or "")

    address = party.address
    postal = _cac(node, "PostalAddress")
    if address is not None:
        if address.street:
            _cbc(postal, "StreetName", address.street)
        if address.city:
            _cbc(postal, "CityName", address.city)
        if address.postalCode:
            _cbc(postal, "PostalZone", address.postalCode)
    country = (address.countryCode if address is not None else None) or DEFAULT_COUNTRY
    _cbc(_cac(postal, "Country"), "IdentificationCode", country)

    if party.vatNumber:
        tax_scheme = _cac(node, "PartyTaxScheme")
        _cbc(tax_scheme, "CompanyID", party.vatNumber)
        _tax_scheme(tax_scheme)

    legal = _cac(node, "PartyLegalEntity")
    _cbc(legal, "RegistrationName", party.name or "")
    if party.registrationNumber:
        if country == "BE":
            _cbc(legal, "CompanyID", party.registrationNumber, schemeID=BELGIAN_ENTERPRISE_SCHEME)
        else:
            _cbc(legal, "CompanyID", party.registrationNumber)


def _payment_means(root: etree._Element, invoice: InvoiceNormalized) -> None:
    if not (invoice.iban or invoice.bic or invoice.paymentReference):
        return
    means = _cac(root, "PaymentMeans")
    code = PAYMENT_MEANS_SEPA_TRANSFER if invoice.iban else PAYMENT_MEANS_CREDIT_TRANSFER
    _cbc(means, "PaymentMeansCode", code)
    if invoice.paymentReference:
        _cbc(means, "PaymentID", invoice.paymentReference)
    if invoice.iban:
        account = _cac(means, "PayeeFinancialAccount")
        _cbc(account, "ID", invoice.iban)
        if invoice.bic:
            _cbc(_cac(account, "FinancialInstitutionBranch"), "ID", invoice.bic)


def vat_groups(lines: list[InvoiceLine]) -> list[tuple[Decimal, str, Decimal, Decimal]]:
    """One (rate, category, taxable, tax) group per distinct VAT rate, in first-seen order."""
    grouped: dict[Decimal, list[InvoiceLine]] = {}
    for line in lines:
        if line.vatRate is not None:
            grouped.setdefault(line.vatRate, []).append(line)
    groups = []
    for rate, members in grouped.items():
        category = members[0].vatCategory or DEFAULT_VAT_CATEGORY
        taxable = sum_line_totals(members)
        tax = round2(sum((line_vat(m) for m in members), Decimal("0")))
        groups.append((rate, category, taxable, tax))
    return groups


def _tax_subtotal(
    parent: etree._Element,
    taxable: Decimal,
    tax: Decimal,
    category: str,
    rate: Decimal,
    currency: str,
) -> None:
    subtotal = _cac(parent, "TaxSubtotal")
    _amount(subtotal, "TaxableAmount", taxable, currency)
    _amount(subtotal, "TaxAmount", tax, currency)
    tax_category = _cac(subtotal, "TaxCategory")
    _cbc(tax_category, "ID", category)
    _cbc(tax_category, "Percent", format_number(rate))
    _tax_scheme(tax_category)


def _tax_total(root: etree._Element, invoice: InvoiceNormalized, currency: str) -> None:
    groups = vat_groups(invoice.lines)
    tax_total = _cac(root, "TaxTotal")
    if invoice.vatTotal is not None:
        amount = invoice.vatTotal
    else:
        amount = sum((tax for _, _, _, tax in groups), Decimal("0"))
    _amount(tax_total, "TaxAmount", amount, currency)
    for rate, category, taxable, tax in groups:
        _tax_subtotal(tax_total, taxable, tax, category, rate, currency)
    if not groups and invoice.vatTotal:
        _tax_subtotal(
            tax_total,
            invoice.subtotalExclVat or Decimal("0"),
            invoice.vatTotal,
            DEFAULT_VAT_CATEGORY,
            Decimal("0"),
            currency,
        )


def _monetary_total(root: etree._Element, invoice: InvoiceNormalized, currency: str) -> None:
    subtotal = invoice.subtotalExclVat
    if subtotal is None:
        subtotal = sum_line_totals(invoice.lines)
    vat_total = invoice.vatTotal
    if vat_total is None:
        vat_total = sum_line_vat(invoice.lines)
    total = invoice.totalInclVat
    if total is None:
        total = round2(subtotal + vat_total)

    monetary = _cac(root, "LegalMonetaryTotal")
    _amount(monetary, "LineExtensionAmount", subtotal, currency)
    _amount(monetary, "TaxExclusiveAmount", subtotal, currency)
    _amount(monetary, "TaxInclusiveAmount", total, currency)
    _amount(monetary, "PayableAmount", total, currency)


def _invoice_line(root: etree._Element, number: int, line: InvoiceLine, currency: str) -> None:
    quantity = line.quantity if line.quantity is not None else Decimal("1")
    unit_price = line.unitPrice if line.unitPrice is not None else Decimal("0")
    line_total = line.lineTotal
    if line_total is None:
        line_total = line_amount(quantity, unit_price)

    node = _cac(root, "InvoiceLine")
    _cbc(node, "ID", str(number))
    _cbc(
        node,
        "InvoicedQuantity",
        format_number(quantity),
        unitCode=line.unitOfMeasure or DEFAULT_UNIT,
    )
    _amount(node, "LineExtensionAmount", line_total, currency)

    item = _cac(node, "Item")
    description = line.description or DEFAULT_ITEM_NAME
    _cbc(item, "Description", description)
    _cbc(item, "Name", description)
    category = _cac(item, "ClassifiedTaxCategory")
    _cbc(category, "ID", line.vatCategory or DEFAULT_VAT_CATEGORY)
    _cbc(category, "Percent", format_number(line.vatRate or Decimal("0")))
    _tax_scheme(category)

    _amount(_cac(node, "Price"), "PriceAmount", unit_price, currency)


def to_ubl(invoice: InvoiceNormalized, today: Callable[[], date] = date.today) -> str:
    currency = invoice.currency or DEFAULT_CURRENCY
    root = etree.Element(f"{{{NS_INVOICE}}}Invoice", nsmap=NSMAP)
    _cbc(root, "CustomizationID", CUSTOMIZATION_ID)
    _cbc(root, "ProfileID", PROFILE_ID)
    _cbc(root, "ID", invoice.invoiceNumber or DEFAULT_INVOICE_ID)
    issue_date = invoice.issueDate if isinstance(invoice.issueDate, date) else today()
    _cbc(root, "IssueDate", _iso(issue_date))
    if isinstance(invoice.dueDate, date):
        _cbc(root, "DueDate", _iso(invoice.dueDate))
    _cbc(root, "InvoiceTypeCode", INVOICE_TYPE_CODE)
    _cbc(root, "DocumentCurrencyCode", currency)

    _party(root, "AccountingSupplierParty", invoice.supplier)
    _party(root, "AccountingCustomerParty", invoice.customer)
    _payment_means(root, invoice)
    _tax_total(root, invoice, currency)
    _monetary_total(root, invoice, currency)
    for number, line in enumerate(invoice.lines, start=1):
        _invoice_line(root, number, line, currency)

    return etree.tostring(
        root, pretty_print=True, xml_declaration=True, encoding="UTF-8"
    ).decode("utf-8")


def check_xml(xml: str) -> list[ValidationError]:
    """Structural check of a produced document. Schema validation is not performed."""
    findings: list[ValidationError] = []
    try:
        root = etree.fromstring(xml.encode("utf-8"))
    except etree.XMLSyntaxError as exc:
        findings.append(
            finding(
                "ERR_MALFORMED_XML",
                "error",
                f"De gegenereerde XML is niet geldig: {exc}",
                f"The generated XML is not well-formed: {exc}",
                "Invoice",
                "Controleer de invoergegevens op ongeldige tekens",
            )
        )
        root = None

    if root is not None:
        if root.tag != f"{{{NS_INVOICE}}}Invoice":
            findings.append(_missing_element("Invoice"))
        else:
            namespaces = {"cac": NS_CAC, "cbc": NS_CBC}
            for path in REQUIRED_ELEMENTS:
                if root.find(path, namespaces) is None:
                    findings.append(_missing_element(path))

    findings.append(
        finding(
            "INFO_XSD_VALIDATION_SKIPPED",
            "warning",
            "XSD validatie is niet uitgevoerd",
            "XSD validation was not performed",
            "Invoice",
            "Valideer het document met de officiële Peppol validatietools",
        )
    )
    return findings


def _missing_element(path: str) -> ValidationError:
    return finding(
        "ERR_MISSING_UBL_ELEMENT",
        "error",
        f"Verplicht UBL-element ontbreekt: {path}",
        f"Required UBL element is missing: {path}",
        f"Invoice.{path.replace('cac:', '').replace('cbc:', '').replace('/', '.')}",
        None,
    )
