"""
Map a billing invoice onto the UBL document model.

The builder only assembles ``InvoiceDocument`` values; XML output is the
serializer's job. Totals are recomputed from the lines with banker's
rounding so the document always satisfies its own tax invariants,
independent of what the invoice header stores.

Usage:
    document = build_document(invoice)
    xml_bytes = serialize(document)
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING

from django.utils import timezone

from .ubl.document import (
    CIUS_RO_CUSTOMIZATION_ID,
    HUNDRED,
    INVOICE_TYPE_COMMERCIAL,
    INVOICE_TYPE_CREDIT_NOTE,
    PAYMENT_MEANS_CREDIT_TRANSFER,
    TAX_CATEGORY_NOT_SUBJECT,
    TAX_CATEGORY_REVERSE_CHARGE,
    TAX_CATEGORY_STANDARD,
    TAX_CATEGORY_ZERO,
    UNIT_CODE_PIECE,
    BillingReference,
    Contact,
    Country,
    DocumentType,
    InvoiceDocument,
    InvoiceLine,
    Item,
    LegalMonetaryTotal,
    OrderReference,
    Party,
    PartyLegalEntity,
    PartyTaxScheme,
    PayeeFinancialAccount,
    PaymentMeans,
    PaymentTerms,
    PostalAddress,
    Price,
    TaxCategory,
    TaxScheme,
    TaxSubtotal,
    TaxTotal,
    to_money,
)

if TYPE_CHECKING:
    from datetime import date, datetime

    from apps.billing.models import Invoice, Organization
    from apps.billing.models import InvoiceLine as BillingLine

logger = logging.getLogger(__name__)

EU_COUNTRY_CODES = frozenset(
    {
        "AT", "BE", "BG", "CY", "CZ", "DE", "DK", "EE", "ES", "FI", "FR", "GR", "HR", "HU",
        "IE", "IT", "LT", "LU", "LV", "MT", "NL", "PL", "PT", "RO", "SE", "SI", "SK",
    }
)  # fmt: skip

# UBL endpoint scheme for an email address (CEF EAS code list)
ENDPOINT_SCHEME_EMAIL = "EM"


def _local_date(value: datetime | None) -> date | None:
    if value is None:
        return None
    return timezone.localtime(value).date() if timezone.is_aware(value) else value.date()


def _cents(value: int) -> Decimal:
    return to_money(Decimal(value) / HUNDRED)


def _vat_number(tax_id: str, country_code: str) -> str:
    tax_id = (tax_id or "").strip().upper()
    if not tax_id or tax_id.startswith(country_code):
        return tax_id
    return f"{country_code}{tax_id}"


def resolve_tax_category(percent: Decimal, seller_country: str, buyer_country: str, buyer_tax_id: str) -> str:
    """
    UNCL5305 category for a line.

    Zero-rated lines are reverse charge for an EU business buyer abroad,
    zero rated at home and outside the scope of VAT everywhere else.
    """
    if percent > 0:
        return TAX_CATEGORY_STANDARD
    if buyer_country == seller_country:
        return TAX_CATEGORY_ZERO
    if buyer_country in EU_COUNTRY_CODES and buyer_tax_id:
        return TAX_CATEGORY_REVERSE_CHARGE
    return TAX_CATEGORY_NOT_SUBJECT


def _tax_category(category_id: str, percent: Decimal) -> TaxCategory:
    category = TaxCategory(id=category_id, percent=percent, tax_scheme=TaxScheme())
    if category_id == TAX_CATEGORY_REVERSE_CHARGE:
        category.tax_exemption_reason_code = "VATEX-EU-AE"
        category.tax_exemption_reason = "Reverse charge"
    elif category_id == TAX_CATEGORY_NOT_SUBJECT:
        category.tax_exemption_reason_code = "VATEX-EU-O"
        category.tax_exemption_reason = "Not subject to VAT"
    return category


# ===============================================================================
# PARTIES
# ===============================================================================


def build_seller(organization: Organization) -> Party:
    country_code = organization.country_code or "RO"
    return Party(
        endpoint_id=organization.email or None,
        endpoint_scheme_id=ENDPOINT_SCHEME_EMAIL if organization.email else None,
        party_name=organization.name,
        postal_address=PostalAddress(
            street_name=organization.street or None,
            city_name=organization.city or None,
            postal_zone=organization.postal_code or None,
            country_subentity=organization.county or None,
            country=Country(identification_code=country_code),
        ),
        party_tax_scheme=(
            PartyTaxScheme(company_id=organization.vat_number, tax_scheme=TaxScheme())
            if organization.vat_registered
            else None
        ),
        party_legal_entity=PartyLegalEntity(
            registration_name=organization.name,
            company_id=organization.registration_number or organization.numeric_tax_id,
        ),
        contact=(
            Contact(
                name=organization.name,
                telephone=organization.phone or None,
                electronic_mail=organization.email or None,
            )
            if organization.email or organization.phone
            else None
        ),
    )


def build_buyer(invoice: Invoice) -> Party:
    country_code = invoice.bill_to_country or "RO"
    vat_number = _vat_number(invoice.bill_to_tax_id, country_code)
    return Party(
        endpoint_id=invoice.bill_to_email or None,
        endpoint_scheme_id=ENDPOINT_SCHEME_EMAIL if invoice.bill_to_email else None,
        party_name=invoice.bill_to_name,
        postal_address=PostalAddress(
            street_name=invoice.bill_to_address1 or None,
            additional_street_name=invoice.bill_to_address2 or None,
            city_name=invoice.bill_to_city or None,
            postal_zone=invoice.bill_to_postal or None,
            country_subentity=invoice.bill_to_region or None,
            country=Country(identification_code=country_code),
        ),
        party_tax_scheme=PartyTaxScheme(company_id=vat_number, tax_scheme=TaxScheme()) if vat_number else None,
        party_legal_entity=PartyLegalEntity(
            registration_name=invoice.bill_to_name,
            company_id=invoice.bill_to_registration_number or None,
        ),
        contact=Contact(electronic_mail=invoice.bill_to_email) if invoice.bill_to_email else None,
    )


# ===============================================================================
# LINES AND TOTALS
# ===============================================================================


def build_line(position: int, line: BillingLine, category_id: str, percent: Decimal, credit_note: bool) -> InvoiceLine:
    quantity = to_money(Decimal(str(line.quantity)))
    unit_price = _cents(line.unit_price_cents)
    if credit_note:
        # Credit notes carry positive amounts; the document type conveys the sign
        quantity, unit_price = abs(quantity), abs(unit_price)

    description = line.description or ""
    return InvoiceLine(
        id=str(position),
        quantity=quantity,
        unit_code=line.unit_code or UNIT_CODE_PIECE,
        line_extension_amount=to_money(quantity * unit_price),
        item=Item(
            description=description[:1000] or None,
            name=description[:100] or f"Item {position}",
            sellers_item_id=line.sku or None,
            classified_tax_category=_tax_category(category_id, percent),
        ),
        price=Price(price_amount=unit_price),
    )


def build_tax_total(lines: list[InvoiceLine]) -> TaxTotal:
    """One subtotal per (category, percent), in first-seen line order."""
    groups: dict[tuple[str, Decimal], Decimal] = {}
    for line in lines:
        category = line.tax_category
        key = (category.id, category.percent)
        groups[key] = groups.get(key, Decimal("0")) + line.line_extension_amount

    subtotals = [
        TaxSubtotal(
            taxable_amount=to_money(taxable),
            tax_amount=to_money(taxable * percent / HUNDRED),
            tax_category=_tax_category(category_id, percent),
        )
        for (category_id, percent), taxable in groups.items()
    ]
    return TaxTotal(
        tax_amount=to_money(sum((s.tax_amount for s in subtotals), Decimal("0"))),
        subtotals=subtotals,
    )


def build_monetary_total(lines: list[InvoiceLine], tax_total: TaxTotal) -> LegalMonetaryTotal:
    net = to_money(sum((line.line_extension_amount for line in lines), Decimal("0")))
    gross = to_money(net + tax_total.tax_amount)
    return LegalMonetaryTotal(
        line_extension_amount=net,
        tax_exclusive_amount=net,
        tax_inclusive_amount=gross,
        payable_amount=gross,
    )


def build_payment_means(invoice: Invoice) -> PaymentMeans | None:
    organization = invoice.organization
    if not organization.iban:
        return None
    return PaymentMeans(
        payment_means_code=PAYMENT_MEANS_CREDIT_TRANSFER,
        payment_id=invoice.number,
        payee_financial_account=PayeeFinancialAccount(
            id=organization.iban.replace(" ", ""),
            name=organization.bank_name or None,
            financial_institution_branch_id=organization.bank_bic or None,
        ),
    )


def build_payment_terms(invoice: Invoice) -> PaymentTerms | None:
    if invoice.payment_terms:
        return PaymentTerms(note=invoice.payment_terms)
    if invoice.due_at and invoice.issued_at:
        days = (invoice.due_at - invoice.issued_at).days
        return PaymentTerms(note=f"Net {days} days" if days > 0 else "Due on receipt")
    return None


# ===============================================================================
# DOCUMENT
# ===============================================================================


def build_document(invoice: Invoice, customization_id: str = CIUS_RO_CUSTOMIZATION_ID) -> InvoiceDocument:
    """Build the UBL document for an issued invoice or credit note."""
    organization = invoice.organization
    credit_note = invoice.is_credit_note
    seller_country = organization.country_code or "RO"
    buyer_country = invoice.bill_to_country or "RO"

    lines: list[InvoiceLine] = []
    for position, line in enumerate(invoice.lines.all().order_by("id"), start=1):
        percent = to_money(Decimal(str(line.tax_rate)) * HUNDRED)
        category_id = resolve_tax_category(percent, seller_country, buyer_country, invoice.bill_to_tax_id)
        lines.append(build_line(position, line, category_id, percent, credit_note))

    tax_total = build_tax_total(lines)

    billing_reference = None
    if credit_note and invoice.original_invoice is not None:
        original = invoice.original_invoice
        billing_reference = BillingReference(id=original.number, issue_date=_local_date(original.issued_at))

    document = InvoiceDocument(
        id=invoice.number,
        issue_date=_local_date(invoice.issued_at),
        currency=invoice.currency,
        document_type=DocumentType.CREDIT_NOTE if credit_note else DocumentType.INVOICE,
        type_code=INVOICE_TYPE_CREDIT_NOTE if credit_note else INVOICE_TYPE_COMMERCIAL,
        customization_id=customization_id,
        due_date=None if credit_note else _local_date(invoice.due_at),
        note=invoice.notes[:1000] or None,
        buyer_reference=invoice.buyer_reference or invoice.bill_to_tax_id or None,
        order_reference=OrderReference(id=invoice.order_reference) if invoice.order_reference else None,
        billing_reference=billing_reference,
        seller=build_seller(organization),
        buyer=build_buyer(invoice),
        payment_means=build_payment_means(invoice),
        payment_terms=build_payment_terms(invoice),
        tax_total=tax_total,
        legal_monetary_total=build_monetary_total(lines, tax_total),
        lines=lines,
    )
    logger.debug(f"[e-Invoice] Built {document.document_type} document for {invoice.number} ({len(lines)} lines)")
    return document
