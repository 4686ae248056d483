"""
In-memory UBL 2.1 e-invoice document model.

The dataclasses below mirror the business structure of an EN 16931 invoice
(CIUS-RO / XRechnung flavours) closely enough that one generic serializer can
walk them through the field table in ``schema.py``:
- Header (number, dates, currency, document type)
- Seller / buyer parties with address, tax scheme, legal entity and contact
- Tax breakdown per VAT category and rate
- Lines with item, price and classified tax category
- Optional payment means, payment terms and document references

All monetary values are ``Decimal`` with two decimal places. Floats are
rejected during validation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_EVEN, Decimal
from enum import StrEnum

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0.00")

# CIUS-RO Customization ID (version 1.0.1)
CIUS_RO_CUSTOMIZATION_ID = "urn:cen.eu:en16931:2017#compliant#urn:efactura.mfinante.ro:CIUS-RO:1.0.1"

# XRechnung 3.0 Customization ID (KoSIT)
XRECHNUNG_CUSTOMIZATION_ID = "urn:cen.eu:en16931:2017#compliant#urn:xeinkauf.de:kosit:xrechnung_3.0"

# PEPPOL BIS Billing 3.0 Profile ID
PEPPOL_PROFILE_ID = "urn:fdc:peppol.eu:2017:poacc:billing:01:1.0"

# Invoice type codes (UNCL1001)
INVOICE_TYPE_COMMERCIAL = "380"
INVOICE_TYPE_CREDIT_NOTE = "381"

# Tax category codes (UNCL5305)
TAX_CATEGORY_STANDARD = "S"
TAX_CATEGORY_ZERO = "Z"
TAX_CATEGORY_EXEMPT = "E"
TAX_CATEGORY_REVERSE_CHARGE = "AE"
TAX_CATEGORY_NOT_SUBJECT = "O"

# Unit codes (UN/ECE Recommendation 20)
UNIT_CODE_PIECE = "C62"
UNIT_CODE_HOUR = "HUR"
UNIT_CODE_DAY = "DAY"
UNIT_CODE_MONTH = "MON"
UNIT_CODE_YEAR = "ANN"

# Payment means codes (UNCL4461)
PAYMENT_MEANS_CREDIT_TRANSFER = "30"


def to_money(value: Decimal | int | str) -> Decimal:
    """Quantize a value to two decimal places using banker's rounding."""
    if isinstance(value, float):
        raise DocumentValidationError(f"Monetary value {value!r} must not be a float")
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_EVEN)


class DocumentValidationError(Exception):
    """Raised when a document or invoice is missing data required for e-invoicing."""

    def __init__(self, errors: list[str] | str):
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("; ".join(self.errors))


class DocumentType(StrEnum):
    """UBL document flavour, selects the root element and a few tag names."""

    INVOICE = "invoice"
    CREDIT_NOTE = "credit_note"

    @classmethod
    def choices(cls) -> list[tuple[str, str]]:
        return [(dt.value, dt.name.replace("_", " ").title()) for dt in cls]


# --- Parties ---


@dataclass
class Country:
    identification_code: str | None = None


@dataclass
class PostalAddress:
    street_name: str | None = None
    additional_street_name: str | None = None
    city_name: str | None = None
    postal_zone: str | None = None
    country_subentity: str | None = None
    country: Country | None = None


@dataclass
class TaxScheme:
    id: str | None = "VAT"


@dataclass
class PartyTaxScheme:
    company_id: str | None = None
    tax_scheme: TaxScheme | None = None


@dataclass
class PartyLegalEntity:
    registration_name: str | None = None
    company_id: str | None = None


@dataclass
class Contact:
    name: str | None = None
    telephone: str | None = None
    electronic_mail: str | None = None


@dataclass
class Party:
    """Seller or buyer. ``endpoint_scheme_id`` is the schemeID attribute of EndpointID."""

    endpoint_id: str | None = None
    endpoint_scheme_id: str | None = None
    party_name: str | None = None
    postal_address: PostalAddress | None = None
    party_tax_scheme: PartyTaxScheme | None = None
    party_legal_entity: PartyLegalEntity | None = None
    contact: Contact | None = None


# --- References, payment ---


@dataclass
class OrderReference:
    id: str | None = None
    sales_order_id: str | None = None


@dataclass
class BillingReference:
    """Reference to the invoice a credit note corrects."""

    id: str | None = None
    issue_date: date | None = None


@dataclass
class PayeeFinancialAccount:
    id: str | None = None  # IBAN
    name: str | None = None
    financial_institution_branch_id: str | None = None


@dataclass
class PaymentMeans:
    payment_means_code: str | None = None
    payment_id: str | None = None
    payee_financial_account: PayeeFinancialAccount | None = None


@dataclass
class PaymentTerms:
    note: str | None = None


# --- Tax ---


@dataclass
class TaxCategory:
    """Used both for TaxSubtotal/TaxCategory and Item/ClassifiedTaxCategory."""

    id: str | None = None
    percent: Decimal | None = None
    tax_exemption_reason_code: str | None = None
    tax_exemption_reason: str | None = None
    tax_scheme: TaxScheme | None = None


@dataclass
class TaxSubtotal:
    taxable_amount: Decimal | None = None
    tax_amount: Decimal | None = None
    tax_category: TaxCategory | None = None


@dataclass
class TaxTotal:
    tax_amount: Decimal | None = None
    subtotals: list[TaxSubtotal] = field(default_factory=list)


@dataclass
class LegalMonetaryTotal:
    line_extension_amount: Decimal | None = None
    tax_exclusive_amount: Decimal | None = None
    tax_inclusive_amount: Decimal | None = None
    prepaid_amount: Decimal | None = None
    payable_amount: Decimal | None = None


# --- Lines ---


@dataclass
class Item:
    description: str | None = None
    name: str | None = None
    sellers_item_id: str | None = None
    classified_tax_category: TaxCategory | None = None


@dataclass
class Price:
    price_amount: Decimal | None = None


@dataclass
class InvoiceLine:
    id: str | None = None
    note: str | None = None
    quantity: Decimal | None = None
    unit_code: str | None = None
    line_extension_amount: Decimal | None = None
    item: Item | None = None
    price: Price | None = None

    @property
    def tax_category(self) -> TaxCategory | None:
        return self.item.classified_tax_category if self.item else None

    @property
    def vat_amount(self) -> Decimal:
        """VAT for this line. Derived, UBL lines carry no VAT amount on the wire."""
        category = self.tax_category
        if category is None or category.percent is None or self.line_extension_amount is None:
            return ZERO
        return to_money(self.line_extension_amount * category.percent / HUNDRED)


# --- Document ---


@dataclass
class InvoiceDocument:
    """Root of the document graph, one instance per generated XML."""

    id: str | None = None
    issue_date: date | None = None
    currency: str | None = None
    document_type: DocumentType = DocumentType.INVOICE
    type_code: str | None = None
    customization_id: str | None = CIUS_RO_CUSTOMIZATION_ID
    profile_id: str | None = PEPPOL_PROFILE_ID
    due_date: date | None = None
    note: str | None = None
    buyer_reference: str | None = None
    order_reference: OrderReference | None = None
    billing_reference: BillingReference | None = None
    seller: Party | None = None
    buyer: Party | None = None
    payment_means: PaymentMeans | None = None
    payment_terms: PaymentTerms | None = None
    tax_total: TaxTotal | None = None
    legal_monetary_total: LegalMonetaryTotal | None = None
    lines: list[InvoiceLine] = field(default_factory=list)

    @property
    def is_credit_note(self) -> bool:
        return self.document_type == DocumentType.CREDIT_NOTE
