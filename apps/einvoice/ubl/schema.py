"""
Per-type field table for UBL 2.1 serialization.

Every dataclass in ``document.py`` has one ordered tuple of ``Field`` rows.
A row names the XML element, its namespace prefix (cbc for basic values, cac
for aggregates), how the value is formatted and whether it is mandatory.
Element order inside each tuple is the order required by the UBL 2.1 XSD.

Reference:
- UBL 2.1: https://docs.oasis-open.org/ubl/os-UBL-2.1/UBL-2.1.html
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from .document import (
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
)

# UBL 2.1 Namespaces
NAMESPACES = {
    "ubl": "urn:oasis:names:specification:ubl:schema:xsd:Invoice-2",
    "cn": "urn:oasis:names:specification:ubl:schema:xsd:CreditNote-2",
    "cbc": "urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2",
    "cac": "urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2",
}

CBC = "cbc"
CAC = "cac"

# Root element (local name, namespace) per document type
ROOT_ELEMENTS: dict[DocumentType, tuple[str, str]] = {
    DocumentType.INVOICE: ("Invoice", NAMESPACES["ubl"]),
    DocumentType.CREDIT_NOTE: ("CreditNote", NAMESPACES["cn"]),
}


class Kind(StrEnum):
    """How a field value is written to and read from element text."""

    TEXT = "text"
    DATE = "date"
    AMOUNT = "amount"  # 2 decimals + currencyID
    QUANTITY = "quantity"  # 2 decimals
    PERCENT = "percent"  # 2 decimals
    OBJECT = "object"  # nested aggregate with its own field table


NUMERIC_KINDS = frozenset({Kind.AMOUNT, Kind.QUANTITY, Kind.PERCENT})


@dataclass(frozen=True)
class Field:
    """
    One row of the field table.

    ``wrapper`` places the element inside an extra cac aggregate, e.g. the
    party name is ``cac:PartyName/cbc:Name``. ``attributes`` binds XML
    attributes of the element to sibling dataclass attributes, e.g.
    ``unitCode`` on the quantity element comes from ``InvoiceLine.unit_code``.
    """

    attr: str
    tag: str
    ns: str = CBC
    kind: Kind = Kind.TEXT
    type: type | None = None
    required: bool = False
    many: bool = False
    wrapper: str | None = None
    credit_note_tag: str | None = None
    attributes: tuple[tuple[str, str], ...] = ()
    invoice_only: bool = False

    def tag_for(self, credit_note: bool) -> str:
        if credit_note and self.credit_note_tag:
            return self.credit_note_tag
        return self.tag

    def applies_to(self, credit_note: bool) -> bool:
        return not (credit_note and self.invoice_only)


def _obj(attr: str, tag: str, type_: type, **kwargs: object) -> Field:
    return Field(attr, tag, ns=CAC, kind=Kind.OBJECT, type=type_, **kwargs)  # type: ignore[arg-type]


SCHEMA: dict[type, tuple[Field, ...]] = {
    InvoiceDocument: (
        Field("customization_id", "CustomizationID", required=True),
        Field("profile_id", "ProfileID"),
        Field("id", "ID", required=True),
        Field("issue_date", "IssueDate", kind=Kind.DATE, required=True),
        # CreditNote-2 has no header DueDate
        Field("due_date", "DueDate", kind=Kind.DATE, invoice_only=True),
        Field("type_code", "InvoiceTypeCode", required=True, credit_note_tag="CreditNoteTypeCode"),
        Field("note", "Note"),
        Field("currency", "DocumentCurrencyCode", required=True),
        Field("buyer_reference", "BuyerReference"),
        _obj("order_reference", "OrderReference", OrderReference),
        _obj("billing_reference", "InvoiceDocumentReference", BillingReference, wrapper="BillingReference"),
        _obj("seller", "Party", Party, required=True, wrapper="AccountingSupplierParty"),
        _obj("buyer", "Party", Party, required=True, wrapper="AccountingCustomerParty"),
        _obj("payment_means", "PaymentMeans", PaymentMeans),
        _obj("payment_terms", "PaymentTerms", PaymentTerms),
        _obj("tax_total", "TaxTotal", TaxTotal, required=True),
        _obj("legal_monetary_total", "LegalMonetaryTotal", LegalMonetaryTotal, required=True),
        _obj("lines", "InvoiceLine", InvoiceLine, required=True, many=True, credit_note_tag="CreditNoteLine"),
    ),
    OrderReference: (
        Field("id", "ID", required=True),
        Field("sales_order_id", "SalesOrderID"),
    ),
    BillingReference: (
        Field("id", "ID", required=True),
        Field("issue_date", "IssueDate", kind=Kind.DATE),
    ),
    Party: (
        Field("endpoint_id", "EndpointID", attributes=(("schemeID", "endpoint_scheme_id"),)),
        Field("party_name", "Name", wrapper="PartyName"),
        _obj("postal_address", "PostalAddress", PostalAddress, required=True),
        _obj("party_tax_scheme", "PartyTaxScheme", PartyTaxScheme),
        _obj("party_legal_entity", "PartyLegalEntity", PartyLegalEntity, required=True),
        _obj("contact", "Contact", Contact),
    ),
    PostalAddress: (
        Field("street_name", "StreetName"),
        Field("additional_street_name", "AdditionalStreetName"),
        Field("city_name", "CityName"),
        Field("postal_zone", "PostalZone"),
        Field("country_subentity", "CountrySubentity"),
        _obj("country", "Country", Country, required=True),
    ),
    Country: (Field("identification_code", "IdentificationCode", required=True),),
    TaxScheme: (Field("id", "ID", required=True),),
    PartyTaxScheme: (
        Field("company_id", "CompanyID", required=True),
        _obj("tax_scheme", "TaxScheme", TaxScheme, required=True),
    ),
    PartyLegalEntity: (
        Field("registration_name", "RegistrationName", required=True),
        Field("company_id", "CompanyID"),
    ),
    Contact: (
        Field("name", "Name"),
        Field("telephone", "Telephone"),
        Field("electronic_mail", "ElectronicMail"),
    ),
    PaymentMeans: (
        Field("payment_means_code", "PaymentMeansCode", required=True),
        Field("payment_id", "PaymentID"),
        _obj("payee_financial_account", "PayeeFinancialAccount", PayeeFinancialAccount),
    ),
    PayeeFinancialAccount: (
        Field("id", "ID", required=True),
        Field("name", "Name"),
        Field("financial_institution_branch_id", "ID", wrapper="FinancialInstitutionBranch"),
    ),
    PaymentTerms: (Field("note", "Note", required=True),),
    TaxTotal: (
        Field("tax_amount", "TaxAmount", kind=Kind.AMOUNT, required=True),
        _obj("subtotals", "TaxSubtotal", TaxSubtotal, many=True),
    ),
    TaxSubtotal: (
        Field("taxable_amount", "TaxableAmount", kind=Kind.AMOUNT, required=True),
        Field("tax_amount", "TaxAmount", kind=Kind.AMOUNT, required=True),
        _obj("tax_category", "TaxCategory", TaxCategory, required=True),
    ),
    TaxCategory: (
        Field("id", "ID", required=True),
        Field("percent", "Percent", kind=Kind.PERCENT),
        Field("tax_exemption_reason_code", "TaxExemptionReasonCode"),
        Field("tax_exemption_reason", "TaxExemptionReason"),
        _obj("tax_scheme", "TaxScheme", TaxScheme, required=True),
    ),
    LegalMonetaryTotal: (
        Field("line_extension_amount", "LineExtensionAmount", kind=Kind.AMOUNT, required=True),
        Field("tax_exclusive_amount", "TaxExclusiveAmount", kind=Kind.AMOUNT, required=True),
        Field("tax_inclusive_amount", "TaxInclusiveAmount", kind=Kind.AMOUNT, required=True),
        Field("prepaid_amount", "PrepaidAmount", kind=Kind.AMOUNT),
        Field("payable_amount", "PayableAmount", kind=Kind.AMOUNT, required=True),
    ),
    InvoiceLine: (
        Field("id", "ID", required=True),
        Field("note", "Note"),
        Field(
            "quantity",
            "InvoicedQuantity",
            kind=Kind.QUANTITY,
            required=True,
            credit_note_tag="CreditedQuantity",
            attributes=(("unitCode", "unit_code"),),
        ),
        Field("line_extension_amount", "LineExtensionAmount", kind=Kind.AMOUNT, required=True),
        _obj("item", "Item", Item, required=True),
        _obj("price", "Price", Price, required=True),
    ),
    Item: (
        Field("description", "Description"),
        Field("name", "Name", required=True),
        Field("sellers_item_id", "ID", wrapper="SellersItemIdentification"),
        _obj("classified_tax_category", "ClassifiedTaxCategory", TaxCategory, required=True),
    ),
    Price: (Field("price_amount", "PriceAmount", kind=Kind.AMOUNT, required=True),),
}


def qualified(prefix: str, tag: str) -> str:
    """Clark notation name, e.g. ``{urn:...CommonBasicComponents-2}ID``."""
    return f"{{{NAMESPACES[prefix]}}}{tag}"
