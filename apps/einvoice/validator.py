"""
Pre-submission business rules for invoices.

These run before any XML is generated. Structural checks on the generated
document itself live in ``ubl.serializer.validate_document``.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from .ubl.document import DocumentValidationError

if TYPE_CHECKING:
    from apps.billing.models import Invoice

ELIGIBLE_INVOICE_STATUSES = frozenset({"issued", "paid", "overdue"})


def collect_invoice_errors(invoice: Invoice) -> list[str]:
    errors: list[str] = []

    if invoice.status not in ELIGIBLE_INVOICE_STATUSES:
        errors.append(f"Invoice status not eligible for e-invoice submission: {invoice.status}")

    if not invoice.number:
        errors.append("Invoice number is required")

    if not invoice.issued_at:
        errors.append("Issue date is required")

    if not invoice.currency or len(invoice.currency) != 3:
        errors.append("Invoice currency must be an ISO 4217 code")

    organization = invoice.organization
    if not organization.name:
        errors.append("Seller name is required")
    if not organization.tax_id:
        errors.append("Seller tax ID is required")
    if not organization.country_code:
        errors.append("Seller country is required")

    if not invoice.bill_to_name:
        errors.append("Customer name is required")

    if not invoice.bill_to_country:
        errors.append("Customer country is required")

    # Romanian B2B requires the buyer's tax ID (CUI)
    if invoice.bill_to_country == "RO" and not invoice.bill_to_tax_id:
        errors.append("Romanian B2B invoice requires customer tax ID (CUI)")

    if invoice.is_credit_note and invoice.original_invoice_id is None:
        errors.append("Credit note must reference the original invoice")

    lines = list(invoice.lines.all())
    if not lines:
        errors.append("Invoice must have at least one line item")

    for index, line in enumerate(lines, start=1):
        if not line.description:
            errors.append(f"Line {index}: description is required")
        if Decimal(str(line.quantity)) == 0:
            errors.append(f"Line {index}: quantity must not be zero")
        if line.tax_rate < 0:
            errors.append(f"Line {index}: tax rate must not be negative")

    return errors


def collect_xrechnung_errors(invoice: Invoice) -> list[str]:
    """German BR-DE rules on top of EN 16931."""
    errors: list[str] = []
    organization = invoice.organization

    if not organization.street or not organization.city:
        errors.append("Seller postal address (street and city) is required")
    if not organization.email:
        errors.append("[BR-DE-7] Seller email is required")
    if not organization.phone:
        errors.append("[BR-DE-6] Seller telephone is required")

    # BuyerReference falls back to the buyer tax ID when no Leitweg-ID is set
    if not invoice.buyer_reference and not invoice.bill_to_tax_id:
        errors.append("[BR-DE-1] Buyer reference (Leitweg-ID) or buyer tax ID is required")
    if not invoice.bill_to_address1 or not invoice.bill_to_city:
        errors.append("Customer postal address (street and city) is required")

    return errors


PROVIDER_RULES = {
    "xrechnung": collect_xrechnung_errors,
}


def validate_invoice(invoice: Invoice, provider: str | None = None) -> None:
    """
    Raises:
        DocumentValidationError: listing every rule the invoice breaks
    """
    errors = collect_invoice_errors(invoice)
    provider_rules = PROVIDER_RULES.get(str(provider)) if provider else None
    if provider_rules is not None:
        errors.extend(provider_rules(invoice))
    if errors:
        raise DocumentValidationError(errors)
