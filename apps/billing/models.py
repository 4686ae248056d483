"""
Billing models for the e-Invoice Platform
Issuing organization, invoices and invoice lines with amounts in cents.
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Any, ClassVar

from django.db import models
from django.utils.translation import gettext_lazy as _

logger = logging.getLogger(__name__)


# ===============================================================================
# ORGANIZATION (ISSUER)
# ===============================================================================


class Organization(models.Model):
    """Company issuing invoices; the seller party of every e-invoice."""

    name = models.CharField(max_length=255)
    tax_id = models.CharField(max_length=50, help_text=_("VAT/CUI, with or without country prefix"))
    registration_number = models.CharField(max_length=50, blank=True, help_text=_("Trade register number"))
    vat_registered = models.BooleanField(default=True)

    street = models.CharField(max_length=255, blank=True)
    city = models.CharField(max_length=100, blank=True)
    county = models.CharField(max_length=100, blank=True)
    postal_code = models.CharField(max_length=20, blank=True)
    country_code = models.CharField(max_length=2, default="RO")  # ISO 3166-1

    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=50, blank=True)

    iban = models.CharField(max_length=34, blank=True)
    bank_name = models.CharField(max_length=255, blank=True)
    bank_bic = models.CharField(max_length=11, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_organization"
        verbose_name = _("Organization")
        verbose_name_plural = _("Organizations")

    def __str__(self) -> str:
        return f"{self.name} ({self.tax_id})"

    @property
    def vat_number(self) -> str:
        """Tax id with country prefix, e.g. RO12345678."""
        tax_id = self.tax_id.strip().upper()
        if tax_id.startswith(self.country_code):
            return tax_id
        return f"{self.country_code}{tax_id}"

    @property
    def numeric_tax_id(self) -> str:
        """Tax id without country prefix, as ANAF expects it."""
        tax_id = self.tax_id.strip().upper()
        if tax_id.startswith(self.country_code):
            tax_id = tax_id[len(self.country_code) :]
        return tax_id.strip()


# ===============================================================================
# INVOICES
# ===============================================================================


class Invoice(models.Model):
    """
    Invoice with buyer address snapshot.
    Immutable once issued; e-invoice submission is triggered on issue.
    """

    STATUS_CHOICES: ClassVar[tuple[tuple[str, Any], ...]] = (
        ("draft", _("Draft")),
        ("issued", _("Issued")),
        ("paid", _("Paid")),
        ("overdue", _("Overdue")),
        ("void", _("Void")),
    )

    DOCUMENT_TYPE_CHOICES: ClassVar[tuple[tuple[str, Any], ...]] = (
        ("invoice", _("Invoice")),
        ("credit_note", _("Credit Note")),
    )

    organization = models.ForeignKey(Organization, on_delete=models.RESTRICT, related_name="invoices")
    number = models.CharField(max_length=50, unique=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="draft")
    document_type = models.CharField(max_length=20, choices=DOCUMENT_TYPE_CHOICES, default="invoice")
    currency = models.CharField(max_length=3, default="RON")

    # Corrected invoice, for credit notes
    original_invoice = models.ForeignKey(
        "self", on_delete=models.PROTECT, null=True, blank=True, related_name="credit_notes"
    )

    # Amounts (cents)
    subtotal_cents = models.BigIntegerField(default=0)
    tax_cents = models.BigIntegerField(default=0)
    total_cents = models.BigIntegerField(default=0)

    # Dates
    issued_at = models.DateTimeField(null=True, blank=True)
    due_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    # References and free text
    buyer_reference = models.CharField(max_length=100, blank=True)
    order_reference = models.CharField(max_length=100, blank=True)
    payment_terms = models.CharField(max_length=500, blank=True)
    notes = models.TextField(blank=True)

    # Billing address snapshot (immutable once issued)
    bill_to_name = models.CharField(max_length=255, default="")
    bill_to_tax_id = models.CharField(max_length=50, blank=True)
    bill_to_registration_number = models.CharField(max_length=50, blank=True)
    bill_to_email = models.EmailField(blank=True)
    bill_to_address1 = models.CharField(max_length=255, blank=True)
    bill_to_address2 = models.CharField(max_length=255, blank=True)
    bill_to_city = models.CharField(max_length=100, blank=True)
    bill_to_region = models.CharField(max_length=100, blank=True)
    bill_to_postal = models.CharField(max_length=20, blank=True)
    bill_to_country = models.CharField(max_length=2, blank=True)  # ISO 3166-1

    class Meta:
        db_table = "invoice"
        verbose_name = _("Invoice")
        verbose_name_plural = _("Invoices")
        ordering: ClassVar[tuple[str, ...]] = ("-created_at",)
        indexes = (
            models.Index(fields=["organization", "-created_at"], name="invoice_org_created_idx"),
            models.Index(fields=["status", "-due_at"], name="invoice_status_due_idx"),
        )

    def __str__(self) -> str:
        return f"{self.number} ({self.bill_to_name})"

    @property
    def is_credit_note(self) -> bool:
        return self.document_type == "credit_note"

    @property
    def subtotal(self) -> Decimal:
        """Convert cents to decimal"""
        return Decimal(self.subtotal_cents) / 100

    @property
    def tax_amount(self) -> Decimal:
        """Convert cents to decimal"""
        return Decimal(self.tax_cents) / 100

    @property
    def total(self) -> Decimal:
        """Convert cents to decimal"""
        return Decimal(self.total_cents) / 100

    def recalculate_totals(self) -> None:
        """
        Recalculate document totals from line items.
        Ensures subtotal = Σ(line subtotals), tax = Σ(line taxes)
        """
        lines = self.lines.all()
        self.subtotal_cents = sum(line.subtotal_cents for line in lines)
        self.tax_cents = sum(line.tax_cents for line in lines)
        self.total_cents = self.subtotal_cents + self.tax_cents


class InvoiceLine(models.Model):
    """Invoice line item. Quantity has two decimals, matching the e-invoice wire format."""

    UNIT_CHOICES: ClassVar[tuple[tuple[str, Any], ...]] = (
        ("C62", _("Piece")),
        ("HUR", _("Hour")),
        ("DAY", _("Day")),
        ("MON", _("Month")),
        ("ANN", _("Year")),
    )

    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name="lines")
    description = models.CharField(max_length=500)
    sku = models.CharField(max_length=100, blank=True)
    quantity = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("1.00"))
    unit_code = models.CharField(max_length=3, choices=UNIT_CHOICES, default="C62")
    unit_price_cents = models.BigIntegerField(default=0)
    tax_rate = models.DecimalField(
        max_digits=5, decimal_places=4, default=Decimal("0.0000"), help_text=_("Tax rate as decimal (0.21 for 21%)")
    )
    tax_cents = models.BigIntegerField(default=0, help_text=_("Tax amount in cents"))
    line_total_cents = models.BigIntegerField(default=0)

    class Meta:
        db_table = "invoice_line"
        verbose_name = _("Invoice Line")
        verbose_name_plural = _("Invoice Lines")
        ordering: ClassVar[tuple[str, ...]] = ("id",)

    def __str__(self) -> str:
        return f"{self.description} x {self.quantity}"

    def save(self, *args: Any, **kwargs: Any) -> None:
        self.calculate_totals()
        super().save(*args, **kwargs)

    def calculate_totals(self) -> int:
        """Calculate tax and line total with banker's rounding for VAT compliance"""
        vat_amount = Decimal(self.subtotal_cents) * Decimal(str(self.tax_rate))
        self.tax_cents = int(vat_amount.quantize(Decimal("1"), rounding=ROUND_HALF_EVEN))
        self.line_total_cents = self.subtotal_cents + self.tax_cents
        return self.line_total_cents

    @property
    def subtotal_cents(self) -> int:
        """Quantity x unit price in cents, rounded half-even"""
        amount = Decimal(str(self.quantity)) * self.unit_price_cents
        return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_EVEN))

    @property
    def subtotal(self) -> Decimal:
        return Decimal(self.subtotal_cents) / 100

    @property
    def unit_price(self) -> Decimal:
        return Decimal(self.unit_price_cents) / 100

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.line_total_cents) / 100
