# Generated manually for the billing models consumed by e-Invoice

from decimal import Decimal

from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Organization",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255)),
                ("tax_id", models.CharField(help_text="VAT/CUI, with or without country prefix", max_length=50)),
                (
                    "registration_number",
                    models.CharField(blank=True, help_text="Trade register number", max_length=50),
                ),
                ("vat_registered", models.BooleanField(default=True)),
                ("street", models.CharField(blank=True, max_length=255)),
                ("city", models.CharField(blank=True, max_length=100)),
                ("county", models.CharField(blank=True, max_length=100)),
                ("postal_code", models.CharField(blank=True, max_length=20)),
                ("country_code", models.CharField(default="RO", max_length=2)),
                ("email", models.EmailField(blank=True, max_length=254)),
                ("phone", models.CharField(blank=True, max_length=50)),
                ("iban", models.CharField(blank=True, max_length=34)),
                ("bank_name", models.CharField(blank=True, max_length=255)),
                ("bank_bic", models.CharField(blank=True, max_length=11)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Organization",
                "verbose_name_plural": "Organizations",
                "db_table": "billing_organization",
            },
        ),
        migrations.CreateModel(
            name="Invoice",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("number", models.CharField(max_length=50, unique=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("draft", "Draft"),
                            ("issued", "Issued"),
                            ("paid", "Paid"),
                            ("overdue", "Overdue"),
                            ("void", "Void"),
                        ],
                        default="draft",
                        max_length=20,
                    ),
                ),
                (
                    "document_type",
                    models.CharField(
                        choices=[("invoice", "Invoice"), ("credit_note", "Credit Note")],
                        default="invoice",
                        max_length=20,
                    ),
                ),
                ("currency", models.CharField(default="RON", max_length=3)),
                ("subtotal_cents", models.BigIntegerField(default=0)),
                ("tax_cents", models.BigIntegerField(default=0)),
                ("total_cents", models.BigIntegerField(default=0)),
                ("issued_at", models.DateTimeField(blank=True, null=True)),
                ("due_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("buyer_reference", models.CharField(blank=True, max_length=100)),
                ("order_reference", models.CharField(blank=True, max_length=100)),
                ("payment_terms", models.CharField(blank=True, max_length=500)),
                ("notes", models.TextField(blank=True)),
                ("bill_to_name", models.CharField(default="", max_length=255)),
                ("bill_to_tax_id", models.CharField(blank=True, max_length=50)),
                ("bill_to_registration_number", models.CharField(blank=True, max_length=50)),
                ("bill_to_email", models.EmailField(blank=True, max_length=254)),
                ("bill_to_address1", models.CharField(blank=True, max_length=255)),
                ("bill_to_address2", models.CharField(blank=True, max_length=255)),
                ("bill_to_city", models.CharField(blank=True, max_length=100)),
                ("bill_to_region", models.CharField(blank=True, max_length=100)),
                ("bill_to_postal", models.CharField(blank=True, max_length=20)),
                ("bill_to_country", models.CharField(blank=True, max_length=2)),
                (
                    "organization",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.RESTRICT,
                        related_name="invoices",
                        to="billing.organization",
                    ),
                ),
                (
                    "original_invoice",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="credit_notes",
                        to="billing.invoice",
                    ),
                ),
            ],
            options={
                "verbose_name": "Invoice",
                "verbose_name_plural": "Invoices",
                "db_table": "invoice",
                "ordering": ("-created_at",),
                "indexes": [
                    models.Index(fields=["organization", "-created_at"], name="invoice_org_created_idx"),
                    models.Index(fields=["status", "-due_at"], name="invoice_status_due_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="InvoiceLine",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("description", models.CharField(max_length=500)),
                ("sku", models.CharField(blank=True, max_length=100)),
                ("quantity", models.DecimalField(decimal_places=2, default=Decimal("1.00"), max_digits=12)),
                (
                    "unit_code",
                    models.CharField(
                        choices=[
                            ("C62", "Piece"),
                            ("HUR", "Hour"),
                            ("DAY", "Day"),
                            ("MON", "Month"),
                            ("ANN", "Year"),
                        ],
                        default="C62",
                        max_length=3,
                    ),
                ),
                ("unit_price_cents", models.BigIntegerField(default=0)),
                (
                    "tax_rate",
                    models.DecimalField(
                        decimal_places=4,
                        default=Decimal("0.0000"),
                        help_text="Tax rate as decimal (0.21 for 21%)",
                        max_digits=5,
                    ),
                ),
                ("tax_cents", models.BigIntegerField(default=0, help_text="Tax amount in cents")),
                ("line_total_cents", models.BigIntegerField(default=0)),
                (
                    "invoice",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="lines",
                        to="billing.invoice",
                    ),
                ),
            ],
            options={
                "verbose_name": "Invoice Line",
                "verbose_name_plural": "Invoice Lines",
                "db_table": "invoice_line",
                "ordering": ("id",),
            },
        ),
    ]
