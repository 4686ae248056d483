# Generated manually for e-Invoice submission tracking

import uuid

from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):
    """
    Add e-Invoice submission and per-organization provider configuration.

    The conditional unique constraint allows at most one pending/accepted
    submission per invoice and provider.
    """

    initial = True

    dependencies = [
        ("billing", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="EInvoiceSubmission",
            fields=[
                (
                    "id",
                    models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False),
                ),
                (
                    "provider",
                    models.CharField(choices=[("anaf", "Anaf"), ("xrechnung", "Xrechnung")], max_length=20),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("accepted", "Accepted"),
                            ("validated", "Validated"),
                            ("rejected", "Rejected"),
                            ("error", "Error"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                (
                    "external_id",
                    models.CharField(
                        blank=True,
                        help_text="Provider submission id; empty means XML-only, no API call made",
                        max_length=100,
                        null=True,
                    ),
                ),
                ("error_message", models.TextField(blank=True, null=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("xml_path", models.CharField(blank=True, default="", max_length=500)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "invoice",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="einvoice_submissions",
                        to="billing.invoice",
                    ),
                ),
            ],
            options={
                "verbose_name": "e-Invoice Submission",
                "verbose_name_plural": "e-Invoice Submissions",
                "db_table": "einvoice_submission",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["invoice", "provider"], name="einvoice_invoice_provider_idx"),
                    models.Index(fields=["provider", "status"], name="einvoice_provider_status_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status__in", ["pending", "accepted"])),
                        fields=("invoice", "provider"),
                        name="einvoice_one_active_per_invoice_provider",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="EInvoiceProviderConfig",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "provider",
                    models.CharField(choices=[("anaf", "Anaf"), ("xrechnung", "Xrechnung")], max_length=20),
                ),
                ("enabled", models.BooleanField(default=False)),
                ("credentials", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "organization",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="einvoice_configs",
                        to="billing.organization",
                    ),
                ),
            ],
            options={
                "verbose_name": "e-Invoice Provider Config",
                "db_table": "einvoice_provider_config",
                "constraints": [
                    models.UniqueConstraint(fields=("organization", "provider"), name="einvoice_config_per_provider"),
                ],
            },
        ),
    ]
