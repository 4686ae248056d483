# Generated manually for settled XML-only submissions

from django.db import migrations, models


class Migration(migrations.Migration):
    """
    Track XML-only submissions that were accepted without an API call.

    Settled rows drop out of the one-active-per-invoice constraint so the
    invoice can be resubmitted once credentials are configured.
    """

    dependencies = [
        ("einvoice", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="einvoicesubmission",
            name="xml_only_settled",
            field=models.BooleanField(
                default=False,
                help_text="XML-only submission completed without an API call; no status checks follow",
            ),
        ),
        migrations.RemoveConstraint(
            model_name="einvoicesubmission",
            name="einvoice_one_active_per_invoice_provider",
        ),
        migrations.AddConstraint(
            model_name="einvoicesubmission",
            constraint=models.UniqueConstraint(
                condition=models.Q(("status__in", ["pending", "accepted"]), ("xml_only_settled", False)),
                fields=("invoice", "provider"),
                name="einvoice_one_active_per_invoice_provider",
            ),
        ),
    ]
