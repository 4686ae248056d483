"""
Billing signals for the e-Invoice Platform

Issuing an invoice queues one e-invoice submission per enabled provider of
the issuing organization. Queueing happens after the surrounding
transaction commits so workers never see an uncommitted invoice.
"""

from __future__ import annotations

import logging
from typing import Any

from django.db import transaction
from django.db.models.signals import post_save, pre_save
from django.dispatch import receiver

from .models import Invoice

logger = logging.getLogger(__name__)


@receiver(pre_save, sender=Invoice)
def capture_previous_invoice_status(sender: type[Invoice], instance: Invoice, **kwargs: Any) -> None:
    """Remember the stored status so post_save can detect the move to 'issued'."""
    if instance.pk:
        instance._previous_status = (  # type: ignore[attr-defined]
            Invoice.objects.filter(pk=instance.pk).values_list("status", flat=True).first()
        )
    else:
        instance._previous_status = None  # type: ignore[attr-defined]


@receiver(post_save, sender=Invoice)
def handle_invoice_issued(sender: type[Invoice], instance: Invoice, created: bool, **kwargs: Any) -> None:
    """Queue e-invoice submissions when an invoice becomes issued."""
    previous_status = getattr(instance, "_previous_status", None)
    if instance.status != "issued" or previous_status == "issued":
        return

    _trigger_einvoice_submission(instance)


# ===============================================================================
# BUSINESS LOGIC UTILITY FUNCTIONS
# ===============================================================================


def _trigger_einvoice_submission(invoice: Invoice) -> None:
    """Queue submissions for every enabled provider of the issuing organization"""
    from apps.einvoice.models import EInvoiceProviderConfig  # noqa: PLC0415
    from apps.einvoice.settings import einvoice_settings  # noqa: PLC0415
    from apps.einvoice.tasks import queue_einvoice_submission  # noqa: PLC0415

    if not (einvoice_settings.enabled and einvoice_settings.auto_submit):
        return

    providers = list(
        EInvoiceProviderConfig.objects.filter(organization_id=invoice.organization_id, enabled=True).values_list(
            "provider", flat=True
        )
    )
    if not providers:
        logger.debug(f"[e-Invoice] No enabled provider for {invoice.number}, nothing to submit")
        return

    invoice_id = invoice.pk
    for provider in providers:
        transaction.on_commit(lambda p=provider: queue_einvoice_submission(invoice_id, p))
        logger.info(f"🧾 [e-Invoice] Submission of {invoice.number} to {provider} queued on commit")
