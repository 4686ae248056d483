"""
e-Invoice submission model and its state machine.

A submission tracks one attempt to deliver one invoice to one provider:
- Created PENDING by the orchestrator
- ACCEPTED once the provider acknowledges receipt (or XML-only shortcut)
- VALIDATED / REJECTED / ERROR are terminal

Transitions are monotonic: a status never moves back to a less advanced one,
and nothing leaves a terminal status. Every write goes through
``EInvoiceSubmission.transition`` which re-reads the row under a lock, so
duplicate or out-of-order poll messages cannot resurrect a submission.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from enum import StrEnum
from typing import Any

from django.db import models, transaction
from django.db.models import Q
from django.utils import timezone

logger = logging.getLogger(__name__)


class EInvoiceProvider(StrEnum):
    """Supported e-invoicing authorities."""

    ANAF = "anaf"  # Romania, e-Factura (CIUS-RO)
    XRECHNUNG = "xrechnung"  # Germany, ZRE (XRechnung)

    @classmethod
    def choices(cls) -> list[tuple[str, str]]:
        return [(p.value, p.name.replace("_", " ").title()) for p in cls]


class EInvoiceSubmissionStatus(StrEnum):
    """Submission status enumeration."""

    PENDING = "pending"  # Created, not yet acknowledged by the provider
    ACCEPTED = "accepted"  # Provider acknowledged receipt, awaiting validation
    VALIDATED = "validated"  # Authority validated the document
    REJECTED = "rejected"  # Authority rejected the content
    ERROR = "error"  # Operational failure

    @classmethod
    def choices(cls) -> list[tuple[str, str]]:
        return [(status.value, status.name.title()) for status in cls]

    @classmethod
    def terminal_statuses(cls) -> set[str]:
        return {cls.VALIDATED.value, cls.REJECTED.value, cls.ERROR.value}

    @classmethod
    def active_statuses(cls) -> set[str]:
        return {cls.PENDING.value, cls.ACCEPTED.value}

    @property
    def is_terminal(self) -> bool:
        return self.value in self.terminal_statuses()

    @property
    def rank(self) -> int:
        """Progress rank; a transition may only keep or raise it."""
        if self.is_terminal:
            return 2
        return 1 if self is EInvoiceSubmissionStatus.ACCEPTED else 0


class EInvoiceSubmissionQuerySet(models.QuerySet):
    def active(self) -> EInvoiceSubmissionQuerySet:
        return self.filter(status__in=EInvoiceSubmissionStatus.active_statuses())

    def for_invoice(self, invoice_id: Any, provider: str) -> EInvoiceSubmissionQuerySet:
        return self.filter(invoice_id=invoice_id, provider=str(provider))

    def stale(self, hours: int) -> EInvoiceSubmissionQuerySet:
        """Active submissions nobody has touched for ``hours``, settled XML-only ones excluded."""
        cutoff = timezone.now() - timedelta(hours=hours)
        return self.active().filter(xml_only_settled=False, updated_at__lt=cutoff)


class EInvoiceSubmission(models.Model):
    """
    Track one invoice's e-invoice delivery to one provider.

    Never deleted; a resubmission creates a new row and the old one stays as
    the audit trail.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    invoice = models.ForeignKey(
        "billing.Invoice",
        on_delete=models.PROTECT,
        related_name="einvoice_submissions",
    )

    provider = models.CharField(max_length=20, choices=EInvoiceProvider.choices())

    status = models.CharField(
        max_length=20,
        choices=EInvoiceSubmissionStatus.choices(),
        default=EInvoiceSubmissionStatus.PENDING.value,
        db_index=True,
    )

    external_id = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        help_text="Provider submission id; empty means XML-only, no API call made",
    )

    error_message = models.TextField(null=True, blank=True)

    metadata = models.JSONField(default=dict, blank=True)

    xml_path = models.CharField(max_length=500, blank=True, default="")

    xml_only_settled = models.BooleanField(
        default=False,
        help_text="XML-only submission completed without an API call; no status checks follow",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = EInvoiceSubmissionQuerySet.as_manager()

    class Meta:
        db_table = "einvoice_submission"
        verbose_name = "e-Invoice Submission"
        verbose_name_plural = "e-Invoice Submissions"
        ordering = ["-created_at"]

        indexes = [
            models.Index(fields=["invoice", "provider"], name="einvoice_invoice_provider_idx"),
            models.Index(fields=["provider", "status"], name="einvoice_provider_status_idx"),
        ]

        constraints = [
            # Dedupe key for at-least-once submit delivery
            models.UniqueConstraint(
                fields=["invoice", "provider"],
                condition=Q(status__in=["pending", "accepted"], xml_only_settled=False),
                name="einvoice_one_active_per_invoice_provider",
            ),
        ]

    def __str__(self) -> str:
        return f"e-Invoice {self.provider} {self.invoice_id} [{self.status}]"

    @property
    def status_enum(self) -> EInvoiceSubmissionStatus:
        return EInvoiceSubmissionStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status_enum.is_terminal

    @property
    def is_xml_only(self) -> bool:
        return not self.external_id

    # --- Status Transition Methods ---

    @classmethod
    def transition(
        cls,
        submission_id: Any,
        status: EInvoiceSubmissionStatus | str,
        *,
        error_message: str | None = None,
        external_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        xml_path: str | None = None,
    ) -> tuple[EInvoiceSubmission, bool]:
        """
        Move a submission to ``status`` under a row lock.

        Returns the fresh row and whether the move was applied. Moves out of
        a terminal status or back to a less advanced one are refused and
        leave the row untouched.
        """
        target = EInvoiceSubmissionStatus(status)

        with transaction.atomic():
            submission = cls.objects.select_for_update().get(pk=submission_id)
            current = submission.status_enum

            if current.is_terminal or target.rank < current.rank:
                logger.debug(
                    f"[e-Invoice] Ignoring transition {current} -> {target} for submission {submission_id}"
                )
                return submission, False

            submission.status = target.value
            update_fields = ["status", "updated_at"]

            if error_message is not None:
                submission.error_message = error_message
                update_fields.append("error_message")
            if external_id is not None:
                submission.external_id = external_id
                update_fields.append("external_id")
            if xml_path is not None:
                submission.xml_path = xml_path
                update_fields.append("xml_path")
            if metadata:
                submission.metadata = {**(submission.metadata or {}), **metadata}
                update_fields.append("metadata")

            submission.save(update_fields=update_fields)

        if current != target:
            logger.info(f"[e-Invoice] Submission {submission_id} ({submission.provider}): {current} -> {target}")
        return submission, True

    @classmethod
    def update_metadata(cls, submission_id: Any, **values: Any) -> EInvoiceSubmission:
        """Merge metadata under the row lock without touching status."""
        with transaction.atomic():
            submission = cls.objects.select_for_update().get(pk=submission_id)
            submission.metadata = {**(submission.metadata or {}), **values}
            submission.save(update_fields=["metadata", "updated_at"])
        return submission

    @classmethod
    def settle_xml_only(cls, submission_id: Any, metadata: dict[str, Any]) -> tuple[EInvoiceSubmission, bool]:
        """
        Accept an XML-only submission once.

        A settled submission keeps its first acceptance metadata, leaves the
        stale sweep and no longer blocks a resubmission.
        """
        with transaction.atomic():
            submission = cls.objects.select_for_update().get(pk=submission_id)
            if submission.xml_only_settled or submission.is_terminal:
                return submission, False

            submission, applied = cls.transition(submission.pk, EInvoiceSubmissionStatus.ACCEPTED, metadata=metadata)
            if applied:
                submission.xml_only_settled = True
                submission.save(update_fields=["xml_only_settled", "updated_at"])
        return submission, applied


class EInvoiceProviderConfig(models.Model):
    """
    Per-organization provider switch and credentials.

    ``credentials`` holds provider specific keys:
    - anaf: ``access_token``
    - xrechnung: ``client_id``, ``client_secret``

    An enabled config without credentials produces XML-only submissions.
    """

    organization = models.ForeignKey(
        "billing.Organization",
        on_delete=models.CASCADE,
        related_name="einvoice_configs",
    )
    provider = models.CharField(max_length=20, choices=EInvoiceProvider.choices())
    enabled = models.BooleanField(default=False)
    credentials = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "einvoice_provider_config"
        verbose_name = "e-Invoice Provider Config"
        constraints = [
            models.UniqueConstraint(fields=["organization", "provider"], name="einvoice_config_per_provider"),
        ]

    def __str__(self) -> str:
        state = "enabled" if self.enabled else "disabled"
        return f"{self.organization_id} {self.provider} ({state})"

    @classmethod
    def credentials_for(cls, organization_id: Any, provider: str) -> dict[str, Any]:
        config = cls.objects.filter(organization_id=organization_id, provider=str(provider)).first()
        return dict(config.credentials or {}) if config else {}
