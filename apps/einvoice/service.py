"""
e-Invoice submission orchestration and status reconciliation.

This module coordinates:
- Submission creation with invoice + provider dedupe
- Error classification for the submission handler
- Status polling with a bounded attempt budget
- Rate-limit backoff that never burns attempts

Every exit path either advances the submission, schedules a follow-up, or
records a terminal status; nothing is left without a future poll.

Usage:
    from apps.einvoice.service import SubmissionOrchestrator, StatusPoller

    SubmissionOrchestrator().submit(invoice_id, "anaf")
    StatusPoller().poll(submission_id, attempt=0)
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.billing.models import Invoice

from .metrics import metrics
from .models import EInvoiceSubmission, EInvoiceSubmissionStatus
from .providers import CheckContext, CheckOutcome, ProviderError, ProviderRegistry
from .providers import registry as default_registry
from .quota import RateLimitExceededError
from .scheduler import RetryScheduler
from .settings import MAX_ATTEMPTS_MESSAGE, MAX_STATUS_CHECK_ATTEMPTS, XML_ONLY_NOTE
from .ubl import DocumentValidationError

if TYPE_CHECKING:
    from .providers import ProviderStrategy

logger = logging.getLogger(__name__)


# ===============================================================================
# RESULTS
# ===============================================================================


@dataclass
class SubmissionResult:
    """Result of a submit, resubmit or resume request."""

    success: bool
    submission: EInvoiceSubmission | None = None
    error_message: str = ""
    errors: list[str] = field(default_factory=list)
    deduplicated: bool = False
    deferred: bool = False

    @classmethod
    def ok(cls, submission: EInvoiceSubmission, **flags: bool) -> SubmissionResult:
        return cls(success=True, submission=submission, **flags)

    @classmethod
    def error(
        cls, message: str, submission: EInvoiceSubmission | None = None, errors: list[str] | None = None
    ) -> SubmissionResult:
        return cls(success=False, submission=submission, error_message=message, errors=errors or [message])

    def to_dict(self) -> dict[str, Any]:
        submission = self.submission
        return {
            "success": self.success,
            "submission_id": str(submission.pk) if submission else None,
            "status": submission.status if submission else None,
            "external_id": submission.external_id if submission else None,
            "error": self.error_message or None,
            "deduplicated": self.deduplicated,
            "deferred": self.deferred,
        }


class PollOutcome(StrEnum):
    """Exit path taken by one status poll."""

    NOOP = "noop"  # already terminal, nothing done
    SHORTCUT = "shortcut"  # XML-only, accepted without a provider call
    ADVANCED = "advanced"  # moved to a terminal status
    RESCHEDULED = "rescheduled"  # follow-up check enqueued
    ERRORED = "errored"  # attempt budget exhausted
    MISSING = "missing"  # submission no longer exists


@dataclass
class PollResult:
    outcome: PollOutcome
    submission_id: str
    attempt: int
    status: str | None = None
    next_attempt: int | None = None
    delay_seconds: int | None = None
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["outcome"] = self.outcome.value
        return data


# ===============================================================================
# SUBMISSION ORCHESTRATOR
# ===============================================================================


class SubmissionOrchestrator:
    """Create submissions and run the provider's handler against them."""

    def __init__(self, registry: ProviderRegistry | None = None, scheduler: RetryScheduler | None = None):
        self.registry = registry or default_registry
        self.scheduler = scheduler or RetryScheduler()

    # --- Main Workflow Methods ---

    def submit(self, invoice_id: Any, provider: str) -> SubmissionResult | None:
        """
        Submit an invoice to a provider, once.

        Re-delivery of the same request returns the in-flight submission
        instead of creating another one.

        Raises:
            ProviderNotRegisteredError: unknown provider key
        """
        strategy = self.registry.get(provider)
        invoice = self._load_invoice(invoice_id)
        if invoice is None:
            return None

        existing = self._active_submission(invoice.pk, strategy.key)
        if existing is not None:
            logger.info(
                f"[e-Invoice] Invoice {invoice.number} already has {existing.status} submission "
                f"{existing.pk} for {strategy.key}, skipping"
            )
            metrics.record_submission(strategy.key, "deduplicated")
            return SubmissionResult.ok(existing, deduplicated=True)

        submission, created = self._create_submission(invoice, strategy.key)
        if not created:
            metrics.record_submission(strategy.key, "deduplicated")
            return SubmissionResult.ok(submission, deduplicated=True)

        return self._run_handler(strategy, invoice, submission)

    def resubmit(self, invoice_id: Any, provider: str) -> SubmissionResult | None:
        """Start a fresh submission once the latest one is terminal or a settled XML-only one."""
        strategy = self.registry.get(provider)
        invoice = self._load_invoice(invoice_id)
        if invoice is None:
            return None

        latest = EInvoiceSubmission.objects.for_invoice(invoice.pk, strategy.key).order_by("-created_at").first()
        if latest is not None and not (latest.is_terminal or latest.xml_only_settled):
            return SubmissionResult.error(
                f"Submission {latest.pk} is still {latest.status}; wait for a final status before resubmitting",
                submission=latest,
            )

        submission, created = self._create_submission(invoice, strategy.key)
        if not created:
            return SubmissionResult.ok(submission, deduplicated=True)
        if latest is not None:
            submission = EInvoiceSubmission.update_metadata(submission.pk, previousSubmissionId=str(latest.pk))
        logger.info(f"[e-Invoice] Resubmitting invoice {invoice.number} to {strategy.key}")
        return self._run_handler(strategy, invoice, submission)

    def resume(self, submission_id: Any) -> SubmissionResult | None:
        """Retry the upload of a submission deferred by a rate limit."""
        submission = EInvoiceSubmission.objects.select_related("invoice").filter(pk=submission_id).first()
        if submission is None:
            logger.warning(f"⚠️ [e-Invoice] Submission {submission_id} not found, nothing to resume")
            return None

        if submission.status != EInvoiceSubmissionStatus.PENDING or not submission.metadata.get("awaitingUpload"):
            logger.debug(f"[e-Invoice] Submission {submission_id} is not awaiting upload ({submission.status})")
            return SubmissionResult.ok(submission, deduplicated=True)

        strategy = self.registry.get(submission.provider)
        submission = EInvoiceSubmission.update_metadata(submission.pk, awaitingUpload=False)
        return self._run_handler(strategy, submission.invoice, submission)

    # --- Internal Methods ---

    def _load_invoice(self, invoice_id: Any) -> Invoice | None:
        invoice = Invoice.objects.select_related("organization", "original_invoice").filter(pk=invoice_id).first()
        if invoice is None:
            logger.warning(f"⚠️ [e-Invoice] Invoice {invoice_id} not found, skipping submission")
        return invoice

    def _active_submission(self, invoice_id: Any, provider: str) -> EInvoiceSubmission | None:
        return EInvoiceSubmission.objects.for_invoice(invoice_id, provider).active().order_by("-created_at").first()

    def _create_submission(self, invoice: Invoice, provider: str) -> tuple[EInvoiceSubmission, bool]:
        try:
            with transaction.atomic():
                return EInvoiceSubmission.objects.create(invoice=invoice, provider=provider), True
        except IntegrityError:
            winner = self._active_submission(invoice.pk, provider)
            if winner is None:
                raise
            logger.info(f"[e-Invoice] Concurrent submission {winner.pk} won for invoice {invoice.number}")
            return winner, False

    def _run_handler(
        self, strategy: ProviderStrategy, invoice: Invoice, submission: EInvoiceSubmission
    ) -> SubmissionResult:
        provider = strategy.key
        try:
            submission = strategy.submission_handler.handle(invoice, submission)
        except DocumentValidationError as e:
            logger.warning(f"⚠️ [e-Invoice] Invoice {invoice.number} failed validation for {provider}: {e}")
            submission = self._fail(submission, str(e), validationErrors=e.errors)
            metrics.record_submission(provider, "invalid")
            return SubmissionResult.error(str(e), submission=submission, errors=e.errors)
        except RateLimitExceededError as e:
            submission = EInvoiceSubmission.update_metadata(
                submission.pk,
                awaitingUpload=True,
                rateLimit={"limit": e.limit_name, "retryAfterSeconds": e.retry_after_seconds},
            )
            self.scheduler.enqueue_resume(submission.pk, e.retry_after_seconds)
            metrics.record_submission(provider, "deferred")
            return SubmissionResult.ok(submission, deferred=True)
        except ProviderError as e:
            logger.error(f"🔥 [e-Invoice] Upload of {invoice.number} to {provider} failed: {e}")
            submission = self._fail(submission, str(e))
            metrics.record_submission(provider, "error")
            return SubmissionResult.error(str(e), submission=submission)
        except Exception as e:
            logger.exception(f"🔥 [e-Invoice] Unexpected error submitting {invoice.number} to {provider}: {e}")
            submission = self._fail(submission, str(e))
            metrics.record_submission(provider, "error")
            return SubmissionResult.error(str(e), submission=submission)

        metrics.record_submission(provider, submission.status)
        if not submission.is_terminal:
            # XML-only submissions have nothing to wait for
            delay = 0 if submission.is_xml_only else None
            self.scheduler.enqueue_check(submission.pk, 0, delay_seconds=delay)
        return SubmissionResult.ok(submission)

    def _fail(self, submission: EInvoiceSubmission, message: str, **metadata: Any) -> EInvoiceSubmission:
        submission, _ = EInvoiceSubmission.transition(
            submission.pk,
            EInvoiceSubmissionStatus.ERROR,
            error_message=message,
            metadata=metadata or None,
        )
        return submission


# ===============================================================================
# STATUS POLLER
# ===============================================================================


class StatusPoller:
    """Run one status check and decide what happens next."""

    def __init__(
        self,
        registry: ProviderRegistry | None = None,
        scheduler: RetryScheduler | None = None,
        max_attempts: int = MAX_STATUS_CHECK_ATTEMPTS,
    ):
        self.registry = registry or default_registry
        self.scheduler = scheduler or RetryScheduler()
        self.max_attempts = max_attempts

    def poll(self, submission_id: Any, attempt: int = 0) -> PollResult:
        submission = EInvoiceSubmission.objects.select_related("invoice").filter(pk=submission_id).first()
        if submission is None:
            logger.warning(f"⚠️ [e-Invoice] Submission {submission_id} not found, dropping status check")
            return PollResult(PollOutcome.MISSING, str(submission_id), attempt)

        provider = submission.provider

        # Terminal and settled XML-only submissions never move again
        if submission.is_terminal or submission.xml_only_settled:
            logger.debug(f"[e-Invoice] Submission {submission_id} already {submission.status}, ignoring check")
            return self._result(PollOutcome.NOOP, provider, submission, attempt)

        if submission.metadata.get("awaitingUpload"):
            logger.debug(f"[e-Invoice] Submission {submission_id} is waiting for its upload, ignoring check")
            return self._result(PollOutcome.NOOP, provider, submission, attempt)

        if not submission.external_id:
            submission, settled = EInvoiceSubmission.settle_xml_only(
                submission.pk,
                metadata={"note": XML_ONLY_NOTE, "xmlOnly": True, "acceptedAt": timezone.now().isoformat()},
            )
            if not settled:
                return self._result(PollOutcome.NOOP, provider, submission, attempt)
            logger.info(f"[e-Invoice] Submission {submission_id} is XML-only, marked accepted")
            return self._result(PollOutcome.SHORTCUT, provider, submission, attempt)

        if attempt >= self.max_attempts:
            return self._give_up(submission, MAX_ATTEMPTS_MESSAGE, attempt)

        strategy = self.registry.get(provider)
        checker = strategy.status_checker
        context = CheckContext(submission_id=str(submission.pk), attempt=attempt, max_attempts=self.max_attempts)

        try:
            outcome = checker.check(submission, context)
        except RateLimitExceededError as e:
            # Rate-limited checks keep their attempt number
            delay = max(checker.next_check_delay(attempt), e.retry_after_seconds)
            self.scheduler.enqueue_check(submission.pk, attempt, delay_seconds=delay)
            logger.info(f"[e-Invoice] Status check for {submission_id} throttled ({e.limit_name}), retry in {delay}s")
            result = self._result(PollOutcome.RESCHEDULED, provider, submission, attempt)
            result.next_attempt, result.delay_seconds, result.message = attempt, delay, str(e)
            return result
        except ProviderError as e:
            logger.warning(f"⚠️ [e-Invoice] Status check #{attempt} for {submission_id} failed: {e}")
            return self._after_failure(submission, checker, attempt, str(e))
        except Exception as e:
            logger.exception(f"🔥 [e-Invoice] Unexpected error checking {submission_id}: {e}")
            return self._after_failure(submission, checker, attempt, str(e))

        return self._apply(submission, checker, outcome, attempt)

    # --- Internal Methods ---

    def _apply(self, submission: EInvoiceSubmission, checker: Any, outcome: CheckOutcome, attempt: int) -> PollResult:
        provider = submission.provider

        if outcome.status is None:
            submission, applied = EInvoiceSubmission.transition(
                submission.pk, EInvoiceSubmissionStatus.ACCEPTED, metadata=outcome.metadata
            )
            if not applied:
                return self._result(PollOutcome.NOOP, provider, submission, attempt)

            next_attempt = attempt + 1
            delay = checker.next_check_delay(next_attempt)
            self.scheduler.enqueue_check(submission.pk, next_attempt, delay_seconds=delay)
            result = self._result(PollOutcome.RESCHEDULED, provider, submission, attempt)
            result.next_attempt, result.delay_seconds = next_attempt, delay
            return result

        submission, applied = EInvoiceSubmission.transition(
            submission.pk,
            outcome.status,
            error_message=outcome.error_message,
            metadata=outcome.metadata,
        )
        if not applied:
            return self._result(PollOutcome.NOOP, provider, submission, attempt)
        return self._result(PollOutcome.ADVANCED, provider, submission, attempt, outcome.error_message or "")

    def _after_failure(self, submission: EInvoiceSubmission, checker: Any, attempt: int, message: str) -> PollResult:
        if attempt < self.max_attempts - 1:
            next_attempt = attempt + 1
            delay = checker.next_check_delay(next_attempt)
            self.scheduler.enqueue_check(submission.pk, next_attempt, delay_seconds=delay)
            result = self._result(PollOutcome.RESCHEDULED, submission.provider, submission, attempt, message)
            result.next_attempt, result.delay_seconds = next_attempt, delay
            return result
        return self._give_up(submission, f"Status check failed after {attempt + 1} attempts: {message}", attempt)

    def _give_up(self, submission: EInvoiceSubmission, message: str, attempt: int) -> PollResult:
        submission, applied = EInvoiceSubmission.transition(
            submission.pk, EInvoiceSubmissionStatus.ERROR, error_message=message
        )
        if not applied:
            return self._result(PollOutcome.NOOP, submission.provider, submission, attempt)
        logger.error(f"🔥 [e-Invoice] Submission {submission.pk} errored: {message}")
        return self._result(PollOutcome.ERRORED, submission.provider, submission, attempt, message)

    def _result(
        self,
        outcome: PollOutcome,
        provider: str,
        submission: EInvoiceSubmission,
        attempt: int,
        message: str = "",
    ) -> PollResult:
        metrics.record_poll(provider, outcome.value)
        return PollResult(
            outcome=outcome,
            submission_id=str(submission.pk),
            attempt=attempt,
            status=submission.status,
            message=message,
        )
