"""
Async tasks for e-Invoice operations.

These tasks are designed for use with Django-Q2:
- submit_einvoice_task: Submit one invoice to one provider
- check_einvoice_status_task: Run one status check for a submission
- resume_submission_task: Retry an upload deferred by a rate limit
- requeue_stale_submissions_task: Hand stale in-flight submissions back to the poller

Usage:
    from django_q.tasks import async_task
    async_task('apps.einvoice.tasks.submit_einvoice_task', invoice_id, 'anaf')
"""

from __future__ import annotations

import logging
from typing import Any

from django_q.models import Schedule

from .models import EInvoiceSubmission
from .providers import ProviderNotRegisteredError
from .scheduler import RetryScheduler
from .service import StatusPoller, SubmissionOrchestrator
from .settings import einvoice_settings

logger = logging.getLogger(__name__)


def submit_einvoice_task(invoice_id: str, provider: str) -> dict[str, Any]:
    """
    Submit a single invoice to an e-invoicing provider.

    Args:
        invoice_id: Primary key of the invoice to submit
        provider: Registered provider key, e.g. 'anaf'

    Returns:
        Dict with result status and details
    """
    logger.info(f"[e-Invoice Task] Starting {provider} submission for invoice {invoice_id}")

    try:
        result = SubmissionOrchestrator().submit(invoice_id, provider)
    except ProviderNotRegisteredError as e:
        logger.error(f"🔥 [e-Invoice Task] {e}")
        raise

    if result is None:
        return {"success": False, "error": "Invoice not found", "invoice_id": invoice_id, "provider": provider}

    data = result.to_dict()
    data.update({"invoice_id": invoice_id, "provider": provider})
    if result.success:
        logger.info(f"[e-Invoice Task] Submission for invoice {invoice_id} is {data['status']}")
    else:
        logger.warning(f"⚠️ [e-Invoice Task] Submission for invoice {invoice_id} failed: {result.error_message}")
    return data


def check_einvoice_status_task(submission_id: str, attempt: int = 0) -> dict[str, Any]:
    """
    Check the provider status of one submission.

    Args:
        submission_id: UUID of the EInvoiceSubmission
        attempt: Zero-based check counter carried between deliveries

    Returns:
        Dict with the poll exit path
    """
    logger.info(f"[e-Invoice Task] Status check #{attempt} for submission {submission_id}")
    result = StatusPoller().poll(submission_id, int(attempt))
    return {"success": True, **result.to_dict()}


def resume_submission_task(submission_id: str) -> dict[str, Any]:
    """Retry the upload of a submission the rate limiter deferred."""
    logger.info(f"[e-Invoice Task] Resuming deferred upload for submission {submission_id}")
    result = SubmissionOrchestrator().resume(submission_id)
    if result is None:
        return {"success": False, "error": "Submission not found", "submission_id": submission_id}
    return result.to_dict()


def requeue_stale_submissions_task(hours: int | None = None) -> dict[str, Any]:
    """
    Hand in-flight submissions nobody touched lately back to the engine.

    Intended to be triggered by an external scheduler. Deferred uploads are
    resumed; everything else gets an attempt-0 status check, which also
    completes XML-only submissions.
    """
    hours = hours or einvoice_settings.stale_submission_hours
    scheduler = RetryScheduler()
    stale = EInvoiceSubmission.objects.stale(hours).order_by("updated_at")

    queued: list[str] = []
    resumed: list[str] = []
    for submission in stale.iterator():
        if submission.metadata.get("awaitingUpload"):
            scheduler.enqueue_resume(submission.pk, delay_seconds=1)
            resumed.append(str(submission.pk))
            continue
        scheduler.enqueue_check(submission.pk, 0, delay_seconds=0)
        queued.append(str(submission.pk))

    if queued or resumed:
        logger.info(
            f"[e-Invoice Task] Requeued {len(queued)} stale submissions and resumed {len(resumed)} uploads "
            f"(older than {hours}h)"
        )
    return {
        "success": True,
        "queued": len(queued),
        "resumed": len(resumed),
        "submission_ids": queued + resumed,
        "hours": hours,
    }


# --- Task Scheduling Helpers ---


def schedule_einvoice_tasks() -> None:
    """
    Register the recurring stale-submission sweep.

    Call this from a deployment hook; the sweep interval is a deployment
    decision and nothing in the engine depends on it running.
    """
    Schedule.objects.update_or_create(
        name="einvoice_requeue_stale",
        defaults={
            "func": "apps.einvoice.tasks.requeue_stale_submissions_task",
            "schedule_type": Schedule.HOURLY,
        },
    )
    logger.info("[e-Invoice Task] Scheduled tasks configured")


# --- Async Task Helpers ---


def queue_einvoice_submission(invoice_id: Any, provider: str) -> str:
    """
    Queue an invoice for submission to one provider.

    Returns:
        Task ID from the transport
    """
    task_id = RetryScheduler().enqueue_submit(invoice_id, provider)
    logger.info(f"[e-Invoice Task] Queued {provider} submission for invoice {invoice_id}: task {task_id}")
    return task_id


def queue_status_check(submission_id: Any, attempt: int = 0, delay_seconds: int = 0) -> str:
    """Queue a status check for a submission, optionally delayed."""
    return RetryScheduler().enqueue_check(submission_id, attempt, delay_seconds=delay_seconds)
