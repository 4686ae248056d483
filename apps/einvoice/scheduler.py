"""
Delayed re-delivery of e-Invoice work.

``RetryScheduler`` decides *when* the next status check or deferred upload
runs; a ``TaskTransport`` decides *how* it is delivered. Production uses
Django-Q2 (immediate ``async_task`` or a one-off ``Schedule`` row for a
delayed run); tests swap in ``RecordingTransport``.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Protocol

from django.utils import timezone
from django_q.models import Schedule
from django_q.tasks import async_task, schedule

from .settings import einvoice_settings

logger = logging.getLogger(__name__)

# Task timeout in seconds
TASK_TIMEOUT = 300  # 5 minutes

CHECK_STATUS_TASK = "apps.einvoice.tasks.check_einvoice_status_task"
RESUME_SUBMISSION_TASK = "apps.einvoice.tasks.resume_submission_task"
SUBMIT_TASK = "apps.einvoice.tasks.submit_einvoice_task"


class TaskTransport(Protocol):
    def enqueue(self, func_path: str, *args: Any, delay_seconds: int = 0) -> str: ...


class DjangoQTransport:
    """Deliver tasks through the Django-Q2 broker."""

    def __init__(self, timeout: int = TASK_TIMEOUT):
        self.timeout = timeout

    def enqueue(self, func_path: str, *args: Any, delay_seconds: int = 0) -> str:
        if delay_seconds <= 0:
            task_id = async_task(func_path, *args, timeout=self.timeout)
            return str(task_id)

        next_run = timezone.now() + timedelta(seconds=delay_seconds)
        scheduled = schedule(
            func_path,
            *args,
            name=f"einvoice-{uuid.uuid4().hex[:12]}",
            schedule_type=Schedule.ONCE,
            repeats=-1,
            next_run=next_run,
        )
        return f"schedule:{scheduled.pk}"


@dataclass
class EnqueuedTask:
    func_path: str
    args: tuple[Any, ...]
    delay_seconds: int
    enqueued_at: datetime

    @property
    def due_at(self) -> datetime:
        return self.enqueued_at + timedelta(seconds=self.delay_seconds)

    def is_due(self, now: datetime | None = None) -> bool:
        return (now or timezone.now()) >= self.due_at


@dataclass
class RecordingTransport:
    """In-memory transport that remembers what would have been delivered."""

    tasks: list[EnqueuedTask] = field(default_factory=list)

    def enqueue(self, func_path: str, *args: Any, delay_seconds: int = 0) -> str:
        self.tasks.append(
            EnqueuedTask(func_path=func_path, args=args, delay_seconds=delay_seconds, enqueued_at=timezone.now())
        )
        return f"recorded:{len(self.tasks)}"

    def for_func(self, func_path: str) -> list[EnqueuedTask]:
        return [task for task in self.tasks if task.func_path == func_path]

    def due(self, now: datetime | None = None) -> list[EnqueuedTask]:
        return [task for task in self.tasks if task.is_due(now)]

    @property
    def last(self) -> EnqueuedTask | None:
        return self.tasks[-1] if self.tasks else None

    def clear(self) -> None:
        self.tasks.clear()


class RetryScheduler:
    """Compute follow-up delays and hand the work to the transport."""

    def __init__(self, transport: TaskTransport | None = None):
        self.transport = transport or DjangoQTransport()

    @staticmethod
    def status_check_delay(attempt: int, retry_after_seconds: int | None = None) -> int:
        """
        Delay before the check numbered ``attempt``.

        A rate-limit hint can only push the check later, never earlier.
        """
        delay = einvoice_settings.get_status_check_delay(attempt)
        if retry_after_seconds:
            delay = max(delay, int(retry_after_seconds))
        return delay

    def enqueue_check(
        self,
        submission_id: Any,
        attempt: int,
        *,
        delay_seconds: int | None = None,
        retry_after_seconds: int | None = None,
    ) -> str:
        if delay_seconds is None:
            delay_seconds = self.status_check_delay(attempt, retry_after_seconds)
        task_id = self.transport.enqueue(CHECK_STATUS_TASK, str(submission_id), attempt, delay_seconds=delay_seconds)
        logger.info(
            f"[e-Invoice Scheduler] Status check #{attempt} for submission {submission_id} in {delay_seconds}s"
        )
        return task_id

    def enqueue_resume(self, submission_id: Any, delay_seconds: int) -> str:
        delay_seconds = max(int(delay_seconds), 1)
        task_id = self.transport.enqueue(RESUME_SUBMISSION_TASK, str(submission_id), delay_seconds=delay_seconds)
        logger.info(f"[e-Invoice Scheduler] Deferred upload for submission {submission_id} in {delay_seconds}s")
        return task_id

    def enqueue_submit(self, invoice_id: Any, provider: str) -> str:
        return self.transport.enqueue(SUBMIT_TASK, str(invoice_id), str(provider), delay_seconds=0)
