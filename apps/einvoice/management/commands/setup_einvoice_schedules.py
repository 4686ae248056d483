"""
Django management command to register recurring e-Invoice schedules.

Creates (or updates) the Django-Q schedule that hands stale in-flight
submissions back to the status poller.

Usage:
    python manage.py setup_einvoice_schedules
    python manage.py setup_einvoice_schedules --dry-run
"""

from __future__ import annotations

from django.core.management.base import BaseCommand, CommandParser

from apps.einvoice.settings import einvoice_settings
from apps.einvoice.tasks import schedule_einvoice_tasks


class Command(BaseCommand):
    """Register e-Invoice Django-Q schedules."""

    help = "Register the recurring stale e-Invoice submission sweep"

    def add_arguments(self, parser: CommandParser) -> None:
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be done without making changes",
        )

    def handle(self, *args: object, **options: object) -> None:
        if options.get("dry_run", False):
            self.stdout.write(
                "Would schedule apps.einvoice.tasks.requeue_stale_submissions_task hourly "
                f"(stale after {einvoice_settings.stale_submission_hours}h)"
            )
            return

        schedule_einvoice_tasks()
        self.stdout.write(self.style.SUCCESS("e-Invoice schedules configured"))
