"""
Django app configuration for the e-Invoice app
"""

import logging

from django.apps import AppConfig

logger = logging.getLogger(__name__)


class EInvoiceConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.einvoice"
    label = "einvoice"
    verbose_name = "e-Invoice"

    def ready(self) -> None:
        """Register the built-in providers once the model registry is ready."""
        from .providers import registry  # noqa: PLC0415

        logger.debug(f"[e-Invoice] Providers registered: {', '.join(registry.keys())}")
