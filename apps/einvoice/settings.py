"""
e-Invoice configurable settings.

Every value is read through a fallback chain (Django settings -> defaults),
so tests can change behaviour with ``override_settings`` without touching
this module.

Usage:
    from apps.einvoice.settings import einvoice_settings

    delay = einvoice_settings.get_status_check_delay(attempt)
    limits = einvoice_settings.get_rate_limits("anaf")
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Any

from django.conf import settings as django_settings

logger = logging.getLogger(__name__)


# ===============================================================================
# CONSTANTS - Part of the polling protocol, not configurable
# ===============================================================================

# A submission is polled at most this many times (attempts 0..9)
MAX_STATUS_CHECK_ATTEMPTS = 10

MAX_ATTEMPTS_MESSAGE = "Max status check attempts exceeded."
XML_ONLY_NOTE = "No API submission, XML generation only. Marked as accepted."


class EInvoiceEnvironment(StrEnum):
    """Provider API environment."""

    TEST = "test"
    PRODUCTION = "prod"


# ===============================================================================
# DEFAULTS
# ===============================================================================

EINVOICE_DEFAULTS: dict[str, Any] = {
    "EINVOICE_ENABLED": True,
    "EINVOICE_AUTO_SUBMIT": True,
    "EINVOICE_ENVIRONMENT": EInvoiceEnvironment.TEST.value,
    "EINVOICE_HTTP_TIMEOUT": 30,
    # Follow-up poll delay by attempt, the last entry repeats
    "EINVOICE_STATUS_CHECK_DELAYS": [300, 900, 1800, 3600, 7200],
    "EINVOICE_STALE_HOURS": 24,
    "EINVOICE_STORAGE_PREFIX": "",
    "EINVOICE_METRICS_ENABLED": True,
    "EINVOICE_METRICS_PREFIX": "einvoice",
    # Published authority quotas; limit 0 disables a limit
    "EINVOICE_RATE_LIMITS": {
        "anaf": [
            {"name": "global", "limit": 1000, "window_seconds": 60, "per_key": False},
            {"name": "status", "limit": 100, "window_seconds": 86400, "per_key": True},
        ],
        "xrechnung": [
            {"name": "global", "limit": 60, "window_seconds": 60, "per_key": False},
        ],
    },
}


# ===============================================================================
# SETTINGS SERVICE
# ===============================================================================


class EInvoiceSettings:
    """
    Type-safe access to e-Invoice configuration.

    Values are resolved on every access so that per-test overrides apply.
    """

    def _get_setting(self, key: str, default: Any = None) -> Any:
        """Get setting with fallback chain: Django settings -> defaults."""
        django_value = getattr(django_settings, key, None)
        if django_value is not None:
            return django_value
        return EINVOICE_DEFAULTS.get(key, default)

    def _get_string(self, key: str, default: str = "") -> str:
        value = self._get_setting(key, default)
        return str(value) if value is not None else default

    def _get_int(self, key: str, default: int = 0) -> int:
        value = self._get_setting(key, default)
        try:
            return int(value)
        except (ValueError, TypeError):
            logger.warning(f"⚠️ [e-Invoice] Invalid integer for {key}: {value!r}, using {default}")
            return default

    def _get_bool(self, key: str, default: bool = False) -> bool:
        value = self._get_setting(key, default)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ("true", "1", "yes", "on")
        return bool(value)

    def _get_int_list(self, key: str) -> list[int]:
        value = self._get_setting(key)
        if isinstance(value, str):
            value = [part for part in value.split(",") if part.strip()]
        try:
            return [int(v) for v in value or []]
        except (ValueError, TypeError):
            logger.warning(f"⚠️ [e-Invoice] Invalid integer list for {key}: {value!r}")
            return list(EINVOICE_DEFAULTS[key])

    # ===== General Settings =====

    @property
    def enabled(self) -> bool:
        return self._get_bool("EINVOICE_ENABLED", True)

    @property
    def auto_submit(self) -> bool:
        """Queue submissions automatically when an invoice is issued."""
        return self._get_bool("EINVOICE_AUTO_SUBMIT", True)

    @property
    def environment(self) -> EInvoiceEnvironment:
        env = self._get_string("EINVOICE_ENVIRONMENT", "test").lower()
        if env in ("prod", "production"):
            return EInvoiceEnvironment.PRODUCTION
        return EInvoiceEnvironment.TEST

    @property
    def http_timeout(self) -> int:
        return self._get_int("EINVOICE_HTTP_TIMEOUT", 30)

    @property
    def storage_prefix(self) -> str:
        prefix = self._get_string("EINVOICE_STORAGE_PREFIX", "")
        return f"{prefix.rstrip('/')}/" if prefix else ""

    # ===== Polling Settings =====

    @property
    def max_status_attempts(self) -> int:
        return MAX_STATUS_CHECK_ATTEMPTS

    @property
    def status_check_delays(self) -> list[int]:
        return self._get_int_list("EINVOICE_STATUS_CHECK_DELAYS")

    def get_status_check_delay(self, attempt: int) -> int:
        """Delay in seconds before poll number ``attempt``, capped at the last entry."""
        delays = self.status_check_delays
        if not delays:
            return 0
        index = min(max(attempt, 0), len(delays) - 1)
        return delays[index]

    @property
    def stale_submission_hours(self) -> int:
        return self._get_int("EINVOICE_STALE_HOURS", 24)

    # ===== Rate Limit Settings =====

    def get_rate_limits(self, provider: str) -> list[dict[str, Any]]:
        """Raw limit definitions for one provider, see ``quota.RateLimit``."""
        limits = self._get_setting("EINVOICE_RATE_LIMITS") or {}
        return list(limits.get(str(provider), []))

    # ===== Metrics Settings =====

    @property
    def metrics_enabled(self) -> bool:
        return self._get_bool("EINVOICE_METRICS_ENABLED", True)

    @property
    def metrics_prefix(self) -> str:
        return self._get_string("EINVOICE_METRICS_PREFIX", "einvoice")


# Module-level settings instance
einvoice_settings = EInvoiceSettings()
