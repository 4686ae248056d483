"""
e-Invoice provider strategies.

Registration is explicit: every supported authority is listed in
``build_registry`` and nothing is discovered at runtime.
"""

from __future__ import annotations

from ..models import EInvoiceProvider
from .anaf import AnafStatusChecker, AnafSubmissionHandler
from .base import (
    CheckContext,
    CheckOutcome,
    ProviderAuthenticationError,
    ProviderError,
    ProviderNotRegisteredError,
    ProviderRegistry,
    ProviderRejectedUpload,
    ProviderStrategy,
    ProviderTransportError,
    StatusChecker,
    SubmissionHandler,
)
from .xrechnung import XRechnungStatusChecker, XRechnungSubmissionHandler


def build_registry() -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register(EInvoiceProvider.ANAF, AnafSubmissionHandler(), AnafStatusChecker())
    registry.register(EInvoiceProvider.XRECHNUNG, XRechnungSubmissionHandler(), XRechnungStatusChecker())
    return registry


registry = build_registry()

__all__ = [
    "CheckContext",
    "CheckOutcome",
    "ProviderAuthenticationError",
    "ProviderError",
    "ProviderNotRegisteredError",
    "ProviderRegistry",
    "ProviderRejectedUpload",
    "ProviderStrategy",
    "ProviderTransportError",
    "StatusChecker",
    "SubmissionHandler",
    "build_registry",
    "registry",
]
