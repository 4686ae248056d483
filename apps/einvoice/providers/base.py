"""
Provider strategy contracts and the registry that maps provider keys to them.

Every e-invoicing authority contributes one ``SubmissionHandler`` (build,
store, optionally upload) and one ``StatusChecker`` (single non-blocking
status probe). The orchestrator and poller only ever talk to these two
interfaces through ``ProviderRegistry``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

from django.core.exceptions import ImproperlyConfigured
from django.utils import timezone

from ..builder import build_document
from ..models import EInvoiceProviderConfig, EInvoiceSubmission, EInvoiceSubmissionStatus
from ..settings import MAX_STATUS_CHECK_ATTEMPTS, einvoice_settings
from ..storage import store_xml
from ..ubl import InvoiceDocument, serialize
from ..ubl.document import CIUS_RO_CUSTOMIZATION_ID
from ..validator import validate_invoice

if TYPE_CHECKING:
    from apps.billing.models import Invoice

logger = logging.getLogger(__name__)


# ===============================================================================
# EXCEPTIONS
# ===============================================================================


class ProviderError(Exception):
    """Base exception for provider communication failures."""

    def __init__(self, message: str, provider: str = "", status_code: int | None = None):
        self.message = message
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)


class ProviderTransportError(ProviderError):
    """Timeout, connection failure, 5xx or a body that cannot be parsed."""


class ProviderAuthenticationError(ProviderTransportError):
    """Credentials missing or refused by the provider."""


class ProviderRejectedUpload(ProviderError):
    """The provider answered the upload with an explicit error."""

    def __init__(self, message: str, provider: str = "", errors: list[str] | None = None):
        self.errors = errors or [message]
        super().__init__(message, provider=provider)


class ProviderNotRegisteredError(ImproperlyConfigured):
    """No strategy registered under the requested provider key."""


# ===============================================================================
# STATUS CHECK CONTRACT
# ===============================================================================


@dataclass(frozen=True)
class CheckContext:
    """What the poller knows about the probe it is asking for."""

    submission_id: str
    attempt: int
    max_attempts: int = MAX_STATUS_CHECK_ATTEMPTS

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt >= self.max_attempts - 1


@dataclass
class CheckOutcome:
    """
    Result of one status probe.

    ``status`` is None while the authority is still processing; the poller
    then keeps the submission ACCEPTED and schedules the next check.
    """

    status: EInvoiceSubmissionStatus | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def in_flight(cls, **metadata: Any) -> CheckOutcome:
        return cls(status=None, metadata=metadata)

    @classmethod
    def validated(cls, **metadata: Any) -> CheckOutcome:
        return cls(status=EInvoiceSubmissionStatus.VALIDATED, metadata=metadata)

    @classmethod
    def rejected(cls, message: str, **metadata: Any) -> CheckOutcome:
        return cls(status=EInvoiceSubmissionStatus.REJECTED, error_message=message, metadata=metadata)

    @property
    def is_terminal(self) -> bool:
        return self.status is not None and self.status.is_terminal


# ===============================================================================
# STRATEGY INTERFACES
# ===============================================================================


class SubmissionHandler(ABC):
    """Turn an invoice into a stored document and, when possible, an upload."""

    provider: ClassVar[str]

    @abstractmethod
    def handle(self, invoice: Invoice, submission: EInvoiceSubmission) -> EInvoiceSubmission:
        """Process ``submission`` and return the refreshed row."""


class StatusChecker(ABC):
    """Ask the provider once where a submission stands."""

    provider: ClassVar[str]

    @abstractmethod
    def check(self, submission: EInvoiceSubmission, context: CheckContext) -> CheckOutcome:
        """
        Raises:
            RateLimitExceededError: the call was refused by the guard or the provider
            ProviderError: operational failure, counted against the attempt budget
        """

    def next_check_delay(self, attempt: int) -> int:
        """Seconds to wait before the check numbered ``attempt``."""
        return einvoice_settings.get_status_check_delay(attempt)


class BaseSubmissionHandler(SubmissionHandler):
    """
    Shared build → store → upload flow.

    Subclasses supply the document builder hook, the credential check and
    the single upload call.
    """

    xml_only_note: ClassVar[str] = "XML generated. No API credentials configured, upload manually."
    customization_id: ClassVar[str] = CIUS_RO_CUSTOMIZATION_ID

    def handle(self, invoice: Invoice, submission: EInvoiceSubmission) -> EInvoiceSubmission:
        # Raises DocumentValidationError before anything is written
        validate_invoice(invoice, provider=self.provider)
        document = self.build_document(invoice)
        xml = serialize(document)

        xml_path = store_xml(invoice, self.provider, xml)
        generated_at = timezone.now().isoformat()

        credentials = EInvoiceProviderConfig.credentials_for(invoice.organization_id, self.provider)
        if not self.has_credentials(credentials):
            submission, _ = EInvoiceSubmission.transition(
                submission.pk,
                EInvoiceSubmissionStatus.PENDING,
                xml_path=xml_path,
                metadata={
                    "xmlPath": xml_path,
                    "xmlGeneratedAt": generated_at,
                    "note": self.xml_only_note,
                },
            )
            logger.info(f"[e-Invoice] XML-only submission for invoice {invoice.number} ({self.provider})")
            return submission

        # Path is persisted before the network call
        EInvoiceSubmission.transition(
            submission.pk,
            EInvoiceSubmissionStatus.PENDING,
            xml_path=xml_path,
            metadata={"xmlPath": xml_path, "xmlGeneratedAt": generated_at},
        )

        try:
            external_id = self.upload(invoice, xml, credentials)
        except ProviderRejectedUpload as e:
            logger.warning(f"⚠️ [e-Invoice] {self.provider} refused upload of {invoice.number}: {e.message}")
            submission, _ = EInvoiceSubmission.transition(
                submission.pk,
                EInvoiceSubmissionStatus.ERROR,
                error_message=e.message,
                metadata={"uploadErrors": e.errors},
            )
            return submission

        submission, _ = EInvoiceSubmission.transition(
            submission.pk,
            EInvoiceSubmissionStatus.ACCEPTED,
            external_id=external_id,
            metadata={"submittedAt": timezone.now().isoformat()},
        )
        logger.info(f"✅ [e-Invoice] Uploaded invoice {invoice.number} to {self.provider}: {external_id}")
        return submission

    def build_document(self, invoice: Invoice) -> InvoiceDocument:
        return build_document(invoice, customization_id=self.customization_id)

    @abstractmethod
    def has_credentials(self, credentials: dict[str, Any]) -> bool: ...

    @abstractmethod
    def upload(self, invoice: Invoice, xml: bytes, credentials: dict[str, Any]) -> str:
        """
        Send the document and return the provider's submission id.

        Raises:
            ProviderRejectedUpload: the provider answered with an error
            RateLimitExceededError: budget exhausted, nothing was sent
            ProviderTransportError: the call did not complete
        """


# ===============================================================================
# REGISTRY
# ===============================================================================


@dataclass(frozen=True)
class ProviderStrategy:
    key: str
    submission_handler: SubmissionHandler
    status_checker: StatusChecker


class ProviderRegistry:
    """Explicit provider key → strategy map, filled once at startup."""

    def __init__(self) -> None:
        self._strategies: dict[str, ProviderStrategy] = {}

    def register(self, key: str, handler: SubmissionHandler, checker: StatusChecker) -> ProviderStrategy:
        key = str(key)
        if key in self._strategies:
            raise ImproperlyConfigured(f"e-Invoice provider '{key}' is already registered")
        strategy = ProviderStrategy(key=key, submission_handler=handler, status_checker=checker)
        self._strategies[key] = strategy
        return strategy

    def get(self, key: str) -> ProviderStrategy:
        try:
            return self._strategies[str(key)]
        except KeyError:
            raise ProviderNotRegisteredError(
                f"No e-Invoice provider registered for '{key}' (known: {', '.join(self.keys()) or 'none'})"
            ) from None

    def keys(self) -> list[str]:
        return sorted(self._strategies)

    def __contains__(self, key: object) -> bool:
        return str(key) in self._strategies

    def __len__(self) -> int:
        return len(self._strategies)
