"""
XRechnung via ZRE, the German federal central invoice receipt platform.

Prod: https://xrechnung.bund.de
Test: https://xrechnung-test.bund.de

Auth is OAuth2 client credentials; tokens are cached in the Django cache
per client id until shortly before they expire.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

from django.core.cache import cache
from django.utils import timezone

from ..models import EInvoiceProvider, EInvoiceProviderConfig, EInvoiceSubmission
from ..quota import RateLimitGuard
from ..settings import EInvoiceEnvironment, einvoice_settings
from ..ubl.document import XRECHNUNG_CUSTOMIZATION_ID
from .base import (
    BaseSubmissionHandler,
    CheckContext,
    CheckOutcome,
    ProviderAuthenticationError,
    ProviderRejectedUpload,
    ProviderTransportError,
    StatusChecker,
)
from .http import BaseProviderClient

if TYPE_CHECKING:
    import requests

    from apps.billing.models import Invoice

logger = logging.getLogger(__name__)

IN_FLIGHT_STATES = frozenset({"received", "processing"})
VALIDATED_STATES = frozenset({"delivered", "accepted"})
REJECTED_STATES = frozenset({"rejected"})


def _json(response: requests.Response) -> dict[str, Any]:
    if not response.content:
        return {}
    try:
        data = response.json()
    except ValueError as e:
        raise ProviderTransportError(
            f"Unreadable ZRE response (HTTP {response.status_code})",
            provider=EInvoiceProvider.XRECHNUNG.value,
            status_code=response.status_code,
        ) from e
    return data if isinstance(data, dict) else {"data": data}


@dataclass
class SubmitResponse:
    success: bool
    invoice_id: str = ""
    message: str = ""
    raw_response: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_response(cls, response: requests.Response) -> SubmitResponse:
        data = _json(response)
        invoice_id = str(data.get("id") or data.get("invoiceId") or "")
        if 200 <= response.status_code < 300 and invoice_id:
            return cls(success=True, invoice_id=invoice_id, raw_response=data)
        message = data.get("message") or data.get("error") or f"ZRE returned HTTP {response.status_code}"
        return cls(success=False, message=str(message), raw_response=data)


@dataclass
class StatusResponse:
    status: str
    message: str = ""
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def is_accepted(self) -> bool:
        return self.status in VALIDATED_STATES

    @property
    def is_rejected(self) -> bool:
        return self.status in REJECTED_STATES

    @property
    def is_processing(self) -> bool:
        # Unknown states are treated as still processing
        return not self.is_accepted and not self.is_rejected

    @classmethod
    def from_response(cls, response: requests.Response) -> StatusResponse:
        data = _json(response)
        if response.status_code >= 400:
            raise ProviderTransportError(
                f"ZRE status query failed with HTTP {response.status_code}",
                provider=EInvoiceProvider.XRECHNUNG.value,
                status_code=response.status_code,
            )
        return cls(
            status=str(data.get("status") or "unknown").lower(),
            message=str(data.get("errorMessage") or data.get("rejectionReason") or ""),
            raw_response=data,
        )


class XRechnungClient(BaseProviderClient):
    """Client for the ZRE REST API."""

    PROVIDER: ClassVar[str] = EInvoiceProvider.XRECHNUNG.value
    TOKEN_CACHE_KEY: ClassVar[str] = "einvoice_zre_token_{env}_{client}"  # noqa: S105

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        environment: str | None = None,
        timeout: int | None = None,
        guard: RateLimitGuard | None = None,
        session: requests.Session | None = None,
    ):
        super().__init__(timeout=timeout, guard=guard, session=session)
        self.client_id = client_id
        self.client_secret = client_secret
        self.environment = EInvoiceEnvironment(environment or einvoice_settings.environment)

    @property
    def base_url(self) -> str:
        if self.environment == EInvoiceEnvironment.PRODUCTION:
            return "https://xrechnung.bund.de/api/v1"
        return "https://xrechnung-test.bund.de/api/v1"

    @property
    def token_url(self) -> str:
        return f"{self.base_url}/auth/token"

    # --- Authentication ---

    def _token_cache_key(self) -> str:
        client = hashlib.sha256(self.client_id.encode()).hexdigest()[:16]
        return self.TOKEN_CACHE_KEY.format(env=self.environment.value, client=client)

    def authenticate(self) -> str:
        """Return a bearer token, requesting a new one when the cached one is gone."""
        cache_key = self._token_cache_key()
        token = cache.get(cache_key)
        if token:
            return token

        response = self._request(
            "POST",
            self.token_url,
            operation="auth",
            data={
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
        )
        data = _json(response)
        token = data.get("access_token")
        if not token:
            reason = data.get("error_description") or data.get("error") or "Unknown error"
            raise ProviderAuthenticationError(f"ZRE OAuth2 authentication failed: {reason}", provider=self.PROVIDER)

        expires_in = int(data.get("expires_in", 3600))
        cache.set(cache_key, token, timeout=max(expires_in - 60, 1))
        return token

    def _authorized_request(self, method: str, url: str, *, operation: str, **kwargs: Any) -> requests.Response:
        """Call the API with the bearer token; a refused token is dropped from the cache."""
        try:
            return self._request(method, url, operation=operation, **kwargs)
        except ProviderAuthenticationError:
            cache.delete(self._token_cache_key())
            logger.warning(f"⚠️ [e-Invoice API] ZRE refused the token on {operation}, cleared cached token")
            raise

    # --- Document Operations ---

    def submit(self, xml: bytes) -> SubmitResponse:
        token = self.authenticate()
        self.guard.consume(self.PROVIDER, ["global"])
        response = self._authorized_request(
            "POST",
            f"{self.base_url}/invoices",
            operation="upload",
            data=xml,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/xml",
                "Accept": "application/json",
            },
        )
        result = SubmitResponse.from_response(response)
        if result.success:
            logger.info(f"[e-Invoice API] ZRE accepted upload: {result.invoice_id}")
        else:
            logger.warning(f"⚠️ [e-Invoice API] ZRE upload failed: {result.message}")
        return result

    def get_status(self, invoice_id: str) -> StatusResponse:
        token = self.authenticate()
        self.guard.consume(self.PROVIDER, ["global"])
        response = self._authorized_request(
            "GET",
            f"{self.base_url}/invoices/{invoice_id}/status",
            operation="status",
            headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
        )
        result = StatusResponse.from_response(response)
        logger.info(f"[e-Invoice API] ZRE status for {invoice_id}: {result.status}")
        return result


def _client_credentials(credentials: dict[str, Any]) -> tuple[str, str]:
    return str(credentials.get("client_id") or ""), str(credentials.get("client_secret") or "")


class XRechnungSubmissionHandler(BaseSubmissionHandler):
    provider: ClassVar[str] = EInvoiceProvider.XRECHNUNG.value
    xml_only_note: ClassVar[str] = "XML generated. No ZRE API credentials configured, upload manually."
    customization_id: ClassVar[str] = XRECHNUNG_CUSTOMIZATION_ID

    client_class = XRechnungClient

    def has_credentials(self, credentials: dict[str, Any]) -> bool:
        return all(_client_credentials(credentials))

    def upload(self, invoice: Invoice, xml: bytes, credentials: dict[str, Any]) -> str:
        client_id, client_secret = _client_credentials(credentials)
        with self.client_class(client_id, client_secret) as client:
            result = client.submit(xml)
        if not result.success:
            raise ProviderRejectedUpload(result.message, provider=self.provider)
        return result.invoice_id


class XRechnungStatusChecker(StatusChecker):
    provider: ClassVar[str] = EInvoiceProvider.XRECHNUNG.value

    client_class = XRechnungClient

    def check(self, submission: EInvoiceSubmission, context: CheckContext) -> CheckOutcome:
        credentials = EInvoiceProviderConfig.credentials_for(submission.invoice.organization_id, self.provider)
        client_id, client_secret = _client_credentials(credentials)
        if not (client_id and client_secret):
            raise ProviderAuthenticationError("No ZRE API credentials configured", provider=self.provider)

        with self.client_class(client_id, client_secret) as client:
            result = client.get_status(submission.external_id)

        checked = {"lastCheckedAt": timezone.now().isoformat(), "providerStatus": result.status}
        if result.is_accepted:
            return CheckOutcome.validated(**checked)
        if result.is_rejected:
            return CheckOutcome.rejected(result.message or "Rejected by ZRE", **checked)
        return CheckOutcome.in_flight(**checked)
