"""
ANAF e-Factura (Romania) provider.

API reference:
- https://mfinante.gov.ro/web/efactura/informatii-tehnice

Both endpoints answer with small XML documents:

    <header ExecutionStatus="0" index_incarcare="5001130147"/>
    <header stare="ok" id_descarcare="3001474425"/>
    <header ExecutionStatus="1"><Errors errorMessage="..."/></header>
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, ClassVar

from django.utils import timezone
from lxml import etree

from ..models import EInvoiceProvider, EInvoiceProviderConfig, EInvoiceSubmission
from ..quota import RateLimitGuard
from ..settings import einvoice_settings
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

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True)


class AnafEnvironment(StrEnum):
    """ANAF API environment."""

    TEST = "test"
    PRODUCTION = "prod"

    @property
    def base_url(self) -> str:
        return f"https://api.anaf.ro/{self.value}/FCTEL/rest"


class AnafState(StrEnum):
    """Values of ``stare`` in the status response."""

    OK = "ok"
    NOK = "nok"
    PROCESSING = "in prelucrare"
    XML_ERRORS = "XML cu erori nepreluat de sistem"


def _parse_header(content: bytes) -> etree._Element:
    try:
        return etree.fromstring(content, parser=_PARSER)
    except etree.XMLSyntaxError as e:
        raise ProviderTransportError(
            f"Unreadable ANAF response: {e}", provider=EInvoiceProvider.ANAF.value
        ) from e


def _collect_errors(root: etree._Element) -> list[str]:
    return [
        element.get("errorMessage", "")
        for element in root.iter()
        if isinstance(element.tag, str) and etree.QName(element).localname == "Errors"
    ]


@dataclass
class UploadResponse:
    """Response from the upload endpoint."""

    success: bool
    upload_index: str = ""  # index_incarcare
    errors: list[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        return "; ".join(self.errors) if self.errors else ""

    @classmethod
    def from_response(cls, response: requests.Response) -> UploadResponse:
        root = _parse_header(response.content)
        errors = _collect_errors(root)
        upload_index = root.get("index_incarcare", "")

        if root.get("ExecutionStatus") == "1" or errors or not upload_index:
            return cls(success=False, errors=errors or [f"HTTP {response.status_code}: upload not indexed"])
        return cls(success=True, upload_index=upload_index)


@dataclass
class StatusResponse:
    """Response from the stareMesaj endpoint."""

    state: str
    download_id: str = ""  # id_descarcare
    errors: list[str] = field(default_factory=list)

    @property
    def is_accepted(self) -> bool:
        return self.state == AnafState.OK

    @property
    def is_rejected(self) -> bool:
        if self.state in (AnafState.NOK, AnafState.XML_ERRORS):
            return True
        # A bare Errors element means ANAF refused the lookup itself
        return not self.state and bool(self.errors)

    @property
    def is_processing(self) -> bool:
        return not self.is_accepted and not self.is_rejected

    @property
    def message(self) -> str:
        if self.errors:
            return "; ".join(self.errors)
        return f"ANAF status: {self.state}"

    @classmethod
    def from_response(cls, response: requests.Response) -> StatusResponse:
        root = _parse_header(response.content)
        return cls(
            state=root.get("stare", ""),
            download_id=root.get("id_descarcare", ""),
            errors=_collect_errors(root),
        )


class AnafClient(BaseProviderClient):
    """
    Client for the ANAF e-Factura REST API.

    Every call consumes the provider's ``global`` budget; status queries also
    consume the per-upload ``status`` budget.
    """

    PROVIDER: ClassVar[str] = EInvoiceProvider.ANAF.value

    def __init__(
        self,
        access_token: str,
        *,
        environment: AnafEnvironment | str | None = None,
        timeout: int | None = None,
        guard: RateLimitGuard | None = None,
        session: requests.Session | None = None,
    ):
        super().__init__(timeout=timeout, guard=guard, session=session)
        self.access_token = access_token
        self.environment = AnafEnvironment(environment or einvoice_settings.environment)

    @property
    def base_url(self) -> str:
        return self.environment.base_url

    def upload(self, xml: bytes, *, cif: str, credit_note: bool = False) -> UploadResponse:
        """
        Upload an invoice (standard=UBL) or credit note (standard=CN).

        Args:
            xml: Serialized UBL document
            cif: Seller CUI, numeric, without the 'RO' prefix
        """
        self.guard.consume(self.PROVIDER, ["global"])
        response = self._request(
            "POST",
            f"{self.base_url}/upload",
            operation="upload",
            params={"standard": "CN" if credit_note else "UBL", "cif": cif},
            data=xml,
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Content-Type": "text/plain",
            },
        )
        result = UploadResponse.from_response(response)
        if result.success:
            logger.info(f"[e-Invoice API] ANAF upload indexed: {result.upload_index}")
        else:
            logger.warning(f"⚠️ [e-Invoice API] ANAF upload failed: {result.errors}")
        return result

    def get_status(self, upload_index: str) -> StatusResponse:
        self.guard.consume(self.PROVIDER, ["global", "status"], key=upload_index)
        response = self._request(
            "GET",
            f"{self.base_url}/stareMesaj",
            operation="status",
            params={"id_incarcare": upload_index},
            headers={"Authorization": f"Bearer {self.access_token}"},
        )
        result = StatusResponse.from_response(response)
        logger.info(f"[e-Invoice API] ANAF status for {upload_index}: {result.state or result.errors}")
        return result


def _access_token(credentials: dict[str, Any]) -> str:
    return str(credentials.get("access_token") or "")


class AnafSubmissionHandler(BaseSubmissionHandler):
    provider: ClassVar[str] = EInvoiceProvider.ANAF.value
    xml_only_note: ClassVar[str] = "XML generated. No ANAF access token configured, upload manually."

    client_class = AnafClient

    def has_credentials(self, credentials: dict[str, Any]) -> bool:
        return bool(_access_token(credentials))

    def upload(self, invoice: Invoice, xml: bytes, credentials: dict[str, Any]) -> str:
        with self.client_class(_access_token(credentials)) as client:
            result = client.upload(
                xml,
                cif=invoice.organization.numeric_tax_id,
                credit_note=invoice.is_credit_note,
            )
        if not result.success:
            raise ProviderRejectedUpload(result.message, provider=self.provider, errors=result.errors)
        return result.upload_index


class AnafStatusChecker(StatusChecker):
    provider: ClassVar[str] = EInvoiceProvider.ANAF.value

    client_class = AnafClient

    def check(self, submission: EInvoiceSubmission, context: CheckContext) -> CheckOutcome:
        credentials = EInvoiceProviderConfig.credentials_for(submission.invoice.organization_id, self.provider)
        token = _access_token(credentials)
        if not token:
            raise ProviderAuthenticationError("No ANAF access token configured", provider=self.provider)

        with self.client_class(token) as client:
            result = client.get_status(submission.external_id)

        checked = {"lastCheckedAt": timezone.now().isoformat(), "providerStatus": result.state}
        if result.is_accepted:
            return CheckOutcome.validated(downloadId=result.download_id, **checked)
        if result.is_rejected:
            return CheckOutcome.rejected(result.message, downloadId=result.download_id, **checked)
        return CheckOutcome.in_flight(**checked)
