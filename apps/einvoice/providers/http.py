"""
HTTP plumbing shared by provider API clients.

Provider clients never sleep or retry in-process. A throttled call raises
``RateLimitExceededError`` carrying the provider's ``Retry-After`` and a
failed call raises ``ProviderTransportError``; the retry scheduler decides
when to try again.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar

import requests

from ..metrics import metrics
from ..quota import RateLimitExceededError, RateLimitGuard, rate_limit_guard
from ..settings import einvoice_settings
from .base import ProviderAuthenticationError, ProviderTransportError

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 60


def parse_retry_after(response: requests.Response, default: int = DEFAULT_RETRY_AFTER_SECONDS) -> int:
    value = response.headers.get("Retry-After", "")
    try:
        return max(int(value), 1)
    except (TypeError, ValueError):
        return default


class BaseProviderClient:
    """
    Session owner for one provider API.

    Usage:
        with AnafClient(access_token) as client:
            response = client.upload(xml, cif="12345678")
    """

    PROVIDER: ClassVar[str] = ""
    USER_AGENT: ClassVar[str] = "einvoice-platform/0.4"

    def __init__(
        self,
        *,
        timeout: int | None = None,
        guard: RateLimitGuard | None = None,
        session: requests.Session | None = None,
    ):
        self.timeout = timeout or einvoice_settings.http_timeout
        self.guard = guard or rate_limit_guard
        self._session = session

    @property
    def session(self) -> requests.Session:
        """Get or create HTTP session."""
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update({"User-Agent": self.USER_AGENT})
        return self._session

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self) -> BaseProviderClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def _request(self, method: str, url: str, *, operation: str, **kwargs: Any) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)

        with metrics.time_api_request(self.PROVIDER, operation):
            try:
                response = self.session.request(method, url, **kwargs)
            except requests.Timeout as e:
                logger.warning(f"⚠️ [e-Invoice API] {self.PROVIDER}.{operation} timed out after {self.timeout}s")
                raise ProviderTransportError(
                    f"{self.PROVIDER} {operation} timed out after {self.timeout}s", provider=self.PROVIDER
                ) from e
            except requests.RequestException as e:
                logger.warning(f"⚠️ [e-Invoice API] {self.PROVIDER}.{operation} failed: {e}")
                raise ProviderTransportError(
                    f"{self.PROVIDER} {operation} failed: {e}", provider=self.PROVIDER
                ) from e

        if response.status_code == 429:
            retry_after = parse_retry_after(response)
            metrics.record_rate_limited(self.PROVIDER, "http_429")
            logger.warning(f"⚠️ [e-Invoice API] {self.PROVIDER}.{operation} throttled, retry after {retry_after}s")
            raise RateLimitExceededError(
                limit_name="http_429",
                retry_after_seconds=retry_after,
                provider=self.PROVIDER,
            )

        if response.status_code in (401, 403):
            raise ProviderAuthenticationError(
                f"{self.PROVIDER} refused credentials (HTTP {response.status_code})",
                provider=self.PROVIDER,
                status_code=response.status_code,
            )

        if response.status_code >= 500:
            raise ProviderTransportError(
                f"{self.PROVIDER} {operation} failed with HTTP {response.status_code}: {response.text[:200]}",
                provider=self.PROVIDER,
                status_code=response.status_code,
            )

        return response
