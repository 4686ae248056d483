"""
Provider API rate limiting for e-Invoice calls.

Each provider declares one or more independently windowed limits in settings
(see ``EINVOICE_RATE_LIMITS``), for example ANAF:
- global: 1000 calls per minute
- status: 100 status queries per upload per day

Counters live in the Django cache and are shared by every worker. They are
consumed with an atomic ``add`` + ``incr`` per fixed window; a call that
would exceed any limit is refused before it is made and every counter it
touched is rolled back.

Usage:
    guard = RateLimitGuard()
    guard.consume("anaf", ["global", "status"], key=upload_id)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any

from django.core.cache import cache
from django.utils import timezone

from .metrics import metrics
from .settings import einvoice_settings

logger = logging.getLogger(__name__)


class RateLimitExceededError(Exception):
    """Raised instead of calling a provider whose budget is exhausted."""

    def __init__(
        self,
        limit_name: str,
        retry_after_seconds: int,
        provider: str = "",
        current: int = 0,
        limit: int = 0,
    ):
        self.limit_name = limit_name
        self.retry_after_seconds = max(int(retry_after_seconds), 1)
        self.provider = provider
        self.current = current
        self.limit = limit

        super().__init__(
            f"Rate limit '{limit_name}' exhausted for {provider or 'provider'} "
            f"({current}/{limit}), retry after {self.retry_after_seconds}s"
        )


@dataclass(frozen=True)
class RateLimit:
    """One named limit: at most ``limit`` calls per ``window_seconds``."""

    name: str
    limit: int
    window_seconds: int
    per_key: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RateLimit:
        return cls(
            name=str(data["name"]),
            limit=int(data.get("limit", 0)),
            window_seconds=max(int(data.get("window_seconds", 60)), 1),
            per_key=bool(data.get("per_key", False)),
        )

    @property
    def enabled(self) -> bool:
        return self.limit > 0


@dataclass
class LimitStatus:
    """Snapshot of one counter after a consume or a status query."""

    provider: str
    name: str
    key: str | None
    current: int
    limit: int
    reset_in_seconds: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "name": self.name,
            "key": self.key,
            "current": self.current,
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_in_seconds": self.reset_in_seconds,
        }


class RateLimitGuard:
    """
    Shared, windowed call budgets per provider.

    The cache backend must implement ``incr`` atomically across processes
    (Redis, Memcached, LocMem within one process).
    """

    CACHE_PREFIX = "einvoice_ratelimit"
    CACHE_VERSION = 1

    def __init__(self, settings: Any = None):
        self._settings = settings or einvoice_settings

    def limits_for(self, provider: str) -> dict[str, RateLimit]:
        return {
            limit.name: limit
            for limit in (RateLimit.from_dict(raw) for raw in self._settings.get_rate_limits(provider))
        }

    def _window(self, limit: RateLimit) -> tuple[int, int]:
        """Current window index and seconds until it closes."""
        now = timezone.now().timestamp()
        index = int(now // limit.window_seconds)
        reset_in = math.ceil((index + 1) * limit.window_seconds - now)
        return index, max(reset_in, 1)

    def _cache_key(self, provider: str, limit: RateLimit, key: str | None, window_index: int) -> str:
        if limit.per_key and key:
            return f"{self.CACHE_PREFIX}:{provider}:{limit.name}:{key}:{window_index}"
        return f"{self.CACHE_PREFIX}:{provider}:{limit.name}:{window_index}"

    def _increment(self, cache_key: str, timeout: int) -> int:
        # add() is a no-op when the key exists, so concurrent workers never reset a live counter
        cache.add(cache_key, 0, timeout=timeout, version=self.CACHE_VERSION)
        try:
            return cache.incr(cache_key, 1, version=self.CACHE_VERSION)
        except ValueError:
            # Window expired between add() and incr()
            cache.add(cache_key, 0, timeout=timeout, version=self.CACHE_VERSION)
            return cache.incr(cache_key, 1, version=self.CACHE_VERSION)

    def _release(self, cache_key: str) -> None:
        try:
            cache.decr(cache_key, 1, version=self.CACHE_VERSION)
        except ValueError:
            pass  # window already expired, nothing to give back

    def consume(self, provider: str, names: list[str], key: str | None = None) -> list[LimitStatus]:
        """
        Take one unit from each named limit, all or nothing.

        Unknown or disabled limit names are ignored.

        Raises:
            RateLimitExceededError: naming the first exhausted limit
        """
        provider = str(provider)
        limits = self.limits_for(provider)
        consumed: list[str] = []
        statuses: list[LimitStatus] = []

        for name in names:
            limit = limits.get(name)
            if limit is None or not limit.enabled:
                continue

            window_index, reset_in = self._window(limit)
            cache_key = self._cache_key(provider, limit, key, window_index)
            current = self._increment(cache_key, timeout=reset_in + 1)

            if current > limit.limit:
                self._release(cache_key)
                for earlier in consumed:
                    self._release(earlier)
                metrics.record_rate_limited(provider, name)
                logger.warning(
                    f"⚠️ [Rate Limit] {provider}.{name} exhausted "
                    f"({limit.limit}/{limit.window_seconds}s, key={key}), retry in {reset_in}s"
                )
                raise RateLimitExceededError(
                    limit_name=name,
                    retry_after_seconds=reset_in,
                    provider=provider,
                    current=current - 1,
                    limit=limit.limit,
                )

            consumed.append(cache_key)
            statuses.append(
                LimitStatus(
                    provider=provider,
                    name=name,
                    key=key if limit.per_key else None,
                    current=current,
                    limit=limit.limit,
                    reset_in_seconds=reset_in,
                )
            )

        return statuses

    def get_status(self, provider: str, name: str, key: str | None = None) -> LimitStatus | None:
        """Read a counter without consuming it."""
        limit = self.limits_for(provider).get(name)
        if limit is None:
            return None
        window_index, reset_in = self._window(limit)
        cache_key = self._cache_key(provider, limit, key, window_index)
        return LimitStatus(
            provider=provider,
            name=name,
            key=key if limit.per_key else None,
            current=cache.get(cache_key, 0, version=self.CACHE_VERSION),
            limit=limit.limit,
            reset_in_seconds=reset_in,
        )

    def reset(self, provider: str, name: str, key: str | None = None) -> None:
        """Reset the current window of a counter (for testing or admin use)."""
        limit = self.limits_for(provider).get(name)
        if limit is None:
            return
        window_index, _ = self._window(limit)
        cache.delete(self._cache_key(provider, limit, key, window_index), version=self.CACHE_VERSION)
        logger.info(f"[Rate Limit] Reset {provider}.{name} (key={key})")


# Module-level guard instance
rate_limit_guard = RateLimitGuard()
