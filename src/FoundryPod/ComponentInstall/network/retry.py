"""Network retry policy: Tenacity-based backoff for manifest and artifact fetches.

Retry strategy:
- **Retryable exceptions**: any ``httpx.TransportError`` (connect, read, protocol)
- **Retryable responses**: 429 and 5xx, surfaced as ``FetchError(retryable=True)``
- **Backoff**: exponential, starting at ``backoff_base`` and capped at ``backoff_max``
- **Bound**: ``max_attempts`` total attempts, then the last error is re-raised

Example:
    >>> policy = create_fetch_retry_policy(RetrySettings(max_attempts=3))
    >>> for attempt in policy:
    ...     with attempt:
    ...         response = client.get(url)
"""

from __future__ import annotations

import logging
import time
from typing import Callable

import httpx
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import FetchError
from ..settings import RetrySettings

logger = logging.getLogger("FoundryPod.ComponentInstall")

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def is_retryable_error(exc: BaseException) -> bool:
    """Return ``True`` for transport failures and retryable HTTP statuses."""

    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, FetchError):
        return exc.retryable
    return False


def create_fetch_retry_policy(
    settings: RetrySettings,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> Retrying:
    """Create the Tenacity retry loop used by :class:`ContentCache`.

    Args:
        settings: Attempt bound and backoff configuration.
        sleep: Sleep function, replaceable in tests.

    Returns:
        Configured ``Retrying`` object; use as ``for attempt in policy: with attempt: ...``.
    """

    return Retrying(
        stop=stop_after_attempt(settings.max_attempts),
        wait=wait_exponential(
            multiplier=settings.backoff_base,
            min=0,
            max=settings.backoff_max,
        ),
        retry=retry_if_exception(is_retryable_error),
        sleep=sleep,
        before_sleep=before_sleep_log(logger, logging.WARNING),
        # Re-raise original exception on final failure (don't wrap in RetryError)
        reraise=True,
    )


__all__ = ["RETRYABLE_STATUS_CODES", "is_retryable_error", "create_fetch_retry_policy"]
