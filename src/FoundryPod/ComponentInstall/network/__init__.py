"""HTTP client construction and retry policies for component fetches."""

from .client import create_http_client
from .retry import RETRYABLE_STATUS_CODES, create_fetch_retry_policy, is_retryable_error

__all__ = [
    "create_http_client",
    "create_fetch_retry_policy",
    "is_retryable_error",
    "RETRYABLE_STATUS_CODES",
]
