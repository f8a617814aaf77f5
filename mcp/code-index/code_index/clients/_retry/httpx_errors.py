"""Shared httpx error detection for retry logic.

Private module - import from _retry package.
"""

from __future__ import annotations

import httpx

__all__ = [
    'RETRYABLE_STATUS_CODES',
    'is_retryable_httpx_error',
    'is_retryable_status_error',
]

# 429: Rate limit exceeded
# 500/502/503/504: Provider or gateway failure
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def is_retryable_httpx_error(exc: BaseException) -> bool:
    """Check if exception is a transient transport error.

    Retries timeouts, network errors and RemoteProtocolError (server sent invalid
    HTTP). LocalProtocolError, ProxyError and UnsupportedProtocol are our bugs or
    config errors and propagate.
    """
    return isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError))


def is_retryable_status_error(exc: BaseException) -> bool:
    """Check if exception is an HTTP status error with a transient code."""
    return isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code in RETRYABLE_STATUS_CODES
