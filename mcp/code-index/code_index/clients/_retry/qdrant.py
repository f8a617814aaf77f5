"""Qdrant retry and circuit breaker helpers.

Every call the vector store retries is safe to repeat: upserts carry
deterministic point ids, deletes select by file path, and collection setup
treats 409 Conflict as "someone else already created it". qdrant_retry()
stacks the shared breaker over a tenacity policy named after the operation,
so retry logs say which call is struggling.

Private module - import from _retry package.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, cast

import circuitbreaker
import qdrant_client.http.exceptions
import tenacity

from code_index.clients._retry.httpx_errors import is_retryable_httpx_error

__all__ = [
    'is_already_exists_error',
    'is_retryable_qdrant_error',
    'log_qdrant_retry',
    'qdrant_breaker',
    'qdrant_retry',
]

logger = logging.getLogger(__name__)

type AsyncFn = Callable[..., Awaitable[Any]]

# 500 excluded: for Qdrant it usually means a bad request (wrong vector size), not a blip.
# 429 is what hosted clusters send when a write burst hits their rate limit.
QDRANT_TRANSIENT_STATUS_CODES = frozenset({408, 429, 502, 503, 504})
QDRANT_CONFLICT_STATUS_CODE = 409

QDRANT_ATTEMPTS = 3
QDRANT_FAILURE_THRESHOLD = 5
QDRANT_RECOVERY_TIMEOUT = 30


def _status_code(exc: BaseException) -> int | None:
    if isinstance(exc, qdrant_client.http.exceptions.UnexpectedResponse):
        return exc.status_code
    return None


def is_retryable_qdrant_error(exc: BaseException) -> bool:
    """Check if exception is a retryable transient error from Qdrant.

    qdrant-client raises ResponseHandlingException around httpx transport errors
    (underlying error in .source) and UnexpectedResponse for HTTP status errors.
    Local mode raises plain Python errors, which are never transient.
    """
    if isinstance(exc, qdrant_client.http.exceptions.ResponseHandlingException):
        return is_retryable_httpx_error(exc.source)
    return _status_code(exc) in QDRANT_TRANSIENT_STATUS_CODES


def is_already_exists_error(exc: BaseException) -> bool:
    """True when a create call lost a race with another process creating the same thing."""
    return _status_code(exc) == QDRANT_CONFLICT_STATUS_CODE


def log_qdrant_retry(operation: str, retry_state: tenacity.RetryCallState) -> None:
    """Log a failed Qdrant attempt before tenacity sleeps."""
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    if exc is None:
        return

    source_info = ''
    if isinstance(exc, qdrant_client.http.exceptions.ResponseHandlingException) and exc.source:
        source_info = f' (source: {type(exc.source).__name__}: {exc.source})'

    logger.warning(
        f'[RETRY] Qdrant {operation} attempt {retry_state.attempt_number}/{QDRANT_ATTEMPTS} failed: '
        f'{type(exc).__name__}: {exc}{source_info}'
    )


def _qdrant_circuit_filter(thrown_type: type, thrown_value: BaseException) -> bool:  # noqa: ARG001
    """Only count retryable errors toward circuit breaker."""
    return is_retryable_qdrant_error(thrown_value)


qdrant_breaker = circuitbreaker.CircuitBreaker(
    failure_threshold=QDRANT_FAILURE_THRESHOLD,
    recovery_timeout=QDRANT_RECOVERY_TIMEOUT,
    expected_exception=_qdrant_circuit_filter,
    name='qdrant',
)


def qdrant_retry[F: AsyncFn](operation: str) -> Callable[[F], F]:
    """Wrap an idempotent Qdrant call in the shared breaker and a bounded retry.

    The breaker sits outside the retry, so one exhausted operation counts as a
    single failure toward opening the circuit.
    """
    retrying = tenacity.retry(
        retry=tenacity.retry_if_exception(is_retryable_qdrant_error),
        stop=tenacity.stop_after_attempt(QDRANT_ATTEMPTS),
        wait=tenacity.wait_exponential(multiplier=0.5, max=5),
        before_sleep=functools.partial(log_qdrant_retry, operation),
        reraise=True,
    )

    def decorate(fn: F) -> F:
        return cast(F, qdrant_breaker(retrying(fn)))

    return decorate
