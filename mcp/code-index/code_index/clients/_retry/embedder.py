"""Embedding provider retry and circuit breaker helpers.

Shared by the OpenAI-compatible and Ollama clients: both speak plain JSON over
httpx and fail the same ways.

Private module - import from _retry package.
"""

from __future__ import annotations

import logging

import circuitbreaker
import httpx
import tenacity

from code_index.clients._retry.httpx_errors import is_retryable_httpx_error, is_retryable_status_error

__all__ = [
    'embedder_breaker',
    'is_retryable_embedder_error',
    'log_embedder_retry',
]

logger = logging.getLogger(__name__)

# Circuit breaker - opens after consecutive failures, hard fails until recovery
EMBEDDER_FAILURE_THRESHOLD = 10
EMBEDDER_RECOVERY_TIMEOUT = 60


def is_retryable_embedder_error(exc: BaseException) -> bool:
    """Check if exception is a retryable transient error from an embedding provider.

    Retries on:
    - httpx transport errors (timeout, network issues)
    - HTTP 429 (rate limit)
    - HTTP 500/502/503/504 (server/provider errors)
    """
    return is_retryable_httpx_error(exc) or is_retryable_status_error(exc)


def log_embedder_retry(retry_state: tenacity.RetryCallState) -> None:
    """Log embedding retry attempt with exception details."""
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    if exc is None:
        return

    exc_name = type(exc).__name__
    exc_msg = str(exc)

    if isinstance(exc, httpx.HTTPStatusError):
        exc_msg = f'HTTP {exc.response.status_code}: {exc_msg}'

    logger.warning(f'[RETRY] Embedding attempt {retry_state.attempt_number} failed: {exc_name}: {exc_msg}')


def _embedder_circuit_filter(thrown_type: type, thrown_value: BaseException) -> bool:  # noqa: ARG001
    """Only count retryable errors toward circuit breaker."""
    return is_retryable_embedder_error(thrown_value)


embedder_breaker = circuitbreaker.CircuitBreaker(
    failure_threshold=EMBEDDER_FAILURE_THRESHOLD,
    recovery_timeout=EMBEDDER_RECOVERY_TIMEOUT,
    expected_exception=_embedder_circuit_filter,
    name='embedder',
)
