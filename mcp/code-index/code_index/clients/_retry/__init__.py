"""Retry helpers for transient network errors across API clients.

Private submodule - not exported by the package.

Retry Policy
------------
- RETRY: timeouts, network errors, RemoteProtocolError, and transient HTTP
  status codes (429 and 5xx gateway failures for embedders; 408/429/502/503/504
  for Qdrant).
- PROPAGATE: bugs, config errors, or permanent failures (fail-fast).
- TOLERATE: Qdrant 409 Conflict on collection or index creation, which means
  another process created it first.

Client-Specific Notes
---------------------
- OpenAI-compatible and Ollama embedders: plain httpx, so HTTPStatusError is
  raised by response.raise_for_status().
- Qdrant (qdrant-client): wraps httpx in ResponseHandlingException. Check
  exc.source for the underlying error.
"""

from __future__ import annotations

from code_index.clients._retry.embedder import embedder_breaker, is_retryable_embedder_error, log_embedder_retry
from code_index.clients._retry.httpx_errors import is_retryable_httpx_error
from code_index.clients._retry.qdrant import (
    is_already_exists_error,
    is_retryable_qdrant_error,
    log_qdrant_retry,
    qdrant_breaker,
    qdrant_retry,
)

__all__ = [
    'embedder_breaker',
    'is_already_exists_error',
    'is_retryable_embedder_error',
    'is_retryable_httpx_error',
    'is_retryable_qdrant_error',
    'log_embedder_retry',
    'log_qdrant_retry',
    'qdrant_breaker',
    'qdrant_retry',
]
