"""Token-budget batching for embedding requests.

Private module. Token counts are estimated as ceil(len / 4): close enough for
staying under provider limits without pulling in a tokenizer.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

__all__ = [
    'MAX_BATCH_TOKENS',
    'MAX_ITEM_TOKENS',
    'estimate_tokens',
    'pack_token_batches',
]

logger = logging.getLogger(__name__)

MAX_BATCH_TOKENS = 100_000
MAX_ITEM_TOKENS = 8191


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def pack_token_batches(
    texts: Sequence[str],
    *,
    max_batch_tokens: int = MAX_BATCH_TOKENS,
    max_item_tokens: int = MAX_ITEM_TOKENS,
) -> list[list[int]]:
    """Group text indices into request batches under the token budget.

    Items over max_item_tokens are left out of every batch (logged), so callers
    see None at those positions. Order is preserved within and across batches.
    """
    batches: list[list[int]] = []
    current: list[int] = []
    current_tokens = 0

    for index, text in enumerate(texts):
        tokens = estimate_tokens(text)
        if tokens > max_item_tokens:
            logger.warning(
                f'[EMBED] Text at index {index} exceeds maximum token limit ({tokens} > {max_item_tokens}). Skipping.'
            )
            continue
        if current and current_tokens + tokens > max_batch_tokens:
            batches.append(current)
            current = []
            current_tokens = 0
        current.append(index)
        current_tokens += tokens

    if current:
        batches.append(current)
    return batches
