"""Strict Pydantic base model."""

from __future__ import annotations

import pydantic

__all__ = [
    'StrictModel',
]


class StrictModel(pydantic.BaseModel):
    """Base model for every record crossing a component boundary.

    Config:
    - extra='forbid': Unknown fields are rejected
    - strict=True: Values must already have the declared type
    - frozen=True: Blocks, records and snapshots are never mutated in place
    """

    model_config = pydantic.ConfigDict(
        extra='forbid',
        strict=True,
        frozen=True,
    )
