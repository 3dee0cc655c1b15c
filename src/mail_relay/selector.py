# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Least-used endpoint selection for single sends."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from .ledger import UsageLedger

DEFAULT_SOFT_THRESHOLD = 0.9


@dataclass(frozen=True)
class SelectionPlan:
    """Endpoint chosen for one message.

    Attributes:
        ordinal: Position of the endpoint in the loaded list (0-based).
        address: Endpoint URL.
        current_usage: Delivered count before this message is counted.
    """

    ordinal: int
    address: str
    current_usage: int


def select_one(
    ledger: UsageLedger,
    endpoints: Sequence[str],
    soft_threshold: float = DEFAULT_SOFT_THRESHOLD,
) -> SelectionPlan | None:
    """Pick the least loaded endpoint that is below the soft threshold.

    Endpoints that are exhausted, or whose load is not strictly below
    ``daily_limit * soft_threshold``, are skipped so a near-full endpoint
    keeps some headroom. Ties go to the lowest ordinal. The ledger is not
    mutated.

    Args:
        ledger: Usage accounting to read from.
        endpoints: Endpoint addresses; the index is the ordinal.
        soft_threshold: Fraction of the daily limit above which an endpoint
            is not offered new single sends.

    Returns:
        The selected endpoint, or None when no endpoint has capacity.
    """
    ceiling = ledger.daily_limit * soft_threshold
    candidates = [
        ordinal
        for ordinal in range(len(endpoints))
        if not ledger.is_exhausted(ordinal) and ledger.load(ordinal) < ceiling
    ]
    if not candidates:
        return None

    chosen = min(candidates, key=lambda ordinal: (ledger.load(ordinal), ordinal))
    return SelectionPlan(
        ordinal=chosen,
        address=endpoints[chosen],
        current_usage=ledger.usage_of(chosen),
    )
