# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Delivery outcomes and their effect on the usage ledger.

A dispatch ends in exactly one of three outcomes:

- ``Delivered``: the endpoint accepted the message; usage is counted and the
  endpoint is exhausted once it reaches the daily limit.
- ``QuotaExceeded``: the endpoint itself reported its quota as used up; it
  is exhausted immediately and usage is left unchanged.
- ``OtherFailure``: transport or non-quota error; the ledger is untouched
  and the endpoint stays eligible.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .ledger import UsageLedger


@dataclass(frozen=True)
class Delivered:
    status: int | None = None


@dataclass(frozen=True)
class QuotaExceeded:
    detail: str = "quota exceeded"


@dataclass(frozen=True)
class OtherFailure:
    detail: str = "delivery failed"
    status: int | None = None


DeliveryOutcome = Union[Delivered, QuotaExceeded, OtherFailure]


def apply_outcome(ledger: UsageLedger, ordinal: int, outcome: DeliveryOutcome) -> int:
    """Update ``ledger`` for one classified dispatch to ``ordinal``.

    Always releases the slot reserved for the dispatch.

    Returns:
        The endpoint's usage after the outcome was applied.
    """
    if isinstance(outcome, Delivered):
        return ledger.record_delivered(ordinal)
    if isinstance(outcome, QuotaExceeded):
        ledger.record_quota_exceeded(ordinal)
    else:
        ledger.release(ordinal)
    return ledger.usage_of(ordinal)
