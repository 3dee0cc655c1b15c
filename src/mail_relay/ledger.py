# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""In-memory per-endpoint usage accounting.

The ledger records how many messages each endpoint delivered since the last
reset, which endpoints must not receive further work, and when the counters
were last zeroed. Endpoints are keyed by their ordinal position in the
currently loaded endpoint list.

To handle concurrent requests correctly, the ledger also tracks "in-flight"
reservations: slots taken by a planned dispatch whose outcome is not known
yet. Selection and distribution look at ``usage + in_flight`` so two requests
cannot both claim the last slot of an endpoint. Planning and reservation
happen under :attr:`UsageLedger.lock`; the outcome step releases the slot.

Example:
    Typical single-send cycle::

        async with ledger.lock:
            plan = select_one(ledger, endpoints)
            if plan:
                ledger.reserve(plan.ordinal)
        outcome = await deliverer.deliver(plan.address, email)
        apply_outcome(ledger, plan.ordinal, outcome)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from .logger import get_logger

DEFAULT_DAILY_LIMIT = 1400

logger = get_logger("UsageLedger")


@dataclass(frozen=True)
class EndpointUsage:
    """Point-in-time usage of one endpoint, used for stats payloads."""

    ordinal: int
    usage: int
    limit: int
    exhausted: bool

    @property
    def remaining(self) -> int:
        return self.limit - self.usage

    @property
    def percentage(self) -> str:
        return f"{(self.usage / self.limit) * 100:.1f}%"

    def to_dict(self) -> dict[str, Any]:
        return {
            "webapp": self.ordinal + 1,
            "usage": self.usage,
            "limit": self.limit,
            "percentage": self.percentage,
            "remaining": self.remaining,
            "is_limited": self.exhausted,
        }


class UsageLedger:
    """Per-endpoint send counts, exhausted markers and last reset time.

    All mutations go through :meth:`record_delivered`,
    :meth:`record_quota_exceeded`, :meth:`reserve`, :meth:`release` and
    :meth:`reset`. Counts never decrease except through a reset.

    Attributes:
        daily_limit: Maximum count any endpoint may reach before it is
            marked exhausted. Shared by all endpoints.
        usage: Delivered count per endpoint ordinal (absent means 0).
        exhausted: Endpoint ordinals that must not receive further work
            until the next reset.
        in_flight: Reserved but not yet classified dispatches per ordinal.
        last_reset: Timestamp of the last reset (local time).
        lock: Serializes planning and reservation across requests.
    """

    def __init__(self, daily_limit: int = DEFAULT_DAILY_LIMIT, *, now: datetime | None = None):
        if daily_limit <= 0:
            raise ValueError("daily_limit must be a positive integer")
        self.daily_limit = int(daily_limit)
        self.usage: dict[int, int] = {}
        self.exhausted: set[int] = set()
        self.in_flight: dict[int, int] = {}
        self.last_reset: datetime = now or datetime.now()
        self.lock = asyncio.Lock()

    @property
    def last_reset_date(self) -> date:
        return self.last_reset.date()

    # ------------------------------------------------------------------ reads
    def usage_of(self, ordinal: int) -> int:
        return self.usage.get(ordinal, 0)

    def in_flight_of(self, ordinal: int) -> int:
        return self.in_flight.get(ordinal, 0)

    def load(self, ordinal: int) -> int:
        """Delivered count plus reserved slots for ``ordinal``."""
        return self.usage_of(ordinal) + self.in_flight_of(ordinal)

    def remaining(self, ordinal: int) -> int:
        """Slots still available to new work on ``ordinal``."""
        return self.daily_limit - self.load(ordinal)

    def is_exhausted(self, ordinal: int) -> bool:
        return ordinal in self.exhausted

    def snapshot(self, endpoint_count: int = 0) -> list[EndpointUsage]:
        """Return usage by ordinal.

        Covers the first ``endpoint_count`` ordinals plus any other ordinal
        the ledger holds counts or markers for.
        """
        ordinals = sorted(set(range(endpoint_count)) | set(self.usage) | self.exhausted)
        return [
            EndpointUsage(
                ordinal=ordinal,
                usage=self.usage_of(ordinal),
                limit=self.daily_limit,
                exhausted=ordinal in self.exhausted,
            )
            for ordinal in ordinals
        ]

    # -------------------------------------------------------------- mutations
    def reserve(self, ordinal: int, count: int = 1) -> None:
        """Reserve ``count`` slots on ``ordinal`` for planned dispatches."""
        if count > 0:
            self.in_flight[ordinal] = self.in_flight_of(ordinal) + count

    def release(self, ordinal: int, count: int = 1) -> None:
        """Release reserved slots without counting a delivery."""
        left = self.in_flight_of(ordinal) - count
        if left > 0:
            self.in_flight[ordinal] = left
        else:
            self.in_flight.pop(ordinal, None)

    def record_delivered(self, ordinal: int) -> int:
        """Count one delivered message and release its reservation.

        Returns:
            The endpoint's usage after this delivery.
        """
        self.release(ordinal)
        new_usage = self.usage_of(ordinal) + 1
        self.usage[ordinal] = new_usage
        if new_usage >= self.daily_limit and ordinal not in self.exhausted:
            self.exhausted.add(ordinal)
            logger.warning(
                "WebApp #%d reached daily limit (%d/%d)", ordinal + 1, new_usage, self.daily_limit
            )
        logger.info(
            "WebApp #%d usage: %d/%d (%.1f%%)",
            ordinal + 1,
            new_usage,
            self.daily_limit,
            (new_usage / self.daily_limit) * 100,
        )
        return new_usage

    def record_quota_exceeded(self, ordinal: int) -> None:
        """Mark ``ordinal`` exhausted after the endpoint reported its quota as used up.

        Usage is left untouched: the message was not delivered.
        """
        self.release(ordinal)
        self.exhausted.add(ordinal)
        logger.warning(
            "WebApp #%d reported quota exceeded at local usage %d/%d",
            ordinal + 1,
            self.usage_of(ordinal),
            self.daily_limit,
        )

    def reset(self, now: datetime | None = None) -> None:
        """Clear usage and exhausted markers and stamp the reset time.

        In-flight reservations are kept: they belong to dispatches still
        running and are released by their outcomes.
        """
        self.usage.clear()
        self.exhausted.clear()
        self.last_reset = now or datetime.now()
        logger.info("Daily rate limits and usage counters reset")
