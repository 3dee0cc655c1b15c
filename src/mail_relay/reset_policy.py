# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Daily reset of the usage ledger at the local calendar day boundary."""

from __future__ import annotations

from datetime import datetime, time, timedelta

from .ledger import UsageLedger


class DailyResetPolicy:
    """Zero the ledger when the local calendar date changes.

    Called at the start of every entry point that reads or writes the
    ledger, so counters are never stale by more than one request.
    """

    def is_due(self, ledger: UsageLedger, now: datetime) -> bool:
        """Whether ``now`` falls on a different local date than the last reset."""
        return now.date() != ledger.last_reset_date

    def maybe_reset(self, ledger: UsageLedger, now: datetime) -> bool:
        """Reset ``ledger`` if the date changed since the last reset.

        Returns:
            True if a reset happened. Repeated calls on the same date are no-ops.
        """
        if not self.is_due(ledger, now):
            return False
        ledger.reset(now)
        return True

    @staticmethod
    def next_reset(now: datetime) -> datetime:
        """Return the next local midnight after ``now``."""
        return datetime.combine(now.date() + timedelta(days=1), time.min, tzinfo=now.tzinfo)
