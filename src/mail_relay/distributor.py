# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Capacity-aware partitioning of a bulk batch across endpoints.

The heuristic walks the endpoints once, largest remaining capacity first,
giving each ``ceil(units_left / endpoints_left)`` units capped by its
remaining capacity. It approximates an even split in a single pass and is
not optimal: an endpoint visited late may get fewer units than it could
take when earlier ones already absorbed their rounded-up share.

Example:
    Planning a batch::

        plan = distribute(ledger, endpoints, ["a@x.io", "b@x.io", "c@x.io"])
        for assignment in plan.assignments:
            print(assignment.ordinal, len(assignment.units))
        print(plan.undistributed)
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from .ledger import UsageLedger

T = TypeVar("T")


@dataclass(frozen=True)
class Assignment(Generic[T]):
    """Contiguous slice of a batch assigned to one endpoint.

    Attributes:
        ordinal: Endpoint position in the loaded list (0-based).
        address: Endpoint URL.
        units: Assigned units, in input order.
        start: Index of the first assigned unit in the input batch.
        current_usage: Delivered count of the endpoint at planning time.
        remaining_capacity: Free slots of the endpoint at planning time.
    """

    ordinal: int
    address: str
    units: list[T]
    start: int
    current_usage: int
    remaining_capacity: int


@dataclass
class DistributionPlan(Generic[T]):
    """Result of :func:`distribute`.

    ``assignments`` cover a prefix of the batch; ``undistributed`` holds the
    units no endpoint could absorb.
    """

    assignments: list[Assignment[T]] = field(default_factory=list)
    undistributed: list[T] = field(default_factory=list)

    @property
    def assigned_count(self) -> int:
        return sum(len(a.units) for a in self.assignments)

    def __bool__(self) -> bool:
        return bool(self.assignments)


def distribute(ledger: UsageLedger, endpoints: Sequence[str], units: Sequence[T]) -> DistributionPlan[T]:
    """Split ``units`` across endpoints with remaining capacity.

    Every non-exhausted endpoint with ``daily_limit - load > 0`` is a
    candidate; no soft threshold applies. Candidates are visited by
    descending remaining capacity, ties by lowest ordinal. The ledger is not
    mutated.
    """
    candidates = [
        ordinal
        for ordinal in range(len(endpoints))
        if not ledger.is_exhausted(ordinal) and ledger.remaining(ordinal) > 0
    ]
    if not candidates:
        return DistributionPlan(undistributed=list(units))

    candidates.sort(key=lambda ordinal: (-ledger.remaining(ordinal), ordinal))

    plan: DistributionPlan[T] = DistributionPlan()
    cursor = 0
    total = len(units)
    for position, ordinal in enumerate(candidates):
        if cursor >= total:
            break
        units_left = total - cursor
        want = math.ceil(units_left / (len(candidates) - position))
        capacity = ledger.remaining(ordinal)
        count = min(want, capacity, units_left)
        if count <= 0:
            continue
        plan.assignments.append(
            Assignment(
                ordinal=ordinal,
                address=endpoints[ordinal],
                units=list(units[cursor:cursor + count]),
                start=cursor,
                current_usage=ledger.usage_of(ordinal),
                remaining_capacity=capacity,
            )
        )
        cursor += count

    plan.undistributed = list(units[cursor:])
    return plan
