"""Absence-day unit calculator.

A half-day (AM or PM) counts 0.5 units, a full day counts 1.0. Rows stored
without a period predate half-day support and count as full days.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional, Union

from time_manager.common.constants import (
    FULL_DAY_UNITS,
    HALF_DAY_UNITS,
    AbsencePeriod,
)

PeriodLike = Union[AbsencePeriod, str, None]


def unit_for_period(period: PeriodLike) -> Decimal:
    """Units charged for a single absence day."""
    if period is None:
        return FULL_DAY_UNITS
    value = AbsencePeriod(period)
    if value in (AbsencePeriod.AM, AbsencePeriod.PM):
        return HALF_DAY_UNITS
    return FULL_DAY_UNITS


def compute_units(periods: Optional[Iterable[PeriodLike]]) -> Decimal:
    """Sum the units of a sequence of day periods; an empty sequence is 0.

    >>> compute_units(["AM", "FULL_DAY", None])
    Decimal('2.5')
    """
    total = Decimal("0")
    for period in periods or ():
        total += unit_for_period(period)
    return total
