"""Mid-cycle plan change proration."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from planguard.exceptions import InvalidPeriod

_CENT = Decimal("0.01")
_SECONDS_PER_DAY = 86400


@dataclass(frozen=True, slots=True)
class Proration:
    """Credit for the unused part of the old plan and charge for the new one."""

    credit: Decimal
    charge: Decimal
    net: Decimal
    remaining_days: int

    def as_dict(self) -> dict[str, str | int]:
        return {
            "credit": str(self.credit),
            "charge": str(self.charge),
            "net": str(self.net),
            "remaining_days": self.remaining_days,
        }


def to_money(value: Decimal | int | float | str) -> Decimal:
    """Round to cents, half-up."""
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


def days_between(start: datetime, end: datetime) -> int:
    """Whole days from ``start`` to ``end``, partial days rounded up."""
    seconds = (end - start).total_seconds()
    return math.ceil(seconds / _SECONDS_PER_DAY)


def compute_proration(
    current_amount: Decimal | int | str,
    new_amount: Decimal | int | str,
    period_start: datetime,
    period_end: datetime,
    now: datetime,
) -> Proration:
    """Prorate a switch from ``current_amount`` to ``new_amount`` at ``now``.

    Amounts are per full billing period. Credit and charge are each rounded to
    cents before the net is taken, so ``net == charge - credit`` holds exactly.

    Raises:
        InvalidPeriod: the period does not span at least one day.
    """
    total_days = days_between(period_start, period_end)
    if total_days <= 0:
        raise InvalidPeriod(
            period_start=period_start.isoformat(), period_end=period_end.isoformat()
        )

    zero = to_money(0)
    if now >= period_end:
        return Proration(credit=zero, charge=zero, net=zero, remaining_days=0)

    # A "now" before the period started cannot credit more than the whole period
    remaining_days = min(total_days, max(0, days_between(now, period_end)))

    current = Decimal(str(current_amount))
    new = Decimal(str(new_amount))
    credit = to_money(current * remaining_days / total_days)
    charge = to_money(new * remaining_days / total_days)
    return Proration(
        credit=credit,
        charge=charge,
        net=charge - credit,
        remaining_days=remaining_days,
    )
