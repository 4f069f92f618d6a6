"""
Budget cycle resolution.

A cycle is the half-open interval ``[start, end)`` between two consecutive
occurrences of a user's reset day. When the reset day does not exist in a
month (31 in February, 30 in February, 31 in April...), the boundary falls on
the last day of that month. The same clamping rule is used for every
boundary the application computes: explicit months, the current cycle, the
previous cycle archived by a rollover, and expense range filters.

Boundaries are naive datetimes at local midnight.
"""

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Tuple, Union

from exceptions import ValidationError

MIN_RESET_DAY = 1
MAX_RESET_DAY = 31

_MONTH_LABEL_RE = re.compile(r"^(\d{4})-(\d{2})$")


def to_local_naive(moment: Union[datetime, date]) -> datetime:
    """
    Normalize a timestamp to a naive local datetime.

    Aware datetimes are converted to local time before tzinfo is dropped;
    plain dates become local midnight.
    """
    if not isinstance(moment, datetime):
        return datetime(moment.year, moment.month, moment.day)
    if moment.tzinfo is not None:
        return moment.astimezone().replace(tzinfo=None)
    return moment


def parse_month_label(label: str) -> Tuple[int, int]:
    """
    Parse a ``YYYY-MM`` label.

    Raises:
        ValidationError: If the label is malformed or the month is out of range
    """
    if not isinstance(label, str):
        raise ValidationError("Month must be a YYYY-MM string", field="month")
    match = _MONTH_LABEL_RE.match(label.strip())
    if not match:
        raise ValidationError(f"Invalid month '{label}', expected YYYY-MM", field="month")
    year, month = int(match.group(1)), int(match.group(2))
    if year < 1 or not 1 <= month <= 12:
        raise ValidationError(f"Invalid month '{label}', expected YYYY-MM", field="month")
    return year, month


def format_month_label(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def shift_month(year: int, month: int, offset: int) -> Tuple[int, int]:
    """Move ``offset`` calendar months from (year, month)."""
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def cycle_boundary(year: int, month: int, reset_day: int) -> datetime:
    """Start of the cycle that opens in the given month, with the reset day clamped to the month's length."""
    last_day = calendar.monthrange(year, month)[1]
    return datetime(year, month, min(reset_day, last_day))


def _check_reset_day(reset_day: int) -> None:
    if isinstance(reset_day, bool) or not isinstance(reset_day, int) or not MIN_RESET_DAY <= reset_day <= MAX_RESET_DAY:
        raise ValidationError(
            f"Reset day must be an integer between {MIN_RESET_DAY} and {MAX_RESET_DAY}",
            field="reset_day",
            details={"value": reset_day}
        )


@dataclass(frozen=True)
class BudgetPeriod:
    """
    One budget cycle.

    Attributes:
        year: Calendar year of the month the cycle opens in
        month: Calendar month (1-based) the cycle opens in
        reset_day: Reset day the boundaries were derived from
        start: Inclusive start
        end: Exclusive end
    """

    year: int
    month: int
    reset_day: int
    start: datetime
    end: datetime

    @classmethod
    def for_month(cls, year: int, month: int, reset_day: int) -> "BudgetPeriod":
        _check_reset_day(reset_day)
        next_year, next_month = shift_month(year, month, 1)
        return cls(
            year=year,
            month=month,
            reset_day=reset_day,
            start=cycle_boundary(year, month, reset_day),
            end=cycle_boundary(next_year, next_month, reset_day),
        )

    @property
    def label(self) -> str:
        """``YYYY-MM`` label of the month the cycle opens in."""
        return format_month_label(self.year, self.month)

    def contains(self, moment: Union[datetime, date]) -> bool:
        return self.start <= to_local_naive(moment) < self.end

    def previous(self) -> "BudgetPeriod":
        year, month = shift_month(self.year, self.month, -1)
        return BudgetPeriod.for_month(year, month, self.reset_day)

    def next(self) -> "BudgetPeriod":
        year, month = shift_month(self.year, self.month, 1)
        return BudgetPeriod.for_month(year, month, self.reset_day)

    def __str__(self) -> str:
        return f"{self.label} [{self.start:%Y-%m-%d} .. {self.end:%Y-%m-%d})"


def resolve_period(
    now: Union[datetime, date],
    reset_day: int,
    month: Optional[str] = None
) -> BudgetPeriod:
    """
    Map (now, reset day, optional month label) to a budget cycle.

    With an explicit month the cycle opens in that month. Otherwise the
    cycle containing ``now`` is returned: it opened this month if the
    (clamped) reset day has been reached, else last month.

    Args:
        now: Current timestamp
        reset_day: User's reset day, 1-31
        month: Optional ``YYYY-MM`` label

    Returns:
        The resolved BudgetPeriod
    """
    if month is not None:
        year, month_number = parse_month_label(month)
        return BudgetPeriod.for_month(year, month_number, reset_day)

    _check_reset_day(reset_day)
    moment = to_local_naive(now)
    if moment >= cycle_boundary(moment.year, moment.month, reset_day):
        return BudgetPeriod.for_month(moment.year, moment.month, reset_day)
    year, month_number = shift_month(moment.year, moment.month, -1)
    return BudgetPeriod.for_month(year, month_number, reset_day)
