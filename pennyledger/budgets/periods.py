"""
Budget Period Windows

A budget's spend is measured over the window of its period type that
contains the reference date:

    weekly   Sunday .. Saturday
    monthly  1st .. last day of the month
    yearly   Jan 1 .. Dec 31

Windows are naive local datetimes from 00:00:00.000 on the first day to
23:59:59.999 on the last. Next/previous windows shift the reference by one
period and re-derive, so the window rules live in one function only.
"""

import calendar
from datetime import date, datetime, time, timedelta
from typing import NamedTuple, Optional, Union

from pennyledger.errors import ValidationError
from pennyledger.models.ledger import PeriodType

DateInput = Union[str, date, datetime, None]

_END_OF_DAY = time(23, 59, 59, 999000)


class PeriodWindow(NamedTuple):
    """Inclusive [start, end] of one budget period."""
    start: datetime
    end: datetime

    @property
    def start_date(self) -> str:
        return self.start.date().isoformat()

    @property
    def end_date(self) -> str:
        return self.end.date().isoformat()

    def contains(self, moment: Union[date, datetime]) -> bool:
        if not isinstance(moment, datetime):
            moment = datetime.combine(moment, time.min)
        return self.start <= moment <= self.end


def _period_type(period_type: Union[str, PeriodType]) -> PeriodType:
    try:
        return PeriodType(period_type)
    except ValueError:
        raise ValidationError("invalid_period_type")


def to_date(reference: DateInput) -> date:
    """Reference date as a calendar date; None means today."""
    if reference is None:
        return date.today()
    if isinstance(reference, datetime):
        return reference.date()
    if isinstance(reference, date):
        return reference
    try:
        return date.fromisoformat(reference[:10])
    except ValueError:
        raise ValidationError("invalid_date")


def _add_months(day: date, months: int) -> date:
    month_index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def get_current_period_dates(
    period_type: Union[str, PeriodType],
    reference: DateInput = None,
) -> PeriodWindow:
    """
    Window of the given period type containing the reference date.

    Raises:
        ValidationError: invalid_period_type
    """
    kind = _period_type(period_type)
    day = to_date(reference)

    if kind == PeriodType.WEEKLY:
        # Python counts Monday as 0; the week here starts on Sunday
        days_since_sunday = (day.weekday() + 1) % 7
        first = day - timedelta(days=days_since_sunday)
        last = first + timedelta(days=6)
    elif kind == PeriodType.MONTHLY:
        first = day.replace(day=1)
        last = day.replace(day=calendar.monthrange(day.year, day.month)[1])
    else:
        first = date(day.year, 1, 1)
        last = date(day.year, 12, 31)

    return PeriodWindow(
        start=datetime.combine(first, time.min),
        end=datetime.combine(last, _END_OF_DAY),
    )


def _shift(kind: PeriodType, day: date, steps: int) -> date:
    if kind == PeriodType.WEEKLY:
        return day + timedelta(days=7 * steps)
    if kind == PeriodType.MONTHLY:
        return _add_months(day, steps)
    return _add_months(day, 12 * steps)


def get_next_period_dates(
    period_type: Union[str, PeriodType],
    reference: DateInput = None,
) -> PeriodWindow:
    """Window following the one that contains the reference date."""
    kind = _period_type(period_type)
    return get_current_period_dates(kind, _shift(kind, to_date(reference), 1))


def get_previous_period_dates(
    period_type: Union[str, PeriodType],
    reference: DateInput = None,
) -> PeriodWindow:
    """Window preceding the one that contains the reference date."""
    kind = _period_type(period_type)
    return get_current_period_dates(kind, _shift(kind, to_date(reference), -1))


def current_month(reference: Optional[DateInput] = None) -> str:
    """Month of the reference date as "YYYY-MM"."""
    day = to_date(reference)
    return f"{day.year:04d}-{day.month:02d}"
