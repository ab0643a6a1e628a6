"""Recurrence rules and period resolution.

A subactivity's ``frequency`` plus its free-form ``frequency_config`` (the
catalog's camelCase wire shape) is parsed once into a typed rule. The rule is
then expanded into the dated periods of a financial year:

    Monthly    12 periods, "April-2024" ... "March-2025"
    Quarterly  4 periods,  "Q1-2024-2025" ... "Q4-2024-2025"
    Yearly     1 period,   "2024-2025"
    Daily / Weekly / Hourly
               bucketed into the 12 monthly periods

One-time obligations do not go through ``resolve_periods``; they get a single
period from ``one_time_period``.

Everything here is pure: the same rule, reference date and financial year
always produce the same periods.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, ClassVar, Union

from app.core.errors import ValidationError
from app.models.enums import Frequency
from obligations.financial_year import (
    MONTH_NAMES,
    FinancialYear,
    days_in_month,
    month_bounds,
    month_period,
)

DEFAULT_TIME = time(9, 0)
DEFAULT_YEARLY_MONTH = 4
DEFAULT_GRACE_DAYS = 30

WEEKDAY_NAMES: tuple[str, ...] = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)

# "9:00 AM", "09:30pm", "17:45"
_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*([AaPp][Mm])?\s*$")


@dataclass(frozen=True)
class OneTimeRule:
    frequency: ClassVar[Frequency] = Frequency.ONE_TIME


@dataclass(frozen=True)
class HourlyRule:
    interval_hours: int = 1

    frequency: ClassVar[Frequency] = Frequency.HOURLY


@dataclass(frozen=True)
class DailyRule:
    time_of_day: time = DEFAULT_TIME

    frequency: ClassVar[Frequency] = Frequency.DAILY


@dataclass(frozen=True)
class WeeklyRule:
    weekdays: tuple[int, ...] = ()  # 0 = Monday
    time_of_day: time = DEFAULT_TIME

    frequency: ClassVar[Frequency] = Frequency.WEEKLY


@dataclass(frozen=True)
class MonthlyRule:
    day: int = 1
    time_of_day: time = DEFAULT_TIME

    frequency: ClassVar[Frequency] = Frequency.MONTHLY


@dataclass(frozen=True)
class QuarterlyRule:
    day: int = 1
    time_of_day: time = DEFAULT_TIME

    frequency: ClassVar[Frequency] = Frequency.QUARTERLY


@dataclass(frozen=True)
class YearlyRule:
    month: int = DEFAULT_YEARLY_MONTH
    day: int = 1
    time_of_day: time = DEFAULT_TIME

    frequency: ClassVar[Frequency] = Frequency.YEARLY


RecurrenceRule = Union[
    OneTimeRule,
    HourlyRule,
    DailyRule,
    WeeklyRule,
    MonthlyRule,
    QuarterlyRule,
    YearlyRule,
]


@dataclass(frozen=True)
class ResolvedPeriod:
    """One dated occurrence of a rule inside a financial year."""

    period: str
    due_date: datetime
    starts_on: date
    ends_on: date
    financial_year: str

    def contains(self, day: date) -> bool:
        return self.starts_on <= day <= self.ends_on


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_time_of_day(value: str | None, default: time = DEFAULT_TIME) -> time:
    """Parse ``"HH:MM AM/PM"`` or 24-hour ``"HH:MM"``.

    Anything that does not look like a clock time falls back to ``default``.
    """
    if not value:
        return default
    match = _TIME_RE.match(value)
    if not match:
        return default

    hours, minutes = int(match.group(1)), int(match.group(2))
    meridiem = (match.group(3) or "").upper()
    if minutes > 59:
        return default
    if meridiem:
        if not 1 <= hours <= 12:
            return default
        if meridiem == "PM" and hours != 12:
            hours += 12
        elif meridiem == "AM" and hours == 12:
            hours = 0
    elif hours > 23:
        return default
    return time(hours, minutes)


def parse_frequency(value: str | Frequency | None) -> Frequency:
    """Normalize a catalog frequency string. Missing values mean one-time."""
    if isinstance(value, Frequency):
        return value
    if value is None or not str(value).strip():
        return Frequency.NONE
    try:
        return Frequency(str(value).strip())
    except ValueError as e:
        raise ValidationError(f"Unknown frequency: {value!r}") from e


def parse_rule(
    frequency: str | Frequency | None,
    config: Mapping[str, Any] | None = None,
) -> RecurrenceRule:
    """Build the typed rule for a subactivity's frequency and config.

    A missing config yields the rule with defaults. A config with the wrong
    structure (non-object, non-numeric day, unknown month or weekday name,
    non-positive interval) raises ``ValidationError``.
    """
    freq = parse_frequency(frequency)
    if config is None:
        config = {}
    elif not isinstance(config, Mapping):
        raise ValidationError(
            f"frequency_config for {freq.value} must be an object, "
            f"got {type(config).__name__}"
        )

    if not freq.is_recurring:
        return OneTimeRule()
    if freq == Frequency.HOURLY:
        interval = _int_field(config, "hourlyInterval", 1)
        if interval < 1:
            raise ValidationError(f"hourlyInterval must be positive, got {interval}")
        return HourlyRule(interval_hours=interval)
    if freq == Frequency.DAILY:
        return DailyRule(time_of_day=_time_field(config, "dailyTime"))
    if freq == Frequency.WEEKLY:
        return WeeklyRule(
            weekdays=_weekdays_field(config, "weeklyDays"),
            time_of_day=_time_field(config, "weeklyTime"),
        )
    if freq == Frequency.MONTHLY:
        return MonthlyRule(
            day=_int_field(config, "monthlyDay", 1),
            time_of_day=_time_field(config, "monthlyTime"),
        )
    if freq == Frequency.QUARTERLY:
        # quarterlyMonths is stored by the catalog UI but the fiscal quarters
        # are fixed, so it is not read.
        return QuarterlyRule(
            day=_int_field(config, "quarterlyDay", 1),
            time_of_day=_time_field(config, "quarterlyTime"),
        )
    return YearlyRule(
        month=_month_field(config, "yearlyMonth", DEFAULT_YEARLY_MONTH),
        day=_int_field(config, "yearlyDate", 1),
        time_of_day=_time_field(config, "yearlyTime"),
    )


def _int_field(config: Mapping[str, Any], key: str, default: int) -> int:
    value = config.get(key)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValidationError(f"{key} must be a number, got {value!r}")


def _time_field(config: Mapping[str, Any], key: str) -> time:
    value = config.get(key)
    if value is None:
        return DEFAULT_TIME
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a time string, got {value!r}")
    return parse_time_of_day(value)


def _lookup_name(value: str, names: tuple[str, ...]) -> int | None:
    needle = value.strip().lower()
    for i, name in enumerate(names):
        if needle in (name.lower(), name[:3].lower()):
            return i
    return None


def _month_field(config: Mapping[str, Any], key: str, default: int) -> int:
    value = config.get(key)
    # Older catalog entries stored the month as a one-element list.
    if isinstance(value, list):
        if len(value) > 1:
            raise ValidationError(f"{key} must name a single month, got {value!r}")
        value = value[0] if value else None
    if value is None or value == "":
        return default

    if isinstance(value, str) and not value.strip().isdigit():
        index = _lookup_name(value, MONTH_NAMES)
        if index is None:
            raise ValidationError(f"{key} is not a month name: {value!r}")
        return index + 1

    month = _int_field({key: value}, key, default)
    if not 1 <= month <= 12:
        raise ValidationError(f"{key} must be between 1 and 12, got {month}")
    return month


def _weekdays_field(config: Mapping[str, Any], key: str) -> tuple[int, ...]:
    value = config.get(key)
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be a list of weekday names, got {value!r}")

    days: set[int] = set()
    for item in value:
        index = _lookup_name(item, WEEKDAY_NAMES) if isinstance(item, str) else None
        if index is None:
            raise ValidationError(f"{key} contains an unknown weekday: {item!r}")
        days.add(index)
    return tuple(sorted(days))


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def clamp_day(year: int, month: int, day: int) -> int:
    """Clamp ``day`` into ``1..days_in_month``."""
    return max(1, min(day, days_in_month(year, month)))


def _due(year: int, month: int, day: int, at: time) -> datetime:
    return datetime.combine(date(year, month, clamp_day(year, month, day)), at)


def _as_date(value: date | datetime | None) -> date:
    if value is None:
        return date.today()
    if isinstance(value, datetime):
        return value.date()
    return value


def _monthly(fy: FinancialYear, day: int, at: time) -> list[ResolvedPeriod]:
    periods = []
    for year, month in fy.months():
        first, last = month_bounds(year, month)
        periods.append(
            ResolvedPeriod(
                period=month_period(year, month),
                due_date=_due(year, month, day, at),
                starts_on=first,
                ends_on=last,
                financial_year=fy.label,
            )
        )
    return periods


def _quarterly(fy: FinancialYear, day: int, at: time) -> list[ResolvedPeriod]:
    months = list(fy.months())
    periods = []
    for quarter in range(4):
        (first_year, first_month), _, (last_year, last_month) = months[
            quarter * 3 : quarter * 3 + 3
        ]
        periods.append(
            ResolvedPeriod(
                period=f"Q{quarter + 1}-{fy.label}",
                due_date=_due(first_year, first_month, day, at),
                starts_on=date(first_year, first_month, 1),
                ends_on=month_bounds(last_year, last_month)[1],
                financial_year=fy.label,
            )
        )
    return periods


def resolve_periods(
    rule: RecurrenceRule,
    reference_date: date | datetime | None = None,
    financial_year: FinancialYear | None = None,
) -> list[ResolvedPeriod]:
    """Expand ``rule`` into its periods for one financial year.

    Args:
        rule: Parsed recurrence rule.
        reference_date: Picks the financial year when ``financial_year`` is
            not given. Defaults to today.
        financial_year: Explicit financial year to resolve.

    Returns:
        Periods in chronological order. Empty for one-time rules, which are
        handled by ``one_time_period``.
    """
    fy = financial_year or FinancialYear.containing(_as_date(reference_date))

    if isinstance(rule, OneTimeRule):
        return []
    if isinstance(rule, MonthlyRule):
        return _monthly(fy, rule.day, rule.time_of_day)
    if isinstance(rule, QuarterlyRule):
        return _quarterly(fy, rule.day, rule.time_of_day)
    if isinstance(rule, YearlyRule):
        year = fy.calendar_year(rule.month)
        return [
            ResolvedPeriod(
                period=fy.label,
                due_date=_due(year, rule.month, rule.day, rule.time_of_day),
                starts_on=fy.starts_on,
                ends_on=fy.ends_on,
                financial_year=fy.label,
            )
        ]
    if isinstance(rule, HourlyRule):
        # Sub-monthly rules are tracked as one obligation per month.
        return _monthly(fy, 1, DEFAULT_TIME)
    if isinstance(rule, (DailyRule, WeeklyRule)):
        return _monthly(fy, 1, rule.time_of_day)
    raise ValidationError(f"Unsupported recurrence rule: {rule!r}")


def current_period(
    rule: RecurrenceRule, reference: date | datetime | None = None
) -> ResolvedPeriod | None:
    """The period of ``rule`` that contains ``reference``, if any."""
    day = _as_date(reference)
    for resolved in resolve_periods(rule, financial_year=FinancialYear.containing(day)):
        if resolved.contains(day):
            return resolved
    return None


def one_time_period(
    reference: datetime | None = None, grace_days: int = DEFAULT_GRACE_DAYS
) -> ResolvedPeriod:
    """The single period of a one-time obligation created at ``reference``."""
    created = reference or datetime.now()
    due = created + timedelta(days=grace_days)
    return ResolvedPeriod(
        period=month_period(created.year, created.month),
        due_date=due,
        starts_on=created.date(),
        ends_on=due.date(),
        financial_year=FinancialYear.containing(created.date()).label,
    )
