"""Indian financial-year calendar (April 1 to March 31).

Pure helpers with no I/O. Every period label and due date in the timeline
pipeline is computed relative to this calendar rather than the Gregorian
year: April-December belong to the FY start year, January-March to the FY
end year.
"""

from __future__ import annotations

import calendar
import re
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date

from app.core.errors import ValidationError

FISCAL_START_MONTH = 4

MONTH_NAMES: tuple[str, ...] = tuple(calendar.month_name[1:])

_LABEL_RE = re.compile(r"^\s*(\d{4})\s*-\s*(\d{4})\s*$")


@dataclass(frozen=True, order=True)
class FinancialYear:
    """A fiscal year identified by the calendar year in which it starts."""

    start_year: int

    @classmethod
    def containing(cls, day: date) -> FinancialYear:
        """Return the financial year that contains ``day``."""
        if day.month >= FISCAL_START_MONTH:
            return cls(day.year)
        return cls(day.year - 1)

    @classmethod
    def parse(cls, label: str) -> FinancialYear:
        """Parse a label such as ``"2024-2025"``.

        Raises:
            ValidationError: If the label is malformed or the two years are
                not consecutive.
        """
        match = _LABEL_RE.match(label or "")
        if not match:
            raise ValidationError(f"Invalid financial year: {label!r}")
        start, end = int(match.group(1)), int(match.group(2))
        if end != start + 1:
            raise ValidationError(
                f"Invalid financial year: {label!r} (end year must follow start year)"
            )
        return cls(start)

    @property
    def end_year(self) -> int:
        return self.start_year + 1

    @property
    def label(self) -> str:
        return f"{self.start_year}-{self.end_year}"

    @property
    def starts_on(self) -> date:
        return date(self.start_year, FISCAL_START_MONTH, 1)

    @property
    def ends_on(self) -> date:
        return date(self.end_year, FISCAL_START_MONTH - 1, 31)

    def contains(self, day: date) -> bool:
        return self.starts_on <= day <= self.ends_on

    def calendar_year(self, month: int) -> int:
        """Calendar year in which ``month`` (1-12) falls inside this FY."""
        return self.start_year if month >= FISCAL_START_MONTH else self.end_year

    def months(self) -> Iterator[tuple[int, int]]:
        """Yield ``(calendar_year, month)`` for April through March."""
        for offset in range(12):
            month = (FISCAL_START_MONTH - 1 + offset) % 12 + 1
            yield self.calendar_year(month), month

    def previous(self) -> FinancialYear:
        return FinancialYear(self.start_year - 1)

    def next(self) -> FinancialYear:
        return FinancialYear(self.start_year + 1)

    def __str__(self) -> str:
        return self.label


def month_period(year: int, month: int) -> str:
    """Period label for a calendar month, e.g. ``"April-2024"``."""
    return f"{MONTH_NAMES[month - 1]}-{year}"


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """First and last day of a calendar month."""
    return date(year, month, 1), date(year, month, days_in_month(year, month))
