"""Calendar records for the samples of a block."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date


def date_to_ce(year: int, month: int, day: int) -> int:
    """Convert a calendar date to a linear day count.

    Day 1 is 0001-01-01 of the proleptic Gregorian calendar, so consecutive
    dates differ by exactly one.
    """
    return date(year, month, day).toordinal()


@dataclass(frozen=True)
class DateRecord:
    """Acquisition date of one sample, decomposed the way plugins see it."""

    ce: int
    year: int
    month: int
    day: int

    @classmethod
    def from_ymd(cls, year: int, month: int, day: int) -> "DateRecord":
        return cls(ce=date_to_ce(year, month, day), year=year, month=month, day=day)

    @classmethod
    def from_date(cls, value: date) -> "DateRecord":
        return cls.from_ymd(value.year, value.month, value.day)
