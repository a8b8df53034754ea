import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from errors import MonthFormatError

MIN_YEAR = 1900
MAX_YEAR = 2100

_MONTH_RE = re.compile(r"^([0-9]{4})-([0-9]{2})$")


@dataclass(frozen=True, order=True)
class Month:
    """A calendar month, ordered by (year, month). Persisted as ``YYYY-MM``."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise MonthFormatError("Month must be between 1 and 12")
        if not MIN_YEAR <= self.year <= MAX_YEAR:
            raise MonthFormatError(f"Year must be between {MIN_YEAR} and {MAX_YEAR}")

    @classmethod
    def parse(cls, value: str) -> "Month":
        match = _MONTH_RE.fullmatch(value) if isinstance(value, str) else None
        if not match:
            raise MonthFormatError(f"Invalid month {value!r}, expected YYYY-MM")
        return cls(int(match.group(1)), int(match.group(2)))

    @classmethod
    def from_date(cls, value: date) -> "Month":
        return cls(value.year, value.month)

    @classmethod
    def current(cls, timezone: Optional[str] = None) -> "Month":
        if timezone is None:
            from config import get_settings

            timezone = get_settings().timezone
        return cls.from_date(datetime.now(ZoneInfo(timezone)).date())

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def previous(self) -> "Month":
        if self.month == 1:
            return Month(self.year - 1, 12)
        return Month(self.year, self.month - 1)

    def next(self) -> "Month":
        if self.month == 12:
            return Month(self.year + 1, 1)
        return Month(self.year, self.month + 1)

    def is_before(self, other: "Month") -> bool:
        return self < other

    def is_after(self, other: "Month") -> bool:
        return self > other

    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    def days(self) -> int:
        if self.month == 12:
            following = date(self.year + 1, 1, 1)
        else:
            following = date(self.year, self.month + 1, 1)
        return (following - self.first_day()).days

    def last_day(self) -> date:
        return date(self.year, self.month, self.days())

    def day(self, day_of_month: int) -> date:
        # Clamp to the last day so the 31st lands on Feb 28/29, Apr 30, ...
        return date(self.year, self.month, min(day_of_month, self.days()))
