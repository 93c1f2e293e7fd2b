import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings

_MONTH_RE = re.compile(r"^\s*(\d{4})[-/.](\d{1,2})\s*$")


@dataclass(frozen=True)
class Period:
    slug: str
    start: Optional[datetime]
    end: Optional[datetime]

    @property
    def bounded(self) -> bool:
        return self.start is not None or self.end is not None


def local_today() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def local_now() -> datetime:
    return datetime.now(ZoneInfo(get_settings().timezone)).replace(tzinfo=None)


def day_start(d: date) -> datetime:
    return datetime.combine(d, time.min)


def day_end(d: date) -> datetime:
    return datetime.combine(d, time.max)


def month_end_date(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def parse_month(value: str) -> tuple[int, int]:
    """Parse ``YYYY-MM`` (also ``/`` or ``.`` as separator) into (year, month)."""
    match = _MONTH_RE.match(value or "")
    if not match:
        raise ValueError("Month must be formatted as YYYY-MM, YYYY/MM or YYYY.MM")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValueError("Month must be between 1 and 12")
    if not date.min.year <= year <= date.max.year:
        raise ValueError(
            f"Year must be between {date.min.year} and {date.max.year}"
        )
    return year, month


def format_month(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def month_period(year: int, month: int) -> Period:
    first = date(year, month, 1)
    last = month_end_date(year, month)
    return Period(format_month(year, month), day_start(first), day_end(last))


def year_period(year: int) -> Period:
    return Period(str(year), day_start(date(year, 1, 1)), day_end(date(year, 12, 31)))


def all_time() -> Period:
    return Period("all", None, None)


def resolve_month(value: Optional[str], *, today: Optional[date] = None) -> str:
    """Normalise a month query value, defaulting to the current local month."""
    if not value:
        today = today or local_today()
        return format_month(today.year, today.month)
    year, month = parse_month(value)
    return format_month(year, month)
