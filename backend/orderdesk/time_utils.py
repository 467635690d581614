from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DD" is read as midnight UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


# =============================================================================
# QUARTERS (reward periods)
# =============================================================================

@dataclass(frozen=True)
class QuarterInfo:
    quarter: int
    year: int
    start: datetime
    end: datetime  # exclusive

    @property
    def label(self) -> str:
        return format_quarter_label(self.quarter, self.year)


def validate_quarter(quarter: int, year: int) -> None:
    if quarter not in (1, 2, 3, 4):
        raise ValueError("Quarter must be between 1 and 4")
    if year < 2000 or year > 9999:
        raise ValueError("Year out of range")


def quarter_date_range(quarter: int, year: int) -> tuple[datetime, datetime]:
    """
    Half-open [start, end) UTC range covering a calendar quarter.
    """
    validate_quarter(quarter, year)
    start_month = (quarter - 1) * 3 + 1
    start = datetime(year, start_month, 1)
    if quarter == 4:
        end = datetime(year + 1, 1, 1)
    else:
        end = datetime(year, start_month + 3, 1)
    return start, end


def quarter_of(value: date | datetime) -> int:
    return (value.month - 1) // 3 + 1


def quarter_info(quarter: int, year: int) -> QuarterInfo:
    start, end = quarter_date_range(quarter, year)
    return QuarterInfo(quarter=quarter, year=year, start=start, end=end)


def current_quarter(now: Optional[datetime] = None) -> QuarterInfo:
    now = now or utcnow()
    return quarter_info(quarter_of(now), now.year)


def previous_quarter(quarter: int, year: int) -> QuarterInfo:
    if quarter == 1:
        return quarter_info(4, year - 1)
    return quarter_info(quarter - 1, year)


def next_quarter(quarter: int, year: int) -> QuarterInfo:
    if quarter == 4:
        return quarter_info(1, year + 1)
    return quarter_info(quarter + 1, year)


def is_in_quarter(value: datetime, quarter: int, year: int) -> bool:
    start, end = quarter_date_range(quarter, year)
    return start <= value < end


def format_quarter_label(quarter: int, year: int) -> str:
    return f"Q{quarter} {year}"


def seconds_ago(seconds: int, now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) - timedelta(seconds=seconds)
