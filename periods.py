from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def bounds(self) -> tuple[datetime, datetime]:
        """Inclusive start and exclusive end as datetimes."""
        return (
            datetime.combine(self.start, time.min),
            datetime.combine(self.end + date.resolution, time.min),
        )


def month_period(year: int, month: int) -> Period:
    if not 1 <= month <= 12:
        raise ValueError("Month must be between 1 and 12")
    first = date(year, month, 1)
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return Period("month", first, next_month - date.resolution)


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Optional[Period]:
    """Turn query parameters into a period; ``None`` means no date filter."""
    today = today or date.today()
    if start or end:
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    if not period or period == "all":
        return None
    if period == "last_month":
        last_month_end = today.replace(day=1) - date.resolution
        return month_period(last_month_end.year, last_month_end.month)
    if period == "this_month":
        return month_period(today.year, today.month)
    raise ValueError(f"Unknown period '{period}'")
