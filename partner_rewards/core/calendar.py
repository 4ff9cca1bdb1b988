from datetime import datetime
from typing import Optional


def add_years(value: datetime, years: int = 1) -> datetime:
    """Same month/day N years later; Feb 29 falls back to Feb 28."""
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        return value.replace(year=value.year + years, day=28)


def advance_past(due: datetime, now: datetime, anchor: Optional[datetime] = None) -> datetime:
    """
    Next anniversary of anchor that is strictly after both due and now.

    Anniversaries are always counted from the anchor, never from a previous
    result, so a Feb 29 anchor yields Feb 28 in common years and Feb 29
    again in leap years. Without an anchor, due is the anchor.
    """
    anchor = anchor or due
    years = max(1, due.year - anchor.year)
    next_due = add_years(anchor, years)
    while next_due <= due or next_due <= now:
        years += 1
        next_due = add_years(anchor, years)
    return next_due
