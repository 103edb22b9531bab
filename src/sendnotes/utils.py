from __future__ import annotations

import time
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union

TEMP_ID_PREFIX = "temp_"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# PUBLIC_INTERFACE
def week_key(moment: Optional[Union[date, datetime]] = None) -> str:
    """
    Return the ISO date (YYYY-MM-DD) of the Monday anchoring the week of `moment`.

    Sunday counts as day 7 of the previous week, so it maps back six days;
    any other day maps back (day-of-week - 1) days. Datetimes are reduced to
    their local calendar date. Defaults to today.
    """
    if moment is None:
        day = date.today()
    elif isinstance(moment, datetime):
        day = moment.astimezone().date() if moment.tzinfo is not None else moment.date()
    else:
        day = moment
    monday = day - timedelta(days=day.isoweekday() - 1)
    return monday.isoformat()


# PUBLIC_INTERFACE
def generate_temp_id() -> str:
    """
    Generate a client-side temporary id: prefix, millisecond clock, random token.

    Example: temp_1717400000000_3f9a1c2b7d4e
    """
    return f"{TEMP_ID_PREFIX}{int(time.time() * 1000)}_{uuid.uuid4().hex[:12]}"


# PUBLIC_INTERFACE
def is_temp_id(item_id: str) -> bool:
    """True when the id is a client-generated temporary id (not yet confirmed remotely)."""
    return item_id.startswith(TEMP_ID_PREFIX)
