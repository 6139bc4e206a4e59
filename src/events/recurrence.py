# rollcall - Discord Community Events Bot
# Copyright (c) 2025-2026 Slash Daemon slashdaemon@protonmail.com
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, version 3 of the License.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.
#
# Commercial licensing: [slashdaemon@protonmail.com]

"""
Recurrence Module

Expands recurring event templates into concrete UTC start instants and
validates the schedule inputs they are built from (weekday sets, wall-clock
times, timezone names, horizons, reminder lead times, one-off start strings).

Everything here is pure: no I/O, deterministic given the inputs and the
timezone database.
"""

import logging
import re
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Union

import pytz

from .errors import EventValidationError

logger = logging.getLogger("rollcall.events.recurrence")

# Upper bound for how far ahead a template may materialize
MAX_HORIZON_WEEKS = 52

# Canonical weekday tokens, indexed by date.weekday() (Mon=0)
WEEKDAY_TOKENS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

WEEKDAY_ALIASES = {
    "mon": 0, "monday": 0,
    "tue": 1, "tues": 1, "tuesday": 1,
    "wed": 2, "wednesday": 2,
    "thu": 3, "thur": 3, "thurs": 3, "thursday": 3,
    "fri": 4, "friday": 4,
    "sat": 5, "saturday": 5,
    "sun": 6, "sunday": 6,
}

_TIME_OF_DAY_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
_START_FORMAT = "%Y-%m-%d %H:%M"

TimeOfDay = Union[str, tuple[int, int]]


def validate_timezone(tz_name: str) -> bool:
    """
    Validate that a timezone name is valid.

    Args:
        tz_name: IANA timezone name (e.g., "America/Chicago")

    Returns:
        True if valid, False otherwise
    """
    try:
        pytz.timezone(tz_name)
        return True
    except (pytz.UnknownTimeZoneError, AttributeError, TypeError):
        return False


def get_timezone(tz_name: str) -> pytz.BaseTzInfo:
    """Look up an IANA timezone, raising EventValidationError if unknown."""
    name = (tz_name or "").strip()
    if not name or not validate_timezone(name):
        raise EventValidationError(f"Unknown timezone: {tz_name!r}")
    return pytz.timezone(name)


def parse_time_of_day(value: TimeOfDay) -> tuple[int, int]:
    """
    Parse a 24-hour wall-clock time.

    Args:
        value: "HH:MM" string or an (hour, minute) pair

    Returns:
        (hour, minute) tuple
    """
    if isinstance(value, tuple):
        if len(value) != 2 or not all(isinstance(v, int) and not isinstance(v, bool) for v in value):
            raise EventValidationError(f"Invalid time of day: {value!r}")
        hour, minute = value
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise EventValidationError(f"Invalid time of day: {value!r}")
        return hour, minute

    match = _TIME_OF_DAY_RE.match(str(value or "").strip())
    if not match:
        raise EventValidationError("Time must be HH:MM (24-hour).")
    return int(match.group(1)), int(match.group(2))


def format_time_of_day(hour: int, minute: int) -> str:
    return f"{hour:02d}:{minute:02d}"


def normalize_weekdays(value: Union[str, Iterable[Union[str, int]]]) -> tuple[int, ...]:
    """
    Normalize a weekday set to ascending weekday numbers (Mon=0..Sun=6).

    Accepts "wed,sun", ["Wednesday", "sun"] or [2, 6]. Unknown tokens and
    empty sets are rejected.
    """
    if isinstance(value, str):
        tokens: list[Union[str, int]] = [t for t in re.sub(r"\s+", "", value.lower()).split(",") if t]
    else:
        tokens = list(value or [])

    days = set()
    for token in tokens:
        if isinstance(token, bool):
            raise EventValidationError(f"Unknown weekday: {token!r}")
        if isinstance(token, int):
            if not 0 <= token <= 6:
                raise EventValidationError(f"Unknown weekday: {token!r}")
            days.add(token)
            continue
        day = WEEKDAY_ALIASES.get(str(token).strip().lower())
        if day is None:
            raise EventValidationError(f"Unknown weekday: {token!r}")
        days.add(day)

    if not days:
        raise EventValidationError("Weekdays must include at least one valid day (mon..sun).")
    return tuple(sorted(days))


def format_weekdays(weekdays: Iterable[int]) -> str:
    """Render weekday numbers as "MON,WED"."""
    return ",".join(WEEKDAY_TOKENS[d].upper() for d in sorted(set(weekdays)))


def validate_horizon(horizon_weeks: int) -> int:
    if isinstance(horizon_weeks, bool) or not isinstance(horizon_weeks, int):
        raise EventValidationError(f"Horizon must be a whole number of weeks: {horizon_weeks!r}")
    if horizon_weeks < 0 or horizon_weeks > MAX_HORIZON_WEEKS:
        raise EventValidationError(
            f"Horizon must be between 0 and {MAX_HORIZON_WEEKS} weeks, got {horizon_weeks}"
        )
    return horizon_weeks


def parse_lead_offsets(value: Union[str, Iterable[int]]) -> tuple[int, ...]:
    """
    Parse reminder lead times in minutes.

    Accepts "60,15,5" or an iterable of ints. Every entry must be a positive
    integer. Returns a deduplicated tuple sorted descending (earliest reminder
    first). An empty input yields an empty tuple.
    """
    if isinstance(value, str):
        raw = [t.strip() for t in value.split(",") if t.strip()]
    else:
        raw = list(value or [])

    offsets = set()
    for item in raw:
        try:
            minutes = int(item)
        except (TypeError, ValueError):
            raise EventValidationError(f"Invalid reminder offset: {item!r}") from None
        if isinstance(item, bool) or minutes <= 0 or str(minutes) != str(item).strip():
            raise EventValidationError(f"Reminder offsets must be positive minutes, got {item!r}")
        offsets.add(minutes)

    return tuple(sorted(offsets, reverse=True))


def resolve_local_time(
    day: date,
    hour: int,
    minute: int,
    tz: pytz.BaseTzInfo,
) -> datetime:
    """
    Resolve a wall-clock time on a specific calendar date to a UTC instant.

    The zone's offset is looked up for that date, so the same wall clock on
    either side of a DST change maps to different UTC instants. Wall times in
    a spring-forward gap land one hour later; ambiguous fall-back times
    resolve to standard time.
    """
    naive = datetime(day.year, day.month, day.day, hour, minute)
    local = tz.normalize(tz.localize(naive, is_dst=False))
    return local.astimezone(pytz.UTC)


def generate_occurrences(
    anchor: date,
    time_of_day: TimeOfDay,
    timezone: str,
    weekdays: Union[str, Iterable[Union[str, int]]],
    horizon_weeks: int,
) -> list[datetime]:
    """
    Expand a weekly schedule into UTC start instants.

    Args:
        anchor: First calendar date considered (inclusive)
        time_of_day: Wall-clock time in the template's zone
        timezone: IANA timezone name
        weekdays: Non-empty weekday set
        horizon_weeks: Number of weeks to cover; the window is
            [anchor, anchor + 7 * horizon_weeks days)

    Returns:
        Ascending, duplicate-free list of tz-aware UTC datetimes
    """
    # Validate everything up front so bad input never yields partial output
    hour, minute = parse_time_of_day(time_of_day)
    tz = get_timezone(timezone)
    days = set(normalize_weekdays(weekdays))
    horizon = validate_horizon(horizon_weeks)
    if not isinstance(anchor, date) or isinstance(anchor, datetime):
        raise EventValidationError(f"Anchor must be a calendar date, got {anchor!r}")

    out = []
    for i in range(horizon * 7):
        day = anchor + timedelta(days=i)
        if day.weekday() in days:
            out.append(resolve_local_time(day, hour, minute, tz))

    return sorted(set(out))


def local_date(instant: datetime, timezone: str) -> date:
    """Calendar date of a UTC instant as seen in the given zone."""
    return instant.astimezone(get_timezone(timezone)).date()


def parse_anchor_date(value: str) -> date:
    """Parse a YYYY-MM-DD anchor date."""
    try:
        return datetime.strptime(str(value or "").strip(), "%Y-%m-%d").date()
    except ValueError:
        raise EventValidationError("Date must be YYYY-MM-DD.") from None


def next_utc_reset(now: datetime, hour: int = 0, minute: int = 0) -> datetime:
    """Next daily reset instant (hour:minute UTC) strictly after now."""
    now_utc = now.astimezone(pytz.UTC)
    reset = now_utc.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if reset <= now_utc:
        reset += timedelta(days=1)
    return reset


def parse_start(
    raw: str,
    timezone: str = "UTC",
    now: Optional[datetime] = None,
    reset_hour: int = 0,
    reset_minute: int = 0,
) -> datetime:
    """
    Parse a one-off event start into a UTC instant.

    Accepted inputs:
    - "utcreset": the next daily UTC reset
    - "utc:YYYY-MM-DD HH:MM": explicit UTC wall time
    - "YYYY-MM-DD HH:MM": wall time in the given timezone
    """
    text = str(raw or "").strip()
    if not text:
        raise EventValidationError("Missing start.")

    if text.lower() == "utcreset":
        return next_utc_reset(now or datetime.now(pytz.UTC), reset_hour, reset_minute)

    if text.lower().startswith("utc:"):
        try:
            naive = datetime.strptime(text[4:].strip(), _START_FORMAT)
        except ValueError:
            raise EventValidationError("Invalid utc: format. Use utc:YYYY-MM-DD HH:MM") from None
        return pytz.UTC.localize(naive)

    try:
        naive = datetime.strptime(text, _START_FORMAT)
    except ValueError:
        raise EventValidationError("Invalid date/time. Use YYYY-MM-DD HH:MM") from None

    tz = get_timezone(timezone or "UTC")
    return resolve_local_time(naive.date(), naive.hour, naive.minute, tz)
