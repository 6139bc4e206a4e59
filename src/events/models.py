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
Event Models

Dataclasses for recurring templates, event occurrences, reminders, RSVPs and
check-in counts, plus the explicit patch records used to edit templates and
occurrences.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping, Optional

from .errors import EventValidationError
from .recurrence import (
    get_timezone,
    normalize_weekdays,
    parse_lead_offsets,
    parse_time_of_day,
    format_time_of_day,
    validate_horizon,
)

MAX_NAME_LENGTH = 100
MAX_NOTES_LENGTH = 1000


class OccurrenceStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ENDED = "ENDED"


class RsvpChoice(str, Enum):
    YES = "YES"
    NO = "NO"
    MAYBE = "MAYBE"


def validate_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise EventValidationError("Name must not be empty.")
    if len(name) > MAX_NAME_LENGTH:
        raise EventValidationError(f"Name must be at most {MAX_NAME_LENGTH} characters.")
    return name


def validate_notes(notes: Optional[str]) -> Optional[str]:
    if notes is None:
        return None
    if len(notes) > MAX_NOTES_LENGTH:
        raise EventValidationError(f"Notes must be at most {MAX_NOTES_LENGTH} characters.")
    return notes


def validate_clear(clear, patch) -> frozenset[str]:
    """Check a patch's `clear` set against CLEARABLE_COLUMNS and its own values."""
    if isinstance(clear, str):
        clear = (clear,)
    clear = frozenset(clear or ())
    unknown = clear - set(CLEARABLE_COLUMNS)
    if unknown:
        raise EventValidationError(f"Cannot clear {', '.join(sorted(unknown))}.")
    for column in clear:
        if getattr(patch, column) is not None:
            raise EventValidationError(f"Cannot both set and clear {column}.")
    return clear


@dataclass
class Template:
    """A recurring event definition."""

    id: int
    guild_id: int
    channel_id: int
    name: str
    timezone: str
    time_of_day: str  # "HH:MM" in the template's zone
    weekdays: tuple[int, ...]  # Mon=0..Sun=6
    horizon_weeks: int
    lead_offsets: tuple[int, ...] = ()
    notes: Optional[str] = None
    enabled: bool = True
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Template":
        return cls(
            id=row["id"],
            guild_id=row["guild_id"],
            channel_id=row["channel_id"],
            name=row["name"],
            timezone=row["timezone"],
            time_of_day=row["time_of_day"],
            weekdays=tuple(row["weekdays"] or ()),
            horizon_weeks=row["horizon_weeks"],
            lead_offsets=tuple(row["lead_offsets"] or ()),
            notes=row["notes"],
            enabled=row["enabled"],
            created_by=row["created_by"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class Occurrence:
    """One concrete, dated event instance."""

    id: int
    guild_id: int
    channel_id: int
    name: str
    start_at: datetime  # UTC
    template_id: Optional[int] = None
    occurrence_date: Optional[date] = None
    notes: Optional[str] = None
    status: OccurrenceStatus = OccurrenceStatus.ACTIVE
    message_id: Optional[int] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == OccurrenceStatus.ACTIVE

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Occurrence":
        return cls(
            id=row["id"],
            guild_id=row["guild_id"],
            channel_id=row["channel_id"],
            name=row["name"],
            start_at=row["start_at"],
            template_id=row["template_id"],
            occurrence_date=row["occurrence_date"],
            notes=row["notes"],
            status=OccurrenceStatus(row["status"]),
            message_id=row["message_id"],
            created_by=row["created_by"],
            created_at=row["created_at"],
        )


@dataclass
class Reminder:
    """A lead-time notification for one occurrence."""

    event_id: int
    offset_minutes: int
    fire_at: datetime
    fired: bool = False
    id: Optional[int] = None
    fired_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Reminder":
        return cls(
            id=row["id"],
            event_id=row["event_id"],
            offset_minutes=row["offset_minutes"],
            fire_at=row["fire_at"],
            fired=row["fired"],
            fired_at=row["fired_at"],
        )


@dataclass
class DueReminder:
    """A pending reminder joined with the occurrence fields needed to deliver it."""

    reminder_id: int
    event_id: int
    offset_minutes: int
    fire_at: datetime
    channel_id: int
    name: str
    start_at: datetime
    notes: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "DueReminder":
        return cls(
            reminder_id=row["id"],
            event_id=row["event_id"],
            offset_minutes=row["offset_minutes"],
            fire_at=row["fire_at"],
            channel_id=row["channel_id"],
            name=row["name"],
            start_at=row["start_at"],
            notes=row["notes"],
        )


@dataclass
class RsvpSummary:
    """Attendance responses for one occurrence, grouped by choice."""

    yes: list[int] = field(default_factory=list)
    maybe: list[int] = field(default_factory=list)
    no: list[int] = field(default_factory=list)

    @property
    def counts(self) -> dict[str, int]:
        return {"YES": len(self.yes), "MAYBE": len(self.maybe), "NO": len(self.no)}


@dataclass
class CheckinCount:
    """One member's check-in total over a leaderboard window."""

    user_id: int
    checkins: int

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "CheckinCount":
        return cls(user_id=row["user_id"], checkins=row["checkins"])


@dataclass
class TemplatePatch:
    """
    Explicit set of editable template fields.

    Fields left as None are not touched. Nullable columns named in `clear`
    are set to NULL. `validated()` normalizes values and `to_columns()` maps
    them onto the fixed set of writable columns, so the store never builds an
    UPDATE from caller-supplied names.
    """

    name: Optional[str] = None
    notes: Optional[str] = None
    timezone: Optional[str] = None
    time_of_day: Optional[str] = None
    weekdays: Optional[Any] = None
    horizon_weeks: Optional[int] = None
    enabled: Optional[bool] = None
    lead_offsets: Optional[Any] = None
    clear: frozenset[str] = frozenset()

    def validated(self) -> "TemplatePatch":
        """Return a normalized copy, raising EventValidationError on bad input."""
        patch = TemplatePatch(clear=validate_clear(self.clear, self))
        if self.name is not None:
            patch.name = validate_name(self.name)
        if self.notes is not None:
            patch.notes = validate_notes(self.notes)
        if self.timezone is not None:
            patch.timezone = get_timezone(self.timezone).zone
        if self.time_of_day is not None:
            patch.time_of_day = format_time_of_day(*parse_time_of_day(self.time_of_day))
        if self.weekdays is not None:
            patch.weekdays = normalize_weekdays(self.weekdays)
        if self.horizon_weeks is not None:
            patch.horizon_weeks = validate_horizon(self.horizon_weeks)
        if self.enabled is not None:
            if not isinstance(self.enabled, bool):
                raise EventValidationError(f"enabled must be a boolean, got {self.enabled!r}")
            patch.enabled = self.enabled
        if self.lead_offsets is not None:
            patch.lead_offsets = parse_lead_offsets(self.lead_offsets)
        return patch

    def to_columns(self) -> dict[str, Any]:
        columns = {}
        for column in TEMPLATE_PATCH_COLUMNS:
            value = getattr(self, column)
            if value is not None:
                columns[column] = list(value) if isinstance(value, tuple) else value
        for column in self.clear:
            columns[column] = None
        return columns

    @property
    def changes_schedule(self) -> bool:
        return any(
            v is not None
            for v in (self.timezone, self.time_of_day, self.weekdays, self.horizon_weeks)
        )

    def is_empty(self) -> bool:
        return not self.to_columns()


@dataclass
class OccurrencePatch:
    """
    Explicit set of editable occurrence fields. Status is not patchable.

    As with TemplatePatch, None means unchanged and `clear` names the
    nullable columns to set to NULL.
    """

    name: Optional[str] = None
    notes: Optional[str] = None
    start_at: Optional[datetime] = None
    clear: frozenset[str] = frozenset()

    def validated(self) -> "OccurrencePatch":
        patch = OccurrencePatch(clear=validate_clear(self.clear, self))
        if self.name is not None:
            patch.name = validate_name(self.name)
        if self.notes is not None:
            patch.notes = validate_notes(self.notes)
        if self.start_at is not None:
            if self.start_at.tzinfo is None:
                raise EventValidationError("start_at must be timezone-aware.")
            # Stored at millisecond precision
            patch.start_at = self.start_at.replace(
                microsecond=(self.start_at.microsecond // 1000) * 1000
            )
        return patch

    def to_columns(self) -> dict[str, Any]:
        columns = {
            column: getattr(self, column)
            for column in OCCURRENCE_PATCH_COLUMNS
            if getattr(self, column) is not None
        }
        for column in self.clear:
            columns[column] = None
        return columns

    def is_empty(self) -> bool:
        return not self.to_columns()


# The only columns an UPDATE may ever touch
TEMPLATE_PATCH_COLUMNS = (
    "name",
    "notes",
    "timezone",
    "time_of_day",
    "weekdays",
    "horizon_weeks",
    "enabled",
    "lead_offsets",
)
OCCURRENCE_PATCH_COLUMNS = ("name", "notes", "start_at")

# Columns a patch may set back to NULL
CLEARABLE_COLUMNS = ("notes",)
