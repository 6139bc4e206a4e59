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
Event Service Module

Operations called by command handlers and the background drivers:
template management, materialization of generated occurrences, reminder
scheduling and reconciliation, occurrence edits, and member check-ins.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, Optional, Union

import pytz

from .config import EventsConfig
from .errors import EventValidationError, OccurrenceNotFound, PersistenceConflict, TemplateNotFound
from .models import (
    CheckinCount,
    Occurrence,
    OccurrencePatch,
    RsvpChoice,
    RsvpSummary,
    Template,
    TemplatePatch,
    validate_name,
    validate_notes,
)
from .recurrence import (
    TimeOfDay,
    format_time_of_day,
    generate_occurrences,
    get_timezone,
    local_date,
    normalize_weekdays,
    parse_lead_offsets,
    parse_time_of_day,
    resolve_local_time,
    validate_horizon,
)
from .store import EventStore

logger = logging.getLogger("rollcall.events.service")

Clock = Callable[[], datetime]

# Candidates this far in the past still count as "now" when skipping past ones
MATERIALIZE_GRACE = timedelta(minutes=1)

CHECKIN_WINDOW_DAYS = 7
LEADERBOARD_SIZE = 20
MAX_CHECKIN_WINDOW_DAYS = 365


def validate_days(days: int) -> int:
    if isinstance(days, bool) or not isinstance(days, int):
        raise EventValidationError(f"Days must be a whole number, got {days!r}.")
    if not 1 <= days <= MAX_CHECKIN_WINDOW_DAYS:
        raise EventValidationError(f"Days must be between 1 and {MAX_CHECKIN_WINDOW_DAYS}.")
    return days


def utcnow() -> datetime:
    return datetime.now(pytz.UTC)


@dataclass
class MaterializeResult:
    inserted: int = 0
    skipped: int = 0  # already materialized, including concurrent writers
    skipped_past: int = 0
    repaired: int = 0  # reminders restored on occurrences that already existed
    occurrences: list[Occurrence] = field(default_factory=list)


@dataclass
class ReconcileResult:
    inserted: int = 0
    reset: int = 0
    removed: int = 0


class EventService:
    """
    Recurrence materialization and reminder scheduling on top of EventStore.

    Validation errors are raised before any write. Uniqueness conflicts from
    repeated or overlapping generation are absorbed and counted.
    """

    def __init__(
        self,
        store: EventStore,
        config: Optional[EventsConfig] = None,
        clock: Clock = utcnow,
    ):
        """
        Initialize the event service.

        Args:
            store: Persistence layer
            config: Engine configuration (defaults used if omitted)
            clock: Returns the current tz-aware UTC time
        """
        self.store = store
        self.config = config or EventsConfig()
        self.clock = clock

    # =========================================================================
    # Templates
    # =========================================================================

    async def create_template(
        self,
        guild_id: int,
        channel_id: int,
        name: str,
        time_of_day: TimeOfDay,
        timezone: str,
        weekdays: Union[str, Iterable],
        horizon_weeks: int,
        notes: Optional[str] = None,
        lead_offsets: Optional[Union[str, Iterable[int]]] = None,
        created_by: Optional[int] = None,
    ) -> int:
        """
        Create a recurring template. Occurrences are not generated here.

        Returns:
            The new template's ID
        """
        name = validate_name(name)
        notes = validate_notes(notes)
        hour, minute = parse_time_of_day(time_of_day)
        tz = get_timezone(timezone or "UTC")
        days = normalize_weekdays(weekdays)
        horizon = validate_horizon(horizon_weeks)
        offsets = parse_lead_offsets(lead_offsets) if lead_offsets is not None else ()

        template = await self.store.insert_template(
            guild_id=guild_id,
            channel_id=channel_id,
            name=name,
            timezone=tz.zone,
            time_of_day=format_time_of_day(hour, minute),
            weekdays=days,
            horizon_weeks=horizon,
            lead_offsets=offsets,
            notes=notes,
            created_by=created_by,
        )
        logger.info(
            f"Created template {template.id} in guild {guild_id}: "
            f"{template.time_of_day} {template.timezone} days={list(days)} horizon={horizon}w"
        )
        return template.id

    async def get_template(self, template_id: int, guild_id: Optional[int] = None) -> Template:
        template = await self.store.get_template(template_id, guild_id)
        if template is None:
            raise TemplateNotFound(f"Template {template_id} not found")
        return template

    async def list_templates(self, guild_id: int) -> list[Template]:
        return await self.store.list_templates(guild_id)

    async def edit_template(
        self,
        template_id: int,
        patch: TemplatePatch,
        guild_id: Optional[int] = None,
    ) -> Template:
        """
        Apply a template patch.

        Existing occurrences are left alone; see purge_future_occurrences and
        reschedule_future_occurrences.
        """
        patch = patch.validated()
        if patch.is_empty():
            raise EventValidationError("Nothing to update.")

        await self.get_template(template_id, guild_id)
        updated = await self.store.update_template(template_id, patch)
        if updated is None:
            raise TemplateNotFound(f"Template {template_id} not found")

        logger.info(f"Updated template {template_id}: {sorted(patch.to_columns())}")
        return updated

    async def set_template_enabled(
        self,
        template_id: int,
        enabled: bool,
        guild_id: Optional[int] = None,
    ) -> Template:
        return await self.edit_template(template_id, TemplatePatch(enabled=enabled), guild_id)

    async def delete_template(self, template_id: int, delete_occurrences: bool = False) -> int:
        """
        Delete a template.

        Args:
            template_id: Template to delete
            delete_occurrences: Also delete its ACTIVE occurrences. Otherwise
                they survive as standalone events.

        Returns:
            Number of occurrences deleted
        """
        await self.get_template(template_id)

        deleted = 0
        if delete_occurrences:
            deleted = await self.store.delete_template_occurrences(template_id)

        if not await self.store.delete_template(template_id):
            raise TemplateNotFound(f"Template {template_id} not found")

        logger.info(f"Deleted template {template_id} ({deleted} occurrence(s) removed)")
        return deleted

    # =========================================================================
    # Materialization
    # =========================================================================

    async def generate_and_materialize(
        self,
        template: Template,
        anchor_date: date,
        skip_past: bool = False,
        created_by: Optional[int] = None,
    ) -> int:
        """
        Generate a template's occurrences from anchor_date and persist them.

        Safe to call repeatedly with the same anchor: existing occurrences are
        skipped. Disabled templates materialize nothing.

        Returns:
            Number of occurrences inserted
        """
        if not template.enabled:
            logger.debug(f"Template {template.id} disabled, not materializing")
            return 0

        candidates = generate_occurrences(
            anchor=anchor_date,
            time_of_day=template.time_of_day,
            timezone=template.timezone,
            weekdays=template.weekdays,
            horizon_weeks=template.horizon_weeks,
        )
        not_before = self.clock() - MATERIALIZE_GRACE if skip_past else None
        result = await self.materialize(
            template, candidates, not_before=not_before, created_by=created_by
        )
        return result.inserted

    async def materialize(
        self,
        template: Template,
        candidates: Iterable[datetime],
        not_before: Optional[datetime] = None,
        created_by: Optional[int] = None,
    ) -> MaterializeResult:
        """
        Insert one occurrence per candidate instant and schedule its reminders.

        Candidates that already exist are skipped, but their reminders are
        scheduled again: a run that inserted the occurrence and then failed
        before its reminders were written is repaired by the next run.

        Args:
            template: Owning template
            candidates: UTC instants from generate_occurrences
            not_before: Skip candidates earlier than this instant
            created_by: Creator recorded on new rows (template creator if None)
        """
        result = MaterializeResult()
        offsets = self._offsets_for_template(template)
        existing_starts = set()

        for start_at in candidates:
            if not_before is not None and start_at < not_before:
                result.skipped_past += 1
                continue

            occurrence = await self.store.insert_occurrence_if_absent(
                template,
                start_at,
                local_date(start_at, template.timezone),
                created_by,
            )
            if occurrence is None:
                result.skipped += 1
                existing_starts.add(start_at)
                continue

            result.inserted += 1
            result.occurrences.append(occurrence)
            await self.schedule_reminders(occurrence, offsets)

        if existing_starts:
            result.repaired = await self._repair_reminders(template, existing_starts, offsets)

        if result.inserted or result.repaired:
            logger.info(
                f"Template {template.id}: materialized {result.inserted} occurrence(s), "
                f"{result.skipped} already present, {result.repaired} reminder(s) restored"
            )
        else:
            logger.debug(f"Template {template.id}: nothing new ({result.skipped} already present)")
        return result

    async def _repair_reminders(
        self,
        template: Template,
        starts: set[datetime],
        offsets: tuple[int, ...],
    ) -> int:
        """Schedule missing reminders on the template's ACTIVE occurrences at these starts."""
        after = min(starts) - timedelta(seconds=1)
        repaired = 0
        for occurrence in await self.store.list_future_occurrences(template.id, after):
            if occurrence.start_at in starts:
                repaired += await self.schedule_reminders(occurrence, offsets)
        return repaired

    async def purge_future_occurrences(self, template_id: int, from_instant: datetime) -> int:
        """
        Delete a template's ACTIVE occurrences starting at or after from_instant.

        Call generate_and_materialize afterwards to regenerate them from the
        current template definition.
        """
        deleted = await self.store.delete_template_occurrences(template_id, from_instant)
        logger.info(f"Purged {deleted} future occurrence(s) of template {template_id}")
        return deleted

    async def reschedule_future_occurrences(self, template: Template) -> int:
        """
        Apply a template's name, notes and wall-clock time to its future
        occurrences, keeping each occurrence's local calendar date.

        Occurrences whose weekday is no longer in the template's set are left
        as they are. Returns the number of occurrences updated.
        """
        hour, minute = parse_time_of_day(template.time_of_day)
        tz = get_timezone(template.timezone)
        updated = 0

        for occurrence in await self.store.list_future_occurrences(template.id, self.clock()):
            day = occurrence.occurrence_date or local_date(occurrence.start_at, template.timezone)
            if day.weekday() not in template.weekdays:
                continue

            patch = OccurrencePatch(
                name=template.name,
                notes=template.notes,
                start_at=resolve_local_time(day, hour, minute, tz),
                clear=frozenset() if template.notes is not None else frozenset({"notes"}),
            ).validated()
            try:
                new = await self.store.update_occurrence(occurrence.id, patch)
            except PersistenceConflict as e:
                logger.warning(f"Skipping reschedule of event {occurrence.id}: {e}")
                continue
            if new is None:
                continue

            await self.reconcile_reminders(new, self._offsets_for_template(template))
            updated += 1

        logger.info(f"Rescheduled {updated} future occurrence(s) of template {template.id}")
        return updated

    # =========================================================================
    # Occurrences
    # =========================================================================

    async def create_occurrence(
        self,
        guild_id: int,
        channel_id: int,
        name: str,
        start_at: datetime,
        notes: Optional[str] = None,
        created_by: Optional[int] = None,
    ) -> Occurrence:
        """Create a one-off event and schedule its reminders."""
        patch = OccurrencePatch(name=name, notes=notes, start_at=start_at).validated()
        if patch.name is None or patch.start_at is None:
            raise EventValidationError("Name and start are required.")

        occurrence = await self.store.insert_occurrence(
            guild_id=guild_id,
            channel_id=channel_id,
            name=patch.name,
            start_at=patch.start_at,
            notes=patch.notes,
            created_by=created_by,
        )
        await self.schedule_reminders(occurrence, self.config.default_lead_offsets)
        logger.info(f"Created event {occurrence.id} in guild {guild_id} at {occurrence.start_at}")
        return occurrence

    async def get_occurrence(self, event_id: int, guild_id: Optional[int] = None) -> Occurrence:
        occurrence = await self.store.get_occurrence(event_id, guild_id)
        if occurrence is None:
            raise OccurrenceNotFound(f"Event {event_id} not found")
        return occurrence

    async def list_active_occurrences(self, guild_id: int, limit: int = 20) -> list[Occurrence]:
        return await self.store.list_active_occurrences(guild_id, limit)

    async def end_occurrence(self, event_id: int, guild_id: Optional[int] = None) -> bool:
        """
        Mark an occurrence ENDED and drop its pending reminders.

        Returns:
            True if this call ended it, False if it was already ENDED
        """
        await self.get_occurrence(event_id, guild_id)

        if not await self.store.end_occurrence(event_id):
            return False

        dropped = await self.store.delete_pending_reminders(event_id)
        logger.info(f"Ended event {event_id} ({dropped} pending reminder(s) dropped)")
        return True

    async def edit_occurrence(
        self,
        event_id: int,
        patch: OccurrencePatch,
        guild_id: Optional[int] = None,
    ) -> Occurrence:
        """
        Apply an occurrence patch. A start change reconciles reminders.

        Raises:
            EventValidationError: invalid or empty patch
            OccurrenceNotFound: no such event
            PersistenceConflict: the new start duplicates another occurrence
                of the same template
        """
        patch = patch.validated()
        if patch.is_empty():
            raise EventValidationError("Nothing to update.")

        current = await self.get_occurrence(event_id, guild_id)
        updated = await self.store.update_occurrence(event_id, patch)
        if updated is None:
            raise OccurrenceNotFound(f"Event {event_id} not found")

        if patch.start_at is not None and patch.start_at != current.start_at:
            await self.reconcile_reminders(updated)

        logger.info(f"Updated event {event_id}: {sorted(patch.to_columns())}")
        return updated

    # =========================================================================
    # Reminders
    # =========================================================================

    def _offsets_for_template(self, template: Optional[Template]) -> tuple[int, ...]:
        if template is not None and template.lead_offsets:
            return tuple(template.lead_offsets)
        return tuple(self.config.default_lead_offsets)

    async def _offsets_for(self, occurrence: Occurrence) -> tuple[int, ...]:
        template = None
        if occurrence.template_id is not None:
            template = await self.store.get_template(occurrence.template_id)
        return self._offsets_for_template(template)

    def _wanted_reminders(
        self,
        start_at: datetime,
        offsets: Iterable[int],
        now: datetime,
    ) -> dict[int, datetime]:
        """offset -> fire instant, dropping anything already at or before now."""
        wanted = {}
        for offset in offsets:
            fire_at = start_at - timedelta(minutes=offset)
            if fire_at > now:
                wanted[offset] = fire_at
        return wanted

    async def schedule_reminders(
        self,
        occurrence: Occurrence,
        offsets: Optional[Iterable[int]] = None,
    ) -> int:
        """
        Insert reminder rows for an occurrence.

        Offsets whose fire instant is at or before now are dropped. Existing
        (event, offset) rows are left untouched. ENDED occurrences get nothing.

        Returns:
            Number of reminders inserted
        """
        if not occurrence.is_active:
            logger.debug(f"Event {occurrence.id} is {occurrence.status.value}, no reminders")
            return 0

        if offsets is None:
            offsets = await self._offsets_for(occurrence)

        inserted = 0
        wanted = self._wanted_reminders(occurrence.start_at, offsets, self.clock())
        for offset, fire_at in wanted.items():
            if await self.store.insert_reminder_if_absent(occurrence.id, offset, fire_at):
                inserted += 1

        return inserted

    async def reconcile_reminders(
        self,
        occurrence: Occurrence,
        offsets: Optional[Iterable[int]] = None,
    ) -> ReconcileResult:
        """
        Bring an occurrence's reminders in line with its current start.

        Missing offsets are inserted first, stale fire instants are reset in
        place, and unwanted offsets are removed last, so the occurrence always
        keeps its surviving reminders during the update.
        """
        result = ReconcileResult()

        if offsets is None:
            offsets = await self._offsets_for(occurrence)
        wanted = (
            self._wanted_reminders(occurrence.start_at, offsets, self.clock())
            if occurrence.is_active
            else {}
        )
        existing = {r.offset_minutes: r for r in await self.store.list_reminders(occurrence.id)}

        for offset, fire_at in wanted.items():
            if offset not in existing:
                if await self.store.insert_reminder_if_absent(occurrence.id, offset, fire_at):
                    result.inserted += 1

        for offset, reminder in existing.items():
            if offset in wanted and reminder.fire_at != wanted[offset]:
                if await self.store.reset_reminder(occurrence.id, offset, wanted[offset]):
                    result.reset += 1

        for offset in existing:
            if offset not in wanted:
                if await self.store.delete_reminder(occurrence.id, offset):
                    result.removed += 1

        logger.debug(
            f"Reconciled reminders for event {occurrence.id}: "
            f"+{result.inserted} ~{result.reset} -{result.removed}"
        )
        return result

    # =========================================================================
    # RSVPs
    # =========================================================================

    async def record_rsvp(
        self,
        event_id: int,
        user_id: int,
        choice: Union[str, RsvpChoice],
        guild_id: Optional[int] = None,
    ) -> Occurrence:
        try:
            choice = RsvpChoice(choice.upper() if isinstance(choice, str) else choice)
        except ValueError:
            raise EventValidationError(f"RSVP must be YES, NO or MAYBE, got {choice!r}") from None

        occurrence = await self.get_occurrence(event_id, guild_id)
        if not occurrence.is_active:
            raise EventValidationError(f"Event {event_id} has ended.")

        await self.store.upsert_rsvp(event_id, user_id, choice)
        return occurrence

    async def get_rsvp_summary(self, event_id: int) -> RsvpSummary:
        return await self.store.get_rsvps(event_id)

    # =========================================================================
    # Check-ins
    # =========================================================================

    async def record_checkin(self, guild_id: int, user_id: int) -> datetime:
        """Record a check-in at the current instant and return that instant."""
        now = self.clock()
        await self.store.insert_checkin(guild_id, user_id, now)
        logger.info(f"Check-in from user {user_id} in guild {guild_id}")
        return now

    async def checkin_leaderboard(
        self,
        guild_id: int,
        days: int = CHECKIN_WINDOW_DAYS,
        limit: int = LEADERBOARD_SIZE,
    ) -> list[CheckinCount]:
        """Members ranked by check-ins over the last `days` days."""
        since = self.clock() - timedelta(days=validate_days(days))
        return await self.store.checkin_leaderboard(guild_id, since, limit)

    async def find_inactive(
        self,
        guild_id: int,
        member_ids: Iterable[int],
        days: int = CHECKIN_WINDOW_DAYS,
    ) -> list[int]:
        """
        Members with no check-in within the last `days` days.

        Members who never checked in count as inactive. Order follows
        member_ids.
        """
        cutoff = self.clock() - timedelta(days=validate_days(days))
        last = await self.store.last_checkins(guild_id)
        return [uid for uid in member_ids if uid not in last or last[uid] < cutoff]
