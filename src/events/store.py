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
Event Store Module

Handles database operations for recurring templates, event occurrences,
reminders, RSVPs and member check-ins.

All writes are single-row conditional inserts or idempotent updates; the
(template_id, start_at) and (event_id, offset_minutes) unique constraints are
what make repeated generation and reminder scheduling safe.
"""

import logging
from datetime import date, datetime
from typing import Optional

import asyncpg

from .errors import PersistenceConflict
from .models import (
    CheckinCount,
    DueReminder,
    Occurrence,
    OccurrencePatch,
    Reminder,
    RsvpChoice,
    RsvpSummary,
    Template,
    TemplatePatch,
)

logger = logging.getLogger("rollcall.events.store")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS event_templates (
    id BIGSERIAL PRIMARY KEY,
    guild_id BIGINT NOT NULL,
    channel_id BIGINT NOT NULL,
    name TEXT NOT NULL,
    notes TEXT,
    timezone TEXT NOT NULL DEFAULT 'UTC',
    time_of_day TEXT NOT NULL,
    weekdays SMALLINT[] NOT NULL,
    horizon_weeks INTEGER NOT NULL,
    lead_offsets INTEGER[] NOT NULL DEFAULT '{}',
    enabled BOOLEAN NOT NULL DEFAULT TRUE,
    created_by BIGINT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS events (
    id BIGSERIAL PRIMARY KEY,
    guild_id BIGINT NOT NULL,
    channel_id BIGINT NOT NULL,
    template_id BIGINT REFERENCES event_templates(id) ON DELETE SET NULL,
    occurrence_date DATE,
    message_id BIGINT,
    name TEXT NOT NULL,
    notes TEXT,
    start_at TIMESTAMPTZ NOT NULL,
    status TEXT NOT NULL DEFAULT 'ACTIVE' CHECK (status IN ('ACTIVE', 'ENDED')),
    created_by BIGINT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (template_id, start_at)
);

CREATE TABLE IF NOT EXISTS event_reminders (
    id BIGSERIAL PRIMARY KEY,
    event_id BIGINT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    offset_minutes INTEGER NOT NULL CHECK (offset_minutes > 0),
    fire_at TIMESTAMPTZ NOT NULL,
    fired BOOLEAN NOT NULL DEFAULT FALSE,
    fired_at TIMESTAMPTZ,
    UNIQUE (event_id, offset_minutes)
);

CREATE TABLE IF NOT EXISTS event_rsvps (
    event_id BIGINT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    user_id BIGINT NOT NULL,
    choice TEXT NOT NULL CHECK (choice IN ('YES', 'NO', 'MAYBE')),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (event_id, user_id)
);

CREATE TABLE IF NOT EXISTS checkins (
    id BIGSERIAL PRIMARY KEY,
    guild_id BIGINT NOT NULL,
    user_id BIGINT NOT NULL,
    checked_in_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_events_guild_status_start ON events (guild_id, status, start_at);
CREATE INDEX IF NOT EXISTS idx_event_reminders_due ON event_reminders (fire_at) WHERE fired = FALSE;
CREATE INDEX IF NOT EXISTS idx_event_templates_enabled ON event_templates (enabled);
CREATE INDEX IF NOT EXISTS idx_checkins_guild_user_time ON checkins (guild_id, user_id, checked_in_at);
"""


def _affected(status: str) -> int:
    """Row count from an asyncpg command tag like 'UPDATE 3'."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


class EventStore:
    """
    Postgres persistence for the events engine.

    Wraps an asyncpg pool. Conditional inserts return None (or False) when the
    row already exists instead of raising.
    """

    def __init__(self, db_pool: asyncpg.Pool):
        """
        Initialize the event store.

        Args:
            db_pool: asyncpg connection pool
        """
        self.db = db_pool

    async def init_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        await self.db.execute(SCHEMA_SQL)
        logger.info("Event schema ready")

    # =========================================================================
    # Templates
    # =========================================================================

    async def insert_template(
        self,
        guild_id: int,
        channel_id: int,
        name: str,
        timezone: str,
        time_of_day: str,
        weekdays: tuple[int, ...],
        horizon_weeks: int,
        lead_offsets: tuple[int, ...],
        notes: Optional[str] = None,
        created_by: Optional[int] = None,
    ) -> Template:
        row = await self.db.fetchrow(
            """
            INSERT INTO event_templates (
                guild_id, channel_id, name, notes, timezone, time_of_day,
                weekdays, horizon_weeks, lead_offsets, enabled, created_by
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, TRUE, $10)
            RETURNING *
            """,
            guild_id,
            channel_id,
            name,
            notes,
            timezone,
            time_of_day,
            list(weekdays),
            horizon_weeks,
            list(lead_offsets),
            created_by,
        )
        return Template.from_row(row)

    async def get_template(self, template_id: int, guild_id: Optional[int] = None) -> Optional[Template]:
        """Get a template by ID, optionally scoped to a guild."""
        if guild_id is None:
            row = await self.db.fetchrow(
                "SELECT * FROM event_templates WHERE id = $1", template_id
            )
        else:
            row = await self.db.fetchrow(
                "SELECT * FROM event_templates WHERE id = $1 AND guild_id = $2",
                template_id,
                guild_id,
            )
        return Template.from_row(row) if row else None

    async def list_templates(self, guild_id: int, limit: int = 25) -> list[Template]:
        rows = await self.db.fetch(
            """
            SELECT * FROM event_templates
            WHERE guild_id = $1
            ORDER BY id DESC
            LIMIT $2
            """,
            guild_id,
            limit,
        )
        return [Template.from_row(r) for r in rows]

    async def list_enabled_templates(self) -> list[Template]:
        rows = await self.db.fetch(
            "SELECT * FROM event_templates WHERE enabled = TRUE ORDER BY id ASC"
        )
        return [Template.from_row(r) for r in rows]

    async def update_template(self, template_id: int, patch: TemplatePatch) -> Optional[Template]:
        """
        Apply a validated patch to a template.

        Column names come only from TemplatePatch.to_columns(), never from
        caller input.

        Returns:
            The updated template, or None if it does not exist
        """
        columns = patch.to_columns()
        if not columns:
            return await self.get_template(template_id)

        assignments = [f"{name} = ${i}" for i, name in enumerate(columns, start=2)]
        row = await self.db.fetchrow(
            f"""
            UPDATE event_templates
            SET {", ".join(assignments)}, updated_at = NOW()
            WHERE id = $1
            RETURNING *
            """,
            template_id,
            *columns.values(),
        )
        return Template.from_row(row) if row else None

    async def delete_template(self, template_id: int) -> bool:
        """Delete a template. Its occurrences survive with template_id set to NULL."""
        result = await self.db.execute(
            "DELETE FROM event_templates WHERE id = $1", template_id
        )
        return result == "DELETE 1"

    # =========================================================================
    # Occurrences
    # =========================================================================

    async def insert_occurrence(
        self,
        guild_id: int,
        channel_id: int,
        name: str,
        start_at: datetime,
        notes: Optional[str] = None,
        created_by: Optional[int] = None,
    ) -> Occurrence:
        """Insert a one-off event (no template)."""
        row = await self.db.fetchrow(
            """
            INSERT INTO events (guild_id, channel_id, name, notes, start_at, status, created_by)
            VALUES ($1, $2, $3, $4, $5, 'ACTIVE', $6)
            RETURNING *
            """,
            guild_id,
            channel_id,
            name,
            notes,
            start_at,
            created_by,
        )
        return Occurrence.from_row(row)

    async def insert_occurrence_if_absent(
        self,
        template: Template,
        start_at: datetime,
        occurrence_date: date,
        created_by: Optional[int] = None,
    ) -> Optional[Occurrence]:
        """
        Insert a templated occurrence unless (template_id, start_at) exists.

        Returns:
            The new occurrence, or None if it was already materialized
        """
        row = await self.db.fetchrow(
            """
            INSERT INTO events (
                guild_id, channel_id, template_id, occurrence_date,
                name, notes, start_at, status, created_by
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, 'ACTIVE', $8)
            ON CONFLICT (template_id, start_at) DO NOTHING
            RETURNING *
            """,
            template.guild_id,
            template.channel_id,
            template.id,
            occurrence_date,
            template.name,
            template.notes,
            start_at,
            created_by if created_by is not None else template.created_by,
        )
        return Occurrence.from_row(row) if row else None

    async def get_occurrence(self, event_id: int, guild_id: Optional[int] = None) -> Optional[Occurrence]:
        if guild_id is None:
            row = await self.db.fetchrow("SELECT * FROM events WHERE id = $1", event_id)
        else:
            row = await self.db.fetchrow(
                "SELECT * FROM events WHERE id = $1 AND guild_id = $2", event_id, guild_id
            )
        return Occurrence.from_row(row) if row else None

    async def list_active_occurrences(self, guild_id: int, limit: int = 20) -> list[Occurrence]:
        rows = await self.db.fetch(
            """
            SELECT * FROM events
            WHERE guild_id = $1 AND status = 'ACTIVE'
            ORDER BY start_at ASC
            LIMIT $2
            """,
            guild_id,
            limit,
        )
        return [Occurrence.from_row(r) for r in rows]

    async def list_future_occurrences(self, template_id: int, after: datetime) -> list[Occurrence]:
        """ACTIVE occurrences of a template starting strictly after `after`."""
        rows = await self.db.fetch(
            """
            SELECT * FROM events
            WHERE template_id = $1 AND status = 'ACTIVE' AND start_at > $2
            ORDER BY start_at ASC
            """,
            template_id,
            after,
        )
        return [Occurrence.from_row(r) for r in rows]

    async def update_occurrence(self, event_id: int, patch: OccurrencePatch) -> Optional[Occurrence]:
        """
        Apply a validated patch to an occurrence.

        Raises:
            PersistenceConflict: if the new start collides with another
                occurrence of the same template
        """
        columns = patch.to_columns()
        if not columns:
            return await self.get_occurrence(event_id)

        assignments = [f"{name} = ${i}" for i, name in enumerate(columns, start=2)]
        try:
            row = await self.db.fetchrow(
                f"""
                UPDATE events
                SET {", ".join(assignments)}
                WHERE id = $1
                RETURNING *
                """,
                event_id,
                *columns.values(),
            )
        except asyncpg.UniqueViolationError as e:
            raise PersistenceConflict(
                f"Event {event_id} would duplicate an existing occurrence"
            ) from e
        return Occurrence.from_row(row) if row else None

    async def end_occurrence(self, event_id: int) -> bool:
        """ACTIVE -> ENDED. Returns False if missing or already ended."""
        result = await self.db.execute(
            """
            UPDATE events SET status = 'ENDED'
            WHERE id = $1 AND status = 'ACTIVE'
            """,
            event_id,
        )
        return result == "UPDATE 1"

    async def set_message_id(self, event_id: int, message_id: int) -> None:
        await self.db.execute(
            "UPDATE events SET message_id = $2 WHERE id = $1", event_id, message_id
        )

    async def delete_template_occurrences(
        self,
        template_id: int,
        from_instant: Optional[datetime] = None,
    ) -> int:
        """
        Delete ACTIVE occurrences of a template (reminders and RSVPs cascade).

        Args:
            template_id: Owning template
            from_instant: Only delete occurrences starting at or after this
                instant; None deletes all of them

        Returns:
            Number of occurrences deleted
        """
        if from_instant is None:
            result = await self.db.execute(
                "DELETE FROM events WHERE template_id = $1 AND status = 'ACTIVE'",
                template_id,
            )
        else:
            result = await self.db.execute(
                """
                DELETE FROM events
                WHERE template_id = $1 AND status = 'ACTIVE' AND start_at >= $2
                """,
                template_id,
                from_instant,
            )
        return _affected(result)

    # =========================================================================
    # Reminders
    # =========================================================================

    async def insert_reminder_if_absent(self, event_id: int, offset_minutes: int, fire_at: datetime) -> bool:
        result = await self.db.execute(
            """
            INSERT INTO event_reminders (event_id, offset_minutes, fire_at, fired)
            VALUES ($1, $2, $3, FALSE)
            ON CONFLICT (event_id, offset_minutes) DO NOTHING
            """,
            event_id,
            offset_minutes,
            fire_at,
        )
        # asyncpg tag for INSERT is "INSERT 0 <rows>"
        return _affected(result) == 1

    async def list_reminders(self, event_id: int) -> list[Reminder]:
        rows = await self.db.fetch(
            """
            SELECT * FROM event_reminders
            WHERE event_id = $1
            ORDER BY fire_at ASC
            """,
            event_id,
        )
        return [Reminder.from_row(r) for r in rows]

    async def reset_reminder(self, event_id: int, offset_minutes: int, fire_at: datetime) -> bool:
        """Move a reminder to a new fire instant and make it pending again."""
        result = await self.db.execute(
            """
            UPDATE event_reminders
            SET fire_at = $3, fired = FALSE, fired_at = NULL
            WHERE event_id = $1 AND offset_minutes = $2
            """,
            event_id,
            offset_minutes,
            fire_at,
        )
        return result == "UPDATE 1"

    async def delete_reminder(self, event_id: int, offset_minutes: int) -> bool:
        result = await self.db.execute(
            "DELETE FROM event_reminders WHERE event_id = $1 AND offset_minutes = $2",
            event_id,
            offset_minutes,
        )
        return result == "DELETE 1"

    async def delete_pending_reminders(self, event_id: int) -> int:
        result = await self.db.execute(
            "DELETE FROM event_reminders WHERE event_id = $1 AND fired = FALSE",
            event_id,
        )
        return _affected(result)

    async def fetch_due_reminders(
        self,
        window_start: datetime,
        window_end: datetime,
        limit: int = 25,
    ) -> list[DueReminder]:
        """
        Get pending reminders of ACTIVE events due inside the polling window.

        Returns:
            Up to `limit` reminders ordered by fire instant
        """
        rows = await self.db.fetch(
            """
            SELECT r.id, r.event_id, r.offset_minutes, r.fire_at,
                   e.channel_id, e.name, e.start_at, e.notes
            FROM event_reminders r
            JOIN events e ON e.id = r.event_id
            WHERE r.fired = FALSE
              AND e.status = 'ACTIVE'
              AND r.fire_at BETWEEN $1 AND $2
            ORDER BY r.fire_at ASC
            LIMIT $3
            """,
            window_start,
            window_end,
            limit,
        )
        return [DueReminder.from_row(r) for r in rows]

    async def mark_reminder_fired(self, reminder_id: int, fired_at: datetime) -> bool:
        """PENDING -> FIRED. Returns False if it was already fired."""
        result = await self.db.execute(
            """
            UPDATE event_reminders
            SET fired = TRUE, fired_at = $2
            WHERE id = $1 AND fired = FALSE
            """,
            reminder_id,
            fired_at,
        )
        return result == "UPDATE 1"

    # =========================================================================
    # RSVPs
    # =========================================================================

    async def upsert_rsvp(self, event_id: int, user_id: int, choice: RsvpChoice) -> None:
        await self.db.execute(
            """
            INSERT INTO event_rsvps (event_id, user_id, choice, updated_at)
            VALUES ($1, $2, $3, NOW())
            ON CONFLICT (event_id, user_id)
            DO UPDATE SET choice = EXCLUDED.choice, updated_at = NOW()
            """,
            event_id,
            user_id,
            choice.value,
        )

    async def get_rsvps(self, event_id: int) -> RsvpSummary:
        rows = await self.db.fetch(
            """
            SELECT user_id, choice FROM event_rsvps
            WHERE event_id = $1
            ORDER BY updated_at ASC
            """,
            event_id,
        )
        summary = RsvpSummary()
        for row in rows:
            getattr(summary, row["choice"].lower()).append(row["user_id"])
        return summary

    # =========================================================================
    # Check-ins
    # =========================================================================

    async def insert_checkin(self, guild_id: int, user_id: int, checked_in_at: datetime) -> None:
        await self.db.execute(
            """
            INSERT INTO checkins (guild_id, user_id, checked_in_at)
            VALUES ($1, $2, $3)
            """,
            guild_id,
            user_id,
            checked_in_at,
        )

    async def checkin_leaderboard(
        self, guild_id: int, since: datetime, limit: int = 20
    ) -> list[CheckinCount]:
        """Check-in counts per member since an instant, most active first."""
        rows = await self.db.fetch(
            """
            SELECT user_id, COUNT(*)::int AS checkins
            FROM checkins
            WHERE guild_id = $1 AND checked_in_at >= $2
            GROUP BY user_id
            ORDER BY checkins DESC, user_id ASC
            LIMIT $3
            """,
            guild_id,
            since,
            limit,
        )
        return [CheckinCount.from_row(row) for row in rows]

    async def last_checkins(self, guild_id: int) -> dict[int, datetime]:
        """Most recent check-in instant per member of a guild."""
        rows = await self.db.fetch(
            """
            SELECT user_id, MAX(checked_in_at) AS last_checkin
            FROM checkins
            WHERE guild_id = $1
            GROUP BY user_id
            """,
            guild_id,
        )
        return {row["user_id"]: row["last_checkin"] for row in rows}
