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
Event Slash Commands

Discord slash commands for one-off events, RSVPs and recurring templates.
"""

import logging
from datetime import datetime
from typing import Optional

import discord
import pytz
from discord import app_commands
from discord.ext import commands

from analytics import track
from events import (
    EventService,
    EventsConfig,
    EventValidationError,
    Occurrence,
    OccurrencePatch,
    PersistenceConflict,
    RsvpSummary,
    TemplatePatch,
    format_start,
    parse_start,
)
from events.delivery import safe_truncate
from events.recurrence import format_weekdays, local_date, parse_anchor_date

logger = logging.getLogger("rollcall.commands.event")

# Common timezones for autocomplete
COMMON_TIMEZONES = [
    "UTC",
    "America/New_York",
    "America/Chicago",
    "America/Denver",
    "America/Los_Angeles",
    "Europe/London",
    "Europe/Paris",
    "Europe/Berlin",
    "Asia/Tokyo",
    "Asia/Singapore",
    "Australia/Sydney",
]

RSVP_CHOICES = [
    app_commands.Choice(name="Yes", value="YES"),
    app_commands.Choice(name="Maybe", value="MAYBE"),
    app_commands.Choice(name="No", value="NO"),
]


def _mentions(user_ids: list[int]) -> str:
    return ", ".join(f"<@{uid}>" for uid in user_ids) if user_ids else "—"


def build_event_embed(occurrence: Occurrence, rsvps: RsvpSummary) -> discord.Embed:
    """
    Build the event card posted in the events channel.

    Args:
        occurrence: Event to render
        rsvps: Current attendance responses

    Returns:
        Discord embed
    """
    counts = rsvps.counts
    lines = [f"**Start**\n{format_start(occurrence.start_at)}"]
    if occurrence.notes:
        lines.append(f"**Notes:** {safe_truncate(occurrence.notes)}")

    lines.extend([
        "",
        f"**RSVPs:** ✅ Yes {counts['YES']} | ❔ Maybe {counts['MAYBE']} | ❌ No {counts['NO']}",
        "",
        f"**Yes:** {_mentions(rsvps.yes)}",
        f"**Maybe:** {_mentions(rsvps.maybe)}",
        f"**No:** {_mentions(rsvps.no)}",
    ])

    if occurrence.template_id:
        lines.extend(["", f"**Series:** Template #{occurrence.template_id}"])

    embed = discord.Embed(
        title=f"Event #{occurrence.id}: {occurrence.name}",
        description="\n".join(lines),
        color=discord.Color.green() if occurrence.is_active else discord.Color.dark_grey(),
        timestamp=occurrence.created_at or datetime.now(pytz.UTC),
    )
    embed.set_footer(text=f"Status: {occurrence.status.value}")
    return embed


class EventCommands(commands.Cog):
    """
    Slash commands for community events.

    Commands:
    - /event create|list|status|rsvp|end|edit
    - /event recurring create|list|edit|extend|disable|enable|delete|purge
    """

    event_group = app_commands.Group(
        name="event",
        description="Schedule events and RSVP",
        guild_only=True,
    )
    recurring_group = app_commands.Group(
        name="recurring",
        description="Manage recurring event series",
        parent=event_group,
    )

    def __init__(
        self,
        bot: commands.Bot,
        service: EventService,
        config: Optional[EventsConfig] = None,
    ):
        self.bot = bot
        self.service = service
        self.config = config or service.config

    # =========================================================================
    # Helpers
    # =========================================================================

    def _track(self, interaction: discord.Interaction, subcommand: str, **properties) -> None:
        track(
            "command_used",
            "command",
            user_id=interaction.user.id,
            channel_id=interaction.channel_id,
            guild_id=interaction.guild_id,
            properties={"command_name": "event", "subcommand": subcommand, **properties},
        )

    async def _posting_channel(
        self, interaction: discord.Interaction
    ) -> Optional[discord.abc.Messageable]:
        """Configured events channel if set and reachable, else the invoking channel."""
        if self.config.events_channel_id:
            channel = self.bot.get_channel(self.config.events_channel_id)
            if channel is None:
                try:
                    channel = await self.bot.fetch_channel(self.config.events_channel_id)
                except (discord.NotFound, discord.Forbidden):
                    channel = None
            if isinstance(channel, discord.abc.Messageable):
                return channel
        channel = interaction.channel
        return channel if isinstance(channel, discord.abc.Messageable) else None

    async def refresh_event_message(
        self,
        occurrence: Occurrence,
        channel: Optional[discord.abc.Messageable] = None,
    ) -> None:
        """Edit the posted event card, or post one if none exists."""
        if channel is None:
            channel = self.bot.get_channel(occurrence.channel_id)
        if not isinstance(channel, discord.abc.Messageable):
            return

        embed = build_event_embed(occurrence, await self.service.get_rsvp_summary(occurrence.id))
        try:
            if occurrence.message_id:
                try:
                    message = await channel.fetch_message(occurrence.message_id)
                    await message.edit(embed=embed)
                    return
                except discord.NotFound:
                    pass
            message = await channel.send(embed=embed)
            await self.service.store.set_message_id(occurrence.id, message.id)
        except discord.HTTPException as e:
            logger.warning(f"Could not post card for event {occurrence.id}: {e}")

    async def cog_app_command_error(
        self,
        interaction: discord.Interaction,
        error: app_commands.AppCommandError,
    ) -> None:
        original = getattr(error, "original", error)
        if isinstance(original, (EventValidationError, LookupError)):
            message = str(original)
        elif isinstance(original, PersistenceConflict):
            message = "Another event in this series already starts at that time."
        else:
            logger.error(f"Event command failed: {original}", exc_info=original)
            message = "An error occurred while processing that command. Check logs."

        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)

    # =========================================================================
    # /event create
    # =========================================================================

    @event_group.command(name="create")
    @app_commands.describe(
        name="Event name",
        start="YYYY-MM-DD HH:MM, utc:YYYY-MM-DD HH:MM, or utcreset",
        time_zone="Timezone for the start time (default: UTC)",
        notes="Optional notes",
    )
    async def create_event(
        self,
        interaction: discord.Interaction,
        name: str,
        start: str,
        time_zone: Optional[str] = None,
        notes: Optional[str] = None,
    ):
        """Create a one-off event."""
        await interaction.response.defer(ephemeral=True)
        self._track(interaction, "create")

        start_at = parse_start(
            start,
            time_zone or "UTC",
            reset_hour=self.config.reset_utc_hour,
            reset_minute=self.config.reset_utc_minute,
        )
        channel = await self._posting_channel(interaction)
        if channel is None:
            await interaction.followup.send(
                "I cannot post to the configured events channel. Check channel ID and permissions.",
                ephemeral=True,
            )
            return

        occurrence = await self.service.create_occurrence(
            guild_id=interaction.guild_id,
            channel_id=channel.id,
            name=name,
            start_at=start_at,
            notes=notes,
            created_by=interaction.user.id,
        )
        await self.refresh_event_message(occurrence, channel)

        await interaction.followup.send(
            f"Created **Event #{occurrence.id}** in {channel.mention}.", ephemeral=True
        )

    # =========================================================================
    # /event list, /event status
    # =========================================================================

    @event_group.command(name="list")
    async def list_events(self, interaction: discord.Interaction):
        """List upcoming active events."""
        await interaction.response.defer(ephemeral=True)
        self._track(interaction, "list")

        occurrences = await self.service.list_active_occurrences(interaction.guild_id, limit=20)
        if not occurrences:
            await interaction.followup.send("No active events.", ephemeral=True)
            return

        lines = [f"**#{o.id}** • {o.name} • {format_start(o.start_at)}" for o in occurrences]
        await interaction.followup.send("\n".join(lines), ephemeral=True)

    @event_group.command(name="status")
    @app_commands.describe(event_id="The event ID")
    async def event_status(self, interaction: discord.Interaction, event_id: int):
        """Show an event card with RSVPs."""
        await interaction.response.defer(ephemeral=True)
        self._track(interaction, "status", event_id=event_id)

        occurrence = await self.service.get_occurrence(event_id, interaction.guild_id)
        rsvps = await self.service.get_rsvp_summary(event_id)
        await interaction.followup.send(embed=build_event_embed(occurrence, rsvps), ephemeral=True)

    # =========================================================================
    # /event rsvp, /event end, /event edit
    # =========================================================================

    @event_group.command(name="rsvp")
    @app_commands.describe(event_id="The event ID", choice="Your answer")
    @app_commands.choices(choice=RSVP_CHOICES)
    async def rsvp(
        self,
        interaction: discord.Interaction,
        event_id: int,
        choice: app_commands.Choice[str],
    ):
        """RSVP to an event."""
        await interaction.response.defer(ephemeral=True)
        self._track(interaction, "rsvp", event_id=event_id)

        occurrence = await self.service.record_rsvp(
            event_id, interaction.user.id, choice.value, interaction.guild_id
        )
        await self.refresh_event_message(occurrence)

        await interaction.followup.send(
            f"RSVP saved for Event #{event_id}: **{choice.value}**", ephemeral=True
        )

    @event_group.command(name="end")
    @app_commands.describe(event_id="The event ID")
    async def end_event(self, interaction: discord.Interaction, event_id: int):
        """End an event. Ended events cannot be reopened."""
        await interaction.response.defer(ephemeral=True)
        self._track(interaction, "end", event_id=event_id)

        ended = await self.service.end_occurrence(event_id, interaction.guild_id)
        if not ended:
            await interaction.followup.send(f"Event #{event_id} has already ended.", ephemeral=True)
            return

        await self.refresh_event_message(await self.service.get_occurrence(event_id))
        await interaction.followup.send(f"Event #{event_id} ended.", ephemeral=True)

    @event_group.command(name="edit")
    @app_commands.describe(
        event_id="The event ID",
        name="New name",
        start="New start (YYYY-MM-DD HH:MM, utc:..., or utcreset)",
        time_zone="Timezone for the new start (default: UTC)",
        notes="New notes",
        clear_notes="Remove the event's notes",
    )
    async def edit_event(
        self,
        interaction: discord.Interaction,
        event_id: int,
        name: Optional[str] = None,
        start: Optional[str] = None,
        time_zone: Optional[str] = None,
        notes: Optional[str] = None,
        clear_notes: bool = False,
    ):
        """Edit an event. Changing the start reschedules its reminders."""
        await interaction.response.defer(ephemeral=True)
        self._track(interaction, "edit", event_id=event_id)

        start_at = None
        if start:
            start_at = parse_start(
                start,
                time_zone or "UTC",
                reset_hour=self.config.reset_utc_hour,
                reset_minute=self.config.reset_utc_minute,
            )

        occurrence = await self.service.edit_occurrence(
            event_id,
            OccurrencePatch(
                name=name,
                notes=notes,
                start_at=start_at,
                clear=frozenset({"notes"}) if clear_notes else frozenset(),
            ),
            interaction.guild_id,
        )
        await self.refresh_event_message(occurrence)
        await interaction.followup.send(f"Event #{event_id} updated.", ephemeral=True)

    # =========================================================================
    # /event recurring create
    # =========================================================================

    @recurring_group.command(name="create")
    @app_commands.describe(
        name="Series name",
        date="First date to generate from (YYYY-MM-DD)",
        time="Start time, 24-hour HH:MM",
        repeat_days="Days to repeat on, e.g. wed,sun",
        weeks_ahead="How many weeks of events to keep scheduled",
        time_zone="Timezone for the start time (default: UTC)",
        notes="Optional notes",
        reminders="Minutes before start to remind, e.g. 60,15,5",
    )
    async def create_series(
        self,
        interaction: discord.Interaction,
        name: str,
        date: str,
        time: str,
        repeat_days: str,
        weeks_ahead: app_commands.Range[int, 0, 52],
        time_zone: Optional[str] = None,
        notes: Optional[str] = None,
        reminders: Optional[str] = None,
    ):
        """Create a recurring event series."""
        await interaction.response.defer(ephemeral=True)
        self._track(interaction, "recurring_create")

        anchor = parse_anchor_date(date)
        channel = await self._posting_channel(interaction)
        if channel is None:
            await interaction.followup.send(
                "I cannot post to the configured events channel. Check channel ID and permissions.",
                ephemeral=True,
            )
            return

        template_id = await self.service.create_template(
            guild_id=interaction.guild_id,
            channel_id=channel.id,
            name=name,
            time_of_day=time,
            timezone=time_zone or "UTC",
            weekdays=repeat_days,
            horizon_weeks=weeks_ahead,
            notes=notes,
            lead_offsets=reminders,
            created_by=interaction.user.id,
        )
        template = await self.service.get_template(template_id)
        created = await self.service.generate_and_materialize(template, anchor)

        await interaction.followup.send(
            f"Recurring template **#{template_id}** created.\n"
            f"Generated **{created}** events into {channel.mention}.",
            ephemeral=True,
        )

    # =========================================================================
    # /event recurring list
    # =========================================================================

    @recurring_group.command(name="list")
    async def list_series(self, interaction: discord.Interaction):
        """List recurring templates."""
        await interaction.response.defer(ephemeral=True)
        self._track(interaction, "recurring_list")

        templates = await self.service.list_templates(interaction.guild_id)
        if not templates:
            await interaction.followup.send("No recurring templates found.", ephemeral=True)
            return

        lines = []
        for t in templates:
            state = "ACTIVE" if t.enabled else "DISABLED"
            offsets = ",".join(str(o) for o in t.lead_offsets) or "default"
            lines.append(
                f"**#{t.id}** • {t.name} • {format_weekdays(t.weekdays)} @ {t.time_of_day} "
                f"({t.timezone}) • weeks_ahead={t.horizon_weeks} • reminders={offsets} • {state}"
            )
        await interaction.followup.send("\n".join(lines), ephemeral=True)

    # =========================================================================
    # /event recurring edit, extend
    # =========================================================================

    @recurring_group.command(name="edit")
    @app_commands.describe(
        template_id="The template ID",
        name="New name",
        time="New start time (HH:MM)",
        time_zone="New timezone",
        repeat_days="New repeat days, e.g. mon,thu",
        weeks_ahead="New horizon in weeks",
        notes="New notes",
        reminders="New reminder minutes, e.g. 30,5",
        clear_notes="Remove the template's notes",
        apply_to_existing="Also update already scheduled future events",
    )
    async def edit_series(
        self,
        interaction: discord.Interaction,
        template_id: int,
        name: Optional[str] = None,
        time: Optional[str] = None,
        time_zone: Optional[str] = None,
        repeat_days: Optional[str] = None,
        weeks_ahead: Optional[app_commands.Range[int, 0, 52]] = None,
        notes: Optional[str] = None,
        reminders: Optional[str] = None,
        clear_notes: bool = False,
        apply_to_existing: bool = False,
    ):
        """Edit a recurring template."""
        await interaction.response.defer(ephemeral=True)
        self._track(interaction, "recurring_edit", template_id=template_id)

        template = await self.service.edit_template(
            template_id,
            TemplatePatch(
                name=name,
                notes=notes,
                timezone=time_zone,
                time_of_day=time,
                weekdays=repeat_days,
                horizon_weeks=weeks_ahead,
                lead_offsets=reminders,
                clear=frozenset({"notes"}) if clear_notes else frozenset(),
            ),
            interaction.guild_id,
        )

        suffix = ""
        if apply_to_existing:
            updated = await self.service.reschedule_future_occurrences(template)
            suffix = f" Applied to {updated} existing future event(s)."

        await interaction.followup.send(f"Template #{template_id} updated.{suffix}", ephemeral=True)

    @recurring_group.command(name="extend")
    @app_commands.describe(
        template_id="The template ID",
        weeks_ahead="New horizon in weeks",
    )
    async def extend_series(
        self,
        interaction: discord.Interaction,
        template_id: int,
        weeks_ahead: app_commands.Range[int, 0, 52],
    ):
        """Change a template's horizon and generate from today."""
        await interaction.response.defer(ephemeral=True)
        self._track(interaction, "recurring_extend", template_id=template_id)

        template = await self.service.edit_template(
            template_id, TemplatePatch(horizon_weeks=weeks_ahead), interaction.guild_id
        )
        anchor = local_date(self.service.clock(), template.timezone)
        created = await self.service.generate_and_materialize(template, anchor, skip_past=True)

        await interaction.followup.send(
            f"Template #{template_id} updated to weeks_ahead={weeks_ahead}. "
            f"Generated {created} additional events.",
            ephemeral=True,
        )

    # =========================================================================
    # /event recurring disable, enable, delete, purge
    # =========================================================================

    @recurring_group.command(name="disable")
    @app_commands.describe(template_id="The template ID")
    async def disable_series(self, interaction: discord.Interaction, template_id: int):
        """Stop generating new events for a template."""
        await interaction.response.defer(ephemeral=True)
        self._track(interaction, "recurring_disable", template_id=template_id)

        await self.service.set_template_enabled(template_id, False, interaction.guild_id)
        await interaction.followup.send(f"Template #{template_id} disabled.", ephemeral=True)

    @recurring_group.command(name="enable")
    @app_commands.describe(template_id="The template ID")
    async def enable_series(self, interaction: discord.Interaction, template_id: int):
        """Resume generating events for a template."""
        await interaction.response.defer(ephemeral=True)
        self._track(interaction, "recurring_enable", template_id=template_id)

        template = await self.service.set_template_enabled(template_id, True, interaction.guild_id)
        anchor = local_date(self.service.clock(), template.timezone)
        created = await self.service.generate_and_materialize(template, anchor, skip_past=True)
        await interaction.followup.send(
            f"Template #{template_id} enabled. Generated {created} events.", ephemeral=True
        )

    @recurring_group.command(name="delete")
    @app_commands.describe(
        template_id="The template ID",
        delete_events="Also delete its upcoming events (default: keep them)",
    )
    async def delete_series(
        self,
        interaction: discord.Interaction,
        template_id: int,
        delete_events: bool = False,
    ):
        """Delete a recurring template."""
        await interaction.response.defer(ephemeral=True)
        self._track(interaction, "recurring_delete", template_id=template_id)

        await self.service.get_template(template_id, interaction.guild_id)
        deleted = await self.service.delete_template(template_id, delete_occurrences=delete_events)
        await interaction.followup.send(
            f"Template #{template_id} deleted ({deleted} event(s) removed).", ephemeral=True
        )

    @recurring_group.command(name="purge")
    @app_commands.describe(
        template_id="The template ID",
        regenerate="Regenerate from the current template afterwards (default: true)",
    )
    async def purge_series(
        self,
        interaction: discord.Interaction,
        template_id: int,
        regenerate: bool = True,
    ):
        """Delete a template's upcoming events and optionally regenerate them."""
        await interaction.response.defer(ephemeral=True)
        self._track(interaction, "recurring_purge", template_id=template_id)

        template = await self.service.get_template(template_id, interaction.guild_id)
        now = self.service.clock()
        purged = await self.service.purge_future_occurrences(template_id, now)

        created = 0
        if regenerate:
            created = await self.service.generate_and_materialize(
                template, local_date(now, template.timezone), skip_past=True
            )

        await interaction.followup.send(
            f"Template #{template_id}: removed {purged} upcoming event(s), generated {created}.",
            ephemeral=True,
        )

    # =========================================================================
    # Autocomplete
    # =========================================================================

    @create_event.autocomplete("time_zone")
    @edit_event.autocomplete("time_zone")
    @create_series.autocomplete("time_zone")
    @edit_series.autocomplete("time_zone")
    async def timezone_autocomplete(
        self,
        interaction: discord.Interaction,
        current: str,
    ) -> list[app_commands.Choice[str]]:
        """Autocomplete for timezone parameters."""
        current_lower = current.lower()
        matches = [tz for tz in COMMON_TIMEZONES if current_lower in tz.lower()]

        # If no matches from common, search all pytz timezones
        if not matches and len(current) >= 2:
            matches = [tz for tz in pytz.common_timezones if current_lower in tz.lower()]

        return [app_commands.Choice(name=tz, value=tz) for tz in matches[:25]]

