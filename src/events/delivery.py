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
Reminder Delivery Module

Resolves destination channels and sends reminder embeds to Discord.
Every call to Discord is bounded by a timeout so a hung request cannot stall
the reminder loop.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional, Protocol

import discord
import pytz

if TYPE_CHECKING:
    from discord.ext import commands

from .models import DueReminder

logger = logging.getLogger("rollcall.events.delivery")

NOTES_MAX_LENGTH = 900


def safe_truncate(text: Optional[str], limit: int = NOTES_MAX_LENGTH) -> Optional[str]:
    if not text:
        return text
    return text if len(text) <= limit else text[: limit - 1] + "…"


def format_start(start_at: datetime) -> str:
    """
    Render a start instant for Discord.

    Discord shows <t:unix:F> in each reader's local time; the explicit UTC
    text is for everyone else.
    """
    unix = int(start_at.timestamp())
    utc = start_at.astimezone(pytz.UTC).strftime("%Y-%m-%d %H:%M UTC")
    return f"<t:{unix}:F> • **{utc}**"


@dataclass
class ReminderPayload:
    """What a reminder says about its event."""

    event_id: int
    name: str
    start_at: datetime
    minutes_before: int
    notes: Optional[str] = None

    @classmethod
    def from_due(cls, reminder: DueReminder) -> "ReminderPayload":
        return cls(
            event_id=reminder.event_id,
            name=reminder.name,
            start_at=reminder.start_at,
            minutes_before=reminder.offset_minutes,
            notes=reminder.notes,
        )


def build_reminder_embed(payload: ReminderPayload, now: Optional[datetime] = None) -> discord.Embed:
    """
    Build the embed for a reminder delivery.

    Args:
        payload: Reminder payload
        now: Embed timestamp (defaults to current time)

    Returns:
        Discord embed
    """
    lines = [
        f"Starts in **{payload.minutes_before} min**.",
        "",
        "**Start**",
        format_start(payload.start_at),
    ]
    if payload.notes:
        lines.extend(["", f"**Notes:** {safe_truncate(payload.notes)}"])
    lines.extend(["", f"RSVP: `/event rsvp event_id:{payload.event_id}`"])

    return discord.Embed(
        title=f"Reminder: {payload.name} (Event #{payload.event_id})",
        description="\n".join(lines),
        color=discord.Color.orange(),
        timestamp=now or datetime.now(pytz.UTC),
    )


class Delivery(Protocol):
    """Boundary to wherever reminders are sent."""

    async def resolve(self, channel_id: int) -> Optional[Any]:
        """Return a sendable target, or None if the destination is gone."""
        ...

    async def send(self, target: Any, payload: ReminderPayload) -> None:
        """Send a payload; raises on failure."""
        ...


class DiscordDelivery:
    """Delivers reminders to Discord text channels."""

    def __init__(self, bot: "commands.Bot", timeout: float = 10.0):
        """
        Args:
            bot: Connected Discord bot
            timeout: Seconds allowed for each resolve or send call
        """
        self.bot = bot
        self.timeout = timeout

    async def resolve(self, channel_id: int) -> Optional[discord.abc.Messageable]:
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            try:
                channel = await asyncio.wait_for(
                    self.bot.fetch_channel(channel_id), timeout=self.timeout
                )
            except (discord.NotFound, discord.Forbidden) as e:
                logger.warning(f"Channel {channel_id} unavailable: {e}")
                return None

        if not isinstance(channel, discord.abc.Messageable):
            logger.warning(f"Channel {channel_id} is not a text channel")
            return None
        return channel

    async def send(self, target: discord.abc.Messageable, payload: ReminderPayload) -> None:
        await asyncio.wait_for(
            target.send(embed=build_reminder_embed(payload)), timeout=self.timeout
        )
