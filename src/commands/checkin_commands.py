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
Check-in Slash Commands

Members check in with /intel checkin; moderators read activity back with
/intel leaderboard and /inactive check.
"""

import logging
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from analytics import track
from events import CheckinCount, EventService, EventsConfig, EventValidationError

logger = logging.getLogger("rollcall.commands.checkin")

# Mentions listed in one /inactive reply before summarizing the rest
INACTIVE_LIST_LIMIT = 40


def format_leaderboard(counts: list[CheckinCount]) -> str:
    return "\n".join(
        f"{rank}. <@{entry.user_id}> — **{entry.checkins}**"
        for rank, entry in enumerate(counts, start=1)
    )


def format_inactive(user_ids: list[int], days: int) -> str:
    """Reply body for /inactive check."""
    if not user_ids:
        return f"No members are inactive by check-ins (>{days} days)."

    listed = ", ".join(f"<@{uid}>" for uid in user_ids[:INACTIVE_LIST_LIMIT])
    hidden = len(user_ids) - INACTIVE_LIST_LIMIT
    more = f"\n…and {hidden} more." if hidden > 0 else ""
    return f"Inactive (no check-in within **{days}** days):\n{listed}{more}"


class CheckinCommands(commands.Cog):
    """
    Slash commands for member check-ins.

    Commands:
    - /intel checkin|leaderboard
    - /inactive check
    """

    intel_group = app_commands.Group(
        name="intel",
        description="Check in and see who is active",
        guild_only=True,
    )
    inactive_group = app_commands.Group(
        name="inactive",
        description="Find members who stopped checking in",
        guild_only=True,
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

    def _track(self, interaction: discord.Interaction, command: str, subcommand: str, **properties) -> None:
        track(
            "command_used",
            "command",
            user_id=interaction.user.id,
            channel_id=interaction.channel_id,
            guild_id=interaction.guild_id,
            properties={"command_name": command, "subcommand": subcommand, **properties},
        )

    async def _announce(self, user_id: int) -> None:
        """Post a check-in notice to the intel channel, if one is configured."""
        channel_id = self.config.intel_channel_id
        if not channel_id:
            return

        channel = self.bot.get_channel(channel_id)
        try:
            if channel is None:
                channel = await self.bot.fetch_channel(channel_id)
            if isinstance(channel, discord.abc.Messageable):
                await channel.send(f"✅ Check-in: <@{user_id}>")
        except discord.HTTPException as e:
            logger.warning(f"Could not post check-in notice to {channel_id}: {e}")

    async def _human_member_ids(self, guild: discord.Guild) -> list[int]:
        """Guild members who are not bots, fetched fresh when the intent allows it."""
        try:
            members = [member async for member in guild.fetch_members(limit=None)]
        except (discord.ClientException, discord.HTTPException) as e:
            logger.warning(f"Member fetch failed for guild {guild.id}, using cache: {e}")
            members = list(guild.members)
        return [member.id for member in members if not member.bot]

    async def cog_app_command_error(
        self,
        interaction: discord.Interaction,
        error: app_commands.AppCommandError,
    ) -> None:
        original = getattr(error, "original", error)
        if isinstance(original, EventValidationError):
            message = str(original)
        else:
            logger.error(f"Check-in command failed: {original}", exc_info=original)
            message = "An error occurred while processing that command. Check logs."

        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)

    # =========================================================================
    # /intel
    # =========================================================================

    @intel_group.command(name="checkin")
    async def checkin(self, interaction: discord.Interaction):
        """Record that you are active."""
        await interaction.response.defer(ephemeral=True)
        self._track(interaction, "intel", "checkin")

        await self.service.record_checkin(interaction.guild_id, interaction.user.id)
        await self._announce(interaction.user.id)
        await interaction.followup.send("Check-in recorded.", ephemeral=True)

    @intel_group.command(name="leaderboard")
    async def leaderboard(self, interaction: discord.Interaction):
        """Top check-ins over the last 7 days."""
        await interaction.response.defer(ephemeral=True)
        self._track(interaction, "intel", "leaderboard")

        counts = await self.service.checkin_leaderboard(interaction.guild_id)
        if not counts:
            await interaction.followup.send("No check-ins in the last 7 days.", ephemeral=True)
            return
        await interaction.followup.send(format_leaderboard(counts), ephemeral=True)

    # =========================================================================
    # /inactive
    # =========================================================================

    @inactive_group.command(name="check")
    @app_commands.describe(days="Days without a check-in (default: 7)")
    async def check_inactive(
        self,
        interaction: discord.Interaction,
        days: app_commands.Range[int, 1, 365] = 7,
    ):
        """List members with no check-in within the given number of days."""
        await interaction.response.defer(ephemeral=True)
        self._track(interaction, "inactive", "check", days=days)

        member_ids = await self._human_member_ids(interaction.guild)
        inactive = await self.service.find_inactive(interaction.guild_id, member_ids, days)
        await interaction.followup.send(format_inactive(inactive, days), ephemeral=True)
