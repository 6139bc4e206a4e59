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

"""Tests for reminder rendering and Discord delivery."""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from events.delivery import (
    DiscordDelivery,
    ReminderPayload,
    build_reminder_embed,
    format_start,
    safe_truncate,
)
from fakes import utc


def make_payload(**overrides):
    values = dict(
        event_id=3,
        name="Quiz",
        start_at=utc(2024, 1, 3, 18, 0),
        minutes_before=15,
        notes=None,
    )
    values.update(overrides)
    return ReminderPayload(**values)


class TestRendering:
    def test_format_start(self):
        assert format_start(utc(2024, 1, 3, 18, 0)) == "<t:1704304800:F> • **2024-01-03 18:00 UTC**"

    def test_safe_truncate(self):
        assert safe_truncate(None) is None
        assert safe_truncate("short") == "short"
        truncated = safe_truncate("x" * 901)
        assert len(truncated) == 900
        assert truncated.endswith("…")

    def test_embed(self):
        embed = build_reminder_embed(make_payload(notes="Bring snacks"), now=utc(2024, 1, 3, 17, 45))
        assert embed.title == "Reminder: Quiz (Event #3)"
        assert "Starts in **15 min**" in embed.description
        assert "<t:1704304800:F>" in embed.description
        assert "Bring snacks" in embed.description
        assert "/event rsvp event_id:3" in embed.description

    def test_embed_without_notes(self):
        embed = build_reminder_embed(make_payload(), now=utc(2024, 1, 3, 17, 45))
        assert "Notes" not in embed.description


class TestDiscordDelivery:
    @pytest.mark.asyncio
    async def test_resolve_cached_channel(self):
        channel = MagicMock(spec=discord.TextChannel)
        bot = MagicMock()
        bot.get_channel.return_value = channel

        assert await DiscordDelivery(bot).resolve(10) is channel

    @pytest.mark.asyncio
    async def test_resolve_fetches_when_not_cached(self):
        channel = MagicMock(spec=discord.TextChannel)
        bot = MagicMock()
        bot.get_channel.return_value = None
        bot.fetch_channel = AsyncMock(return_value=channel)

        assert await DiscordDelivery(bot).resolve(10) is channel
        bot.fetch_channel.assert_awaited_once_with(10)

    @pytest.mark.asyncio
    async def test_resolve_missing_channel(self):
        bot = MagicMock()
        bot.get_channel.return_value = None
        bot.fetch_channel = AsyncMock(
            side_effect=discord.NotFound(MagicMock(status=404, reason="Not Found"), "Unknown Channel")
        )

        assert await DiscordDelivery(bot).resolve(10) is None

    @pytest.mark.asyncio
    async def test_resolve_non_text_channel(self):
        bot = MagicMock()
        bot.get_channel.return_value = MagicMock(spec=discord.CategoryChannel)

        assert await DiscordDelivery(bot).resolve(10) is None

    @pytest.mark.asyncio
    async def test_send_posts_embed(self):
        target = MagicMock()
        target.send = AsyncMock()

        await DiscordDelivery(MagicMock()).send(target, make_payload())

        embed = target.send.call_args.kwargs["embed"]
        assert embed.title == "Reminder: Quiz (Event #3)"
