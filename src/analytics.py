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
Lightweight usage analytics for rollcall.

The bot hands its connection pool to configure() at startup; until then (and
in tests) tracking is a no-op.

Usage:
    from analytics import track

    track("event_created", "event", guild_id=123, properties={"event_id": 7})
"""

import asyncio
import json
import logging
import os
from typing import Any, Optional

import asyncpg

logger = logging.getLogger("rollcall.analytics")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS analytics_events (
    id BIGSERIAL PRIMARY KEY,
    event_name TEXT NOT NULL,
    event_category TEXT NOT NULL,
    user_id BIGINT,
    channel_id BIGINT,
    guild_id BIGINT,
    properties JSONB NOT NULL DEFAULT '{}',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

_pool: Optional[asyncpg.Pool] = None
_enabled: bool = os.getenv("ANALYTICS_ENABLED", "true").lower() == "true"


async def configure(pool: asyncpg.Pool) -> None:
    """Start recording into the given pool, creating the table if needed."""
    global _pool
    if not _enabled:
        logger.info("Analytics disabled")
        return
    await pool.execute(SCHEMA_SQL)
    _pool = pool


async def track_async(
    event_name: str,
    event_category: str,
    user_id: Optional[int] = None,
    channel_id: Optional[int] = None,
    guild_id: Optional[int] = None,
    properties: Optional[dict[str, Any]] = None,
) -> bool:
    """
    Record an event.

    Args:
        event_name: Specific event identifier (e.g., "reminder_delivered")
        event_category: One of: command, event, reminder, error, system
        user_id: Discord user ID (optional)
        channel_id: Discord channel ID (optional)
        guild_id: Discord guild ID (optional)
        properties: Additional event data as key-value pairs

    Returns:
        True if event was recorded, False otherwise
    """
    if _pool is None:
        return False

    try:
        await _pool.execute(
            """
            INSERT INTO analytics_events
                (event_name, event_category, user_id, channel_id, guild_id, properties)
            VALUES ($1, $2, $3, $4, $5, $6)
            """,
            event_name,
            event_category,
            user_id,
            channel_id,
            guild_id,
            json.dumps(properties or {}, default=str),
        )
        return True
    except Exception as e:
        logger.debug(f"Analytics tracking failed: {e}")
        return False


def track(
    event_name: str,
    event_category: str,
    user_id: Optional[int] = None,
    channel_id: Optional[int] = None,
    guild_id: Optional[int] = None,
    properties: Optional[dict[str, Any]] = None,
) -> None:
    """
    Record an event without waiting (fire-and-forget).

    Does nothing until configure() has been called.
    """
    if _pool is None:
        return

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return
    loop.create_task(
        track_async(event_name, event_category, user_id, channel_id, guild_id, properties)
    )


def reset() -> None:
    """Stop recording. The pool itself is owned and closed by the bot."""
    global _pool
    _pool = None
