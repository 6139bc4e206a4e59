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
Events Configuration

Tunable parameters for occurrence generation, reminder delivery and
check-in notices.
Values can be overridden via environment variables.
"""

import logging
import os
from dataclasses import dataclass
from datetime import time
from typing import Optional

import pytz

logger = logging.getLogger("rollcall.events.config")

DEFAULT_LEAD_OFFSETS = (60, 15, 5)


def parse_reminders_env(raw: Optional[str], default: tuple[int, ...] = DEFAULT_LEAD_OFFSETS) -> tuple[int, ...]:
    """
    Parse EVENT_REMINDERS like "60,15,5".

    Invalid and non-positive entries are dropped; falls back to the default
    when nothing usable remains. Result is sorted descending.
    """
    if not raw or not raw.strip():
        return tuple(default)

    offsets = set()
    for part in raw.split(","):
        try:
            minutes = int(part.strip())
        except ValueError:
            logger.warning(f"Ignoring invalid EVENT_REMINDERS entry: {part!r}")
            continue
        if minutes > 0:
            offsets.add(minutes)

    return tuple(sorted(offsets, reverse=True)) if offsets else tuple(default)


def _parse_utc_time(raw: str, default: time) -> time:
    try:
        hour, minute = (int(p) for p in raw.strip().split(":"))
        return time(hour=hour, minute=minute, tzinfo=pytz.UTC)
    except (ValueError, AttributeError):
        logger.warning(f"Invalid EVENT_TOPUP_UTC_TIME {raw!r}, using {default}")
        return default


@dataclass
class EventsConfig:
    """Configuration for the events engine."""

    # Lead times applied when a template or one-off event has none of its own
    default_lead_offsets: tuple[int, ...] = DEFAULT_LEAD_OFFSETS

    # Reminder polling
    reminder_poll_seconds: float = 30.0
    reminder_slack_seconds: float = 30.0  # due window is [now - slack, now + slack]
    reminder_batch_size: int = 25

    # Bound on a single resolve/send against Discord
    delivery_timeout: float = 10.0

    # Daily top-up of recurring templates
    topup_time: time = time(hour=0, minute=5, tzinfo=pytz.UTC)
    topup_on_start: bool = True

    # asyncpg command_timeout for every store call
    db_command_timeout: float = 10.0

    # Force event posts into one channel instead of the invoking channel
    events_channel_id: Optional[int] = None

    # Channel that receives a notice for every member check-in
    intel_channel_id: Optional[int] = None

    # Daily reset used by the "utcreset" start shorthand
    reset_utc_hour: int = 0
    reset_utc_minute: int = 0

    @classmethod
    def from_env(cls) -> "EventsConfig":
        """Create config from environment variables with defaults."""
        channel = os.getenv("EVENTS_CHANNEL_ID", "").strip()
        intel_channel = os.getenv("INTEL_CHANNEL_ID", "").strip()
        return cls(
            default_lead_offsets=parse_reminders_env(os.getenv("EVENT_REMINDERS")),
            reminder_poll_seconds=float(os.getenv("EVENT_REMINDER_POLL_SECONDS", "30")),
            reminder_slack_seconds=float(os.getenv("EVENT_REMINDER_SLACK_SECONDS", "30")),
            reminder_batch_size=int(os.getenv("EVENT_REMINDER_BATCH_SIZE", "25")),
            delivery_timeout=float(os.getenv("EVENT_DELIVERY_TIMEOUT", "10")),
            topup_time=_parse_utc_time(
                os.getenv("EVENT_TOPUP_UTC_TIME", "00:05"), cls.topup_time
            ),
            topup_on_start=os.getenv("EVENT_TOPUP_ON_START", "true").lower() == "true",
            db_command_timeout=float(os.getenv("EVENT_DB_COMMAND_TIMEOUT", "10")),
            events_channel_id=int(channel) if channel else None,
            intel_channel_id=int(intel_channel) if intel_channel else None,
            reset_utc_hour=int(os.getenv("RESET_UTC_HOUR", "0")),
            reset_utc_minute=int(os.getenv("RESET_UTC_MINUTE", "0")),
        )
