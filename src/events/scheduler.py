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
Event Scheduler Module

The two background loops of the events engine, built on discord.ext.tasks:

- TopUpDriver: once a day, re-generates every enabled template from today so
  the materialized horizon keeps moving forward. No cursor is kept; the
  store's uniqueness constraint makes reruns harmless.
- ReminderTickDriver: every few seconds, delivers due reminders.

Both are owned by the bot, started and stopped explicitly, and expose tick()
so tests can drive them without waiting on a real clock. Each tick runs in its
own task shielded from the loop, so stopping a driver never interrupts a
half-finished tick; shutdown() stops the loop and waits for that tick.
"""

import asyncio
import logging
from datetime import time
from typing import TYPE_CHECKING, Optional

import pytz
from discord.ext import tasks

from analytics import track

if TYPE_CHECKING:
    from discord.ext import commands

from .dispatcher import DispatchResult, ReminderDispatcher
from .recurrence import local_date
from .service import Clock, EventService, utcnow
from .store import EventStore

logger = logging.getLogger("rollcall.events.scheduler")

DEFAULT_TOPUP_TIME = time(hour=0, minute=5, tzinfo=pytz.UTC)


class _ShieldedTicks:
    """
    In-flight tick tracking shared by both drivers.

    Loop.cancel() cancels whatever the loop task is awaiting. A tick that was
    cancelled between sending a reminder and marking it fired would leave the
    reminder pending, so the loop only ever awaits a shield around the tick.
    """

    _in_flight: Optional[asyncio.Task] = None

    async def run_tick(self):
        raise NotImplementedError

    async def _run_guarded(self):
        self._in_flight = asyncio.ensure_future(self.run_tick())
        return await asyncio.shield(self._in_flight)

    @property
    def in_flight(self) -> bool:
        """True while a tick is still running."""
        return self._in_flight is not None and not self._in_flight.done()

    def stop(self) -> None:
        raise NotImplementedError

    async def shutdown(self) -> None:
        """Stop the loop, then wait for any tick already underway to finish."""
        self.stop()
        if self.in_flight:
            await self._in_flight


class TopUpDriver(_ShieldedTicks):
    """
    Daily top-up of recurring templates.

    Each enabled template is anchored on today's date in its own timezone and
    materialized for its configured horizon. Past candidates are skipped.
    """

    def __init__(
        self,
        store: EventStore,
        service: EventService,
        bot: Optional["commands.Bot"] = None,
        clock: Clock = utcnow,
        run_at: time = DEFAULT_TOPUP_TIME,
        run_on_start: bool = True,
    ):
        """
        Args:
            store: Source of enabled templates
            service: Materializes occurrences
            bot: If given, the loop waits for it to be ready before running
            clock: Returns the current tz-aware UTC time
            run_at: Daily run time (tz-aware)
            run_on_start: Also run one tick as soon as the loop starts
        """
        self.store = store
        self.service = service
        self.bot = bot
        self.clock = clock
        self.run_at = run_at
        self.run_on_start = run_on_start
        self._started = False

    def start(self) -> None:
        """Start the top-up loop."""
        if not self._started:
            self._topup.change_interval(time=self.run_at)
            self._topup.start()
            self._started = True
            logger.info(f"Top-up driver started (daily at {self.run_at.strftime('%H:%M %Z')})")

    def stop(self) -> None:
        """Stop the top-up loop. A tick already running is left to finish."""
        if self._started:
            self._topup.cancel()
            self._started = False
            logger.info("Top-up driver stopped")

    @property
    def is_running(self) -> bool:
        return self._started

    @tasks.loop(hours=24)
    async def _topup(self) -> None:
        await self._run_guarded()

    @_topup.before_loop
    async def _before_topup(self) -> None:
        if self.bot is not None:
            await self.bot.wait_until_ready()
        if self.run_on_start:
            await self._run_guarded()

    async def run_tick(self) -> Optional[int]:
        """Run one tick, logging instead of raising on failure."""
        try:
            return await self.tick()
        except Exception as e:
            logger.error(f"Error in top-up loop: {e}", exc_info=True)
            track(
                "scheduler_error",
                "error",
                properties={
                    "driver": "topup",
                    "error_type": type(e).__name__,
                    "error_message": str(e)[:200],
                },
            )
            return None

    async def tick(self) -> int:
        """
        Materialize every enabled template from today.

        A failure on one template is logged and the rest still run.

        Returns:
            Total occurrences inserted
        """
        now = self.clock()
        templates = await self.store.list_enabled_templates()

        inserted = 0
        for template in templates:
            if not template.enabled:
                continue
            try:
                anchor = local_date(now, template.timezone)
                inserted += await self.service.generate_and_materialize(
                    template, anchor, skip_past=True
                )
            except Exception as e:
                logger.error(f"Top-up failed for template {template.id}: {e}", exc_info=True)

        logger.info(f"Top-up: {len(templates)} template(s), {inserted} new occurrence(s)")
        return inserted


class ReminderTickDriver(_ShieldedTicks):
    """High-frequency loop that hands each tick to the ReminderDispatcher."""

    def __init__(
        self,
        dispatcher: ReminderDispatcher,
        bot: Optional["commands.Bot"] = None,
        interval: float = 30.0,
    ):
        self.dispatcher = dispatcher
        self.bot = bot
        self.interval = interval
        self._started = False

    def start(self) -> None:
        """Start the reminder loop."""
        if not self._started:
            self._check_reminders.change_interval(seconds=self.interval)
            self._check_reminders.start()
            self._started = True
            logger.info(f"Reminder driver started (interval: {self.interval}s)")

    def stop(self) -> None:
        """Stop the reminder loop. A tick already running is left to finish."""
        if self._started:
            self._check_reminders.cancel()
            self._started = False
            logger.info("Reminder driver stopped")

    @property
    def is_running(self) -> bool:
        return self._started

    @tasks.loop(seconds=30)
    async def _check_reminders(self) -> None:
        await self._run_guarded()

    @_check_reminders.before_loop
    async def _before_check(self) -> None:
        """Wait for the bot to be ready before starting the loop."""
        if self.bot is not None:
            await self.bot.wait_until_ready()
        logger.info("Reminder driver ready, starting loop")

    async def run_tick(self) -> Optional[DispatchResult]:
        """Run one tick, logging instead of raising on failure."""
        try:
            return await self.tick()
        except Exception as e:
            logger.error(f"Error in reminder loop: {e}", exc_info=True)
            track(
                "scheduler_error",
                "error",
                properties={
                    "driver": "reminders",
                    "error_type": type(e).__name__,
                    "error_message": str(e)[:200],
                },
            )
            return None

    async def tick(self) -> DispatchResult:
        return await self.dispatcher.dispatch_due()
