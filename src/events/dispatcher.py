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
Reminder Dispatcher Module

Finds due reminders and delivers them, moving each one
PENDING -> FIRING -> FIRED.

Delivery is best-effort and at most once: a reminder is marked FIRED whether
or not the send succeeded, so a flaky destination never produces duplicate
notifications on a later poll.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from analytics import track

from .config import EventsConfig
from .delivery import Delivery, ReminderPayload
from .errors import DeliveryFailure
from .models import DueReminder
from .service import Clock, utcnow
from .store import EventStore

logger = logging.getLogger("rollcall.events.dispatcher")


@dataclass
class DispatchResult:
    delivered: int = 0
    failed: int = 0  # send raised or timed out
    dead: int = 0  # destination could not be resolved
    skipped: int = 0  # already FIRING in this process

    @property
    def processed(self) -> int:
        return self.delivered + self.failed + self.dead


class ReminderDispatcher:
    """Polls for due reminders and delivers them through a Delivery."""

    def __init__(
        self,
        store: EventStore,
        delivery: Delivery,
        config: Optional[EventsConfig] = None,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.delivery = delivery
        self.config = config or EventsConfig()
        self.clock = clock
        # Reminders currently in the transient FIRING state
        self._firing: set[int] = set()

    async def dispatch_due(self) -> DispatchResult:
        """
        Deliver one batch of due reminders.

        Selects up to reminder_batch_size unfired reminders with fire instant
        in [now - slack, now + slack], oldest first, and processes them one at
        a time.
        """
        now = self.clock()
        slack = timedelta(seconds=self.config.reminder_slack_seconds)
        due = await self.store.fetch_due_reminders(
            now - slack, now + slack, self.config.reminder_batch_size
        )

        result = DispatchResult()
        if not due:
            return result

        logger.info(f"Processing {len(due)} due reminder(s)")
        for reminder in due:
            if reminder.reminder_id in self._firing:
                result.skipped += 1
                continue

            self._firing.add(reminder.reminder_id)
            try:
                outcome = await self._fire(reminder)
            finally:
                self._firing.discard(reminder.reminder_id)

            if outcome == "delivered":
                result.delivered += 1
            elif outcome == "dead":
                result.dead += 1
            else:
                result.failed += 1

        return result

    async def _fire(self, reminder: DueReminder) -> str:
        """Attempt delivery of one reminder, then mark it FIRED regardless."""
        outcome = "delivered"
        try:
            target = await self._resolve(reminder)
            if target is None:
                outcome = "dead"
                logger.warning(
                    f"Reminder {reminder.reminder_id} for event {reminder.event_id}: "
                    f"channel {reminder.channel_id} unresolvable, not delivering"
                )
            else:
                await self._send(target, reminder)
                logger.info(
                    f"Delivered reminder {reminder.reminder_id} "
                    f"({reminder.offset_minutes} min) for event {reminder.event_id}"
                )
        except DeliveryFailure as e:
            outcome = "failed"
            logger.warning(f"Reminder {reminder.reminder_id} not delivered: {e}")
            track(
                "reminder_delivery_error",
                "error",
                channel_id=reminder.channel_id,
                properties={
                    "reminder_id": reminder.reminder_id,
                    "event_id": reminder.event_id,
                    "error_message": str(e)[:200],
                },
            )

        await self.store.mark_reminder_fired(reminder.reminder_id, self.clock())

        if outcome == "delivered":
            track(
                "reminder_delivered",
                "reminder",
                channel_id=reminder.channel_id,
                properties={
                    "reminder_id": reminder.reminder_id,
                    "event_id": reminder.event_id,
                    "minutes_before": reminder.offset_minutes,
                },
            )
        return outcome

    async def _resolve(self, reminder: DueReminder):
        try:
            return await self.delivery.resolve(reminder.channel_id)
        except Exception as e:
            raise DeliveryFailure(
                f"resolving channel {reminder.channel_id}: {type(e).__name__}: {e}"
            ) from e

    async def _send(self, target, reminder: DueReminder) -> None:
        try:
            await self.delivery.send(target, ReminderPayload.from_due(reminder))
        except Exception as e:
            raise DeliveryFailure(f"{type(e).__name__}: {e}") from e
