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
Community Events Package

Recurring event templates, occurrence materialization, and lead-time
reminders delivered by background loops, plus member check-ins.
"""

from .config import EventsConfig
from .delivery import DiscordDelivery, ReminderPayload, build_reminder_embed, format_start
from .dispatcher import DispatchResult, ReminderDispatcher
from .errors import (
    ConfigurationError,
    DeliveryFailure,
    EventError,
    EventValidationError,
    OccurrenceNotFound,
    PersistenceConflict,
    TemplateNotFound,
)
from .models import (
    CheckinCount,
    Occurrence,
    OccurrencePatch,
    OccurrenceStatus,
    Reminder,
    RsvpChoice,
    RsvpSummary,
    Template,
    TemplatePatch,
)
from .recurrence import generate_occurrences, parse_start, validate_timezone
from .scheduler import ReminderTickDriver, TopUpDriver
from .service import EventService
from .store import EventStore

__all__ = [
    "EventsConfig",
    "DiscordDelivery",
    "ReminderPayload",
    "build_reminder_embed",
    "format_start",
    "DispatchResult",
    "ReminderDispatcher",
    "ConfigurationError",
    "DeliveryFailure",
    "EventError",
    "EventValidationError",
    "OccurrenceNotFound",
    "PersistenceConflict",
    "TemplateNotFound",
    "CheckinCount",
    "Occurrence",
    "OccurrencePatch",
    "OccurrenceStatus",
    "Reminder",
    "RsvpChoice",
    "RsvpSummary",
    "Template",
    "TemplatePatch",
    "generate_occurrences",
    "parse_start",
    "validate_timezone",
    "ReminderTickDriver",
    "TopUpDriver",
    "EventService",
    "EventStore",
]
