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

"""Exceptions raised by the events engine."""


class EventError(Exception):
    """Base class for events engine errors."""

    pass


class EventValidationError(EventError, ValueError):
    """Raised when schedule or patch input is malformed. Nothing is written."""

    pass


class PersistenceConflict(EventError):
    """Raised when a write collides with a uniqueness constraint."""

    pass


class DeliveryFailure(EventError):
    """Raised when a reminder could not be sent to its destination."""

    pass


class OccurrenceNotFound(EventError, LookupError):
    """Raised when an event occurrence does not exist."""

    pass


class TemplateNotFound(EventError, LookupError):
    """Raised when a recurring template does not exist."""

    pass


class ConfigurationError(EventError):
    """Raised at startup when required configuration is missing."""

    pass
