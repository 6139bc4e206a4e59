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

"""Tests for the template and occurrence patch records."""

import sys
from datetime import datetime
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from events.errors import EventValidationError
from events.models import (
    OCCURRENCE_PATCH_COLUMNS,
    OccurrencePatch,
    RsvpSummary,
    TemplatePatch,
)
from fakes import utc


class TestTemplatePatch:
    def test_validated_normalizes(self):
        patch = TemplatePatch(
            name="  Raid  ",
            timezone="america/chicago",
            time_of_day=(7, 5),
            weekdays="sun,wed",
            lead_offsets="5,60",
        ).validated()

        assert patch.name == "Raid"
        assert patch.timezone == "America/Chicago"
        assert patch.time_of_day == "07:05"
        assert patch.to_columns() == {
            "name": "Raid",
            "timezone": "America/Chicago",
            "time_of_day": "07:05",
            "weekdays": [2, 6],
            "lead_offsets": [60, 5],
        }
        assert patch.changes_schedule is True

    def test_disable_is_not_empty(self):
        patch = TemplatePatch(enabled=False).validated()
        assert patch.to_columns() == {"enabled": False}
        assert patch.changes_schedule is False

    def test_empty(self):
        assert TemplatePatch().validated().is_empty()

    def test_clear_notes(self):
        patch = TemplatePatch(clear="notes").validated()
        assert patch.to_columns() == {"notes": None}
        assert patch.changes_schedule is False

    def test_cannot_clear_required_column(self):
        with pytest.raises(EventValidationError):
            TemplatePatch(clear={"timezone"}).validated()

    @pytest.mark.parametrize("fields", [
        {"weekdays": []},
        {"time_of_day": "7pm"},
        {"timezone": "Nowhere"},
        {"horizon_weeks": 53},
        {"enabled": "yes"},
        {"name": ""},
    ])
    def test_rejects_invalid(self, fields):
        with pytest.raises(EventValidationError):
            TemplatePatch(**fields).validated()


class TestOccurrencePatch:
    def test_status_is_not_patchable(self):
        assert "status" not in OCCURRENCE_PATCH_COLUMNS

    def test_requires_aware_start(self):
        with pytest.raises(EventValidationError):
            OccurrencePatch(start_at=datetime(2024, 1, 3, 18, 0)).validated()

    def test_to_columns_skips_unset(self):
        patch = OccurrencePatch(notes="Bring snacks", start_at=utc(2024, 1, 3, 18, 0)).validated()
        assert patch.to_columns() == {"notes": "Bring snacks", "start_at": utc(2024, 1, 3, 18, 0)}

    def test_notes_length(self):
        with pytest.raises(EventValidationError):
            OccurrencePatch(notes="x" * 1001).validated()

    def test_clear_notes_maps_to_null(self):
        patch = OccurrencePatch(name="Quiz", clear={"notes"}).validated()
        assert patch.to_columns() == {"name": "Quiz", "notes": None}
        assert not patch.is_empty()

    def test_none_still_means_unchanged(self):
        assert "notes" not in OccurrencePatch(name="Quiz").validated().to_columns()

    @pytest.mark.parametrize("fields", [
        {"clear": {"name"}},
        {"clear": {"start_at"}},
        {"notes": "Bring snacks", "clear": {"notes"}},
    ])
    def test_rejects_bad_clear(self, fields):
        with pytest.raises(EventValidationError):
            OccurrencePatch(**fields).validated()


class TestRsvpSummary:
    def test_counts(self):
        summary = RsvpSummary(yes=[1, 2], no=[3])
        assert summary.counts == {"YES": 2, "MAYBE": 0, "NO": 1}
