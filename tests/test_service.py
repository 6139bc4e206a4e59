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

"""Tests for materialization, reminder scheduling and occurrence edits."""

import sys
from datetime import date, timedelta
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from events.config import EventsConfig
from events.errors import (
    EventValidationError,
    OccurrenceNotFound,
    PersistenceConflict,
    TemplateNotFound,
)
from events.models import OccurrencePatch, OccurrenceStatus, TemplatePatch
from events.service import EventService
from fakes import FakeClock, InMemoryEventStore, utc


def make_service(now=None, offsets=(60, 15, 5)):
    store = InMemoryEventStore()
    clock = FakeClock(now or utc(2024, 1, 1, 0, 0))
    service = EventService(store, EventsConfig(default_lead_offsets=offsets), clock=clock)
    return store, clock, service


async def make_template(service, store, **overrides):
    params = dict(
        guild_id=1,
        channel_id=10,
        name="Raid Night",
        time_of_day="18:00",
        timezone="UTC",
        weekdays="wed",
        horizon_weeks=2,
    )
    params.update(overrides)
    template_id = await service.create_template(**params)
    return store.templates[template_id]


class TestTemplates:
    @pytest.mark.asyncio
    async def test_create_normalizes_inputs(self):
        store, _, service = make_service()
        template = await make_template(
            service, store, weekdays="Sunday, wed", timezone="America/Chicago", lead_offsets="5,60"
        )
        assert template.weekdays == (2, 6)
        assert template.timezone == "America/Chicago"
        assert template.lead_offsets == (60, 5)
        assert template.enabled is True

    @pytest.mark.asyncio
    async def test_invalid_template_writes_nothing(self):
        store, _, service = make_service()
        bad_inputs = [
            {"weekdays": ""},
            {"time_of_day": "25:00"},
            {"timezone": "Nowhere/Special"},
            {"horizon_weeks": 99},
            {"name": "   "},
            {"lead_offsets": "0"},
        ]
        for overrides in bad_inputs:
            with pytest.raises(EventValidationError):
                await make_template(service, store, **overrides)
        assert store.writes == 0
        assert store.templates == {}

    @pytest.mark.asyncio
    async def test_edit_template_rejects_bad_patch_without_writes(self):
        store, _, service = make_service()
        template = await make_template(service, store)
        writes = store.writes

        with pytest.raises(EventValidationError):
            await service.edit_template(template.id, TemplatePatch(weekdays=[]))
        with pytest.raises(EventValidationError):
            await service.edit_template(template.id, TemplatePatch())
        assert store.writes == writes

    @pytest.mark.asyncio
    async def test_edit_missing_template(self):
        _, _, service = make_service()
        with pytest.raises(TemplateNotFound):
            await service.edit_template(404, TemplatePatch(name="x"))

    @pytest.mark.asyncio
    async def test_disable_template(self):
        store, _, service = make_service()
        template = await make_template(service, store)
        updated = await service.set_template_enabled(template.id, False)
        assert updated.enabled is False

    @pytest.mark.asyncio
    async def test_delete_template_keeps_occurrences_by_default(self):
        store, _, service = make_service()
        template = await make_template(service, store)
        await service.generate_and_materialize(template, date(2024, 1, 1))

        assert await service.delete_template(template.id) == 0
        assert template.id not in store.templates
        assert len(store.occurrences) == 2
        assert all(o.template_id is None for o in store.occurrences.values())

    @pytest.mark.asyncio
    async def test_delete_template_with_active_occurrences(self):
        store, _, service = make_service()
        template = await make_template(service, store)
        await service.generate_and_materialize(template, date(2024, 1, 1))
        first = min(store.occurrences.values(), key=lambda o: o.start_at)
        await service.end_occurrence(first.id)

        assert await service.delete_template(template.id, delete_occurrences=True) == 1
        # The ENDED occurrence survives as history
        assert list(store.occurrences) == [first.id]


class TestMaterialize:
    @pytest.mark.asyncio
    async def test_materialize_inserts_occurrences_and_reminders(self):
        store, _, service = make_service()
        template = await make_template(service, store)

        inserted = await service.generate_and_materialize(template, date(2024, 1, 1))

        assert inserted == 2
        starts = sorted(o.start_at for o in store.occurrences.values())
        assert starts == [utc(2024, 1, 3, 18, 0), utc(2024, 1, 10, 18, 0)]
        assert all(o.occurrence_date is not None for o in store.occurrences.values())
        assert len(store.reminders) == 6

    @pytest.mark.asyncio
    async def test_materialize_is_idempotent(self):
        store, _, service = make_service()
        template = await make_template(service, store)

        assert await service.generate_and_materialize(template, date(2024, 1, 1)) == 2
        assert await service.generate_and_materialize(template, date(2024, 1, 1)) == 0
        assert len(store.occurrences) == 2
        assert len(store.reminders) == 6

    @pytest.mark.asyncio
    async def test_rerun_restores_missing_reminders(self):
        store, clock, service = make_service()
        template = await make_template(service, store)
        await service.generate_and_materialize(template, date(2024, 1, 1))
        first = min(store.occurrences.values(), key=lambda o: o.start_at)
        for reminder in await store.list_reminders(first.id):
            await store.delete_reminder(first.id, reminder.offset_minutes)

        candidates = [o.start_at for o in store.occurrences.values()]
        result = await service.materialize(template, candidates)

        assert result.inserted == 0
        assert result.skipped == 2
        assert result.repaired == 3
        assert len(await store.list_reminders(first.id)) == 3

    @pytest.mark.asyncio
    async def test_overlapping_windows_only_add_new_dates(self):
        store, _, service = make_service()
        template = await make_template(service, store)

        await service.generate_and_materialize(template, date(2024, 1, 1))
        assert await service.generate_and_materialize(template, date(2024, 1, 8)) == 1
        assert len(store.occurrences) == 3

    @pytest.mark.asyncio
    async def test_disabled_template_materializes_nothing(self):
        store, _, service = make_service()
        template = await make_template(service, store)
        template = await service.set_template_enabled(template.id, False)

        assert await service.generate_and_materialize(template, date(2024, 1, 1)) == 0
        assert store.occurrences == {}

    @pytest.mark.asyncio
    async def test_skip_past_candidates(self):
        store, _, service = make_service(now=utc(2024, 1, 5, 0, 0))
        template = await make_template(service, store)

        inserted = await service.generate_and_materialize(template, date(2024, 1, 1), skip_past=True)

        assert inserted == 1
        assert [o.start_at for o in store.occurrences.values()] == [utc(2024, 1, 10, 18, 0)]

    @pytest.mark.asyncio
    async def test_template_lead_offsets_override_defaults(self):
        store, _, service = make_service()
        template = await make_template(service, store, lead_offsets=[30], horizon_weeks=1)

        await service.generate_and_materialize(template, date(2024, 1, 1))

        assert [r.offset_minutes for r in store.reminders.values()] == [30]


class TestScheduleReminders:
    @pytest.mark.asyncio
    async def test_no_reminders_in_the_past(self):
        # 20 minutes before start: only the 15 and 5 minute reminders are still ahead
        store, _, service = make_service(now=utc(2024, 1, 3, 17, 40))
        occurrence = await service.create_occurrence(1, 10, "Quiz", utc(2024, 1, 3, 18, 0))

        offsets = sorted(r.offset_minutes for r in store.reminders.values())
        assert offsets == [5, 15]
        assert all(r.fire_at > utc(2024, 1, 3, 17, 40) for r in store.reminders.values())
        assert occurrence.is_active

    @pytest.mark.asyncio
    async def test_reminder_exactly_now_is_dropped(self):
        store, _, service = make_service(now=utc(2024, 1, 3, 17, 0))
        await service.create_occurrence(1, 10, "Quiz", utc(2024, 1, 3, 18, 0))

        assert sorted(r.offset_minutes for r in store.reminders.values()) == [5, 15]

    @pytest.mark.asyncio
    async def test_schedule_is_idempotent(self):
        store, _, service = make_service()
        occurrence = await service.create_occurrence(1, 10, "Quiz", utc(2024, 1, 3, 18, 0))

        assert await service.schedule_reminders(occurrence) == 0
        assert len(store.reminders) == 3

    @pytest.mark.asyncio
    async def test_ended_occurrence_gets_no_reminders(self):
        store, _, service = make_service()
        occurrence = await service.create_occurrence(1, 10, "Quiz", utc(2024, 1, 3, 18, 0))
        await service.end_occurrence(occurrence.id)
        ended = store.occurrences[occurrence.id]

        assert await service.schedule_reminders(ended, [120]) == 0
        assert store.reminders == {}


class TestOccurrences:
    @pytest.mark.asyncio
    async def test_end_is_monotone(self):
        store, _, service = make_service()
        occurrence = await service.create_occurrence(1, 10, "Quiz", utc(2024, 1, 3, 18, 0))

        assert await service.end_occurrence(occurrence.id) is True
        assert await service.end_occurrence(occurrence.id) is False
        assert store.occurrences[occurrence.id].status == OccurrenceStatus.ENDED

    @pytest.mark.asyncio
    async def test_end_drops_pending_reminders(self):
        store, _, service = make_service()
        occurrence = await service.create_occurrence(1, 10, "Quiz", utc(2024, 1, 3, 18, 0))
        await service.end_occurrence(occurrence.id)
        assert store.reminders == {}

    @pytest.mark.asyncio
    async def test_end_missing_occurrence(self):
        _, _, service = make_service()
        with pytest.raises(OccurrenceNotFound):
            await service.end_occurrence(99)

    @pytest.mark.asyncio
    async def test_edit_start_reconciles_reminders(self):
        store, clock, service = make_service(offsets=(60, 15))
        occurrence = await service.create_occurrence(1, 10, "Quiz", utc(2024, 1, 3, 18, 0))

        updated = await service.edit_occurrence(
            occurrence.id, OccurrencePatch(start_at=utc(2024, 1, 4, 20, 0))
        )

        assert updated.start_at == utc(2024, 1, 4, 20, 0)
        fire_times = sorted(r.fire_at for r in store.reminders.values())
        assert fire_times == [utc(2024, 1, 4, 19, 0), utc(2024, 1, 4, 19, 45)]

    @pytest.mark.asyncio
    async def test_edit_start_rearms_fired_reminder(self):
        store, clock, service = make_service(offsets=(60,))
        occurrence = await service.create_occurrence(1, 10, "Quiz", utc(2024, 1, 3, 18, 0))
        reminder = next(iter(store.reminders.values()))
        await store.mark_reminder_fired(reminder.id, utc(2024, 1, 3, 17, 0))

        clock.now = utc(2024, 1, 3, 17, 30)
        await service.edit_occurrence(occurrence.id, OccurrencePatch(start_at=utc(2024, 1, 3, 20, 0)))

        rearmed = store.reminders[reminder.id]
        assert rearmed.fired is False
        assert rearmed.fire_at == utc(2024, 1, 3, 19, 0)

    @pytest.mark.asyncio
    async def test_edit_start_into_near_future_removes_passed_offsets(self):
        store, clock, service = make_service(offsets=(60, 15))
        occurrence = await service.create_occurrence(1, 10, "Quiz", utc(2024, 1, 3, 18, 0))

        clock.now = utc(2024, 1, 3, 12, 0)
        await service.edit_occurrence(occurrence.id, OccurrencePatch(start_at=utc(2024, 1, 3, 12, 30)))

        assert [r.offset_minutes for r in store.reminders.values()] == [15]

    @pytest.mark.asyncio
    async def test_edit_name_only_leaves_reminders(self):
        store, _, service = make_service()
        occurrence = await service.create_occurrence(1, 10, "Quiz", utc(2024, 1, 3, 18, 0))
        before = dict(store.reminders)

        updated = await service.edit_occurrence(occurrence.id, OccurrencePatch(name="Trivia"))

        assert updated.name == "Trivia"
        assert store.reminders == before

    @pytest.mark.asyncio
    async def test_edit_validation_writes_nothing(self):
        store, _, service = make_service()
        occurrence = await service.create_occurrence(1, 10, "Quiz", utc(2024, 1, 3, 18, 0))
        writes = store.writes

        with pytest.raises(EventValidationError):
            await service.edit_occurrence(occurrence.id, OccurrencePatch(name="x" * 101))
        with pytest.raises(EventValidationError):
            await service.edit_occurrence(occurrence.id, OccurrencePatch())
        assert store.writes == writes

    @pytest.mark.asyncio
    async def test_edit_onto_sibling_start_conflicts(self):
        store, _, service = make_service()
        template = await make_template(service, store)
        await service.generate_and_materialize(template, date(2024, 1, 1))
        first, second = sorted(store.occurrences.values(), key=lambda o: o.start_at)

        with pytest.raises(PersistenceConflict):
            await service.edit_occurrence(first.id, OccurrencePatch(start_at=second.start_at))

    @pytest.mark.asyncio
    async def test_start_is_truncated_to_milliseconds(self):
        store, _, service = make_service()
        start = utc(2024, 1, 3, 18, 0) + timedelta(microseconds=123456)
        occurrence = await service.create_occurrence(1, 10, "Quiz", start)
        assert occurrence.start_at.microsecond == 123000


class TestSeriesChanges:
    @pytest.mark.asyncio
    async def test_purge_then_regenerate(self):
        store, clock, service = make_service()
        template = await make_template(service, store, horizon_weeks=3)
        await service.generate_and_materialize(template, date(2024, 1, 1))

        template = await service.edit_template(template.id, TemplatePatch(time_of_day="19:30"))
        deleted = await service.purge_future_occurrences(template.id, utc(2024, 1, 5, 0, 0))
        assert deleted == 2

        await service.generate_and_materialize(template, date(2024, 1, 5))
        starts = sorted(o.start_at for o in store.occurrences.values())
        assert starts == [
            utc(2024, 1, 3, 18, 0),
            utc(2024, 1, 10, 19, 30),
            utc(2024, 1, 17, 19, 30),
            utc(2024, 1, 24, 19, 30),
        ]

    @pytest.mark.asyncio
    async def test_reschedule_future_occurrences(self):
        store, clock, service = make_service()
        template = await make_template(service, store, horizon_weeks=3)
        await service.generate_and_materialize(template, date(2024, 1, 1))

        clock.now = utc(2024, 1, 5, 0, 0)
        template = await service.edit_template(
            template.id, TemplatePatch(name="Late Raid", time_of_day="20:00")
        )
        assert await service.reschedule_future_occurrences(template) == 2

        by_start = sorted(store.occurrences.values(), key=lambda o: o.start_at)
        assert by_start[0].name == "Raid Night"
        assert [o.start_at for o in by_start[1:]] == [utc(2024, 1, 10, 20, 0), utc(2024, 1, 17, 20, 0)]
        assert all(o.name == "Late Raid" for o in by_start[1:])

        event_id = by_start[1].id
        fire_times = sorted(r.fire_at for r in store.reminders.values() if r.event_id == event_id)
        assert fire_times[-1] == utc(2024, 1, 10, 19, 55)

    @pytest.mark.asyncio
    async def test_reschedule_clears_removed_notes(self):
        store, clock, service = make_service()
        template = await make_template(service, store, notes="Bring snacks")
        await service.generate_and_materialize(template, date(2024, 1, 1))
        assert all(o.notes == "Bring snacks" for o in store.occurrences.values())

        template = await service.edit_template(template.id, TemplatePatch(clear={"notes"}))
        assert template.notes is None
        assert await service.reschedule_future_occurrences(template) == 2

        assert all(o.notes is None for o in store.occurrences.values())

    @pytest.mark.asyncio
    async def test_edit_occurrence_clears_notes(self):
        store, clock, service = make_service()
        event_id = (await service.create_occurrence(1, 10, "Quiz", utc(2024, 1, 3, 18, 0), notes="Old")).id

        occurrence = await service.edit_occurrence(event_id, OccurrencePatch(clear={"notes"}))

        assert occurrence.notes is None
        assert store.occurrences[event_id].name == "Quiz"


class TestRsvp:
    @pytest.mark.asyncio
    async def test_record_and_summarize(self):
        store, _, service = make_service()
        occurrence = await service.create_occurrence(1, 10, "Quiz", utc(2024, 1, 3, 18, 0))

        await service.record_rsvp(occurrence.id, 100, "yes")
        await service.record_rsvp(occurrence.id, 200, "maybe")
        await service.record_rsvp(occurrence.id, 100, "no")

        summary = await service.get_rsvp_summary(occurrence.id)
        assert summary.counts == {"YES": 0, "MAYBE": 1, "NO": 1}

    @pytest.mark.asyncio
    async def test_invalid_choice(self):
        _, _, service = make_service()
        occurrence = await service.create_occurrence(1, 10, "Quiz", utc(2024, 1, 3, 18, 0))
        with pytest.raises(EventValidationError):
            await service.record_rsvp(occurrence.id, 100, "perhaps")

    @pytest.mark.asyncio
    async def test_ended_event_rejects_rsvp(self):
        _, _, service = make_service()
        occurrence = await service.create_occurrence(1, 10, "Quiz", utc(2024, 1, 3, 18, 0))
        await service.end_occurrence(occurrence.id)
        with pytest.raises(EventValidationError):
            await service.record_rsvp(occurrence.id, 100, "yes")


class TestCheckins:
    @pytest.mark.asyncio
    async def test_record_checkin_uses_clock(self):
        store, clock, service = make_service(now=utc(2024, 1, 8, 12, 0))

        assert await service.record_checkin(1, 100) == utc(2024, 1, 8, 12, 0)
        assert store.checkins == [(1, 100, utc(2024, 1, 8, 12, 0))]

    @pytest.mark.asyncio
    async def test_leaderboard_counts_last_seven_days(self):
        store, clock, service = make_service(now=utc(2024, 1, 1, 12, 0))
        await service.record_checkin(1, 100)  # falls out of the window
        clock.now = utc(2024, 1, 5, 12, 0)
        await service.record_checkin(1, 200)
        await service.record_checkin(1, 100)
        await service.record_checkin(1, 200)
        await service.record_checkin(2, 300)  # other guild

        clock.now = utc(2024, 1, 9, 12, 0)
        board = await service.checkin_leaderboard(1)

        assert [(c.user_id, c.checkins) for c in board] == [(200, 2), (100, 1)]

    @pytest.mark.asyncio
    async def test_leaderboard_limit(self):
        store, clock, service = make_service(now=utc(2024, 1, 5, 12, 0))
        for user_id in range(30):
            await service.record_checkin(1, user_id)

        assert len(await service.checkin_leaderboard(1)) == 20

    @pytest.mark.asyncio
    async def test_find_inactive(self):
        store, clock, service = make_service(now=utc(2024, 1, 1, 12, 0))
        await service.record_checkin(1, 100)
        clock.now = utc(2024, 1, 6, 12, 0)
        await service.record_checkin(1, 200)

        clock.now = utc(2024, 1, 10, 12, 0)
        inactive = await service.find_inactive(1, [300, 200, 100], days=7)

        # 300 never checked in, 100 last checked in nine days ago
        assert inactive == [300, 100]

    @pytest.mark.asyncio
    async def test_checkin_exactly_at_cutoff_is_active(self):
        store, clock, service = make_service(now=utc(2024, 1, 1, 12, 0))
        await service.record_checkin(1, 100)

        clock.now = utc(2024, 1, 8, 12, 0)
        assert await service.find_inactive(1, [100], days=7) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("days", [0, -1, 366, 2.5, True])
    async def test_rejects_bad_window(self, days):
        _, _, service = make_service()
        with pytest.raises(EventValidationError):
            await service.find_inactive(1, [100], days=days)
        with pytest.raises(EventValidationError):
            await service.checkin_leaderboard(1, days=days)
