import pytest
import pytz
from datetime import time, timedelta
from types import SimpleNamespace

from scheduling.services.slot_generator import (TimeWindow, generate_candidate_slots,
                                                generate_slots_for_date, resolve_effective_windows,
                                                weekly_windows_by_day)
from conftest import MONDAY, TUESDAY, at

NINE_TO_FIVE = TimeWindow(time(9, 0), time(17, 0))


def event_type(duration=30, notice=2, days=60):
    return SimpleNamespace(duration_minutes=duration, minimum_notice_hours=notice,
                           maximum_days_in_future=days)


def weekly(*rows):
    return weekly_windows_by_day(
        SimpleNamespace(day_of_week=day, start_time=start, end_time=end) for day, start, end in rows
    )


class TestCandidateSlots:
    """Stepping through one availability window"""

    def test_every_slot_has_event_duration(self):
        for duration in (15, 25, 30, 45, 60, 90):
            slots = list(generate_candidate_slots(
                TUESDAY, NINE_TO_FIVE, event_type(duration), pytz.UTC, at(MONDAY, 8)
            ))
            assert slots
            for slot in slots:
                assert slot.end - slot.start == timedelta(minutes=duration)
            assert slots[-1].end <= at(TUESDAY, 17)

    def test_full_day_of_half_hour_slots(self):
        slots = list(generate_candidate_slots(TUESDAY, NINE_TO_FIVE, event_type(), pytz.UTC,
                                              at(MONDAY, 8)))

        assert len(slots) == 16
        assert slots[0].start == at(TUESDAY, 9)
        assert slots[-1].start == at(TUESDAY, 16, 30)

    def test_slot_on_notice_boundary_is_dropped(self):
        # now + 2h lands exactly on the window start
        slots = list(generate_candidate_slots(MONDAY, NINE_TO_FIVE, event_type(), pytz.UTC,
                                              at(MONDAY, 7)))

        assert slots[0].start == at(MONDAY, 9, 30)

    def test_notice_moves_window_start(self):
        slots = list(generate_candidate_slots(MONDAY, NINE_TO_FIVE, event_type(), pytz.UTC,
                                              at(MONDAY, 10)))

        assert all(slot.start > at(MONDAY, 12) for slot in slots)
        assert slots[0].start == at(MONDAY, 12, 30)

    def test_monday_four_pm_has_nothing_left_today(self):
        slots = list(generate_candidate_slots(MONDAY, NINE_TO_FIVE, event_type(), pytz.UTC,
                                              at(MONDAY, 16)))
        assert slots == []

    def test_horizon_clamps_window_end(self):
        slots = list(generate_candidate_slots(TUESDAY, NINE_TO_FIVE, event_type(days=1), pytz.UTC,
                                              at(MONDAY, 12)))

        assert [s.start for s in slots][0] == at(TUESDAY, 9)
        assert slots[-1].end == at(TUESDAY, 12)
        assert len(slots) == 6

    def test_no_window_yields_nothing(self):
        assert list(generate_candidate_slots(TUESDAY, None, event_type(), pytz.UTC,
                                             at(MONDAY, 8))) == []

    def test_slots_are_in_requested_timezone(self):
        lima = pytz.timezone('America/Lima')
        slots = list(generate_candidate_slots(TUESDAY, NINE_TO_FIVE, event_type(), lima,
                                              at(MONDAY, 8)))

        assert slots[0].start.utcoffset() == timedelta(hours=-5)
        assert slots[0].start.hour == 9
        assert slots[0].start == at(TUESDAY, 14)

    def test_duration_longer_than_window(self):
        window = TimeWindow(time(9, 0), time(9, 45))
        slots = list(generate_candidate_slots(TUESDAY, window, event_type(60), pytz.UTC,
                                              at(MONDAY, 8)))
        assert slots == []


class TestEffectiveWindows:

    def test_weekly_rule_by_day_of_week(self):
        rules = weekly((1, time(9), time(17)), (2, time(10), time(12)))

        assert resolve_effective_windows(MONDAY, rules) == [TimeWindow(time(9), time(17))]
        assert resolve_effective_windows(TUESDAY, rules) == [TimeWindow(time(10), time(12))]

    def test_sunday_is_day_zero(self):
        rules = weekly((0, time(10), time(11)))
        sunday = MONDAY - timedelta(days=1)

        assert resolve_effective_windows(sunday, rules) == [TimeWindow(time(10), time(11))]
        assert resolve_effective_windows(MONDAY, rules) == []

    def test_unavailable_override_blocks_day(self):
        rules = weekly((1, time(9), time(17)))
        override = SimpleNamespace(unavailable=True, start_time=None, end_time=None)

        assert resolve_effective_windows(MONDAY, rules, override) == []

    def test_override_replaces_weekly_window(self):
        rules = weekly((1, time(9), time(17)), (1, time(18), time(20)))
        override = SimpleNamespace(unavailable=False, start_time=time(7), end_time=time(8))

        assert resolve_effective_windows(MONDAY, rules, override) == [TimeWindow(time(7), time(8))]

    def test_override_on_day_without_weekly_hours(self):
        override = SimpleNamespace(unavailable=False, start_time=time(10), end_time=time(11))
        assert resolve_effective_windows(MONDAY + timedelta(days=5), {}, override) == [
            TimeWindow(time(10), time(11))
        ]


class TestSlotsForDate:

    def test_multiple_windows_merge_in_start_order(self):
        rules = weekly((2, time(14), time(15)), (2, time(9), time(10)))
        windows = resolve_effective_windows(TUESDAY, rules)

        slots = generate_slots_for_date(TUESDAY, windows, event_type(), pytz.UTC, at(MONDAY, 8))

        assert [s.start for s in slots] == [
            at(TUESDAY, 9), at(TUESDAY, 9, 30), at(TUESDAY, 14), at(TUESDAY, 14, 30)
        ]

    def test_generation_is_repeatable(self):
        first = generate_slots_for_date(TUESDAY, [NINE_TO_FIVE], event_type(), pytz.UTC, at(MONDAY, 8))
        second = generate_slots_for_date(TUESDAY, [NINE_TO_FIVE], event_type(), pytz.UTC, at(MONDAY, 8))
        assert first == second

    @pytest.mark.parametrize('hour', [0, 6, 12, 18, 23])
    def test_never_before_notice(self, hour):
        now = at(MONDAY, hour)
        slots = generate_slots_for_date(MONDAY, [TimeWindow(time(0), time(23, 30))], event_type(),
                                        pytz.UTC, now)
        assert all(slot.start > now + timedelta(hours=2) for slot in slots)
