from datetime import time, timedelta

import pytest

from clinic_scheduler.exceptions import InvalidDateError, ScheduleConfigurationError
from clinic_scheduler.models.leave import LeaveType
from clinic_scheduler.schemas.leave import LeaveRecord
from clinic_scheduler.services.slot_generator import TimeSlotGenerator

from conftest import MONDAY, SUNDAY, TUESDAY, local, make_doctor


@pytest.fixture
def generator(config, clock):
    return TimeSlotGenerator(config, clock)


def starts(grid):
    return [slot.astimezone(local(MONDAY, 0).tzinfo).strftime("%H:%M") for slot in grid]


class TestGrid:

    def test_windows_are_clipped_to_business_hours(self, generator):
        grid = generator.generate(make_doctor(), MONDAY)

        assert starts(grid) == [
            "09:00", "09:50", "10:40",
            "14:00", "14:50", "15:40", "16:30", "17:20", "18:10",
        ]
        assert grid.slot_minutes == 50
        assert grid.timezone == "America/Bogota"

    def test_every_slot_ends_inside_its_window(self, generator):
        grid = generator.generate(make_doctor(), TUESDAY)

        assert starts(grid) == ["09:00", "09:50", "10:40", "11:30"]
        assert all(slot + grid.duration <= local(TUESDAY, 13) for slot in grid)

    def test_slots_are_aware_and_ordered(self, generator):
        grid = list(generator.generate(make_doctor(), MONDAY))

        assert all(slot.tzinfo is not None for slot in grid)
        assert grid == sorted(grid)

    def test_grid_can_be_iterated_twice(self, generator):
        grid = generator.generate(make_doctor(), MONDAY)

        assert list(grid) == list(grid)
        assert len(grid) == 9
        assert local(MONDAY, 9, 50) in grid

    def test_unconfigured_weekday_is_empty(self, generator):
        assert len(generator.generate(make_doctor(), SUNDAY)) == 0

    def test_past_date_is_rejected(self, generator):
        with pytest.raises(InvalidDateError):
            generator.generate(make_doctor(), MONDAY - timedelta(days=1))

    def test_today_is_accepted(self, generator):
        assert len(generator.generate(make_doctor(), MONDAY)) > 0

    def test_default_slot_length_comes_from_config(self, generator):
        grid = generator.generate(make_doctor(consultation_duration_min=None), TUESDAY)

        assert grid.slot_minutes == 50

    def test_weekday_override_changes_slot_length(self, generator):
        doctor = make_doctor(slot_minutes_by_day={"monday": 30})
        grid = generator.generate(doctor, MONDAY)

        assert grid.slot_minutes == 30
        assert starts(grid)[:7] == ["09:00", "09:30", "10:00", "10:30", "11:00", "11:30", "14:00"]
        assert len(grid) == 16

    def test_doctor_timezone_is_used(self, generator):
        doctor = make_doctor(timezone="Europe/Madrid", shift_timings={"tuesday": ["09:00-10:00"]})
        grid = list(generator.generate(doctor, TUESDAY))

        assert len(grid) == 1
        assert grid[0].utcoffset() is not None
        assert grid[0].hour == 8  # 09:00 in Madrid is 08:00 UTC in winter

    def test_malformed_window_is_a_configuration_error(self, generator):
        doctor = make_doctor(shift_timings={"monday": ["nine to twelve"]})

        with pytest.raises(ScheduleConfigurationError) as exc_info:
            generator.generate(doctor, MONDAY)
        assert exc_info.value.category == "integrity"


class TestLeave:

    def leave(self, leave_type, start_time=None, end_time=None, day=MONDAY):
        return LeaveRecord(
            id=1,
            doctor_id="DOC001",
            type=leave_type,
            start_date=day,
            end_date=day,
            start_time=start_time,
            end_time=end_time
        )

    def test_full_day_leave_empties_the_grid(self, generator):
        grid = generator.generate(make_doctor(), MONDAY, [self.leave(LeaveType.FULL_DAY)])

        assert len(grid) == 0

    def test_partial_leave_removes_overlapping_slots(self, generator):
        leave = self.leave(LeaveType.PARTIAL, time(10, 0), time(11, 0))
        grid = generator.generate(make_doctor(), MONDAY, [leave])

        assert starts(grid) == ["09:00", "14:00", "14:50", "15:40", "16:30", "17:20", "18:10"]

    def test_leave_on_another_day_is_ignored(self, generator):
        grid = generator.generate(make_doctor(), MONDAY, [self.leave(LeaveType.FULL_DAY, day=TUESDAY)])

        assert len(grid) == 9
