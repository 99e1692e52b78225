from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Iterator, List, Optional, Tuple
from zoneinfo import ZoneInfo
import logging

from clinic_scheduler.config.settings import SchedulingConfig
from clinic_scheduler.exceptions import InvalidDateError, ScheduleConfigurationError
from clinic_scheduler.models.leave import LeaveType
from clinic_scheduler.repositories.base import intervals_overlap
from clinic_scheduler.schemas.doctor import DoctorProfile
from clinic_scheduler.schemas.leave import LeaveRecord
from clinic_scheduler.utils.validators import WEEKDAYS, parse_shift_window

logger = logging.getLogger("scheduling")


class SlotGrid:
    """Ordered, restartable collection of aware slot starts for one doctor-day"""

    def __init__(self, starts: Iterable[datetime], slot_minutes: int, timezone_name: str):
        self._starts: Tuple[datetime, ...] = tuple(sorted(set(starts)))
        self.slot_minutes = slot_minutes
        self.timezone = timezone_name

    @property
    def duration(self) -> timedelta:
        return timedelta(minutes=self.slot_minutes)

    def __iter__(self) -> Iterator[datetime]:
        return iter(self._starts)

    def __len__(self) -> int:
        return len(self._starts)

    def __contains__(self, start: datetime) -> bool:
        return start in self._starts

    def __repr__(self):
        return f"<SlotGrid {len(self._starts)} x {self.slot_minutes}min {self.timezone}>"


class TimeSlotGenerator:

    def __init__(self, config: SchedulingConfig, clock):
        self.config = config
        self.clock = clock

    def doctor_timezone(self, doctor: DoctorProfile) -> ZoneInfo:
        return ZoneInfo(doctor.timezone or self.config.default_timezone)

    def slot_minutes_for(self, doctor: DoctorProfile, day: date) -> int:
        weekday = WEEKDAYS[day.weekday()]
        overrides = doctor.slot_minutes_by_day or {}
        minutes = overrides.get(weekday) or doctor.consultation_duration_min or self.config.default_slot_minutes
        if minutes <= 0:
            raise ScheduleConfigurationError(
                f"Doctor {doctor.doctor_id} has a non-positive slot length",
                details={"doctor_id": doctor.doctor_id, "slot_minutes": minutes}
            )
        return minutes

    def today_for(self, doctor: DoctorProfile) -> date:
        return self.clock.now().astimezone(self.doctor_timezone(doctor)).date()

    def generate(
        self,
        doctor: DoctorProfile,
        day: date,
        leaves: Optional[List[LeaveRecord]] = None
    ) -> SlotGrid:
        tz = self.doctor_timezone(doctor)
        tz_name = doctor.timezone or self.config.default_timezone
        slot_minutes = self.slot_minutes_for(doctor, day)

        if day < self.today_for(doctor):
            raise InvalidDateError(
                f"Date {day.isoformat()} is in the past",
                details={"doctor_id": doctor.doctor_id, "date": day.isoformat()}
            )

        leaves = [leave for leave in (leaves or []) if leave.start_date <= day <= leave.end_date]
        if any(leave.type == LeaveType.FULL_DAY for leave in leaves):
            logger.debug(f"Doctor {doctor.doctor_id} is on leave on {day}")
            return SlotGrid([], slot_minutes, tz_name)

        weekday = WEEKDAYS[day.weekday()]
        windows = doctor.shift_timings.get(weekday, [])
        if not windows:
            return SlotGrid([], slot_minutes, tz_name)

        step = timedelta(minutes=slot_minutes)
        starts = []
        for window in windows:
            try:
                window_start, window_end = parse_shift_window(window)
            except ValueError as e:
                raise ScheduleConfigurationError(
                    f"Invalid shift timing for doctor {doctor.doctor_id}: {window}",
                    details={"doctor_id": doctor.doctor_id, "weekday": weekday, "error": str(e)}
                )

            lower = max(window_start, self.config.business_hours_start)
            upper = min(window_end, self.config.business_hours_end)
            if lower >= upper:
                continue

            # Stepping in UTC keeps slot lengths exact across DST shifts
            current = datetime.combine(day, lower, tzinfo=tz).astimezone(timezone.utc)
            limit = datetime.combine(day, upper, tzinfo=tz).astimezone(timezone.utc)
            while current + step <= limit:
                starts.append(current)
                current += step

        blocked = [
            (
                datetime.combine(day, leave.start_time, tzinfo=tz).astimezone(timezone.utc),
                datetime.combine(day, leave.end_time, tzinfo=tz).astimezone(timezone.utc)
            )
            for leave in leaves
            if leave.type == LeaveType.PARTIAL and leave.start_time and leave.end_time
        ]
        if blocked:
            starts = [
                start for start in starts
                if not any(intervals_overlap(start, start + step, b_start, b_end) for b_start, b_end in blocked)
            ]

        return SlotGrid(starts, slot_minutes, tz_name)
