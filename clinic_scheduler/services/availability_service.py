from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from clinic_scheduler.repositories.base import intervals_overlap
from clinic_scheduler.schemas.appointment import AppointmentRecord


class AvailabilityFilter:
    """Pure slot filtering; reservation re-runs the same overlap test at commit"""

    @staticmethod
    def overlaps_any(start: datetime, end: datetime, appointments: Iterable[AppointmentRecord]) -> bool:
        return any(intervals_overlap(start, end, apt.start_time, apt.end_time) for apt in appointments)

    @staticmethod
    def free_rooms(
        start: datetime,
        end: datetime,
        room_bookings: Dict[int, List[AppointmentRecord]]
    ) -> List[int]:
        return [
            room_id for room_id, bookings in room_bookings.items()
            if not AvailabilityFilter.overlaps_any(start, end, bookings)
        ]

    @staticmethod
    def apply(
        slots: Iterable[datetime],
        slot_minutes: int,
        doctor_appointments: List[AppointmentRecord],
        room_bookings: Optional[Dict[int, List[AppointmentRecord]]] = None,
        not_before: Optional[datetime] = None
    ) -> List[datetime]:
        """
        Keep the slots that overlap none of the doctor's appointments.

        ``room_bookings`` maps each candidate room to its bookings; when given,
        a slot also needs one room without an overlapping booking. An empty
        mapping therefore leaves nothing available. Slots starting at or
        before ``not_before`` are dropped.
        """
        duration = timedelta(minutes=slot_minutes)
        available = []
        for start in slots:
            if not_before is not None and start <= not_before:
                continue
            end = start + duration
            if AvailabilityFilter.overlaps_any(start, end, doctor_appointments):
                continue
            if room_bookings is not None and not AvailabilityFilter.free_rooms(start, end, room_bookings):
                continue
            available.append(start)
        return available
