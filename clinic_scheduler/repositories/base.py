# clinic_scheduler/repositories/base.py

"""
Persistence contract consumed by the scheduling engine.

Implementations must provide two guarantees the services rely on:

* ``insert_appointment_and_payment`` is a single conditional write. It either
  stores the appointment and its pending payment together, or stores nothing
  and raises ``SlotConflictError`` / ``NoRoomAvailableError``.
* ``update_*`` calls are guarded by an expected status and raise
  ``PreconditionFailedError`` when the row is not in that status.

Everything is exchanged as typed records from ``clinic_scheduler.schemas``.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from clinic_scheduler.models.appointment import AppointmentStatus
from clinic_scheduler.models.payment import PaymentStatus
from clinic_scheduler.models.room import RoomType
from clinic_scheduler.schemas.appointment import AppointmentRecord, NewAppointment, Reservation
from clinic_scheduler.schemas.doctor import DoctorProfile
from clinic_scheduler.schemas.leave import LeaveRecord
from clinic_scheduler.schemas.payment import FeeConfig, NewPayment, PaymentRecord
from clinic_scheduler.schemas.reminder import NewReminder, ReminderRecord
from clinic_scheduler.schemas.room import RoomRecord
from clinic_scheduler.schemas.survey import NewSurvey, SurveyRecord, SurveyResponseRecord

# A guarded update accepts one expected status or several
Expected = Union[Any, Sequence[Any]]


def expected_statuses(expected: Expected) -> tuple:
    if isinstance(expected, (list, tuple, set, frozenset)):
        return tuple(expected)
    return (expected,)


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open [start, end) overlap test"""
    return start_a < end_b and start_b < end_a


def doctor_key(doctor_id: str) -> str:
    return f"doctor:{doctor_id}"


def room_key(room_id: int) -> str:
    return f"room:{room_id}"


class SchedulingRepository(ABC):

    @abstractmethod
    def transaction(self) -> AbstractContextManager:
        """Group several calls into one all-or-nothing unit (re-entrant)"""

    # Doctors

    @abstractmethod
    def get_doctor(self, doctor_id: str) -> DoctorProfile:
        """Raises DoctorNotFoundError"""

    @abstractmethod
    def get_doctor_fee_config(self, doctor_id: str) -> FeeConfig:
        """Raises DoctorNotFoundError"""

    @abstractmethod
    def list_doctor_leaves(self, doctor_id: str, day: date) -> List[LeaveRecord]:
        ...

    # Rooms

    @abstractmethod
    def get_room(self, room_id: int) -> Optional[RoomRecord]:
        ...

    @abstractmethod
    def list_active_rooms(self, room_type: RoomType = RoomType.CONSULTATION) -> List[RoomRecord]:
        ...

    # Appointments

    @abstractmethod
    def get_appointment(self, appointment_id: int) -> Optional[AppointmentRecord]:
        ...

    @abstractmethod
    def find_overlapping(self, doctor_id: str, start_time: datetime, end_time: datetime) -> List[AppointmentRecord]:
        """Active appointments of the doctor intersecting [start_time, end_time)"""

    @abstractmethod
    def find_room_bookings(
        self,
        room_ids: Iterable[int],
        start_time: datetime,
        end_time: datetime
    ) -> Dict[int, List[AppointmentRecord]]:
        """Active in-person appointments per room intersecting [start_time, end_time)"""

    @abstractmethod
    def insert_appointment_and_payment(
        self,
        appointment: NewAppointment,
        payment: NewPayment,
        room_candidates: Optional[List[int]] = None
    ) -> Reservation:
        """
        Atomic claim. ``room_candidates`` is None for virtual appointments;
        otherwise the first candidate free for the interval is assigned.
        """

    @abstractmethod
    def update_appointment_status(
        self,
        appointment_id: int,
        new_status: AppointmentStatus,
        expected_status: Expected,
        **fields
    ) -> AppointmentRecord:
        ...

    # Payments

    @abstractmethod
    def get_payment(self, payment_id: int) -> Optional[PaymentRecord]:
        ...

    @abstractmethod
    def get_payment_for_appointment(self, appointment_id: int) -> Optional[PaymentRecord]:
        ...

    @abstractmethod
    def update_payment(self, payment_id: int, fields: Dict[str, Any], expected_status: Expected) -> PaymentRecord:
        ...

    @abstractmethod
    def list_payments(self, status: Optional[PaymentStatus] = None, limit: int = 50) -> List[PaymentRecord]:
        """Newest first"""

    @abstractmethod
    def list_patient_credits(self, patient_id: str) -> List[PaymentRecord]:
        ...

    # Reminders

    @abstractmethod
    def find_appointments_needing_reminder(self, window_start: datetime, window_end: datetime) -> List[AppointmentRecord]:
        """Open appointments starting in (window_start, window_end] with no reminder"""

    @abstractmethod
    def insert_reminder(self, reminder: NewReminder) -> ReminderRecord:
        ...

    @abstractmethod
    def list_due_reminders(self, now: datetime) -> List[ReminderRecord]:
        """Pending reminders due by ``now`` whose appointment is still open"""

    @abstractmethod
    def get_reminder_by_token(self, token: str) -> Optional[ReminderRecord]:
        ...

    @abstractmethod
    def update_reminder(self, reminder_id: int, fields: Dict[str, Any], expected_status: Expected) -> ReminderRecord:
        ...

    # Surveys

    @abstractmethod
    def find_completed_without_survey(self) -> List[AppointmentRecord]:
        ...

    @abstractmethod
    def insert_survey(self, survey: NewSurvey) -> SurveyRecord:
        ...

    @abstractmethod
    def list_due_surveys(self, now: datetime) -> List[SurveyRecord]:
        ...

    @abstractmethod
    def get_survey_by_token(self, token: str) -> Optional[SurveyRecord]:
        ...

    @abstractmethod
    def update_survey(self, survey_id: int, fields: Dict[str, Any], expected_status: Expected) -> SurveyRecord:
        ...

    @abstractmethod
    def insert_survey_response(self, survey_id: int, fields: Dict[str, Any]) -> SurveyResponseRecord:
        ...
