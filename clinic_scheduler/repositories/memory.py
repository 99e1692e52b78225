# clinic_scheduler/repositories/memory.py

"""
Process-local implementation of the persistence contract.

A single re-entrant lock plays the role of the database's write lock, so the
conditional insert and the status-guarded updates keep the same guarantees as
the SQL implementation when handlers run on several threads. Used for tests
and single-process deployments.
"""

from contextlib import contextmanager
from copy import deepcopy
from datetime import date, datetime
from itertools import count
from typing import Any, Dict, Iterable, List, Optional
import threading

from clinic_scheduler.exceptions import (
    DoctorNotFoundError,
    NoRoomAvailableError,
    PreconditionFailedError,
    SlotConflictError,
)
from clinic_scheduler.models.appointment import AppointmentStatus, INACTIVE_STATUSES, OPEN_STATUSES
from clinic_scheduler.models.doctor import DoctorStatus
from clinic_scheduler.models.payment import PaymentStatus
from clinic_scheduler.models.reminder import ReminderStatus
from clinic_scheduler.models.room import RoomType
from clinic_scheduler.models.survey import SurveyStatus
from clinic_scheduler.models.types import utcnow
from clinic_scheduler.repositories.base import SchedulingRepository, expected_statuses, intervals_overlap
from clinic_scheduler.schemas.appointment import AppointmentRecord, NewAppointment, Reservation
from clinic_scheduler.schemas.doctor import DoctorProfile
from clinic_scheduler.schemas.leave import LeaveRecord
from clinic_scheduler.schemas.payment import FeeConfig, NewPayment, PaymentRecord
from clinic_scheduler.schemas.reminder import NewReminder, ReminderRecord
from clinic_scheduler.schemas.room import RoomRecord
from clinic_scheduler.schemas.survey import NewSurvey, SurveyRecord, SurveyResponseRecord


class InMemoryRepository(SchedulingRepository):

    def __init__(self):
        self._lock = threading.RLock()
        self._depth = 0
        self._ids = count(1)
        self.doctors: Dict[str, DoctorProfile] = {}
        self.leaves: Dict[int, LeaveRecord] = {}
        self.rooms: Dict[int, RoomRecord] = {}
        self.appointments: Dict[int, AppointmentRecord] = {}
        self.payments: Dict[int, PaymentRecord] = {}
        self.reminders: Dict[int, ReminderRecord] = {}
        self.surveys: Dict[int, SurveyRecord] = {}
        self.survey_responses: Dict[int, SurveyResponseRecord] = {}

    _TABLES = ("doctors", "leaves", "rooms", "appointments", "payments", "reminders", "surveys", "survey_responses")

    @contextmanager
    def transaction(self):
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return

            snapshot = {name: deepcopy(getattr(self, name)) for name in self._TABLES}
            self._depth = 1
            try:
                yield self
            except BaseException:
                for name, table in snapshot.items():
                    setattr(self, name, table)
                raise
            finally:
                self._depth = 0

    def _next_id(self) -> int:
        return next(self._ids)

    # Seeding helpers for collaborators that own doctors, leaves and rooms

    def add_doctor(self, doctor: DoctorProfile) -> DoctorProfile:
        with self._lock:
            self.doctors[doctor.doctor_id] = doctor
        return doctor

    def add_leave(self, leave: LeaveRecord) -> LeaveRecord:
        with self._lock:
            self.leaves[leave.id] = leave
        return leave

    def add_room(self, room: RoomRecord) -> RoomRecord:
        with self._lock:
            self.rooms[room.id] = room
        return room

    # Doctors

    def get_doctor(self, doctor_id: str) -> DoctorProfile:
        doctor = self.doctors.get(doctor_id)
        if not doctor or doctor.status == DoctorStatus.DELETED:
            raise DoctorNotFoundError(f"Doctor with ID {doctor_id} not found")
        return doctor.model_copy(deep=True)

    def get_doctor_fee_config(self, doctor_id: str) -> FeeConfig:
        doctor = self.get_doctor(doctor_id)
        return FeeConfig(
            consultation_fee=doctor.consultation_fee,
            consultation_fee_virtual=doctor.consultation_fee_virtual
        )

    def list_doctor_leaves(self, doctor_id: str, day: date) -> List[LeaveRecord]:
        return [
            leave.model_copy() for leave in self.leaves.values()
            if leave.doctor_id == doctor_id and leave.start_date <= day <= leave.end_date
        ]

    # Rooms

    def get_room(self, room_id: int) -> Optional[RoomRecord]:
        room = self.rooms.get(room_id)
        return room.model_copy() if room else None

    def list_active_rooms(self, room_type: RoomType = RoomType.CONSULTATION) -> List[RoomRecord]:
        return [
            room.model_copy() for room in sorted(self.rooms.values(), key=lambda r: r.id)
            if room.is_active and room.room_type == room_type
        ]

    # Appointments

    def _active_overlapping(self, start_time: datetime, end_time: datetime) -> List[AppointmentRecord]:
        return sorted(
            (
                apt for apt in self.appointments.values()
                if apt.status not in INACTIVE_STATUSES
                and intervals_overlap(apt.start_time, apt.end_time, start_time, end_time)
            ),
            key=lambda apt: apt.start_time
        )

    def get_appointment(self, appointment_id: int) -> Optional[AppointmentRecord]:
        apt = self.appointments.get(appointment_id)
        return apt.model_copy() if apt else None

    def find_overlapping(self, doctor_id: str, start_time: datetime, end_time: datetime) -> List[AppointmentRecord]:
        with self._lock:
            return [
                apt.model_copy() for apt in self._active_overlapping(start_time, end_time)
                if apt.doctor_id == doctor_id
            ]

    def find_room_bookings(
        self,
        room_ids: Iterable[int],
        start_time: datetime,
        end_time: datetime
    ) -> Dict[int, List[AppointmentRecord]]:
        with self._lock:
            bookings: Dict[int, List[AppointmentRecord]] = {room_id: [] for room_id in room_ids}
            for apt in self._active_overlapping(start_time, end_time):
                if not apt.is_virtual and apt.room_id in bookings:
                    bookings[apt.room_id].append(apt.model_copy())
            return bookings

    def insert_appointment_and_payment(
        self,
        appointment: NewAppointment,
        payment: NewPayment,
        room_candidates: Optional[List[int]] = None
    ) -> Reservation:
        with self.transaction():
            clashes = [
                apt for apt in self._active_overlapping(appointment.start_time, appointment.end_time)
                if apt.doctor_id == appointment.doctor_id
            ]
            if clashes:
                raise SlotConflictError(
                    "This time slot was just booked by someone else",
                    details={"doctor_id": appointment.doctor_id, "start_time": appointment.start_time.isoformat()}
                )

            room_id = None
            if room_candidates is not None:
                busy = {
                    apt.room_id for apt in self._active_overlapping(appointment.start_time, appointment.end_time)
                    if not apt.is_virtual
                }
                free = [candidate for candidate in room_candidates if candidate not in busy]
                if not free:
                    raise NoRoomAvailableError(
                        "No consultation room is free for this time",
                        details={"start_time": appointment.start_time.isoformat(), "rooms_checked": room_candidates}
                    )
                room_id = free[0]

            now = utcnow()
            record = AppointmentRecord(
                id=self._next_id(),
                room_id=room_id,
                status=AppointmentStatus.SCHEDULED,
                created_at=now,
                updated_at=now,
                **appointment.model_dump(exclude={"room_id"})
            )
            payment_record = PaymentRecord(
                id=self._next_id(),
                appointment_id=record.id,
                amount=payment.amount,
                currency=payment.currency,
                status=payment.status,
                fee_source=payment.fee_source,
                notes=payment.notes,
                created_at=now,
                updated_at=now
            )
            self.appointments[record.id] = record
            self.payments[payment_record.id] = payment_record
            return Reservation(appointment=record.model_copy(), payment=payment_record.model_copy())

    def _guarded_update(self, table: Dict[int, Any], entity: str, row_id: int, fields: Dict[str, Any], expected_status):
        expected = expected_statuses(expected_status)
        with self.transaction():
            row = table.get(row_id)
            if row is None or row.status not in expected:
                raise PreconditionFailedError(entity, row_id, expected, row.status if row else None)
            changes = dict(fields)
            if "updated_at" in type(row).model_fields:
                changes.setdefault("updated_at", utcnow())
            updated = row.model_copy(update=changes)
            table[row_id] = updated
            return updated.model_copy()

    def update_appointment_status(
        self,
        appointment_id: int,
        new_status: AppointmentStatus,
        expected_status,
        **fields
    ) -> AppointmentRecord:
        return self._guarded_update(
            self.appointments, "Appointment", appointment_id, dict(fields, status=new_status), expected_status
        )

    # Payments

    def get_payment(self, payment_id: int) -> Optional[PaymentRecord]:
        payment = self.payments.get(payment_id)
        return payment.model_copy() if payment else None

    def get_payment_for_appointment(self, appointment_id: int) -> Optional[PaymentRecord]:
        for payment in self.payments.values():
            if payment.appointment_id == appointment_id:
                return payment.model_copy()
        return None

    def update_payment(self, payment_id: int, fields: Dict[str, Any], expected_status) -> PaymentRecord:
        return self._guarded_update(self.payments, "Payment", payment_id, fields, expected_status)

    def list_payments(self, status: Optional[PaymentStatus] = None, limit: int = 50) -> List[PaymentRecord]:
        payments = sorted(self.payments.values(), key=lambda p: p.id, reverse=True)
        return [p.model_copy() for p in payments if status is None or p.status == status][:limit]

    def list_patient_credits(self, patient_id: str) -> List[PaymentRecord]:
        return [
            payment.model_copy() for payment in sorted(self.payments.values(), key=lambda p: p.id)
            if payment.status == PaymentStatus.CREDIT
            and self.appointments[payment.appointment_id].patient_id == patient_id
        ]

    # Reminders

    def find_appointments_needing_reminder(self, window_start: datetime, window_end: datetime) -> List[AppointmentRecord]:
        reminded = {reminder.appointment_id for reminder in self.reminders.values()}
        return sorted(
            (
                apt.model_copy() for apt in self.appointments.values()
                if apt.status in OPEN_STATUSES
                and window_start < apt.start_time <= window_end
                and apt.id not in reminded
            ),
            key=lambda apt: apt.start_time
        )

    def insert_reminder(self, reminder: NewReminder) -> ReminderRecord:
        with self.transaction():
            if any(r.token == reminder.token for r in self.reminders.values()):
                raise ValueError("Duplicate reminder token")
            record = ReminderRecord(id=self._next_id(), status=ReminderStatus.PENDING, **reminder.model_dump())
            self.reminders[record.id] = record
            return record.model_copy()

    def list_due_reminders(self, now: datetime) -> List[ReminderRecord]:
        return sorted(
            (
                reminder.model_copy() for reminder in self.reminders.values()
                if reminder.status == ReminderStatus.PENDING
                and reminder.scheduled_for <= now
                and self.appointments[reminder.appointment_id].status in OPEN_STATUSES
            ),
            key=lambda reminder: reminder.scheduled_for
        )

    def get_reminder_by_token(self, token: str) -> Optional[ReminderRecord]:
        for reminder in self.reminders.values():
            if reminder.token == token:
                return reminder.model_copy()
        return None

    def update_reminder(self, reminder_id: int, fields: Dict[str, Any], expected_status) -> ReminderRecord:
        return self._guarded_update(self.reminders, "Reminder", reminder_id, fields, expected_status)

    # Surveys

    def find_completed_without_survey(self) -> List[AppointmentRecord]:
        surveyed = {survey.appointment_id for survey in self.surveys.values()}
        return sorted(
            (
                apt.model_copy() for apt in self.appointments.values()
                if apt.status == AppointmentStatus.COMPLETED and apt.id not in surveyed
            ),
            key=lambda apt: apt.end_time
        )

    def insert_survey(self, survey: NewSurvey) -> SurveyRecord:
        with self.transaction():
            record = SurveyRecord(id=self._next_id(), status=SurveyStatus.PENDING, **survey.model_dump())
            self.surveys[record.id] = record
            return record.model_copy()

    def list_due_surveys(self, now: datetime) -> List[SurveyRecord]:
        return sorted(
            (
                survey.model_copy() for survey in self.surveys.values()
                if survey.status == SurveyStatus.PENDING and survey.scheduled_for <= now
            ),
            key=lambda survey: survey.scheduled_for
        )

    def get_survey_by_token(self, token: str) -> Optional[SurveyRecord]:
        for survey in self.surveys.values():
            if survey.token == token:
                return survey.model_copy()
        return None

    def update_survey(self, survey_id: int, fields: Dict[str, Any], expected_status) -> SurveyRecord:
        return self._guarded_update(self.surveys, "Survey", survey_id, fields, expected_status)

    def insert_survey_response(self, survey_id: int, fields: Dict[str, Any]) -> SurveyResponseRecord:
        with self.transaction():
            if any(r.survey_id == survey_id for r in self.survey_responses.values()):
                raise ValueError(f"Survey {survey_id} already has a response")
            record = SurveyResponseRecord(id=self._next_id(), survey_id=survey_id, **fields)
            self.survey_responses[record.id] = record
            return record.model_copy()
