# clinic_scheduler/repositories/sqlalchemy_repository.py

from contextlib import contextmanager
from datetime import date, datetime
from functools import wraps
from typing import Any, Dict, Iterable, List, Optional
import logging

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from clinic_scheduler.exceptions import (
    DoctorNotFoundError,
    NoRoomAvailableError,
    PreconditionFailedError,
    SlotConflictError,
    StorageTimeoutError,
)
from clinic_scheduler.models.appointment import (
    Appointment,
    AppointmentStatus,
    INACTIVE_STATUSES,
    OPEN_STATUSES,
    ScheduleVersion,
)
from clinic_scheduler.models.doctor import Doctor, DoctorStatus
from clinic_scheduler.models.leave import DoctorLeave
from clinic_scheduler.models.payment import Payment, PaymentStatus
from clinic_scheduler.models.reminder import Reminder, ReminderStatus
from clinic_scheduler.models.room import Room, RoomType
from clinic_scheduler.models.survey import Survey, SurveyResponse, SurveyStatus
from clinic_scheduler.repositories.base import (
    SchedulingRepository,
    doctor_key,
    expected_statuses,
    room_key,
)
from clinic_scheduler.schemas.appointment import AppointmentRecord, NewAppointment, Reservation
from clinic_scheduler.schemas.doctor import DoctorProfile
from clinic_scheduler.schemas.leave import LeaveRecord
from clinic_scheduler.schemas.payment import FeeConfig, NewPayment, PaymentRecord
from clinic_scheduler.schemas.reminder import NewReminder, ReminderRecord
from clinic_scheduler.schemas.room import RoomRecord
from clinic_scheduler.schemas.survey import NewSurvey, SurveyRecord, SurveyResponseRecord

logger = logging.getLogger("repository")

# Version swaps lost to a concurrent writer on a different interval are retried
MAX_SWAP_ATTEMPTS = 10

UPSERT_DIALECTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


def storage_call(func):
    """Turn driver timeouts and lock waits into the retryable StorageTimeoutError"""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except (OperationalError, PoolTimeoutError) as e:
            if not self._depth:
                self.db.rollback()
            logger.warning(f"Storage call {func.__name__} timed out: {e}")
            raise StorageTimeoutError(
                "Storage did not answer in time, please retry",
                details={"operation": func.__name__}
            ) from e

    return wrapper


class SqlAlchemyRepository(SchedulingRepository):

    def __init__(self, db: Session):
        self.db = db
        self._depth = 0

    @contextmanager
    def transaction(self):
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        self._depth = 1
        try:
            yield self
            self.db.commit()
        except BaseException:
            self.db.rollback()
            raise
        finally:
            self._depth = 0

    # Doctors

    def _doctor_row(self, doctor_id: str) -> Doctor:
        doctor = self.db.execute(
            select(Doctor).where(
                Doctor.doctor_id == doctor_id,
                Doctor.status != DoctorStatus.DELETED
            )
        ).scalar_one_or_none()
        if not doctor:
            raise DoctorNotFoundError(f"Doctor with ID {doctor_id} not found")
        return doctor

    @storage_call
    def get_doctor(self, doctor_id: str) -> DoctorProfile:
        return DoctorProfile.model_validate(self._doctor_row(doctor_id))

    @storage_call
    def get_doctor_fee_config(self, doctor_id: str) -> FeeConfig:
        return FeeConfig.model_validate(self._doctor_row(doctor_id))

    @storage_call
    def list_doctor_leaves(self, doctor_id: str, day: date) -> List[LeaveRecord]:
        rows = self.db.execute(
            select(DoctorLeave).where(
                DoctorLeave.doctor_id == doctor_id,
                DoctorLeave.start_date <= day,
                DoctorLeave.end_date >= day
            )
        ).scalars().all()
        return [LeaveRecord.model_validate(row) for row in rows]

    # Rooms

    @storage_call
    def get_room(self, room_id: int) -> Optional[RoomRecord]:
        room = self.db.get(Room, room_id)
        return RoomRecord.model_validate(room) if room else None

    @storage_call
    def list_active_rooms(self, room_type: RoomType = RoomType.CONSULTATION) -> List[RoomRecord]:
        rows = self.db.execute(
            select(Room).where(Room.is_active.is_(True), Room.room_type == room_type).order_by(Room.id)
        ).scalars().all()
        return [RoomRecord.model_validate(row) for row in rows]

    # Appointments

    def _active_overlap_query(self, start_time: datetime, end_time: datetime):
        return select(Appointment).where(
            Appointment.status.notin_(INACTIVE_STATUSES),
            Appointment.start_time < end_time,
            Appointment.end_time > start_time
        )

    @storage_call
    def get_appointment(self, appointment_id: int) -> Optional[AppointmentRecord]:
        row = self.db.get(Appointment, appointment_id, populate_existing=True)
        return AppointmentRecord.model_validate(row) if row else None

    @storage_call
    def find_overlapping(self, doctor_id: str, start_time: datetime, end_time: datetime) -> List[AppointmentRecord]:
        rows = self.db.execute(
            self._active_overlap_query(start_time, end_time)
            .where(Appointment.doctor_id == doctor_id)
            .order_by(Appointment.start_time)
        ).scalars().all()
        return [AppointmentRecord.model_validate(row) for row in rows]

    @storage_call
    def find_room_bookings(
        self,
        room_ids: Iterable[int],
        start_time: datetime,
        end_time: datetime
    ) -> Dict[int, List[AppointmentRecord]]:
        room_ids = list(room_ids)
        bookings: Dict[int, List[AppointmentRecord]] = {room_id: [] for room_id in room_ids}
        if not room_ids:
            return bookings

        rows = self.db.execute(
            self._active_overlap_query(start_time, end_time)
            .where(Appointment.room_id.in_(room_ids), Appointment.is_virtual.is_(False))
            .order_by(Appointment.start_time)
        ).scalars().all()
        for row in rows:
            bookings[row.room_id].append(AppointmentRecord.model_validate(row))
        return bookings

    def _ensure_version_row(self, resource_key: str) -> None:
        """Create the version row at 0 unless a concurrent booking already did"""
        exists = self.db.execute(
            select(ScheduleVersion.version).where(ScheduleVersion.resource_key == resource_key)
        ).scalar_one_or_none()
        if exists is not None:
            return

        insert = UPSERT_DIALECTS.get(self.db.get_bind().dialect.name)
        if insert is not None:
            self.db.execute(
                insert(ScheduleVersion)
                .values(resource_key=resource_key, version=0)
                .on_conflict_do_nothing(index_elements=["resource_key"])
            )
            return

        try:
            with self.db.begin_nested():
                self.db.add(ScheduleVersion(resource_key=resource_key, version=0))
        except IntegrityError:
            logger.debug(f"Version row {resource_key} created by a concurrent booking")

    def _swap_version(self, resource_key: str) -> None:
        """Compare-and-swap the version row; raises after repeated lost races"""
        self._ensure_version_row(resource_key)
        for _ in range(MAX_SWAP_ATTEMPTS):
            current = self.db.execute(
                select(ScheduleVersion.version).where(ScheduleVersion.resource_key == resource_key)
            ).scalar_one()

            result = self.db.execute(
                update(ScheduleVersion)
                .where(ScheduleVersion.resource_key == resource_key, ScheduleVersion.version == current)
                .values(version=current + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return

        raise SlotConflictError(
            "The schedule changed while booking, please pick the slot again",
            details={"resource": resource_key}
        )

    @storage_call
    def insert_appointment_and_payment(
        self,
        appointment: NewAppointment,
        payment: NewPayment,
        room_candidates: Optional[List[int]] = None
    ) -> Reservation:
        try:
            with self.transaction():
                self._swap_version(doctor_key(appointment.doctor_id))

                clash = self.db.execute(
                    self._active_overlap_query(appointment.start_time, appointment.end_time)
                    .where(Appointment.doctor_id == appointment.doctor_id)
                    .limit(1)
                ).scalar_one_or_none()
                if clash:
                    raise SlotConflictError(
                        "This time slot was just booked by someone else",
                        details={"doctor_id": appointment.doctor_id, "start_time": appointment.start_time.isoformat()}
                    )

                room_id = None
                if room_candidates is not None:
                    room_id = self._claim_room(room_candidates, appointment.start_time, appointment.end_time)

                row = Appointment(
                    doctor_id=appointment.doctor_id,
                    patient_id=appointment.patient_id,
                    start_time=appointment.start_time,
                    end_time=appointment.end_time,
                    is_virtual=appointment.is_virtual,
                    room_id=room_id,
                    notes=appointment.notes,
                    created_by=appointment.created_by,
                    status=AppointmentStatus.SCHEDULED
                )
                self.db.add(row)
                self.db.flush()

                payment_row = Payment(
                    appointment_id=row.id,
                    amount=payment.amount,
                    currency=payment.currency,
                    status=payment.status,
                    fee_source=payment.fee_source,
                    notes=payment.notes
                )
                self.db.add(payment_row)
                self.db.flush()

                reservation = Reservation(
                    appointment=AppointmentRecord.model_validate(row),
                    payment=PaymentRecord.model_validate(payment_row)
                )
        except IntegrityError as e:
            # Unique (doctor, start) index caught a concurrent duplicate
            raise SlotConflictError(
                "This time slot was just booked by someone else",
                details={"doctor_id": appointment.doctor_id, "start_time": appointment.start_time.isoformat()}
            ) from e
        return reservation

    def _claim_room(self, room_candidates: List[int], start_time: datetime, end_time: datetime) -> int:
        for room_id in room_candidates:
            self._swap_version(room_key(room_id))
            taken = self.db.execute(
                self._active_overlap_query(start_time, end_time)
                .where(Appointment.room_id == room_id, Appointment.is_virtual.is_(False))
                .limit(1)
            ).scalar_one_or_none()
            if not taken:
                return room_id

        raise NoRoomAvailableError(
            "No consultation room is free for this time",
            details={"start_time": start_time.isoformat(), "rooms_checked": room_candidates}
        )

    @storage_call
    def update_appointment_status(
        self,
        appointment_id: int,
        new_status: AppointmentStatus,
        expected_status,
        **fields
    ) -> AppointmentRecord:
        expected = expected_statuses(expected_status)
        with self.transaction():
            result = self.db.execute(
                update(Appointment)
                .where(Appointment.id == appointment_id, Appointment.status.in_(expected))
                .values(status=new_status, **fields)
                .execution_options(synchronize_session=False)
            )
            row = self.db.get(Appointment, appointment_id, populate_existing=True)
            if result.rowcount != 1:
                raise PreconditionFailedError("Appointment", appointment_id, expected, row.status if row else None)
            return AppointmentRecord.model_validate(row)

    # Payments

    @storage_call
    def get_payment(self, payment_id: int) -> Optional[PaymentRecord]:
        row = self.db.get(Payment, payment_id, populate_existing=True)
        return PaymentRecord.model_validate(row) if row else None

    @storage_call
    def get_payment_for_appointment(self, appointment_id: int) -> Optional[PaymentRecord]:
        row = self.db.execute(
            select(Payment).where(Payment.appointment_id == appointment_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return PaymentRecord.model_validate(row) if row else None

    @storage_call
    def update_payment(self, payment_id: int, fields: Dict[str, Any], expected_status) -> PaymentRecord:
        expected = expected_statuses(expected_status)
        with self.transaction():
            result = self.db.execute(
                update(Payment)
                .where(Payment.id == payment_id, Payment.status.in_(expected))
                .values(**fields)
                .execution_options(synchronize_session=False)
            )
            row = self.db.get(Payment, payment_id, populate_existing=True)
            if result.rowcount != 1:
                raise PreconditionFailedError("Payment", payment_id, expected, row.status if row else None)
            return PaymentRecord.model_validate(row)

    @storage_call
    def list_payments(self, status: Optional[PaymentStatus] = None, limit: int = 50) -> List[PaymentRecord]:
        query = select(Payment).order_by(Payment.created_at.desc(), Payment.id.desc()).limit(limit)
        if status:
            query = query.where(Payment.status == status)
        return [PaymentRecord.model_validate(row) for row in self.db.execute(query).scalars().all()]

    @storage_call
    def list_patient_credits(self, patient_id: str) -> List[PaymentRecord]:
        rows = self.db.execute(
            select(Payment)
            .join(Appointment, Payment.appointment_id == Appointment.id)
            .where(Payment.status == PaymentStatus.CREDIT, Appointment.patient_id == patient_id)
            .order_by(Payment.id)
        ).scalars().all()
        return [PaymentRecord.model_validate(row) for row in rows]

    # Reminders

    @storage_call
    def find_appointments_needing_reminder(self, window_start: datetime, window_end: datetime) -> List[AppointmentRecord]:
        has_reminder = select(Reminder.id).where(Reminder.appointment_id == Appointment.id).exists()
        rows = self.db.execute(
            select(Appointment).where(
                Appointment.status.in_(OPEN_STATUSES),
                Appointment.start_time > window_start,
                Appointment.start_time <= window_end,
                ~has_reminder
            ).order_by(Appointment.start_time)
        ).scalars().all()
        return [AppointmentRecord.model_validate(row) for row in rows]

    @storage_call
    def insert_reminder(self, reminder: NewReminder) -> ReminderRecord:
        with self.transaction():
            row = Reminder(**reminder.model_dump(), status=ReminderStatus.PENDING)
            self.db.add(row)
            self.db.flush()
            return ReminderRecord.model_validate(row)

    @storage_call
    def list_due_reminders(self, now: datetime) -> List[ReminderRecord]:
        rows = self.db.execute(
            select(Reminder)
            .join(Appointment, Reminder.appointment_id == Appointment.id)
            .where(
                Reminder.status == ReminderStatus.PENDING,
                Reminder.scheduled_for <= now,
                Appointment.status.in_(OPEN_STATUSES)
            )
            .order_by(Reminder.scheduled_for)
        ).scalars().all()
        return [ReminderRecord.model_validate(row) for row in rows]

    @storage_call
    def get_reminder_by_token(self, token: str) -> Optional[ReminderRecord]:
        row = self.db.execute(
            select(Reminder).where(Reminder.token == token).execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return ReminderRecord.model_validate(row) if row else None

    @storage_call
    def update_reminder(self, reminder_id: int, fields: Dict[str, Any], expected_status) -> ReminderRecord:
        expected = expected_statuses(expected_status)
        with self.transaction():
            result = self.db.execute(
                update(Reminder)
                .where(Reminder.id == reminder_id, Reminder.status.in_(expected))
                .values(**fields)
                .execution_options(synchronize_session=False)
            )
            row = self.db.get(Reminder, reminder_id, populate_existing=True)
            if result.rowcount != 1:
                raise PreconditionFailedError("Reminder", reminder_id, expected, row.status if row else None)
            return ReminderRecord.model_validate(row)

    # Surveys

    @storage_call
    def find_completed_without_survey(self) -> List[AppointmentRecord]:
        has_survey = select(Survey.id).where(Survey.appointment_id == Appointment.id).exists()
        rows = self.db.execute(
            select(Appointment)
            .where(Appointment.status == AppointmentStatus.COMPLETED, ~has_survey)
            .order_by(Appointment.end_time)
        ).scalars().all()
        return [AppointmentRecord.model_validate(row) for row in rows]

    @storage_call
    def insert_survey(self, survey: NewSurvey) -> SurveyRecord:
        with self.transaction():
            row = Survey(**survey.model_dump(), status=SurveyStatus.PENDING)
            self.db.add(row)
            self.db.flush()
            return SurveyRecord.model_validate(row)

    @storage_call
    def list_due_surveys(self, now: datetime) -> List[SurveyRecord]:
        rows = self.db.execute(
            select(Survey)
            .where(Survey.status == SurveyStatus.PENDING, Survey.scheduled_for <= now)
            .order_by(Survey.scheduled_for)
        ).scalars().all()
        return [SurveyRecord.model_validate(row) for row in rows]

    @storage_call
    def get_survey_by_token(self, token: str) -> Optional[SurveyRecord]:
        row = self.db.execute(
            select(Survey).where(Survey.token == token).execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return SurveyRecord.model_validate(row) if row else None

    @storage_call
    def update_survey(self, survey_id: int, fields: Dict[str, Any], expected_status) -> SurveyRecord:
        expected = expected_statuses(expected_status)
        with self.transaction():
            result = self.db.execute(
                update(Survey)
                .where(Survey.id == survey_id, Survey.status.in_(expected))
                .values(**fields)
                .execution_options(synchronize_session=False)
            )
            row = self.db.get(Survey, survey_id, populate_existing=True)
            if result.rowcount != 1:
                raise PreconditionFailedError("Survey", survey_id, expected, row.status if row else None)
            return SurveyRecord.model_validate(row)

    @storage_call
    def insert_survey_response(self, survey_id: int, fields: Dict[str, Any]) -> SurveyResponseRecord:
        with self.transaction():
            row = SurveyResponse(survey_id=survey_id, **fields)
            self.db.add(row)
            self.db.flush()
            return SurveyResponseRecord.model_validate(row)
