from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional
import logging

from clinic_scheduler.config.settings import SchedulingConfig
from clinic_scheduler.exceptions import (
    AlreadyCancelledError,
    AppointmentNotFoundError,
    InvalidSlotError,
    InvalidTransitionError,
    NoRoomAvailableError,
    PastTimeError,
    PaymentRequiredError,
    PreconditionFailedError,
    RoomNotFoundError,
    TooLateToCancelError,
)
from clinic_scheduler.models.appointment import AppointmentStatus, OPEN_STATUSES
from clinic_scheduler.models.doctor import DoctorStatus
from clinic_scheduler.models.payment import PaymentStatus
from clinic_scheduler.repositories.base import SchedulingRepository
from clinic_scheduler.schemas.appointment import (
    AppointmentRecord,
    CancellationResult,
    NewAppointment,
    Reservation,
)
from clinic_scheduler.schemas.doctor import DoctorProfile
from clinic_scheduler.schemas.payment import NewPayment
from clinic_scheduler.services.fee_service import FeeResolver
from clinic_scheduler.services.payment_ledger import PaymentLedger
from clinic_scheduler.services.slot_generator import TimeSlotGenerator

logger = logging.getLogger("scheduling")

LEAVE_CANCELLATION_REASON = "Cancelled due to doctor leave"


class ReservationCoordinator:

    def __init__(
        self,
        repository: SchedulingRepository,
        generator: TimeSlotGenerator,
        fees: FeeResolver,
        ledger: PaymentLedger,
        clock,
        config: SchedulingConfig,
        cache=None
    ):
        self.repository = repository
        self.generator = generator
        self.fees = fees
        self.ledger = ledger
        self.clock = clock
        self.config = config
        self.cache = cache

    def get_appointment(self, appointment_id: int) -> AppointmentRecord:
        appointment = self.repository.get_appointment(appointment_id)
        if not appointment:
            raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")
        return appointment

    def _to_utc(self, doctor: DoctorProfile, start_time: datetime) -> datetime:
        if start_time.tzinfo is None:
            start_time = start_time.replace(tzinfo=self.generator.doctor_timezone(doctor))
        return start_time.astimezone(timezone.utc)

    def _transition_error(self, appointment_id: int, actual, target: AppointmentStatus):
        if actual == AppointmentStatus.CANCELLED:
            return AlreadyCancelledError(
                f"Appointment {appointment_id} is already cancelled",
                details={"appointment_id": appointment_id}
            )
        return InvalidTransitionError(
            f"Cannot move appointment {appointment_id} from {actual.value if actual else 'unknown'} to {target.value}",
            details={"appointment_id": appointment_id, "status": actual.value if actual else None}
        )

    def _no_room(self, doctor: DoctorProfile, start: datetime, details: Optional[Dict[str, Any]] = None):
        virtual_fee = self.fees.resolve(self.repository.get_doctor_fee_config(doctor.doctor_id), True, doctor.doctor_id)
        details = dict(details or {})
        details.update({
            "doctor_id": doctor.doctor_id,
            "start_time": start.isoformat(),
            "virtual_fallback": {
                "available": True,
                "amount": str(virtual_fee.amount),
                "currency": virtual_fee.currency,
            },
        })
        return NoRoomAvailableError(
            "No consultation room is available at this time. A virtual consultation can be booked instead",
            details=details
        )

    def invalidate(self, appointment: AppointmentRecord):
        if self.cache is not None:
            self.cache.invalidate(appointment.doctor_id, in_person=not appointment.is_virtual)

    def reserve(
        self,
        doctor_id: str,
        patient_id: str,
        start_time: datetime,
        is_virtual: bool = False,
        room_id: Optional[int] = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> Reservation:
        doctor = self.repository.get_doctor(doctor_id)
        if doctor.status != DoctorStatus.ACTIVE:
            raise InvalidSlotError(
                f"Doctor {doctor_id} is not accepting appointments",
                details={"doctor_id": doctor_id, "status": doctor.status.value}
            )

        start = self._to_utc(doctor, start_time)
        now = self.clock.now()
        if start <= now:
            raise PastTimeError(
                "Cannot book an appointment in the past",
                details={"start_time": start.isoformat(), "now": now.isoformat()}
            )

        local_day = start.astimezone(self.generator.doctor_timezone(doctor)).date()
        grid = self.generator.generate(doctor, local_day, self.repository.list_doctor_leaves(doctor_id, local_day))
        if start not in grid:
            raise InvalidSlotError(
                f"{start.isoformat()} is not an available slot start for doctor {doctor_id}",
                details={"doctor_id": doctor_id, "date": local_day.isoformat(), "slot_minutes": grid.slot_minutes}
            )
        end = start + grid.duration

        room_candidates: Optional[List[int]] = None
        if not is_virtual:
            if room_id is not None:
                room = self.repository.get_room(room_id)
                if not room or not room.is_active:
                    raise RoomNotFoundError(f"Room {room_id} not found", details={"room_id": room_id})
                room_candidates = [room.id]
            else:
                room_candidates = [room.id for room in self.repository.list_active_rooms()]
            if not room_candidates:
                raise self._no_room(doctor, start)

        fee = self.fees.resolve(self.repository.get_doctor_fee_config(doctor_id), is_virtual, doctor_id)

        appointment = NewAppointment(
            doctor_id=doctor_id,
            patient_id=patient_id,
            start_time=start,
            end_time=end,
            is_virtual=is_virtual,
            notes=notes,
            created_by=created_by
        )
        payment = NewPayment(amount=fee.amount, currency=fee.currency, fee_source=fee.source)

        try:
            reservation = self.repository.insert_appointment_and_payment(appointment, payment, room_candidates)
        except NoRoomAvailableError as e:
            raise self._no_room(doctor, start, e.details)

        logger.info(
            f"Appointment {reservation.appointment.id} reserved: doctor {doctor_id}, patient {patient_id}, "
            f"{start.isoformat()} ({'virtual' if is_virtual else f'room {reservation.appointment.room_id}'})"
        )
        self.invalidate(reservation.appointment)
        return reservation

    def check_notice(self, appointment: AppointmentRecord):
        notice = appointment.start_time - self.clock.now()
        minimum = timedelta(hours=self.config.min_cancellation_notice_hours)
        if notice < minimum:
            raise TooLateToCancelError(
                f"Appointments can only be cancelled at least "
                f"{self.config.min_cancellation_notice_hours:g} hours in advance",
                details={
                    "appointment_id": appointment.id,
                    "hours_until_start": round(notice.total_seconds() / 3600, 2),
                    "minimum_hours": self.config.min_cancellation_notice_hours,
                }
            )

    def cancel(
        self,
        appointment_id: int,
        reason: Optional[str] = None,
        cancelled_by: Optional[str] = None,
        enforce_notice: bool = False
    ) -> CancellationResult:
        appointment = self.get_appointment(appointment_id)
        if appointment.status not in OPEN_STATUSES:
            raise self._transition_error(appointment_id, appointment.status, AppointmentStatus.CANCELLED)
        if enforce_notice:
            self.check_notice(appointment)

        with self.repository.transaction():
            try:
                cancelled = self.repository.update_appointment_status(
                    appointment_id,
                    AppointmentStatus.CANCELLED,
                    OPEN_STATUSES,
                    cancellation_reason=reason,
                    cancelled_at=self.clock.now(),
                    cancelled_by=cancelled_by
                )
            except PreconditionFailedError as e:
                raise self._transition_error(appointment_id, e.actual, AppointmentStatus.CANCELLED)
            payment, credit_generated = self.ledger.settle_cancellation(appointment_id)

        logger.info(
            f"Appointment {appointment_id} cancelled by {cancelled_by or 'unknown'}"
            f"{' with credit generated' if credit_generated else ''}"
        )
        self.invalidate(cancelled)
        return CancellationResult(appointment=cancelled, payment=payment, credit_generated=credit_generated)

    def cancel_for_leave(self, appointment_ids: Iterable[int]) -> List[int]:
        """Cancel the appointments a leave covers, skipping any closed in the meantime"""
        cancelled = []
        for appointment_id in appointment_ids:
            try:
                result = self.cancel(appointment_id, reason=LEAVE_CANCELLATION_REASON, cancelled_by="system")
            except (AlreadyCancelledError, InvalidTransitionError) as e:
                logger.info(f"Leave cancellation skipped appointment {appointment_id}: {e.message}")
                continue
            cancelled.append(result.appointment.id)
        return cancelled

    def confirm(self, appointment_id: int, require_payment: bool = True) -> AppointmentRecord:
        appointment = self.get_appointment(appointment_id)
        if appointment.status == AppointmentStatus.CONFIRMED:
            return appointment
        if appointment.status != AppointmentStatus.SCHEDULED:
            raise self._transition_error(appointment_id, appointment.status, AppointmentStatus.CONFIRMED)

        if require_payment:
            payment = self.ledger.get_payment_status(appointment_id)
            if payment.status != PaymentStatus.PAID:
                raise PaymentRequiredError(
                    "Payment must be completed before confirming the appointment",
                    details={"appointment_id": appointment_id, "payment_status": payment.status.value}
                )

        try:
            confirmed = self.repository.update_appointment_status(
                appointment_id, AppointmentStatus.CONFIRMED, AppointmentStatus.SCHEDULED
            )
        except PreconditionFailedError as e:
            if e.actual == AppointmentStatus.CONFIRMED:
                return self.get_appointment(appointment_id)
            raise self._transition_error(appointment_id, e.actual, AppointmentStatus.CONFIRMED)

        logger.info(f"Appointment {appointment_id} confirmed")
        return confirmed

    def _close(self, appointment_id: int, target: AppointmentStatus) -> AppointmentRecord:
        appointment = self.get_appointment(appointment_id)
        if appointment.status not in OPEN_STATUSES:
            raise self._transition_error(appointment_id, appointment.status, target)
        if appointment.start_time > self.clock.now():
            raise InvalidTransitionError(
                f"Appointment {appointment_id} has not started yet",
                details={"appointment_id": appointment_id, "start_time": appointment.start_time.isoformat()}
            )
        try:
            closed = self.repository.update_appointment_status(appointment_id, target, OPEN_STATUSES)
        except PreconditionFailedError as e:
            raise self._transition_error(appointment_id, e.actual, target)
        logger.info(f"Appointment {appointment_id} marked {target.value}")
        return closed

    def complete(self, appointment_id: int) -> AppointmentRecord:
        return self._close(appointment_id, AppointmentStatus.COMPLETED)

    def mark_no_show(self, appointment_id: int) -> AppointmentRecord:
        closed = self._close(appointment_id, AppointmentStatus.NO_SHOW)
        self.invalidate(closed)
        return closed
