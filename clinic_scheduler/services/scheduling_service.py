from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Union
import logging

from clinic_scheduler.config.settings import SchedulingConfig
from clinic_scheduler.exceptions import InvalidDateError, RoomNotFoundError
from clinic_scheduler.models.payment import PaymentStatus
from clinic_scheduler.repositories.base import SchedulingRepository
from clinic_scheduler.schemas.appointment import (
    AppointmentRecord,
    AvailableSlots,
    CancellationResult,
    Reservation,
)
from clinic_scheduler.schemas.payment import CreditApplication, PatientCredits, PaymentRecord
from clinic_scheduler.schemas.reminder import DispatchSummary, ReminderRecord, ReminderReplyResult
from clinic_scheduler.schemas.survey import SurveyRecord, SurveyResponseRecord
from clinic_scheduler.services.availability_service import AvailabilityFilter
from clinic_scheduler.services.fee_service import FeeResolver
from clinic_scheduler.services.payment_ledger import PaymentLedger
from clinic_scheduler.services.reminder_service import ReminderScheduler, ReminderSender
from clinic_scheduler.services.reservation_service import ReservationCoordinator
from clinic_scheduler.services.slot_generator import TimeSlotGenerator
from clinic_scheduler.services.survey_service import SurveyScheduler, SurveySender
from clinic_scheduler.utils.clock import SystemClock
from clinic_scheduler.utils.validators import parse_date

logger = logging.getLogger("scheduling")


class SchedulingService:
    """Caller-facing operations of the scheduling engine"""

    def __init__(
        self,
        repository: SchedulingRepository,
        config: SchedulingConfig,
        clock=None,
        cache=None
    ):
        self.repository = repository
        self.config = config
        self.clock = clock or SystemClock()
        self.cache = cache

        self.generator = TimeSlotGenerator(config, self.clock)
        self.fees = FeeResolver(config)
        self.ledger = PaymentLedger(repository, self.clock, config)
        self.coordinator = ReservationCoordinator(
            repository, self.generator, self.fees, self.ledger, self.clock, config, cache=cache
        )
        self.reminders = ReminderScheduler(repository, self.coordinator, self.clock, config)
        self.surveys = SurveyScheduler(repository, self.clock, config)

    # Availability

    def list_available_slots(
        self,
        doctor_id: str,
        day: Union[date, str],
        is_virtual: bool = False,
        room_id: Optional[int] = None
    ) -> AvailableSlots:
        if isinstance(day, str):
            try:
                day = parse_date(day)
            except ValueError as e:
                raise InvalidDateError(str(e), details={"date": day})

        doctor = self.repository.get_doctor(doctor_id)
        now = self.clock.now()

        # Stamp read before computing so a booking committed meanwhile retires this entry
        generation = None
        if self.cache is not None and day >= self.generator.today_for(doctor):
            generation = self.cache.generation(doctor_id, is_virtual)
        if generation is not None:
            cached = self.cache.get(doctor_id, day, is_virtual, generation, room_id=room_id)
            if cached is not None:
                logger.debug(f"Availability cache hit for doctor {doctor_id} on {day}")
                # Slots that started since the entry was written are dropped
                remaining = [slot for slot in cached.available_slots if slot > now]
                return cached.model_copy(update={"available_slots": remaining})

        grid = self.generator.generate(doctor, day, self.repository.list_doctor_leaves(doctor_id, day))
        available: List[datetime] = []
        slots = list(grid)
        if slots:
            window_start, window_end = slots[0], slots[-1] + grid.duration
            room_bookings = None
            if not is_virtual:
                if room_id is not None:
                    room = self.repository.get_room(room_id)
                    if not room or not room.is_active:
                        raise RoomNotFoundError(f"Room {room_id} not found", details={"room_id": room_id})
                    room_ids = [room.id]
                else:
                    room_ids = [room.id for room in self.repository.list_active_rooms()]
                room_bookings = self.repository.find_room_bookings(room_ids, window_start, window_end)

            available = AvailabilityFilter.apply(
                slots,
                grid.slot_minutes,
                self.repository.find_overlapping(doctor_id, window_start, window_end),
                room_bookings=room_bookings,
                not_before=now
            )

        result = AvailableSlots(
            doctor_id=doctor_id,
            date=day,
            timezone=grid.timezone,
            slot_minutes=grid.slot_minutes,
            is_virtual=is_virtual,
            total_slots=len(grid),
            available_slots=available
        )
        if generation is not None:
            self.cache.set(result, generation, room_id=room_id)
        return result

    # Appointments

    def get_appointment(self, appointment_id: int) -> AppointmentRecord:
        return self.coordinator.get_appointment(appointment_id)

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
        return self.coordinator.reserve(
            doctor_id, patient_id, start_time,
            is_virtual=is_virtual, room_id=room_id, notes=notes, created_by=created_by
        )

    def cancel(
        self,
        appointment_id: int,
        reason: Optional[str] = None,
        cancelled_by: Optional[str] = None,
        enforce_notice: bool = False
    ) -> CancellationResult:
        return self.coordinator.cancel(appointment_id, reason, cancelled_by, enforce_notice)

    def cancel_for_leave(self, appointment_ids: List[int]) -> List[int]:
        return self.coordinator.cancel_for_leave(appointment_ids)

    def confirm(self, appointment_id: int, require_payment: bool = True) -> AppointmentRecord:
        return self.coordinator.confirm(appointment_id, require_payment=require_payment)

    def complete(self, appointment_id: int) -> AppointmentRecord:
        return self.coordinator.complete(appointment_id)

    def mark_no_show(self, appointment_id: int) -> AppointmentRecord:
        return self.coordinator.mark_no_show(appointment_id)

    # Payments

    def mark_paid(
        self,
        appointment_id: int,
        method: str,
        amount: Optional[Decimal] = None,
        notes: Optional[str] = None,
        paid_by: Optional[str] = None
    ) -> PaymentRecord:
        return self.ledger.mark_paid(appointment_id, method, amount=amount, notes=notes, paid_by=paid_by)

    def apply_credit(
        self,
        credit_payment_id: int,
        target_appointment_id: int,
        paid_by: Optional[str] = None
    ) -> CreditApplication:
        return self.ledger.apply_credit(credit_payment_id, target_appointment_id, paid_by=paid_by)

    def get_payment_status(self, appointment_id: int) -> PaymentRecord:
        return self.ledger.get_payment_status(appointment_id)

    def list_payments(self, status: Optional[PaymentStatus] = None, limit: int = 50) -> List[PaymentRecord]:
        return self.ledger.list_payments(status=status, limit=limit)

    def get_patient_credits(self, patient_id: str) -> PatientCredits:
        return self.ledger.get_patient_credits(patient_id)

    # Reminders and surveys

    def generate_reminders(self) -> List[ReminderRecord]:
        return self.reminders.generate_reminders()

    def dispatch_reminders(self, sender: ReminderSender) -> DispatchSummary:
        return self.reminders.dispatch_due(sender)

    def process_reminder_response(self, token: str, action: str) -> ReminderReplyResult:
        return self.reminders.process_response(token, action)

    def generate_surveys(self) -> List[SurveyRecord]:
        return self.surveys.generate_surveys()

    def dispatch_surveys(self, sender: SurveySender) -> DispatchSummary:
        return self.surveys.dispatch_due(sender)

    def submit_survey(
        self,
        token: str,
        doctor_rating: int,
        punctuality_rating: int,
        clarity_rating: int,
        treatment_rating: int,
        comment: Optional[str] = None
    ) -> SurveyResponseRecord:
        return self.surveys.submit(
            token, doctor_rating, punctuality_rating, clarity_rating, treatment_rating, comment=comment
        )
