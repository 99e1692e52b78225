from datetime import timedelta
from typing import Callable, List
import logging

from clinic_scheduler.config.settings import SchedulingConfig
from clinic_scheduler.exceptions import (
    AppointmentNotFoundError,
    InvalidActionError,
    PreconditionFailedError,
    ReminderNotFoundError,
    TokenAlreadyUsedError,
)
from clinic_scheduler.models.reminder import ReminderStatus
from clinic_scheduler.repositories.base import SchedulingRepository
from clinic_scheduler.schemas.appointment import AppointmentRecord
from clinic_scheduler.schemas.doctor import DoctorProfile
from clinic_scheduler.schemas.reminder import DispatchSummary, NewReminder, ReminderRecord, ReminderReplyResult
from clinic_scheduler.services.reservation_service import ReservationCoordinator
from clinic_scheduler.utils.tokens import generate_response_token

logger = logging.getLogger("reminders")

CONFIRM = "confirm"
CANCEL = "cancel"
VALID_ACTIONS = (CONFIRM, CANCEL)
REMINDER_TYPE = "appointment_24h"

# sender(reminder, appointment) delivers one message or raises
ReminderSender = Callable[[ReminderRecord, AppointmentRecord], None]


class ReminderScheduler:
    """
    Decides which reminders exist and when they are due, and redeems the
    single-use response token. Delivery belongs to the injected sender.
    """

    def __init__(
        self,
        repository: SchedulingRepository,
        coordinator: ReservationCoordinator,
        clock,
        config: SchedulingConfig
    ):
        self.repository = repository
        self.coordinator = coordinator
        self.clock = clock
        self.config = config

    def render_message(self, appointment: AppointmentRecord, doctor: DoctorProfile) -> str:
        local_start = appointment.start_time.astimezone(self.coordinator.generator.doctor_timezone(doctor))
        modality = "virtual consultation" if appointment.is_virtual else "consultation"
        return (
            f"Reminder from {self.config.clinic_name}: your {modality} with {doctor.name} is on "
            f"{local_start:%Y-%m-%d} at {local_start:%H:%M}. "
            f"Reply CONFIRM to confirm or CANCEL to cancel."
        )

    def generate_reminders(self) -> List[ReminderRecord]:
        now = self.clock.now()
        window_end = now + timedelta(hours=self.config.reminder_lookahead_hours)
        lead = timedelta(hours=self.config.reminder_lead_hours)

        created = []
        with self.repository.transaction():
            for appointment in self.repository.find_appointments_needing_reminder(now, window_end):
                doctor = self.repository.get_doctor(appointment.doctor_id)
                reminder = self.repository.insert_reminder(NewReminder(
                    appointment_id=appointment.id,
                    token=generate_response_token(),
                    channel=self.config.reminder_channel,
                    reminder_type=REMINDER_TYPE,
                    scheduled_for=max(now, appointment.start_time - lead),
                    message_content=self.render_message(appointment, doctor)
                ))
                created.append(reminder)

        logger.info(f"Generated {len(created)} reminders")
        return created

    def dispatch_due(self, sender: ReminderSender) -> DispatchSummary:
        summary = DispatchSummary()
        for reminder in self.repository.list_due_reminders(self.clock.now()):
            appointment = self.repository.get_appointment(reminder.appointment_id)
            try:
                sender(reminder, appointment)
            except Exception as e:
                # Left pending so the next run retries it
                logger.error(f"Failed to send reminder {reminder.id} for appointment {reminder.appointment_id}: {e}")
                summary.failed += 1
                continue

            try:
                self.repository.update_reminder(
                    reminder.id,
                    {"status": ReminderStatus.SENT, "sent_at": self.clock.now()},
                    ReminderStatus.PENDING
                )
            except PreconditionFailedError as e:
                logger.info(f"Reminder {reminder.id} already moved to {e.actual.value if e.actual else 'unknown'}")
                continue
            summary.sent += 1

        logger.info(f"Reminder dispatch: {summary.sent} sent, {summary.failed} failed")
        return summary

    def process_response(self, token: str, action: str) -> ReminderReplyResult:
        reminder = self.repository.get_reminder_by_token(token)
        if not reminder:
            raise ReminderNotFoundError("Reminder not found for this token")

        action = (action or "").strip().lower()
        if action not in VALID_ACTIONS:
            raise InvalidActionError(
                f"Unknown action {action!r}. Use confirm or cancel",
                details={"allowed": list(VALID_ACTIONS)}
            )
        if reminder.status == ReminderStatus.RESPONDED:
            raise TokenAlreadyUsedError(
                "This reminder has already been answered",
                details={"reminder_id": reminder.id, "response_action": reminder.response_action}
            )

        appointment = self.repository.get_appointment(reminder.appointment_id)
        if not appointment:
            raise AppointmentNotFoundError(f"Appointment {reminder.appointment_id} not found")
        if action == CANCEL:
            self.coordinator.check_notice(appointment)

        credit_generated = False
        with self.repository.transaction():
            try:
                answered = self.repository.update_reminder(
                    reminder.id,
                    {"status": ReminderStatus.RESPONDED, "response_action": action, "response_at": self.clock.now()},
                    (ReminderStatus.PENDING, ReminderStatus.SENT)
                )
            except PreconditionFailedError:
                raise TokenAlreadyUsedError(
                    "This reminder has already been answered",
                    details={"reminder_id": reminder.id}
                )

            if action == CONFIRM:
                appointment = self.coordinator.confirm(appointment.id, require_payment=False)
            else:
                result = self.coordinator.cancel(
                    appointment.id,
                    reason="Cancelled by patient from reminder",
                    cancelled_by=appointment.patient_id
                )
                appointment = result.appointment
                credit_generated = result.credit_generated

        if action == CANCEL:
            self.coordinator.invalidate(appointment)
        logger.info(f"Reminder {reminder.id} answered with {action} for appointment {appointment.id}")
        return ReminderReplyResult(
            reminder=answered,
            appointment=appointment,
            action=action,
            credit_generated=credit_generated
        )
