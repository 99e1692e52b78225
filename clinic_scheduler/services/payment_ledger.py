from decimal import Decimal
from typing import List, Optional, Tuple
import logging

from clinic_scheduler.config.settings import SchedulingConfig
from clinic_scheduler.exceptions import (
    AlreadyPaidError,
    AppointmentNotFoundError,
    CreditNotFoundError,
    InsufficientCreditError,
    InvalidAmountError,
    InvalidTransitionError,
    MissingPaymentError,
    PreconditionFailedError,
    TargetPaymentNotFoundError,
)
from clinic_scheduler.models.appointment import AppointmentStatus, INACTIVE_STATUSES
from clinic_scheduler.models.payment import PaymentStatus
from clinic_scheduler.repositories.base import SchedulingRepository
from clinic_scheduler.schemas.appointment import AppointmentRecord
from clinic_scheduler.schemas.payment import CreditApplication, PatientCredits, PaymentRecord

logger = logging.getLogger("payments")

CREDIT_METHOD = "credit"


class PaymentLedger:
    """
    Payment lifecycle for appointments.

    pending -> paid -> credit -> refunded. Every transition is a
    status-guarded update, so a retried call succeeds once and then reports
    the state it finds.
    """

    def __init__(self, repository: SchedulingRepository, clock, config: SchedulingConfig):
        self.repository = repository
        self.clock = clock
        self.config = config

    def _get_appointment(self, appointment_id: int) -> AppointmentRecord:
        appointment = self.repository.get_appointment(appointment_id)
        if not appointment:
            raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")
        return appointment

    def _payment_for(self, appointment_id: int) -> PaymentRecord:
        payment = self.repository.get_payment_for_appointment(appointment_id)
        if not payment:
            raise MissingPaymentError(
                f"Appointment {appointment_id} has no payment record",
                details={"appointment_id": appointment_id}
            )
        return payment

    def get_payment_status(self, appointment_id: int) -> PaymentRecord:
        self._get_appointment(appointment_id)
        return self._payment_for(appointment_id)

    def list_payments(self, status: Optional[PaymentStatus] = None, limit: int = 50) -> List[PaymentRecord]:
        return self.repository.list_payments(status=status, limit=limit)

    def get_patient_credits(self, patient_id: str) -> PatientCredits:
        credits = self.repository.list_patient_credits(patient_id)
        total = sum((credit.amount for credit in credits), Decimal("0"))
        return PatientCredits(patient_id=patient_id, credits=credits, total=total)

    def mark_paid(
        self,
        appointment_id: int,
        method: str,
        amount: Optional[Decimal] = None,
        notes: Optional[str] = None,
        paid_by: Optional[str] = None
    ) -> PaymentRecord:
        if amount is not None and amount < 0:
            raise InvalidAmountError(
                "Payment amount cannot be negative",
                details={"appointment_id": appointment_id, "amount": str(amount)}
            )

        with self.repository.transaction():
            appointment = self._get_appointment(appointment_id)
            if appointment.status in INACTIVE_STATUSES:
                raise InvalidTransitionError(
                    f"Cannot take payment for a {appointment.status.value} appointment",
                    details={"appointment_id": appointment_id, "status": appointment.status.value}
                )

            payment = self._payment_for(appointment_id)
            if payment.status != PaymentStatus.PENDING:
                raise AlreadyPaidError(
                    f"Payment for appointment {appointment_id} is already {payment.status.value}",
                    details={"payment_id": payment.id, "status": payment.status.value}
                )

            fields = {
                "status": PaymentStatus.PAID,
                "payment_method": method,
                "paid_at": self.clock.now(),
                "paid_by": paid_by,
            }
            if amount is not None:
                fields["amount"] = amount
            if notes:
                fields["notes"] = notes

            try:
                paid = self.repository.update_payment(payment.id, fields, PaymentStatus.PENDING)
            except PreconditionFailedError as e:
                raise AlreadyPaidError(
                    f"Payment for appointment {appointment_id} is already {e.actual.value if e.actual else 'settled'}",
                    details={"payment_id": payment.id}
                )

            # A paid booking counts as confirmed
            if appointment.status == AppointmentStatus.SCHEDULED:
                try:
                    self.repository.update_appointment_status(
                        appointment_id, AppointmentStatus.CONFIRMED, AppointmentStatus.SCHEDULED
                    )
                except PreconditionFailedError as e:
                    if e.actual != AppointmentStatus.CONFIRMED:
                        raise InvalidTransitionError(
                            f"Appointment {appointment_id} changed to {e.actual.value if e.actual else 'unknown'} during payment",
                            details={"appointment_id": appointment_id}
                        )

        logger.info(f"Payment {paid.id} for appointment {appointment_id} marked paid via {method}: {paid.amount} {paid.currency}")
        return paid

    def settle_cancellation(self, appointment_id: int) -> Tuple[PaymentRecord, bool]:
        """Turn a paid payment into credit; anything else is left as it is"""
        payment = self._payment_for(appointment_id)
        if payment.status != PaymentStatus.PAID:
            return payment, False
        return self.generate_credit(payment), True

    def generate_credit(self, payment: PaymentRecord) -> PaymentRecord:
        note = f"Credit generated from cancelled appointment {payment.appointment_id}"
        if payment.notes:
            note = f"{payment.notes} | {note}"
        try:
            credit = self.repository.update_payment(
                payment.id,
                {"status": PaymentStatus.CREDIT, "notes": note},
                PaymentStatus.PAID
            )
        except PreconditionFailedError as e:
            raise InvalidTransitionError(
                f"Payment {payment.id} changed while generating credit",
                details={"payment_id": payment.id, "status": e.actual.value if e.actual else None}
            )
        logger.info(f"Credit of {credit.amount} {credit.currency} generated from appointment {payment.appointment_id}")
        return credit

    def apply_credit(
        self,
        credit_payment_id: int,
        target_appointment_id: int,
        paid_by: Optional[str] = None
    ) -> CreditApplication:
        with self.repository.transaction():
            credit = self.repository.get_payment(credit_payment_id)
            if not credit or credit.status != PaymentStatus.CREDIT:
                raise CreditNotFoundError(
                    f"No available credit with payment ID {credit_payment_id}",
                    details={"credit_payment_id": credit_payment_id}
                )

            target_appointment = self._get_appointment(target_appointment_id)
            target = self.repository.get_payment_for_appointment(target_appointment_id)
            if not target:
                raise TargetPaymentNotFoundError(
                    f"Appointment {target_appointment_id} has no payment to apply credit to",
                    details={"credit_payment_id": credit_payment_id, "target_appointment_id": target_appointment_id}
                )
            if target_appointment.status in INACTIVE_STATUSES:
                raise InvalidTransitionError(
                    f"Cannot apply credit to a {target_appointment.status.value} appointment",
                    details={"target_appointment_id": target_appointment_id}
                )
            if target.status != PaymentStatus.PENDING:
                raise AlreadyPaidError(
                    f"Payment for appointment {target_appointment_id} is already {target.status.value}",
                    details={"payment_id": target.id, "status": target.status.value}
                )
            if credit.amount < target.amount:
                raise InsufficientCreditError(
                    f"Credit of {credit.amount} does not cover {target.amount}",
                    details={"credit": str(credit.amount), "required": str(target.amount)}
                )

            remainder = credit.amount - target.amount
            note = f"Credit applied to appointment {target_appointment_id}"
            if remainder > 0:
                note += f"; remainder {remainder} {credit.currency} pending manual refund"
            if credit.notes:
                note = f"{credit.notes} | {note}"

            try:
                closed = self.repository.update_payment(
                    credit.id,
                    {"status": PaymentStatus.REFUNDED, "notes": note},
                    PaymentStatus.CREDIT
                )
            except PreconditionFailedError:
                raise CreditNotFoundError(
                    f"Credit {credit_payment_id} was used concurrently",
                    details={"credit_payment_id": credit_payment_id}
                )

            try:
                paid = self.repository.update_payment(
                    target.id,
                    {
                        "status": PaymentStatus.PAID,
                        "payment_method": CREDIT_METHOD,
                        "paid_at": self.clock.now(),
                        "paid_by": paid_by,
                        "source_appointment_id": credit.appointment_id,
                        "notes": f"Paid with credit from appointment {credit.appointment_id}",
                    },
                    PaymentStatus.PENDING
                )
            except PreconditionFailedError:
                raise AlreadyPaidError(
                    f"Payment for appointment {target_appointment_id} was settled concurrently",
                    details={"payment_id": target.id}
                )

        if remainder > 0:
            logger.warning(
                f"Credit {credit_payment_id} exceeded appointment {target_appointment_id} by "
                f"{remainder} {credit.currency}; remainder needs a manual refund"
            )
        logger.info(f"Credit {credit_payment_id} applied to appointment {target_appointment_id}")
        return CreditApplication(credit=closed, target=paid, remainder=remainder)
