from decimal import Decimal
import logging

import pytest

from clinic_scheduler.exceptions import (
    AlreadyPaidError,
    AppointmentNotFoundError,
    CreditNotFoundError,
    InsufficientCreditError,
    InvalidAmountError,
    InvalidTransitionError,
    TargetPaymentNotFoundError,
)
from clinic_scheduler.models.appointment import AppointmentStatus
from clinic_scheduler.models.payment import PaymentStatus

from conftest import NOW, TUESDAY, local


@pytest.fixture
def booked(service):
    return service.reserve("DOC001", "PAT001", local(TUESDAY, 9)).appointment


@pytest.fixture
def credit(service):
    """Payment of a paid-then-cancelled appointment"""
    appointment = service.reserve("DOC001", "PAT001", local(TUESDAY, 11, 30)).appointment
    service.mark_paid(appointment.id, "card")
    return service.cancel(appointment.id).payment


class TestMarkPaid:

    def test_marks_paid_and_confirms(self, service, booked, repository):
        paid = service.mark_paid(booked.id, "cash", paid_by="reception")

        assert paid.status == PaymentStatus.PAID
        assert paid.payment_method == "cash"
        assert paid.paid_by == "reception"
        assert paid.paid_at == NOW
        assert repository.get_appointment(booked.id).status == AppointmentStatus.CONFIRMED

    def test_retry_is_rejected_once_paid(self, service, booked):
        service.mark_paid(booked.id, "cash")

        with pytest.raises(AlreadyPaidError):
            service.mark_paid(booked.id, "cash")
        assert service.get_payment_status(booked.id).status == PaymentStatus.PAID

    def test_amount_override(self, service, booked):
        paid = service.mark_paid(booked.id, "transfer", amount=Decimal("90000"), notes="discount")

        assert paid.amount == Decimal("90000")
        assert paid.notes == "discount"

    def test_negative_amount_is_rejected(self, service, booked):
        with pytest.raises(InvalidAmountError):
            service.mark_paid(booked.id, "cash", amount=Decimal("-5"))
        assert service.get_payment_status(booked.id).status == PaymentStatus.PENDING

    def test_cancelled_appointment_cannot_be_paid(self, service, booked):
        service.cancel(booked.id)

        with pytest.raises(InvalidTransitionError):
            service.mark_paid(booked.id, "cash")

    def test_unknown_appointment(self, service):
        with pytest.raises(AppointmentNotFoundError):
            service.mark_paid(999, "cash")


class TestCredits:

    def test_cancelled_paid_appointment_leaves_credit(self, service, credit):
        assert credit.status == PaymentStatus.CREDIT

        credits = service.get_patient_credits("PAT001")
        assert [c.id for c in credits.credits] == [credit.id]
        assert credits.total == Decimal("100000")

    def test_apply_credit_pays_target(self, service, credit, booked, repository):
        application = service.apply_credit(credit.id, booked.id)

        assert application.credit.status == PaymentStatus.REFUNDED
        assert f"appointment {booked.id}" in application.credit.notes
        assert application.target.status == PaymentStatus.PAID
        assert application.target.payment_method == "credit"
        assert application.target.source_appointment_id == credit.appointment_id
        assert application.remainder == Decimal("0")
        assert service.get_patient_credits("PAT001").total == Decimal("0")

    def test_credit_can_be_used_once(self, service, credit, booked):
        other = service.reserve("DOC001", "PAT001", local(TUESDAY, 10, 40)).appointment
        service.apply_credit(credit.id, booked.id)

        with pytest.raises(CreditNotFoundError):
            service.apply_credit(credit.id, other.id)

    def test_regular_payment_is_not_a_credit(self, service, booked):
        payment = service.get_payment_status(booked.id)

        with pytest.raises(CreditNotFoundError):
            service.apply_credit(payment.id, booked.id)

    def test_target_already_paid(self, service, credit, booked):
        service.mark_paid(booked.id, "cash")

        with pytest.raises(AlreadyPaidError):
            service.apply_credit(credit.id, booked.id)
        assert service.get_patient_credits("PAT001").total == Decimal("100000")

    def test_target_without_payment_is_an_integrity_error(self, service, credit, booked, repository):
        target_payment = repository.get_payment_for_appointment(booked.id)
        del repository.payments[target_payment.id]

        with pytest.raises(TargetPaymentNotFoundError) as exc_info:
            service.apply_credit(credit.id, booked.id)
        assert exc_info.value.category == "integrity"
        assert repository.get_payment(credit.id).status == PaymentStatus.CREDIT

    def test_insufficient_credit_changes_nothing(self, service, booked):
        small = service.reserve("DOC001", "PAT001", local(TUESDAY, 11, 30)).appointment
        service.mark_paid(small.id, "cash", amount=Decimal("40000"))
        small_credit = service.cancel(small.id).payment

        with pytest.raises(InsufficientCreditError):
            service.apply_credit(small_credit.id, booked.id)
        assert service.get_payment_status(booked.id).status == PaymentStatus.PENDING
        assert service.get_payment_status(small.id).status == PaymentStatus.CREDIT

    def test_larger_credit_records_remainder(self, service, booked, caplog):
        big = service.reserve("DOC001", "PAT001", local(TUESDAY, 11, 30)).appointment
        service.mark_paid(big.id, "cash", amount=Decimal("130000"))
        big_credit = service.cancel(big.id).payment

        with caplog.at_level(logging.WARNING, logger="payments"):
            application = service.apply_credit(big_credit.id, booked.id)

        assert application.remainder == Decimal("30000")
        assert "remainder 30000" in application.credit.notes
        assert application.target.amount == Decimal("100000")
        assert "manual refund" in caplog.text

    def test_applied_credit_keeps_its_history_and_records_who_paid(self, service, credit, booked):
        application = service.apply_credit(credit.id, booked.id, paid_by="reception")

        assert application.credit.notes == (
            f"Credit generated from cancelled appointment {credit.appointment_id}"
            f" | Credit applied to appointment {booked.id}"
        )
        assert application.target.paid_by == "reception"

    def test_credit_keeps_the_payment_notes(self, service, booked):
        service.mark_paid(booked.id, "transfer", notes="Bancolombia ref 4411")

        credit = service.cancel(booked.id).payment
        assert credit.notes == f"Bancolombia ref 4411 | Credit generated from cancelled appointment {booked.id}"


class TestListings:

    def test_list_payments_newest_first(self, service, booked):
        second = service.reserve("DOC001", "PAT002", local(TUESDAY, 9, 50)).appointment
        payments = service.list_payments()

        assert [p.appointment_id for p in payments] == [second.id, booked.id]

    def test_list_payments_by_status(self, service, booked):
        service.reserve("DOC001", "PAT002", local(TUESDAY, 9, 50))
        service.mark_paid(booked.id, "cash")

        paid = service.list_payments(status=PaymentStatus.PAID)
        assert [p.appointment_id for p in paid] == [booked.id]
        assert len(service.list_payments(limit=1)) == 1
