from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
import threading
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError, StatementError
from sqlalchemy.orm import sessionmaker

from clinic_scheduler.config.database import Base, build_engine, driver_timeout_args
from clinic_scheduler.exceptions import (
    NoRoomAvailableError,
    PreconditionFailedError,
    SlotConflictError,
    StorageTimeoutError,
)
from clinic_scheduler.models import Appointment, Doctor, DoctorLeave, LeaveType, Payment, Room, ScheduleVersion
from clinic_scheduler.models.appointment import AppointmentStatus
from clinic_scheduler.models.payment import PaymentStatus
from clinic_scheduler.models.room import RoomType
from clinic_scheduler.repositories.sqlalchemy_repository import SqlAlchemyRepository
from clinic_scheduler.services.scheduling_service import SchedulingService

from conftest import SHIFTS, TUESDAY, local


def seed(session):
    session.add_all([
        Doctor(
            name="Dr. Sarah Johnson",
            doctor_id="DOC001",
            timezone="America/Bogota",
            shift_timings=SHIFTS,
            consultation_duration_min=50,
            consultation_fee=Decimal("100000"),
        ),
        Doctor(name="Dr. Luis Pardo", doctor_id="DOC002", timezone="America/Bogota", shift_timings=SHIFTS),
        Room(name="Consultorio 1", room_type=RoomType.CONSULTATION),
        Room(name="Auditorio", room_type=RoomType.EVENT_HALL),
    ])
    session.commit()


@pytest.fixture
def db():
    engine = build_engine("sqlite://", 5)
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    seed(session)
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def repo(db):
    return SqlAlchemyRepository(db)


@pytest.fixture
def sql_service(repo, config, clock):
    return SchedulingService(repo, config, clock=clock)


class TestReservationStorage:

    def test_reserve_persists_appointment_and_payment(self, sql_service, db):
        reservation = sql_service.reserve("DOC001", "PAT001", local(TUESDAY, 9))

        appointment = db.get(Appointment, reservation.appointment.id)
        payment = db.query(Payment).filter(Payment.appointment_id == appointment.id).one()
        assert appointment.start_time == local(TUESDAY, 9)
        assert appointment.start_time.tzinfo is not None
        assert appointment.room_id == 1
        assert payment.status == PaymentStatus.PENDING
        assert payment.amount == Decimal("100000")
        assert payment.fee_source == "consultation_fee"

    def test_versions_move_with_each_booking(self, sql_service, db):
        sql_service.reserve("DOC001", "PAT001", local(TUESDAY, 9))
        sql_service.reserve("DOC001", "PAT002", local(TUESDAY, 9, 50))

        assert db.get(ScheduleVersion, "doctor:DOC001").version == 2
        assert db.get(ScheduleVersion, "room:1").version == 2

    def test_only_consultation_rooms_are_candidates(self, repo):
        assert [room.name for room in repo.list_active_rooms()] == ["Consultorio 1"]
        assert [room.name for room in repo.list_active_rooms(RoomType.EVENT_HALL)] == ["Auditorio"]

    def test_duplicate_slot_conflicts(self, sql_service, db):
        sql_service.reserve("DOC001", "PAT001", local(TUESDAY, 9))

        with pytest.raises(SlotConflictError):
            sql_service.reserve("DOC001", "PAT002", local(TUESDAY, 9), is_virtual=True)
        assert db.query(Appointment).count() == 1
        assert db.query(Payment).count() == 1

    def test_room_shortage_rolls_back(self, sql_service, db):
        sql_service.reserve("DOC001", "PAT001", local(TUESDAY, 9))

        with pytest.raises(NoRoomAvailableError):
            sql_service.reserve("DOC002", "PAT002", local(TUESDAY, 9))
        assert db.query(Appointment).count() == 1
        assert db.get(ScheduleVersion, "doctor:DOC002") is None

    def test_listing_reflects_bookings(self, sql_service):
        sql_service.reserve("DOC001", "PAT001", local(TUESDAY, 9, 50))

        available = sql_service.list_available_slots("DOC001", TUESDAY).available_slots
        assert local(TUESDAY, 9, 50) not in available
        assert local(TUESDAY, 9) in available

    def test_leave_rows_block_the_day(self, sql_service, db):
        db.add(DoctorLeave(doctor_id="DOC001", type=LeaveType.FULL_DAY, start_date=TUESDAY, end_date=TUESDAY))
        db.commit()

        assert sql_service.list_available_slots("DOC001", TUESDAY).total_slots == 0

    def test_unique_index_rejects_identical_active_starts(self, db):
        def row(status=AppointmentStatus.SCHEDULED):
            return Appointment(
                doctor_id="DOC001",
                patient_id="PAT001",
                start_time=local(TUESDAY, 9),
                end_time=local(TUESDAY, 9, 50),
                is_virtual=True,
                status=status
            )

        db.add(row(AppointmentStatus.CANCELLED))
        db.add(row())
        db.commit()

        db.add(row())
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()

    def test_naive_datetimes_are_refused(self, db):
        db.add(Appointment(
            doctor_id="DOC001",
            patient_id="PAT001",
            start_time=local(TUESDAY, 9).replace(tzinfo=None),
            end_time=local(TUESDAY, 9, 50),
            is_virtual=True
        ))
        with pytest.raises(StatementError):
            db.flush()
        db.rollback()


class TestGuardedUpdates:

    def test_update_with_wrong_expected_status_fails(self, sql_service, repo):
        reservation = sql_service.reserve("DOC001", "PAT001", local(TUESDAY, 9))

        with pytest.raises(PreconditionFailedError) as exc_info:
            repo.update_payment(reservation.payment.id, {"status": PaymentStatus.CREDIT}, PaymentStatus.PAID)
        assert exc_info.value.actual == PaymentStatus.PENDING

    def test_mark_paid_then_cancel_then_apply_credit(self, sql_service):
        first = sql_service.reserve("DOC001", "PAT001", local(TUESDAY, 9)).appointment
        second = sql_service.reserve("DOC001", "PAT001", local(TUESDAY, 9, 50)).appointment

        sql_service.mark_paid(first.id, "cash")
        credit = sql_service.cancel(first.id).payment
        assert credit.status == PaymentStatus.CREDIT
        assert sql_service.get_patient_credits("PAT001").total == Decimal("100000")

        application = sql_service.apply_credit(credit.id, second.id)
        assert application.credit.status == PaymentStatus.REFUNDED
        assert application.target.source_appointment_id == first.id
        assert sql_service.get_appointment(first.id).status == AppointmentStatus.CANCELLED

    def test_reminder_flow_against_sqlite(self, sql_service, clock):
        appointment = sql_service.reserve("DOC001", "PAT001", local(TUESDAY, 9)).appointment
        clock.advance(hours=2)
        reminder = sql_service.generate_reminders()[0]

        result = sql_service.process_reminder_response(reminder.token, "cancel")
        assert result.appointment.status == AppointmentStatus.CANCELLED
        assert result.reminder.response_action == "cancel"
        assert sql_service.get_appointment(appointment.id).status == AppointmentStatus.CANCELLED


@pytest.fixture
def file_sessions(tmp_path):
    """Sessions on one file-backed database, one per worker thread"""
    engine = build_engine(f"sqlite:///{tmp_path / 'clinic.db'}", 10)
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    with factory() as session:
        seed(session)
    yield factory
    engine.dispose()


def race(factory, config, clock, requests):
    barrier = threading.Barrier(len(requests))

    def attempt(request):
        patient_id, start = request
        with factory() as session:
            service = SchedulingService(SqlAlchemyRepository(session), config, clock=clock)
            barrier.wait()
            try:
                return service.reserve("DOC001", patient_id, start)
            except SlotConflictError as e:
                return e

    with ThreadPoolExecutor(max_workers=len(requests)) as pool:
        return list(pool.map(attempt, requests))


class TestConcurrentReservations:

    def test_first_bookings_of_a_doctor_do_not_conflict(self, file_sessions, config, clock):
        starts = [local(TUESDAY, 9), local(TUESDAY, 9, 50), local(TUESDAY, 10, 40), local(TUESDAY, 11, 30)]

        results = race(file_sessions, config, clock, [(f"PAT{i:03d}", start) for i, start in enumerate(starts)])

        assert not [r for r in results if isinstance(r, SlotConflictError)]
        with file_sessions() as session:
            assert session.query(Appointment).count() == 4
            assert session.query(Payment).count() == 4
            assert session.get(ScheduleVersion, "doctor:DOC001").version == 4
            assert session.get(ScheduleVersion, "room:1").version == 4

    def test_one_winner_for_an_identical_start(self, file_sessions, config, clock):
        results = race(file_sessions, config, clock, [(f"PAT{i:03d}", local(TUESDAY, 9)) for i in range(6)])

        winners = [r for r in results if not isinstance(r, SlotConflictError)]
        assert len(winners) == 1
        with file_sessions() as session:
            assert session.query(Appointment).count() == 1


class TestStorageErrors:

    def test_operational_errors_become_storage_timeouts(self, repo):
        error = OperationalError("SELECT 1", {}, Exception("database is locked"))
        with patch.object(repo.db, "get", side_effect=error):
            with pytest.raises(StorageTimeoutError) as exc_info:
                repo.get_appointment(1)
        assert exc_info.value.status_code == 503


class TestEngineTimeouts:

    def test_postgres_gets_lock_and_statement_timeouts(self):
        args = driver_timeout_args("postgresql://clinic@db/clinic", 2.5)

        assert args["connect_timeout"] == 3
        assert "-c lock_timeout=2500" in args["options"]
        assert "-c statement_timeout=2500" in args["options"]

    def test_postgres_engine_receives_driver_and_pool_timeouts(self):
        with patch("clinic_scheduler.config.database.create_engine") as create_engine:
            build_engine("postgresql://clinic@db/clinic", 5)

        kwargs = create_engine.call_args.kwargs
        assert kwargs["pool_timeout"] == 5
        assert kwargs["connect_args"]["options"] == "-c lock_timeout=5000 -c statement_timeout=5000"

    def test_sqlite_busy_timeout(self):
        assert driver_timeout_args("sqlite:///clinic.db", 5) == {"check_same_thread": False, "timeout": 5}

    def test_statement_timeouts_surface_as_storage_timeouts(self, repo):
        cancelled = OperationalError("UPDATE schedule_versions", {}, Exception("canceling statement due to lock timeout"))
        with patch.object(repo.db, "execute", side_effect=cancelled):
            with pytest.raises(StorageTimeoutError):
                repo.find_overlapping("DOC001", local(TUESDAY, 9), local(TUESDAY, 10))
