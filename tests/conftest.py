"""
Pytest configuration for the scheduling engine tests
"""

import os

# Settings are read at import time, so the environment is set first
os.environ["PLATFORM_DEFAULT_FEE"] = "150000"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AVAILABILITY_CACHE_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "warning"

from datetime import date, datetime, time, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from clinic_scheduler.config.settings import SchedulingConfig
from clinic_scheduler.models.doctor import DoctorStatus
from clinic_scheduler.models.room import RoomType
from clinic_scheduler.repositories.memory import InMemoryRepository
from clinic_scheduler.schemas.doctor import DoctorProfile
from clinic_scheduler.schemas.room import RoomRecord
from clinic_scheduler.services.scheduling_service import SchedulingService
from clinic_scheduler.utils.clock import FixedClock

BOGOTA = ZoneInfo("America/Bogota")

# Monday 2030-01-07, 07:00 in Bogota
NOW = datetime(2030, 1, 7, 12, 0, tzinfo=timezone.utc)
MONDAY = date(2030, 1, 7)
TUESDAY = date(2030, 1, 8)
SUNDAY = date(2030, 1, 13)

SHIFTS = {
    "monday": ["08:00-12:00", "14:00-20:00"],
    "tuesday": ["09:00-13:00"],
}


def local(day: date, hour: int, minute: int = 0) -> datetime:
    """Aware datetime for a wall-clock time in Bogota"""
    return datetime.combine(day, time(hour, minute), tzinfo=BOGOTA)


def make_doctor(doctor_id: str = "DOC001", **overrides) -> DoctorProfile:
    values = dict(
        doctor_id=doctor_id,
        name="Dr. Sarah Johnson",
        timezone="America/Bogota",
        shift_timings=SHIFTS,
        consultation_duration_min=50,
        consultation_fee=Decimal("100000"),
        consultation_fee_virtual=None,
        status=DoctorStatus.ACTIVE,
    )
    values.update(overrides)
    return DoctorProfile(**values)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def config():
    return SchedulingConfig(platform_default_fee=Decimal("150000"))


@pytest.fixture
def repository():
    repo = InMemoryRepository()
    repo.add_doctor(make_doctor())
    repo.add_room(RoomRecord(id=1, name="Consultorio 1", room_type=RoomType.CONSULTATION, capacity=1))
    repo.add_room(RoomRecord(id=2, name="Consultorio 2", room_type=RoomType.CONSULTATION, capacity=1))
    return repo


@pytest.fixture
def service(repository, config, clock):
    return SchedulingService(repository, config, clock=clock)
