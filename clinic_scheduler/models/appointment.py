from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, Enum, Index, text
from clinic_scheduler.models.types import UTCDateTime, utcnow
import enum
from clinic_scheduler.config.database import Base

class AppointmentStatus(enum.Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

# Statuses that no longer hold a doctor or room interval
INACTIVE_STATUSES = (AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW)
OPEN_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)

def _enum_values(enum_cls):
    return [m.value for m in enum_cls]

class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    doctor_id = Column(String(50), ForeignKey("doctors.doctor_id"), nullable=False, index=True)
    patient_id = Column(String(50), nullable=False, index=True)
    start_time = Column(UTCDateTime, nullable=False, index=True)
    end_time = Column(UTCDateTime, nullable=False)
    is_virtual = Column(Boolean, nullable=False, default=False)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=True, index=True)
    status = Column(
        Enum(AppointmentStatus, name="appointmentstatus", values_callable=_enum_values),
        nullable=False,
        default=AppointmentStatus.SCHEDULED
    )
    cancellation_reason = Column(String(500))
    cancelled_at = Column(UTCDateTime)
    cancelled_by = Column(String(50))
    created_by = Column(String(50))
    notes = Column(String(500))
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        # Second line of defence behind the schedule version swap: two active
        # rows can never share a doctor and start instant.
        Index(
            "uq_appointments_active_doctor_start",
            "doctor_id",
            "start_time",
            unique=True,
            sqlite_where=text("status NOT IN ('cancelled', 'no_show')"),
            postgresql_where=text("status NOT IN ('cancelled', 'no_show')"),
        ),
    )

    def __repr__(self):
        return f"<Appointment {self.id} {self.doctor_id} {self.start_time} {self.status}>"


class ScheduleVersion(Base):
    """Compare-and-swap row serialising reservations per doctor or room"""

    __tablename__ = "schedule_versions"

    resource_key = Column(String(80), primary_key=True)
    version = Column(Integer, nullable=False, default=0)
