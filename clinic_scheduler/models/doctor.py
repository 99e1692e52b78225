from sqlalchemy import Column, Integer, String, JSON, Numeric, Enum as SQLEnum
from clinic_scheduler.config.database import Base
import enum

class DoctorStatus(enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    DELETED = "DELETED"

class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    doctor_id = Column(String(50), unique=True, nullable=False, index=True)
    specialization = Column(String(100), default="General Medicine")
    timezone = Column(String(64), nullable=True)
    # {"monday": ["09:00-12:00", "14:00-17:00"], ...}
    shift_timings = Column(JSON, nullable=False, default=dict)
    consultation_duration_min = Column(Integer, nullable=True)
    slot_minutes_by_day = Column(JSON, nullable=True)
    consultation_fee = Column(Numeric(12, 2), nullable=True)
    consultation_fee_virtual = Column(Numeric(12, 2), nullable=True)
    status = Column(SQLEnum(DoctorStatus), default=DoctorStatus.ACTIVE)
