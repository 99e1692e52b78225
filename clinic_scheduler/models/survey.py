from sqlalchemy import Column, Integer, String, Text, Float, Boolean, ForeignKey, Enum
from clinic_scheduler.models.types import UTCDateTime, utcnow
from clinic_scheduler.config.database import Base
import enum

class SurveyStatus(enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    COMPLETED = "completed"

class Survey(Base):
    __tablename__ = "surveys"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), unique=True, nullable=False)
    doctor_id = Column(String(50), nullable=False, index=True)
    patient_id = Column(String(50), nullable=False)
    token = Column(String(64), unique=True, nullable=False, index=True)
    status = Column(
        Enum(SurveyStatus, name="surveystatus", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=SurveyStatus.PENDING
    )
    scheduled_for = Column(UTCDateTime, nullable=False)
    sent_at = Column(UTCDateTime)
    completed_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, default=utcnow)

class SurveyResponse(Base):
    __tablename__ = "survey_responses"

    id = Column(Integer, primary_key=True, index=True)
    survey_id = Column(Integer, ForeignKey("surveys.id"), unique=True, nullable=False)
    doctor_rating = Column(Integer, nullable=False)
    punctuality_rating = Column(Integer, nullable=False)
    clarity_rating = Column(Integer, nullable=False)
    treatment_rating = Column(Integer, nullable=False)
    comment = Column(Text)
    average_score = Column(Float, nullable=False)
    has_admin_alert = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, default=utcnow)
