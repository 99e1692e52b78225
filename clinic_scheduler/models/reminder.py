from sqlalchemy import Column, Integer, String, Text, ForeignKey, Enum
from clinic_scheduler.models.types import UTCDateTime, utcnow
from clinic_scheduler.config.database import Base
import enum

class ReminderStatus(enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    RESPONDED = "responded"

class Reminder(Base):
    __tablename__ = "reminders"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    token = Column(String(64), unique=True, nullable=False, index=True)
    channel = Column(String(20), nullable=False, default="whatsapp")
    reminder_type = Column(String(30), nullable=False, default="appointment_24h")
    scheduled_for = Column(UTCDateTime, nullable=False, index=True)
    status = Column(
        Enum(ReminderStatus, name="reminderstatus", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ReminderStatus.PENDING
    )
    message_content = Column(Text)
    sent_at = Column(UTCDateTime)
    response_action = Column(String(20))
    response_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)
