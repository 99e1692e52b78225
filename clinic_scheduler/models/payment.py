from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, Enum
from clinic_scheduler.models.types import UTCDateTime, utcnow
from clinic_scheduler.config.database import Base
import enum

class PaymentStatus(enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    CREDIT = "credit"

class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), unique=True, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(
        Enum(PaymentStatus, name="paymentstatus", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=PaymentStatus.PENDING
    )
    payment_method = Column(String(50))
    paid_at = Column(UTCDateTime)
    paid_by = Column(String(50))
    notes = Column(String(500))
    source_appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)
    fee_source = Column(String(30))
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)
