from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from clinic_scheduler.models.payment import PaymentStatus

class FeeConfig(BaseModel):
    consultation_fee: Optional[Decimal] = None
    consultation_fee_virtual: Optional[Decimal] = None

    class Config:
        from_attributes = True

class ResolvedFee(BaseModel):
    amount: Decimal = Field(..., ge=0)
    currency: str
    source: str

class NewPayment(BaseModel):
    amount: Decimal = Field(..., ge=0)
    currency: str
    status: PaymentStatus = PaymentStatus.PENDING
    fee_source: Optional[str] = None
    notes: Optional[str] = None

class PaymentRecord(BaseModel):
    id: int
    appointment_id: int
    amount: Decimal
    currency: str
    status: PaymentStatus
    payment_method: Optional[str] = None
    paid_at: Optional[datetime] = None
    paid_by: Optional[str] = None
    notes: Optional[str] = None
    source_appointment_id: Optional[int] = None
    fee_source: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class MarkPaidRequest(BaseModel):
    payment_method: str = Field(..., min_length=1, max_length=50)
    amount: Optional[Decimal] = None
    notes: Optional[str] = Field(None, max_length=500)
    paid_by: Optional[str] = Field(None, max_length=50)

class ApplyCreditRequest(BaseModel):
    credit_payment_id: int
    target_appointment_id: int
    paid_by: Optional[str] = Field(None, max_length=50)

class CreditApplication(BaseModel):
    credit: PaymentRecord
    target: PaymentRecord
    remainder: Decimal = Decimal("0")

class PatientCredits(BaseModel):
    patient_id: str
    credits: List[PaymentRecord]
    total: Decimal
