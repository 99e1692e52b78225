from pydantic import BaseModel, Field, model_validator
from datetime import date, datetime
from typing import List, Optional
from clinic_scheduler.models.appointment import AppointmentStatus
from clinic_scheduler.schemas.payment import PaymentRecord

class NewAppointment(BaseModel):
    doctor_id: str
    patient_id: str
    start_time: datetime
    end_time: datetime
    is_virtual: bool = False
    room_id: Optional[int] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None

    @model_validator(mode="after")
    def check_interval(self):
        if self.start_time.tzinfo is None or self.end_time.tzinfo is None:
            raise ValueError("appointment times must be timezone-aware")
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

class AppointmentRecord(BaseModel):
    id: int
    doctor_id: str
    patient_id: str
    start_time: datetime
    end_time: datetime
    is_virtual: bool
    room_id: Optional[int] = None
    status: AppointmentStatus
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    created_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class AppointmentCreate(BaseModel):
    doctor_id: str = Field(..., min_length=1, max_length=50)
    patient_id: str = Field(..., min_length=1, max_length=50)
    start_time: datetime = Field(..., description="Slot start, ISO 8601")
    is_virtual: bool = False
    room_id: Optional[int] = None
    notes: Optional[str] = Field(None, max_length=500)
    created_by: Optional[str] = Field(None, max_length=50)

class AppointmentCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
    cancelled_by: Optional[str] = Field(None, max_length=50)
    staff_override: bool = Field(False, description="Skip the minimum notice rule")

class Reservation(BaseModel):
    appointment: AppointmentRecord
    payment: PaymentRecord

class CancellationResult(BaseModel):
    appointment: AppointmentRecord
    payment: PaymentRecord
    credit_generated: bool = False

class AvailableSlots(BaseModel):
    doctor_id: str
    date: date
    timezone: str
    slot_minutes: int
    is_virtual: bool
    total_slots: int
    available_slots: List[datetime]
