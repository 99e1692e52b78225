from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import Dict, List, Optional
from clinic_scheduler.models.doctor import DoctorStatus
from clinic_scheduler.utils.validators import normalize_weekday, parse_shift_window, validate_timezone


def _check_shift_timings(value: Optional[Dict[str, List[str]]]):
    if value is None:
        return value
    checked = {}
    for day, windows in value.items():
        for window in windows:
            parse_shift_window(window)
        checked[normalize_weekday(day)] = windows
    return checked


def _check_day_overrides(value: Optional[Dict[str, int]]):
    if value is None:
        return value
    checked = {}
    for day, minutes in value.items():
        if minutes <= 0:
            raise ValueError(f"Slot length for {day} must be positive")
        checked[normalize_weekday(day)] = minutes
    return checked


class DoctorBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    doctor_id: str = Field(..., min_length=1, max_length=50)
    specialization: Optional[str] = "General Medicine"
    timezone: Optional[str] = Field(None, description="IANA timezone, e.g. America/Bogota")
    shift_timings: Dict[str, List[str]] = Field(..., description="Day-wise shift timings")
    consultation_duration_min: Optional[int] = Field(None, gt=0)
    slot_minutes_by_day: Optional[Dict[str, int]] = None
    consultation_fee: Optional[Decimal] = Field(None, ge=0)
    consultation_fee_virtual: Optional[Decimal] = Field(None, ge=0)

    @field_validator("shift_timings")
    @classmethod
    def check_shift_timings(cls, value):
        return _check_shift_timings(value)

    @field_validator("slot_minutes_by_day")
    @classmethod
    def check_day_overrides(cls, value):
        return _check_day_overrides(value)

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, value):
        return validate_timezone(value) if value else value

class DoctorCreate(DoctorBase):
    status: DoctorStatus = DoctorStatus.ACTIVE

class DoctorUpdate(BaseModel):
    name: Optional[str] = None
    timezone: Optional[str] = None
    shift_timings: Optional[Dict[str, List[str]]] = None
    consultation_duration_min: Optional[int] = Field(None, gt=0)
    slot_minutes_by_day: Optional[Dict[str, int]] = None
    consultation_fee: Optional[Decimal] = Field(None, ge=0)
    consultation_fee_virtual: Optional[Decimal] = Field(None, ge=0)
    status: Optional[DoctorStatus] = None

    @field_validator("shift_timings")
    @classmethod
    def check_shift_timings(cls, value):
        return _check_shift_timings(value)

    @field_validator("slot_minutes_by_day")
    @classmethod
    def check_day_overrides(cls, value):
        return _check_day_overrides(value)

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, value):
        return validate_timezone(value) if value else value

class DoctorProfile(BaseModel):
    """Schedule and fee view of a doctor as the engine sees it"""
    doctor_id: str
    name: str
    timezone: Optional[str] = None
    shift_timings: Dict[str, List[str]] = Field(default_factory=dict)
    consultation_duration_min: Optional[int] = None
    slot_minutes_by_day: Optional[Dict[str, int]] = None
    consultation_fee: Optional[Decimal] = None
    consultation_fee_virtual: Optional[Decimal] = None
    status: DoctorStatus = DoctorStatus.ACTIVE

    class Config:
        from_attributes = True

class DoctorResponse(DoctorProfile):
    id: int
    specialization: Optional[str] = None
