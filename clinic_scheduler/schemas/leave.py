from pydantic import BaseModel, Field, model_validator
from typing import Optional
from datetime import date, time
from clinic_scheduler.models.leave import LeaveType

class LeaveBase(BaseModel):
    type: LeaveType = Field(..., description="full_day or partial")
    start_date: date
    end_date: Optional[date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    reason: Optional[str] = Field(None, max_length=300)

class LeaveCreate(LeaveBase):
    @model_validator(mode="after")
    def check_window(self):
        if self.end_date is None:
            self.end_date = self.start_date
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        if self.type == LeaveType.PARTIAL:
            if self.start_time is None or self.end_time is None:
                raise ValueError("partial leave needs start_time and end_time")
            if self.end_time <= self.start_time:
                raise ValueError("end_time must be after start_time")
        return self

class LeaveRecord(LeaveBase):
    id: int
    doctor_id: str
    end_date: date

    class Config:
        from_attributes = True
