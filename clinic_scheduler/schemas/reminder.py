from pydantic import BaseModel
from datetime import datetime
from typing import Optional
from clinic_scheduler.models.reminder import ReminderStatus
from clinic_scheduler.schemas.appointment import AppointmentRecord

class NewReminder(BaseModel):
    appointment_id: int
    token: str
    channel: str
    reminder_type: str = "appointment_24h"
    scheduled_for: datetime
    message_content: str

class ReminderRecord(BaseModel):
    id: int
    appointment_id: int
    token: str
    channel: str
    reminder_type: str
    scheduled_for: datetime
    status: ReminderStatus
    message_content: Optional[str] = None
    sent_at: Optional[datetime] = None
    response_action: Optional[str] = None
    response_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ReminderReply(BaseModel):
    token: str
    action: str

class ReminderReplyResult(BaseModel):
    reminder: ReminderRecord
    appointment: AppointmentRecord
    action: str
    credit_generated: bool = False

class DispatchSummary(BaseModel):
    sent: int = 0
    failed: int = 0
