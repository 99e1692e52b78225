from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from clinic_scheduler.models.survey import SurveyStatus

class NewSurvey(BaseModel):
    appointment_id: int
    doctor_id: str
    patient_id: str
    token: str
    scheduled_for: datetime

class SurveyRecord(BaseModel):
    id: int
    appointment_id: int
    doctor_id: str
    patient_id: str
    token: str
    status: SurveyStatus
    scheduled_for: datetime
    sent_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class SurveySubmission(BaseModel):
    token: str
    doctor_rating: int
    punctuality_rating: int
    clarity_rating: int
    treatment_rating: int
    comment: Optional[str] = Field(None, max_length=1000)

class SurveyResponseRecord(BaseModel):
    id: int
    survey_id: int
    doctor_rating: int
    punctuality_rating: int
    clarity_rating: int
    treatment_rating: int
    comment: Optional[str] = None
    average_score: float
    has_admin_alert: bool

    class Config:
        from_attributes = True
