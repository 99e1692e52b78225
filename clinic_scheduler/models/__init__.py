from clinic_scheduler.models.doctor import Doctor, DoctorStatus
from clinic_scheduler.models.leave import DoctorLeave, LeaveType
from clinic_scheduler.models.room import Room, RoomType
from clinic_scheduler.models.appointment import Appointment, AppointmentStatus, ScheduleVersion
from clinic_scheduler.models.payment import Payment, PaymentStatus
from clinic_scheduler.models.reminder import Reminder, ReminderStatus
from clinic_scheduler.models.survey import Survey, SurveyResponse, SurveyStatus

__all__ = [
    "Doctor", "DoctorStatus", "DoctorLeave", "LeaveType", "Room", "RoomType",
    "Appointment", "AppointmentStatus", "ScheduleVersion", "Payment", "PaymentStatus",
    "Reminder", "ReminderStatus", "Survey", "SurveyResponse", "SurveyStatus",
]
