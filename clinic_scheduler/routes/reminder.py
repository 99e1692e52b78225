from fastapi import APIRouter, Depends
from clinic_scheduler.schemas.reminder import ReminderReply
from clinic_scheduler.services.scheduling_service import SchedulingService
from clinic_scheduler.routes.dependencies import get_scheduling_service
from clinic_scheduler.utils.response import APIResponse

router = APIRouter(prefix="/reminders", tags=["Reminders"])

@router.post("/generate", summary="Create reminders for upcoming appointments")
def generate_reminders(service: SchedulingService = Depends(get_scheduling_service)):
    """Called by the scheduler cron; safe to run repeatedly"""
    reminders = service.generate_reminders()
    return APIResponse.success(reminders, message=f"{len(reminders)} reminders created")

@router.post(
    "/respond",
    summary="Answer a reminder",
    responses={
        200: {"description": "Appointment confirmed or cancelled"},
        404: {"description": "Unknown token"},
        409: {"description": "Token already used"},
        422: {"description": "Too late to cancel"}
    }
)
def respond_to_reminder(reply: ReminderReply, service: SchedulingService = Depends(get_scheduling_service)):
    """Patient answer with the reminder token: confirm or cancel"""
    result = service.process_reminder_response(reply.token, reply.action)
    return APIResponse.success(result, message=f"Appointment {result.appointment.status.value}")
