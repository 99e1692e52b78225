from fastapi import APIRouter, Depends, Query, status
from typing import Optional
from clinic_scheduler.schemas.appointment import AppointmentCancel, AppointmentCreate
from clinic_scheduler.services.scheduling_service import SchedulingService
from clinic_scheduler.routes.dependencies import get_scheduling_service
from clinic_scheduler.utils.response import APIResponse

router = APIRouter(prefix="/appointments", tags=["Appointments"])

@router.get(
    "/available-slots/{doctor_id}/{date}",
    summary="Get available slots",
    description="Free slot starts for a doctor on a date, filtered by doctor and room availability",
    responses={
        200: {"description": "Available slots computed"},
        400: {"description": "Date is malformed or in the past"},
        404: {"description": "Doctor or room not found"}
    }
)
def get_available_slots(
    doctor_id: str,
    date: str,
    is_virtual: bool = Query(False, description="Virtual consultations need no room"),
    room_id: Optional[int] = Query(None, description="Restrict in-person availability to one room"),
    service: SchedulingService = Depends(get_scheduling_service)
):
    """
    Get available time slots for a doctor on a specific date

    - **date**: YYYY-MM-DD, interpreted in the doctor's timezone
    - **is_virtual**: skip the room constraint
    - **room_id**: only consider this room for in-person bookings
    """
    slots = service.list_available_slots(doctor_id, date, is_virtual=is_virtual, room_id=room_id)
    return APIResponse.success(slots, message=f"{len(slots.available_slots)} slots available")

@router.post(
    "/",
    status_code=status.HTTP_201_CREATED,
    summary="Book an appointment",
    responses={
        201: {"description": "Appointment reserved with a pending payment"},
        409: {"description": "The slot was taken by a concurrent booking"},
        422: {"description": "No room free; details carry the virtual fallback fee"}
    }
)
def create_appointment(
    appointment: AppointmentCreate,
    service: SchedulingService = Depends(get_scheduling_service)
):
    """Reserve a slot. The appointment and its pending payment are created together."""
    reservation = service.reserve(
        appointment.doctor_id,
        appointment.patient_id,
        appointment.start_time,
        is_virtual=appointment.is_virtual,
        room_id=appointment.room_id,
        notes=appointment.notes,
        created_by=appointment.created_by
    )
    return APIResponse.created(reservation, message="Appointment booked")

@router.get("/{appointment_id}", summary="Get appointment by ID")
def get_appointment(appointment_id: int, service: SchedulingService = Depends(get_scheduling_service)):
    """Get appointment by ID"""
    return APIResponse.success(service.get_appointment(appointment_id))

@router.patch(
    "/{appointment_id}/cancel",
    summary="Cancel an appointment",
    responses={
        200: {"description": "Cancelled; a paid payment became credit"},
        409: {"description": "Already cancelled or no longer open"},
        422: {"description": "Inside the minimum cancellation notice"}
    }
)
def cancel_appointment(
    appointment_id: int,
    cancellation: Optional[AppointmentCancel] = None,
    service: SchedulingService = Depends(get_scheduling_service)
):
    """Cancel an appointment. Staff can skip the minimum notice with staff_override."""
    cancellation = cancellation or AppointmentCancel()
    result = service.cancel(
        appointment_id,
        reason=cancellation.reason,
        cancelled_by=cancellation.cancelled_by,
        enforce_notice=not cancellation.staff_override
    )
    message = "Appointment cancelled, credit generated" if result.credit_generated else "Appointment cancelled"
    return APIResponse.success(result, message=message)

@router.patch("/{appointment_id}/confirm", summary="Confirm an appointment")
def confirm_appointment(
    appointment_id: int,
    require_payment: bool = Query(True, description="Reject unless the payment is paid"),
    service: SchedulingService = Depends(get_scheduling_service)
):
    """Confirm a scheduled appointment"""
    return APIResponse.success(service.confirm(appointment_id, require_payment=require_payment), message="Appointment confirmed")

@router.patch("/{appointment_id}/complete", summary="Mark an appointment completed")
def complete_appointment(appointment_id: int, service: SchedulingService = Depends(get_scheduling_service)):
    """Mark an appointment as attended"""
    return APIResponse.success(service.complete(appointment_id), message="Appointment completed")

@router.patch("/{appointment_id}/no-show", summary="Mark an appointment as no-show")
def no_show_appointment(appointment_id: int, service: SchedulingService = Depends(get_scheduling_service)):
    """Mark an appointment as missed by the patient"""
    return APIResponse.success(service.mark_no_show(appointment_id), message="Appointment marked as no-show")
