from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from clinic_scheduler.config.database import get_db
from clinic_scheduler.schemas.doctor import DoctorCreate, DoctorUpdate, DoctorResponse
from clinic_scheduler.schemas.leave import LeaveCreate, LeaveRecord
from clinic_scheduler.services.doctor_service import DoctorService
from clinic_scheduler.services.scheduling_service import SchedulingService
from clinic_scheduler.routes.dependencies import get_scheduling_service
from clinic_scheduler.utils.response import APIResponse

router = APIRouter(prefix="/doctors", tags=["Doctors"])

@router.post(
    "/",
    status_code=status.HTTP_201_CREATED,
    summary="Create a new doctor",
    description="Register a new doctor with shift timings, slot length and fees",
    response_description="Returns the created doctor details",
    responses={
        201: {
            "description": "Doctor created successfully",
            "content": {
                "application/json": {
                    "example": {
                        "success": True,
                        "message": "Doctor created",
                        "data": {
                            "id": 1,
                            "name": "Dr. Sarah Johnson",
                            "doctor_id": "DOC001",
                            "timezone": "America/Bogota",
                            "shift_timings": {
                                "monday": ["09:00-12:00", "14:00-17:00"],
                                "tuesday": ["09:00-12:00"]
                            },
                            "consultation_duration_min": 50,
                            "consultation_fee": "150000.00",
                            "consultation_fee_virtual": "120000.00"
                        },
                        "error": None
                    }
                }
            }
        },
        409: {"description": "Doctor ID already exists"}
    }
)
def create_doctor(doctor: DoctorCreate, db: Session = Depends(get_db)):
    """
    Create a new doctor with the following information:

    - **name**: Full name of the doctor
    - **doctor_id**: Unique identifier for the doctor
    - **shift_timings**: JSON object with day-wise shift timings
    - **consultation_duration_min**: slot length, defaults to the clinic setting
    - **consultation_fee** / **consultation_fee_virtual**: optional fees per modality
    """
    created = DoctorService.create_doctor(db, doctor)
    return APIResponse.created(DoctorResponse.model_validate(created), message="Doctor created")

@router.get("/{doctor_id}", summary="Get doctor by ID", responses={404: {"description": "Doctor not found"}})
def get_doctor(doctor_id: str, db: Session = Depends(get_db)):
    """Get specific doctor by their unique doctor_id"""
    return APIResponse.success(DoctorResponse.model_validate(DoctorService.get_doctor_by_id(db, doctor_id)))

@router.get("/", summary="Get all doctors")
def get_all_doctors(
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(100, ge=1, le=100, description="Maximum number of records to return"),
    db: Session = Depends(get_db)
):
    """Get all doctors with pagination"""
    doctors = DoctorService.get_all_doctors(db, skip, limit)
    return APIResponse.success([DoctorResponse.model_validate(d) for d in doctors])

@router.put("/{doctor_id}", summary="Update doctor details", responses={404: {"description": "Doctor not found"}})
def update_doctor(doctor_id: str, doctor: DoctorUpdate, db: Session = Depends(get_db)):
    """Update doctor details. Only provided fields will be updated."""
    updated = DoctorService.update_doctor(db, doctor_id, doctor)
    return APIResponse.success(DoctorResponse.model_validate(updated), message="Doctor updated")

@router.get("/{doctor_id}/leaves", summary="List doctor leaves")
def get_leaves(doctor_id: str, db: Session = Depends(get_db)):
    leaves = DoctorService.get_leaves(db, doctor_id)
    return APIResponse.success([LeaveRecord.model_validate(leave) for leave in leaves])

@router.post(
    "/{doctor_id}/leaves",
    status_code=status.HTTP_201_CREATED,
    summary="Doctor Leave",
    description="Register a full-day or partial leave; open appointments inside it are cancelled",
    responses={404: {"description": "Doctor not found"}}
)
def add_leave(
    doctor_id: str,
    leave: LeaveCreate,
    cancel_affected: bool = Query(True, description="Cancel open appointments that fall inside the leave"),
    db: Session = Depends(get_db),
    service: SchedulingService = Depends(get_scheduling_service)
):
    """Mark doctor as on leave and cancel the appointments it covers"""
    leave_entry = DoctorService.add_leave(db, doctor_id, leave)

    cancelled = []
    if cancel_affected:
        affected = DoctorService.appointments_during_leave(db, leave_entry, service.config.default_timezone)
        cancelled = service.cancel_for_leave([appointment.id for appointment in affected])

    return APIResponse.created(
        {"leave": LeaveRecord.model_validate(leave_entry), "cancelled_appointments": cancelled},
        message=f"Leave registered, {len(cancelled)} appointments cancelled"
    )
