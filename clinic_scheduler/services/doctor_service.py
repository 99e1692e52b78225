from sqlalchemy.orm import Session
from clinic_scheduler.models.doctor import Doctor, DoctorStatus
from clinic_scheduler.models.appointment import Appointment, OPEN_STATUSES
from clinic_scheduler.models.leave import DoctorLeave, LeaveType
from clinic_scheduler.schemas.doctor import DoctorCreate, DoctorUpdate
from clinic_scheduler.schemas.leave import LeaveCreate
from clinic_scheduler.exceptions import DoctorAlreadyExistsError, DoctorNotFoundError
from clinic_scheduler.repositories.base import intervals_overlap
from datetime import datetime, timedelta, timezone
from typing import List
from zoneinfo import ZoneInfo
import logging

logger = logging.getLogger("scheduling")

class DoctorService:
    """Doctor records and leave; the engine only reads what this writes"""

    @staticmethod
    def create_doctor(db: Session, doctor_data: DoctorCreate):
        existing_doctor = db.query(Doctor).filter(Doctor.doctor_id == doctor_data.doctor_id).first()
        if existing_doctor:
            raise DoctorAlreadyExistsError(
                f"Doctor with ID {doctor_data.doctor_id} already exists",
                details={"doctor_id": doctor_data.doctor_id}
            )

        db_doctor = Doctor(**doctor_data.model_dump())
        db.add(db_doctor)
        db.commit()
        db.refresh(db_doctor)
        logger.info(f"Doctor {db_doctor.doctor_id} created")
        return db_doctor

    @staticmethod
    def get_doctor_by_id(db: Session, doctor_id: str):
        doctor = db.query(Doctor).filter(
            Doctor.doctor_id == doctor_id,
            Doctor.status != DoctorStatus.DELETED
        ).first()
        if not doctor:
            raise DoctorNotFoundError(f"Doctor with ID {doctor_id} not found")
        return doctor

    @staticmethod
    def get_all_doctors(db: Session, skip: int = 0, limit: int = 100):
        return db.query(Doctor).filter(
            Doctor.status.in_([DoctorStatus.ACTIVE, DoctorStatus.INACTIVE])
        ).order_by(Doctor.id).offset(skip).limit(limit).all()

    @staticmethod
    def update_doctor(db: Session, doctor_id: str, doctor_data: DoctorUpdate):
        doctor = DoctorService.get_doctor_by_id(db, doctor_id)

        update_data = doctor_data.model_dump(exclude_unset=True)
        for key, value in update_data.items():
            setattr(doctor, key, value)

        db.commit()
        db.refresh(doctor)
        logger.info(f"Doctor {doctor_id} updated: {', '.join(update_data) or 'no changes'}")
        return doctor

    @staticmethod
    def add_leave(db: Session, doctor_id: str, leave_data: LeaveCreate) -> DoctorLeave:
        DoctorService.get_doctor_by_id(db, doctor_id)

        leave_entry = DoctorLeave(doctor_id=doctor_id, **leave_data.model_dump())
        db.add(leave_entry)
        db.commit()
        db.refresh(leave_entry)
        logger.info(f"Leave {leave_entry.id} added for doctor {doctor_id} from {leave_entry.start_date} to {leave_entry.end_date}")
        return leave_entry

    @staticmethod
    def get_leaves(db: Session, doctor_id: str) -> List[DoctorLeave]:
        DoctorService.get_doctor_by_id(db, doctor_id)
        return db.query(DoctorLeave).filter(
            DoctorLeave.doctor_id == doctor_id
        ).order_by(DoctorLeave.start_date).all()

    @staticmethod
    def appointments_during_leave(db: Session, leave: DoctorLeave, default_timezone: str) -> List[Appointment]:
        """Open appointments of the doctor that fall inside the leave"""
        doctor = DoctorService.get_doctor_by_id(db, leave.doctor_id)
        tz = ZoneInfo(doctor.timezone or default_timezone)

        blocked = []
        day = leave.start_date
        while day <= leave.end_date:
            if leave.type == LeaveType.FULL_DAY:
                start = datetime.combine(day, datetime.min.time(), tzinfo=tz)
                end = datetime.combine(day + timedelta(days=1), datetime.min.time(), tzinfo=tz)
            else:
                start = datetime.combine(day, leave.start_time, tzinfo=tz)
                end = datetime.combine(day, leave.end_time, tzinfo=tz)
            blocked.append((start.astimezone(timezone.utc), end.astimezone(timezone.utc)))
            day += timedelta(days=1)

        candidates = db.query(Appointment).filter(
            Appointment.doctor_id == leave.doctor_id,
            Appointment.status.in_(OPEN_STATUSES),
            Appointment.start_time < blocked[-1][1],
            Appointment.end_time > blocked[0][0]
        ).order_by(Appointment.start_time).all()

        return [
            apt for apt in candidates
            if any(intervals_overlap(apt.start_time, apt.end_time, start, end) for start, end in blocked)
        ]
