from fastapi import APIRouter, Depends, Query
from clinic_scheduler.models.room import RoomType
from clinic_scheduler.services.scheduling_service import SchedulingService
from clinic_scheduler.routes.dependencies import get_scheduling_service
from clinic_scheduler.utils.response import APIResponse

router = APIRouter(prefix="/rooms", tags=["Rooms"])

@router.get("/", summary="List active rooms")
def list_rooms(
    room_type: RoomType = Query(RoomType.CONSULTATION),
    service: SchedulingService = Depends(get_scheduling_service)
):
    """Active rooms of a type; consultation rooms are the ones assigned to bookings"""
    return APIResponse.success(service.repository.list_active_rooms(room_type))
