from pydantic import BaseModel
from typing import Optional
from clinic_scheduler.models.room import RoomType

class RoomRecord(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    room_type: RoomType
    capacity: Optional[int] = None
    is_active: bool = True

    class Config:
        from_attributes = True
