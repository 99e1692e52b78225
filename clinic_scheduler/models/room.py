from sqlalchemy import Column, Integer, String, Boolean, Enum
from clinic_scheduler.config.database import Base
import enum

class RoomType(enum.Enum):
    CONSULTATION = "consultation"
    EVENT_HALL = "event_hall"
    VIRTUAL = "virtual"

class Room(Base):
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(String(300))
    room_type = Column(
        Enum(RoomType, name="roomtype", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=RoomType.CONSULTATION
    )
    capacity = Column(Integer)
    is_active = Column(Boolean, nullable=False, default=True)
