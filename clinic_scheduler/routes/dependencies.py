from typing import Optional
from fastapi import Depends
from sqlalchemy.orm import Session
from clinic_scheduler.config.database import get_db
from clinic_scheduler.config.redis_config import redis_config
from clinic_scheduler.config.settings import get_settings
from clinic_scheduler.repositories.sqlalchemy_repository import SqlAlchemyRepository
from clinic_scheduler.services.availability_cache import AvailabilityCache
from clinic_scheduler.services.scheduling_service import SchedulingService
from clinic_scheduler.utils.clock import SystemClock


def get_availability_cache() -> Optional[AvailabilityCache]:
    """Redis-backed availability cache, or None when disabled or unreachable at startup"""
    if not redis_config.enabled or redis_config.reachable is False:
        return None
    return AvailabilityCache(redis_config.get_client(), ttl=get_settings().availability_cache_ttl)


def get_scheduling_service(
    db: Session = Depends(get_db),
    cache: Optional[AvailabilityCache] = Depends(get_availability_cache)
) -> SchedulingService:
    return SchedulingService(
        SqlAlchemyRepository(db),
        get_settings().scheduling_config(),
        clock=SystemClock(),
        cache=cache
    )
