from datetime import date
from typing import Optional
import logging

import redis

from clinic_scheduler.schemas.appointment import AvailableSlots

logger = logging.getLogger("cache")

KEY_PREFIX = "availability"
GENERATION_PREFIX = "availability-generation"
ROOMS_GENERATION = "rooms"


class AvailabilityCache:
    """
    Short-lived cache of computed availability.

    Entries are keyed by a generation stamp read before the listing is
    computed. Invalidation bumps the generation instead of deleting keys,
    so a listing computed before a booking committed but written after
    the bump lands under a stamp nobody reads again and expires with the
    TTL. Between a commit and its invalidation a reader can still see the
    previous listing; the TTL bounds that window and reservation
    re-checks the database, so the cache is best-effort only.

    Redis failures are logged and read as a miss.
    """

    def __init__(self, redis_client: redis.Redis, ttl: int = 60):
        self.redis_client = redis_client
        self.ttl = ttl

    @staticmethod
    def _generation_key(scope: str) -> str:
        return f"{GENERATION_PREFIX}:{scope}"

    def _get_key(self, doctor_id: str, day: date, is_virtual: bool, room_id: Optional[int], generation: str) -> str:
        modality = "virtual" if is_virtual else "in_person"
        return f"{KEY_PREFIX}:{doctor_id}:{modality}:{room_id or 'any'}:{day.isoformat()}:{generation}"

    def generation(self, doctor_id: str, is_virtual: bool) -> Optional[str]:
        """
        Stamp for the doctor's listings. In-person listings also depend on
        room bookings of every doctor, so they carry the rooms generation.
        None when Redis cannot be read, which disables the cache for the call.
        """
        scopes = [doctor_id] if is_virtual else [doctor_id, ROOMS_GENERATION]
        try:
            values = self.redis_client.mget([self._generation_key(scope) for scope in scopes])
        except redis.RedisError as e:
            logger.error(f"Availability generation read failed for doctor {doctor_id}: {e}")
            return None
        return ".".join(str(value or 0) for value in values)

    def get(
        self,
        doctor_id: str,
        day: date,
        is_virtual: bool,
        generation: str,
        room_id: Optional[int] = None
    ) -> Optional[AvailableSlots]:
        try:
            data = self.redis_client.get(self._get_key(doctor_id, day, is_virtual, room_id, generation))
        except redis.RedisError as e:
            logger.error(f"Availability cache read failed for doctor {doctor_id}: {e}")
            return None
        if not data:
            return None
        return AvailableSlots.model_validate_json(data)

    def set(self, slots: AvailableSlots, generation: str, room_id: Optional[int] = None) -> bool:
        key = self._get_key(slots.doctor_id, slots.date, slots.is_virtual, room_id, generation)
        try:
            self.redis_client.setex(key, self.ttl, slots.model_dump_json())
            logger.debug(f"Cached availability {key}")
            return True
        except redis.RedisError as e:
            logger.error(f"Availability cache write failed for {key}: {e}")
            return False

    def invalidate(self, doctor_id: str, in_person: bool = False) -> bool:
        """
        Retire the doctor's cached days. In-person bookings also change room
        availability, so every in-person listing is retired with them.
        """
        scopes = [doctor_id, ROOMS_GENERATION] if in_person else [doctor_id]
        try:
            for scope in scopes:
                self.redis_client.incr(self._generation_key(scope))
        except redis.RedisError as e:
            logger.error(f"Availability cache invalidation failed for doctor {doctor_id}: {e}")
            return False
        logger.debug(f"Invalidated availability of doctor {doctor_id}{' and rooms' if in_person else ''}")
        return True
