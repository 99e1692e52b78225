from unittest.mock import MagicMock, patch

import pytest
import redis

from clinic_scheduler.config.redis_config import RedisConfig
from clinic_scheduler.schemas.appointment import AvailableSlots
from clinic_scheduler.services.availability_cache import AvailabilityCache
from clinic_scheduler.services.scheduling_service import SchedulingService

from conftest import TUESDAY, local


@pytest.fixture
def store():
    return {}


@pytest.fixture
def redis_client(store):
    """Mock client backed by a dict for get, setex, mget and incr"""
    client = MagicMock()
    client.get.side_effect = store.get
    client.setex.side_effect = lambda key, ttl, value: store.__setitem__(key, value)
    client.mget.side_effect = lambda keys: [store.get(key) for key in keys]
    client.incr.side_effect = lambda key: store.__setitem__(key, int(store.get(key) or 0) + 1)
    return client


@pytest.fixture
def cache(redis_client):
    return AvailabilityCache(redis_client, ttl=60)


def sample_slots(**overrides):
    values = dict(
        doctor_id="DOC001",
        date=TUESDAY,
        timezone="America/Bogota",
        slot_minutes=50,
        is_virtual=False,
        total_slots=4,
        available_slots=[local(TUESDAY, 9), local(TUESDAY, 9, 50)],
    )
    values.update(overrides)
    return AvailableSlots(**values)


class TestAvailabilityCache:

    def test_miss_returns_none(self, cache, redis_client):
        assert cache.get("DOC001", TUESDAY, False, "0.0") is None
        redis_client.get.assert_called_once_with("availability:DOC001:in_person:any:2030-01-08:0.0")

    def test_set_uses_ttl(self, cache, redis_client):
        cache.set(sample_slots(is_virtual=True), "3")

        key, ttl, payload = redis_client.setex.call_args.args
        assert key == "availability:DOC001:virtual:any:2030-01-08:3"
        assert ttl == 60
        assert AvailableSlots.model_validate_json(payload) == sample_slots(is_virtual=True)

    def test_hit_is_decoded(self, cache):
        cache.set(sample_slots(), "0.0")

        assert cache.get("DOC001", TUESDAY, False, "0.0") == sample_slots()

    def test_fresh_generations_start_at_zero(self, cache):
        assert cache.generation("DOC001", is_virtual=True) == "0"
        assert cache.generation("DOC001", is_virtual=False) == "0.0"

    def test_redis_errors_read_as_miss(self, cache, redis_client):
        redis_client.get.side_effect = redis.ConnectionError("down")
        redis_client.setex.side_effect = redis.ConnectionError("down")
        redis_client.mget.side_effect = redis.ConnectionError("down")

        assert cache.generation("DOC001", False) is None
        assert cache.get("DOC001", TUESDAY, False, "0.0") is None
        assert cache.set(sample_slots(), "0.0") is False

    def test_virtual_booking_bumps_the_doctor_only(self, cache, store):
        assert cache.invalidate("DOC001") is True

        assert store == {"availability-generation:DOC001": 1}
        assert cache.generation("DOC002", is_virtual=False) == "0.0"

    def test_in_person_booking_retires_every_room_view(self, cache):
        cache.set(sample_slots(doctor_id="DOC002"), cache.generation("DOC002", False))

        cache.invalidate("DOC001", in_person=True)

        assert cache.generation("DOC001", False) == "1.1"
        assert cache.generation("DOC002", True) == "0"
        assert cache.get("DOC002", TUESDAY, False, cache.generation("DOC002", False)) is None

    def test_invalidation_failure_is_reported(self, cache, redis_client):
        redis_client.incr.side_effect = redis.ConnectionError("down")

        assert cache.invalidate("DOC001", in_person=True) is False


class TestCachedService:

    def test_cached_listing_skips_the_repository(self, repository, config, clock, cache):
        cache.set(sample_slots(), "0.0")
        repository.find_overlapping = MagicMock()
        service = SchedulingService(repository, config, clock=clock, cache=cache)

        result = service.list_available_slots("DOC001", TUESDAY)

        assert result.available_slots == sample_slots().available_slots
        repository.find_overlapping.assert_not_called()

    def test_miss_populates_cache(self, repository, config, clock, cache, redis_client):
        service = SchedulingService(repository, config, clock=clock, cache=cache)
        service.list_available_slots("DOC001", TUESDAY)

        assert redis_client.setex.call_args.args[0] == "availability:DOC001:in_person:any:2030-01-08:0.0"

    def test_booking_hides_the_slot_from_the_next_listing(self, repository, config, clock, cache):
        service = SchedulingService(repository, config, clock=clock, cache=cache)
        assert local(TUESDAY, 9) in service.list_available_slots("DOC001", TUESDAY).available_slots

        service.reserve("DOC001", "PAT001", local(TUESDAY, 9))

        assert local(TUESDAY, 9) not in service.list_available_slots("DOC001", TUESDAY).available_slots

    def test_listing_written_after_a_booking_is_not_served(self, repository, config, clock, cache):
        service = SchedulingService(repository, config, clock=clock, cache=cache)
        write = cache.set

        def book_then_write(slots, generation, room_id=None):
            service.reserve("DOC001", "PAT001", local(TUESDAY, 9))
            return write(slots, generation, room_id=room_id)

        with patch.object(cache, "set", side_effect=book_then_write):
            stale = service.list_available_slots("DOC001", TUESDAY)

        assert local(TUESDAY, 9) in stale.available_slots
        assert local(TUESDAY, 9) not in service.list_available_slots("DOC001", TUESDAY).available_slots

    def test_reserve_and_cancel_invalidate(self, repository, config, clock):
        cache = MagicMock()
        cache.generation.return_value = None
        service = SchedulingService(repository, config, clock=clock, cache=cache)

        reservation = service.reserve("DOC001", "PAT001", local(TUESDAY, 9))
        service.cancel(reservation.appointment.id)

        assert cache.invalidate.call_count == 2
        cache.invalidate.assert_called_with("DOC001", in_person=True)

    def test_redis_outage_does_not_block_booking(self, repository, config, clock, cache, redis_client):
        redis_client.incr.side_effect = redis.ConnectionError("down")
        service = SchedulingService(repository, config, clock=clock, cache=cache)

        reservation = service.reserve("DOC001", "PAT001", local(TUESDAY, 9))
        assert reservation.appointment.id is not None

    def test_unreadable_generation_bypasses_the_cache(self, repository, config, clock, cache, redis_client):
        redis_client.mget.side_effect = redis.ConnectionError("down")
        service = SchedulingService(repository, config, clock=clock, cache=cache)

        assert service.list_available_slots("DOC001", TUESDAY).total_slots == 4
        redis_client.get.assert_not_called()
        redis_client.setex.assert_not_called()


class TestRedisConfig:

    def test_unreachable_redis_reports_failure(self):
        config = RedisConfig()
        config._client = MagicMock()
        config._client.ping.side_effect = redis.ConnectionError("refused")

        assert config.test_connection() is False
        assert config.reachable is False

    def test_close_releases_the_client(self):
        config = RedisConfig()
        client = config.get_client()

        config.close()
        assert config._client is None
        assert config.get_client() is not client
