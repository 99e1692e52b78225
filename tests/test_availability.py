from datetime import timedelta

import pytest

from clinic_scheduler.exceptions import InvalidDateError, RoomNotFoundError
from clinic_scheduler.models.appointment import AppointmentStatus
from clinic_scheduler.schemas.appointment import AppointmentRecord
from clinic_scheduler.services.availability_service import AvailabilityFilter

from conftest import MONDAY, NOW, TUESDAY, local, make_doctor


def booking(start, minutes=50, room_id=None, status=AppointmentStatus.SCHEDULED, appointment_id=1):
    return AppointmentRecord(
        id=appointment_id,
        doctor_id="DOC001",
        patient_id="PAT001",
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
        is_virtual=room_id is None,
        room_id=room_id,
        status=status
    )


SLOTS = [local(TUESDAY, 9), local(TUESDAY, 9, 50), local(TUESDAY, 10, 40), local(TUESDAY, 11, 30)]


class TestAvailabilityFilter:

    def test_overlapping_slots_are_removed(self):
        available = AvailabilityFilter.apply(SLOTS, 50, [booking(local(TUESDAY, 10))])

        assert available == [local(TUESDAY, 9), local(TUESDAY, 11, 30)]

    def test_touching_intervals_do_not_overlap(self):
        available = AvailabilityFilter.apply(SLOTS, 50, [booking(local(TUESDAY, 9, 50))])

        assert local(TUESDAY, 9) in available
        assert local(TUESDAY, 10, 40) in available
        assert local(TUESDAY, 9, 50) not in available

    def test_no_returned_slot_overlaps_an_appointment(self):
        appointments = [booking(local(TUESDAY, 9, 20), 30), booking(local(TUESDAY, 11, 45), 10)]
        available = AvailabilityFilter.apply(SLOTS, 50, appointments)

        for slot in available:
            end = slot + timedelta(minutes=50)
            assert all(not (slot < apt.end_time and apt.start_time < end) for apt in appointments)

    def test_slot_needs_one_free_room(self):
        rooms = {
            1: [booking(local(TUESDAY, 9), room_id=1)],
            2: [booking(local(TUESDAY, 9), room_id=2), booking(local(TUESDAY, 9, 50), room_id=2)],
        }
        available = AvailabilityFilter.apply(SLOTS, 50, [], room_bookings=rooms)

        assert local(TUESDAY, 9) not in available
        assert local(TUESDAY, 9, 50) in available

    def test_no_candidate_rooms_means_nothing_available(self):
        assert AvailabilityFilter.apply(SLOTS, 50, [], room_bookings={}) == []

    def test_slots_at_or_before_not_before_are_dropped(self):
        available = AvailabilityFilter.apply(SLOTS, 50, [], not_before=local(TUESDAY, 9, 50))

        assert available == [local(TUESDAY, 10, 40), local(TUESDAY, 11, 30)]


class TestListAvailableSlots:

    def test_lists_whole_grid_when_free(self, service):
        result = service.list_available_slots("DOC001", TUESDAY)

        assert result.total_slots == 4
        assert result.available_slots == SLOTS
        assert result.timezone == "America/Bogota"

    def test_accepts_iso_date_strings(self, service):
        assert service.list_available_slots("DOC001", "2030-01-08").total_slots == 4

    def test_malformed_date_is_rejected(self, service):
        with pytest.raises(InvalidDateError):
            service.list_available_slots("DOC001", "08/01/2030")

    def test_past_slots_of_today_are_hidden(self, service, clock):
        clock.set(local(MONDAY, 15))
        result = service.list_available_slots("DOC001", MONDAY)

        assert result.available_slots[0] == local(MONDAY, 15, 40)

    def test_reserved_slot_disappears(self, service):
        service.reserve("DOC001", "PAT001", local(TUESDAY, 9, 50))

        result = service.list_available_slots("DOC001", TUESDAY)
        assert local(TUESDAY, 9, 50) not in result.available_slots
        assert len(result.available_slots) == 3

    def test_cancelled_slot_comes_back(self, service):
        reservation = service.reserve("DOC001", "PAT001", local(TUESDAY, 9, 50))
        service.cancel(reservation.appointment.id)

        assert local(TUESDAY, 9, 50) in service.list_available_slots("DOC001", TUESDAY).available_slots

    def test_room_shortage_hides_in_person_slots_only(self, service, repository):
        repository.add_doctor(make_doctor("DOC002"))
        repository.add_doctor(make_doctor("DOC003"))
        service.reserve("DOC002", "PAT002", local(TUESDAY, 9))
        service.reserve("DOC003", "PAT003", local(TUESDAY, 9))

        in_person = service.list_available_slots("DOC001", TUESDAY)
        virtual = service.list_available_slots("DOC001", TUESDAY, is_virtual=True)

        assert local(TUESDAY, 9) not in in_person.available_slots
        assert local(TUESDAY, 9) in virtual.available_slots

    def test_specific_room_filter(self, service, repository):
        repository.add_doctor(make_doctor("DOC002"))
        service.reserve("DOC002", "PAT002", local(TUESDAY, 9), room_id=2)

        assert local(TUESDAY, 9) in service.list_available_slots("DOC001", TUESDAY, room_id=1).available_slots
        assert local(TUESDAY, 9) not in service.list_available_slots("DOC001", TUESDAY, room_id=2).available_slots

    def test_unknown_room_is_rejected(self, service):
        with pytest.raises(RoomNotFoundError):
            service.list_available_slots("DOC001", TUESDAY, room_id=99)

    def test_now_is_never_listed(self, service, clock):
        clock.set(local(TUESDAY, 9))
        result = service.list_available_slots("DOC001", TUESDAY)

        assert all(slot > NOW for slot in result.available_slots)
        assert local(TUESDAY, 9) not in result.available_slots
