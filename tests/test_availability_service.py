"""Weekly slot catalog: parsing, overlap rules and toggles."""
from datetime import date, time

import pytest

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.services import availability_service, booking_service


def test_parse_weekday_accepts_names_abbreviations_and_numbers():
    assert availability_service.parse_weekday("Monday") == 1
    assert availability_service.parse_weekday("sun") == 7
    assert availability_service.parse_weekday(" friday ") == 5
    assert availability_service.parse_weekday(3) == 3


@pytest.mark.parametrize("value", ["Funday", "", None, 0, 8, True])
def test_parse_weekday_rejects_garbage(value):
    with pytest.raises(ValidationError) as exc:
        availability_service.parse_weekday(value)
    assert exc.value.code == "invalid_day"


@pytest.mark.parametrize("value", ["9:00", "09:00", "23:59"])
def test_parse_hhmm_valid(value):
    assert isinstance(availability_service.parse_hhmm(value), time)


@pytest.mark.parametrize("value", ["24:00", "9", "09:60", "nine", None])
def test_parse_hhmm_invalid(value):
    with pytest.raises(ValidationError) as exc:
        availability_service.parse_hhmm(value)
    assert exc.value.code == "invalid_time_format"


def test_add_slot_rejects_inverted_range(db, alice):
    with pytest.raises(ValidationError) as exc:
        availability_service.add_slot(db, alice.id, "Monday", "10:00", "09:00")
    assert exc.value.code == "invalid_range"


def test_add_slot_rejects_touching_boundary(db, alice, make_slot):
    first = make_slot(alice, "Monday", "09:00", "10:00")
    with pytest.raises(ConflictError) as exc:
        availability_service.add_slot(db, alice.id, "Monday", "10:00", "11:00")
    assert exc.value.code == "overlap"
    assert exc.value.details["conflicting_slot_id"] == first.id


def test_add_slot_rejects_intersection(db, alice, make_slot):
    make_slot(alice, "Monday", "09:00", "11:00")
    with pytest.raises(ConflictError):
        availability_service.add_slot(db, alice.id, "Monday", "10:30", "12:00")


def test_add_slot_allows_gap_and_other_days(db, alice, make_slot):
    make_slot(alice, "Monday", "09:00", "10:00")
    availability_service.add_slot(db, alice.id, "Monday", "10:01", "11:00")
    availability_service.add_slot(db, alice.id, "Tuesday", "09:00", "10:00")
    assert len(availability_service.list_slots(db, alice.id)) == 3


def test_overlap_ignores_inactive_slots_and_other_providers(db, alice, make_user, make_slot):
    make_slot(alice, "Monday", "09:00", "10:00", is_active=False)
    other = make_user("Dan Provider", role="provider")
    make_slot(other, "Monday", "09:00", "10:00")
    slot = availability_service.add_slot(db, alice.id, "Monday", "09:00", "10:00")
    assert slot.is_active


def test_update_slot_revalidates_format_and_order(db, alice, monday_slot):
    with pytest.raises(ValidationError):
        availability_service.update_slot(db, alice.id, monday_slot.id, {"start_time": "25:00"})
    with pytest.raises(ValidationError):
        availability_service.update_slot(db, alice.id, monday_slot.id, {"end_time": "08:00"})

    updated = availability_service.update_slot(db, alice.id, monday_slot.id, {"day": "Wednesday", "end_time": "10:30"})
    assert updated.weekday == 3
    assert updated.end_time == time(10, 30)


def test_update_slot_does_not_recheck_siblings(db, alice, make_slot):
    make_slot(alice, "Monday", "09:00", "10:00")
    other = make_slot(alice, "Monday", "13:00", "14:00")
    # known gap: an update may produce colliding active slots
    updated = availability_service.update_slot(db, alice.id, other.id, {"start_time": "09:30"})
    assert updated.start_time == time(9, 30)


def test_slot_ownership_is_enforced(db, alice, bob, monday_slot):
    with pytest.raises(NotFoundError) as exc:
        availability_service.delete_slot(db, bob.id, monday_slot.id)
    assert exc.value.code == "slot_not_found"


def test_delete_slot_keeps_appointment_reference(db, alice, bob, alice_service, monday_slot):
    appointment = booking_service.create_appointment(db, bob.id, alice.id, alice_service.id, "2025-01-13", "09:00")
    availability_service.delete_slot(db, alice.id, monday_slot.id)
    db.refresh(appointment)
    assert appointment.availability_slot_id == monday_slot.id


def test_deactivate_refused_while_future_appointments_exist(db, alice, bob, alice_service, monday_slot):
    booking_service.create_appointment(db, bob.id, alice.id, alice_service.id, "2025-01-13", "09:00")
    with pytest.raises(ConflictError) as exc:
        availability_service.set_slot_active(db, alice.id, monday_slot.id, False)
    assert exc.value.code == "slot_has_active_appointments"
    assert len(exc.value.details["conflicting_appointments"]) == 1


def test_deactivate_allowed_after_cancellation(db, alice, bob, alice_service, monday_slot):
    appointment = booking_service.create_appointment(db, bob.id, alice.id, alice_service.id, "2025-01-13", "09:00")
    booking_service.cancel_appointment(db, appointment.id, bob.id)
    slot = availability_service.set_slot_active(db, alice.id, monday_slot.id, False)
    assert slot.is_active is False


def test_reactivate_checks_overlap(db, alice, make_slot):
    inactive = make_slot(alice, "Monday", "09:00", "10:00", is_active=False)
    make_slot(alice, "Monday", "09:30", "11:00")
    with pytest.raises(ConflictError) as exc:
        availability_service.set_slot_active(db, alice.id, inactive.id, True)
    assert exc.value.code == "overlap"


def test_toggle_day_flips_all_slots_for_weekday(db, alice, make_slot):
    make_slot(alice, "Monday", "09:00", "10:00")
    make_slot(alice, "Monday", "13:00", "14:00")
    tuesday = make_slot(alice, "Tuesday", "09:00", "10:00")

    slots = availability_service.toggle_day(db, alice.id, date(2025, 1, 13))
    assert [s.is_active for s in slots] == [False, False]

    slots = availability_service.toggle_day(db, alice.id, date(2025, 1, 13))
    assert [s.is_active for s in slots] == [True, True]

    db.refresh(tuesday)
    assert tuesday.is_active


def test_toggle_day_without_slots(db, alice):
    with pytest.raises(NotFoundError):
        availability_service.toggle_day(db, alice.id, date(2025, 1, 8))


def test_parse_date(db):
    assert availability_service.parse_date("2025-01-13") == date(2025, 1, 13)
    with pytest.raises(ValidationError) as exc:
        availability_service.parse_date("13/01/2025")
    assert exc.value.code == "invalid_date_format"
