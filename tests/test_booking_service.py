"""Booking engine: validation, double-booking, booking cap, cancellation, rescheduling."""
from datetime import date, datetime

import pytest

from app.core.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.db import base
from app.db.models.appointment import Appointment, AppointmentStatus
from app.db.models.notification import Notification
from app.services import booking_service, lifecycle_service, slot_resolver


def _book(db, customer, provider, service, day, at="09:00", **kwargs):
    return booking_service.create_appointment(db, customer.id, provider.id, service.id, day, at, **kwargs)


def _schedule(db, provider, appointment):
    return lifecycle_service.transition_status(db, appointment.id, provider.id, "scheduled")


def test_alice_bob_carol(db, alice, bob, carol, alice_service, monday_slot):
    first = _book(db, bob, alice, alice_service, "2025-01-06")
    assert first.status == AppointmentStatus.PENDING.value
    assert first.scheduled_date == datetime(2025, 1, 6, 9, 0)
    assert first.availability_slot_id == monday_slot.id

    with pytest.raises(ConflictError) as exc:
        _book(db, carol, alice, alice_service, "2025-01-06")
    assert exc.value.code == "slot_already_booked"

    booking_service.cancel_appointment(db, first.id, bob.id)

    second = _book(db, carol, alice, alice_service, "2025-01-06")
    assert second.customer_id == carol.id


def test_same_weekday_next_week_is_independent(db, alice, bob, carol, alice_service, monday_slot):
    _book(db, bob, alice, alice_service, "2025-01-13")
    following = _book(db, carol, alice, alice_service, "2025-01-20")
    assert following.slot_date == date(2025, 1, 20)


def test_unique_index_stops_a_booking_that_slipped_past_the_check(db, alice, bob, carol, alice_service, monday_slot, monkeypatch):
    _book(db, bob, alice, alice_service, "2025-01-13")
    # simulate two requests that both saw the slot as free
    monkeypatch.setattr(slot_resolver, "is_slot_booked", lambda *a, **kw: False)

    with pytest.raises(ConflictError) as exc:
        _book(db, carol, alice, alice_service, "2025-01-13")
    assert exc.value.code == "slot_already_booked"
    assert db.query(Appointment).count() == 1


def test_booking_cap_counts_only_scheduled(db, alice, bob, alice_service, monday_slot):
    booked = []
    for day in ("2025-01-13", "2025-01-20", "2025-01-27"):
        appointment = _book(db, bob, alice, alice_service, day)
        _schedule(db, alice, appointment)
        booked.append(appointment)

    with pytest.raises(ConflictError) as exc:
        _book(db, bob, alice, alice_service, "2025-02-03")
    assert exc.value.code == "booking_limit_reached"
    assert exc.value.details == {"current_scheduled_count": 3, "max_allowed": 3}

    booking_service.cancel_appointment(db, booked[0].id, bob.id)
    assert _book(db, bob, alice, alice_service, "2025-02-03").status == AppointmentStatus.PENDING.value


def test_booking_cap_ignores_pending(db, alice, bob, alice_service, monday_slot):
    for day in ("2025-01-13", "2025-01-20", "2025-01-27", "2025-02-03"):
        _book(db, bob, alice, alice_service, day)
    assert booking_service.booking_capacity(db, bob.id)["scheduled_count"] == 0


def test_booking_capacity(db, alice, bob, alice_service, monday_slot):
    _schedule(db, alice, _book(db, bob, alice, alice_service, "2025-01-13"))
    assert booking_service.booking_capacity(db, bob.id) == {
        "can_book": True,
        "scheduled_count": 1,
        "max_allowed": 3,
        "available_slots": 2,
    }


def test_self_booking_is_rejected(db, make_user, alice, alice_service, monday_slot):
    # same person, separate customer account sharing the phone number
    twin = make_user("alice santos ", phone="09170000001")
    with pytest.raises(ConflictError) as exc:
        _book(db, twin, alice, alice_service, "2025-01-13")
    assert exc.value.code == "self_booking_not_allowed"


def test_same_name_alone_is_not_self_booking(db, make_user, alice, alice_service, monday_slot):
    namesake = make_user("Alice Santos", phone="09999999999")
    assert _book(db, namesake, alice, alice_service, "2025-01-13").customer_id == namesake.id


def test_is_same_person_by_email(make_user, db):
    provider = make_user("Eve Lim", role="provider", email="eve@example.com")
    customer = make_user("Eve Lim", email="EVE@example.com ")
    # the unique email column forbids a literal duplicate, case differs here
    assert booking_service.is_same_person(customer, provider)


def test_closed_for_today_after_cutoff(db, alice, bob, alice_service, make_slot, clock):
    make_slot(alice, "Monday", "17:00", "18:00")
    clock.set(datetime(2025, 1, 6, 16, 0))

    with pytest.raises(ConflictError) as exc:
        _book(db, bob, alice, alice_service, "2025-01-06", at="17:00")
    assert exc.value.code == "booking_closed_for_today"
    assert exc.value.details["booking_cutoff_time"] == "15:00"

    assert _book(db, bob, alice, alice_service, "2025-01-13", at="17:00").slot_date == date(2025, 1, 13)


def test_past_slot_is_rejected(db, alice, bob, alice_service, make_slot):
    make_slot(alice, "Monday", "06:00", "06:30")
    with pytest.raises(ConflictError) as exc:
        _book(db, bob, alice, alice_service, "2025-01-06", at="06:00")
    assert exc.value.code == "past_date_time"

    with pytest.raises(ConflictError) as exc:
        _book(db, bob, alice, alice_service, "2024-12-30", at="06:00")
    assert exc.value.code == "past_date_time"


def test_time_must_match_an_active_slot_start(db, alice, bob, alice_service, monday_slot):
    with pytest.raises(NotFoundError) as exc:
        _book(db, bob, alice, alice_service, "2025-01-13", at="09:30")
    assert exc.value.code == "slot_not_found"

    with pytest.raises(NotFoundError):
        _book(db, bob, alice, alice_service, "2025-01-14")


def test_missing_fields(db, bob):
    with pytest.raises(ValidationError) as exc:
        booking_service.create_appointment(db, bob.id, None, 1, "", "09:00")
    assert exc.value.code == "missing_fields"
    assert exc.value.details["missing_fields"] == ["provider_id", "scheduled_date"]


def test_provider_and_service_must_exist(db, alice, bob, make_user, make_service, monday_slot):
    with pytest.raises(NotFoundError) as exc:
        booking_service.create_appointment(db, bob.id, 9999, 1, "2025-01-13", "09:00")
    assert exc.value.code == "provider_not_found"

    other = make_user("Frank Provider", role="provider")
    foreign = make_service(other)
    inactive = make_service(alice, is_active=False)
    for service in (foreign, inactive):
        with pytest.raises(NotFoundError) as exc:
            _book(db, bob, alice, service, "2025-01-13")
        assert exc.value.code == "service_not_found"


def test_instant_booking_is_accepted(db, alice, bob, alice_service, monday_slot):
    appointment = _book(db, bob, alice, alice_service, "2025-01-13", auto_accept=True)
    assert appointment.status == AppointmentStatus.ACCEPTED.value


def test_booking_notifies_both_parties(db, alice, bob, alice_service, monday_slot):
    _book(db, bob, alice, alice_service, "2025-01-13")
    recipients = {n.user_id for n in db.query(Notification).filter(Notification.event == "booking_created")}
    assert recipients == {alice.id, bob.id}


def test_notification_failure_does_not_fail_the_booking(db, alice, bob, alice_service, monday_slot, monkeypatch):
    from app.services import notification_service

    def boom(*args, **kwargs):
        raise RuntimeError("push gateway down")

    monkeypatch.setattr(notification_service, "notify", boom)
    appointment = _book(db, bob, alice, alice_service, "2025-01-13")
    assert appointment.id is not None


# --------------------------
# cancel
# --------------------------
def test_cancel_records_reason_and_time(db, alice, bob, alice_service, monday_slot):
    appointment = _book(db, bob, alice, alice_service, "2025-01-13")
    cancelled = booking_service.cancel_appointment(db, appointment.id, bob.id)
    assert cancelled.status == AppointmentStatus.CANCELLED.value
    assert cancelled.cancellation_reason == "No reason provided"
    assert cancelled.cancelled_at == datetime(2025, 1, 6, 7, 0)


def test_only_the_customer_can_cancel(db, alice, bob, carol, alice_service, monday_slot):
    appointment = _book(db, bob, alice, alice_service, "2025-01-13")
    with pytest.raises(AuthorizationError):
        booking_service.cancel_appointment(db, appointment.id, carol.id)
    with pytest.raises(AuthorizationError):
        booking_service.cancel_appointment(db, appointment.id, alice.id)


def test_cancel_terminal_and_in_flight(db, alice, bob, alice_service, monday_slot, make_slot):
    appointment = _book(db, bob, alice, alice_service, "2025-01-13")
    booking_service.cancel_appointment(db, appointment.id, bob.id)
    with pytest.raises(ConflictError) as exc:
        booking_service.cancel_appointment(db, appointment.id, bob.id)
    assert exc.value.code == "already_terminal"

    moving = _book(db, bob, alice, alice_service, "2025-01-20", auto_accept=True)
    lifecycle_service.transition_status(db, moving.id, alice.id, "on_the_way")
    with pytest.raises(ConflictError) as exc:
        booking_service.cancel_appointment(db, moving.id, bob.id)
    assert exc.value.code == "not_cancellable"


def test_cancel_unknown_appointment(db, bob):
    with pytest.raises(NotFoundError) as exc:
        booking_service.cancel_appointment(db, 4242, bob.id)
    assert exc.value.code == "appointment_not_found"


def test_stale_status_write_is_a_conflict(db, alice, bob, alice_service, monday_slot):
    appointment = _book(db, bob, alice, alice_service, "2025-01-13")
    assert appointment.status == "pending"

    # another request moves it on behind our back
    other = base.SessionLocal()
    other.query(Appointment).filter(Appointment.id == appointment.id).update({"status": "accepted"})
    other.commit()
    other.close()

    with pytest.raises(ConflictError) as exc:
        booking_service.compare_and_set_status(db, appointment, AppointmentStatus.CANCELLED)
    assert exc.value.code == "conflict"
    db.rollback()


# --------------------------
# reschedule
# --------------------------
def test_reschedule_moves_to_new_date_and_frees_old(db, alice, bob, carol, alice_service, monday_slot):
    appointment = _book(db, bob, alice, alice_service, "2025-01-13")
    moved = booking_service.reschedule_appointment(db, appointment.id, bob.id, "2025-01-20", "09:00")
    assert moved.status == AppointmentStatus.SCHEDULED.value
    assert moved.slot_date == date(2025, 1, 20)

    assert _book(db, carol, alice, alice_service, "2025-01-13").slot_date == date(2025, 1, 13)


def test_reschedule_into_a_taken_slot(db, alice, bob, carol, alice_service, monday_slot):
    appointment = _book(db, bob, alice, alice_service, "2025-01-13")
    _book(db, carol, alice, alice_service, "2025-01-20")
    with pytest.raises(ConflictError) as exc:
        booking_service.reschedule_appointment(db, appointment.id, bob.id, "2025-01-20", "09:00")
    assert exc.value.code == "slot_already_booked"


def test_reschedule_requires_open_appointment(db, alice, bob, alice_service, monday_slot):
    appointment = _book(db, bob, alice, alice_service, "2025-01-13")
    booking_service.cancel_appointment(db, appointment.id, bob.id)
    with pytest.raises(ConflictError) as exc:
        booking_service.reschedule_appointment(db, appointment.id, bob.id, "2025-01-20", "09:00")
    assert exc.value.code == "not_reschedulable"


def test_list_appointments_with_status_filter(db, alice, bob, alice_service, monday_slot):
    first = _book(db, bob, alice, alice_service, "2025-01-13")
    _book(db, bob, alice, alice_service, "2025-01-20")
    booking_service.cancel_appointment(db, first.id, bob.id)

    assert len(booking_service.list_customer_appointments(db, bob.id)) == 2
    assert [a.id for a in booking_service.list_customer_appointments(db, bob.id, status="Canceled")] == [first.id]
    assert len(booking_service.list_provider_appointments(db, alice.id, status="pending")) == 1

    with pytest.raises(ValidationError):
        booking_service.list_customer_appointments(db, bob.id, status="bogus")
