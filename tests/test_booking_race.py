"""Concurrent bookings against a file-backed database, one session per request."""
import threading

import pytest
from fastapi import BackgroundTasks
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.exceptions import ConflictError
from app.db.base import Base
from app.db.models.appointment import Appointment
from app.db.models.service import Service
from app.db.models.user import User
from app.services import availability_service, booking_service

RACERS = 8
LOST_RACE_CODES = {"slot_already_booked", "transaction_conflict"}


@pytest.fixture
def race_db(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


def _seed(Session, customers: int):
    with Session() as session:
        provider = User(name="Alice Santos", role="provider", email="alice@example.com", phone="09170000001")
        session.add(provider)
        session.flush()
        service = Service(provider_id=provider.id, name="House cleaning", price=50.0, duration_minutes=60)
        session.add(service)
        people = [User(name=f"Customer {i}", role="customer", email=f"customer{i}@example.com") for i in range(customers)]
        session.add_all(people)
        session.commit()
        availability_service.add_slot(session, provider.id, "Monday", "09:00", "10:00")
        availability_service.add_slot(session, provider.id, "Monday", "11:00", "12:00")
        return provider.id, service.id, [p.id for p in people]


def _race(Session, calls):
    """Release every call at once, each on its own session. Returns what each call produced."""
    barrier = threading.Barrier(len(calls))
    results = [None] * len(calls)

    def run(index, call):
        session = Session()
        try:
            barrier.wait()
            results[index] = call(session)
        except Exception as e:
            results[index] = e
        finally:
            session.close()

    threads = [threading.Thread(target=run, args=(i, call)) for i, call in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return results


def _assert_one_winner(results):
    winners = [r for r in results if isinstance(r, Appointment)]
    losers = [r for r in results if not isinstance(r, Appointment)]
    assert len(winners) == 1, results
    for loser in losers:
        assert isinstance(loser, ConflictError), repr(loser)
        assert loser.code in LOST_RACE_CODES
    return winners[0]


def test_concurrent_bookings_for_one_slot_yield_one_appointment(race_db):
    provider_id, service_id, customer_ids = _seed(race_db, RACERS)

    def book(customer_id):
        # queued side effects are never run; they would target the shared test database
        return lambda session: booking_service.create_appointment(
            session, customer_id, provider_id, service_id, "2025-01-13", "09:00", background_tasks=BackgroundTasks()
        )

    results = _race(race_db, [book(c) for c in customer_ids])
    winner = _assert_one_winner(results)

    with race_db() as session:
        booked = session.query(Appointment).filter(Appointment.slot_date == winner.slot_date).all()
        assert [a.id for a in booked] == [winner.id]


def test_concurrent_reschedules_into_one_slot_yield_one_move(race_db):
    provider_id, service_id, customer_ids = _seed(race_db, 2)
    with race_db() as session:
        first = booking_service.create_appointment(
            session, customer_ids[0], provider_id, service_id, "2025-01-13", "09:00", background_tasks=BackgroundTasks()
        )
        second = booking_service.create_appointment(
            session, customer_ids[1], provider_id, service_id, "2025-01-13", "11:00", background_tasks=BackgroundTasks()
        )
        moves = [(first.id, customer_ids[0]), (second.id, customer_ids[1])]

    def reschedule(appointment_id, customer_id):
        return lambda session: booking_service.reschedule_appointment(
            session, appointment_id, customer_id, "2025-01-20", "09:00"
        )

    results = _race(race_db, [reschedule(a, c) for a, c in moves])
    winner = _assert_one_winner(results)

    with race_db() as session:
        moved = session.query(Appointment).filter(Appointment.status == "scheduled").all()
        assert [a.id for a in moved] == [winner.id]
