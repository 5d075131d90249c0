import threading
from datetime import date

import pytest

from app.core.exceptions import (
    AlreadyCancelled, AlreadyCompleted, AppointmentNotFound, Busy,
    CapacityExceeded, DuplicateBooking, InvalidTransition, NotAuthorized,
    RecordRequired, SessionInPast, SessionNotBookable, SessionNotFound
)
from app.models.appointment import AppointmentStatus
from app.models.session import ClinicSession
from app.services.booking_service import BookingEngine


def refreshed(db, clinic_session):
    db.expire_all()
    return db.query(ClinicSession).filter(ClinicSession.id == clinic_session.id).one()


class TestBookAppointment:

    def test_book_creates_booked_appointment(self, booking, make_session, db):
        session = make_session(capacity=2)

        appointment = booking.book_appointment(session.id, "patient-1")

        assert appointment.status == AppointmentStatus.BOOKED
        assert appointment.patient_id == "patient-1"
        assert appointment.session_id == session.id
        assert appointment.booked_at is not None
        assert appointment.session_date == session.date
        assert refreshed(db, session).booked_count == 1

    def test_capacity_scenario(self, booking, make_session, db):
        """Book to capacity, get rejected, cancel, then book again."""
        session = make_session(capacity=2)

        first = booking.book_appointment(session.id, "P1")
        assert refreshed(db, session).booked_count == 1
        booking.book_appointment(session.id, "P2")
        assert refreshed(db, session).booked_count == 2

        with pytest.raises(CapacityExceeded) as exc_info:
            booking.book_appointment(session.id, "P3")
        assert exc_info.value.retryable is True
        assert refreshed(db, session).booked_count == 2

        booking.cancel_appointment(first.id, "P1")
        assert refreshed(db, session).booked_count == 1

        third = booking.book_appointment(session.id, "P3")
        assert third.status == AppointmentStatus.BOOKED
        assert refreshed(db, session).booked_count == 2

    def test_duplicate_booking_rejected(self, booking, make_session, db):
        session = make_session(capacity=3)
        booking.book_appointment(session.id, "patient-1")

        with pytest.raises(DuplicateBooking):
            booking.book_appointment(session.id, "patient-1")
        assert refreshed(db, session).booked_count == 1

    def test_rebook_after_cancel_is_allowed(self, booking, make_session):
        session = make_session(capacity=1)
        appointment = booking.book_appointment(session.id, "patient-1")
        booking.cancel_appointment(appointment.id, "patient-1")

        again = booking.book_appointment(session.id, "patient-1")

        assert again.id != appointment.id
        assert again.status == AppointmentStatus.BOOKED

    def test_unknown_session(self, booking):
        with pytest.raises(SessionNotFound):
            booking.book_appointment("missing", "patient-1")

    def test_cancelled_session_not_bookable(self, booking, controller, make_session):
        session = make_session()
        controller.cancel_session(session.id)

        with pytest.raises(SessionNotBookable) as exc_info:
            booking.book_appointment(session.id, "patient-1")
        assert exc_info.value.retryable is False

    def test_started_session_not_bookable(self, booking, controller, make_session):
        session = make_session()
        controller.start_session(session.id)

        with pytest.raises(SessionNotBookable):
            booking.book_appointment(session.id, "patient-1")

    def test_past_session_rejected(self, booking, make_session):
        session = make_session(day=date(2030, 1, 1))

        with pytest.raises(SessionInPast):
            booking.book_appointment(session.id, "patient-1")

    def test_past_session_allowed_when_policy_disabled(
        self, db, locks, test_settings, clock, make_session
    ):
        test_settings.REJECT_PAST_SESSION_BOOKINGS = False
        engine = BookingEngine(db, locks, settings=test_settings, clock=clock)
        session = make_session(day=date(2030, 1, 1))

        appointment = engine.book_appointment(session.id, "patient-1")

        assert appointment.status == AppointmentStatus.BOOKED


class TestConcurrentBooking:

    def test_last_slot_goes_to_exactly_one_patient(
        self, session_factory, locks, test_settings, clock, make_session
    ):
        session = make_session(capacity=1)
        session_id = session.id
        barrier = threading.Barrier(2)
        outcomes = []

        def attempt(patient_id):
            db = session_factory()
            try:
                engine = BookingEngine(db, locks, settings=test_settings, clock=clock)
                barrier.wait()
                try:
                    engine.book_appointment(session_id, patient_id)
                    outcomes.append("booked")
                except CapacityExceeded:
                    outcomes.append("full")
            finally:
                db.close()

        threads = [threading.Thread(target=attempt, args=(p,)) for p in ("P1", "P2")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes) == ["booked", "full"]

        db = session_factory()
        try:
            stored = db.query(ClinicSession).filter(ClinicSession.id == session_id).one()
            assert stored.booked_count == 1
        finally:
            db.close()

    def test_many_patients_never_overbook(
        self, session_factory, locks, test_settings, clock, make_session, ledger
    ):
        session = make_session(capacity=3)
        session_id = session.id
        barrier = threading.Barrier(8)
        booked = []

        def attempt(patient_id):
            db = session_factory()
            try:
                engine = BookingEngine(db, locks, settings=test_settings, clock=clock)
                barrier.wait()
                try:
                    booked.append(engine.book_appointment(session_id, patient_id).id)
                except CapacityExceeded:
                    pass
            finally:
                db.close()

        threads = [threading.Thread(target=attempt, args=(f"P{i}",)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(booked) == 3
        assert ledger.count_booked(session_id) == 3

    def test_busy_when_lock_is_held(self, db, test_settings, clock, make_session):
        from app.services.session_locks import LocalSessionLocks

        short_locks = LocalSessionLocks(timeout=0.05)
        engine = BookingEngine(db, short_locks, settings=test_settings, clock=clock)
        session = make_session()
        session_id = session.id
        holding = threading.Event()
        release = threading.Event()

        def hold_lock():
            with short_locks.hold(session_id):
                holding.set()
                release.wait(timeout=5)

        holder = threading.Thread(target=hold_lock)
        holder.start()
        holding.wait(timeout=5)
        try:
            with pytest.raises(Busy) as exc_info:
                engine.book_appointment(session.id, "patient-1")
            assert exc_info.value.retryable is True
            assert exc_info.value.headers["Retry-After"] == "1"
        finally:
            release.set()
            holder.join()

        assert engine.book_appointment(session.id, "patient-1").status == AppointmentStatus.BOOKED


class TestCancelAppointment:

    def test_cancel_records_actor(self, booking, make_session, db):
        session = make_session()
        appointment = booking.book_appointment(session.id, "patient-1")

        cancelled = booking.cancel_appointment(appointment.id, "patient-1", reason="Feeling better")

        assert cancelled.status == AppointmentStatus.CANCELLED
        assert cancelled.cancelled_by == "patient-1"
        assert cancelled.cancellation_reason == "Feeling better"
        assert cancelled.cancelled_at is not None
        assert refreshed(db, session).booked_count == 0

    def test_cancel_twice_fails_without_changing_count(self, booking, make_session, db):
        session = make_session()
        appointment = booking.book_appointment(session.id, "patient-1")
        booking.book_appointment(session.id, "patient-2")
        booking.cancel_appointment(appointment.id, "patient-1")

        with pytest.raises(AlreadyCancelled):
            booking.cancel_appointment(appointment.id, "patient-1")
        assert refreshed(db, session).booked_count == 1

    def test_cancel_by_other_patient_rejected(self, booking, make_session, db):
        session = make_session()
        appointment = booking.book_appointment(session.id, "patient-1")

        with pytest.raises(NotAuthorized):
            booking.cancel_appointment(appointment.id, "patient-2")
        assert refreshed(db, session).booked_count == 1

    def test_provider_may_cancel(self, booking, make_session):
        session = make_session()
        appointment = booking.book_appointment(session.id, "patient-1")

        cancelled = booking.cancel_appointment(appointment.id, "doc-1", provider_authorized=True)

        assert cancelled.status == AppointmentStatus.CANCELLED
        assert cancelled.cancelled_by == "doc-1"

    def test_cancel_completed_rejected(self, booking, controller, make_session, db):
        session = make_session()
        appointment = booking.book_appointment(session.id, "patient-1")
        controller.start_session(session.id)
        booking.mark_completed(appointment.id)

        with pytest.raises(AlreadyCompleted):
            booking.cancel_appointment(appointment.id, "patient-1")
        assert refreshed(db, session).booked_count == 1

    def test_cancel_unknown_appointment(self, booking):
        with pytest.raises(AppointmentNotFound):
            booking.cancel_appointment("missing", "patient-1")


class TestMarkCompleted:

    def test_requires_started_session(self, booking, make_session):
        session = make_session()
        appointment = booking.book_appointment(session.id, "patient-1")

        with pytest.raises(InvalidTransition):
            booking.mark_completed(appointment.id)

    def test_completes_without_touching_count(self, booking, controller, make_session, db):
        session = make_session()
        appointment = booking.book_appointment(session.id, "patient-1")
        controller.start_session(session.id)

        completed = booking.mark_completed(appointment.id)

        assert completed.status == AppointmentStatus.COMPLETED
        assert completed.completed_at is not None
        assert refreshed(db, session).booked_count == 1

    def test_allowed_after_session_completed(self, booking, controller, make_session):
        session = make_session()
        appointment = booking.book_appointment(session.id, "patient-1")
        controller.start_session(session.id)
        controller.complete_session(session.id)

        assert booking.mark_completed(appointment.id).status == AppointmentStatus.COMPLETED

    def test_cancelled_appointment_cannot_complete(self, booking, controller, make_session):
        session = make_session()
        appointment = booking.book_appointment(session.id, "patient-1")
        booking.cancel_appointment(appointment.id, "patient-1")
        controller.start_session(session.id)

        with pytest.raises(AlreadyCancelled):
            booking.mark_completed(appointment.id)

    def test_record_gate(self, db, locks, test_settings, clock, controller, make_session, linker):
        from app.schemas.prescription import MedicationIn

        test_settings.REQUIRE_RECORD_BEFORE_COMPLETION = True
        engine = BookingEngine(db, locks, settings=test_settings, clock=clock)
        session = make_session()
        appointment = engine.book_appointment(session.id, "patient-1")
        controller.start_session(session.id)

        with pytest.raises(RecordRequired):
            engine.mark_completed(appointment.id)

        linker.save_encounter_record(
            appointment.id, "doc-1", "Follow up in two weeks",
            [MedicationIn(name="Amoxicillin", dosage="500mg", frequency="3x daily")]
        )
        assert engine.mark_completed(appointment.id).status == AppointmentStatus.COMPLETED

    def test_check_completable_writes_nothing(self, booking, controller, make_session, ledger):
        session = make_session()
        appointment = booking.book_appointment(session.id, "patient-1")

        with pytest.raises(InvalidTransition):
            booking.check_completable(appointment.id)

        controller.start_session(session.id)
        assert booking.check_completable(appointment.id).id == appointment.id
        assert ledger.get(appointment.id).status == AppointmentStatus.BOOKED

    def test_check_completable_with_pending_record(
        self, db, locks, test_settings, clock, controller, make_session
    ):
        test_settings.REQUIRE_RECORD_BEFORE_COMPLETION = True
        engine = BookingEngine(db, locks, settings=test_settings, clock=clock)
        session = make_session()
        appointment = engine.book_appointment(session.id, "patient-1")
        controller.start_session(session.id)

        with pytest.raises(RecordRequired):
            engine.check_completable(appointment.id)
        engine.check_completable(appointment.id, record_pending=True)
