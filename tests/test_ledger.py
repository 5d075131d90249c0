import pytest

from app.core.exceptions import AppointmentNotFound
from app.models.appointment import AppointmentStatus
from app.models.session import ClinicSession


class TestAppointmentLedger:

    def test_list_by_session_ordered_by_booked_at_regardless_of_status(
        self, booking, make_session, ledger
    ):
        session = make_session(capacity=3)
        first = booking.book_appointment(session.id, "P1")
        second = booking.book_appointment(session.id, "P2")
        third = booking.book_appointment(session.id, "P3")
        booking.cancel_appointment(second.id, "P2")

        listed = ledger.list_by_session(session.id)

        assert [a.id for a in listed] == [first.id, second.id, third.id]
        assert [a.booked_at for a in listed] == sorted(a.booked_at for a in listed)
        assert listed[1].status == AppointmentStatus.CANCELLED

    def test_status_filter(self, booking, make_session, ledger):
        session = make_session(capacity=2)
        kept = booking.book_appointment(session.id, "P1")
        dropped = booking.book_appointment(session.id, "P2")
        booking.cancel_appointment(dropped.id, "P2")

        booked = ledger.list_by_session(session.id, status=AppointmentStatus.BOOKED)

        assert [a.id for a in booked] == [kept.id]

    def test_list_by_patient_spans_sessions(self, booking, make_session, ledger):
        morning = make_session(provider_id="doc-1")
        afternoon = make_session(provider_id="doc-2")
        a1 = booking.book_appointment(morning.id, "P1")
        booking.book_appointment(morning.id, "P2")
        a2 = booking.book_appointment(afternoon.id, "P1")

        assert [a.id for a in ledger.list_by_patient("P1")] == [a1.id, a2.id]

    def test_list_by_provider(self, booking, make_session, ledger):
        mine = make_session(provider_id="doc-1")
        other = make_session(provider_id="doc-2")
        a1 = booking.book_appointment(mine.id, "P1")
        booking.book_appointment(other.id, "P2")
        a3 = booking.book_appointment(mine.id, "P3")

        assert [a.id for a in ledger.list_by_provider("doc-1")] == [a1.id, a3.id]

    def test_get_unknown(self, ledger):
        with pytest.raises(AppointmentNotFound):
            ledger.get("missing")

    def test_booked_count_matches_booked_appointments(self, booking, make_session, ledger, db):
        session = make_session(capacity=4)
        appointments = [booking.book_appointment(session.id, f"P{i}") for i in range(4)]
        booking.cancel_appointment(appointments[0].id, "P0")
        booking.cancel_appointment(appointments[2].id, "P2")
        booking.book_appointment(session.id, "P9")

        db.expire_all()
        stored = db.query(ClinicSession).filter(ClinicSession.id == session.id).one()
        assert 0 <= stored.booked_count <= stored.capacity
        assert stored.booked_count == ledger.count_booked(session.id) == 3
