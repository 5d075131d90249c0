import logging

from sqlalchemy.exc import IntegrityError

from ..core.exceptions import (
    AlreadyCancelled, AlreadyCompleted, AppointmentNotFound, CapacityExceeded,
    DuplicateBooking, InvalidTransition, NotAuthorized, RecordRequired,
    SessionInPast, SessionNotBookable, SessionNotFound
)
from ..models.appointment import Appointment, AppointmentStatus
from ..models.session import ClinicSession, SessionStatus
from .base import SchedulingService
from .clinical_records import ClinicalRecordLinker

logger = logging.getLogger(__name__)


class BookingEngine(SchedulingService):
    """Admission control for appointments.

    Each write runs inside the session's critical section and commits the
    appointment row together with the session's ``booked_count``, so no
    observer ever sees one without the other.
    """

    def book_appointment(self, session_id: str, patient_id: str) -> Appointment:
        """Reserve one slot of ``session_id`` for ``patient_id``."""
        with self._critical_section(session_id):
            clinic_session = self._load_session_for_update(session_id)
            self._check_bookable(clinic_session)

            existing = self.db.query(Appointment).filter(
                Appointment.session_id == session_id,
                Appointment.patient_id == patient_id,
                Appointment.status == AppointmentStatus.BOOKED
            ).first()
            if existing:
                raise DuplicateBooking(
                    "Patient already holds a booking on this session",
                    session_id=session_id,
                    appointment_id=existing.id
                )

            if clinic_session.booked_count >= clinic_session.capacity:
                raise CapacityExceeded(
                    "Session is fully booked",
                    session_id=session_id,
                    capacity=clinic_session.capacity
                )

            appointment = Appointment(
                session_id=session_id,
                patient_id=patient_id,
                booked_at=self.clock(),
                status=AppointmentStatus.BOOKED,
                session_date=clinic_session.date,
                session_start_time=clinic_session.start_time
            )
            self.db.add(appointment)
            clinic_session.booked_count += 1

            try:
                self.db.commit()
            except IntegrityError as exc:
                # Unique index on active (session, patient) pairs
                self.db.rollback()
                raise DuplicateBooking(
                    "Patient already holds a booking on this session",
                    session_id=session_id
                ) from exc

        self.db.refresh(appointment)
        logger.info(
            f"Booked appointment {appointment.id} on session {session_id} "
            f"for patient {patient_id}"
        )
        return appointment

    def cancel_appointment(
        self,
        appointment_id: str,
        actor_id: str,
        provider_authorized: bool = False,
        reason: str = None
    ) -> Appointment:
        """Cancel a BOOKED appointment and release its slot.

        ``provider_authorized`` is the caller's verdict that ``actor_id`` may
        act for the session's provider; otherwise only the owning patient
        may cancel.
        """
        session_id = self._session_id_of(appointment_id)

        with self._critical_section(session_id):
            clinic_session = self._load_session_for_update(session_id)
            appointment = self._load_appointment(appointment_id)

            if actor_id != appointment.patient_id and not provider_authorized:
                raise NotAuthorized(
                    "Only the patient or the session's provider may cancel",
                    appointment_id=appointment_id
                )
            if appointment.status == AppointmentStatus.CANCELLED:
                raise AlreadyCancelled(
                    "Appointment is already cancelled",
                    appointment_id=appointment_id
                )
            if appointment.status == AppointmentStatus.COMPLETED:
                raise AlreadyCompleted(
                    "A completed appointment cannot be cancelled",
                    appointment_id=appointment_id
                )

            appointment.status = AppointmentStatus.CANCELLED
            appointment.cancelled_at = self.clock()
            appointment.cancelled_by = actor_id
            appointment.cancellation_reason = reason
            clinic_session.booked_count -= 1
            self.db.commit()

        self.db.refresh(appointment)
        logger.info(f"Cancelled appointment {appointment_id} by {actor_id}")
        return appointment

    def mark_completed(self, appointment_id: str) -> Appointment:
        """Record that the encounter for a BOOKED appointment took place."""
        session_id = self._session_id_of(appointment_id)

        with self._critical_section(session_id):
            clinic_session = self._load_session_for_update(session_id)
            appointment = self._load_appointment(appointment_id)
            self._check_completable(appointment, clinic_session)

            # booked_count is unchanged: the slot stays used
            appointment.status = AppointmentStatus.COMPLETED
            appointment.completed_at = self.clock()
            self.db.commit()

        self.db.refresh(appointment)
        logger.info(f"Completed appointment {appointment_id}")
        return appointment

    def check_completable(self, appointment_id: str, record_pending: bool = False) -> Appointment:
        """Raise whatever ``mark_completed`` would raise right now, writing nothing.

        ``record_pending`` says the caller is about to save an encounter
        record, which satisfies the record requirement in advance.
        """
        appointment = self._load_appointment(appointment_id)
        clinic_session = (
            self.db.query(ClinicSession)
            .filter(ClinicSession.id == appointment.session_id)
            .populate_existing()
            .first()
        )
        if not clinic_session:
            raise SessionNotFound(appointment.session_id)
        self._check_completable(appointment, clinic_session, record_pending=record_pending)
        return appointment

    def _check_completable(
        self,
        appointment: Appointment,
        clinic_session: ClinicSession,
        record_pending: bool = False
    ):
        if appointment.status == AppointmentStatus.CANCELLED:
            raise AlreadyCancelled(
                "A cancelled appointment cannot be completed",
                appointment_id=appointment.id
            )
        if appointment.status == AppointmentStatus.COMPLETED:
            raise AlreadyCompleted(
                "Appointment is already completed",
                appointment_id=appointment.id
            )
        if clinic_session.status not in (SessionStatus.STARTED, SessionStatus.COMPLETED):
            raise InvalidTransition(
                "Appointments can only be completed once their session has started",
                appointment_id=appointment.id,
                session_status=clinic_session.status.value
            )
        if (
            self.settings.REQUIRE_RECORD_BEFORE_COMPLETION
            and not record_pending
            and not ClinicalRecordLinker(self.db).has_records(appointment.id)
        ):
            raise RecordRequired(
                "Save an encounter record before completing this appointment",
                appointment_id=appointment.id
            )

    def _check_bookable(self, clinic_session: ClinicSession):
        if clinic_session.status != SessionStatus.SCHEDULED:
            raise SessionNotBookable(
                f"Session is {clinic_session.status.value.lower()} and no longer accepts bookings",
                session_id=clinic_session.id,
                session_status=clinic_session.status.value
            )
        if self.settings.REJECT_PAST_SESSION_BOOKINGS and clinic_session.date < self.clock().date():
            raise SessionInPast(
                "Cannot book a session dated in the past",
                session_id=clinic_session.id,
                date=clinic_session.date.isoformat()
            )

    def _session_id_of(self, appointment_id: str) -> str:
        # session_id never changes, so it can be read before taking the lock
        row = self.db.query(Appointment.session_id).filter(
            Appointment.id == appointment_id
        ).first()
        if not row:
            raise AppointmentNotFound(appointment_id)
        return row.session_id

    def _load_appointment(self, appointment_id: str) -> Appointment:
        appointment = (
            self.db.query(Appointment)
            .filter(Appointment.id == appointment_id)
            .populate_existing()
            .first()
        )
        if not appointment:
            raise AppointmentNotFound(appointment_id)
        return appointment

