from datetime import date, time
from typing import Dict, List, Optional, Set
import logging

from sqlalchemy import func

from ..core.exceptions import (
    InvalidCapacity, InvalidTimeRange, InvalidTransition, SessionNotFound
)
from ..models.appointment import Appointment, AppointmentStatus
from ..models.session import ClinicSession, SessionStatus
from .base import SchedulingService

logger = logging.getLogger(__name__)

# Allowed moves; COMPLETED and CANCELLED are terminal
TRANSITIONS: Dict[SessionStatus, Set[SessionStatus]] = {
    SessionStatus.SCHEDULED: {SessionStatus.STARTED, SessionStatus.CANCELLED},
    SessionStatus.STARTED: {SessionStatus.COMPLETED, SessionStatus.CANCELLED},
    SessionStatus.COMPLETED: set(),
    SessionStatus.CANCELLED: set(),
}


class SessionLifecycleController(SchedulingService):
    """Single source of truth for session status."""

    def create_session(
        self,
        provider_id: str,
        session_date: date,
        start_time: time,
        end_time: time,
        capacity: int
    ) -> ClinicSession:
        """Publish a new SCHEDULED session. Back-dated sessions are accepted."""
        if capacity is None or capacity < 1:
            raise InvalidCapacity("Capacity must be at least 1", capacity=capacity)
        if start_time > end_time:
            raise InvalidTimeRange(
                "Session cannot end before it starts",
                start_time=start_time.isoformat(),
                end_time=end_time.isoformat()
            )

        clinic_session = ClinicSession(
            provider_id=provider_id,
            date=session_date,
            start_time=start_time,
            end_time=end_time,
            capacity=capacity,
            booked_count=0,
            status=SessionStatus.SCHEDULED
        )
        self.db.add(clinic_session)
        self.db.commit()
        self.db.refresh(clinic_session)

        logger.info(
            f"Provider {provider_id} created session {clinic_session.id} "
            f"on {session_date} with capacity {capacity}"
        )
        return clinic_session

    def start_session(self, session_id: str) -> ClinicSession:
        return self._transition(session_id, SessionStatus.STARTED)

    def complete_session(self, session_id: str) -> ClinicSession:
        """Close a started session. Its appointments are completed one by one."""
        return self._transition(session_id, SessionStatus.COMPLETED)

    def cancel_session(self, session_id: str, reason: Optional[str] = None) -> ClinicSession:
        """Cancel the session and every BOOKED appointment on it, in one commit."""
        with self._critical_section(session_id):
            clinic_session = self._load_session_for_update(session_id)
            self._check_transition(clinic_session, SessionStatus.CANCELLED)

            now = self.clock()
            cascaded = self.db.query(Appointment).filter(
                Appointment.session_id == session_id,
                Appointment.status == AppointmentStatus.BOOKED
            ).update(
                {
                    Appointment.status: AppointmentStatus.CANCELLED,
                    Appointment.cancelled_at: now,
                    Appointment.cancelled_by: clinic_session.provider_id,
                    Appointment.cancellation_reason: reason or "Session cancelled",
                },
                synchronize_session=False
            )

            clinic_session.booked_count = self._count_active(session_id)
            clinic_session.status = SessionStatus.CANCELLED
            clinic_session.cancelled_at = now
            clinic_session.cancellation_reason = reason
            self.db.commit()

        self.db.refresh(clinic_session)
        logger.info(f"Cancelled session {session_id}; {cascaded} appointment(s) cancelled with it")
        return clinic_session

    def get_session(self, session_id: str) -> ClinicSession:
        clinic_session = self.db.query(ClinicSession).filter(
            ClinicSession.id == session_id
        ).first()
        if not clinic_session:
            raise SessionNotFound(session_id)
        return clinic_session

    def list_sessions_by_provider(
        self,
        provider_id: str,
        status: Optional[SessionStatus] = None
    ) -> List[ClinicSession]:
        query = self.db.query(ClinicSession).filter(ClinicSession.provider_id == provider_id)
        if status is not None:
            query = query.filter(ClinicSession.status == status)
        return query.order_by(
            ClinicSession.date, ClinicSession.start_time, ClinicSession.id
        ).all()

    def list_available_sessions(self, provider_id: str) -> List[ClinicSession]:
        """Sessions a patient could book right now: scheduled, not full, not past."""
        query = self.db.query(ClinicSession).filter(
            ClinicSession.provider_id == provider_id,
            ClinicSession.status == SessionStatus.SCHEDULED,
            ClinicSession.booked_count < ClinicSession.capacity
        )
        if self.settings.REJECT_PAST_SESSION_BOOKINGS:
            query = query.filter(ClinicSession.date >= self.clock().date())
        return query.order_by(
            ClinicSession.date, ClinicSession.start_time, ClinicSession.id
        ).all()

    def _transition(self, session_id: str, target: SessionStatus) -> ClinicSession:
        with self._critical_section(session_id):
            clinic_session = self._load_session_for_update(session_id)
            self._check_transition(clinic_session, target)

            clinic_session.status = target
            if target == SessionStatus.STARTED:
                clinic_session.started_at = self.clock()
            elif target == SessionStatus.COMPLETED:
                clinic_session.completed_at = self.clock()
            self.db.commit()

        self.db.refresh(clinic_session)
        logger.info(f"Session {session_id} is now {target.value}")
        return clinic_session

    @staticmethod
    def _check_transition(clinic_session: ClinicSession, target: SessionStatus):
        if target not in TRANSITIONS[clinic_session.status]:
            raise InvalidTransition(
                f"Cannot move session from {clinic_session.status.value} to {target.value}",
                session_id=clinic_session.id,
                current_status=clinic_session.status.value,
                requested_status=target.value
            )

    def _count_active(self, session_id: str) -> int:
        return self.db.query(func.count(Appointment.id)).filter(
            Appointment.session_id == session_id,
            Appointment.status != AppointmentStatus.CANCELLED
        ).scalar()
