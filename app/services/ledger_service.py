from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.exceptions import AppointmentNotFound
from ..models.appointment import Appointment, AppointmentStatus
from ..models.session import ClinicSession


class AppointmentLedger:
    """Read side of the appointment table.

    Entries are never removed; listings are snapshots ordered by
    ``booked_at`` (ties broken by id) whatever their status.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, appointment_id: str) -> Appointment:
        appointment = self.db.query(Appointment).filter(
            Appointment.id == appointment_id
        ).first()
        if not appointment:
            raise AppointmentNotFound(appointment_id)
        return appointment

    def list_by_patient(
        self, patient_id: str, status: Optional[AppointmentStatus] = None
    ) -> List[Appointment]:
        query = self.db.query(Appointment).filter(Appointment.patient_id == patient_id)
        return self._ordered(query, status)

    def list_by_provider(
        self, provider_id: str, status: Optional[AppointmentStatus] = None
    ) -> List[Appointment]:
        query = self.db.query(Appointment).join(
            ClinicSession, Appointment.session_id == ClinicSession.id
        ).filter(ClinicSession.provider_id == provider_id)
        return self._ordered(query, status)

    def list_by_session(
        self, session_id: str, status: Optional[AppointmentStatus] = None
    ) -> List[Appointment]:
        query = self.db.query(Appointment).filter(Appointment.session_id == session_id)
        return self._ordered(query, status)

    def count_booked(self, session_id: str) -> int:
        return self.db.query(Appointment).filter(
            Appointment.session_id == session_id,
            Appointment.status == AppointmentStatus.BOOKED
        ).count()

    @staticmethod
    def _ordered(query, status: Optional[AppointmentStatus]) -> List[Appointment]:
        if status is not None:
            query = query.filter(Appointment.status == status)
        return query.order_by(Appointment.booked_at, Appointment.id).all()
