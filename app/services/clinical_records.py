"""
Clinical Record Linker.

Prescription records hang off appointments and form an append-only
history: saving again never edits an earlier record, it adds a new one.
"""
from datetime import datetime
from typing import Callable, List, Sequence
import logging

from sqlalchemy.orm import Session, selectinload

from ..core.exceptions import AlreadyCancelled, AppointmentNotFound, InvalidRecord
from ..models.appointment import Appointment, AppointmentStatus
from ..models.prescription import Medication, PrescriptionRecord
from ..schemas.prescription import MedicationIn
from .base import utcnow

logger = logging.getLogger(__name__)


class ClinicalRecordLinker:
    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def save_encounter_record(
        self,
        appointment_id: str,
        author_id: str,
        notes: str,
        medications: Sequence[MedicationIn]
    ) -> str:
        """Append a record for the appointment and return its id."""
        if not notes or not notes.strip():
            raise InvalidRecord("Encounter notes are required", appointment_id=appointment_id)
        if not medications:
            raise InvalidRecord(
                "At least one medication is required",
                appointment_id=appointment_id
            )

        appointment = self.db.query(Appointment).filter(
            Appointment.id == appointment_id
        ).first()
        if not appointment:
            raise AppointmentNotFound(appointment_id)
        if appointment.status == AppointmentStatus.CANCELLED:
            raise AlreadyCancelled(
                "Cannot attach a record to a cancelled appointment",
                appointment_id=appointment_id
            )

        record = PrescriptionRecord(
            appointment_id=appointment_id,
            patient_id=appointment.patient_id,
            author_id=author_id,
            notes=notes.strip(),
            created_at=self.clock(),
            medications=[
                Medication(
                    position=position,
                    name=medication.name,
                    dosage=medication.dosage,
                    frequency=medication.frequency,
                    duration=medication.duration,
                    instructions=medication.instructions
                )
                for position, medication in enumerate(medications)
            ]
        )
        self.db.add(record)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Saved record {record.id} for appointment {appointment_id} "
            f"with {len(medications)} medication(s)"
        )
        return record.id

    def list_records_for_appointment(self, appointment_id: str) -> List[PrescriptionRecord]:
        return self._newest_first(
            self.db.query(PrescriptionRecord).filter(
                PrescriptionRecord.appointment_id == appointment_id
            )
        )

    def list_records_for_patient(self, patient_id: str) -> List[PrescriptionRecord]:
        return self._newest_first(
            self.db.query(PrescriptionRecord).filter(
                PrescriptionRecord.patient_id == patient_id
            )
        )

    def has_records(self, appointment_id: str) -> bool:
        return self.db.query(PrescriptionRecord.id).filter(
            PrescriptionRecord.appointment_id == appointment_id
        ).first() is not None

    @staticmethod
    def _newest_first(query) -> List[PrescriptionRecord]:
        return query.options(selectinload(PrescriptionRecord.medications)).order_by(
            PrescriptionRecord.created_at.desc(), PrescriptionRecord.id
        ).all()
