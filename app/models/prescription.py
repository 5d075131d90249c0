from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text
from sqlalchemy.orm import relationship
import uuid

from ..core.database import Base

class PrescriptionRecord(Base):
    """One saved encounter note with its medications. Never updated in place."""
    __tablename__ = "prescription_records"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=False, index=True)
    patient_id = Column(String(64), nullable=False, index=True)
    author_id = Column(String(64), nullable=False)

    notes = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False)

    appointment = relationship("Appointment", back_populates="records")
    medications = relationship(
        "Medication",
        back_populates="record",
        order_by="Medication.position",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<PrescriptionRecord(id={self.id}, appointment_id={self.appointment_id})>"

class Medication(Base):
    __tablename__ = "prescription_medications"

    id = Column(Integer, primary_key=True, index=True)
    record_id = Column(String(36), ForeignKey("prescription_records.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)

    name = Column(String(255), nullable=False)
    dosage = Column(String(100), nullable=False)
    frequency = Column(String(100), nullable=False)
    duration = Column(String(100), nullable=False)
    instructions = Column(String(255), nullable=False)

    record = relationship("PrescriptionRecord", back_populates="medications")

    def __repr__(self):
        return f"<Medication(name='{self.name}', dosage='{self.dosage}')>"
