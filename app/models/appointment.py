from sqlalchemy import Column, String, ForeignKey, Date, Time, DateTime, Index, Enum as SQLEnum, text
from sqlalchemy.orm import relationship
import enum
import uuid

from ..core.database import Base

class AppointmentStatus(str, enum.Enum):
    BOOKED = "BOOKED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # One active reservation per patient per session
        Index(
            "uq_appointments_active_patient_session",
            "session_id",
            "patient_id",
            unique=True,
            sqlite_where=text("status = 'BOOKED'"),
            postgresql_where=text("status = 'BOOKED'"),
        ),
        Index("ix_appointments_session_booked_at", "session_id", "booked_at"),
        Index("ix_appointments_patient_booked_at", "patient_id", "booked_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Relationships
    session_id = Column(String(36), ForeignKey("sessions.id"), nullable=False)
    patient_id = Column(String(64), nullable=False)

    booked_at = Column(DateTime, nullable=False)
    status = Column(SQLEnum(AppointmentStatus), nullable=False, default=AppointmentStatus.BOOKED)

    # Display cache; the session owns scheduling data
    session_date = Column(Date, nullable=True)
    session_start_time = Column(Time, nullable=True)

    # Tracking
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by = Column(String(64), nullable=True)
    cancellation_reason = Column(String(255), nullable=True)

    session = relationship("ClinicSession", back_populates="appointments")
    records = relationship("PrescriptionRecord", back_populates="appointment")

    def __repr__(self):
        return f"<Appointment(id={self.id}, session_id={self.session_id}, patient_id={self.patient_id}, status='{self.status}')>"
