from sqlalchemy import Column, Integer, String, Date, Time, DateTime, Index, CheckConstraint, Enum as SQLEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
import uuid

from ..core.database import Base

class SessionStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    STARTED = "STARTED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

class ClinicSession(Base):
    """A provider-published, capacity-bounded time window."""
    __tablename__ = "sessions"
    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_sessions_capacity_positive"),
        CheckConstraint(
            "booked_count >= 0 AND booked_count <= capacity",
            name="ck_sessions_booked_within_capacity"
        ),
        Index("ix_sessions_provider_date", "provider_id", "date"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    provider_id = Column(String(64), nullable=False, index=True)

    # Time window
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    # Capacity accounting
    capacity = Column(Integer, nullable=False)
    booked_count = Column(Integer, nullable=False, default=0)

    status = Column(SQLEnum(SessionStatus), nullable=False, default=SessionStatus.SCHEDULED)

    # Tracking
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(String(255), nullable=True)

    appointments = relationship("Appointment", back_populates="session")

    @property
    def remaining_capacity(self) -> int:
        return self.capacity - self.booked_count

    def __repr__(self):
        return f"<ClinicSession(id={self.id}, provider_id={self.provider_id}, date='{self.date}', status='{self.status}')>"
