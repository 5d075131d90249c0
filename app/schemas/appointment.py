from pydantic import BaseModel, ConfigDict
import datetime as dt
from typing import Optional

from ..models.appointment import AppointmentStatus

class AppointmentCreate(BaseModel):
    session_id: str
    # Admins may book on behalf of a patient
    patient_id: Optional[str] = None

class AppointmentCancel(BaseModel):
    reason: Optional[str] = None

class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    session_id: str
    patient_id: str
    booked_at: dt.datetime
    status: AppointmentStatus
    session_date: Optional[dt.date] = None
    session_start_time: Optional[dt.time] = None
    completed_at: Optional[dt.datetime] = None
    cancelled_at: Optional[dt.datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
