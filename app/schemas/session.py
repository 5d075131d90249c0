from pydantic import BaseModel, ConfigDict, Field
import datetime as dt
from typing import Optional

from ..models.session import SessionStatus

class SessionCreate(BaseModel):
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    capacity: int = Field(..., description="Maximum simultaneous reservations")
    provider_id: Optional[str] = Field(
        None, description="Admins publish on behalf of a provider; doctors publish their own"
    )

class SessionCancel(BaseModel):
    reason: Optional[str] = None

class SessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    provider_id: str
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    capacity: int
    booked_count: int
    remaining_capacity: int
    status: SessionStatus
    created_at: Optional[dt.datetime] = None
    started_at: Optional[dt.datetime] = None
    completed_at: Optional[dt.datetime] = None
    cancelled_at: Optional[dt.datetime] = None
    cancellation_reason: Optional[str] = None
