"""
Scheduling errors.

Every rejected scheduling operation raises one of these. They are
``HTTPException`` subclasses so routers can let them propagate unchanged;
the ``detail`` payload names the error and says whether the caller may
retry (against the same or a different session).
"""
from typing import Any, Dict, Optional
from fastapi import HTTPException, status


class SchedulingError(HTTPException):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "SchedulingError"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        headers: Optional[Dict[str, str]] = None,
        **context: Any
    ):
        self.message = message
        self.context = context
        super().__init__(
            status_code=self.status_code,
            detail={
                "error": self.code,
                "message": message,
                "retryable": self.retryable,
                **context,
            },
            headers=headers,
        )

    def __str__(self):
        return f"{self.code}: {self.message}"


# Taxonomy
class ValidationError(SchedulingError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "ValidationError"


class NotFoundError(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NotFound"


class ConflictError(SchedulingError):
    status_code = status.HTTP_409_CONFLICT
    code = "Conflict"


class ConcurrencyError(SchedulingError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "Concurrency"
    retryable = True


# Validation
class InvalidCapacity(ValidationError):
    code = "InvalidCapacity"


class InvalidTimeRange(ValidationError):
    code = "InvalidTimeRange"


class SessionInPast(ValidationError):
    code = "SessionInPast"


class InvalidRecord(ValidationError):
    code = "InvalidRecord"


# Not found
class SessionNotFound(NotFoundError):
    code = "SessionNotFound"

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found", session_id=session_id)


class AppointmentNotFound(NotFoundError):
    code = "AppointmentNotFound"

    def __init__(self, appointment_id: str):
        super().__init__(
            f"Appointment {appointment_id} not found",
            appointment_id=appointment_id
        )


# Conflicts
class SessionNotBookable(ConflictError):
    """The session no longer accepts bookings. Pick another session."""
    code = "SessionNotBookable"


class CapacityExceeded(ConflictError):
    """The slot just became full. Another session may still have room."""
    code = "CapacityExceeded"
    retryable = True


class DuplicateBooking(ConflictError):
    code = "DuplicateBooking"


class InvalidTransition(ConflictError):
    code = "InvalidTransition"


class AlreadyCancelled(ConflictError):
    code = "AlreadyCancelled"


class AlreadyCompleted(ConflictError):
    code = "AlreadyCompleted"


class RecordRequired(ConflictError):
    code = "RecordRequired"


class NotAuthorized(SchedulingError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "NotAuthorized"


class Busy(ConcurrencyError):
    code = "Busy"

    def __init__(self, session_id: str, retry_after: int = 1):
        super().__init__(
            f"Session {session_id} is busy, retry shortly",
            headers={"Retry-After": str(retry_after)},
            session_id=session_id,
        )
