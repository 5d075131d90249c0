from .session import ClinicSession, SessionStatus
from .appointment import Appointment, AppointmentStatus
from .prescription import PrescriptionRecord, Medication

__all__ = [
    "ClinicSession",
    "SessionStatus",
    "Appointment",
    "AppointmentStatus",
    "PrescriptionRecord",
    "Medication",
]
