from fastapi import APIRouter, Depends
from typing import List, Optional

from ...api.deps import (
    get_current_actor, get_patient_actor, get_doctor_actor, get_booking_engine,
    get_lifecycle_controller, get_ledger, get_record_linker, ensure_session_owner
)
from ...core.exceptions import ValidationError
from ...core.security import Actor, AuthorizationError, UserRole
from ...models.appointment import Appointment, AppointmentStatus
from ...schemas.appointment import AppointmentCancel, AppointmentCreate, AppointmentResponse
from ...schemas.prescription import (
    EncounterRecordCreate, EncounterRecordSaved, PrescriptionRecordResponse
)
from ...services.booking_service import BookingEngine
from ...services.clinical_records import ClinicalRecordLinker
from ...services.ledger_service import AppointmentLedger
from ...services.session_service import SessionLifecycleController

router = APIRouter(prefix="/appointments", tags=["Appointments"])

def _provider_of(appointment: Appointment, controller: SessionLifecycleController) -> str:
    return controller.get_session(appointment.session_id).provider_id

def _ensure_can_view(
    actor: Actor,
    appointment: Appointment,
    controller: SessionLifecycleController
) -> None:
    if actor.is_admin or actor.id == appointment.patient_id:
        return
    if actor.role == UserRole.DOCTOR and actor.id == _provider_of(appointment, controller):
        return
    raise AuthorizationError("Not allowed to view this appointment")

@router.post("", response_model=AppointmentResponse, status_code=201)
def book_appointment(
    booking: AppointmentCreate,
    actor: Actor = Depends(get_patient_actor),
    engine: BookingEngine = Depends(get_booking_engine)
):
    """Reserve a slot in a session."""
    patient_id = actor.id
    if booking.patient_id and booking.patient_id != actor.id:
        if not actor.is_admin:
            raise AuthorizationError("Patients can only book for themselves")
        patient_id = booking.patient_id
    elif actor.is_admin and not booking.patient_id:
        raise AuthorizationError("Admins must name the patient for a booking")

    appointment = engine.book_appointment(booking.session_id, patient_id)
    return AppointmentResponse.model_validate(appointment)

@router.get("", response_model=List[AppointmentResponse])
def list_appointments(
    patient_id: Optional[str] = None,
    provider_id: Optional[str] = None,
    status: Optional[AppointmentStatus] = None,
    actor: Actor = Depends(get_current_actor),
    ledger: AppointmentLedger = Depends(get_ledger)
):
    """Patients see their own appointments, doctors those on their sessions."""
    if patient_id and provider_id:
        raise ValidationError(
            "Filter by patient_id or provider_id, not both",
            patient_id=patient_id,
            provider_id=provider_id
        )

    if actor.role == UserRole.PATIENT:
        appointments = ledger.list_by_patient(actor.id, status=status)
    elif actor.role == UserRole.DOCTOR:
        appointments = ledger.list_by_provider(actor.id, status=status)
    elif patient_id:
        appointments = ledger.list_by_patient(patient_id, status=status)
    elif provider_id:
        appointments = ledger.list_by_provider(provider_id, status=status)
    else:
        raise AuthorizationError("Admins must filter by patient_id or provider_id")

    return [AppointmentResponse.model_validate(a) for a in appointments]

@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: str,
    actor: Actor = Depends(get_current_actor),
    ledger: AppointmentLedger = Depends(get_ledger),
    controller: SessionLifecycleController = Depends(get_lifecycle_controller)
):
    appointment = ledger.get(appointment_id)
    _ensure_can_view(actor, appointment, controller)
    return AppointmentResponse.model_validate(appointment)

@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: str,
    cancel_data: Optional[AppointmentCancel] = None,
    actor: Actor = Depends(get_current_actor),
    engine: BookingEngine = Depends(get_booking_engine),
    ledger: AppointmentLedger = Depends(get_ledger),
    controller: SessionLifecycleController = Depends(get_lifecycle_controller)
):
    """Cancel a booking and free its slot."""
    appointment = ledger.get(appointment_id)
    provider_authorized = actor.is_admin or (
        actor.role == UserRole.DOCTOR and actor.id == _provider_of(appointment, controller)
    )
    reason = cancel_data.reason if cancel_data else None

    cancelled = engine.cancel_appointment(
        appointment_id,
        actor.id,
        provider_authorized=provider_authorized,
        reason=reason
    )
    return AppointmentResponse.model_validate(cancelled)

@router.post("/{appointment_id}/complete", response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: str,
    actor: Actor = Depends(get_doctor_actor),
    engine: BookingEngine = Depends(get_booking_engine),
    ledger: AppointmentLedger = Depends(get_ledger),
    controller: SessionLifecycleController = Depends(get_lifecycle_controller)
):
    """Mark the encounter as done. The session must have started."""
    ensure_session_owner(actor, _provider_of(ledger.get(appointment_id), controller))
    return AppointmentResponse.model_validate(engine.mark_completed(appointment_id))

@router.post("/{appointment_id}/records", response_model=EncounterRecordSaved, status_code=201)
def save_encounter_record(
    appointment_id: str,
    record_data: EncounterRecordCreate,
    actor: Actor = Depends(get_doctor_actor),
    engine: BookingEngine = Depends(get_booking_engine),
    linker: ClinicalRecordLinker = Depends(get_record_linker),
    ledger: AppointmentLedger = Depends(get_ledger),
    controller: SessionLifecycleController = Depends(get_lifecycle_controller)
):
    """Append notes and medications; optionally complete the appointment after."""
    ensure_session_owner(actor, _provider_of(ledger.get(appointment_id), controller))

    # Refuse up front so a rejected completion leaves no record behind
    if record_data.complete_appointment:
        engine.check_completable(appointment_id, record_pending=True)

    record_id = linker.save_encounter_record(
        appointment_id,
        author_id=actor.id,
        notes=record_data.notes,
        medications=record_data.medications
    )

    if record_data.complete_appointment:
        appointment = engine.mark_completed(appointment_id)
    else:
        appointment = ledger.get(appointment_id)

    return EncounterRecordSaved(
        record_id=record_id,
        appointment_id=appointment_id,
        appointment_status=appointment.status.value
    )

@router.get("/{appointment_id}/records", response_model=List[PrescriptionRecordResponse])
def list_appointment_records(
    appointment_id: str,
    actor: Actor = Depends(get_current_actor),
    linker: ClinicalRecordLinker = Depends(get_record_linker),
    ledger: AppointmentLedger = Depends(get_ledger),
    controller: SessionLifecycleController = Depends(get_lifecycle_controller)
):
    _ensure_can_view(actor, ledger.get(appointment_id), controller)
    records = linker.list_records_for_appointment(appointment_id)
    return [PrescriptionRecordResponse.model_validate(r) for r in records]
