from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from typing import List, Optional

from ...api.deps import (
    get_current_actor, get_doctor_actor, get_lifecycle_controller, get_ledger,
    get_profile_store, ensure_session_owner
)
from ...core.security import Actor, AuthorizationError, UserRole
from ...models.appointment import AppointmentStatus
from ...models.session import SessionStatus
from ...schemas.appointment import AppointmentResponse
from ...schemas.session import SessionCancel, SessionCreate, SessionResponse
from ...services.ledger_service import AppointmentLedger
from ...services.profile_store import specialty_matches
from ...services.session_service import SessionLifecycleController

router = APIRouter(prefix="/sessions", tags=["Sessions"])

# Handlers that take session locks are plain functions so they run in the
# threadpool instead of blocking the event loop.

@router.post("", response_model=SessionResponse, status_code=201)
def create_session(
    session_data: SessionCreate,
    actor: Actor = Depends(get_doctor_actor),
    controller: SessionLifecycleController = Depends(get_lifecycle_controller)
):
    """Publish a bookable session."""
    provider_id = actor.id
    if session_data.provider_id and session_data.provider_id != actor.id:
        if not actor.is_admin:
            raise AuthorizationError("Doctors can only publish their own sessions")
        provider_id = session_data.provider_id
    elif actor.is_admin and not session_data.provider_id:
        raise AuthorizationError("Admins must name the provider for a session")

    clinic_session = controller.create_session(
        provider_id=provider_id,
        session_date=session_data.date,
        start_time=session_data.start_time,
        end_time=session_data.end_time,
        capacity=session_data.capacity
    )
    return SessionResponse.model_validate(clinic_session)

@router.get("", response_model=List[SessionResponse])
def list_sessions(
    provider_id: Optional[str] = None,
    status: Optional[SessionStatus] = None,
    actor: Actor = Depends(get_current_actor),
    controller: SessionLifecycleController = Depends(get_lifecycle_controller)
):
    """List a provider's sessions. Doctors default to their own."""
    if provider_id is None:
        if actor.role != UserRole.DOCTOR:
            raise AuthorizationError("provider_id is required")
        provider_id = actor.id

    sessions = controller.list_sessions_by_provider(provider_id, status=status)
    return [SessionResponse.model_validate(s) for s in sessions]

@router.get("/available/{provider_id}", response_model=List[SessionResponse])
async def list_available_sessions(
    provider_id: str,
    specialty: Optional[str] = None,
    _: Actor = Depends(get_current_actor),
    controller: SessionLifecycleController = Depends(get_lifecycle_controller),
    profile_store = Depends(get_profile_store)
):
    """Sessions a patient can book now, optionally filtered by provider specialty."""
    if specialty:
        capabilities = await profile_store.get_provider_capabilities(provider_id)
        if not specialty_matches(capabilities, specialty):
            return []

    sessions = await run_in_threadpool(controller.list_available_sessions, provider_id)
    return [SessionResponse.model_validate(s) for s in sessions]

@router.get("/{session_id}", response_model=SessionResponse)
def get_session(
    session_id: str,
    _: Actor = Depends(get_current_actor),
    controller: SessionLifecycleController = Depends(get_lifecycle_controller)
):
    return SessionResponse.model_validate(controller.get_session(session_id))

@router.post("/{session_id}/start", response_model=SessionResponse)
def start_session(
    session_id: str,
    actor: Actor = Depends(get_doctor_actor),
    controller: SessionLifecycleController = Depends(get_lifecycle_controller)
):
    ensure_session_owner(actor, controller.get_session(session_id).provider_id)
    return SessionResponse.model_validate(controller.start_session(session_id))

@router.post("/{session_id}/complete", response_model=SessionResponse)
def complete_session(
    session_id: str,
    actor: Actor = Depends(get_doctor_actor),
    controller: SessionLifecycleController = Depends(get_lifecycle_controller)
):
    ensure_session_owner(actor, controller.get_session(session_id).provider_id)
    return SessionResponse.model_validate(controller.complete_session(session_id))

@router.post("/{session_id}/cancel", response_model=SessionResponse)
def cancel_session(
    session_id: str,
    cancel_data: Optional[SessionCancel] = None,
    actor: Actor = Depends(get_doctor_actor),
    controller: SessionLifecycleController = Depends(get_lifecycle_controller)
):
    """Cancel the session together with all of its booked appointments."""
    ensure_session_owner(actor, controller.get_session(session_id).provider_id)
    reason = cancel_data.reason if cancel_data else None
    return SessionResponse.model_validate(controller.cancel_session(session_id, reason=reason))

@router.get("/{session_id}/appointments", response_model=List[AppointmentResponse])
def list_session_appointments(
    session_id: str,
    status: Optional[AppointmentStatus] = None,
    actor: Actor = Depends(get_doctor_actor),
    controller: SessionLifecycleController = Depends(get_lifecycle_controller),
    ledger: AppointmentLedger = Depends(get_ledger)
):
    """Every appointment on the session, oldest booking first."""
    ensure_session_owner(actor, controller.get_session(session_id).provider_id)
    appointments = ledger.list_by_session(session_id, status=status)
    return [AppointmentResponse.model_validate(a) for a in appointments]
