from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import List

from ..core.config import settings
from ..core.database import get_db, get_redis
from ..core.security import (
    security, verify_token, AuthenticationError,
    AuthorizationError, UserRole, TokenPayload, Actor
)
from ..services.booking_service import BookingEngine
from ..services.clinical_records import ClinicalRecordLinker
from ..services.ledger_service import AppointmentLedger
from ..services.profile_store import HttpProfileStore, StaticProfileStore
from ..services.session_locks import build_session_locks
from ..services.session_service import SessionLifecycleController

_session_locks = None

async def get_current_user_token(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> TokenPayload:
    """Extract and verify JWT token from Authorization header."""
    token = credentials.credentials

    # Verify token
    token_payload = verify_token(token)
    if not token_payload:
        raise AuthenticationError("Invalid or expired token")

    # Check if token is access token
    if token_payload.token_type != "access":
        raise AuthenticationError("Invalid token type")

    return token_payload

async def get_current_actor(
    token_payload: TokenPayload = Depends(get_current_user_token)
) -> Actor:
    """Resolve the caller's identity and role from the token."""
    if not token_payload.sub or not token_payload.role:
        raise AuthenticationError("Invalid token payload")

    try:
        role = UserRole(token_payload.role)
    except ValueError:
        raise AuthenticationError("Unknown role in token")

    return Actor(id=token_payload.sub, role=role)

# Role-based access control dependencies
def require_role(allowed_roles: List[UserRole]):
    """Create a dependency that requires specific user roles."""
    async def role_checker(
        actor: Actor = Depends(get_current_actor)
    ) -> Actor:
        if actor.role not in allowed_roles:
            raise AuthorizationError(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return actor

    return role_checker

# Specific role dependencies
async def get_doctor_actor(
    actor: Actor = Depends(require_role([UserRole.DOCTOR, UserRole.ADMIN]))
) -> Actor:
    """Require doctor or admin role."""
    return actor

async def get_patient_actor(
    actor: Actor = Depends(require_role([UserRole.PATIENT, UserRole.ADMIN]))
) -> Actor:
    """Require patient or admin role."""
    return actor

# Scheduling services
def get_session_locks():
    """Process-wide lock backend, shared by every request."""
    global _session_locks
    if _session_locks is None:
        redis_client = get_redis() if settings.SESSION_LOCK_BACKEND == "redis" else None
        _session_locks = build_session_locks(settings, redis_client)
    return _session_locks

def get_booking_engine(
    db: Session = Depends(get_db),
    locks = Depends(get_session_locks)
) -> BookingEngine:
    return BookingEngine(db, locks)

def get_lifecycle_controller(
    db: Session = Depends(get_db),
    locks = Depends(get_session_locks)
) -> SessionLifecycleController:
    return SessionLifecycleController(db, locks)

def get_ledger(db: Session = Depends(get_db)) -> AppointmentLedger:
    return AppointmentLedger(db)

def get_record_linker(db: Session = Depends(get_db)) -> ClinicalRecordLinker:
    return ClinicalRecordLinker(db)

def get_profile_store():
    if settings.PROFILE_SERVICE_URL:
        return HttpProfileStore(settings.PROFILE_SERVICE_URL)
    return StaticProfileStore()

# Ownership checks shared by the routers
def ensure_session_owner(actor: Actor, provider_id: str) -> None:
    """Doctors may only manage their own sessions; admins manage any."""
    if actor.is_admin:
        return
    if actor.role != UserRole.DOCTOR or actor.id != provider_id:
        raise AuthorizationError("Only the session's provider may manage it")
