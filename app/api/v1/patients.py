from fastapi import APIRouter, Depends
from typing import List

from ...api.deps import get_current_actor, get_record_linker
from ...core.security import Actor, AuthorizationError, UserRole
from ...schemas.prescription import PrescriptionRecordResponse
from ...services.clinical_records import ClinicalRecordLinker

router = APIRouter(prefix="/patients", tags=["Patients"])

@router.get("/{patient_id}/records", response_model=List[PrescriptionRecordResponse])
def list_patient_records(
    patient_id: str,
    actor: Actor = Depends(get_current_actor),
    linker: ClinicalRecordLinker = Depends(get_record_linker)
):
    """Prescription history for a patient, newest first."""
    if actor.role == UserRole.PATIENT and actor.id != patient_id:
        raise AuthorizationError("Patients can only read their own history")

    records = linker.list_records_for_patient(patient_id)
    return [PrescriptionRecordResponse.model_validate(r) for r in records]
