from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import List

class MedicationIn(BaseModel):
    name: str = Field(..., min_length=1)
    dosage: str = Field(..., min_length=1)
    frequency: str = Field(..., min_length=1)
    duration: str = "30 days"
    instructions: str = "Take as directed"

class MedicationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    dosage: str
    frequency: str
    duration: str
    instructions: str

class EncounterRecordCreate(BaseModel):
    notes: str
    medications: List[MedicationIn]
    complete_appointment: bool = False

class EncounterRecordSaved(BaseModel):
    record_id: str
    appointment_id: str
    appointment_status: str

class PrescriptionRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    appointment_id: str
    patient_id: str
    author_id: str
    notes: str
    created_at: datetime
    medications: List[MedicationResponse]
