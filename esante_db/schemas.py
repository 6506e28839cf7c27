"""
esante_db/schemas.py

Entity contract for everything stored in the collections.

Documents are stored with camelCase keys (patientId, createdAt, ...) while
Python code uses snake_case attributes; both spellings are accepted on input.
"""

from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel


Role = Literal["doctor", "patient"]
AppointmentStatus = Literal["scheduled", "completed", "cancelled", "no-show"]
TreatmentStatus = Literal["actif", "terminé", "suspendu"]
RecordType = Literal["consultation", "examination", "surgery", "test", "vaccination"]

# Allowed status changes (current -> targets). Missing key = terminal state.
APPOINTMENT_TRANSITIONS: Dict[str, set] = {
    "scheduled": {"completed", "cancelled", "no-show"},
}
TREATMENT_TRANSITIONS: Dict[str, set] = {
    "actif": {"suspendu", "terminé"},
    "suspendu": {"actif"},
}


class StoredModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_document(self) -> Dict[str, Any]:
        """JSON-ready dict with stored (camelCase) keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Entity(StoredModel):
    id: str
    created_at: dt.datetime


def _blank_to_none(v):
    if isinstance(v, str) and not v.strip():
        return None
    return v


def field_aliases(model: type) -> Dict[str, str]:
    """Map python attribute name -> stored key for ``model``."""
    return {name: (info.alias or name) for name, info in model.model_fields.items()}


def to_stored_keys(model: type, data: Dict[str, Any]) -> Dict[str, Any]:
    """Rename snake_case keys of ``data`` to the stored spelling; unknown keys pass through."""
    aliases = field_aliases(model)
    return {aliases.get(k, k): v for k, v in data.items()}


# -------------------------
# Users
# -------------------------
class PublicUser(Entity):
    """A user as shown to the application: never carries the password hash."""
    name: str
    email: str
    phone: str = ""
    role: Role
    speciality: Optional[str] = None
    date_of_birth: Optional[dt.date] = None
    address: Optional[str] = None

    @field_validator("date_of_birth", mode="before")
    @classmethod
    def blank_date_to_none(cls, v):
        return _blank_to_none(v)


class User(PublicUser):
    password_hash: str = Field(..., repr=False)

    def public(self) -> PublicUser:
        return PublicUser.model_validate(self.model_dump(exclude={"password_hash", "password"}))


# -------------------------
# Patients
# -------------------------
class EmergencyContact(StoredModel):
    name: str = ""
    phone: str = ""
    relation: str = ""


class Patient(Entity):
    name: str
    email: str = ""
    phone: str = ""
    date_of_birth: Optional[dt.date] = None
    address: str = ""
    blood_type: str = ""
    allergies: List[str] = Field(default_factory=list)
    emergency_contact: EmergencyContact = Field(default_factory=EmergencyContact)
    medical_history: List[str] = Field(default_factory=list)
    doctor_id: Optional[str] = None

    @field_validator("date_of_birth", mode="before")
    @classmethod
    def blank_date_to_none(cls, v):
        return _blank_to_none(v)

    @field_validator("allergies", "medical_history", mode="before")
    @classmethod
    def split_legacy_list(cls, v):
        # older rows kept these as one comma separated string
        if isinstance(v, str):
            return [x.strip() for x in v.split(",") if x.strip()]
        if v is None:
            return []
        return v

    @field_validator("emergency_contact", mode="before")
    @classmethod
    def parse_legacy_contact(cls, v):
        # older rows: "Pierre Durand - 0987654321"
        if isinstance(v, str):
            name, _, phone = v.partition(" - ")
            return {"name": name.strip(), "phone": phone.strip()}
        if v is None:
            return {}
        return v


# -------------------------
# Entries linked to a patient
# -------------------------
class PatientLinked(Entity):
    patient_id: str
    # snapshot of Patient.name when the entry was created or last edited
    patient_name: str = ""
    doctor_id: Optional[str] = None
    doctor_name: str = ""


class Appointment(PatientLinked):
    date: dt.date
    time: dt.time
    type: str = ""
    status: AppointmentStatus = "scheduled"
    notes: Optional[str] = None
    symptoms: Optional[str] = None
    diagnosis: Optional[str] = None

    @field_serializer("time")
    def serialize_time(self, value: dt.time) -> str:
        if value.second or value.microsecond:
            return value.isoformat()
        return value.strftime("%H:%M")

    def starts_at(self) -> dt.datetime:
        return dt.datetime.combine(self.date, self.time)


class Treatment(PatientLinked):
    medication: str
    dosage: str = ""
    frequency: str = ""
    duration: str = ""
    instructions: str = ""
    status: TreatmentStatus = "actif"
    start_date: dt.date
    end_date: Optional[dt.date] = None

    @field_validator("end_date", mode="before")
    @classmethod
    def blank_date_to_none(cls, v):
        return _blank_to_none(v)


class MedicalRecord(PatientLinked):
    date: dt.date
    type: RecordType
    title: str
    description: str = ""
    diagnosis: Optional[str] = None
    treatment: Optional[str] = None
    attachments: List[str] = Field(default_factory=list)
