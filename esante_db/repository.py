"""
esante_db/repository.py

Typed list / add / update over one named collection, built only on the
StoreAdapter. Every operation reads the whole collection, changes it in
memory and writes the whole collection back.

Without ``serialize_writes`` two overlapping read-modify-write cycles on the
same collection can lose one of the changes (last write wins). With it,
add/update on a collection run one at a time under that collection's lock.
"""

from __future__ import annotations

import logging
import time
from contextlib import nullcontext
from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from esante_db.errors import (
    DuplicateEmail,
    EntityNotFound,
    InvalidEntity,
    InvalidStatusTransition,
    Outcome,
    PersistenceError,
    StorageUnavailable,
)
from esante_db.schemas import (
    APPOINTMENT_TRANSITIONS,
    TREATMENT_TRANSITIONS,
    Appointment,
    Entity,
    MedicalRecord,
    Patient,
    PatientLinked,
    Treatment,
    User,
    to_stored_keys,
)
from esante_db.security import hash_password, verify_password
from esante_db.store import (
    APPOINTMENTS,
    MEDICAL_RECORDS,
    PATIENTS,
    TREATMENTS,
    USERS,
    StoreAdapter,
)

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Entity)
L = TypeVar("L", bound=PatientLinked)

# set once by add, never changed afterwards
IMMUTABLE_KEYS = ("id", "createdAt")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_dict(data: Any) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(exclude_unset=True)
    return dict(data)


class CollectionRepository(Generic[E]):
    def __init__(
        self,
        adapter: StoreAdapter,
        key: str,
        model: Type[E],
        serialize_writes: bool = False,
    ) -> None:
        self.adapter = adapter
        self.key = key
        self.model = model
        self.serialize_writes = serialize_writes

    def _write_guard(self):
        if self.serialize_writes:
            return self.adapter.lock_for(self.key)
        return nullcontext()

    # -------------------------
    # Raw rows
    # -------------------------
    async def _load_rows(self) -> List[Any]:
        rows = await self.adapter.get(self.key)
        if not isinstance(rows, list):
            logger.error("%s is not a list (%s), treating it as empty", self.key, type(rows).__name__)
            return []
        return rows

    def _parse(self, row: Any) -> Optional[E]:
        try:
            return self.model.model_validate(row)
        except ValidationError as e:
            row_id = row.get("id") if isinstance(row, dict) else None
            logger.warning("Skipping invalid %s row id=%s: %s", self.key, row_id, e)
            return None

    @staticmethod
    def _index_of(rows: List[Any], entity_id: str) -> Optional[int]:
        for i, row in enumerate(rows):
            if isinstance(row, dict) and str(row.get("id")) == str(entity_id):
                return i
        return None

    @staticmethod
    def _new_id(rows: List[Any]) -> str:
        """
        Wall-clock milliseconds. Bumped past ids already in ``rows``;
        two adds racing in the same millisecond can still collide.
        """
        token = time.time_ns() // 1_000_000
        existing = {str(r.get("id")) for r in rows if isinstance(r, dict)}
        while str(token) in existing:
            token += 1
        return str(token)

    def _clean_changes(self, data: Any) -> Dict[str, Any]:
        fields = to_stored_keys(self.model, as_dict(data))
        dropped = [k for k in IMMUTABLE_KEYS if k in fields]
        for k in dropped:
            fields.pop(k)
        if dropped:
            logger.debug("Ignoring immutable keys %s for %s", dropped, self.key)
        return fields

    async def _rows_for_write(self) -> Outcome[List[Any]]:
        """
        Rows a write will replace. Unlike ``_load_rows`` an unreadable or
        non-list value is a failure: writing over it would lose the stored rows.
        """
        result = await self.adapter.read(self.key)
        if not result.ok:
            logger.error("Write to %s refused, collection unreadable", self.key)
            return Outcome.failure(result.error)
        rows = result.value if result.value is not None else []
        if not isinstance(rows, list):
            logger.error("Write to %s refused, stored value is a %s", self.key, type(rows).__name__)
            return Outcome.failure(StorageUnavailable(f"{self.key} is not a list"))
        return Outcome.success(rows)

    def _check(self, rows: List[Any], fields: Dict[str, Any], entity_id: Optional[str] = None) -> Optional[PersistenceError]:
        """Collection-wide constraints, run under the write guard. None when ``fields`` may be written."""
        return None

    # -------------------------
    # Public API
    # -------------------------
    async def list(self) -> List[E]:
        """Entries in stored order. Rows that fail validation are left out."""
        rows = await self._load_rows()
        return [e for e in (self._parse(r) for r in rows) if e is not None]

    async def get(self, entity_id: str) -> Optional[E]:
        rows = await self._load_rows()
        index = self._index_of(rows, entity_id)
        if index is None:
            return None
        return self._parse(rows[index])

    async def add(self, data: Any) -> Outcome[E]:
        fields = self._clean_changes(data)
        async with self._write_guard():
            loaded = await self._rows_for_write()
            if not loaded.ok:
                return Outcome.failure(loaded.error)
            rows = loaded.value
            problem = self._check(rows, fields)
            if problem is not None:
                return Outcome.failure(problem)
            try:
                entity = self.model.model_validate(
                    {**fields, "id": self._new_id(rows), "createdAt": _utcnow()}
                )
            except ValidationError as e:
                return Outcome.failure(InvalidEntity(self.key, e.errors(include_context=False)))
            rows.append(entity.to_document())
            saved = await self.adapter.set(self.key, rows)

        if not saved.ok:
            return Outcome.failure(saved.error)
        logger.info("Added %s id=%s", self.key, entity.id)
        return Outcome.success(entity)

    async def update(self, entity_id: str, changes: Any) -> Outcome[E]:
        """
        Shallow merge of ``changes`` into the entry with ``entity_id``.
        Unknown id -> EntityNotFound and nothing is written.
        """
        fields = self._clean_changes(changes)
        async with self._write_guard():
            loaded = await self._rows_for_write()
            if not loaded.ok:
                return Outcome.failure(loaded.error)
            rows = loaded.value
            index = self._index_of(rows, entity_id)
            if index is None:
                logger.warning("Update ignored, no %s with id=%s", self.key, entity_id)
                return Outcome.failure(EntityNotFound(self.key, entity_id))
            problem = self._check(rows, fields, str(entity_id))
            if problem is not None:
                return Outcome.failure(problem)
            try:
                entity = self.model.model_validate({**rows[index], **fields})
            except ValidationError as e:
                return Outcome.failure(InvalidEntity(self.key, e.errors(include_context=False)))
            doc = entity.to_document()
            # keep id/createdAt byte for byte as first written
            for k in IMMUTABLE_KEYS:
                if k in rows[index]:
                    doc[k] = rows[index][k]
            rows[index] = doc
            saved = await self.adapter.set(self.key, rows)

        if not saved.ok:
            return Outcome.failure(saved.error)
        return Outcome.success(entity)


# ============================================================
# Patients and entries that point at a patient
# ============================================================

class PatientRepository(CollectionRepository[Patient]):
    def __init__(self, adapter: StoreAdapter, serialize_writes: bool = False) -> None:
        super().__init__(adapter, PATIENTS, Patient, serialize_writes)


class PatientLinkedRepository(CollectionRepository[L]):
    """
    Appointments, treatments and medical records.

    ``add``/``update`` store exactly what they are given. The *_for_patient
    variants copy the patient's current name into patientName first; that
    copy is a snapshot and is not refreshed when the patient is renamed.
    """

    def __init__(
        self,
        adapter: StoreAdapter,
        key: str,
        model: Type[L],
        patients: PatientRepository,
        serialize_writes: bool = False,
    ) -> None:
        super().__init__(adapter, key, model, serialize_writes)
        self.patients = patients

    async def add_for_patient(self, patient_id: str, data: Any) -> Outcome[L]:
        patient = await self.patients.get(patient_id)
        if patient is None:
            return Outcome.failure(EntityNotFound(PATIENTS, patient_id))
        return await self.add({**as_dict(data), "patient_id": patient.id, "patient_name": patient.name})

    async def update_for_patient(self, entity_id: str, changes: Any) -> Outcome[L]:
        changes = to_stored_keys(self.model, as_dict(changes))
        patient_id = changes.get("patientId")
        if patient_id is None:
            current = await self.get(entity_id)
            if current is None:
                return Outcome.failure(EntityNotFound(self.key, entity_id))
            patient_id = current.patient_id
        patient = await self.patients.get(patient_id)
        if patient is None:
            return Outcome.failure(EntityNotFound(PATIENTS, patient_id))
        return await self.update(entity_id, {**changes, "patientId": patient.id, "patientName": patient.name})

    async def list_for_patient(self, patient_id: str) -> List[L]:
        return [e for e in await self.list() if e.patient_id == str(patient_id)]

    async def list_with_current_names(self) -> List[L]:
        """Entries with patientName joined from the patients collection at read time."""
        names = {p.id: p.name for p in await self.patients.list()}
        out = []
        for entry in await self.list():
            if entry.patient_id in names:
                entry = entry.model_copy(update={"patient_name": names[entry.patient_id]})
            out.append(entry)
        return out


class StatusTrackedRepository(PatientLinkedRepository[L]):
    # current status -> statuses it may move to
    transitions: Dict[str, set] = {}

    def can_transition(self, current: str, requested: str) -> bool:
        return requested in self.transitions.get(current, set())

    async def change_status(self, entity_id: str, status: str) -> Outcome[L]:
        loaded = await self._rows_for_write()
        if not loaded.ok:
            return Outcome.failure(loaded.error)
        index = self._index_of(loaded.value, entity_id)
        current = self._parse(loaded.value[index]) if index is not None else None
        if current is None:
            return Outcome.failure(EntityNotFound(self.key, entity_id))
        if not self.can_transition(current.status, status):
            return Outcome.failure(
                InvalidStatusTransition(self.key, entity_id, current.status, status)
            )
        return await self.update(entity_id, {"status": status})


class AppointmentRepository(StatusTrackedRepository[Appointment]):
    transitions = APPOINTMENT_TRANSITIONS

    def __init__(self, adapter: StoreAdapter, patients: PatientRepository, serialize_writes: bool = False) -> None:
        super().__init__(adapter, APPOINTMENTS, Appointment, patients, serialize_writes)


class TreatmentRepository(StatusTrackedRepository[Treatment]):
    transitions = TREATMENT_TRANSITIONS

    def __init__(self, adapter: StoreAdapter, patients: PatientRepository, serialize_writes: bool = False) -> None:
        super().__init__(adapter, TREATMENTS, Treatment, patients, serialize_writes)


class MedicalRecordRepository(PatientLinkedRepository[MedicalRecord]):
    def __init__(self, adapter: StoreAdapter, patients: PatientRepository, serialize_writes: bool = False) -> None:
        super().__init__(adapter, MEDICAL_RECORDS, MedicalRecord, patients, serialize_writes)


# ============================================================
# Users
# ============================================================

class UserRepository(CollectionRepository[User]):
    """
    Accepts a plaintext ``password`` on add/update and stores only its
    salted hash (passwordHash). Emails are unique, compared case-insensitively.
    """

    def __init__(self, adapter: StoreAdapter, serialize_writes: bool = False) -> None:
        super().__init__(adapter, USERS, User, serialize_writes)

    @staticmethod
    def _hash_plaintext(data: Dict[str, Any]) -> Dict[str, Any]:
        if "password" not in data:
            return data
        data = dict(data)
        data["password_hash"] = hash_password(data.pop("password"))
        return data

    @staticmethod
    def _same_email(a: Optional[str], b: Optional[str]) -> bool:
        return (a or "").strip().casefold() == (b or "").strip().casefold()

    def _check(self, rows: List[Any], fields: Dict[str, Any], entity_id: Optional[str] = None) -> Optional[PersistenceError]:
        email = fields.get("email")
        if email is None:
            return None
        for row in rows:
            if not isinstance(row, dict) or str(row.get("id")) == entity_id:
                continue
            if self._same_email(row.get("email"), email):
                return DuplicateEmail(email)
        return None

    async def find_by_email(self, email: str) -> Optional[User]:
        for user in await self.list():
            if self._same_email(user.email, email):
                return user
        return None

    async def add(self, data: Any) -> Outcome[User]:
        return await super().add(self._hash_plaintext(as_dict(data)))

    async def update(self, entity_id: str, changes: Any) -> Outcome[User]:
        return await super().update(entity_id, self._hash_plaintext(as_dict(changes)))

    async def register(self, data: Any) -> Outcome[User]:
        """Account creation from the sign-up form; same checks as ``add``."""
        return await self.add(data)

    async def authenticate(self, email: str, password: str) -> Optional[User]:
        user = await self.find_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            return None
        return user

    async def set_password(self, user_id: str, password: str) -> Outcome[User]:
        return await super().update(user_id, {"password_hash": hash_password(password)})
