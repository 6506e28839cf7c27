"""
esante_db/service.py

Public API used by the application shell and screens.

    db = await open_database()
    patients = await db.patients.list()
    await db.appointments.change_status("2", "completed")

EsanteDatabase is the only persistence surface: callers never talk to the
StoreAdapter directly for entity collections.
"""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional

from esante_db import settings
from esante_db.queries import DashboardStats, dashboard_stats, upcoming_appointments
from esante_db.repository import (
    AppointmentRepository,
    MedicalRecordRepository,
    PatientRepository,
    TreatmentRepository,
    UserRepository,
)
from esante_db.schemas import Appointment
from esante_db.seed import SeedReport, initialize_database
from esante_db.session import SessionContext
from esante_db.store import (
    JsonFileBackend,
    KeyValueBackend,
    MemoryBackend,
    SQLBackend,
    StoreAdapter,
)

logger = logging.getLogger(__name__)


class EsanteDatabase:
    def __init__(self, adapter: StoreAdapter, serialize_writes: bool = settings.SERIALIZE_WRITES) -> None:
        self.adapter = adapter
        self.users = UserRepository(adapter, serialize_writes)
        self.patients = PatientRepository(adapter, serialize_writes)
        self.appointments = AppointmentRepository(adapter, self.patients, serialize_writes)
        self.treatments = TreatmentRepository(adapter, self.patients, serialize_writes)
        self.medical_records = MedicalRecordRepository(adapter, self.patients, serialize_writes)
        self.session = SessionContext(adapter, self.users)

    def repository(self, collection: str):
        """Repository by store key ("patients", "medicalRecords", ...)."""
        by_key = {
            r.key: r
            for r in [self.users, self.patients, self.appointments, self.treatments, self.medical_records]
        }
        if collection not in by_key:
            raise KeyError(f"Unknown collection: {collection}")
        return by_key[collection]

    async def initialize(self) -> SeedReport:
        return await initialize_database(self.adapter)

    async def dashboard(self, today: Optional[date] = None, upcoming_limit: int = 3) -> Dict[str, object]:
        today = today or date.today()
        patients = await self.patients.list()
        appointments = await self.appointments.list()
        treatments = await self.treatments.list()

        stats: DashboardStats = dashboard_stats(patients, appointments, treatments, today)
        upcoming: List[Appointment] = upcoming_appointments(appointments, today, upcoming_limit)
        return {
            "current_user": await self.session.current_user(),
            "stats": stats,
            "upcoming": upcoming,
        }


def build_backend(
    kind: Optional[str] = None,
    create_tables: bool = False,
) -> KeyValueBackend:
    kind = (kind or settings.STORE_BACKEND).lower()
    if kind == "memory":
        return MemoryBackend()
    if kind == "json":
        return JsonFileBackend(Path(settings.JSON_STORE_DIR))
    if kind == "sql":
        if create_tables:
            from esante_db.relational import init_db
            init_db()
        return SQLBackend()
    raise ValueError(f"Unknown store backend: {kind!r} (expected sql, json or memory)")


async def open_database(
    backend: Optional[KeyValueBackend] = None,
    serialize_writes: bool = settings.SERIALIZE_WRITES,
) -> EsanteDatabase:
    """
    Start-up routine: build the store, seed it on first run and hand back the
    database. A failed seed is logged; the database is returned regardless.
    """
    if backend is None:
        backend = build_backend(create_tables=True)
    db = EsanteDatabase(StoreAdapter(backend), serialize_writes=serialize_writes)
    report = await db.initialize()
    if not report.ok:
        logger.error("Initialization problem: %s", report.error or report.failed_keys)
    return db
