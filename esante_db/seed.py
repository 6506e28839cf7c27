"""
esante_db/seed.py

Goals of this file:
1) create the tables (init_db) when the SQL store is used
2) populate a fresh store with a small default dataset, exactly once

How to run:
python -m esante_db.seed
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from esante_db.security import hash_password
from esante_db.store import (
    APPOINTMENTS,
    MEDICAL_RECORDS,
    PATIENTS,
    TREATMENTS,
    USERS,
    StoreAdapter,
)

logger = logging.getLogger(__name__)

DOCTOR_ID = "1"
DOCTOR_NAME = "Dr. Martin Dubois"


@dataclass
class SeedReport:
    skipped: bool = False
    written: Dict[str, int] = field(default_factory=dict)
    failed_keys: List[str] = field(default_factory=list)
    reason: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.failed_keys and self.error is None


def default_data(now: Optional[datetime] = None) -> Dict[str, List[Dict[str, Any]]]:
    """
    Default rows (synthetic, not real people).
    Passwords are hashed here, so every call produces new salts.
    """
    created = (now or datetime.now(timezone.utc)).isoformat()

    users = [
        {
            "id": DOCTOR_ID,
            "email": "admin@esante.com",
            "passwordHash": hash_password("admin123"),
            "name": DOCTOR_NAME,
            "role": "doctor",
            "phone": "0123456789",
            "speciality": "Médecine générale",
            "createdAt": created,
        },
        {
            "id": "2",
            "email": "user@esante.com",
            "passwordHash": hash_password("user123"),
            "name": "Jean Dupont",
            "role": "patient",
            "phone": "0987654321",
            "createdAt": created,
        },
        {
            "id": "3",
            "email": "sophie.laurent@esante.com",
            "passwordHash": hash_password("doctor123"),
            "name": "Dr. Sophie Laurent",
            "role": "doctor",
            "phone": "0147258369",
            "speciality": "Cardiologie",
            "createdAt": created,
        },
    ]

    patients = [
        {
            "id": "1",
            "name": "Marie Durand",
            "email": "marie.durand@email.com",
            "phone": "0123456789",
            "dateOfBirth": "1985-03-15",
            "address": "123 Rue de la Santé, Paris",
            "bloodType": "A+",
            "allergies": ["Pénicilline"],
            "emergencyContact": {"name": "Pierre Durand", "phone": "0987654321", "relation": "Époux"},
            "medicalHistory": ["Hypertension"],
            "doctorId": DOCTOR_ID,
            "createdAt": created,
        },
        {
            "id": "2",
            "name": "Paul Martin",
            "email": "paul.martin@email.com",
            "phone": "0234567890",
            "dateOfBirth": "1978-07-22",
            "address": "456 Avenue de la Paix, Lyon",
            "bloodType": "O-",
            "allergies": [],
            "emergencyContact": {"name": "Sophie Martin", "phone": "0876543210", "relation": "Épouse"},
            "medicalHistory": ["Pontage coronarien (2022)"],
            "doctorId": DOCTOR_ID,
            "createdAt": created,
        },
        {
            "id": "3",
            "name": "Claire Rousseau",
            "email": "claire.rousseau@email.com",
            "phone": "0345678901",
            "dateOfBirth": "1992-11-08",
            "address": "789 Boulevard du Bien-être, Marseille",
            "bloodType": "B+",
            "allergies": ["Aspirine", "Pollen"],
            "emergencyContact": {"name": "Marc Rousseau", "phone": "0765432109", "relation": "Frère"},
            "medicalHistory": [],
            "doctorId": DOCTOR_ID,
            "createdAt": created,
        },
    ]

    def linked(patient: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "patientId": patient["id"],
            "patientName": patient["name"],
            "doctorId": DOCTOR_ID,
            "doctorName": DOCTOR_NAME,
        }

    marie, paul, claire = patients

    appointments = [
        {"id": "1", **linked(marie), "date": "2024-01-15", "time": "09:00",
         "type": "Consultation générale", "status": "completed",
         "notes": "Contrôle de routine", "createdAt": created},
        {"id": "2", **linked(paul), "date": "2024-01-16", "time": "14:30",
         "type": "Suivi cardiologique", "status": "scheduled",
         "notes": "Suivi post-opératoire", "createdAt": created},
        {"id": "3", **linked(claire), "date": "2024-01-17", "time": "11:15",
         "type": "Consultation dermatologique", "status": "scheduled",
         "notes": "Examen de grain de beauté", "createdAt": created},
        {"id": "4", **linked(marie), "date": "2024-02-02", "time": "10:00",
         "type": "Suivi tension", "status": "cancelled", "createdAt": created},
    ]

    treatments = [
        {"id": "1", **linked(marie), "medication": "Paracétamol 500mg",
         "dosage": "1 comprimé", "frequency": "3 fois par jour", "duration": "7 jours",
         "instructions": "À prendre après les repas", "status": "actif",
         "startDate": "2024-01-10", "endDate": "2024-01-17", "createdAt": created},
        {"id": "2", **linked(paul), "medication": "Lisinopril 10mg",
         "dosage": "1 comprimé", "frequency": "1 fois par jour", "duration": "30 jours",
         "instructions": "À prendre le matin à jeun", "status": "actif",
         "startDate": "2024-01-05", "endDate": "2024-02-05", "createdAt": created},
        {"id": "3", **linked(marie), "medication": "Amoxicilline 1g",
         "dosage": "1 comprimé", "frequency": "2 fois par jour", "duration": "10 jours",
         "instructions": "À prendre avec un grand verre d'eau", "status": "terminé",
         "startDate": "2023-12-15", "endDate": "2023-12-25", "createdAt": created},
    ]

    medical_records = [
        {"id": "1", **linked(marie), "date": "2024-01-15", "type": "consultation",
         "title": "Contrôle annuel", "description": "Examen général sans particularité.",
         "diagnosis": "Tension bien contrôlée", "createdAt": created},
        {"id": "2", **linked(paul), "date": "2023-11-20", "type": "surgery",
         "title": "Pontage coronarien", "description": "Suivi post-opératoire à 2 mois.",
         "treatment": "Lisinopril 10mg", "createdAt": created},
        {"id": "3", **linked(claire), "date": "2023-12-05", "type": "test",
         "title": "Bilan sanguin", "description": "NFS et bilan lipidique.",
         "attachments": ["bilan_2023-12-05.pdf"], "createdAt": created},
        {"id": "4", **linked(marie), "date": "2023-10-10", "type": "vaccination",
         "title": "Vaccin grippe saisonnière", "description": "Dose annuelle.",
         "createdAt": created},
    ]

    return {
        USERS: users,
        PATIENTS: patients,
        APPOINTMENTS: appointments,
        TREATMENTS: treatments,
        MEDICAL_RECORDS: medical_records,
    }


async def initialize_database(adapter: StoreAdapter) -> SeedReport:
    """
    Write the default collections if ``users`` has never been written.

    Check-then-act is not atomic: two first runs racing each other can both
    write. Any later run is a no-op.
    """
    report = SeedReport()

    existing = await adapter.read(USERS)
    if not existing.ok:
        # unreadable store: writing defaults could clobber real data
        report.skipped = True
        report.reason = "store unreadable"
        report.error = existing.reason
        logger.error("Seed skipped, users collection unreadable (%s)", existing.reason)
        return report

    if existing.value is not None:
        report.skipped = True
        report.reason = "already seeded"
        logger.debug("Store already has users. Skipping seed.")
        return report

    data = default_data()
    for key in [PATIENTS, APPOINTMENTS, TREATMENTS, MEDICAL_RECORDS]:
        result = await adapter.set(key, data[key])
        if result.ok:
            report.written[key] = len(data[key])
        else:
            report.failed_keys.append(key)

    # users is the "already seeded" marker: only written once everything else is
    if report.failed_keys:
        logger.error("Seed incomplete, failed keys: %s. Will retry on next start.", ", ".join(report.failed_keys))
        return report

    result = await adapter.set(USERS, data[USERS])
    if not result.ok:
        report.failed_keys.append(USERS)
        logger.error("Seed incomplete, users not written. Will retry on next start.")
        return report

    report.written[USERS] = len(data[USERS])
    logger.info("Seed completed: %s", report.written)
    return report


if __name__ == "__main__":
    from esante_db.service import build_backend
    from esante_db.settings import LOG_FORMAT, LOG_LEVEL

    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)

    # 1) create the tables (only matters for the SQL store)
    # 2) insert the default rows
    adapter = StoreAdapter(build_backend(create_tables=True))
    result = asyncio.run(initialize_database(adapter))
    if result.skipped:
        print(f"Store already initialized ({result.reason}). Skipping seed.")
    else:
        print(f"Seed completed: {result.written}")
