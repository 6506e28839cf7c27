"""
esante_db/queries.py

Read-side helpers used by the dashboard and the list screens.
All functions are pure: they take entity lists and return new lists.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional

from esante_db.schemas import Appointment, MedicalRecord, Patient, Treatment

APPOINTMENT_VIEWS = ("all", "today", "upcoming", "completed")


@dataclass
class DashboardStats:
    patients: int
    appointments: int
    active_treatments: int
    today_appointments: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def _contains(haystack: Optional[str], needle: str) -> bool:
    return needle in (haystack or "").casefold()


def dashboard_stats(
    patients: List[Patient],
    appointments: List[Appointment],
    treatments: List[Treatment],
    today: date,
) -> DashboardStats:
    return DashboardStats(
        patients=len(patients),
        appointments=len(appointments),
        active_treatments=sum(1 for t in treatments if t.status == "actif"),
        today_appointments=sum(1 for a in appointments if a.date == today),
    )


def upcoming_appointments(appointments: List[Appointment], today: date, limit: int = 3) -> List[Appointment]:
    """Next appointments from ``today`` on, soonest first."""
    upcoming = [a for a in appointments if a.date >= today]
    upcoming.sort(key=lambda a: a.starts_at())
    return upcoming[:limit]


def search_patients(patients: List[Patient], query: str = "") -> List[Patient]:
    q = (query or "").strip().casefold()
    if not q:
        return list(patients)
    return [
        p for p in patients
        if _contains(p.name, q) or _contains(p.email, q) or q in (p.phone or "")
    ]


def filter_appointments(
    appointments: List[Appointment],
    view: str = "all",
    query: str = "",
    today: Optional[date] = None,
) -> List[Appointment]:
    """
    view: all | today | upcoming (from today, still scheduled) | completed.
    Result is sorted by date and time, latest first.
    """
    if view not in APPOINTMENT_VIEWS:
        raise ValueError(f"Unknown appointment view: {view!r}")
    today = today or date.today()

    out = list(appointments)
    q = (query or "").strip().casefold()
    if q:
        out = [a for a in out if _contains(a.patient_name, q) or _contains(a.type, q)]

    if view == "today":
        out = [a for a in out if a.date == today]
    elif view == "upcoming":
        out = [a for a in out if a.date >= today and a.status == "scheduled"]
    elif view == "completed":
        out = [a for a in out if a.status == "completed"]

    out.sort(key=lambda a: a.starts_at(), reverse=True)
    return out


def filter_treatments(treatments: List[Treatment], status: str = "all", query: str = "") -> List[Treatment]:
    out = list(treatments)
    q = (query or "").strip().casefold()
    if q:
        out = [t for t in out if _contains(t.patient_name, q) or _contains(t.medication, q)]
    if status != "all":
        out = [t for t in out if t.status == status]
    # newest first
    out.sort(key=lambda t: t.created_at, reverse=True)
    return out


def filter_records(records: List[MedicalRecord], record_type: str = "all", query: str = "") -> List[MedicalRecord]:
    out = list(records)
    q = (query or "").strip().casefold()
    if q:
        out = [
            r for r in out
            if _contains(r.patient_name, q) or _contains(r.title, q) or _contains(r.description, q)
        ]
    if record_type != "all":
        out = [r for r in out if r.type == record_type]
    out.sort(key=lambda r: r.date, reverse=True)
    return out


def count_by(items: Iterable, attribute: str) -> Dict[str, int]:
    """Counts per value of ``attribute`` plus an "all" total (filter badges)."""
    items = list(items)
    counts = Counter(str(getattr(i, attribute)) for i in items)
    return {"all": len(items), **counts}
