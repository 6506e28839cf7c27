"""
esante_db/models.py

Table layout of the durable store.
The whole application state is a handful of keys ("users", "patients",
"appointments", ...) each holding one JSON document, so a single
key/value table is enough.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StoreEntry(Base):
    __tablename__ = "store_entries"

    key = Column(String, primary_key=True)

    # serialized JSON document, written whole on every set
    value = Column(Text, nullable=False)

    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<StoreEntry {self.key} ({len(self.value or '')} chars)>"
