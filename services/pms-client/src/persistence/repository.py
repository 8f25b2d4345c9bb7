"""Client state data access helpers."""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from persistence.models import ClientStateEntry


class ClientStateRepository:
    """Thin repository that encapsulates persistence operations."""

    def __init__(self, db: Session):
        self._db = db

    def get_value(self, key: str) -> Any | None:
        record = self._db.get(ClientStateEntry, key)
        return None if record is None else record.value

    def set_value(self, key: str, value: Any) -> ClientStateEntry:
        record = self._db.get(ClientStateEntry, key)
        if record is None:
            record = ClientStateEntry(key=key, value=value)
        else:
            record.value = value
        self._db.add(record)
        self._db.commit()
        self._db.refresh(record)
        return record

    def delete_value(self, key: str) -> bool:
        record = self._db.get(ClientStateEntry, key)
        if record is None:
            return False
        self._db.delete(record)
        self._db.commit()
        return True
