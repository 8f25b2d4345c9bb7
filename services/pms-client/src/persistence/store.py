"""
Key/value store for client-local state.

Two adapters share the `ClientStateStore` protocol: an in-memory dict for tests
and short-lived processes, and a SQLAlchemy-backed store that survives restarts.
Values must be JSON-serialisable.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime
from typing import Any, Dict, Protocol

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from persistence.database import get_engine, init_db, make_session_factory
from persistence.repository import ClientStateRepository

logger = logging.getLogger(__name__)

PROCESSING_FLAG_PREFIX = "pmsProcessing:"


class ClientStateStore(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryClientStateStore:
    def __init__(self, initial: Dict[str, Any] | None = None) -> None:
        self._values: Dict[str, Any] = copy.deepcopy(initial or {})

    def get(self, key: str) -> Any | None:
        return copy.deepcopy(self._values.get(key))

    def set(self, key: str, value: Any) -> None:
        self._values[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        self._values.pop(key, None)


class SqlClientStateStore:
    def __init__(self, engine: Engine | None = None, *, create_tables: bool = True) -> None:
        engine = engine or get_engine()
        self._session_factory: sessionmaker[Session] = make_session_factory(engine)
        if create_tables:
            init_db(engine)

    def get(self, key: str) -> Any | None:
        with self._session_factory() as session:
            return ClientStateRepository(session).get_value(key)

    def set(self, key: str, value: Any) -> None:
        with self._session_factory() as session:
            ClientStateRepository(session).set_value(key, value)
        logger.debug({"event": "client_state_saved", "key": key})

    def delete(self, key: str) -> None:
        with self._session_factory() as session:
            removed = ClientStateRepository(session).delete_value(key)
        if removed:
            logger.debug({"event": "client_state_deleted", "key": key})


def processing_flag_key(domain: str) -> str:
    return f"{PROCESSING_FLAG_PREFIX}{domain}"


def mark_processing(store: ClientStateStore, domain: str, at: datetime) -> None:
    store.set(processing_flag_key(domain), at.isoformat())


def clear_processing(store: ClientStateStore, domain: str) -> None:
    store.delete(processing_flag_key(domain))


def is_processing(store: ClientStateStore, domain: str) -> bool:
    return bool(store.get(processing_flag_key(domain)))
