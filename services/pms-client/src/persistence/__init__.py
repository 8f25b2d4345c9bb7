"""Persistence primitives for client-local state."""

from persistence.database import (
    create_state_engine,
    get_database_url,
    get_engine,
    init_db,
    make_session_factory,
)
from persistence.models import Base, ClientStateEntry
from persistence.store import (
    PROCESSING_FLAG_PREFIX,
    ClientStateStore,
    InMemoryClientStateStore,
    SqlClientStateStore,
    clear_processing,
    is_processing,
    mark_processing,
    processing_flag_key,
)

__all__ = [
    "Base",
    "ClientStateEntry",
    "ClientStateStore",
    "InMemoryClientStateStore",
    "PROCESSING_FLAG_PREFIX",
    "SqlClientStateStore",
    "clear_processing",
    "create_state_engine",
    "get_database_url",
    "get_engine",
    "init_db",
    "is_processing",
    "make_session_factory",
    "mark_processing",
    "processing_flag_key",
]
