"""
Key/value stores holding the records a migration pass operates on.

Example:
    >>> from temporalfix.stores import InMemoryKeyValueStore
    >>>
    >>> store = InMemoryKeyValueStore({"note-1": '{"createdAt": "15/01/2025"}'})
"""

from temporalfix.stores.in_memory import InMemoryKeyValueStore
from temporalfix.stores.interface import KeyValueStore
from temporalfix.stores.sql import SQLAlchemyKeyValueStore
from temporalfix.stores.sqlite import SQLiteKeyValueStore

__all__ = [
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "SQLAlchemyKeyValueStore",
    "SQLiteKeyValueStore",
]
