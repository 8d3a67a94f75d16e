"""
Contact store backends for Identity Reconciliation API
The engine only depends on the ContactStore contract; the backend is
chosen by settings.STORE_BACKEND.
"""

from typing import Optional

from config import settings
from .base import ContactStore, ContactTransaction
from .memory import InMemoryContactStore
from .sql import SQLContactStore


def get_contact_store(backend: Optional[str] = None) -> ContactStore:
    """Build the contact store named by backend (default: settings.STORE_BACKEND)"""
    backend = (backend or settings.STORE_BACKEND).lower()
    if backend == "sql":
        return SQLContactStore()
    if backend == "memory":
        return InMemoryContactStore()
    raise ValueError(f"Unknown contact store backend: {backend!r}")


__all__ = [
    "ContactStore",
    "ContactTransaction",
    "InMemoryContactStore",
    "SQLContactStore",
    "get_contact_store",
]
