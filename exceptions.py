"""
Error taxonomy for identity reconciliation
Raised by the contact stores and the reconciliation engine, translated
into HTTP responses by the exception handlers in main.py
"""

from typing import Any, Dict, Optional


class ReconciliationError(Exception):
    """Base class for all reconciliation failures"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(ReconciliationError):
    """
    Bad or missing input. Raised before storage is touched; the caller
    recovers by correcting the request.
    """


class StorageError(ReconciliationError):
    """
    Transaction failure, timeout or lost connectivity. The transaction has
    been rolled back. Not retried internally.
    """


class ConsistencyViolation(ReconciliationError):
    """
    A contact graph invariant does not hold inside a transaction, e.g. two
    primaries left in one family after a merge. Fatal to the request.
    """
