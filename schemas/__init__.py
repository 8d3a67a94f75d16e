"""
Pydantic schemas for Identity Reconciliation API
Contains request/response models, data validation schemas and the
contact snapshots passed between stores and the engine.
"""

from .contact import ContactRecord, NewContact
from .identify import (
    IdentifyRequest,
    IdentifyResponse,
    ErrorDetail,
    ErrorResponse
)

# Export all schemas for easy importing
__all__ = [
    "ContactRecord",
    "NewContact",
    "IdentifyRequest",
    "IdentifyResponse",
    "ErrorDetail",
    "ErrorResponse"
]
