"""
Business logic services for Identity Reconciliation API
Contains the identity reconciliation engine used by the API layer.
"""

from .identity_service import IdentityService, get_identity_service

# Export all services for easy importing
__all__ = [
    "IdentityService",
    "get_identity_service"
]
