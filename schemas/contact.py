"""
Contact snapshots exchanged between the contact stores and the engine
"""

from datetime import datetime, timezone
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator

from models.contact import LinkPrecedence


class NewContact(BaseModel):
    """Fields the engine supplies when asking a store to create a contact"""
    owner_scope: str
    email: Optional[str] = None
    phone_number: Optional[str] = None
    linked_id: Optional[int] = None
    link_precedence: LinkPrecedence = LinkPrecedence.PRIMARY


class ContactRecord(BaseModel):
    """
    Immutable view of a stored contact

    Built from ORM rows with ContactRecord.model_validate(row). Timestamps
    are normalized to timezone-aware UTC so records from any backend compare.
    """
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    owner_scope: str
    email: Optional[str] = None
    phone_number: Optional[str] = None
    linked_id: Optional[int] = None
    link_precedence: LinkPrecedence
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at", "deleted_at")
    @classmethod
    def _as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def is_primary(self) -> bool:
        return self.link_precedence == LinkPrecedence.PRIMARY

    @property
    def is_secondary(self) -> bool:
        return self.link_precedence == LinkPrecedence.SECONDARY

    @property
    def sort_key(self) -> Tuple[datetime, int]:
        """Earliest wins: created_at ascending, then id ascending"""
        return (self.created_at, self.id)
