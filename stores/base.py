"""
Contact store contract used by the reconciliation engine

A store hands out transactions; every read and write of one reconciliation
goes through a single ContactTransaction so that a merge or link is applied
completely or not at all.
"""

from abc import ABC, abstractmethod
from typing import AsyncContextManager, List, Optional

from exceptions import ConsistencyViolation, ValidationError
from models.contact import LinkPrecedence
from schemas.contact import ContactRecord, NewContact


class ContactTransaction(ABC):
    """Operations available inside one atomic store transaction"""

    @abstractmethod
    async def find_by_identity_fragment(
        self,
        owner_scope: str,
        email: Optional[str] = None,
        phone_number: Optional[str] = None
    ) -> List[ContactRecord]:
        """
        Contacts in owner_scope whose email or phone matches either input

        Includes primaries and secondaries, excludes soft-deleted rows,
        ordered by created_at then id.
        """

    @abstractmethod
    async def find_family(self, primary_id: int) -> List[ContactRecord]:
        """
        The primary followed by every non-deleted secondary linked to it,
        secondaries ordered by created_at then id
        """

    @abstractmethod
    async def get(self, contact_id: int) -> Optional[ContactRecord]:
        """Non-deleted contact by id"""

    @abstractmethod
    async def create(self, contact: NewContact) -> ContactRecord:
        """Insert a contact, assigning id and timestamps"""

    @abstractmethod
    async def update_precedence(
        self,
        contact_id: int,
        precedence: LinkPrecedence,
        linked_id: Optional[int] = None
    ) -> None:
        """Set link_precedence and linked_id together"""


class ContactStore(ABC):
    """Factory of transactions over one contact collection"""

    @abstractmethod
    def transaction(
        self,
        owner_scope: str,
        email: Optional[str] = None,
        phone_number: Optional[str] = None
    ) -> AsyncContextManager[ContactTransaction]:
        """
        Open a transaction serialized against every other transaction
        touching the same identity fragments in owner_scope

        Commits when the block exits normally, rolls back on any exception
        (cancellation included). Backend failures surface as StorageError.
        """

    async def ping(self) -> bool:
        """Whether the backing storage is reachable"""
        return True

    async def close(self):
        """Release backend resources"""


def check_new_contact(contact: NewContact):
    """Reject contacts that would break the identity or link invariants"""
    if contact.email is None and contact.phone_number is None:
        raise ValidationError(
            "missing identity fragment",
            details={"reason": "a contact needs an email or a phone number"}
        )
    check_link(contact.link_precedence, contact.linked_id)


def check_link(precedence: LinkPrecedence, linked_id: Optional[int]):
    if precedence == LinkPrecedence.PRIMARY and linked_id is not None:
        raise ConsistencyViolation("a primary contact cannot be linked")
    if precedence == LinkPrecedence.SECONDARY and linked_id is None:
        raise ConsistencyViolation("a secondary contact must link to its primary")


def order_family(primary: ContactRecord, members: List[ContactRecord]) -> List[ContactRecord]:
    """Primary first, then the secondaries earliest first"""
    secondaries = sorted(
        (c for c in members if c.id != primary.id),
        key=lambda c: c.sort_key
    )
    return [primary] + secondaries
