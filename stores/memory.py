"""
In-memory contact store
Keeps contacts as immutable ContactRecord snapshots in a process-local dict.
Used for tests and single-process deployments without a database; every
transaction runs under one store-wide lock and rolls back by snapshot.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Dict, List, Optional

from exceptions import ConsistencyViolation
from models.base import utcnow
from models.contact import LinkPrecedence
from schemas.contact import ContactRecord, NewContact
from stores.base import (
    ContactStore,
    ContactTransaction,
    check_link,
    check_new_contact,
    order_family,
)


class InMemoryContactTransaction(ContactTransaction):
    """
    Contact operations over the store dict

    Writes replace records in place; the owning store restores its snapshot
    if the transaction body raises.
    """

    def __init__(self, store: "InMemoryContactStore"):
        self.store = store

    def _live(self) -> List[ContactRecord]:
        return [c for c in self.store._rows.values() if c.deleted_at is None]

    async def find_by_identity_fragment(
        self,
        owner_scope: str,
        email: Optional[str] = None,
        phone_number: Optional[str] = None
    ) -> List[ContactRecord]:
        if not email and not phone_number:
            return []
        matches = [
            c for c in self._live()
            if c.owner_scope == owner_scope and (
                (email and c.email == email) or
                (phone_number and c.phone_number == phone_number)
            )
        ]
        return sorted(matches, key=lambda c: c.sort_key)

    async def find_family(self, primary_id: int) -> List[ContactRecord]:
        primary = await self.get(primary_id)
        if primary is None:
            return []
        members = [c for c in self._live() if c.linked_id == primary_id]
        return order_family(primary, members)

    async def get(self, contact_id: int) -> Optional[ContactRecord]:
        contact = self.store._rows.get(contact_id)
        if contact is None or contact.deleted_at is not None:
            return None
        return contact

    async def create(self, contact: NewContact) -> ContactRecord:
        check_new_contact(contact)
        now = self.store.clock()
        record = ContactRecord(
            id=self.store._next_id,
            created_at=now,
            updated_at=now,
            **contact.model_dump()
        )
        self.store._rows[record.id] = record
        self.store._next_id += 1
        return record

    async def update_precedence(
        self,
        contact_id: int,
        precedence: LinkPrecedence,
        linked_id: Optional[int] = None
    ) -> None:
        check_link(precedence, linked_id)
        contact = await self.get(contact_id)
        if contact is None:
            raise ConsistencyViolation(
                f"contact {contact_id} vanished during reconciliation",
                details={"contact_id": contact_id}
            )
        self.store._rows[contact_id] = contact.model_copy(update={
            "link_precedence": precedence,
            "linked_id": linked_id,
            "updated_at": self.store.clock(),
        })


class InMemoryContactStore(ContactStore):
    """
    Process-local contact store

    Records are immutable snapshots replaced on write, so a transaction rolls
    back by restoring the dict it started from. One store-wide lock
    serializes transactions.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self._rows: Dict[int, ContactRecord] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(
        self,
        owner_scope: str,
        email: Optional[str] = None,
        phone_number: Optional[str] = None
    ) -> AsyncIterator[InMemoryContactTransaction]:
        async with self._lock:
            rows, next_id = dict(self._rows), self._next_id
            try:
                yield InMemoryContactTransaction(self)
            except BaseException:
                self._rows, self._next_id = rows, next_id
                raise

    def contacts(self, include_deleted: bool = False) -> List[ContactRecord]:
        """Every stored contact in id order"""
        return [
            c for _, c in sorted(self._rows.items())
            if include_deleted or c.deleted_at is None
        ]

    def soft_delete(self, contact_id: int):
        """Administrative soft delete; hides the contact from reconciliation"""
        contact = self._rows[contact_id]
        self._rows[contact_id] = contact.model_copy(update={"deleted_at": self.clock()})
