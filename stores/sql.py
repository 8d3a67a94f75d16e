"""
SQLAlchemy-backed contact store
Runs every reconciliation inside one AsyncSession transaction. On PostgreSQL
the transaction takes advisory locks on the request's identity fragments and
row locks on every contact it reads, so conflicting requests are applied one
after the other across processes. Other dialects serialize on one store-wide lock.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database import DatabaseManager, db_manager
from exceptions import ConsistencyViolation, StorageError
from models.base import utcnow
from models.contact import Contact, LinkPrecedence
from schemas.contact import ContactRecord, NewContact
from stores.base import (
    ContactStore,
    ContactTransaction,
    check_link,
    check_new_contact,
    order_family,
)
from stores.locks import KeyedLock, advisory_lock_id, fragment_lock_keys

logger = logging.getLogger(__name__)


class SQLContactTransaction(ContactTransaction):
    """Contact operations bound to one open session"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _records(self, stmt) -> List[ContactRecord]:
        # Bulk updates bypass the identity map; reload rows it already holds
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return [ContactRecord.model_validate(row) for row in result.scalars().all()]

    async def find_by_identity_fragment(
        self,
        owner_scope: str,
        email: Optional[str] = None,
        phone_number: Optional[str] = None
    ) -> List[ContactRecord]:
        conditions = []
        if email:
            conditions.append(Contact.email == email)
        if phone_number:
            conditions.append(Contact.phone_number == phone_number)
        if not conditions:
            return []

        # FOR UPDATE is dropped by dialects without row locks (SQLite)
        stmt = (
            select(Contact)
            .where(
                Contact.owner_scope == owner_scope,
                or_(*conditions),
                Contact.deleted_at.is_(None)
            )
            .order_by(Contact.created_at, Contact.id)
            .with_for_update()
        )
        return await self._records(stmt)

    async def find_family(self, primary_id: int) -> List[ContactRecord]:
        stmt = (
            select(Contact)
            .where(
                or_(Contact.id == primary_id, Contact.linked_id == primary_id),
                Contact.deleted_at.is_(None)
            )
            .order_by(Contact.created_at, Contact.id)
            .with_for_update()
        )
        members = await self._records(stmt)
        primary = next((c for c in members if c.id == primary_id), None)
        if primary is None:
            return []
        return order_family(primary, members)

    async def get(self, contact_id: int) -> Optional[ContactRecord]:
        stmt = select(Contact).where(
            Contact.id == contact_id,
            Contact.deleted_at.is_(None)
        ).with_for_update()
        records = await self._records(stmt)
        return records[0] if records else None

    async def create(self, contact: NewContact) -> ContactRecord:
        check_new_contact(contact)
        now = utcnow()
        row = Contact(
            owner_scope=contact.owner_scope,
            email=contact.email,
            phone_number=contact.phone_number,
            linked_id=contact.linked_id,
            link_precedence=contact.link_precedence.value,
            created_at=now,
            updated_at=now
        )
        self.session.add(row)
        await self.session.flush()  # Get the ID
        return ContactRecord.model_validate(row)

    async def update_precedence(
        self,
        contact_id: int,
        precedence: LinkPrecedence,
        linked_id: Optional[int] = None
    ) -> None:
        check_link(precedence, linked_id)
        stmt = (
            update(Contact)
            .where(Contact.id == contact_id, Contact.deleted_at.is_(None))
            .values(
                link_precedence=precedence.value,
                linked_id=linked_id,
                updated_at=utcnow()
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            raise ConsistencyViolation(
                f"contact {contact_id} vanished during reconciliation",
                details={"contact_id": contact_id}
            )


class SQLContactStore(ContactStore):
    """
    Contact store over the relational `contacts` table

    On PostgreSQL transactions are serialized per fragment key: in-process
    locks, then pg_advisory_xact_lock for every process sharing the database,
    then row locks on every contact read. Other dialects (SQLite) read outside
    the write lock and ignore FOR UPDATE, so their transactions take one
    store-wide lock instead.
    """

    def __init__(self, database: Optional[DatabaseManager] = None):
        self.database = database or db_manager
        self._local_locks = KeyedLock()
        self._store_lock = asyncio.Lock()

    @property
    def uses_advisory_locks(self) -> bool:
        return self.database.engine.dialect.name == "postgresql"

    @asynccontextmanager
    async def _serialized(self, keys: List[str]) -> AsyncIterator[None]:
        if self.uses_advisory_locks:
            async with self._local_locks.hold(keys):
                yield
        else:
            async with self._store_lock:
                yield

    @asynccontextmanager
    async def transaction(
        self,
        owner_scope: str,
        email: Optional[str] = None,
        phone_number: Optional[str] = None
    ) -> AsyncIterator[SQLContactTransaction]:
        keys = fragment_lock_keys(owner_scope, email, phone_number)
        async with self._serialized(keys):
            session = self.database.session_factory()
            try:
                async with session.begin():
                    if self.uses_advisory_locks:
                        for key in keys:
                            await session.execute(
                                select(func.pg_advisory_xact_lock(advisory_lock_id(key)))
                            )
                    yield SQLContactTransaction(session)
            except (SQLAlchemyError, OSError) as e:
                logger.error(f"Contact store transaction failed for owner {owner_scope}: {e}")
                raise StorageError(
                    "contact store transaction failed",
                    details={"cause": type(e).__name__, "error": str(e)}
                ) from e
            finally:
                await session.close()

    async def ping(self) -> bool:
        return await self.database.test_connection()

    async def close(self):
        await self.database.dispose()
