"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest
from sqlalchemy import select

from database import DatabaseManager
from models import Contact
from models.contact import LinkPrecedence
from schemas.contact import ContactRecord, NewContact
from services.identity_service import IdentityService
from stores.memory import InMemoryContactStore
from stores.sql import SQLContactStore

OWNER = "tenant-1"


class TickingClock:
    """Deterministic clock advancing one second per reading."""

    def __init__(self, start: Optional[datetime] = None, step: timedelta = timedelta(seconds=1)):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture
async def database(tmp_path):
    """SQLite database file with the schema created."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'contacts.db'}", echo=False)
    await manager.create_tables()
    yield manager
    await manager.drop_tables()
    await manager.dispose()


@pytest.fixture
def memory_store():
    return InMemoryContactStore(clock=TickingClock())


@pytest.fixture
def sql_store(database):
    return SQLContactStore(database)


@pytest.fixture(params=["memory", "sql"])
async def store(request, tmp_path):
    """Every contact store backend."""
    if request.param == "memory":
        yield InMemoryContactStore(clock=TickingClock())
        return
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'contacts.db'}", echo=False)
    await manager.create_tables()
    yield SQLContactStore(manager)
    await manager.dispose()


@pytest.fixture
def service(store):
    return IdentityService(store, timeout=5)


async def seed(
    store,
    email: Optional[str] = None,
    phone_number: Optional[str] = None,
    linked_to: Optional[ContactRecord] = None,
    owner_scope: str = OWNER,
) -> ContactRecord:
    """Insert one contact directly through a store transaction."""
    contact = NewContact(
        owner_scope=owner_scope,
        email=email,
        phone_number=phone_number,
        linked_id=linked_to.id if linked_to else None,
        link_precedence=LinkPrecedence.SECONDARY if linked_to else LinkPrecedence.PRIMARY,
    )
    async with store.transaction(owner_scope, email, phone_number) as tx:
        return await tx.create(contact)


async def stored_contacts(store) -> List[ContactRecord]:
    """Every live contact in the store, in id order."""
    if isinstance(store, InMemoryContactStore):
        return store.contacts()
    async with store.database.get_session() as session:
        result = await session.execute(
            select(Contact).where(Contact.deleted_at.is_(None)).order_by(Contact.id)
        )
        return [ContactRecord.model_validate(row) for row in result.scalars().all()]


def assert_graph_invariants(contacts: List[ContactRecord]):
    """One primary per family, every secondary linked straight to it."""
    by_id = {c.id: c for c in contacts}
    for contact in contacts:
        assert contact.email or contact.phone_number
        if contact.is_primary:
            assert contact.linked_id is None
        else:
            assert contact.linked_id in by_id
            assert by_id[contact.linked_id].is_primary, (
                f"contact {contact.id} links to secondary {contact.linked_id}"
            )
