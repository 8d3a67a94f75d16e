"""
Identity Service - Core business logic for identity reconciliation
Handles contact matching, family merges, linking of new information and
response building. Works against any ContactStore backend.
"""

import asyncio
import logging
from typing import Iterable, List, Optional

from config import settings
from exceptions import ConsistencyViolation, StorageError, ValidationError
from models.contact import LinkPrecedence
from schemas.contact import ContactRecord, NewContact
from schemas.identify import IdentifyResponse
from stores import ContactStore, ContactTransaction, get_contact_store
from stores.base import order_family

logger = logging.getLogger(__name__)


def _unique(values: Iterable[Optional[str]]) -> List[str]:
    """Non-null values, first occurrence wins"""
    seen = set()
    result = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result


class IdentityService:
    """
    Core service for identity reconciliation logic
    Handles all business rules for linking customer contacts

    Stateless between calls: everything it knows comes from the store,
    read and written inside one transaction per request.
    """

    def __init__(self, store: ContactStore, timeout: Optional[float] = None):
        self.store = store
        self.timeout = settings.TRANSACTION_TIMEOUT if timeout is None else timeout

    async def reconcile(
        self,
        owner_scope: str,
        email: Optional[str] = None,
        phone_number: Optional[str] = None
    ) -> IdentifyResponse:
        """
        Main orchestration method for identity reconciliation

        Algorithm:
        1. Find existing contacts matching email or phone
        2. If no matches -> create new primary contact
        3. If matches span several families -> earliest primary survives,
           the others and their secondaries are re-linked to it
        4. If the request carries new information -> create one secondary
        5. Return consolidated contact information
        """
        email = email or None
        phone_number = phone_number or None
        if email is None and phone_number is None:
            raise ValidationError("missing identity fragment")
        if not owner_scope:
            raise ValidationError("missing owner scope")

        try:
            return await asyncio.wait_for(
                self._reconcile(owner_scope, email, phone_number),
                timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Reconciliation for owner {owner_scope} timed out after {self.timeout}s")
            raise StorageError(
                "reconciliation timed out",
                details={"timeout": self.timeout}
            ) from e

    async def _reconcile(
        self,
        owner_scope: str,
        email: Optional[str],
        phone_number: Optional[str]
    ) -> IdentifyResponse:
        async with self.store.transaction(owner_scope, email, phone_number) as tx:
            # Step 1: Find related contacts
            matches = await tx.find_by_identity_fragment(owner_scope, email, phone_number)

            if not matches:
                # Step 2: No matches - create new primary contact
                primary = await tx.create(NewContact(
                    owner_scope=owner_scope,
                    email=email,
                    phone_number=phone_number
                ))
                logger.info(f"Created primary contact {primary.id} for owner {owner_scope}")
                family = [primary]
            else:
                # Step 3: Merge every matched family into the earliest one
                heads = await self._resolve_family_heads(tx, matches)
                primary = await self._merge_families(tx, heads)

                # Step 4: Attach whatever the family does not know yet
                family = await tx.find_family(primary.id)
                secondary = await self._attach_new_information(
                    tx, primary, family, email, phone_number
                )
                if secondary is not None:
                    family.append(secondary)

            self._verify_family(primary, family)

        # Step 5: Return consolidated response
        return self._build_consolidated_response(primary, family)

    async def _family_head(
        self,
        tx: ContactTransaction,
        contact: ContactRecord
    ) -> ContactRecord:
        """Follow linked_id from a matched contact to its family primary"""
        head = contact
        visited = {head.id}
        while not head.is_primary:
            parent = await tx.get(head.linked_id)
            if parent is None:
                raise ConsistencyViolation(
                    f"contact {head.id} links to missing contact {head.linked_id}",
                    details={"contact_id": head.id, "linked_id": head.linked_id}
                )
            if parent.id in visited:
                raise ConsistencyViolation(
                    f"link cycle through contact {parent.id}",
                    details={"contact_id": contact.id}
                )
            visited.add(parent.id)
            head = parent
        return head

    async def _resolve_family_heads(
        self,
        tx: ContactTransaction,
        matches: List[ContactRecord]
    ) -> List[ContactRecord]:
        """
        Distinct primaries of every family touched by the matches,
        earliest first
        """
        heads = {}
        for contact in matches:
            head = await self._family_head(tx, contact)
            heads[head.id] = head
        return sorted(heads.values(), key=lambda c: c.sort_key)

    async def _merge_families(
        self,
        tx: ContactTransaction,
        heads: List[ContactRecord]
    ) -> ContactRecord:
        """
        Demote every head but the earliest and re-point its whole family
        at the survivor, so no secondary is left linking to a secondary
        """
        survivor = heads[0]
        for head in heads[1:]:
            members = await tx.find_family(head.id)
            await tx.update_precedence(head.id, LinkPrecedence.SECONDARY, survivor.id)
            for member in members:
                if member.id != head.id:
                    await tx.update_precedence(member.id, LinkPrecedence.SECONDARY, survivor.id)
            logger.info(
                f"Merged family of contact {head.id} into {survivor.id} "
                f"({len(members) - 1} secondaries re-pointed)"
            )
        return survivor

    async def _attach_new_information(
        self,
        tx: ContactTransaction,
        primary: ContactRecord,
        family: List[ContactRecord],
        email: Optional[str],
        phone_number: Optional[str]
    ) -> Optional[ContactRecord]:
        """
        Create one secondary carrying only the fragments the family lacks
        """
        known_emails = {c.email for c in family if c.email}
        known_phones = {c.phone_number for c in family if c.phone_number}

        new_email = email if email and email not in known_emails else None
        new_phone = phone_number if phone_number and phone_number not in known_phones else None
        if new_email is None and new_phone is None:
            return None

        secondary = await tx.create(NewContact(
            owner_scope=primary.owner_scope,
            email=new_email,
            phone_number=new_phone,
            linked_id=primary.id,
            link_precedence=LinkPrecedence.SECONDARY
        ))
        logger.info(f"Linked new secondary contact {secondary.id} to primary {primary.id}")
        return secondary

    def _verify_family(self, primary: ContactRecord, family: List[ContactRecord]):
        """Raise ConsistencyViolation unless family is one primary plus direct secondaries"""
        if not family or family[0].id != primary.id:
            raise ConsistencyViolation(
                f"family of contact {primary.id} could not be loaded",
                details={"primary_id": primary.id}
            )
        for contact in family:
            if contact.id == primary.id:
                if not contact.is_primary:
                    raise ConsistencyViolation(
                        f"surviving contact {primary.id} is not primary",
                        details={"primary_id": primary.id}
                    )
            elif contact.is_primary or contact.linked_id != primary.id:
                raise ConsistencyViolation(
                    f"contact {contact.id} is not a direct secondary of {primary.id}",
                    details={"primary_id": primary.id, "contact_id": contact.id}
                )

    def _build_consolidated_response(
        self,
        primary: ContactRecord,
        family: List[ContactRecord]
    ) -> IdentifyResponse:
        """
        Build the consolidated response with all contact information
        Primary contact info appears first, the rest in creation order
        """
        ordered = order_family(primary, family)
        return IdentifyResponse(
            primaryContactId=primary.id,
            emails=_unique(c.email for c in ordered),
            phoneNumbers=_unique(c.phone_number for c in ordered),
            secondaryContactIds=[c.id for c in ordered[1:]]
        )


# Process-wide service, built on first use
_identity_service: Optional[IdentityService] = None


def get_identity_service() -> IdentityService:
    """Dependency provider for the configured IdentityService"""
    global _identity_service
    if _identity_service is None:
        _identity_service = IdentityService(get_contact_store())
    return _identity_service
