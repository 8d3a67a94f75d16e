"""
Contact model for Identity Reconciliation API
This module defines the Contact database model for storing customer
contact information and managing identity linking relationships.
Supports primary/secondary contact hierarchy, owner scoping and soft delete.
"""

from enum import Enum

from sqlalchemy import Column, String, Integer, ForeignKey, Index, CheckConstraint

from .base import BaseModel


class LinkPrecedence(str, Enum):
    """Role of a contact within its family"""
    PRIMARY = "primary"
    SECONDARY = "secondary"


class Contact(BaseModel):
    """
    Contact model representing customer contact information

    Stores email and phone number data with linking relationships
    to support identity reconciliation. Each contact is either
    'primary' (head of its family) or 'secondary' (linked directly
    to the primary of its family, never to another secondary).

    Database Table: contacts
    """
    __tablename__ = "contacts"

    owner_scope = Column(
        String(255),
        nullable=False,
        comment="Tenant/owner the contact belongs to"
    )

    # Contact information fields - at least one must be provided
    phone_number = Column(
        String(32),
        nullable=True,
        comment="Customer phone number as supplied"
    )

    email = Column(
        String(255),
        nullable=True,
        comment="Customer email address"
    )

    # Identity linking fields
    linked_id = Column(
        Integer,
        ForeignKey("contacts.id"),
        nullable=True,
        comment="ID of the primary contact this secondary contact links to"
    )

    link_precedence = Column(
        String(10),
        nullable=False,
        default=LinkPrecedence.PRIMARY.value,
        comment="Either 'primary' (family head) or 'secondary' (linked contact)"
    )

    __table_args__ = (
        CheckConstraint(
            "link_precedence IN ('primary', 'secondary')",
            name="valid_link_precedence"
        ),

        CheckConstraint(
            "(phone_number IS NOT NULL) OR (email IS NOT NULL)",
            name="contact_info_required"
        ),

        CheckConstraint(
            "(link_precedence = 'primary' AND linked_id IS NULL) OR "
            "(link_precedence = 'secondary' AND linked_id IS NOT NULL)",
            name="secondary_must_have_linked_id"
        ),

        # Lookup paths used by the contact store
        Index("ix_contacts_owner_email", owner_scope, email),
        Index("ix_contacts_owner_phone", owner_scope, phone_number),
        Index("ix_contacts_linked_id", linked_id),
    )

    def __repr__(self):
        """String representation showing key contact information"""
        contact_info = []
        if self.email:
            contact_info.append(f"email={self.email}")
        if self.phone_number:
            contact_info.append(f"phone={self.phone_number}")

        return (
            f"<Contact(id={self.id}, "
            f"{', '.join(contact_info)}, "
            f"precedence={self.link_precedence})>"
        )
