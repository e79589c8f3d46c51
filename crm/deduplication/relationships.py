"""
Relationship catalog for merges.

Every table that references a mergeable entity is described here as data:
which column points at the entity and how a reference is moved. The merge
transaction and the preview both walk this catalog, so supporting a new
dependent record type means registering one more entry, not touching the
merge logic.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from crm.database import (
    ActivityLink,
    Attachment,
    Company,
    Contact,
    Deal,
    DealContact,
    EmailMessage,
    EmailThread,
    FeedItem,
    Lead,
    LeadConversion,
    Note,
    Notification,
    Quote,
    ServiceRequest,
)
from crm.deduplication.models import RequestContext
from crm.deduplication.profiles import COMPANY_PROFILE, CONTACT_PROFILE, EntityType


class Relationship(ABC):
    """A reference type that must follow an entity when it is merged away."""

    name: str

    @abstractmethod
    def count(self, session: Session, ctx: RequestContext, survivor_id: uuid.UUID, loser_id: uuid.UUID) -> int:
        """How many references transfer() would move. Read-only."""

    @abstractmethod
    def transfer(self, session: Session, ctx: RequestContext, survivor_id: uuid.UUID, loser_id: uuid.UUID) -> int:
        """Re-point references from loser to survivor; returns rows moved."""


@dataclass(frozen=True)
class ForeignKeyRelationship(Relationship):
    """Plain foreign key column, e.g. quotes.contact_id."""

    name: str
    model: type
    column: str

    def _where(self, ctx: RequestContext, entity_id: uuid.UUID):
        return (
            getattr(self.model, self.column) == entity_id,
            self.model.tenant_id == ctx.tenant_id,
        )

    def count(self, session, ctx, survivor_id, loser_id):
        stmt = select(func.count()).select_from(self.model).where(*self._where(ctx, loser_id))
        return session.scalar(stmt) or 0

    def transfer(self, session, ctx, survivor_id, loser_id):
        stmt = (
            update(self.model)
            .where(*self._where(ctx, loser_id))
            .values({self.column: survivor_id})
            .execution_options(synchronize_session="evaluate")
        )
        return session.execute(stmt).rowcount or 0


@dataclass(frozen=True)
class PolymorphicRelationship(Relationship):
    """(entity_type, entity_id) reference, e.g. notes on a contact."""

    name: str
    model: type
    label: str

    def _where(self, ctx: RequestContext, entity_id: uuid.UUID):
        return (
            self.model.entity_type == self.label,
            self.model.entity_id == entity_id,
            self.model.tenant_id == ctx.tenant_id,
        )

    def count(self, session, ctx, survivor_id, loser_id):
        stmt = select(func.count()).select_from(self.model).where(*self._where(ctx, loser_id))
        return session.scalar(stmt) or 0

    def transfer(self, session, ctx, survivor_id, loser_id):
        stmt = (
            update(self.model)
            .where(*self._where(ctx, loser_id))
            .values(entity_id=survivor_id)
            .execution_options(synchronize_session="evaluate")
        )
        return session.execute(stmt).rowcount or 0


@dataclass(frozen=True)
class LinkRelationship(Relationship):
    """
    Link table keyed on (partner, owner), e.g. deal_contacts.

    When the survivor is already linked to the same partner the loser's
    link is deleted instead of moved, and is not counted as transferred.
    """

    name: str
    model: type
    owner_column: str
    partner_column: str
    label: Optional[str] = None

    def _where(self, ctx: RequestContext, entity_id: uuid.UUID):
        clauses = [
            getattr(self.model, self.owner_column) == entity_id,
            self.model.tenant_id == ctx.tenant_id,
        ]
        if self.label is not None:
            clauses.append(self.model.entity_type == self.label)
        return clauses

    def _survivor_partners(self, session, ctx, survivor_id) -> set:
        partner = getattr(self.model, self.partner_column)
        return set(session.scalars(select(partner).where(*self._where(ctx, survivor_id))))

    def count(self, session, ctx, survivor_id, loser_id):
        partner = getattr(self.model, self.partner_column)
        loser_partners = session.scalars(select(partner).where(*self._where(ctx, loser_id))).all()
        taken = self._survivor_partners(session, ctx, survivor_id)
        return sum(1 for p in loser_partners if p not in taken)

    def transfer(self, session, ctx, survivor_id, loser_id):
        links = session.scalars(select(self.model).where(*self._where(ctx, loser_id))).all()
        if not links:
            return 0

        taken = self._survivor_partners(session, ctx, survivor_id)
        moved = 0
        for link in links:
            if getattr(link, self.partner_column) in taken:
                session.delete(link)
            else:
                setattr(link, self.owner_column, survivor_id)
                moved += 1
        session.flush()
        return moved


def _common(label: str, model: type) -> list[Relationship]:
    """References every mergeable entity type has (in catalog order)."""
    owner = "contact_id" if model is Contact else "company_id"
    linked = f"linked_{owner}"
    return [
        ForeignKeyRelationship("quotes", Quote, owner),
        ForeignKeyRelationship("requests", ServiceRequest, owner),
        ForeignKeyRelationship("email_messages", EmailMessage, linked),
        ForeignKeyRelationship("email_threads", EmailThread, linked),
        ForeignKeyRelationship("leads", Lead, f"converted_{owner}"),
        ForeignKeyRelationship("lead_conversions", LeadConversion, owner),
        PolymorphicRelationship("notes", Note, label),
        PolymorphicRelationship("attachments", Attachment, label),
        LinkRelationship("activity_links", ActivityLink, "entity_id", "activity_id", label=label),
        PolymorphicRelationship("feed_items", FeedItem, label),
        PolymorphicRelationship("notifications", Notification, label),
        # Earlier tombstones that redirected to the loser now redirect to the survivor
        ForeignKeyRelationship("merged_records", model, "merged_into_id"),
    ]


RELATIONSHIP_CATALOG: dict[EntityType, list[Relationship]] = {
    EntityType.CONTACTS: [
        LinkRelationship("deals", DealContact, "contact_id", "deal_id"),
        *_common(CONTACT_PROFILE.label, Contact),
    ],
    EntityType.COMPANIES: [
        ForeignKeyRelationship("contacts", Contact, "company_id"),
        ForeignKeyRelationship("deals", Deal, "company_id"),
        *_common(COMPANY_PROFILE.label, Company),
    ],
}


def relationships_for(entity_type: "str | EntityType") -> list[Relationship]:
    return list(RELATIONSHIP_CATALOG[EntityType.parse(entity_type)])


def register_relationship(entity_type: "str | EntityType", relationship: Relationship) -> None:
    """Add a reference type to the catalog for an entity type."""
    entity_type = EntityType.parse(entity_type)
    if any(existing.name == relationship.name for existing in RELATIONSHIP_CATALOG[entity_type]):
        raise ValueError(f"Relationship '{relationship.name}' already registered for {entity_type.value}")
    RELATIONSHIP_CATALOG[entity_type].append(relationship)
