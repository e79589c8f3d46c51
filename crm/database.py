"""
Database models for the multi-tenant CRM records store.

Uses SQLAlchemy 2.0 with portable column types so the same models run on
PostgreSQL (production, with pg_trgm) and SQLite (tests).
"""

import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional, List

from sqlalchemy import (
    create_engine,
    String,
    Integer,
    Float,
    Boolean,
    DateTime,
    Text,
    ForeignKey,
    Index,
    UniqueConstraint,
    JSON,
    Uuid,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
    sessionmaker,
)
from sqlalchemy.pool import StaticPool

from crm.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Database Engine and Session
# =============================================================================

def create_db_engine(url: str, echo: bool = False):
    """Create an engine for the given URL with pool settings for its dialect."""
    if url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across sessions
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    return create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=20,
        max_overflow=30,
        pool_timeout=30,        # Connection timeout to prevent hanging
        pool_recycle=1800,      # Recycle connections every 30 minutes
        connect_args={
            "connect_timeout": 10,
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    )


engine = create_db_engine(settings.database.url, echo=settings.logging.level == "DEBUG")

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Dependency for FastAPI to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_session():
    """Context manager for database sessions."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# =============================================================================
# Base Model
# =============================================================================

class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def _uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid, primary_key=True, default=uuid.uuid4)


def _tenant() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid, nullable=False, index=True)


# =============================================================================
# Mergeable Entities (Contacts and Companies)
# =============================================================================

class Company(Base):
    """
    Organization record.

    A company that has been merged away keeps its row as a tombstone:
    merged_into_id points at the surviving company and the row is excluded
    from every normal listing.
    """
    __tablename__ = "companies"

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = _tenant()

    name: Mapped[str] = mapped_column(String(500), nullable=False)
    industry: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    website: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    postal_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    size: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    owner_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    custom_fields: Mapped[dict] = mapped_column(JSON, default=dict)

    # Tombstone / redirect
    merged_into_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    merged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    merged_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    contacts: Mapped[List["Contact"]] = relationship("Contact", back_populates="company")

    __table_args__ = (
        Index("idx_companies_tenant_active", "tenant_id", "merged_into_id"),
        Index("idx_companies_merged_into", "merged_into_id"),
    )

    @property
    def is_active(self) -> bool:
        return self.merged_into_id is None

    def __repr__(self) -> str:
        return f"<Company {self.name} ({self.id})>"


class Contact(Base):
    """Person record; optionally a member of a company."""
    __tablename__ = "contacts"

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = _tenant()

    first_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    mobile_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    job_title: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    department: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    postal_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("companies.id", ondelete="SET NULL"), nullable=True
    )
    owner_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    custom_fields: Mapped[dict] = mapped_column(JSON, default=dict)

    # Tombstone / redirect
    merged_into_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    merged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    merged_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    company: Mapped[Optional["Company"]] = relationship("Company", back_populates="contacts")

    __table_args__ = (
        Index("idx_contacts_tenant_active", "tenant_id", "merged_into_id"),
        Index("idx_contacts_merged_into", "merged_into_id"),
        Index("idx_contacts_company", "company_id"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    @property
    def is_active(self) -> bool:
        return self.merged_into_id is None

    def __repr__(self) -> str:
        return f"<Contact {self.full_name} ({self.id})>"


# =============================================================================
# Dependent Records (reparented during merge)
# =============================================================================

class Deal(Base):
    __tablename__ = "deals"

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = _tenant()
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("companies.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class DealContact(Base):
    """Deal <-> contact link (composite key)."""
    __tablename__ = "deal_contacts"

    deal_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("deals.id", ondelete="CASCADE"), primary_key=True
    )
    contact_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contacts.id", ondelete="CASCADE"), primary_key=True
    )
    tenant_id: Mapped[uuid.UUID] = _tenant()

    __table_args__ = (
        Index("idx_deal_contacts_contact", "contact_id"),
    )


class Quote(Base):
    __tablename__ = "quotes"

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = _tenant()
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    contact_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("contacts.id"), nullable=True, index=True)
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("companies.id"), nullable=True, index=True)


class ServiceRequest(Base):
    """Customer service request."""
    __tablename__ = "requests"

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = _tenant()
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    contact_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("contacts.id"), nullable=True, index=True)
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("companies.id"), nullable=True, index=True)


class EmailMessage(Base):
    __tablename__ = "email_messages"

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = _tenant()
    subject: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    linked_contact_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("contacts.id"), nullable=True, index=True)
    linked_company_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("companies.id"), nullable=True, index=True)


class EmailThread(Base):
    __tablename__ = "email_threads"

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = _tenant()
    subject: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    linked_contact_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("contacts.id"), nullable=True, index=True)
    linked_company_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("companies.id"), nullable=True, index=True)


class Lead(Base):
    """Lead; once converted it points back at the contact/company it became."""
    __tablename__ = "leads"

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = _tenant()
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    converted_contact_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("contacts.id"), nullable=True)
    converted_company_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("companies.id"), nullable=True)


class LeadConversion(Base):
    __tablename__ = "lead_conversions"

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = _tenant()
    lead_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False)
    contact_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("contacts.id"), nullable=True)
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("companies.id"), nullable=True)
    converted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Activity(Base):
    __tablename__ = "activities"

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = _tenant()
    subject: Mapped[str] = mapped_column(String(500), nullable=False)


class ActivityLink(Base):
    """Polymorphic link between an activity and any entity."""
    __tablename__ = "activity_links"

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = _tenant()
    activity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("activities.id", ondelete="CASCADE"), nullable=False
    )
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    __table_args__ = (
        UniqueConstraint("activity_id", "entity_type", "entity_id", name="uq_activity_link"),
        Index("idx_activity_links_entity", "entity_type", "entity_id"),
    )


class Note(Base):
    __tablename__ = "notes"

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = _tenant()
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")

    __table_args__ = (
        Index("idx_notes_entity", "entity_type", "entity_id"),
    )


class Attachment(Base):
    __tablename__ = "attachments"

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = _tenant()
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)

    __table_args__ = (
        Index("idx_attachments_entity", "entity_type", "entity_id"),
    )


class FeedItem(Base):
    __tablename__ = "feed_items"

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = _tenant()
    entity_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    entity_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")

    __table_args__ = (
        Index("idx_feed_items_entity", "entity_type", "entity_id"),
    )


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = _tenant()
    entity_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    entity_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        Index("idx_notifications_entity", "entity_type", "entity_id"),
    )


# =============================================================================
# Deduplication Models
# =============================================================================

class DuplicateMatchingConfig(Base):
    """
    Per-tenant, per-entity-type matching settings.

    Governs real-time checks only; batch scans and manual merges are always
    available.
    """
    __tablename__ = "duplicate_matching_configs"

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    similarity_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=70)
    auto_detection_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "entity_type", name="uq_matching_config_tenant_entity"),
    )

    def __repr__(self) -> str:
        return f"<DuplicateMatchingConfig {self.entity_type} threshold={self.similarity_threshold}>"


class MergeAuditLog(Base):
    """
    Write-once record of a completed merge.

    Provides the audit trail for every consolidation: who merged what into
    what, the field values chosen and how many references moved per type.
    """
    __tablename__ = "merge_audit_logs"

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    survivor_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    loser_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    merged_by_user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    field_selections: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    transfer_counts: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    merged_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_merge_audit_logs_tenant_entity", "tenant_id", "entity_type"),
        Index("idx_merge_audit_logs_survivor", "survivor_id"),
        Index("idx_merge_audit_logs_loser", "loser_id"),
    )

    def __repr__(self) -> str:
        return f"<MergeAuditLog {self.entity_type} {self.loser_id} -> {self.survivor_id}>"


# =============================================================================
# Helper Functions
# =============================================================================

def create_all_tables(bind=None):
    """Create all database tables."""
    Base.metadata.create_all(bind=bind or engine)


def drop_all_tables(bind=None):
    """Drop all database tables. USE WITH CAUTION!"""
    Base.metadata.drop_all(bind=bind or engine)
