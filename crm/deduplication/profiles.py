"""
Per-entity-type matching profiles.

A profile says how an entity type is projected into a CandidateRecord
(which text is primary, which is secondary), how the two similarities are
weighted, which label polymorphic tables use for it, and which fields a
merge may overwrite.
"""

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from sqlalchemy import inspect

from crm.database import Company, Contact
from crm.deduplication.errors import InvalidArgumentError
from crm.deduplication.models import CandidateRecord
from crm.utils.text import extract_domain, normalize_email

# Field kinds accepted in merge field selections
TEXT = "text"
REQUIRED_TEXT = "required_text"
REFERENCE = "reference"


class EntityType(str, Enum):
    """Mergeable entity types (values are the URL path segments)."""

    CONTACTS = "contacts"
    COMPANIES = "companies"

    @classmethod
    def parse(cls, value: "str | EntityType") -> "EntityType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidArgumentError(
                f"Unknown entity type '{value}'. Expected one of: {', '.join(e.value for e in cls)}"
            ) from None


@dataclass(frozen=True)
class MatchProfile:
    entity_type: EntityType
    model: type
    label: str  # value stored in polymorphic entity_type columns
    primary_weight: float
    secondary_weight: float
    projection: tuple[str, ...]
    build_primary: Callable[[Mapping[str, Any]], str]
    build_secondary: Callable[[Mapping[str, Any]], str]
    secondary_key: Callable[[str], str]
    selectable_fields: Mapping[str, str]

    def candidate(
        self,
        values: Mapping[str, Any],
        entity_id: Optional[uuid.UUID] = None,
        tenant_id: Optional[uuid.UUID] = None,
        updated_at=None,
    ) -> CandidateRecord:
        """Project raw field values (row or request body) into a CandidateRecord."""
        return CandidateRecord(
            entity_id=entity_id,
            tenant_id=tenant_id,
            primary=self.build_primary(values),
            secondary=self.build_secondary(values),
            updated_at=updated_at,
        )

    def project_row(self, row) -> CandidateRecord:
        values = row._mapping
        return self.candidate(
            values,
            entity_id=values["id"],
            tenant_id=values["tenant_id"],
            updated_at=values["updated_at"],
        )

    def columns(self):
        return [getattr(self.model, name) for name in ("id", "tenant_id", "updated_at", *self.projection)]

    def field_for(self, name: str) -> Optional[str]:
        """Resolve a selection key (snake_case or camelCase) to a column name."""
        wanted = name.replace("_", "").lower()
        for field_name in self.selectable_fields:
            if field_name.replace("_", "") == wanted:
                return field_name
        return None

    def to_view(self, entity) -> dict[str, Any]:
        """Full field-level view of an entity for side-by-side comparison."""
        view = {attr.key: getattr(entity, attr.key) for attr in inspect(entity).mapper.column_attrs}
        view["is_active"] = entity.merged_into_id is None
        if self.entity_type is EntityType.CONTACTS:
            view["full_name"] = entity.full_name
            view["company_name"] = entity.company.name if entity.company is not None else None
        return view


def _text(values: Mapping[str, Any], key: str) -> str:
    value = values.get(key)
    return str(value).strip() if value is not None else ""


def _contact_name(values: Mapping[str, Any]) -> str:
    return f"{_text(values, 'first_name')} {_text(values, 'last_name')}".strip()


CONTACT_PROFILE = MatchProfile(
    entity_type=EntityType.CONTACTS,
    model=Contact,
    label="Contact",
    primary_weight=0.5,
    secondary_weight=0.5,
    projection=("first_name", "last_name", "email"),
    build_primary=_contact_name,
    build_secondary=lambda values: _text(values, "email"),
    secondary_key=normalize_email,
    selectable_fields={
        "first_name": REQUIRED_TEXT,
        "last_name": REQUIRED_TEXT,
        "email": TEXT,
        "phone": TEXT,
        "mobile_phone": TEXT,
        "job_title": TEXT,
        "department": TEXT,
        "address": TEXT,
        "city": TEXT,
        "state": TEXT,
        "country": TEXT,
        "postal_code": TEXT,
        "description": TEXT,
        "company_id": REFERENCE,
        "owner_id": REFERENCE,
    },
)

COMPANY_PROFILE = MatchProfile(
    entity_type=EntityType.COMPANIES,
    model=Company,
    label="Company",
    primary_weight=0.6,
    secondary_weight=0.4,
    projection=("name", "website"),
    build_primary=lambda values: _text(values, "name"),
    build_secondary=lambda values: _text(values, "website"),
    secondary_key=extract_domain,
    selectable_fields={
        "name": REQUIRED_TEXT,
        "industry": TEXT,
        "website": TEXT,
        "phone": TEXT,
        "email": TEXT,
        "address": TEXT,
        "city": TEXT,
        "state": TEXT,
        "country": TEXT,
        "postal_code": TEXT,
        "size": TEXT,
        "description": TEXT,
        "owner_id": REFERENCE,
    },
)

PROFILES: dict[EntityType, MatchProfile] = {
    EntityType.CONTACTS: CONTACT_PROFILE,
    EntityType.COMPANIES: COMPANY_PROFILE,
}


def get_profile(entity_type: "str | EntityType") -> MatchProfile:
    return PROFILES[EntityType.parse(entity_type)]
