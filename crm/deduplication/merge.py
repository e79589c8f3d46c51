"""
Merge service.

Consolidates a loser record into a survivor in a single transaction:

1. Lock both rows and re-check that they are still active
2. Apply the caller's field selections to the survivor
3. Re-point every reference in the relationship catalog
4. Soft-delete the loser as a tombstone redirecting to the survivor
5. Write the audit log row

Either every step commits or nothing does.
"""

import uuid
from typing import Any, Mapping, Optional, Sequence

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from crm.database import Company, MergeAuditLog, utcnow
from crm.deduplication.errors import (
    ConflictError,
    DedupeError,
    InvalidArgumentError,
    NotFoundError,
    TransactionFailureError,
)
from crm.deduplication.models import MergeResult, RequestContext
from crm.deduplication.profiles import REFERENCE, REQUIRED_TEXT, EntityType, MatchProfile, get_profile
from crm.deduplication.relationships import Relationship, relationships_for


def coerce_uuid(value: Any, field_name: str = "id") -> uuid.UUID:
    """Parse an id from a UUID or its string form."""
    if isinstance(value, uuid.UUID):
        return value
    if isinstance(value, str):
        try:
            return uuid.UUID(value.strip())
        except ValueError:
            pass
    raise InvalidArgumentError(f"{field_name} must be a UUID, got {value!r}")


def _json_safe(value: Any) -> Any:
    return str(value) if isinstance(value, uuid.UUID) else value


class MergeService:
    """Merges duplicate records of one entity type."""

    def __init__(
        self,
        session: Session,
        entity_type: "str | EntityType",
        relationships: Optional[Sequence[Relationship]] = None,
    ):
        self.session = session
        self.profile: MatchProfile = get_profile(entity_type)
        self.relationships = list(relationships) if relationships is not None else relationships_for(self.profile.entity_type)

    # -------------------------------------------------------------------------
    # Validation (no mutation)
    # -------------------------------------------------------------------------

    def _resolve_selections(
        self, ctx: RequestContext, field_selections: Optional[Mapping[str, Any]]
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """Split selections into known column values and custom fields."""
        if field_selections is None:
            return {}, {}
        if not isinstance(field_selections, Mapping):
            raise InvalidArgumentError("Field selections must be an object of field name to value")

        columns: dict[str, Any] = {}
        custom: dict[str, Any] = {}

        for key, value in field_selections.items():
            if not isinstance(key, str) or not key.strip():
                raise InvalidArgumentError(f"Invalid field name in selections: {key!r}")

            column = self.profile.field_for(key)
            if column is None:
                custom[key] = _json_safe(value)
                continue

            kind = self.profile.selectable_fields[column]
            if kind == REFERENCE:
                columns[column] = None if value in (None, "") else coerce_uuid(value, key)
            elif isinstance(value, (dict, list)):
                raise InvalidArgumentError(f"Field '{key}' expects a text value")
            elif value is None:
                columns[column] = "" if kind == REQUIRED_TEXT else None
            else:
                columns[column] = str(value)

        company_id = columns.get("company_id")
        if company_id is not None:
            exists = self.session.scalar(
                select(Company.id).where(
                    Company.id == company_id,
                    Company.tenant_id == ctx.tenant_id,
                    Company.merged_into_id.is_(None),
                )
            )
            if exists is None:
                raise InvalidArgumentError(f"Selected company {company_id} does not exist")

        return columns, custom

    def _require_active(self, ctx: RequestContext, entity_id: uuid.UUID, role: str) -> None:
        model = self.profile.model
        found = self.session.scalar(
            select(model.id).where(
                model.id == entity_id,
                model.tenant_id == ctx.tenant_id,
                model.merged_into_id.is_(None),
            )
        )
        if found is None:
            raise NotFoundError(f"{role.capitalize()} {self.profile.label.lower()} {entity_id} not found")

    def _lock(self, ctx: RequestContext, survivor_id: uuid.UUID, loser_id: uuid.UUID):
        """Lock both rows in id order and return (survivor, loser)."""
        model = self.profile.model
        rows = self.session.scalars(
            select(model)
            .where(model.id.in_([survivor_id, loser_id]), model.tenant_id == ctx.tenant_id)
            .order_by(model.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).all()
        by_id = {row.id: row for row in rows}
        survivor, loser = by_id.get(survivor_id), by_id.get(loser_id)

        for role, entity, entity_id in (("survivor", survivor, survivor_id), ("loser", loser, loser_id)):
            if entity is None or entity.merged_into_id is not None:
                raise ConflictError(
                    f"{role.capitalize()} {self.profile.label.lower()} {entity_id} is no longer active; "
                    "refresh and retry"
                )
        return survivor, loser

    # -------------------------------------------------------------------------
    # Merge
    # -------------------------------------------------------------------------

    def merge(
        self,
        ctx: RequestContext,
        survivor_id: "uuid.UUID | str",
        loser_id: "uuid.UUID | str",
        field_selections: Optional[Mapping[str, Any]] = None,
    ) -> MergeResult:
        """
        Merge loser into survivor.

        Raises InvalidArgumentError or NotFoundError before anything is
        touched, ConflictError if either record was merged concurrently, and
        TransactionFailureError on any other failure. In every error case
        the store is left exactly as it was.
        """
        survivor_id = coerce_uuid(survivor_id, "survivor_id")
        loser_id = coerce_uuid(loser_id, "loser_id")
        if survivor_id == loser_id:
            raise InvalidArgumentError("Cannot merge a record with itself")

        attempted: dict[str, int] = {}
        try:
            columns, custom = self._resolve_selections(ctx, field_selections)
            self._require_active(ctx, survivor_id, "survivor")
            self._require_active(ctx, loser_id, "loser")

            survivor, loser = self._lock(ctx, survivor_id, loser_id)

            for name, value in columns.items():
                setattr(survivor, name, value)
            if custom:
                survivor.custom_fields = {**(survivor.custom_fields or {}), **custom}
            self.session.flush()

            for relationship in self.relationships:
                attempted[relationship.name] = relationship.transfer(self.session, ctx, survivor_id, loser_id)
            transfer_counts = {name: count for name, count in attempted.items() if count}

            merged_at = utcnow()
            loser.merged_into_id = survivor_id
            loser.merged_at = merged_at
            loser.merged_by_user_id = ctx.user_id
            survivor.updated_at = merged_at

            selections = {key: _json_safe(value) for key, value in (field_selections or {}).items()}
            self.session.add(
                MergeAuditLog(
                    tenant_id=ctx.tenant_id,
                    entity_type=self.profile.entity_type.value,
                    survivor_id=survivor_id,
                    loser_id=loser_id,
                    merged_by_user_id=ctx.user_id,
                    field_selections=selections,
                    transfer_counts=transfer_counts,
                    merged_at=merged_at,
                )
            )
            self.session.commit()

        except DedupeError:
            self.session.rollback()
            raise
        except Exception as e:
            self.session.rollback()
            logger.exception(
                f"Merge of {self.profile.entity_type.value} failed and was rolled back "
                f"(tenant={ctx.tenant_id}, survivor={survivor_id}, loser={loser_id}, "
                f"attempted={attempted}): {e}"
            )
            raise TransactionFailureError(
                "Merge failed; no changes were made",
                tenant_id=ctx.tenant_id,
                survivor_id=survivor_id,
                loser_id=loser_id,
                attempted_counts=attempted,
            ) from e

        logger.info(
            f"Merged {self.profile.label.lower()} {loser_id} into {survivor_id} "
            f"(tenant {ctx.tenant_id}, user {ctx.user_id}): {transfer_counts or 'no references moved'}"
        )
        return MergeResult(
            survivor_id=survivor_id,
            loser_id=loser_id,
            transfer_counts=transfer_counts,
            merged_at=merged_at,
            merged_by_user_id=ctx.user_id,
            field_selections=selections,
        )
