"""Read-only helpers for the merge UI: side-by-side comparison, impact preview and audit history."""

import uuid
from typing import Any, Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from crm.database import MergeAuditLog
from crm.deduplication.errors import InvalidArgumentError, NotFoundError
from crm.deduplication.merge import coerce_uuid
from crm.deduplication.models import MergePreview, RequestContext
from crm.deduplication.profiles import EntityType, get_profile
from crm.deduplication.relationships import Relationship, relationships_for


class PreviewService:
    def __init__(self, session: Session, relationships: Optional[dict[EntityType, Sequence[Relationship]]] = None):
        self.session = session
        self._relationships = relationships or {}

    def _relationships_for(self, entity_type: EntityType) -> list[Relationship]:
        if entity_type in self._relationships:
            return list(self._relationships[entity_type])
        return relationships_for(entity_type)

    def _load(self, ctx: RequestContext, entity_type: EntityType, entity_id: uuid.UUID, active_only: bool):
        profile = get_profile(entity_type)
        model = profile.model
        stmt = select(model).where(model.id == entity_id, model.tenant_id == ctx.tenant_id)
        if active_only:
            stmt = stmt.where(model.merged_into_id.is_(None))
        entity = self.session.scalars(stmt).one_or_none()
        if entity is None:
            raise NotFoundError(f"{profile.label} {entity_id} not found")
        return entity

    def preview(
        self,
        ctx: RequestContext,
        entity_type: "str | EntityType",
        survivor_id: "uuid.UUID | str",
        loser_id: "uuid.UUID | str",
    ) -> MergePreview:
        """
        Count the references a merge would move from loser to survivor.

        Walks the same relationship catalog as the merge itself, without
        mutating anything. Every type is listed, including zero counts.
        """
        entity_type = EntityType.parse(entity_type)
        survivor_id = coerce_uuid(survivor_id, "survivor_id")
        loser_id = coerce_uuid(loser_id, "loser_id")
        if survivor_id == loser_id:
            raise InvalidArgumentError("Survivor and loser must be different records")

        self._load(ctx, entity_type, survivor_id, active_only=True)
        self._load(ctx, entity_type, loser_id, active_only=True)

        counts = {
            relationship.name: relationship.count(self.session, ctx, survivor_id, loser_id)
            for relationship in self._relationships_for(entity_type)
        }
        return MergePreview(counts_by_type=counts)

    def compare(
        self,
        ctx: RequestContext,
        entity_type: "str | EntityType",
        id_a: "uuid.UUID | str",
        id_b: "uuid.UUID | str",
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """
        Full field views of two records.

        Tombstoned records are returned as they are (with merged_into_id
        set) so a merge can be reviewed after the fact; redirects are not
        followed.
        """
        entity_type = EntityType.parse(entity_type)
        profile = get_profile(entity_type)
        a = self._load(ctx, entity_type, coerce_uuid(id_a, "id"), active_only=False)
        b = self._load(ctx, entity_type, coerce_uuid(id_b, "other_id"), active_only=False)
        return profile.to_view(a), profile.to_view(b)

    def merge_history(
        self,
        ctx: RequestContext,
        entity_type: "str | EntityType",
        record_id: "uuid.UUID | str",
    ) -> list[MergeAuditLog]:
        """Audit rows where the record was either survivor or loser, newest first."""
        entity_type = EntityType.parse(entity_type)
        record_id = coerce_uuid(record_id)
        self._load(ctx, entity_type, record_id, active_only=False)

        return list(
            self.session.scalars(
                select(MergeAuditLog)
                .where(
                    MergeAuditLog.tenant_id == ctx.tenant_id,
                    MergeAuditLog.entity_type == entity_type.value,
                    or_(MergeAuditLog.survivor_id == record_id, MergeAuditLog.loser_id == record_id),
                )
                .order_by(MergeAuditLog.merged_at.desc(), MergeAuditLog.id)
            )
        )
