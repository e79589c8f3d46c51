"""
Matching configuration store.

One row per (tenant, entity type) holding the similarity threshold and the
auto-detection toggle. Missing rows fall back to the configured defaults.
Reads go through a short-TTL cache that is invalidated on update.
"""

from typing import Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from crm import cache
from crm.config import DedupeSettings, settings
from crm.database import DuplicateMatchingConfig
from crm.deduplication.errors import InvalidArgumentError
from crm.deduplication.models import MatchingConfig, RequestContext
from crm.deduplication.profiles import EntityType


def validate_threshold(threshold: int) -> int:
    if isinstance(threshold, bool) or not isinstance(threshold, int):
        raise InvalidArgumentError(f"Similarity threshold must be an integer, got {threshold!r}")
    if not 0 <= threshold <= 100:
        raise InvalidArgumentError(f"Similarity threshold must be between 0 and 100, got {threshold}")
    return threshold


class MatchingConfigStore:
    """Per-tenant, per-entity-type matching settings."""

    def __init__(self, session: Session, config: Optional[DedupeSettings] = None):
        self.session = session
        self.config = config or settings.dedupe

    def _defaults(self, entity_type: EntityType) -> MatchingConfig:
        return MatchingConfig(
            entity_type=entity_type.value,
            similarity_threshold=self.config.default_threshold,
            auto_detection_enabled=self.config.default_auto_detection,
        )

    def _load_row(self, ctx: RequestContext, entity_type: EntityType) -> Optional[DuplicateMatchingConfig]:
        return self.session.execute(
            select(DuplicateMatchingConfig).where(
                DuplicateMatchingConfig.tenant_id == ctx.tenant_id,
                DuplicateMatchingConfig.entity_type == entity_type.value,
            )
        ).scalar_one_or_none()

    def get(self, ctx: RequestContext, entity_type: "str | EntityType") -> MatchingConfig:
        entity_type = EntityType.parse(entity_type)
        key = cache.config_key(ctx.tenant_id, entity_type.value)

        cached = cache.read(key)
        if cached is not None:
            return MatchingConfig(**cached)

        row = self._load_row(ctx, entity_type)
        if row is None:
            result = self._defaults(entity_type)
        else:
            result = MatchingConfig(
                entity_type=row.entity_type,
                similarity_threshold=row.similarity_threshold,
                auto_detection_enabled=row.auto_detection_enabled,
            )

        cache.write(
            key,
            {
                "entity_type": result.entity_type,
                "similarity_threshold": result.similarity_threshold,
                "auto_detection_enabled": result.auto_detection_enabled,
            },
            ttl=self.config.config_cache_ttl,
        )
        return result

    def list_all(self, ctx: RequestContext) -> list[MatchingConfig]:
        return [self.get(ctx, entity_type) for entity_type in EntityType]

    def update(
        self,
        ctx: RequestContext,
        entity_type: "str | EntityType",
        similarity_threshold: int,
        auto_detection_enabled: bool,
    ) -> MatchingConfig:
        """Create or update the tenant's settings for one entity type."""
        entity_type = EntityType.parse(entity_type)
        validate_threshold(similarity_threshold)

        try:
            row = self._load_row(ctx, entity_type)
            if row is None:
                row = DuplicateMatchingConfig(tenant_id=ctx.tenant_id, entity_type=entity_type.value)
                self.session.add(row)
            row.similarity_threshold = similarity_threshold
            row.auto_detection_enabled = bool(auto_detection_enabled)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        finally:
            cache.invalidate(cache.config_key(ctx.tenant_id, entity_type.value))

        logger.info(
            f"Duplicate settings updated for {entity_type.value} (tenant {ctx.tenant_id}): "
            f"threshold={similarity_threshold}, auto_detect={auto_detection_enabled}"
        )
        return MatchingConfig(
            entity_type=entity_type.value,
            similarity_threshold=similarity_threshold,
            auto_detection_enabled=bool(auto_detection_enabled),
        )
