"""
Duplicate detection service.

Orchestrates the candidate generator (tier 1) and the scorer (tier 2) for
the two read-only use cases:

- find_matches: real-time check for a record being created or edited
- scan_for_duplicates: paginated batch scan over every active record

Neither path mutates state, so both are safe to run concurrently with each
other and with merges.
"""

import uuid
from datetime import datetime
from typing import Any, Mapping, Optional

from loguru import logger
from sqlalchemy.orm import Session

from crm.config import DedupeSettings, settings
from crm.deduplication.candidates import CandidateGenerator
from crm.deduplication.errors import InvalidArgumentError
from crm.deduplication.matching_config import MatchingConfigStore, validate_threshold
from crm.deduplication.models import (
    CandidateRecord,
    DuplicateMatch,
    DuplicatePair,
    RequestContext,
    ScanResult,
)
from crm.deduplication.profiles import EntityType, get_profile
from crm.deduplication.scoring import Scorer


def _recency(stamp: Optional[datetime]) -> float:
    return stamp.timestamp() if stamp is not None else float("-inf")


def _as_match(record: CandidateRecord, score: int) -> DuplicateMatch:
    return DuplicateMatch(
        entity_id=record.entity_id,
        primary=record.primary,
        secondary=record.secondary,
        score=score,
        updated_at=record.updated_at,
    )


class DuplicateDetectionService:
    """Real-time and batch duplicate detection for contacts and companies."""

    def __init__(
        self,
        session: Session,
        config: Optional[DedupeSettings] = None,
        config_store: Optional[MatchingConfigStore] = None,
    ):
        self.session = session
        self.config = config or settings.dedupe
        self.config_store = config_store or MatchingConfigStore(session, self.config)

    def find_matches(
        self,
        ctx: RequestContext,
        entity_type: "str | EntityType",
        query_fields: Mapping[str, Any],
        threshold: Optional[int] = None,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> list[DuplicateMatch]:
        """
        Score existing records against a partial field set.

        Returns an empty list without touching the record store when
        auto-detection is disabled for the entity type. Results are sorted
        by score (highest first), then most recently modified first.
        """
        profile = get_profile(entity_type)
        tenant_config = self.config_store.get(ctx, profile.entity_type)
        if not tenant_config.auto_detection_enabled:
            return []

        threshold = validate_threshold(
            tenant_config.similarity_threshold if threshold is None else threshold
        )

        query = profile.candidate(query_fields)
        generator = CandidateGenerator(self.session, profile, self.config)
        candidates = generator.for_query(ctx, query, threshold, exclude_id=exclude_id)

        scorer = Scorer(profile)
        matches = []
        for candidate in candidates:
            value = scorer(query, candidate)
            if value >= threshold:
                matches.append(_as_match(candidate, value))

        matches.sort(key=lambda m: (-m.score, -_recency(m.updated_at), str(m.entity_id)))
        return matches[: self.config.max_matches]

    def scan_for_duplicates(
        self,
        ctx: RequestContext,
        entity_type: "str | EntityType",
        threshold: Optional[int] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> ScanResult:
        """
        Find every duplicate pair among the tenant's active records.

        One snapshot of the active records is read per call; the page and
        total_count are both derived from it, so they always agree. Pairs are
        unique regardless of order and sorted by score, then by the more
        recent modification of either side.
        """
        profile = get_profile(entity_type)
        page_size = self.config.default_page_size if page_size is None else page_size
        if page < 1:
            raise InvalidArgumentError(f"Page must be >= 1, got {page}")
        if page_size < 1:
            raise InvalidArgumentError(f"Page size must be >= 1, got {page_size}")

        if threshold is None:
            threshold = self.config_store.get(ctx, profile.entity_type).similarity_threshold
        threshold = validate_threshold(threshold)

        generator = CandidateGenerator(self.session, profile, self.config)
        snapshot = generator.load_active(ctx)
        order = {record.entity_id: pos for pos, record in enumerate(snapshot)}

        scorer = Scorer(profile)
        seen: set[tuple[int, int]] = set()
        pairs: list[DuplicatePair] = []
        compared = 0

        for record, candidates in generator.for_snapshot(snapshot, threshold):
            for candidate in candidates:
                key = tuple(sorted((order[record.entity_id], order[candidate.entity_id])))
                if key in seen:
                    continue
                seen.add(key)
                compared += 1

                value = scorer(record, candidate)
                if value < threshold:
                    continue

                first, second = snapshot[key[0]], snapshot[key[1]]
                pairs.append(DuplicatePair(_as_match(first, value), _as_match(second, value), value))

        pairs.sort(
            key=lambda p: (
                -p.score,
                -_recency(p.latest_update),
                str(p.record_a.entity_id),
                str(p.record_b.entity_id),
            )
        )

        logger.info(
            f"Duplicate scan for {profile.entity_type.value} (tenant {ctx.tenant_id}): "
            f"{len(snapshot)} records, {compared} pairs scored, {len(pairs)} above {threshold}"
        )

        offset = (page - 1) * page_size
        return ScanResult(
            items=pairs[offset:offset + page_size],
            total_count=len(pairs),
            page=page,
            page_size=page_size,
        )
