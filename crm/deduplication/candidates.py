"""
Candidate generation (tier 1 of duplicate detection).

Narrows the comparison space before the fuzzy scorer runs. Records are
indexed by the trigrams of their primary text and secondary key; a query
only looks at records that share trigrams with it and keeps those whose
trigram similarity clears a deliberately loose prefilter bound (half the
configured threshold by default). A batch scan therefore costs about
O(N * k) instead of O(N^2), with k bounded by the candidate limit.
"""

import uuid
from collections import defaultdict
from typing import Iterator, Optional, Sequence

from loguru import logger
from sqlalchemy import and_, func, literal_column, or_, select
from sqlalchemy.orm import Session

from crm.config import DedupeSettings, settings
from crm.database import Company, Contact
from crm.deduplication.models import CandidateRecord, RequestContext
from crm.deduplication.profiles import EntityType, MatchProfile
from crm.utils.text import trigram_similarity, trigrams


class TrigramIndex:
    """
    Inverted trigram index over a fixed snapshot of candidate records.

    Trigrams whose posting list is longer than ``max_posting_size`` (e.g.
    the grams of "com" in email addresses) are not used to find
    candidates, but still count when the exact similarity is computed.
    """

    def __init__(self, records: Sequence[CandidateRecord], profile: MatchProfile, max_posting_size: int = 2000):
        self.profile = profile
        self.records = list(records)
        self.max_posting_size = max_posting_size

        self._primary = [trigrams(r.primary) for r in self.records]
        self._secondary = [trigrams(profile.secondary_key(r.secondary)) for r in self.records]

        self._primary_postings: dict[str, list[int]] = defaultdict(list)
        self._secondary_postings: dict[str, list[int]] = defaultdict(list)
        for pos in range(len(self.records)):
            for gram in self._primary[pos]:
                self._primary_postings[gram].append(pos)
            for gram in self._secondary[pos]:
                self._secondary_postings[gram].append(pos)

    def __len__(self) -> int:
        return len(self.records)

    def _lookup(self, grams: frozenset[str], postings: dict[str, list[int]]) -> set[int]:
        hits: set[int] = set()
        common: list[list[int]] = []
        for gram in grams:
            positions = postings.get(gram)
            if not positions:
                continue
            if len(positions) > self.max_posting_size:
                common.append(positions)
                continue
            hits.update(positions)

        # Every gram is common: fall back to the rarest one
        if not hits and common:
            hits.update(min(common, key=len))
        return hits

    def candidates(self, query: CandidateRecord, min_similarity: float, limit: int) -> list[CandidateRecord]:
        """
        Records whose primary OR secondary trigram similarity to the query
        exceeds ``min_similarity``, best first. At most ``limit`` are kept,
        plus any that tie the last kept similarity.

        The query record itself is never returned. A query with an empty
        primary field is matched on its secondary key alone; a query with
        both fields empty has no candidates.
        """
        query_primary = trigrams(query.primary)
        query_secondary = trigrams(self.profile.secondary_key(query.secondary))
        if not query_primary and not query_secondary:
            return []

        best: dict[int, float] = {}
        for grams, postings, sets in (
            (query_primary, self._primary_postings, self._primary),
            (query_secondary, self._secondary_postings, self._secondary),
        ):
            if not grams:
                continue
            for pos in self._lookup(grams, postings):
                if query.entity_id is not None and self.records[pos].entity_id == query.entity_id:
                    continue
                similarity = trigram_similarity(grams, sets[pos])
                if similarity > min_similarity and similarity > best.get(pos, -1.0):
                    best[pos] = similarity

        ranked = sorted(best.items(), key=lambda item: (-item[1], str(self.records[item[0]].entity_id)))
        if len(ranked) > limit > 0:
            edge = ranked[limit - 1][1]
            cut = limit
            while cut < len(ranked) and ranked[cut][1] == edge:
                cut += 1
            ranked = ranked[:cut]
        else:
            ranked = ranked[:limit]
        return [self.records[pos] for pos, _ in ranked]


# SQL expressions for the pg_trgm prefilter; must match the index expressions in init_db
_SQL_FIELDS = {
    EntityType.CONTACTS: (
        lambda: Contact.first_name.op("||")(literal_column("' '")).op("||")(Contact.last_name),
        lambda: Contact.email,
    ),
    EntityType.COMPANIES: (lambda: Company.name, lambda: Company.website),
}


class CandidateGenerator:
    """Produces bounded candidate sets for real-time and batch detection."""

    def __init__(self, session: Session, profile: MatchProfile, config: Optional[DedupeSettings] = None):
        self.session = session
        self.profile = profile
        self.config = config or settings.dedupe

    def prefilter_similarity(self, threshold: int) -> float:
        """Trigram similarity a candidate must exceed for a given score threshold."""
        return (threshold / 100.0) * self.config.prefilter_ratio

    def load_active(self, ctx: RequestContext, exclude_id: Optional[uuid.UUID] = None) -> list[CandidateRecord]:
        """Projection of every active (non-tombstoned) record of the tenant."""
        model = self.profile.model
        stmt = (
            select(*self.profile.columns())
            .where(model.tenant_id == ctx.tenant_id, model.merged_into_id.is_(None))
            .order_by(model.created_at, model.id)
        )
        if exclude_id is not None:
            stmt = stmt.where(model.id != exclude_id)
        return [self.profile.project_row(row) for row in self.session.execute(stmt)]

    def build_index(self, records: Sequence[CandidateRecord]) -> TrigramIndex:
        return TrigramIndex(records, self.profile, max_posting_size=self.config.max_posting_size)

    def for_query(
        self,
        ctx: RequestContext,
        query: CandidateRecord,
        threshold: int,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> list[CandidateRecord]:
        """Candidates for one incoming record (real-time path)."""
        if not query.primary.strip() and not query.secondary.strip():
            return []

        min_similarity = self.prefilter_similarity(threshold)
        if self._use_pg_trgm():
            return self._pg_trgm_candidates(ctx, query, min_similarity, exclude_id)

        index = self.build_index(self.load_active(ctx, exclude_id=exclude_id))
        return index.candidates(query, min_similarity, self.config.candidate_limit)

    def for_snapshot(
        self, snapshot: Sequence[CandidateRecord], threshold: int
    ) -> Iterator[tuple[CandidateRecord, list[CandidateRecord]]]:
        """Yield (record, candidates) for every record of a batch snapshot."""
        index = self.build_index(snapshot)
        min_similarity = self.prefilter_similarity(threshold)
        logger.debug(
            f"Trigram index built over {len(index)} {self.profile.entity_type.value} "
            f"(prefilter > {min_similarity:.3f})"
        )
        for record in index.records:
            yield record, index.candidates(record, min_similarity, self.config.scan_candidate_limit)

    def _use_pg_trgm(self) -> bool:
        """Real-time lookups run in PostgreSQL unless DEDUPE_USE_PG_TRGM=false."""
        if self.config.use_pg_trgm is False:
            return False
        return self.session.get_bind().dialect.name == "postgresql"

    def pg_trgm_statement(
        self,
        ctx: RequestContext,
        query: CandidateRecord,
        min_similarity: float,
        exclude_id: Optional[uuid.UUID] = None,
    ):
        """
        Candidate query for the GIN trigram indexes created by init_db.

        The ``%`` operator is what lets PostgreSQL use the index; it compares
        against ``pg_trgm.similarity_threshold``, which the caller sets to
        ``min_similarity`` for the transaction. The explicit similarity()
        comparison keeps the bound strict.
        """
        model = self.profile.model
        primary_expr, secondary_expr = (build() for build in _SQL_FIELDS[self.profile.entity_type])

        conditions = []
        ranking = []
        if query.primary.strip():
            primary_sim = func.similarity(primary_expr, query.primary)
            trgm_match = primary_expr.op("%", is_comparison=True)(query.primary)
            conditions.append(and_(trgm_match, primary_sim > min_similarity))
            ranking.append(primary_sim.desc())
        secondary = self.profile.secondary_key(query.secondary)
        if secondary:
            secondary_sim = func.similarity(secondary_expr, secondary)
            trgm_match = secondary_expr.op("%", is_comparison=True)(secondary)
            conditions.append(and_(trgm_match, secondary_sim > min_similarity))
            ranking.append(secondary_sim.desc())

        stmt = (
            select(*self.profile.columns())
            .where(model.tenant_id == ctx.tenant_id, model.merged_into_id.is_(None), or_(*conditions))
            .order_by(*ranking, model.id)
            .limit(self.config.candidate_limit)
        )
        if exclude_id is not None:
            stmt = stmt.where(model.id != exclude_id)
        return stmt

    def _pg_trgm_candidates(
        self,
        ctx: RequestContext,
        query: CandidateRecord,
        min_similarity: float,
        exclude_id: Optional[uuid.UUID],
    ) -> list[CandidateRecord]:
        """Real-time prefilter pushed down to PostgreSQL."""
        self.session.execute(
            select(func.set_config("pg_trgm.similarity_threshold", str(min_similarity), True))
        )
        stmt = self.pg_trgm_statement(ctx, query, min_similarity, exclude_id)
        return [self.profile.project_row(row) for row in self.session.execute(stmt)]
