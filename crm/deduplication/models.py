"""Value objects passed between the duplicate engine's components."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass(frozen=True)
class RequestContext:
    """Tenant scope and acting user, resolved once at the request boundary."""

    tenant_id: uuid.UUID
    user_id: uuid.UUID


@dataclass(frozen=True)
class CandidateRecord:
    """Minimal projection of an entity used for matching. Never persisted."""

    entity_id: Optional[uuid.UUID]
    tenant_id: Optional[uuid.UUID]
    primary: str
    secondary: str
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class DuplicateMatch:
    """A scored candidate for a query record."""

    entity_id: uuid.UUID
    primary: str
    secondary: str
    score: int
    updated_at: Optional[datetime]


@dataclass(frozen=True)
class DuplicatePair:
    """Two records found to be duplicates of each other by a batch scan."""

    record_a: DuplicateMatch
    record_b: DuplicateMatch
    score: int

    @property
    def latest_update(self) -> Optional[datetime]:
        stamps = [s for s in (self.record_a.updated_at, self.record_b.updated_at) if s is not None]
        return max(stamps) if stamps else None


@dataclass(frozen=True)
class ScanResult:
    items: list[DuplicatePair]
    total_count: int
    page: int
    page_size: int


@dataclass(frozen=True)
class MatchingConfig:
    entity_type: str
    similarity_threshold: int
    auto_detection_enabled: bool


@dataclass(frozen=True)
class MergePreview:
    counts_by_type: dict[str, int]

    @property
    def total_count(self) -> int:
        return sum(self.counts_by_type.values())


@dataclass(frozen=True)
class MergeResult:
    """Outcome of a completed merge. Mirrors the audit log row."""

    survivor_id: uuid.UUID
    loser_id: uuid.UUID
    transfer_counts: dict[str, int]
    merged_at: datetime
    merged_by_user_id: uuid.UUID
    field_selections: dict[str, Any] = field(default_factory=dict)
