"""Duplicate detection and merge for contacts and companies."""

from crm.deduplication.detection import DuplicateDetectionService
from crm.deduplication.errors import (
    ConflictError,
    DedupeError,
    InvalidArgumentError,
    NotFoundError,
    TransactionFailureError,
)
from crm.deduplication.matching_config import MatchingConfigStore
from crm.deduplication.merge import MergeService
from crm.deduplication.models import (
    CandidateRecord,
    DuplicateMatch,
    DuplicatePair,
    MatchingConfig,
    MergePreview,
    MergeResult,
    RequestContext,
    ScanResult,
)
from crm.deduplication.preview import PreviewService
from crm.deduplication.profiles import EntityType, get_profile
from crm.deduplication.relationships import register_relationship, relationships_for
from crm.deduplication.scoring import Scorer, score

__all__ = [
    # Services
    "DuplicateDetectionService",
    "MatchingConfigStore",
    "MergeService",
    "PreviewService",
    # Scoring
    "score",
    "Scorer",
    # Types
    "EntityType",
    "get_profile",
    "RequestContext",
    "CandidateRecord",
    "DuplicateMatch",
    "DuplicatePair",
    "ScanResult",
    "MatchingConfig",
    "MergePreview",
    "MergeResult",
    # Relationship catalog
    "register_relationship",
    "relationships_for",
    # Errors
    "DedupeError",
    "InvalidArgumentError",
    "NotFoundError",
    "ConflictError",
    "TransactionFailureError",
]
