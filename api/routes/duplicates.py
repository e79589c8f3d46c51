"""
Duplicate Detection & Merge API Routes.

Supports:
- Real-time duplicate check for a record being created or edited
- Paginated batch scan for duplicate pairs
- Merge preview (reference counts) and side-by-side comparison
- Merge execution and per-record merge history
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.services import get_request_context
from crm.config import settings
from crm.database import get_db
from crm.deduplication import (
    ConflictError,
    DedupeError,
    DuplicateDetectionService,
    DuplicateMatch,
    InvalidArgumentError,
    MergeService,
    NotFoundError,
    PreviewService,
    RequestContext,
    TransactionFailureError,
)

logger = logging.getLogger(__name__)
router = APIRouter()


# =============================================================================
# Schemas
# =============================================================================

class DuplicateCheckRequest(BaseModel):
    """Partial field set of a record being created or edited."""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    website: Optional[str] = None
    threshold: Optional[int] = Field(default=None, ge=0, le=100)
    exclude_id: Optional[uuid.UUID] = Field(default=None, description="Id of the record being edited")


class DuplicateMatchResponse(BaseModel):
    entity_id: uuid.UUID
    primary: str
    secondary: str
    score: int
    updated_at: Optional[datetime] = None


class DuplicatePairResponse(BaseModel):
    record_a: DuplicateMatchResponse
    record_b: DuplicateMatchResponse
    score: int


class ScanResponse(BaseModel):
    items: list[DuplicatePairResponse]
    total_count: int
    page: int
    page_size: int


class MergePreviewResponse(BaseModel):
    counts_by_type: dict[str, int]
    total_count: int


class MergeRequest(BaseModel):
    # Untyped so malformed ids or selections surface as 400 from the engine
    survivor_id: Optional[Any] = None
    loser_id: Optional[Any] = None
    field_selections: Optional[Any] = None


class MergeResponse(BaseModel):
    survivor_id: uuid.UUID
    loser_id: uuid.UUID
    transfer_counts: dict[str, int]
    merged_at: datetime


class ComparisonResponse(BaseModel):
    record_a: dict[str, Any]
    record_b: dict[str, Any]


class MergeHistoryEntry(BaseModel):
    id: uuid.UUID
    survivor_id: uuid.UUID
    loser_id: uuid.UUID
    merged_by_user_id: uuid.UUID
    field_selections: Optional[dict[str, Any]] = None
    transfer_counts: dict[str, int]
    merged_at: datetime


def _match(match: DuplicateMatch) -> DuplicateMatchResponse:
    return DuplicateMatchResponse(
        entity_id=match.entity_id,
        primary=match.primary,
        secondary=match.secondary,
        score=match.score,
        updated_at=match.updated_at,
    )


def _http_error(exc: DedupeError) -> HTTPException:
    """Map engine errors onto HTTP status codes."""
    if isinstance(exc, InvalidArgumentError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, TransactionFailureError):
        # Context is already logged by the merge service
        return HTTPException(status_code=500, detail="Merge failed. Please try again.")
    logger.error(f"Unhandled duplicate engine error: {exc}")
    return HTTPException(status_code=500, detail="Internal error")


# =============================================================================
# Detection
# =============================================================================

@router.post("/check/{entity_type}", response_model=list[DuplicateMatchResponse])
def check_duplicates(
    entity_type: str,
    body: DuplicateCheckRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """
    Real-time duplicate check.

    Returns up to 10 matches above the tenant's threshold, best first.
    Returns an empty list when auto-detection is disabled.
    """
    fields = body.model_dump(exclude={"threshold", "exclude_id"}, exclude_none=True)
    try:
        matches = DuplicateDetectionService(db).find_matches(
            ctx, entity_type, fields, threshold=body.threshold, exclude_id=body.exclude_id
        )
    except DedupeError as e:
        raise _http_error(e) from e
    return [_match(m) for m in matches]


@router.get("/scan/{entity_type}", response_model=ScanResponse)
def scan_duplicates(
    entity_type: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.dedupe.default_page_size, ge=1, le=settings.dedupe.max_page_size),
    threshold: Optional[int] = Query(None, ge=0, le=100),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """Paginated batch scan for duplicate pairs among active records."""
    try:
        result = DuplicateDetectionService(db).scan_for_duplicates(
            ctx, entity_type, threshold=threshold, page=page, page_size=page_size
        )
    except DedupeError as e:
        raise _http_error(e) from e

    return ScanResponse(
        items=[
            DuplicatePairResponse(record_a=_match(p.record_a), record_b=_match(p.record_b), score=p.score)
            for p in result.items
        ],
        total_count=result.total_count,
        page=result.page,
        page_size=result.page_size,
    )


# =============================================================================
# Preview & Comparison
# =============================================================================

@router.get("/merge-preview/{entity_type}", response_model=MergePreviewResponse)
def merge_preview(
    entity_type: str,
    survivor_id: Optional[str] = Query(None),
    loser_id: Optional[str] = Query(None),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """Count the references a merge would transfer, per type."""
    if not survivor_id or not loser_id:
        raise HTTPException(status_code=400, detail="survivor_id and loser_id are required")

    try:
        preview = PreviewService(db).preview(ctx, entity_type, survivor_id, loser_id)
    except DedupeError as e:
        raise _http_error(e) from e
    return MergePreviewResponse(counts_by_type=preview.counts_by_type, total_count=preview.total_count)


@router.get("/{entity_type}/{record_id}/comparison", response_model=ComparisonResponse)
def compare_records(
    entity_type: str,
    record_id: str,
    other_id: Optional[str] = Query(None),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """Side-by-side views of two records, tombstoned ones included."""
    if not other_id:
        raise HTTPException(status_code=400, detail="other_id is required")

    try:
        record_a, record_b = PreviewService(db).compare(ctx, entity_type, record_id, other_id)
    except DedupeError as e:
        raise _http_error(e) from e
    return ComparisonResponse(record_a=record_a, record_b=record_b)


@router.get("/{entity_type}/{record_id}/merge-history", response_model=list[MergeHistoryEntry])
def merge_history(
    entity_type: str,
    record_id: str,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """Merges in which this record was the survivor or the loser."""
    try:
        entries = PreviewService(db).merge_history(ctx, entity_type, record_id)
    except DedupeError as e:
        raise _http_error(e) from e

    return [
        MergeHistoryEntry(
            id=entry.id,
            survivor_id=entry.survivor_id,
            loser_id=entry.loser_id,
            merged_by_user_id=entry.merged_by_user_id,
            field_selections=entry.field_selections,
            transfer_counts=entry.transfer_counts or {},
            merged_at=entry.merged_at,
        )
        for entry in entries
    ]


# =============================================================================
# Merge
# =============================================================================

@router.post("/merge/{entity_type}", response_model=MergeResponse)
def merge_records(
    entity_type: str,
    body: MergeRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """Merge loser into survivor in a single transaction."""
    try:
        result = MergeService(db, entity_type).merge(
            ctx, body.survivor_id, body.loser_id, body.field_selections
        )
    except DedupeError as e:
        raise _http_error(e) from e

    return MergeResponse(
        survivor_id=result.survivor_id,
        loser_id=result.loser_id,
        transfer_counts=result.transfer_counts,
        merged_at=result.merged_at,
    )
