"""
Duplicate Matching Settings API Routes.

Per-tenant similarity threshold and auto-detection toggle for each
mergeable entity type.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.services import get_request_context
from crm.database import get_db
from crm.deduplication import DedupeError, InvalidArgumentError, MatchingConfig, MatchingConfigStore, RequestContext

logger = logging.getLogger(__name__)
router = APIRouter()


class MatchingConfigResponse(BaseModel):
    entity_type: str
    similarity_threshold: int
    auto_detection_enabled: bool


class MatchingConfigUpdate(BaseModel):
    similarity_threshold: int = Field(..., ge=0, le=100)
    auto_detection_enabled: bool


def _response(config: MatchingConfig) -> MatchingConfigResponse:
    return MatchingConfigResponse(
        entity_type=config.entity_type,
        similarity_threshold=config.similarity_threshold,
        auto_detection_enabled=config.auto_detection_enabled,
    )


@router.get("/", response_model=list[MatchingConfigResponse])
def list_settings(
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """Settings for every mergeable entity type (defaults where unset)."""
    return [_response(c) for c in MatchingConfigStore(db).list_all(ctx)]


@router.get("/{entity_type}", response_model=MatchingConfigResponse)
def get_settings(
    entity_type: str,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    try:
        return _response(MatchingConfigStore(db).get(ctx, entity_type))
    except InvalidArgumentError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.put("/{entity_type}", response_model=MatchingConfigResponse)
def update_settings(
    entity_type: str,
    body: MatchingConfigUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """Create or update the tenant's settings for one entity type."""
    try:
        config = MatchingConfigStore(db).update(
            ctx, entity_type, body.similarity_threshold, body.auto_detection_enabled
        )
    except InvalidArgumentError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except DedupeError as e:
        logger.error(f"Failed to update duplicate settings for {entity_type}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update settings") from e

    logger.info(f"Duplicate settings for {entity_type} updated by user {ctx.user_id}")
    return _response(config)
