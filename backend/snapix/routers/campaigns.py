"""Campaign endpoints.

WHAT:
    Thin HTTP wrappers over CampaignSyncService: list, summary, single
    campaign lookup and forced refresh.

WHY:
    - Routers handle auth + request parsing only.
    - Sync logic (cache, Facebook, fallback) lives in the service layer.

REFERENCES:
    - backend/snapix/services/campaign_sync_service.py
"""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from snapix.database import get_db
from snapix.deps import get_current_user
from snapix.models import User, utcnow
from snapix.schemas import (
    CampaignDetailResponse,
    CampaignListResponse,
    CampaignRefreshResponse,
    CampaignSummaryResponse,
)
from snapix.services.campaign_sync_service import (
    CampaignSyncError,
    CampaignSyncService,
    FetchCampaignsOptions,
    find_campaign,
    summarize_campaigns,
)
from snapix.telemetry import set_user_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/campaigns", tags=["Campaigns"])

SUMMARY_STATUSES = ["ACTIVE", "PAUSED", "COMPLETED"]
LOOKUP_LIMIT = 100


def get_campaign_sync_service(db: Session = Depends(get_db)) -> CampaignSyncService:
    """Build a request-scoped sync service."""
    return CampaignSyncService(db)


def _fetch(service: CampaignSyncService, user: User, options: FetchCampaignsOptions):
    set_user_context(user_id=str(user.id), email=user.email)
    try:
        return service.fetch_campaigns(user.email, options)
    except CampaignSyncError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch campaigns",
        )


@router.get("", response_model=CampaignListResponse)
def list_campaigns(
    force_refresh: bool = Query(False, description="Bypass the response cache"),
    limit: int = Query(50, ge=1, le=100),
    status_filter: List[str] = Query(["ACTIVE", "PAUSED"], alias="status"),
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD, used only with end_date"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD, used only with start_date"),
    service: CampaignSyncService = Depends(get_campaign_sync_service),
    current_user: User = Depends(get_current_user),
) -> CampaignListResponse:
    """List campaigns with performance metrics (cache, live or stored)."""
    logger.info("[CAMPAIGNS] List requested by %s (force_refresh=%s)", current_user.email, force_refresh)
    result = _fetch(service, current_user, FetchCampaignsOptions(
        force_refresh=force_refresh,
        limit=limit,
        status=status_filter,
        start_date=start_date,
        end_date=end_date,
    ))
    return CampaignListResponse(
        data=result.campaigns,
        count=len(result.campaigns),
        cached=result.cached,
        source=result.source,
        reconnect_required=result.reconnect_required,
        timestamp=utcnow(),
    )


@router.get("/summary", response_model=CampaignSummaryResponse)
def campaign_summary(
    service: CampaignSyncService = Depends(get_campaign_sync_service),
    current_user: User = Depends(get_current_user),
) -> CampaignSummaryResponse:
    """Aggregate spend/impressions/clicks/conversions and average ratios."""
    result = _fetch(service, current_user, FetchCampaignsOptions(
        limit=LOOKUP_LIMIT,
        status=list(SUMMARY_STATUSES),
    ))
    return CampaignSummaryResponse(data=summarize_campaigns(result.campaigns), timestamp=utcnow())


@router.post("/refresh", response_model=CampaignRefreshResponse)
def refresh_campaigns(
    service: CampaignSyncService = Depends(get_campaign_sync_service),
    current_user: User = Depends(get_current_user),
) -> CampaignRefreshResponse:
    """Bypass the cache and pull campaigns from Facebook again."""
    logger.info("[CAMPAIGNS] Forced refresh by %s", current_user.email)
    result = _fetch(service, current_user, FetchCampaignsOptions(force_refresh=True))
    return CampaignRefreshResponse(
        message="Campaigns refreshed successfully",
        count=len(result.campaigns),
        source=result.source,
        timestamp=utcnow(),
    )


@router.get("/{campaign_id}", response_model=CampaignDetailResponse)
def get_campaign(
    campaign_id: str,
    service: CampaignSyncService = Depends(get_campaign_sync_service),
    current_user: User = Depends(get_current_user),
) -> CampaignDetailResponse:
    """Look up one campaign by id or meta_campaign_id."""
    result = _fetch(service, current_user, FetchCampaignsOptions(limit=LOOKUP_LIMIT))
    campaign = find_campaign(result.campaigns, campaign_id)
    if campaign is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Campaign not found")
    return CampaignDetailResponse(data=campaign, timestamp=utcnow())
