"""Pydantic schemas for request/response payloads."""

from datetime import datetime
from typing import Optional, List, Literal

from pydantic import BaseModel, Field

from .models import AdAccountStatusEnum, BudgetTypeEnum


CampaignSource = Literal["cache", "live", "database"]


class PerformanceMetrics(BaseModel):
    """Campaign performance counters plus derived ratios.

    Every field defaults to zero so a partially populated record can never
    reach a response.
    """

    spend: float = 0.0
    impressions: float = 0.0
    clicks: float = 0.0
    conversions: float = 0.0
    conversion_value: float = 0.0
    reach: float = 0.0
    frequency: float = 0.0
    ctr: float = Field(0.0, description="clicks / impressions * 100")
    cpc: float = Field(0.0, description="spend / clicks")
    cpm: float = Field(0.0, description="spend / impressions * 1000")
    roas: float = Field(0.0, description="conversion_value / spend")
    cpa: float = Field(0.0, description="spend / conversions")


class CampaignOut(BaseModel):
    """Campaign view object, identical on live, cached and database paths."""

    id: str = Field(description="Facebook campaign ID", example="120210000000000001")
    meta_campaign_id: str = Field(description="Facebook campaign ID (legacy alias of id)")
    ad_account_id: Optional[str] = Field(None, description="Owning ad account ID, without act_ prefix")
    name: str
    status: str = Field(description="Lowercased campaign status", example="active")
    effective_status: Optional[str] = None
    objective: Optional[str] = None
    budget: float = Field(0.0, description="Budget in account currency units (not cents)")
    budget_type: BudgetTypeEnum = BudgetTypeEnum.none
    created_date: Optional[datetime] = None
    updated_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    platform: str = "facebook"
    is_active: bool = False
    performance_metrics: PerformanceMetrics = Field(default_factory=PerformanceMetrics)


class CampaignListResponse(BaseModel):
    """Response for the campaign list endpoint."""

    success: bool = True
    data: List[CampaignOut]
    count: int
    cached: bool = Field(description="True when served from the response cache")
    source: CampaignSource = Field(description="cache, live (Facebook) or database (fallback)")
    reconnect_required: bool = Field(
        False,
        description="True when Facebook rejected the stored token and the account must be reconnected",
    )
    timestamp: datetime


class CampaignSummary(BaseModel):
    """Aggregate numbers over the user's campaigns."""

    total_campaigns: int = 0
    active_campaigns: int = 0
    total_spend: float = 0.0
    total_impressions: float = 0.0
    total_clicks: float = 0.0
    total_conversions: float = 0.0
    avg_ctr: float = 0.0
    avg_cpc: float = 0.0
    avg_roas: float = 0.0


class CampaignSummaryResponse(BaseModel):
    success: bool = True
    data: CampaignSummary
    timestamp: datetime


class CampaignDetailResponse(BaseModel):
    success: bool = True
    data: CampaignOut
    timestamp: datetime


class CampaignRefreshResponse(BaseModel):
    success: bool = True
    message: str
    count: int
    source: CampaignSource
    timestamp: datetime


class AdAccountOut(BaseModel):
    """Public representation of a connected ad account (no credential)."""

    account_id: str
    account_name: str
    currency: str
    status: AdAccountStatusEnum
    last_sync: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ConnectedAdAccountResponse(BaseModel):
    connected: bool
    account: Optional[AdAccountOut] = None


class AdAccountConnectRequest(BaseModel):
    """Payload for the account-selection step of the Facebook connection flow."""

    account_id: str = Field(description="Selected ad account ID, with or without act_ prefix", example="act_123456789")
    access_token: str = Field(description="User access token returned by the OAuth step")
    account_name: Optional[str] = Field(None, description="Display name; fetched from Facebook when omitted")
    currency: Optional[str] = Field(None, description="Currency code; fetched from Facebook when omitted")


class AdAccountConnectResponse(BaseModel):
    success: bool = True
    message: str
    account: AdAccountOut


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class HealthResponse(BaseModel):
    status: str = Field(description="Service health", example="ok")
