"""Campaign sync service.

WHAT:
    Serves a user's Facebook campaigns with performance metrics:
    response cache -> connected ad account -> Graph API campaigns ->
    per-campaign insights -> metrics -> upsert -> cache.
    When Facebook cannot be used, serves the stored campaigns instead.

WHY:
    The dashboard must always render something. Upstream failures degrade
    to the last synced data (source="database") rather than an error, and
    only an unexpected internal fault surfaces as CampaignSyncError.

FLOW:
    1. Cache check (skipped on force_refresh)
    2. Resolve connected ad account + decrypt token
    3. List campaigns (effective_status / updated_time filters)
    4. Insights in chunks of 40, sequential within a chunk, 0.1s between chunks
    5. Map + upsert by meta_campaign_id + cache, source="live"
       or fallback to Campaign rows, source="database"

REFERENCES:
    - backend/snapix/services/meta_ads_client.py
    - backend/snapix/services/response_cache.py
    - backend/snapix/services/ad_account_service.py
    - backend/snapix/routers/campaigns.py
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from snapix.deps import Settings, get_settings
from snapix.models import Campaign, utcnow
from snapix.schemas import CampaignOut, CampaignSummary
from snapix.services.ad_account_service import (
    get_access_token,
    mark_token_expired,
    resolve_connected_ad_account,
)
from snapix.services.campaign_metrics import campaign_row_to_view, map_campaign_data
from snapix.services.meta_ads_client import (
    MetaAdsAuthenticationError,
    MetaAdsClient,
    MetaAdsClientError,
)
from snapix.services.response_cache import ResponseCache
from snapix.telemetry import capture_exception

logger = logging.getLogger(__name__)

DEFAULT_STATUSES = ("ACTIVE", "PAUSED")
DEFAULT_LIMIT = 50
MAX_LIMIT = 100

INSIGHTS_CHUNK_SIZE = 40
CHUNK_PAUSE_SECONDS = 0.1

CACHE_KEY_PREFIX = "campaigns"


class CampaignSyncError(Exception):
    """Raised when a sync fails for reasons other than Facebook being unavailable."""
    pass


@dataclass
class FetchCampaignsOptions:
    force_refresh: bool = False
    limit: int = DEFAULT_LIMIT
    status: List[str] = field(default_factory=lambda: list(DEFAULT_STATUSES))
    start_date: Optional[str] = None
    end_date: Optional[str] = None

    def normalized(self) -> "FetchCampaignsOptions":
        """Blank dates become None; limit is clamped to [1, 100]."""
        return replace(
            self,
            limit=max(1, min(MAX_LIMIT, int(self.limit))),
            status=list(self.status or []),
            start_date=(self.start_date or "").strip() or None,
            end_date=(self.end_date or "").strip() or None,
        )

    @property
    def has_date_range(self) -> bool:
        return bool(self.start_date and self.end_date)


@dataclass
class CampaignFetchResult:
    campaigns: List[CampaignOut]
    source: str
    reconnect_required: bool = False

    @property
    def cached(self) -> bool:
        return self.source == "cache"


def build_cache_key(user_email: str, options: FetchCampaignsOptions) -> str:
    """campaigns_{user}[_{start}_{end}]_{sorted statuses}_{limit}

    The date part is present only when both dates are set.
    """
    date_part = f"_{options.start_date}_{options.end_date}" if options.has_date_range else ""
    statuses = ",".join(sorted(options.status))
    return f"{CACHE_KEY_PREFIX}_{user_email}{date_part}_{statuses}_{options.limit}"


class CampaignSyncService:
    """Per-request campaign sync with injected collaborators.

    Args:
        db: SQLAlchemy session (request scoped)
        client_factory: access_token -> MetaAdsClient
        cache: ResponseCache over the same session by default
        sleep: pause between insight chunks
        settings: Settings instance (defaults to get_settings())
    """

    def __init__(
        self,
        db: Session,
        client_factory: Optional[Callable[[str], MetaAdsClient]] = None,
        cache: Optional[ResponseCache] = None,
        sleep: Callable[[float], None] = time.sleep,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.client_factory = client_factory or self._default_client_factory
        self.cache = cache or ResponseCache(db, ttl_minutes=self.settings.CACHE_TTL_MINUTES)
        self._sleep = sleep

    def _default_client_factory(self, access_token: str) -> MetaAdsClient:
        return MetaAdsClient(
            access_token,
            app_id=self.settings.FACEBOOK_APP_ID,
            app_secret=self.settings.FACEBOOK_APP_SECRET,
            api_version=self.settings.FACEBOOK_GRAPH_VERSION,
            timeout=self.settings.META_REQUEST_TIMEOUT_SECONDS,
        )

    def fetch_campaigns(
        self,
        user_email: str,
        options: Optional[FetchCampaignsOptions] = None,
    ) -> CampaignFetchResult:
        """Return the user's campaigns from cache, Facebook, or the database.

        Raises:
            ValueError: If user_email is empty
            CampaignSyncError: On an unexpected internal fault (reported to Sentry)
        """
        if not user_email:
            raise ValueError("user_email is required")

        options = (options or FetchCampaignsOptions()).normalized()
        cache_key = build_cache_key(user_email, options)

        try:
            if not options.force_refresh:
                cached = self.cache.get(cache_key, user_email)
                if cached is not None:
                    logger.info("[CAMPAIGN_SYNC] Serving %s from cache", cache_key)
                    return self._result_from_cache(cached)

            account = resolve_connected_ad_account(self.db, user_email)
            access_token = get_access_token(account) if account is not None else None
            if account is None or not access_token:
                logger.info("[CAMPAIGN_SYNC] No usable ad account for %s, using stored campaigns", user_email)
                return self._fallback_to_database(user_email, options, cache_key)

            try:
                campaigns = self._fetch_live(account.account_id, access_token, options)
            except MetaAdsAuthenticationError as e:
                logger.warning("[CAMPAIGN_SYNC] Facebook rejected token for act_%s: %s", account.account_id, e)
                self._mark_token_expired(account, str(e))
                return self._fallback_to_database(user_email, options, cache_key, reconnect_required=True)
            except MetaAdsClientError as e:
                logger.warning("[CAMPAIGN_SYNC] Facebook API failed for %s, using stored campaigns: %s", user_email, e)
                return self._fallback_to_database(user_email, options, cache_key)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("[CAMPAIGN_SYNC] Malformed Facebook payload for %s, using stored campaigns: %s", user_email, e)
                return self._fallback_to_database(user_email, options, cache_key)

            self._save_campaigns(campaigns, user_email, account)
            self._cache_result(cache_key, user_email, campaigns, reconnect_required=False)

            logger.info("[CAMPAIGN_SYNC] Served %d live campaigns for %s", len(campaigns), user_email)
            return CampaignFetchResult(campaigns=campaigns, source="live")

        except Exception as e:
            logger.exception("[CAMPAIGN_SYNC] Unexpected failure for %s", user_email)
            capture_exception(e, extra={"user_email": user_email, "cache_key": cache_key})
            raise CampaignSyncError("Failed to fetch campaigns") from e

    def _fetch_live(
        self,
        account_id: str,
        access_token: str,
        options: FetchCampaignsOptions,
    ) -> List[CampaignOut]:
        client = self.client_factory(access_token)
        raw_campaigns = client.get_campaigns(
            account_id,
            limit=options.limit,
            statuses=options.status,
            start_date=options.start_date if options.has_date_range else None,
            end_date=options.end_date if options.has_date_range else None,
        )
        insights = self._enrich_with_insights(client, raw_campaigns, options)
        return [
            map_campaign_data(campaign, insight, ad_account_id=account_id)
            for campaign, insight in zip(raw_campaigns, insights)
        ]

    def _enrich_with_insights(
        self,
        client: MetaAdsClient,
        campaigns: List[Dict[str, Any]],
        options: FetchCampaignsOptions,
    ) -> List[Optional[Dict[str, Any]]]:
        """Return one insight row (or None) per campaign, in input order.

        A chunk that fails as a whole contributes None for every campaign in it.
        """
        insights: List[Optional[Dict[str, Any]]] = []

        for start in range(0, len(campaigns), INSIGHTS_CHUNK_SIZE):
            if start > 0:
                self._sleep(CHUNK_PAUSE_SECONDS)

            chunk = campaigns[start:start + INSIGHTS_CHUNK_SIZE]
            try:
                insights.extend(self._fetch_chunk_insights(client, chunk, options))
            except Exception as e:
                logger.warning(
                    "[CAMPAIGN_SYNC] Insights failed for chunk %d-%d: %s",
                    start, start + len(chunk) - 1, e,
                )
                insights.extend([None] * len(chunk))

        return insights

    def _fetch_chunk_insights(
        self,
        client: MetaAdsClient,
        chunk: List[Dict[str, Any]],
        options: FetchCampaignsOptions,
    ) -> List[Optional[Dict[str, Any]]]:
        results: List[Optional[Dict[str, Any]]] = []
        for campaign in chunk:
            campaign_id = campaign["id"]
            try:
                insight = client.get_campaign_insights(
                    campaign_id,
                    start_date=options.start_date if options.has_date_range else None,
                    end_date=options.end_date if options.has_date_range else None,
                )
            except MetaAdsClientError as e:
                logger.warning("[CAMPAIGN_SYNC] Insights failed for campaign %s: %s", campaign_id, e)
                insight = None
            results.append(insight)
        return results

    def _save_campaigns(self, campaigns: List[CampaignOut], user_email: str, account) -> None:
        """Upsert campaigns by meta_campaign_id and stamp the account's last_sync.

        Graph paging can return one campaign twice; the last copy wins.
        Failures are logged and rolled back.
        """
        ad_account_id = account.account_id
        latest = {view.meta_campaign_id: view for view in campaigns}
        try:
            for view in latest.values():
                row = (
                    self.db.query(Campaign)
                    .filter(Campaign.meta_campaign_id == view.meta_campaign_id)
                    .first()
                )
                if row is None:
                    row = Campaign(meta_campaign_id=view.meta_campaign_id)
                    self.db.add(row)

                row.name = view.name
                row.status = view.status
                row.effective_status = view.effective_status
                row.objective = view.objective
                row.budget = Decimal(str(view.budget))
                row.budget_type = view.budget_type
                row.created_date = view.created_date
                row.updated_date = view.updated_date
                row.start_date = view.start_date
                row.end_date = view.end_date
                row.platform = view.platform
                row.is_active = view.is_active
                row.performance_metrics = view.performance_metrics.model_dump()
                row.created_by = user_email
                row.ad_account_id = ad_account_id

            account.last_sync = utcnow()
            self.db.commit()
            logger.info("[CAMPAIGN_SYNC] Saved %d campaigns for %s", len(latest), user_email)
        except Exception as e:
            logger.error("[CAMPAIGN_SYNC] Failed to save campaigns for %s: %s", user_email, e)
            self.db.rollback()

    def _mark_token_expired(self, account, error: str) -> None:
        try:
            mark_token_expired(self.db, account, error)
        except Exception as e:
            logger.error("[CAMPAIGN_SYNC] Failed to flag act_%s as token_expired: %s", account.account_id, e)
            self.db.rollback()

    def _fallback_to_database(
        self,
        user_email: str,
        options: FetchCampaignsOptions,
        cache_key: str,
        reconnect_required: bool = False,
    ) -> CampaignFetchResult:
        """Serve the user's stored campaigns, newest update first.

        Never raises; a failed read yields an empty list.
        """
        statuses = [s.lower() for s in options.status]
        try:
            rows = (
                self.db.query(Campaign)
                .filter(
                    Campaign.created_by == user_email,
                    Campaign.status.in_(statuses),
                )
                .order_by(Campaign.updated_at.desc())
                .limit(options.limit)
                .all()
            )
            campaigns = [campaign_row_to_view(row) for row in rows]
        except Exception as e:
            logger.error("[CAMPAIGN_SYNC] Database fallback failed for %s: %s", user_email, e)
            self.db.rollback()
            return CampaignFetchResult(campaigns=[], source="database", reconnect_required=reconnect_required)

        self._cache_result(cache_key, user_email, campaigns, reconnect_required=reconnect_required)

        logger.info("[CAMPAIGN_SYNC] Served %d stored campaigns for %s", len(campaigns), user_email)
        return CampaignFetchResult(
            campaigns=campaigns,
            source="database",
            reconnect_required=reconnect_required,
        )

    def _cache_result(
        self,
        cache_key: str,
        user_email: str,
        campaigns: List[CampaignOut],
        reconnect_required: bool,
    ) -> None:
        payload = {
            "campaigns": [campaign.model_dump(mode="json") for campaign in campaigns],
            "reconnect_required": reconnect_required,
        }
        self.cache.put(cache_key, user_email, payload)

    def _result_from_cache(self, payload: Any) -> CampaignFetchResult:
        if isinstance(payload, list):
            payload = {"campaigns": payload}
        return CampaignFetchResult(
            campaigns=[CampaignOut.model_validate(item) for item in payload.get("campaigns", [])],
            source="cache",
            reconnect_required=bool(payload.get("reconnect_required", False)),
        )


def summarize_campaigns(campaigns: List[CampaignOut]) -> CampaignSummary:
    """Totals over all campaigns; averages over campaigns with impressions."""
    delivering = [c for c in campaigns if c.performance_metrics.impressions > 0]

    def _avg(values: List[float]) -> float:
        return sum(values) / len(values) if values else 0.0

    return CampaignSummary(
        total_campaigns=len(campaigns),
        active_campaigns=sum(1 for c in campaigns if c.is_active),
        total_spend=sum(c.performance_metrics.spend for c in campaigns),
        total_impressions=sum(c.performance_metrics.impressions for c in campaigns),
        total_clicks=sum(c.performance_metrics.clicks for c in campaigns),
        total_conversions=sum(c.performance_metrics.conversions for c in campaigns),
        avg_ctr=_avg([c.performance_metrics.ctr for c in delivering]),
        avg_cpc=_avg([c.performance_metrics.cpc for c in delivering]),
        avg_roas=_avg([c.performance_metrics.roas for c in delivering]),
    )


def find_campaign(campaigns: List[CampaignOut], campaign_id: str) -> Optional[CampaignOut]:
    for campaign in campaigns:
        if campaign.id == campaign_id or campaign.meta_campaign_id == campaign_id:
            return campaign
    return None
