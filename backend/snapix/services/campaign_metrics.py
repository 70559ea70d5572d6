"""Campaign mapping and derived metric computation.

WHAT:
    Converts raw Graph API campaign + insight payloads into the CampaignOut
    view, and stored Campaign rows back into the same view.

WHY:
    Upstream values arrive as strings, lists of action dicts, or not at all.
    Everything is parsed defensively here so the rest of the sync never sees
    a raw payload. Ratios are always recomputed from the raw counters.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from snapix.models import BudgetTypeEnum
from snapix.schemas import CampaignOut, PerformanceMetrics

logger = logging.getLogger(__name__)

GRAPH_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

RAW_METRIC_FIELDS = (
    "spend",
    "impressions",
    "clicks",
    "conversions",
    "conversion_value",
    "reach",
    "frequency",
)


def _to_number(value: Any) -> float:
    """Parse a Graph API numeric value; anything unusable becomes 0.

    Action-type metrics (conversions, conversion_values) come back as a list
    of {"action_type": ..., "value": ...} dicts and are summed.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (list, tuple)):
        return sum(
            _to_number(item.get("value") if isinstance(item, dict) else item)
            for item in value
        )
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    # NaN and infinities
    if number != number or number in (float("inf"), float("-inf")):
        return 0.0
    return number


def _ratio(numerator: float, denominator: float, scale: float = 1.0) -> float:
    if not denominator:
        return 0.0
    return numerator / denominator * scale


def zero_metrics() -> PerformanceMetrics:
    return PerformanceMetrics()


def compute_performance_metrics(insight: Optional[Dict[str, Any]]) -> PerformanceMetrics:
    """Build PerformanceMetrics from one raw insight row (or None)."""
    if not insight:
        return zero_metrics()

    spend = _to_number(insight.get("spend"))
    impressions = _to_number(insight.get("impressions"))
    clicks = _to_number(insight.get("clicks"))
    conversions = _to_number(insight.get("conversions"))
    conversion_value = _to_number(
        insight.get("conversion_value", insight.get("conversion_values"))
    )

    return PerformanceMetrics(
        spend=spend,
        impressions=impressions,
        clicks=clicks,
        conversions=conversions,
        conversion_value=conversion_value,
        reach=_to_number(insight.get("reach")),
        frequency=_to_number(insight.get("frequency")),
        ctr=_ratio(clicks, impressions, 100.0),
        cpc=_ratio(spend, clicks),
        cpm=_ratio(spend, impressions, 1000.0),
        roas=_ratio(conversion_value, spend),
        cpa=_ratio(spend, conversions),
    )


def parse_graph_datetime(value: Any) -> Optional[datetime]:
    """Parse a Graph API timestamp ("2024-01-15T10:00:00-0800") to naive UTC."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.strptime(str(value), GRAPH_DATETIME_FORMAT)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(str(value))
            except ValueError:
                logger.debug("[CAMPAIGN_SYNC] Unparseable timestamp: %s", value)
                return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _budget(campaign: Dict[str, Any]) -> tuple[float, BudgetTypeEnum]:
    """Budget in currency units; Facebook reports minor units (cents)."""
    daily = _to_number(campaign.get("daily_budget"))
    if daily:
        return daily / 100, BudgetTypeEnum.daily
    lifetime = _to_number(campaign.get("lifetime_budget"))
    if lifetime:
        return lifetime / 100, BudgetTypeEnum.lifetime
    return 0.0, BudgetTypeEnum.none


def map_campaign_data(
    campaign: Dict[str, Any],
    insight: Optional[Dict[str, Any]] = None,
    ad_account_id: Optional[str] = None,
) -> CampaignOut:
    """Map a raw Graph API campaign (plus its insight row) to CampaignOut.

    Pure: the same inputs always produce an equal result.
    """
    raw_status = campaign.get("status")
    status = str(raw_status).lower() if raw_status else "unknown"
    budget, budget_type = _budget(campaign)

    return CampaignOut(
        id=str(campaign["id"]),
        meta_campaign_id=str(campaign["id"]),
        ad_account_id=ad_account_id,
        name=campaign.get("name") or "",
        status=status,
        effective_status=campaign.get("effective_status"),
        objective=campaign.get("objective"),
        budget=budget,
        budget_type=budget_type,
        created_date=parse_graph_datetime(campaign.get("created_time")),
        updated_date=parse_graph_datetime(campaign.get("updated_time")),
        start_date=parse_graph_datetime(campaign.get("start_time")),
        end_date=parse_graph_datetime(campaign.get("stop_time")),
        platform="facebook",
        is_active=raw_status == "ACTIVE",
        performance_metrics=compute_performance_metrics(insight),
    )


def campaign_row_to_view(row) -> CampaignOut:
    """Map a stored Campaign row to CampaignOut, zero-filling missing metrics."""
    stored = row.performance_metrics or {}
    metrics = PerformanceMetrics(**{
        name: _to_number(stored.get(name))
        for name in PerformanceMetrics.model_fields
    })
    budget = row.budget
    if isinstance(budget, Decimal):
        budget = float(budget)

    return CampaignOut(
        id=row.meta_campaign_id,
        meta_campaign_id=row.meta_campaign_id,
        ad_account_id=row.ad_account_id,
        name=row.name,
        status=row.status,
        effective_status=row.effective_status,
        objective=row.objective,
        budget=budget or 0.0,
        budget_type=row.budget_type or BudgetTypeEnum.none,
        created_date=row.created_date,
        updated_date=row.updated_date,
        start_date=row.start_date,
        end_date=row.end_date,
        platform=row.platform or "facebook",
        is_active=bool(row.is_active),
        performance_metrics=metrics,
    )
