"""Tests for the campaign sync service critical paths.

WHAT:
    Cache hits, live sync with persistence, chunked insights isolation,
    database fallback and the token-expired path.

WHY:
    The dashboard depends on fetch_campaigns always returning a well-formed
    list; these tests pin the degradation behaviour.

REFERENCES:
    - snapix/services/campaign_sync_service.py (module under test)
"""

from datetime import datetime
from unittest.mock import patch

import pytest
from facebook_business.exceptions import FacebookBadObjectError

from snapix.models import AdAccountStatusEnum, Campaign, CacheEntry
from snapix.schemas import CampaignOut, PerformanceMetrics
from snapix.services.ad_account_service import connect_ad_account
from snapix.services import campaign_sync_service as svc
from snapix.services.campaign_sync_service import (
    CampaignSyncError,
    CampaignSyncService,
    FetchCampaignsOptions,
    build_cache_key,
    find_campaign,
    summarize_campaigns,
)
from snapix.services.meta_ads_client import (
    MetaAdsAuthenticationError,
    MetaAdsClient,
    MetaAdsTransientError,
    MetaAdsValidationError,
)
from snapix.services.response_cache import ResponseCache

USER = "test@example.com"


def _raw_campaigns(count, status="ACTIVE"):
    return [
        {"id": f"cmp-{i}", "name": f"Campaign {i}", "status": status, "daily_budget": "1000"}
        for i in range(count)
    ]


def _insight(campaign_id):
    return {"campaign_id": campaign_id, "spend": "10", "impressions": "1000", "clicks": "20"}


class _FakeMetaClient:
    def __init__(self, campaigns=None, campaigns_error=None, insight_errors=None):
        self.campaigns = campaigns or []
        self.campaigns_error = campaigns_error
        self.insight_errors = insight_errors or {}
        self.campaign_calls = []
        self.insight_calls = []

    def get_campaigns(self, account_id, limit=50, statuses=None, start_date=None, end_date=None):
        self.campaign_calls.append({
            "account_id": account_id,
            "limit": limit,
            "statuses": statuses,
            "start_date": start_date,
            "end_date": end_date,
        })
        if self.campaigns_error:
            raise self.campaigns_error
        return list(self.campaigns[:limit])

    def get_campaign_insights(self, campaign_id, start_date=None, end_date=None):
        self.insight_calls.append(campaign_id)
        error = self.insight_errors.get(campaign_id)
        if error:
            raise error
        return _insight(campaign_id)


class _Factory:
    """Client factory that records the tokens it was given."""

    def __init__(self, client):
        self.client = client
        self.tokens = []

    def __call__(self, access_token):
        self.tokens.append(access_token)
        return self.client


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_service(test_db_session, sleeps):
    def _make(client=None, cache=None):
        factory = _Factory(client or _FakeMetaClient())
        service = CampaignSyncService(
            test_db_session,
            client_factory=factory,
            cache=cache,
            sleep=sleeps.append,
        )
        return service, factory
    return _make


def _stored_campaign(db, campaign_id, updated_at, status="active", created_by=USER, **metrics):
    db.add(Campaign(
        meta_campaign_id=campaign_id,
        name=f"Stored {campaign_id}",
        status=status,
        budget=5,
        created_by=created_by,
        ad_account_id="123456789",
        performance_metrics=metrics,
        updated_at=updated_at,
    ))
    db.commit()


class TestCacheKey:

    def test_statuses_are_sorted(self):
        a = build_cache_key(USER, FetchCampaignsOptions(status=["PAUSED", "ACTIVE"]))
        b = build_cache_key(USER, FetchCampaignsOptions(status=["ACTIVE", "PAUSED"]))
        assert a == b == "campaigns_test@example.com_ACTIVE,PAUSED_50"

    def test_date_range_only_when_both_dates(self):
        both = FetchCampaignsOptions(start_date="2024-01-01", end_date="2024-01-31").normalized()
        one = FetchCampaignsOptions(start_date="2024-01-01", end_date="  ").normalized()

        assert build_cache_key(USER, both) == "campaigns_test@example.com_2024-01-01_2024-01-31_ACTIVE,PAUSED_50"
        assert build_cache_key(USER, one) == "campaigns_test@example.com_ACTIVE,PAUSED_50"
        assert one.end_date is None


class TestNoAccount:

    def test_no_account_serves_empty_database_result_without_upstream_calls(self, make_service, test_user):
        """WHAT: A user with nothing connected and nothing stored gets [].
        WHY: The dashboard must render an empty state, not an error.
        """
        service, factory = make_service()

        result = service.fetch_campaigns(USER)

        assert result.campaigns == []
        assert result.source == "database"
        assert result.reconnect_required is False
        assert factory.tokens == []

    def test_empty_user_rejected(self, make_service):
        service, _ = make_service()
        with pytest.raises(ValueError):
            service.fetch_campaigns("")


class TestLiveSync:

    def test_live_sync_maps_saves_and_caches(self, make_service, connected_account, test_db_session):
        client = _FakeMetaClient(campaigns=_raw_campaigns(2))
        service, factory = make_service(client)

        result = service.fetch_campaigns(USER)

        assert result.source == "live"
        assert factory.tokens == ["user-access-token"]
        assert client.campaign_calls[0]["account_id"] == "123456789"
        assert client.campaign_calls[0]["statuses"] == ["ACTIVE", "PAUSED"]
        assert [c.id for c in result.campaigns] == ["cmp-0", "cmp-1"]
        assert result.campaigns[0].budget == 10.0
        assert result.campaigns[0].performance_metrics.ctr == pytest.approx(2.0)

        rows = test_db_session.query(Campaign).order_by(Campaign.meta_campaign_id).all()
        assert [r.meta_campaign_id for r in rows] == ["cmp-0", "cmp-1"]
        assert rows[0].created_by == USER
        assert rows[0].ad_account_id == "123456789"
        assert rows[0].performance_metrics["spend"] == 10.0

        assert test_db_session.query(CacheEntry).count() == 1

    def test_second_call_is_served_from_cache(self, make_service, connected_account):
        client = _FakeMetaClient(campaigns=_raw_campaigns(2))
        service, factory = make_service(client)

        live = service.fetch_campaigns(USER)
        cached = service.fetch_campaigns(USER)

        assert cached.source == "cache"
        assert cached.cached is True
        assert cached.campaigns == live.campaigns
        assert len(client.campaign_calls) == 1

    def test_force_refresh_bypasses_cache(self, make_service, connected_account):
        client = _FakeMetaClient(campaigns=_raw_campaigns(1))
        service, _ = make_service(client)

        service.fetch_campaigns(USER)
        result = service.fetch_campaigns(USER, FetchCampaignsOptions(force_refresh=True))

        assert result.source == "live"
        assert len(client.campaign_calls) == 2

    def test_resync_updates_existing_rows(self, make_service, connected_account, test_db_session):
        client = _FakeMetaClient(campaigns=_raw_campaigns(1))
        service, _ = make_service(client)
        service.fetch_campaigns(USER)

        client.campaigns = [{**_raw_campaigns(1)[0], "name": "Renamed", "status": "PAUSED"}]
        service.fetch_campaigns(USER, FetchCampaignsOptions(force_refresh=True))

        rows = test_db_session.query(Campaign).all()
        assert len(rows) == 1
        assert rows[0].name == "Renamed"
        assert rows[0].status == "paused"
        assert rows[0].is_active is False

    def test_date_range_passed_through(self, make_service, connected_account):
        client = _FakeMetaClient(campaigns=_raw_campaigns(1))
        service, _ = make_service(client)

        service.fetch_campaigns(USER, FetchCampaignsOptions(start_date="2024-01-01", end_date="2024-01-31"))

        assert client.campaign_calls[0]["start_date"] == "2024-01-01"
        assert client.campaign_calls[0]["end_date"] == "2024-01-31"

    def test_duplicate_ids_in_one_batch_are_saved_once(self, make_service, connected_account, test_db_session):
        """WHAT: Graph can page the same campaign twice; the last copy is stored.
        WHY: Two inserts for one meta_campaign_id would fail the commit and
             lose every other campaign in the batch.
        """
        client = _FakeMetaClient(campaigns=[
            {"id": "dup", "name": "First copy", "status": "ACTIVE"},
            {"id": "other", "name": "Other", "status": "ACTIVE"},
            {"id": "dup", "name": "Second copy", "status": "PAUSED"},
        ])
        service, _ = make_service(client)

        result = service.fetch_campaigns(USER)

        assert result.source == "live"
        assert [c.id for c in result.campaigns] == ["dup", "other", "dup"]

        rows = test_db_session.query(Campaign).order_by(Campaign.meta_campaign_id).all()
        assert [r.meta_campaign_id for r in rows] == ["dup", "other"]
        assert rows[0].name == "Second copy"
        assert rows[0].status == "paused"

    def test_live_sync_stamps_last_sync(self, make_service, connected_account, test_db_session):
        assert connected_account.last_sync is None
        service, _ = make_service(_FakeMetaClient(campaigns=_raw_campaigns(1)))

        service.fetch_campaigns(USER)

        test_db_session.refresh(connected_account)
        assert connected_account.last_sync is not None

    def test_fallback_leaves_last_sync_alone(self, make_service, connected_account, test_db_session):
        client = _FakeMetaClient(campaigns_error=MetaAdsTransientError("HTTP 503", http_status=503))
        service, _ = make_service(client)

        service.fetch_campaigns(USER)

        test_db_session.refresh(connected_account)
        assert connected_account.last_sync is None


class TestInsightsChunking:

    def test_per_campaign_failures_zero_fill_only_those_campaigns(self, make_service, connected_account, sleeps):
        failing = {f"cmp-{i}": MetaAdsValidationError("bad") for i in range(40, 80)}
        client = _FakeMetaClient(campaigns=_raw_campaigns(81), insight_errors=failing)
        service, _ = make_service(client)

        result = service.fetch_campaigns(USER, FetchCampaignsOptions(limit=100))

        assert [c.id for c in result.campaigns] == [f"cmp-{i}" for i in range(81)]
        spends = [c.performance_metrics.spend for c in result.campaigns]
        assert spends[:40] == [10.0] * 40
        assert spends[40:80] == [0.0] * 40
        assert spends[80] == 10.0
        assert sleeps == [0.1, 0.1]

    def test_chunk_level_failure_zero_fills_whole_chunk(self, make_service, connected_account):
        """WHAT: An unexpected error mid-chunk discards that chunk's insights.
        WHY: Campaigns 40-44 were fetched before the failure but still end up zero.
        """
        client = _FakeMetaClient(
            campaigns=_raw_campaigns(81),
            insight_errors={"cmp-45": RuntimeError("socket closed")},
        )
        service, _ = make_service(client)

        result = service.fetch_campaigns(USER, FetchCampaignsOptions(limit=100))

        assert result.source == "live"
        metrics = [c.performance_metrics for c in result.campaigns]
        assert all(m.spend == 10.0 for m in metrics[:40])
        assert all(m == PerformanceMetrics() for m in metrics[40:80])
        assert metrics[80].spend == 10.0
        # Third chunk still fetched after the failed one
        assert "cmp-80" in client.insight_calls

    def test_no_pause_for_single_chunk(self, make_service, connected_account, sleeps):
        service, _ = make_service(_FakeMetaClient(campaigns=_raw_campaigns(40)))
        service.fetch_campaigns(USER)
        assert sleeps == []


class TestFallback:

    def test_upstream_failure_serves_stored_campaigns(self, make_service, connected_account, test_db_session):
        _stored_campaign(test_db_session, "old", datetime(2024, 1, 1), spend=5)
        _stored_campaign(test_db_session, "new", datetime(2024, 3, 1), spend=7)
        _stored_campaign(test_db_session, "mid", datetime(2024, 2, 1), status="paused")
        _stored_campaign(test_db_session, "archived", datetime(2024, 4, 1), status="archived")
        _stored_campaign(test_db_session, "foreign", datetime(2024, 5, 1), created_by="other@example.com")

        client = _FakeMetaClient(campaigns_error=MetaAdsTransientError("HTTP 503", http_status=503))
        service, _ = make_service(client)

        result = service.fetch_campaigns(USER, FetchCampaignsOptions(limit=2))

        assert result.source == "database"
        assert [c.id for c in result.campaigns] == ["new", "mid"]
        assert result.campaigns[0].performance_metrics.spend == 7
        assert result.campaigns[0].performance_metrics.cpc == 0

    def test_fallback_result_is_cached(self, make_service, test_user, test_db_session):
        _stored_campaign(test_db_session, "stored", datetime(2024, 1, 1))
        service, _ = make_service()

        service.fetch_campaigns(USER)
        again = service.fetch_campaigns(USER)

        assert again.source == "cache"
        assert [c.id for c in again.campaigns] == ["stored"]

    def test_fallback_read_failure_yields_empty_list(self, make_service, test_user, monkeypatch):
        service, _ = make_service()

        def _broken_view(row):
            raise RuntimeError("corrupt row")

        monkeypatch.setattr(svc, "campaign_row_to_view", _broken_view)
        _stored_campaign(service.db, "stored", datetime(2024, 1, 1))

        result = service.fetch_campaigns(USER)

        assert result.source == "database"
        assert result.campaigns == []

    def test_auth_failure_marks_token_expired(self, make_service, connected_account, test_db_session):
        client = _FakeMetaClient(campaigns_error=MetaAdsAuthenticationError("token expired"))
        service, _ = make_service(client)

        result = service.fetch_campaigns(USER)

        assert result.source == "database"
        assert result.reconnect_required is True
        test_db_session.refresh(connected_account)
        assert connected_account.status == AdAccountStatusEnum.token_expired
        assert connected_account.last_error == "token expired"

        # The cached fallback keeps the reconnect flag
        assert service.fetch_campaigns(USER).reconnect_required is True

    def test_reconnect_drops_cached_reconnect_flag(self, make_service, connected_account, test_db_session):
        client = _FakeMetaClient(campaigns_error=MetaAdsAuthenticationError("token expired"))
        service, factory = make_service(client)
        assert service.fetch_campaigns(USER).reconnect_required is True

        connect_ad_account(
            test_db_session, USER, "act_123456789", "fresh-token",
            account_name="Test Ad Account", currency="USD",
        )
        client.campaigns_error = None
        client.campaigns = _raw_campaigns(1)

        result = service.fetch_campaigns(USER)

        assert result.source == "live"
        assert result.reconnect_required is False
        assert factory.tokens[-1] == "fresh-token"

    def test_unparseable_sdk_response_falls_back_to_database(self, test_db_session, connected_account, sleeps):
        """WHAT: A real MetaAdsClient whose SDK call cannot parse the payload.
        WHY: The sync must serve stored campaigns, not raise CampaignSyncError.
        """
        _stored_campaign(test_db_session, "stored", datetime(2024, 1, 1))

        with patch("snapix.services.meta_ads_client.FacebookSession"), \
                patch("snapix.services.meta_ads_client.FacebookAdsApi"), \
                patch("snapix.services.meta_ads_client.AdAccount") as account_cls:
            account_cls.return_value.get_campaigns.side_effect = FacebookBadObjectError("unexpected response")
            service = CampaignSyncService(
                test_db_session,
                client_factory=MetaAdsClient,
                sleep=sleeps.append,
            )

            result = service.fetch_campaigns(USER)

        assert result.source == "database"
        assert result.reconnect_required is False
        assert [c.id for c in result.campaigns] == ["stored"]


class TestUnexpectedFaults:

    def test_internal_fault_raises_sync_error_and_reports(self, make_service, test_user, monkeypatch):
        captured = []

        def _boom(db, user_email):
            raise RuntimeError("unexpected")

        monkeypatch.setattr(svc, "resolve_connected_ad_account", _boom)
        monkeypatch.setattr(svc, "capture_exception", lambda e, extra=None: captured.append((e, extra)))

        service, _ = make_service()
        with pytest.raises(CampaignSyncError, match="Failed to fetch campaigns"):
            service.fetch_campaigns(USER)

        assert isinstance(captured[0][0], RuntimeError)
        assert captured[0][1]["user_email"] == USER

    def test_save_failure_still_returns_live_campaigns(self, make_service, connected_account, monkeypatch):
        service, _ = make_service(_FakeMetaClient(campaigns=_raw_campaigns(1)))
        original_commit = service.db.commit
        calls = {"n": 0}

        def _flaky_commit():
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("deadlock")
            return original_commit()

        monkeypatch.setattr(service.db, "commit", _flaky_commit)

        result = service.fetch_campaigns(USER)

        assert result.source == "live"
        assert [c.id for c in result.campaigns] == ["cmp-0"]


class TestHelpers:

    def _view(self, campaign_id, impressions, spend, clicks, active=True, conversion_value=0.0):
        return CampaignOut(
            id=campaign_id,
            meta_campaign_id=campaign_id,
            name=campaign_id,
            status="active" if active else "paused",
            is_active=active,
            performance_metrics=PerformanceMetrics(
                impressions=impressions,
                spend=spend,
                clicks=clicks,
                conversion_value=conversion_value,
                ctr=clicks / impressions * 100 if impressions else 0,
                cpc=spend / clicks if clicks else 0,
                roas=conversion_value / spend if spend else 0,
            ),
        )

    def test_summary_averages_only_delivering_campaigns(self):
        campaigns = [
            self._view("a", 1000, 10, 10, conversion_value=40),
            self._view("b", 1000, 30, 30, active=False, conversion_value=30),
            self._view("c", 0, 0, 0),
        ]

        summary = summarize_campaigns(campaigns)

        assert summary.total_campaigns == 3
        assert summary.active_campaigns == 2
        assert summary.total_spend == 40
        assert summary.total_clicks == 40
        assert summary.avg_ctr == pytest.approx(2.0)
        assert summary.avg_cpc == pytest.approx(1.0)
        assert summary.avg_roas == pytest.approx(2.5)

    def test_summary_of_nothing(self):
        summary = summarize_campaigns([])
        assert summary.total_campaigns == 0
        assert summary.avg_ctr == 0

    def test_find_campaign(self):
        campaigns = [self._view("a", 0, 0, 0)]
        assert find_campaign(campaigns, "a").id == "a"
        assert find_campaign(campaigns, "missing") is None
