"""Meta Ads API Client Service.

WHAT:
    Wrapper for the Facebook Business SDK giving the campaign sync access to
    the Graph API: ad account details, campaign listing and per-campaign
    insights.

WHY:
    - Centralized Meta API interaction (single source of truth)
    - Uniform retry policy for throttling and server errors
    - Translation of SDK errors into a small exception hierarchy the sync
      service can branch on (auth failures vs everything else)

RETRIES:
    Every call gets up to 3 attempts on HTTP 429 or 5xx, sleeping
    1s x attempt between attempts. Other 4xx and network errors are raised
    on the first attempt.

REFERENCES:
    - backend/snapix/services/campaign_sync_service.py (only consumer)
    - https://developers.facebook.com/docs/marketing-api
"""

import logging
from functools import wraps
from itertools import islice
from time import sleep
from typing import List, Dict, Any, Optional

import requests
from facebook_business.api import FacebookAdsApi
from facebook_business.session import FacebookSession
from facebook_business.adobjects.adaccount import AdAccount
from facebook_business.adobjects.campaign import Campaign
from facebook_business.adobjects.adsinsights import AdsInsights
from facebook_business.exceptions import FacebookError, FacebookRequestError

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
RETRY_BASE_SECONDS = 1.0

# Graph API error code for invalid/expired OAuth access tokens
OAUTH_EXCEPTION_CODE = 190

ACCOUNT_PREFIX = "act_"

CAMPAIGN_FIELDS = [
    Campaign.Field.id,
    Campaign.Field.name,
    Campaign.Field.status,
    Campaign.Field.effective_status,
    Campaign.Field.objective,
    Campaign.Field.daily_budget,
    Campaign.Field.lifetime_budget,
    Campaign.Field.created_time,
    Campaign.Field.updated_time,
    Campaign.Field.start_time,
    Campaign.Field.stop_time,
]

INSIGHT_FIELDS = [
    AdsInsights.Field.campaign_id,
    AdsInsights.Field.spend,
    AdsInsights.Field.impressions,
    AdsInsights.Field.clicks,
    AdsInsights.Field.conversions,
    AdsInsights.Field.conversion_values,
    AdsInsights.Field.reach,
    AdsInsights.Field.frequency,
]

DEFAULT_DATE_PRESET = "last_30d"


class MetaAdsClientError(Exception):
    """Base exception for Meta Ads Client errors."""
    pass


class MetaAdsAuthenticationError(MetaAdsClientError):
    """Raised when the access token is invalid or expired (401 / code 190)."""
    pass


class MetaAdsPermissionError(MetaAdsClientError):
    """Raised when permissions are insufficient (403)."""
    pass


class MetaAdsValidationError(MetaAdsClientError):
    """Raised when request is malformed (400)."""
    pass


class MetaAdsTransientError(MetaAdsClientError):
    """Raised for throttling (429) and server errors (5xx). Retryable."""

    def __init__(self, message: str, http_status: Optional[int] = None):
        super().__init__(message)
        self.http_status = http_status


class MetaAdsConnectionError(MetaAdsClientError):
    """Raised when Facebook could not be reached at all."""
    pass


class MetaAdsMalformedResponseError(MetaAdsClientError):
    """Raised when the SDK cannot make sense of what Graph sent back."""
    pass


def normalize_account_id(account_id: str) -> str:
    """Return the Graph API form of an ad account ID (`act_<digits>`).

    Strips an existing prefix first so the prefix is never doubled.
    """
    account_id = (account_id or "").strip()
    if account_id.startswith(ACCOUNT_PREFIX):
        account_id = account_id[len(ACCOUNT_PREFIX):]
    return f"{ACCOUNT_PREFIX}{account_id}"


def strip_account_prefix(account_id: str) -> str:
    """Return the bare numeric ad account ID."""
    return normalize_account_id(account_id)[len(ACCOUNT_PREFIX):]


def with_retries(func):
    """Retry decorator with linear backoff for transient Graph API errors.

    WHAT:
        Re-invokes the wrapped call on MetaAdsTransientError, sleeping
        RETRY_BASE_SECONDS * attempt between attempts, for at most
        MAX_ATTEMPTS attempts in total.

    WHY:
        Facebook throttles with 429 and occasionally answers 5xx; both
        usually clear within seconds. Anything else will not get better by
        asking again.
    """

    @wraps(func)
    def wrapper(*args, **kwargs):
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                return func(*args, **kwargs)
            except MetaAdsTransientError as e:
                if attempt == MAX_ATTEMPTS:
                    raise
                wait_seconds = RETRY_BASE_SECONDS * attempt
                logger.warning(
                    "[META_CLIENT] Transient error (HTTP %s), retrying in %.1fs (attempt %d/%d)",
                    e.http_status, wait_seconds, attempt, MAX_ATTEMPTS,
                )
                sleep(wait_seconds)
    return wrapper


class MetaAdsClient:
    """Client for interacting with the Meta Marketing API on behalf of one user.

    WHAT:
        Holds a dedicated FacebookAdsApi instance bound to the user's access
        token, so concurrent syncs for different users never share
        credentials through the SDK's global default API.

    Usage:
        ```python
        client = MetaAdsClient(access_token="USER_TOKEN")
        campaigns = client.get_campaigns("act_123456789", limit=50, statuses=["ACTIVE"])
        insight = client.get_campaign_insights(campaigns[0]["id"])
        ```
    """

    def __init__(
        self,
        access_token: str,
        app_id: Optional[str] = None,
        app_secret: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize Meta Ads client with an access token.

        Args:
            access_token: User access token stored on the AdAccount
            app_id: Optional Facebook app ID
            app_secret: Optional Facebook app secret (enables appsecret_proof)
            api_version: Graph API version, e.g. "v19.0"
            timeout: Per-request timeout in seconds
        """
        self.access_token = access_token

        session = FacebookSession(
            app_id=app_id,
            app_secret=app_secret,
            access_token=access_token,
            timeout=timeout,
        )
        self.api = FacebookAdsApi(session, api_version=api_version)

        logger.info("[META_CLIENT] Initialized (api_version=%s, timeout=%s)", api_version, timeout)

    @with_retries
    def get_ad_account(self, account_id: str) -> Dict[str, Any]:
        """Fetch display details for an ad account.

        Returns:
            Dictionary with id, account_id, name, currency, account_status.
        """
        graph_id = normalize_account_id(account_id)
        try:
            logger.info("[META_CLIENT] Fetching ad account details: %s", graph_id)
            account = AdAccount(graph_id, api=self.api).api_get(fields=[
                AdAccount.Field.id,
                AdAccount.Field.account_id,
                AdAccount.Field.name,
                AdAccount.Field.currency,
                AdAccount.Field.account_status,
            ])
            return dict(account)
        except FacebookRequestError as e:
            return self._handle_api_error(e, f"fetching ad account {graph_id}")
        except requests.RequestException as e:
            return self._handle_connection_error(e, f"fetching ad account {graph_id}")
        except FacebookError as e:
            return self._handle_sdk_error(e, f"fetching ad account {graph_id}")

    @with_retries
    def get_campaigns(
        self,
        account_id: str,
        limit: int = 50,
        statuses: Optional[List[str]] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Fetch campaigns for an ad account.

        WHAT:
            Lists at most `limit` campaigns with the fields the dashboard
            needs. `statuses` becomes an effective_status IN filter; when both
            dates are given, campaigns are also filtered on updated_time.

        Args:
            account_id: Ad account ID, with or without the act_ prefix
            limit: Maximum number of campaigns to return
            statuses: effective_status values to keep (no filter when empty)
            start_date: YYYY-MM-DD, only used together with end_date
            end_date: YYYY-MM-DD, only used together with start_date

        Returns:
            List of raw campaign dictionaries (budgets in cents, times as
            Graph API strings).

        Raises:
            MetaAdsAuthenticationError: Invalid or expired token
            MetaAdsPermissionError: Insufficient permissions for account
            MetaAdsValidationError: Malformed request
            MetaAdsTransientError: 429/5xx after all retries
            MetaAdsConnectionError: Network failure
            MetaAdsMalformedResponseError: Payload the SDK could not parse
        """
        graph_id = normalize_account_id(account_id)
        params: Dict[str, Any] = {"limit": limit}
        filtering = build_campaign_filters(statuses, start_date, end_date)
        if filtering:
            params["filtering"] = filtering

        try:
            logger.info("[META_CLIENT] Fetching campaigns for account: %s", graph_id)

            cursor = AdAccount(graph_id, api=self.api).get_campaigns(
                fields=CAMPAIGN_FIELDS,
                params=params,
            )

            # The cursor pages on its own; stop once the caller's limit is met
            result = [dict(campaign) for campaign in islice(cursor, limit)]

            logger.info("[META_CLIENT] Fetched %d campaigns", len(result))
            return result

        except FacebookRequestError as e:
            return self._handle_api_error(e, f"fetching campaigns for {graph_id}")
        except requests.RequestException as e:
            return self._handle_connection_error(e, f"fetching campaigns for {graph_id}")
        except FacebookError as e:
            return self._handle_sdk_error(e, f"fetching campaigns for {graph_id}")

    @with_retries
    def get_campaign_insights(
        self,
        campaign_id: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Fetch aggregated insights for one campaign.

        WHAT:
            Uses an explicit time_range when both dates are given, otherwise
            the trailing-30-day preset.

        Returns:
            The single aggregated insight row (with campaign_id set), or None
            when Facebook has no delivery data for the period.
        """
        params: Dict[str, Any] = {"level": "campaign"}
        if start_date and end_date:
            params["time_range"] = {"since": start_date, "until": end_date}
        else:
            params["date_preset"] = DEFAULT_DATE_PRESET

        try:
            logger.debug("[META_CLIENT] Fetching insights for campaign %s", campaign_id)

            cursor = Campaign(campaign_id, api=self.api).get_insights(
                fields=INSIGHT_FIELDS,
                params=params,
            )
            first = next(iter(cursor), None)
            if first is None:
                return None

            insight = dict(first)
            insight["campaign_id"] = campaign_id
            return insight

        except FacebookRequestError as e:
            return self._handle_api_error(e, f"fetching insights for campaign {campaign_id}")
        except requests.RequestException as e:
            return self._handle_connection_error(e, f"fetching insights for campaign {campaign_id}")
        except FacebookError as e:
            return self._handle_sdk_error(e, f"fetching insights for campaign {campaign_id}")

    def _handle_sdk_error(self, error: FacebookError, context: str) -> None:
        logger.error("[META_CLIENT] Unexpected SDK error while %s: %r", context, error)
        raise MetaAdsMalformedResponseError(f"Unexpected response from Facebook while {context}") from error

    def _handle_connection_error(self, error: requests.RequestException, context: str) -> None:
        logger.error("[META_CLIENT] Network error while %s: %s", context, error)
        raise MetaAdsConnectionError(f"Could not reach Facebook while {context}") from error

    def _handle_api_error(self, error: FacebookRequestError, context: str) -> None:
        """Handle Facebook API errors with specific exceptions.

        WHAT:
            Translates FacebookRequestError into specific exception types.
            Logs error details for debugging (never the token).

        Raises:
            MetaAdsAuthenticationError: For 401 or OAuth error code 190
            MetaAdsPermissionError: For 403 errors
            MetaAdsValidationError: For 400 errors
            MetaAdsTransientError: For 429 and 5xx (retried by the decorator)
            MetaAdsClientError: For anything else
        """
        error_code = error.api_error_code()
        error_message = error.api_error_message()
        http_status = error.http_status()

        logger.error(
            "[META_CLIENT] API error while %s: HTTP %s, Code %s, Message: %s",
            context, http_status, error_code, error_message,
        )

        if http_status == 401 or error_code == OAUTH_EXCEPTION_CODE:
            raise MetaAdsAuthenticationError(
                f"Authentication failed while {context}. Token may be expired or invalid."
            ) from error
        elif http_status == 403:
            raise MetaAdsPermissionError(
                f"Permission denied while {context}. Check token permissions."
            ) from error
        elif http_status == 400:
            raise MetaAdsValidationError(
                f"Invalid request while {context}: {error_message}"
            ) from error
        elif http_status == 429 or (http_status is not None and http_status >= 500):
            raise MetaAdsTransientError(
                f"Transient API error while {context}: HTTP {http_status}",
                http_status=http_status,
            ) from error
        else:
            raise MetaAdsClientError(
                f"API error while {context}: HTTP {http_status}, {error_message}"
            ) from error


def build_campaign_filters(
    statuses: Optional[List[str]],
    start_date: Optional[str],
    end_date: Optional[str],
) -> List[Dict[str, Any]]:
    """Build the Graph API `filtering` list for a campaign listing.

    The SDK JSON-encodes the list when it builds the request.
    """
    filtering: List[Dict[str, Any]] = []
    if statuses:
        filtering.append({
            "field": "effective_status",
            "operator": "IN",
            "value": list(statuses),
        })
    if start_date and end_date:
        filtering.append({
            "field": "updated_time",
            "operator": "IN_RANGE",
            "value": [start_date, end_date],
        })
    return filtering
