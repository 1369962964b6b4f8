from facebook_business.api import FacebookAdsApi
from facebook_business.adobjects.abstractobject import AbstractObject
from facebook_business.adobjects.adaccount import AdAccount
from facebook_business.adobjects.campaign import Campaign
from facebook_business.exceptions import FacebookRequestError
from decimal import Decimal, InvalidOperation
from itertools import islice
import re
import logging
import requests

from facebook_ads_importer.field_extractor import parse_id_field

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com"
ADS_MANAGER_URL = "https://www.facebook.com/adsmanager/manage/campaigns"
ACCESS_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]{50,}$")

CAMPAIGN_FIELDS = [
    "id",
    "account_id",
    "name",
    "objective",
    "status",
    "effective_status",
    "configured_status",
    "buying_type",
    "bid_strategy",
    "daily_budget",
    "lifetime_budget",
    "budget_remaining",
    "special_ad_categories",
    "start_time",
    "stop_time",
    "created_time",
    "updated_time",
]
CAMPAIGN_STATUS_FIELDS = ["id", "name", "status", "effective_status"]
AD_SET_FIELDS = [
    "id",
    "name",
    "campaign_id",
    "status",
    "effective_status",
    "daily_budget",
    "lifetime_budget",
    "optimization_goal",
    "billing_event",
    "bid_strategy",
    "targeting",
    "created_time",
]
INSIGHTS_FIELDS = [
    "campaign_id",
    "campaign_name",
    "spend",
    "impressions",
    "reach",
    "clicks",
    "inline_link_clicks",
    "actions",
    "cpc",
    "cpm",
    "ctr",
]
AD_ACCOUNT_FIELDS = "account_id,name,account_status,currency"


# Custom exceptions
class FacebookAPIError(Exception):
    """Base exception for Facebook API errors."""

    step = None
    kind = "api_error"

    def __init__(self, message: str, api_message: str = None, error_code=None):
        super().__init__(message)
        self.api_message = api_message or message
        self.error_code = error_code


class FacebookAPIInitError(FacebookAPIError):
    """Exception raised when Facebook API initialization or token checks fail."""

    step = "init"


class FacebookCampaignCreationError(FacebookAPIError):
    """Exception raised when campaign creation fails."""

    step = "campaign"


class FacebookAdSetCreationError(FacebookAPIError):
    """Exception raised when ad set creation fails."""

    step = "adset"


class FacebookCreativeError(FacebookAPIError):
    """Exception raised when ad creative creation fails."""

    step = "creative"


class FacebookAdCreationError(FacebookAPIError):
    """Exception raised when ad creation fails."""

    step = "ad"


class FacebookManagementError(FacebookAPIError):
    """Exception raised when reading or updating existing campaigns fails."""

    step = "manage"


class FacebookAPITimeoutError(FacebookAPIError):
    """Exception raised when a Graph API call does not answer within the request timeout."""

    kind = "timeout"

    def __init__(self, message: str, step: str = None):
        super().__init__(message)
        self.step = step


class FacebookNetworkError(FacebookAPIError):
    """Exception raised when the Graph API cannot be reached."""

    kind = "network"

    def __init__(self, message: str, step: str = None):
        super().__init__(message)
        self.step = step


def validate_access_token_format(access_token: str) -> bool:
    """
    Check that an access token looks like a Graph API token.

    Only the shape is checked here; verify_access_token asks Facebook.
    """
    if not access_token or not isinstance(access_token, str):
        return False
    return bool(ACCESS_TOKEN_PATTERN.match(access_token.strip()))


def normalize_ad_account_id(account_id) -> str:
    """Return an ad account id in the act_<digits> form the Marketing API expects."""
    text = parse_id_field(account_id)
    if text.startswith("act_"):
        text = text[4:]
    if not text.isdigit():
        raise ValueError(f"Invalid ad account id: '{account_id}'")
    return f"act_{text}"


def ads_manager_url(account_id: str, campaign_id: str) -> str:
    account_digits = normalize_ad_account_id(account_id)[4:]
    return f"{ADS_MANAGER_URL}?act={account_digits}&selected_campaign_ids={campaign_id}"


def _graph_error_message(response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return f"HTTP {response.status_code}"


def _graph_get(
    path: str, access_token: str, action: str, api_version: str, timeout: float, params=None
) -> dict:
    """GET a Graph API path with the token, raising init errors on any failure."""
    try:
        response = requests.get(
            f"{GRAPH_API_BASE}/{api_version}/{path}",
            params={"access_token": access_token.strip(), **(params or {})},
            timeout=timeout,
        )
    except requests.exceptions.Timeout as e:
        raise FacebookAPITimeoutError(
            f"Timed out {action} after {timeout}s", step="init"
        ) from e
    except requests.exceptions.RequestException as e:
        raise FacebookNetworkError(
            f"Could not reach Facebook {action}: {e}", step="init"
        ) from e

    if not response.ok:
        api_message = _graph_error_message(response)
        logger.error(f"Facebook refused {action}: {api_message}")
        raise FacebookAPIInitError(
            f"Access token rejected by Facebook while {action}: {api_message}",
            api_message=api_message,
        )
    return response.json()


def verify_access_token(
    access_token: str, api_version: str = "v23.0", timeout: float = 30
) -> dict:
    """
    Ask the Graph API who owns an access token.

    Args:
        access_token: Token to check
        api_version: Graph API version, e.g. "v23.0"
        timeout: Request timeout in seconds

    Returns:
        The /me payload, at least {"id": ..., "name": ...}

    Raises:
        FacebookAPIInitError: If the token is malformed or rejected
        FacebookAPITimeoutError: If the Graph API does not answer in time
    """
    if not validate_access_token_format(access_token):
        raise FacebookAPIInitError("Access token format is invalid")

    user = _graph_get(
        "me",
        access_token,
        "verifying access token",
        api_version,
        timeout,
        {"fields": "id,name"},
    )
    logger.info(f"Access token verified for user {user.get('id')}")
    return user


def inspect_access_token(
    access_token: str, api_version: str = "v23.0", timeout: float = 30
) -> dict:
    """
    Describe what an access token can do: owner, permissions and ad accounts.

    Returns:
        Dictionary with user, granted and declined permissions, ad accounts and
        whether ads_management is granted
    """
    user = verify_access_token(access_token, api_version, timeout)
    permissions = _graph_get(
        "me/permissions", access_token, "reading token permissions", api_version, timeout
    ).get("data", [])
    accounts = _graph_get(
        "me/adaccounts",
        access_token,
        "listing ad accounts",
        api_version,
        timeout,
        {"fields": AD_ACCOUNT_FIELDS, "limit": 100},
    ).get("data", [])

    granted = sorted(p["permission"] for p in permissions if p.get("status") == "granted")
    declined = sorted(p["permission"] for p in permissions if p.get("status") != "granted")
    return {
        "user": user,
        "permissions": granted,
        "declined_permissions": declined,
        "ad_accounts": accounts,
        "can_manage_ads": "ads_management" in granted,
    }


def init_facebook_api(
    access_token: str,
    app_id: str = None,
    app_secret: str = None,
    api_version: str = None,
    timeout: float = None,
) -> FacebookAdsApi:
    """
    Initialize the Facebook Marketing API with provided credentials.

    Returns:
        The FacebookAdsApi instance to pass to ad objects
    """
    try:
        api = FacebookAdsApi.init(
            app_id, app_secret, access_token, api_version=api_version, timeout=timeout
        )
        logger.info("Facebook API initialized successfully")
        return api
    except Exception as e:
        logger.error(f"Failed to initialize Facebook API: {e}")
        raise FacebookAPIInitError(
            f"Facebook API initialization failed: {str(e)}"
        ) from e


def _call_graph(action: str, error_cls, call, *args, **kwargs):
    """
    Run one SDK call, mapping its failures onto the FacebookAPIError hierarchy.

    Args:
        action: What the call does, e.g. "creating campaign", used in messages
        error_cls: FacebookAPIError subclass raised for API rejections
        call: SDK callable
    """
    try:
        return call(*args, **kwargs)
    except FacebookRequestError as e:
        api_message = e.api_error_message() or str(e)
        error_msg = f"Facebook API error {action}: {api_message}"
        logger.error(error_msg)
        raise error_cls(
            error_msg, api_message=api_message, error_code=e.api_error_code()
        ) from e
    except requests.exceptions.Timeout as e:
        error_msg = f"Timed out {action}"
        logger.error(error_msg)
        raise FacebookAPITimeoutError(error_msg, step=error_cls.step) from e
    except requests.exceptions.RequestException as e:
        error_msg = f"Network error {action}: {str(e)}"
        logger.error(error_msg)
        raise FacebookNetworkError(error_msg, step=error_cls.step) from e
    except Exception as e:
        error_msg = f"Error {action}: {str(e)}"
        logger.error(error_msg)
        raise error_cls(error_msg) from e


def _export(item) -> dict:
    if isinstance(item, AbstractObject):
        return item.export_all_data()
    return dict(item)


def _export_all(cursor, limit: int = None) -> list:
    """Read SDK objects from a cursor, following pages until limit items are read."""
    items = cursor if limit is None else islice(cursor, limit)
    return [_export(item) for item in items]


def get_campaign_status(campaign_id: str, api: FacebookAdsApi = None) -> dict:
    """Read the configured and effective status of one campaign."""
    return _call_graph(
        f"reading status of campaign {campaign_id}",
        FacebookManagementError,
        lambda: _export(
            Campaign(campaign_id, api=api).api_get(fields=CAMPAIGN_STATUS_FIELDS)
        ),
    )


def update_campaign_status(
    campaign_id: str, status: str, api: FacebookAdsApi = None
) -> dict:
    """
    Pause or activate an existing campaign.

    Args:
        campaign_id: Campaign to update
        status: "ACTIVE" or "PAUSED"

    Returns:
        {"campaign_id": ..., "status": ...}
    """
    _call_graph(
        f"updating status of campaign {campaign_id}",
        FacebookManagementError,
        Campaign(campaign_id, api=api).api_update,
        params={"status": status},
    )
    logger.info(f"Campaign {campaign_id} set to {status}")
    return {"campaign_id": campaign_id, "status": status}


def summarize_insights(rows: list) -> dict:
    """Total spend, impressions, reach and clicks over insight rows."""
    totals = {"spend": Decimal("0"), "impressions": 0, "reach": 0, "clicks": 0}
    for row in rows:
        try:
            totals["spend"] += Decimal(str(row.get("spend") or "0"))
        except InvalidOperation:
            logger.warning(f"Ignoring unreadable spend '{row.get('spend')}'")
        for key in ("impressions", "reach", "clicks"):
            value = str(row.get(key) or "0")
            if value.isdigit():
                totals[key] += int(value)
    totals["spend"] = str(totals["spend"])
    return totals


class AdAccountClient:
    """
    Marketing API calls on a single ad account.

    Creation calls are blocking and made exactly once. Failures are raised as the
    FacebookAPIError subclass for the step, carrying the API message verbatim.
    """

    def __init__(self, ad_account_id: str, api: FacebookAdsApi = None):
        self.ad_account_id = normalize_ad_account_id(ad_account_id)
        self.api = api
        self.ad_account = AdAccount(self.ad_account_id, api=api)

    def _create(self, label: str, error_cls, create, params: dict) -> str:
        created = _call_graph(f"creating {label}", error_cls, create, params=params)
        return created["id"]

    def create_campaign(self, params: dict) -> str:
        return self._create(
            "campaign",
            FacebookCampaignCreationError,
            self.ad_account.create_campaign,
            params,
        )

    def create_ad_set(self, params: dict) -> str:
        return self._create(
            "ad set", FacebookAdSetCreationError, self.ad_account.create_ad_set, params
        )

    def create_ad_creative(self, params: dict) -> str:
        return self._create(
            "ad creative",
            FacebookCreativeError,
            self.ad_account.create_ad_creative,
            params,
        )

    def create_ad(self, params: dict) -> str:
        return self._create(
            "ad", FacebookAdCreationError, self.ad_account.create_ad, params
        )

    def list_campaigns(self, limit: int = 25, statuses=None) -> list:
        """
        List campaigns on the account, newest first as the API returns them.

        Args:
            limit: Maximum number of campaigns to return
            statuses: Effective statuses to keep, e.g. ["ACTIVE", "PAUSED"]
        """
        params = {"limit": limit}
        if statuses:
            params["effective_status"] = list(statuses)
        return _call_graph(
            f"listing campaigns of {self.ad_account_id}",
            FacebookManagementError,
            lambda: _export_all(
                self.ad_account.get_campaigns(fields=CAMPAIGN_FIELDS, params=params),
                limit,
            ),
        )

    def list_ad_sets(self, campaign_id: str = None, limit: int = 25) -> list:
        """List ad sets of one campaign, or of the whole account."""
        parent = Campaign(campaign_id, api=self.api) if campaign_id else self.ad_account
        return _call_graph(
            f"listing ad sets of {campaign_id or self.ad_account_id}",
            FacebookManagementError,
            lambda: _export_all(
                parent.get_ad_sets(fields=AD_SET_FIELDS, params={"limit": limit}), limit
            ),
        )

    def get_insights(
        self, date_preset: str = "last_7d", level: str = "campaign", campaign_ids=None
    ) -> list:
        """
        Read delivery insights for the account or for specific campaigns.

        A campaign the API refuses is skipped with a warning, so one stale id
        does not hide the others.
        """
        params = {"date_preset": date_preset}
        if not campaign_ids:
            return _call_graph(
                f"reading insights of {self.ad_account_id}",
                FacebookManagementError,
                lambda: _export_all(
                    self.ad_account.get_insights(
                        fields=INSIGHTS_FIELDS, params={**params, "level": level}
                    )
                ),
            )

        rows = []
        for campaign_id in campaign_ids:
            campaign = Campaign(campaign_id, api=self.api)
            try:
                rows.extend(
                    _call_graph(
                        f"reading insights of campaign {campaign_id}",
                        FacebookManagementError,
                        lambda: _export_all(
                            campaign.get_insights(fields=INSIGHTS_FIELDS, params=params)
                        ),
                    )
                )
            except FacebookManagementError as e:
                logger.warning(f"Skipping insights for campaign {campaign_id}: {e.api_message}")
        return rows
