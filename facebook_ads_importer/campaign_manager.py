"""
Management of campaigns that already exist on an ad account.

Listing campaigns and ad sets, pausing or activating a campaign, reading
delivery insights and inspecting an access token. Missing credentials fall
back to the facebook section of the configuration. Bad input raises
ManagementRequestError before any Graph API call is made.
"""

import logging
from typing import List, Optional

from facebook_ads_importer import config as config_module
from facebook_ads_importer.facebook_api import (
    AdAccountClient,
    get_campaign_status,
    init_facebook_api,
    inspect_access_token,
    normalize_ad_account_id,
    summarize_insights,
    update_campaign_status,
    validate_access_token_format,
)
from facebook_ads_importer.field_extractor import parse_id_field

logger = logging.getLogger(__name__)

CAMPAIGN_STATUSES = ("ACTIVE", "PAUSED")
EFFECTIVE_STATUSES = (
    "ACTIVE",
    "PAUSED",
    "DELETED",
    "ARCHIVED",
    "IN_PROCESS",
    "WITH_ISSUES",
    "CAMPAIGN_PAUSED",
)
INSIGHT_LEVELS = ("account", "campaign", "adset", "ad")
DATE_PRESETS = (
    "today",
    "yesterday",
    "last_3d",
    "last_7d",
    "last_14d",
    "last_28d",
    "last_30d",
    "last_90d",
    "this_month",
    "last_month",
    "maximum",
)
MAX_LIST_LIMIT = 500


class ManagementRequestError(ValueError):
    """Exception raised when a management request is rejected before calling Facebook."""


def _access_token(access_token, fb_settings: dict) -> str:
    token = (access_token or fb_settings.get("access_token") or "").strip()
    if not token:
        raise ManagementRequestError("accessToken is required")
    if not validate_access_token_format(token):
        raise ManagementRequestError(
            "accessToken must be at least 50 characters of letters, digits, '_' or '-'"
        )
    return token


def _campaign_id(campaign_id) -> str:
    # Ads Manager exports write campaign ids as "c:<id>"
    text = parse_id_field(campaign_id)
    if text.startswith("c:"):
        text = text[2:]
    if not text.isdigit():
        raise ManagementRequestError(f"Invalid campaign id: '{campaign_id}'")
    return text


def _limit(limit) -> int:
    if not isinstance(limit, int) or not 1 <= limit <= MAX_LIST_LIMIT:
        raise ManagementRequestError(f"limit must be between 1 and {MAX_LIST_LIMIT}")
    return limit


def _connect(access_token, config: Optional[dict]):
    fb_settings = config_module.facebook_settings(config)
    token = _access_token(access_token, fb_settings)
    return init_facebook_api(
        token,
        fb_settings.get("app_id"),
        fb_settings.get("app_secret"),
        fb_settings["api_version"],
        fb_settings["request_timeout"],
    )


def account_client(
    account_id, access_token, config: Optional[dict] = None
) -> AdAccountClient:
    """Validate credentials, initialize the API and return a client for the account."""
    fb_settings = config_module.facebook_settings(config)
    account_id = account_id or fb_settings.get("ad_account_id")
    if not account_id or not str(account_id).strip():
        raise ManagementRequestError("accountId is required")
    try:
        account_id = normalize_ad_account_id(account_id)
    except ValueError as e:
        raise ManagementRequestError(str(e)) from e
    api = _connect(access_token, config)
    return AdAccountClient(account_id, api=api)


def list_campaigns(
    account_id,
    access_token=None,
    config: Optional[dict] = None,
    limit: int = 25,
    statuses: Optional[List[str]] = None,
) -> dict:
    """
    List campaigns on an ad account.

    Args:
        account_id: Ad account, with or without the act_ prefix
        access_token: Token; facebook.access_token when omitted
        config: Loaded configuration
        limit: Maximum number of campaigns
        statuses: Effective statuses to keep

    Returns:
        {"account_id": ..., "campaigns": [...], "count": n}
    """
    statuses = [s.strip().upper() for s in statuses or [] if s and s.strip()]
    unknown = [s for s in statuses if s not in EFFECTIVE_STATUSES]
    if unknown:
        raise ManagementRequestError(f"Unknown campaign status: {', '.join(unknown)}")
    limit = _limit(limit)
    client = account_client(account_id, access_token, config)
    campaigns = client.list_campaigns(limit=limit, statuses=statuses)
    logger.info(f"Listed {len(campaigns)} campaigns on {client.ad_account_id}")
    return {
        "account_id": client.ad_account_id,
        "campaigns": campaigns,
        "count": len(campaigns),
    }


def list_ad_sets(
    account_id,
    access_token=None,
    config: Optional[dict] = None,
    campaign_id=None,
    limit: int = 25,
) -> dict:
    """List the ad sets of a campaign, or of the whole ad account."""
    if campaign_id:
        campaign_id = _campaign_id(campaign_id)
    limit = _limit(limit)
    client = account_client(account_id, access_token, config)
    ad_sets = client.list_ad_sets(campaign_id=campaign_id, limit=limit)
    return {"campaign_id": campaign_id, "ad_sets": ad_sets, "count": len(ad_sets)}


def campaign_status(campaign_id, access_token=None, config: Optional[dict] = None) -> dict:
    """Read the configured and effective status of a campaign."""
    campaign_id = _campaign_id(campaign_id)
    api = _connect(access_token, config)
    return get_campaign_status(campaign_id, api=api)


def set_campaign_status(
    campaign_id, status, access_token=None, config: Optional[dict] = None
) -> dict:
    """
    Pause or activate a campaign.

    Raises:
        ManagementRequestError: If the status is not ACTIVE or PAUSED
    """
    campaign_id = _campaign_id(campaign_id)
    status = str(status or "").strip().upper()
    if status not in CAMPAIGN_STATUSES:
        raise ManagementRequestError("status must be ACTIVE or PAUSED")
    api = _connect(access_token, config)
    return {"success": True, **update_campaign_status(campaign_id, status, api=api)}


def campaign_insights(
    account_id,
    access_token=None,
    config: Optional[dict] = None,
    date_preset: str = "last_7d",
    level: str = "campaign",
    campaign_ids: Optional[List[str]] = None,
) -> dict:
    """
    Read delivery insights for an ad account or a list of campaigns.

    Returns:
        {"date_preset": ..., "level": ..., "data": [...], "totals": {...}}
    """
    if date_preset not in DATE_PRESETS:
        raise ManagementRequestError(f"Unknown date preset '{date_preset}'")
    if level not in INSIGHT_LEVELS:
        raise ManagementRequestError(f"Unknown insights level '{level}'")
    campaign_ids = [_campaign_id(c) for c in campaign_ids or [] if str(c).strip()]

    client = account_client(account_id, access_token, config)
    rows = client.get_insights(
        date_preset=date_preset, level=level, campaign_ids=campaign_ids
    )
    return {
        "date_preset": date_preset,
        "level": "campaign" if campaign_ids else level,
        "data": rows,
        "totals": summarize_insights(rows),
    }


def inspect_token(access_token=None, config: Optional[dict] = None) -> dict:
    """Report the owner, permissions and ad accounts of an access token."""
    fb_settings = config_module.facebook_settings(config)
    token = _access_token(access_token, fb_settings)
    return inspect_access_token(
        token, fb_settings["api_version"], fb_settings["request_timeout"]
    )
