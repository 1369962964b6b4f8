"""
Batch entry points: CSV upload import and JSON campaign batch import.

Batch-level problems (missing account, malformed token, empty upload, bad
payload) raise BatchRequestError before any row is touched. Everything after
that is row-scoped and reported per row.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import List, Optional

from facebook_ads_importer import config as config_module
from facebook_ads_importer.campaign_builder import CampaignBuilder
from facebook_ads_importer.csv_parser import EncodingReport, ParseDiagnostic, parse_csv_bytes
from facebook_ads_importer.facebook_api import (
    AdAccountClient,
    init_facebook_api,
    normalize_ad_account_id,
    validate_access_token_format,
    verify_access_token,
)
from facebook_ads_importer.normalizer import normalize_payload, normalize_row
from facebook_ads_importer.results import BatchResult


class BatchRequestError(ValueError):
    """Exception raised when a batch is rejected before any row is processed."""

    pass


@dataclass
class BatchRequest:
    account_id: str
    access_token: str
    campaigns: List[dict]
    page_id: Optional[str] = None
    user_id: Optional[str] = None


@dataclass
class ImportReport:
    batch: BatchResult
    diagnostics: List[ParseDiagnostic] = field(default_factory=list)
    encoding: Optional[EncodingReport] = None

    def to_response(self) -> dict:
        response = self.batch.to_response()
        response["diagnostics"] = [asdict(d) for d in self.diagnostics]
        if self.encoding is not None:
            response["encoding"] = asdict(self.encoding)
        response["ads_manager_urls"] = [
            result.ads_manager_url
            for result in self.batch.results
            if result.ads_manager_url
        ]
        return response


def validate_credentials(account_id, access_token) -> str:
    """
    Check the batch-level credentials.

    Returns:
        The ad account id in act_<digits> form

    Raises:
        BatchRequestError: If either value is missing or malformed
    """
    if not account_id or not str(account_id).strip():
        raise BatchRequestError("accountId is required")
    if not access_token:
        raise BatchRequestError("accessToken is required")
    if not validate_access_token_format(access_token):
        raise BatchRequestError(
            "accessToken must be at least 50 characters of letters, digits, '_' or '-'"
        )
    try:
        return normalize_ad_account_id(account_id)
    except ValueError as e:
        raise BatchRequestError(str(e)) from e


def validate_batch_request(payload) -> BatchRequest:
    """Validate a {campaigns, accountId, accessToken} JSON batch."""
    if not isinstance(payload, dict):
        raise BatchRequestError("Request body must be a JSON object")

    account_id = validate_credentials(payload.get("accountId"), payload.get("accessToken"))

    campaigns = payload.get("campaigns")
    if not isinstance(campaigns, list) or not campaigns:
        raise BatchRequestError("campaigns must be a non-empty list")

    return BatchRequest(
        account_id=account_id,
        access_token=payload["accessToken"].strip(),
        campaigns=campaigns,
        page_id=payload.get("pageId"),
        user_id=payload.get("userId"),
    )


def create_builder(
    account_id: str,
    access_token: str,
    config: Optional[dict] = None,
    log_store=None,
    user_id: Optional[str] = None,
    verify_token: bool = False,
    logger: Optional[logging.Logger] = None,
) -> CampaignBuilder:
    """Initialize the Graph API session and return a builder for the ad account."""
    fb_settings = config_module.facebook_settings(config)
    if verify_token:
        verify_access_token(
            access_token, fb_settings["api_version"], fb_settings["request_timeout"]
        )
    api = init_facebook_api(
        access_token,
        fb_settings.get("app_id"),
        fb_settings.get("app_secret"),
        fb_settings["api_version"],
        fb_settings["request_timeout"],
    )
    return CampaignBuilder(
        AdAccountClient(account_id, api=api),
        settings=config_module.import_settings(config),
        log_store=log_store,
        user_id=user_id,
        logger=logger,
    )


def import_csv_bytes(
    data: bytes,
    account_id,
    access_token: str,
    config: Optional[dict] = None,
    log_store=None,
    user_id: Optional[str] = None,
    page_id: Optional[str] = None,
    verify_token: bool = False,
    logger: Optional[logging.Logger] = None,
) -> ImportReport:
    """
    Import every row of an uploaded export as its own campaign.

    Args:
        data: Raw uploaded bytes
        account_id: Target ad account
        access_token: Marketing API access token
        config: Loaded configuration
        log_store: Optional CampaignLogStore
        user_id: Owner recorded on the logs
        page_id: Page used for rows without a page reference
        verify_token: Check the token against /me before importing
        logger: Logger for parsing, normalization and creation; each step uses
            its module logger when omitted

    Returns:
        ImportReport with one result per parsed row plus parse diagnostics
    """
    log = logger or logging.getLogger(__name__)
    account_id = validate_credentials(account_id, access_token)
    if not data:
        raise BatchRequestError("Uploaded file is empty")

    parsed = parse_csv_bytes(data, logger)
    if not parsed.rows:
        raise BatchRequestError(
            f"No data rows found in upload ({len(parsed.diagnostics)} diagnostics)"
        )

    settings = config_module.import_settings(config)
    fallback_page_id = page_id or config_module.facebook_settings(config).get("page_id")
    rows = [
        (normalize_row(row, settings, fallback_page_id, logger), row) for row in parsed.rows
    ]
    log.info(f"Importing {len(rows)} rows into {account_id}")

    builder = create_builder(
        account_id, access_token, config, log_store, user_id, verify_token, logger
    )
    batch = builder.build_batch(rows)
    return ImportReport(batch, parsed.diagnostics, parsed.encoding)


def import_campaigns(
    payload: dict,
    config: Optional[dict] = None,
    log_store=None,
    verify_token: bool = False,
    logger: Optional[logging.Logger] = None,
) -> ImportReport:
    """Import a JSON batch of CampaignSpec-shaped objects."""
    log = logger or logging.getLogger(__name__)
    request = validate_batch_request(payload)
    settings = config_module.import_settings(config)
    fallback_page_id = request.page_id or config_module.facebook_settings(config).get(
        "page_id"
    )
    rows = [
        (normalize_payload(campaign, settings, fallback_page_id, logger), campaign)
        for campaign in request.campaigns
    ]
    log.info(f"Importing {len(rows)} campaigns into {request.account_id}")

    builder = create_builder(
        request.account_id,
        request.access_token,
        config,
        log_store,
        request.user_id,
        verify_token,
        logger,
    )
    return ImportReport(builder.build_batch(rows))
