"""
Per-row creation of Campaign -> Ad Set -> Creative -> Ad.

Each row runs its four Graph API calls strictly in order and stops at the first
failure. Objects created before the failure are left in place and their ids are
kept on the result and in the row's log. Rows are independent: one row's
failure never affects another, whether rows run sequentially or on the worker
pool.
"""

import re
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from enum import Enum
from typing import Optional, Sequence, Tuple

from facebook_ads_importer import enums
from facebook_ads_importer.config import ImportSettings
from facebook_ads_importer.facebook_api import (
    AdAccountClient,
    FacebookAPIError,
    FacebookCreativeError,
    ads_manager_url,
)
from facebook_ads_importer.normalizer import (
    CampaignSpec,
    NormalizationResult,
    RowValidationError,
)
from facebook_ads_importer.results import BatchResult, CampaignCreationResult

logger = logging.getLogger(__name__)

POST_ID_PATTERN = re.compile(r"^(\d{10,20}|pfbid\w+)$")


class RowState(Enum):
    PENDING = "pending"
    CREATING_CAMPAIGN = "creating_campaign"
    CREATING_ADSET = "creating_adset"
    CREATING_CREATIVE = "creating_creative"
    CREATING_AD = "creating_ad"
    SUCCESS = "success"
    ERROR = "error"


STATE_STEPS = {
    RowState.PENDING: "validation",
    RowState.CREATING_CAMPAIGN: "campaign",
    RowState.CREATING_ADSET: "adset",
    RowState.CREATING_CREATIVE: "creative",
    RowState.CREATING_AD: "ad",
}


class RowLoggerAdapter(logging.LoggerAdapter):
    """
    Logger carrying row_index, user_id and the current Graph API call.

    The fields are passed as record attributes through ``extra`` and also
    prefixed to the message for plain text handlers.
    """

    def process(self, msg, kwargs):
        extra = dict(self.extra)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        prefix = f"[row {extra.get('row_index')}"
        if extra.get("user_id"):
            prefix += f" user={extra['user_id']}"
        if extra.get("call"):
            prefix += f" call={extra['call']}"
        return f"{prefix}] {msg}", kwargs

    def for_call(self, call: Optional[str]) -> "RowLoggerAdapter":
        return RowLoggerAdapter(self.logger, {**self.extra, "call": call})


def is_valid_post_id(post_id: str, page_id: str = "") -> bool:
    """A post id usable in object_story_id: 10-20 digits or a pfbid token."""
    if not post_id or (page_id and page_id in post_id):
        return False
    return bool(POST_ID_PATTERN.match(post_id))


def build_targeting(spec: CampaignSpec) -> dict:
    if spec.custom_locations:
        geo_locations = {
            "custom_locations": [
                {
                    "latitude": location.latitude,
                    "longitude": location.longitude,
                    "radius": location.radius,
                    "distance_unit": "kilometer",
                }
                for location in spec.custom_locations
            ]
        }
    else:
        geo_locations = {"countries": list(spec.countries)}

    return {
        "geo_locations": geo_locations,
        "age_min": spec.age_min,
        "age_max": spec.age_max,
        "genders": list(spec.genders),
        "targeting_automation": {"advantage_audience": spec.advantage_audience},
    }


def _object_status(spec: CampaignSpec, settings: ImportSettings) -> str:
    return "PAUSED" if settings.create_paused else spec.campaign_status


def build_campaign_params(spec: CampaignSpec, settings: ImportSettings) -> dict:
    return {
        "name": spec.campaign_name,
        "objective": spec.objective,
        "buying_type": "AUCTION",
        "status": _object_status(spec, settings),
        "special_ad_categories": [],
    }


def build_adset_params(
    spec: CampaignSpec, campaign_id: str, settings: ImportSettings
) -> dict:
    return {
        "name": spec.adset_name,
        "campaign_id": campaign_id,
        "daily_budget": max(settings.min_daily_budget, spec.daily_budget),
        "billing_event": spec.billing_event,
        "optimization_goal": spec.optimization_goal,
        "bid_strategy": spec.bid_strategy,
        "destination_type": spec.destination_type,
        "targeting": build_targeting(spec),
        "status": _object_status(spec, settings),
    }


def build_ad_params(
    spec: CampaignSpec, adset_id: str, creative_id: str, settings: ImportSettings
) -> dict:
    return {
        "name": spec.ad_name,
        "adset_id": adset_id,
        "creative": {"creative_id": creative_id},
        "status": _object_status(spec, settings),
    }


class CreativeStrategy:
    """One way of building an ad creative; strategies are tried in order."""

    name = "creative"

    def applies(self, spec: CampaignSpec) -> bool:
        raise NotImplementedError

    def build_params(self, spec: CampaignSpec) -> dict:
        raise NotImplementedError


class ObjectStoryIdStrategy(CreativeStrategy):
    """Promote the existing page post referenced by the row."""

    name = "object_story_id"

    def applies(self, spec: CampaignSpec) -> bool:
        return bool(spec.page_id) and is_valid_post_id(spec.post_id, spec.page_id)

    def build_params(self, spec: CampaignSpec) -> dict:
        return {
            "name": f"{spec.campaign_name} - Creative",
            "object_story_id": f"{spec.page_id}_{spec.post_id}",
        }


class ObjectStorySpecStrategy(CreativeStrategy):
    """Build a new link post from the row's message, link and call to action."""

    name = "object_story_spec"

    def applies(self, spec: CampaignSpec) -> bool:
        return bool(spec.page_id)

    def build_params(self, spec: CampaignSpec) -> dict:
        cta_value = {"link": spec.display_link}
        if spec.call_to_action == enums.MESSENGER_CALL_TO_ACTION:
            cta_value["app_destination"] = "MESSENGER"

        name = f"{spec.campaign_name} - Creative"
        if spec.post_id:
            name += " (Fallback)"
        return {
            "name": name,
            "object_story_spec": {
                "page_id": spec.page_id,
                "link_data": {
                    "message": spec.creative_message,
                    "link": spec.display_link,
                    "call_to_action": {"type": spec.call_to_action, "value": cta_value},
                },
            },
        }


DEFAULT_CREATIVE_STRATEGIES = (ObjectStoryIdStrategy(), ObjectStorySpecStrategy())


class CampaignBuilder:
    """
    Runs the creation chain for normalized rows against one ad account.

    Args:
        client: AdAccountClient for the target ad account
        settings: Import defaults and limits
        log_store: Optional CampaignLogStore; write failures are logged and ignored
        user_id: Owner recorded on every log and logging record
        logger: Logger to wrap; the module logger when omitted
        creative_strategies: Ordered creative strategies to try
    """

    def __init__(
        self,
        client: AdAccountClient,
        settings: Optional[ImportSettings] = None,
        log_store=None,
        user_id: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
        creative_strategies: Sequence[CreativeStrategy] = DEFAULT_CREATIVE_STRATEGIES,
    ):
        self.client = client
        self.settings = settings or ImportSettings()
        self.log_store = log_store
        self.user_id = user_id
        self.logger = logger or logging.getLogger(__name__)
        self.creative_strategies = list(creative_strategies)

    @property
    def account_id(self) -> str:
        return self.client.ad_account_id

    # ── Persistence ───────────────────────────────────────────────────────────

    def _write_pending(self, result, spec, csv_row, log) -> Optional[str]:
        if self.log_store is None:
            return None
        try:
            return self.log_store.create_log(
                {
                    "user_id": self.user_id,
                    "account_id": self.account_id,
                    "name": result.name,
                    "status": result.status,
                    "daily_budget": spec.daily_budget if spec else None,
                    "csv_row": csv_row or {},
                }
            )
        except Exception as e:
            log.error(f"Failed to write pending campaign log: {e}")
            return None

    def _write_outcome(self, result: CampaignCreationResult, log) -> None:
        if self.log_store is None or result.log_id is None:
            return
        fields = {
            "status": result.status,
            "facebook_ids": result.facebook_ids.as_dict(),
        }
        if result.error_message:
            fields["error_message"] = result.error_message
            fields["error_step"] = result.error_step
            fields["error_kind"] = result.error_kind
        try:
            if not self.log_store.update_log(result.log_id, fields):
                log.error(f"Campaign log {result.log_id} not found for update")
        except Exception as e:
            log.error(f"Failed to update campaign log {result.log_id}: {e}")

    # ── Creation chain ────────────────────────────────────────────────────────

    def _create_creative(
        self, spec: CampaignSpec, result: CampaignCreationResult, log
    ) -> str:
        last_error = None
        for strategy in self.creative_strategies:
            if not strategy.applies(spec):
                log.debug(f"Creative strategy {strategy.name} does not apply")
                continue
            try:
                creative_id = self.client.create_ad_creative(strategy.build_params(spec))
                result.creative_strategy = strategy.name
                log.info(f"Created creative {creative_id} using {strategy.name}")
                return creative_id
            except FacebookCreativeError as e:
                last_error = e
                log.warning(f"Creative strategy {strategy.name} rejected: {e.api_message}")

        if last_error is not None:
            raise last_error
        raise FacebookCreativeError("No creative strategy applies to this row")

    def build_row(
        self,
        row_index: int,
        normalized: NormalizationResult,
        csv_row: Optional[dict] = None,
    ) -> CampaignCreationResult:
        """
        Create one row's campaign, ad set, creative and ad.

        Never raises: every failure is recorded on the returned result.

        Args:
            row_index: 1-based position of the row in its batch
            normalized: Output of normalize_row / normalize_payload
            csv_row: Raw row snapshot stored with the log

        Returns:
            The finished CampaignCreationResult
        """
        log = RowLoggerAdapter(
            self.logger, {"row_index": row_index, "user_id": self.user_id, "call": None}
        )
        spec = None if isinstance(normalized, RowValidationError) else normalized.spec
        name = spec.campaign_name if spec else normalized.campaign_name
        result = CampaignCreationResult(
            row_index=row_index, name=name or f"Row {row_index}"
        )
        result.log_id = self._write_pending(result, spec, csv_row, log)

        state = RowState.PENDING
        if spec is None:
            log.warning(normalized.message)
            result.fail(normalized.message, step="validation", kind="validation")
            self._write_outcome(result, log)
            return result

        ids = result.facebook_ids
        try:
            state = RowState.CREATING_CAMPAIGN
            ids.campaign_id = self.client.create_campaign(
                build_campaign_params(spec, self.settings)
            )
            result.ads_manager_url = ads_manager_url(self.account_id, ids.campaign_id)
            log.for_call("campaign").info(f"Created campaign {ids.campaign_id}")

            state = RowState.CREATING_ADSET
            if spec.daily_budget < self.settings.min_daily_budget:
                log.warning(
                    f"Daily budget {spec.daily_budget} raised to minimum "
                    f"{self.settings.min_daily_budget}"
                )
            ids.adset_id = self.client.create_ad_set(
                build_adset_params(spec, ids.campaign_id, self.settings)
            )
            log.for_call("adset").info(f"Created ad set {ids.adset_id}")

            state = RowState.CREATING_CREATIVE
            ids.creative_id = self._create_creative(
                spec, result, log.for_call("creative")
            )

            state = RowState.CREATING_AD
            ids.ad_id = self.client.create_ad(
                build_ad_params(spec, ids.adset_id, ids.creative_id, self.settings)
            )
            log.for_call("ad").info(f"Created ad {ids.ad_id}")

            state = RowState.SUCCESS
            result.succeed()
            log.info(f"[SUCCESS] {spec.campaign_name}")
        except FacebookAPIError as e:
            step = e.step or STATE_STEPS.get(state)
            log.for_call(step).error(f"[FAILED] {spec.campaign_name} -> {e}")
            result.fail(str(e), step=step, kind=e.kind)
            state = RowState.ERROR
        except Exception as e:
            step = STATE_STEPS.get(state)
            log.for_call(step).exception(f"[FAILED] {spec.campaign_name} -> {e}")
            result.fail(f"Unexpected error: {e}", step=step, kind="internal")
            state = RowState.ERROR

        self._write_outcome(result, log)
        return result

    def build_batch(
        self,
        rows: Sequence[Tuple[NormalizationResult, Optional[dict]]],
        max_workers: Optional[int] = None,
    ) -> BatchResult:
        """
        Process every row and collect the results in input order.

        Args:
            rows: (normalized row, raw row snapshot) pairs
            max_workers: Worker threads; settings.max_workers when omitted

        Returns:
            BatchResult with exactly one result per row
        """
        batch = BatchResult(len(rows))
        workers = max(1, max_workers or self.settings.max_workers)

        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_position = {
                executor.submit(self.build_row, position + 1, normalized, csv_row): position
                for position, (normalized, csv_row) in enumerate(rows)
            }
            for future in as_completed(future_to_position):
                position = future_to_position[future]
                try:
                    result = future.result()
                except Exception as exc:
                    self.logger.error(f"Row {position + 1} crashed: {exc}")
                    result = CampaignCreationResult(
                        row_index=position + 1, name=f"Row {position + 1}"
                    )
                    result.fail(str(exc), kind="internal")
                batch.add(position, result)

        counts = batch.counts()
        self.logger.info(
            f"Batch finished: {counts['success']} succeeded, "
            f"{counts['error']} failed out of {len(batch)}"
        )
        return batch
