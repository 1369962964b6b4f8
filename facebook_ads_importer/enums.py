"""
Facebook Marketing API enum tables and the lookups that map loosely written
CSV values onto them.
"""

import logging
from typing import Dict, Optional

from facebook_business.adobjects.adset import AdSet

DESTINATION_TYPES = ("WEBSITE", "MESSENGER", "APP", "PHONE_CALL", "CANVAS")
DEFAULT_DESTINATION_TYPE = "WEBSITE"

DEFAULT_CALL_TO_ACTION = "LEARN_MORE"
MESSENGER_CALL_TO_ACTION = "MESSAGE_PAGE"

DEFAULT_OBJECTIVE = "OUTCOME_ENGAGEMENT"
DEFAULT_OPTIMIZATION_GOAL = "POST_ENGAGEMENT"
DEFAULT_BID_STRATEGY = "LOWEST_COST_WITHOUT_CAP"
DEFAULT_BILLING_EVENT = "IMPRESSIONS"

# Canonical optimization goals accepted by the ad set endpoint
OPTIMIZATION_GOALS = {
    "NONE": AdSet.OptimizationGoal.none,
    "APP_INSTALLS": AdSet.OptimizationGoal.app_installs,
    "AD_RECALL_LIFT": AdSet.OptimizationGoal.ad_recall_lift,
    "ENGAGED_USERS": AdSet.OptimizationGoal.engaged_users,
    "EVENT_RESPONSES": AdSet.OptimizationGoal.event_responses,
    "IMPRESSIONS": AdSet.OptimizationGoal.impressions,
    "LEAD_GENERATION": AdSet.OptimizationGoal.lead_generation,
    "QUALITY_LEAD": AdSet.OptimizationGoal.quality_lead,
    "LINK_CLICKS": AdSet.OptimizationGoal.link_clicks,
    "OFFSITE_CONVERSIONS": AdSet.OptimizationGoal.offsite_conversions,
    "PAGE_LIKES": AdSet.OptimizationGoal.page_likes,
    "POST_ENGAGEMENT": AdSet.OptimizationGoal.post_engagement,
    "QUALITY_CALL": AdSet.OptimizationGoal.quality_call,
    "REACH": AdSet.OptimizationGoal.reach,
    "LANDING_PAGE_VIEWS": AdSet.OptimizationGoal.landing_page_views,
    "VISIT_INSTAGRAM_PROFILE": AdSet.OptimizationGoal.visit_instagram_profile,
    "VALUE": AdSet.OptimizationGoal.value,
    "THRUPLAY": AdSet.OptimizationGoal.thruplay,
    "DERIVED_EVENTS": AdSet.OptimizationGoal.derived_events,
    "APP_INSTALLS_AND_OFFSITE_CONVERSIONS": AdSet.OptimizationGoal.app_installs_and_offsite_conversions,
    "CONVERSATIONS": AdSet.OptimizationGoal.conversations,
    "IN_APP_VALUE": AdSet.OptimizationGoal.in_app_value,
    "MESSAGING_PURCHASE_CONVERSION": AdSet.OptimizationGoal.messaging_purchase_conversion,
    "SUBSCRIBERS": AdSet.OptimizationGoal.subscribers,
    "REMINDERS_SET": AdSet.OptimizationGoal.reminders_set,
    "MEANINGFUL_CALL_ATTEMPT": AdSet.OptimizationGoal.meaningful_call_attempt,
    "PROFILE_VISIT": AdSet.OptimizationGoal.profile_visit,
    "PROFILE_AND_PAGE_ENGAGEMENT": AdSet.OptimizationGoal.profile_and_page_engagement,
    "ADVERTISER_SILOED_VALUE": AdSet.OptimizationGoal.advertiser_siloed_value,
    "MESSAGING_APPOINTMENT_CONVERSION": AdSet.OptimizationGoal.messaging_appointment_conversion,
}

# Keys are in normalized form (upper case, words joined by "_")
OBJECTIVE_ALIASES = {
    "OUTCOME_ENGAGEMENT": "OUTCOME_ENGAGEMENT",
    "OUTCOME_LEADS": "OUTCOME_LEADS",
    "OUTCOME_SALES": "OUTCOME_SALES",
    "OUTCOME_TRAFFIC": "OUTCOME_TRAFFIC",
    "OUTCOME_APP_PROMOTION": "OUTCOME_APP_PROMOTION",
    "OUTCOME_AWARENESS": "OUTCOME_AWARENESS",
    "ENGAGEMENT": "OUTCOME_ENGAGEMENT",
    "POST_ENGAGEMENT": "OUTCOME_ENGAGEMENT",
    "MESSAGES": "OUTCOME_ENGAGEMENT",
    "LEADS": "OUTCOME_LEADS",
    "LEAD_GENERATION": "OUTCOME_LEADS",
    "SALES": "OUTCOME_SALES",
    "CONVERSIONS": "OUTCOME_SALES",
    "TRAFFIC": "OUTCOME_TRAFFIC",
    "WEBSITE_TRAFFIC": "OUTCOME_TRAFFIC",
    "LINK_CLICKS": "OUTCOME_TRAFFIC",
    "APP_PROMOTION": "OUTCOME_APP_PROMOTION",
    "APP_INSTALL": "OUTCOME_APP_PROMOTION",
    "APP_INSTALLS": "OUTCOME_APP_PROMOTION",
    "AWARENESS": "OUTCOME_AWARENESS",
    "BRAND_AWARENESS": "OUTCOME_AWARENESS",
    "REACH": "OUTCOME_AWARENESS",
}

OPTIMIZATION_GOAL_ALIASES = {
    **{name: name for name in OPTIMIZATION_GOALS},
    "AUTOMATIC_OBJECTIVE": "AUTOMATIC_OBJECTIVE",
    "ENGAGEMENT": "POST_ENGAGEMENT",
    "ACTION": "POST_ENGAGEMENT",
    "ACTIONS": "POST_ENGAGEMENT",
    "CLICKS": "LINK_CLICKS",
    "PAGE_VIEWS": "LANDING_PAGE_VIEWS",
    "CONVERSIONS": "OFFSITE_CONVERSIONS",
    "LEADS": "LEAD_GENERATION",
    "LIKES": "PAGE_LIKES",
    "INSTALLS": "APP_INSTALLS",
    "MESSAGES": "CONVERSATIONS",
    "MESSAGING_CONVERSATIONS_STARTED": "CONVERSATIONS",
    "REPLIES": "CONVERSATIONS",
    "DEFAULT": "NONE",
}

BID_STRATEGY_ALIASES = {
    "LOWEST_COST_WITHOUT_CAP": "LOWEST_COST_WITHOUT_CAP",
    "LOWEST_COST_WITH_BID_CAP": "LOWEST_COST_WITH_BID_CAP",
    "COST_CAP": "COST_CAP",
    "LOWEST_COST_WITH_MIN_ROAS": "LOWEST_COST_WITH_MIN_ROAS",
    "AUTOMATIC": "LOWEST_COST_WITHOUT_CAP",
    "AUTO_BID": "LOWEST_COST_WITHOUT_CAP",
    "LOWEST_COST": "LOWEST_COST_WITHOUT_CAP",
    "BID_CAP": "LOWEST_COST_WITH_BID_CAP",
    "MANUAL_BID": "LOWEST_COST_WITH_BID_CAP",
    "MANUAL_BIDDING": "LOWEST_COST_WITH_BID_CAP",
    "TARGET_COST": "LOWEST_COST_WITH_MIN_ROAS",
    "ROAS": "LOWEST_COST_WITH_MIN_ROAS",
}

BILLING_EVENT_ALIASES = {
    "APP_INSTALLS": "APP_INSTALLS",
    "CLICKS": "CLICKS",
    "IMPRESSIONS": "IMPRESSIONS",
    "LINK_CLICKS": "LINK_CLICKS",
    "NONE": "NONE",
    "OFFER_CLAIMS": "OFFER_CLAIMS",
    "PAGE_LIKES": "PAGE_LIKES",
    "POST_ENGAGEMENT": "POST_ENGAGEMENT",
    "THRUPLAY": "THRUPLAY",
    "PURCHASE": "PURCHASE",
    "LISTING_INTERACTION": "LISTING_INTERACTION",
    "IMPRESSION": "IMPRESSIONS",
    "CLICK": "CLICKS",
    "ACTION": "POST_ENGAGEMENT",
    "ACTIONS": "POST_ENGAGEMENT",
    "ENGAGEMENT": "POST_ENGAGEMENT",
    "CONVERSIONS": "PURCHASE",
    "PURCHASES": "PURCHASE",
    "INSTALLS": "APP_INSTALLS",
    "LIKES": "PAGE_LIKES",
    "DEFAULT": "IMPRESSIONS",
}

# Optimization goals each objective accepts on its ad sets
OBJECTIVE_COMPATIBLE_GOALS = {
    "OUTCOME_ENGAGEMENT": frozenset(
        ["POST_ENGAGEMENT", "REACH", "IMPRESSIONS", "PAGE_LIKES", "CONVERSATIONS"]
    ),
    "OUTCOME_TRAFFIC": frozenset(
        ["LINK_CLICKS", "LANDING_PAGE_VIEWS", "REACH", "IMPRESSIONS"]
    ),
    "OUTCOME_LEADS": frozenset(
        ["LEAD_GENERATION", "QUALITY_LEAD", "OFFSITE_CONVERSIONS", "CONVERSATIONS"]
    ),
    "OUTCOME_SALES": frozenset(
        ["OFFSITE_CONVERSIONS", "VALUE", "LINK_CLICKS", "LANDING_PAGE_VIEWS"]
    ),
    "OUTCOME_APP_PROMOTION": frozenset(
        ["APP_INSTALLS", "APP_INSTALLS_AND_OFFSITE_CONVERSIONS", "IN_APP_VALUE"]
    ),
    "OUTCOME_AWARENESS": frozenset(["REACH", "IMPRESSIONS", "AD_RECALL_LIFT"]),
}

# Default action table, extended or overridden by import.call_to_action_map
CALL_TO_ACTION_MAP = {
    "MESSAGE_PAGE": "MESSAGE_PAGE",
    "SEND_MESSAGE": "MESSAGE_PAGE",
    "LEARN_MORE": "LEARN_MORE",
    "SEE_MORE": "LEARN_MORE",
    "WATCH_MORE": "LEARN_MORE",
    "CONTACT_US": "CONTACT_US",
    "CALL_NOW": "CALL_NOW",
    "SHOP_NOW": "SHOP_NOW",
    "BUY_NOW": "BUY_NOW",
    "ORDER_NOW": "ORDER_NOW",
    "SIGN_UP": "SIGN_UP",
    "SUBSCRIBE": "SUBSCRIBE",
    "DOWNLOAD": "DOWNLOAD",
    "INSTALL_APP": "INSTALL_APP",
    "BOOK_TRAVEL": "BOOK_TRAVEL",
    "BOOK_NOW": "BOOK_NOW",
    "GET_QUOTE": "GET_QUOTE",
    "GET_OFFER": "GET_OFFER",
    "APPLY_NOW": "APPLY_NOW",
    "WHATSAPP_MESSAGE": "WHATSAPP_MESSAGE",
}


def normalize_enum_value(value: str) -> str:
    """Upper-case a value and join its words with "_"."""
    text = str(value or "").strip().upper()
    for separator in (" ", "-"):
        text = text.replace(separator, "_")
    while "__" in text:
        text = text.replace("__", "_")
    return text


def lookup_enum(value, table: Dict[str, str]) -> Optional[str]:
    """
    Resolve a loosely written value against an alias table.

    Tries the value as given, then its normalized form, then a case-insensitive
    scan of the table keys.

    Returns:
        The canonical enum value, or None if nothing matched
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    if text in table:
        return table[text]

    normalized = normalize_enum_value(text)
    if normalized in table:
        return table[normalized]

    lowered = text.lower()
    for key, mapped in table.items():
        if key.lower() == lowered:
            return mapped
    return None


def map_objective(
    value, default: str = DEFAULT_OBJECTIVE, logger: Optional[logging.Logger] = None
) -> str:
    logger = logger or logging.getLogger(__name__)
    objective = lookup_enum(value, OBJECTIVE_ALIASES)
    if objective is None:
        if value:
            logger.warning(f"Unknown campaign objective '{value}', using {default}")
        return default
    return objective


def map_optimization_goal(value) -> Optional[str]:
    return lookup_enum(value, OPTIMIZATION_GOAL_ALIASES)


def map_bid_strategy(value, default: str = DEFAULT_BID_STRATEGY) -> str:
    return lookup_enum(value, BID_STRATEGY_ALIASES) or default


def map_billing_event(value, default: str = DEFAULT_BILLING_EVENT) -> str:
    return lookup_enum(value, BILLING_EVENT_ALIASES) or default


def map_optimization_goal_with_compatibility(
    goal,
    objective: str,
    fallback: str = DEFAULT_OPTIMIZATION_GOAL,
    logger: Optional[logging.Logger] = None,
) -> str:
    """
    Map a requested optimization goal, keeping it only if the objective accepts it.

    Stale or incompatible CSV combinations fall back to a fixed goal instead of
    failing the row.

    Args:
        goal: Goal as written in the CSV (any alias)
        objective: Canonical campaign objective
        fallback: Goal used when the requested one is unknown or incompatible
        logger: Logger for the fallback warning; the module logger when omitted

    Returns:
        A canonical optimization goal
    """
    logger = logger or logging.getLogger(__name__)
    mapped = map_optimization_goal(goal)
    compatible = OBJECTIVE_COMPATIBLE_GOALS.get(objective)

    if mapped and (compatible is None or mapped in compatible):
        return OPTIMIZATION_GOALS.get(mapped, mapped)

    if goal:
        logger.warning(
            f"Optimization goal '{goal}' is not compatible with {objective}, "
            f"using {fallback}"
        )
    return OPTIMIZATION_GOALS.get(fallback, fallback)


def map_destination_type(value) -> str:
    text = str(value or "").strip().upper()
    if text in DESTINATION_TYPES:
        return text
    return DEFAULT_DESTINATION_TYPE


def map_call_to_action(
    value,
    destination_type: str,
    action_map: Optional[Dict[str, str]] = None,
    logger: Optional[logging.Logger] = None,
) -> str:
    """
    Resolve the call-to-action for a creative.

    Unmapped values become LEARN_MORE. A Messenger destination upgrades the
    generic LEARN_MORE to MESSAGE_PAGE, while any other explicit action is kept.

    Args:
        value: Call to Action cell value
        destination_type: Canonical destination type of the row
        action_map: Action table to use instead of CALL_TO_ACTION_MAP

    Returns:
        A call-to-action type accepted by the creative endpoint
    """
    logger = logger or logging.getLogger(__name__)
    table = action_map if action_map is not None else CALL_TO_ACTION_MAP
    action = lookup_enum(value, table)
    if action is None:
        if value and str(value).strip():
            logger.warning(
                f"Call to action '{value}' is not in the action table, "
                f"using {DEFAULT_CALL_TO_ACTION}"
            )
        action = DEFAULT_CALL_TO_ACTION

    if destination_type == "MESSENGER" and action == DEFAULT_CALL_TO_ACTION:
        return MESSENGER_CALL_TO_ACTION
    return action
