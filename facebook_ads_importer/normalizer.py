"""
Row normalization: turns one loosely structured export row into a CampaignSpec.

normalize_row never raises for bad data. It returns either NormalizedRow or
RowValidationError, and the latter names every offending field so the caller
can mark the row failed without touching the network.
"""

import re
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, List, Optional, Tuple, Union

from facebook_ads_importer import enums
from facebook_ads_importer.config import ImportSettings
from facebook_ads_importer.field_extractor import parse_id_field, resolve_post_reference

logger = logging.getLogger(__name__)

RawCsvRow = Dict[str, str]

MIN_AGE = 13
MAX_AGE = 65

# Canonical column name -> accepted header variants. Variants are compared
# after lower-casing and turning "_" into spaces.
FIELD_ALIASES = {
    "Campaign Name": ["campaign name", "name"],
    "Campaign Status": ["campaign status", "status"],
    "Campaign Objective": ["campaign objective", "objective"],
    "Ad Set Daily Budget": ["ad set daily budget", "adset daily budget", "ad set budget"],
    "Campaign Daily Budget": [
        "campaign daily budget",
        "daily budget",
        "budget",
        "campaign budget",
    ],
    "Campaign Bid Strategy": [
        "campaign bid strategy",
        "bid strategy",
        "ad set bid strategy",
    ],
    "Ad Set Name": ["ad set name", "adset name"],
    "Ad Set Run Status": ["ad set run status", "ad set status"],
    "Optimization Goal": ["optimization goal"],
    "Billing Event": ["billing event"],
    "Gender": ["gender"],
    "Age Min": ["age min", "minimum age"],
    "Age Max": ["age max", "maximum age"],
    "Countries": ["countries", "country"],
    "Addresses": ["addresses", "location"],
    "Body": ["body", "ad text", "message"],
    "Title": ["title"],
    "Call to Action": ["call to action", "cta"],
    "Ad Name": ["ad name"],
    "Story ID": ["story id", "post id"],
    "Link Object ID": ["link object id", "object id"],
    "Permalink": ["permalink"],
    "Display Link": ["display link", "link"],
    "Destination Type": ["destination type"],
    "Advantage Audience": ["advantage audience"],
}

BUDGET_NUMBER_PATTERN = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")
ADDRESS_PATTERN = re.compile(r"\(([\d.-]+),\s*([\d.-]+)\)\s*\+(\d+)\s*km", re.IGNORECASE)

# Mapping for common country names to ISO country codes
COUNTRY_NAME_TO_CODE = {
    "vietnam": "VN",
    "viet nam": "VN",
    "united kingdom": "GB",
    "united states": "US",
    "usa": "US",
    "australia": "AU",
    "new zealand": "NZ",
    "canada": "CA",
    "ireland": "IE",
    "united arab emirates": "AE",
    "uae": "AE",
    "singapore": "SG",
    "thailand": "TH",
    "philippines": "PH",
    "malaysia": "MY",
    "indonesia": "ID",
    "japan": "JP",
    "south korea": "KR",
    "mexico": "MX",
    "germany": "DE",
    "france": "FR",
    "spain": "ES",
    "italy": "IT",
    "chile": "CL",
}


@dataclass(frozen=True)
class CustomLocation:
    latitude: float
    longitude: float
    radius: int


@dataclass(frozen=True)
class CampaignSpec:
    """A fully validated unit of work for the campaign builder."""

    campaign_name: str
    campaign_status: str
    objective: str
    daily_budget: int
    bid_strategy: str
    optimization_goal: str
    billing_event: str
    age_min: int
    age_max: int
    countries: Tuple[str, ...]
    genders: Tuple[int, ...]
    advantage_audience: int
    page_id: str
    post_id: str
    destination_type: str
    call_to_action: str
    creative_message: str
    display_link: str
    adset_name: str
    ad_name: str
    custom_locations: Tuple[CustomLocation, ...] = ()


@dataclass(frozen=True)
class NormalizedRow:
    spec: CampaignSpec
    ok: bool = True


@dataclass(frozen=True)
class RowValidationError:
    """Row-scoped validation failure; errors maps field name -> reason."""

    errors: Dict[str, str] = field(default_factory=dict)
    campaign_name: str = ""
    ok: bool = False

    @property
    def fields(self) -> List[str]:
        return list(self.errors)

    @property
    def message(self) -> str:
        details = "; ".join(f"{name}: {reason}" for name, reason in self.errors.items())
        return f"Validation failed ({details})"


NormalizationResult = Union[NormalizedRow, RowValidationError]


def _header_key(header: str) -> str:
    return " ".join(str(header).replace("_", " ").lower().split())


_ALIAS_LOOKUP = {
    variant: canonical
    for canonical, variants in FIELD_ALIASES.items()
    for variant in variants
}


def canonicalize_row(row: RawCsvRow) -> RawCsvRow:
    """
    Rename known header variants to their canonical column names.

    The first non-blank value wins when several variants map to the same
    column. Unknown columns are kept unchanged.
    """
    canonical: RawCsvRow = {}
    for header, value in row.items():
        if header is None:
            continue
        text = "" if value is None else str(value)
        name = _ALIAS_LOOKUP.get(_header_key(header), header)
        if name in canonical and canonical[name].strip():
            continue
        canonical[name] = text
    return canonical


def normalize_single_country_code(country_value: str) -> str:
    """
    Normalize a single country name or code to a two-letter ISO country code.

    Returns:
        Normalized country code, or "" if the value cannot be mapped
    """
    if not country_value:
        return ""

    country_value = str(country_value).strip()

    if len(country_value) == 2 and country_value.isalpha():
        return country_value.upper()

    code = COUNTRY_NAME_TO_CODE.get(country_value.lower())
    if code:
        logger.debug(f"Mapped country name '{country_value}' to code: {code}")
        return code

    return ""


def normalize_countries(value, default: List[str]) -> Tuple[Tuple[str, ...], List[str]]:
    """
    Split a comma separated country cell into unique ISO codes.

    Returns:
        (codes, unknown values). codes falls back to default when the cell is blank.
    """
    if not value or not str(value).strip():
        return tuple(default), []

    codes: List[str] = []
    unknown: List[str] = []
    for part in str(value).split(","):
        if not part.strip():
            continue
        code = normalize_single_country_code(part)
        if not code:
            unknown.append(part.strip())
        elif code not in codes:
            codes.append(code)
    return tuple(codes), unknown


def parse_budget(value) -> Optional[int]:
    """
    Parse a budget cell into an integer amount in the account's minor unit.

    Currency symbols, spaces and thousands separators are dropped and the
    remaining decimal is rounded half up, so "50000.5" becomes 50001.
    Spreadsheet scientific notation is read as a number: "1.5E+6" is 1500000.

    Returns:
        The amount, or None when the cell is not a number
    """
    text = re.sub(r"[\s,]", "", str(value or ""))
    # Currency symbols or codes before and after the number
    text = re.sub(r"^[^\d.+\-]+|[^\d.]+$", "", text)
    match = BUDGET_NUMBER_PATTERN.fullmatch(text)
    if not match:
        return None
    try:
        amount = Decimal(match.group(0))
        if not amount.is_finite():
            return None
        return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation:
        return None


def parse_age(value, default: int) -> Optional[int]:
    text = str(value or "").strip()
    if not text:
        return default
    try:
        age = Decimal(text)
    except InvalidOperation:
        return None
    if not age.is_finite() or age != age.to_integral_value():
        return None
    return int(age)


def parse_genders(value) -> Tuple[int, ...]:
    text = str(value or "").strip().lower()
    if text in ("male", "men", "1"):
        return (1,)
    if text in ("female", "women", "2"):
        return (2,)
    return (1, 2)


def parse_advantage_audience(value) -> int:
    return 1 if str(value or "").strip().lower() in ("1", "true", "yes") else 0


def parse_custom_locations(
    value, logger: Optional[logging.Logger] = None
) -> Tuple[CustomLocation, ...]:
    """Read "(lat, lon) +Nkm" entries from an Addresses cell."""
    logger = logger or logging.getLogger(__name__)
    locations = []
    for lat, lon, radius in ADDRESS_PATTERN.findall(str(value or "")):
        try:
            locations.append(CustomLocation(float(lat), float(lon), int(radius)))
        except ValueError:
            logger.warning(f"Skipping unreadable address '({lat}, {lon}) +{radius}km'")
    return tuple(locations)


def _resolve_status(row: RawCsvRow) -> str:
    statuses = (
        str(row.get("Campaign Status") or "").strip().upper(),
        str(row.get("Ad Set Run Status") or "").strip().upper(),
    )
    return "ACTIVE" if "ACTIVE" in statuses else "PAUSED"


def normalize_row(
    row: RawCsvRow,
    settings: Optional[ImportSettings] = None,
    fallback_page_id: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
) -> NormalizationResult:
    """
    Map one raw export row to a CampaignSpec.

    The function is deterministic: the same row and settings always produce
    an equal spec.

    Args:
        row: Raw CSV row keyed by header
        settings: Import defaults; the built-in ImportSettings when omitted
        fallback_page_id: Page to use when the row carries no page reference
        logger: Logger for mapping warnings; the module logger when omitted

    Returns:
        NormalizedRow on success, RowValidationError listing the bad fields otherwise
    """
    logger = logger or logging.getLogger(__name__)
    settings = settings or ImportSettings()
    row = canonicalize_row(row)
    errors: Dict[str, str] = {}

    campaign_name = str(row.get("Campaign Name") or "").strip()
    if not campaign_name:
        errors["campaign_name"] = "missing campaign name"

    # Budget: ad set level first, then campaign level
    daily_budget = None
    budget_cell = ""
    for column in ("Ad Set Daily Budget", "Campaign Daily Budget"):
        cell = str(row.get(column) or "").strip()
        if cell:
            budget_cell = cell
            daily_budget = parse_budget(cell)
            break
    if not budget_cell:
        daily_budget = settings.default_daily_budget
    elif daily_budget is None:
        errors["daily_budget"] = f"'{budget_cell}' is not a number"
    elif daily_budget <= 0:
        errors["daily_budget"] = f"must be greater than 0, got {daily_budget}"

    age_min = parse_age(row.get("Age Min"), settings.default_age_min)
    age_max = parse_age(row.get("Age Max"), settings.default_age_max)
    if age_min is None:
        errors["age_min"] = f"'{row.get('Age Min')}' is not a whole number"
    elif not MIN_AGE <= age_min <= MAX_AGE:
        errors["age_min"] = f"must be between {MIN_AGE} and {MAX_AGE}, got {age_min}"
    if age_max is None:
        errors["age_max"] = f"'{row.get('Age Max')}' is not a whole number"
    elif not MIN_AGE <= age_max <= MAX_AGE:
        errors["age_max"] = f"must be between {MIN_AGE} and {MAX_AGE}, got {age_max}"
    if (
        age_min is not None
        and age_max is not None
        and "age_min" not in errors
        and "age_max" not in errors
        and age_min > age_max
    ):
        errors["age_min"] = f"age_min {age_min} is greater than age_max {age_max}"
        errors["age_max"] = f"age_max {age_max} is less than age_min {age_min}"

    countries, unknown_countries = normalize_countries(
        row.get("Countries"), settings.default_countries
    )
    if unknown_countries:
        errors["countries"] = f"unknown country {', '.join(unknown_countries)}"
    elif not countries:
        errors["countries"] = "no target country"

    reference = resolve_post_reference(row, fallback_page_id)
    if not reference.page_id:
        errors["page_id"] = (
            "no page id in Link Object ID or Permalink and no fallback page configured"
        )

    if errors:
        logger.debug(f"Row '{campaign_name}' failed validation: {errors}")
        return RowValidationError(errors=errors, campaign_name=campaign_name)

    objective = enums.map_objective(
        row.get("Campaign Objective"), settings.default_objective, logger
    )
    optimization_goal = enums.map_optimization_goal_with_compatibility(
        row.get("Optimization Goal"),
        objective,
        settings.default_optimization_goal,
        logger,
    )
    destination_type = enums.map_destination_type(row.get("Destination Type"))
    call_to_action = enums.map_call_to_action(
        row.get("Call to Action"),
        destination_type,
        settings.call_to_action_map,
        logger,
    )

    spec = CampaignSpec(
        campaign_name=campaign_name,
        campaign_status=_resolve_status(row),
        objective=objective,
        daily_budget=daily_budget,
        bid_strategy=enums.map_bid_strategy(
            row.get("Campaign Bid Strategy"), settings.default_bid_strategy
        ),
        optimization_goal=optimization_goal,
        billing_event=enums.map_billing_event(
            row.get("Billing Event"), settings.default_billing_event
        ),
        age_min=age_min,
        age_max=age_max,
        countries=countries,
        genders=parse_genders(row.get("Gender")),
        advantage_audience=parse_advantage_audience(row.get("Advantage Audience")),
        page_id=reference.page_id,
        post_id=reference.post_id,
        destination_type=destination_type,
        call_to_action=call_to_action,
        creative_message=str(row.get("Body") or "").strip() or settings.default_message,
        display_link=str(row.get("Display Link") or "").strip() or settings.default_link,
        adset_name=str(row.get("Ad Set Name") or "").strip()
        or f"{campaign_name} - Ad Set",
        ad_name=str(row.get("Ad Name") or "").strip() or f"{campaign_name} - Ad",
        custom_locations=parse_custom_locations(row.get("Addresses"), logger),
    )
    return NormalizedRow(spec)


# JSON payload key -> canonical column, for CampaignSpec-shaped batch input
PAYLOAD_FIELDS = {
    "campaign_name": "Campaign Name",
    "campaignName": "Campaign Name",
    "name": "Campaign Name",
    "campaign_status": "Campaign Status",
    "status": "Campaign Status",
    "objective": "Campaign Objective",
    "daily_budget": "Campaign Daily Budget",
    "dailyBudget": "Campaign Daily Budget",
    "budget": "Campaign Daily Budget",
    "bid_strategy": "Campaign Bid Strategy",
    "bidStrategy": "Campaign Bid Strategy",
    "optimization_goal": "Optimization Goal",
    "optimizationGoal": "Optimization Goal",
    "billing_event": "Billing Event",
    "billingEvent": "Billing Event",
    "age_min": "Age Min",
    "ageMin": "Age Min",
    "age_max": "Age Max",
    "ageMax": "Age Max",
    "countries": "Countries",
    "gender": "Gender",
    "advantage_audience": "Advantage Audience",
    "advantageAudience": "Advantage Audience",
    "page_id": "Link Object ID",
    "pageId": "Link Object ID",
    "post_id": "Story ID",
    "postId": "Story ID",
    "permalink": "Permalink",
    "destination_type": "Destination Type",
    "destinationType": "Destination Type",
    "call_to_action": "Call to Action",
    "callToAction": "Call to Action",
    "creative_message": "Body",
    "message": "Body",
    "display_link": "Display Link",
    "link": "Display Link",
    "adset_name": "Ad Set Name",
    "adsetName": "Ad Set Name",
    "ad_name": "Ad Name",
    "adName": "Ad Name",
}


def payload_to_row(payload: dict) -> RawCsvRow:
    """Flatten a CampaignSpec-shaped JSON object into a canonical row."""
    row: RawCsvRow = {}
    for key, value in (payload or {}).items():
        column = PAYLOAD_FIELDS.get(key)
        if column is None or value is None:
            continue
        if isinstance(value, (list, tuple)):
            value = ",".join(str(item) for item in value)
        elif isinstance(value, bool):
            value = "1" if value else "0"
        row[column] = str(value).strip()

    # Explicit ids are rewritten into the column formats the extractor reads
    page_id = parse_id_field(row.get("Link Object ID"))
    if page_id and not page_id.startswith("o:"):
        row["Link Object ID"] = f"o:{page_id}"
        post_id = parse_id_field(row.get("Story ID"))
        if post_id and not row.get("Permalink"):
            row["Permalink"] = f"https://www.facebook.com/{page_id}/posts/{post_id}"
    return row


def normalize_payload(
    payload: dict,
    settings: Optional[ImportSettings] = None,
    fallback_page_id: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
) -> NormalizationResult:
    """
    Validate one CampaignSpec-shaped JSON object under the same rules as a CSV row.
    """
    if not isinstance(payload, dict):
        return RowValidationError(errors={"campaign": "expected a JSON object"})
    return normalize_row(payload_to_row(payload), settings, fallback_page_id, logger)
