import yaml
import os
import re
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dotenv import load_dotenv

from facebook_ads_importer import enums

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "v23.0"
DEFAULT_REQUEST_TIMEOUT = 30
DEFAULT_DB_PATH = "data/campaign_logs.db"


class ConfigError(ValueError):
    """Exception raised when configuration values cannot be used."""

    pass


@dataclass
class ImportSettings:
    """Defaults and limits applied while turning CSV rows into campaigns."""

    default_daily_budget: int = 50000
    min_daily_budget: int = 30000
    default_countries: List[str] = field(default_factory=lambda: ["VN"])
    default_age_min: int = 18
    default_age_max: int = 65
    default_objective: str = enums.DEFAULT_OBJECTIVE
    default_optimization_goal: str = enums.DEFAULT_OPTIMIZATION_GOAL
    default_bid_strategy: str = enums.DEFAULT_BID_STRATEGY
    default_billing_event: str = enums.DEFAULT_BILLING_EVENT
    default_message: str = "Discover our amazing products and services!"
    default_link: str = "https://facebook.com"
    create_paused: bool = True
    call_to_action_map: Dict[str, str] = field(
        default_factory=lambda: dict(enums.CALL_TO_ACTION_MAP)
    )
    max_workers: int = 3


def replace_env_vars(value):
    """
    Replace environment variable placeholders ${VAR_NAME} with their values.
    """
    if isinstance(value, str):
        pattern = r"\${([^}]+)}"
        for match in re.findall(pattern, value):
            env_var = os.getenv(match)
            if env_var is not None:
                value = value.replace(f"${{{match}}}", env_var)
    return value


def process_dict_env_vars(config_dict):
    """
    Recursively process a dictionary and replace environment variable placeholders.
    """
    for key, value in config_dict.items():
        if isinstance(value, dict):
            process_dict_env_vars(value)
        elif isinstance(value, list):
            config_dict[key] = [replace_env_vars(item) for item in value]
        else:
            config_dict[key] = replace_env_vars(value)
    return config_dict


def load_config(path: str = "defaults.yaml") -> dict:
    """
    Load YAML configuration from the given path and overlay with environment variables.
    Environment variables take precedence over YAML config.
    """
    load_dotenv()

    try:
        with open(path, "r") as f:
            config = yaml.safe_load(f)
    except FileNotFoundError:
        logger.warning(f"Config file '{path}' not found, using built-in defaults")
        config = None

    if not config:
        config = {}

    config.setdefault("facebook", {})
    config.setdefault("import", {})
    config.setdefault("storage", {})

    # Facebook credentials
    if os.getenv("FB_APP_ID"):
        config["facebook"]["app_id"] = os.getenv("FB_APP_ID")
    if os.getenv("FB_APP_SECRET"):
        config["facebook"]["app_secret"] = os.getenv("FB_APP_SECRET")
    if os.getenv("FB_ACCESS_TOKEN"):
        config["facebook"]["access_token"] = os.getenv("FB_ACCESS_TOKEN")
    if os.getenv("FB_AD_ACCOUNT_ID"):
        config["facebook"]["ad_account_id"] = os.getenv("FB_AD_ACCOUNT_ID")
    if os.getenv("FB_PAGE_ID"):
        config["facebook"]["page_id"] = os.getenv("FB_PAGE_ID")
    if os.getenv("FB_API_VERSION"):
        config["facebook"]["api_version"] = os.getenv("FB_API_VERSION")
    if os.getenv("FB_REQUEST_TIMEOUT"):
        config["facebook"]["request_timeout"] = os.getenv("FB_REQUEST_TIMEOUT")

    # Importer settings
    if os.getenv("IMPORTER_DB_PATH"):
        config["storage"]["db_path"] = os.getenv("IMPORTER_DB_PATH")
    if os.getenv("IMPORTER_MAX_WORKERS"):
        config["import"]["max_workers"] = os.getenv("IMPORTER_MAX_WORKERS")

    # Twilio credentials
    if os.getenv("TWILIO_ACCOUNT_SID"):
        config.setdefault("twilio", {})["account_sid"] = os.getenv("TWILIO_ACCOUNT_SID")
    if os.getenv("TWILIO_AUTH_TOKEN"):
        config.setdefault("twilio", {})["auth_token"] = os.getenv("TWILIO_AUTH_TOKEN")
    if os.getenv("TWILIO_FROM_NUMBER"):
        config.setdefault("twilio", {})["from_number"] = os.getenv("TWILIO_FROM_NUMBER")
    if os.getenv("TWILIO_TO_NUMBER"):
        config.setdefault("twilio", {})["to_number"] = os.getenv("TWILIO_TO_NUMBER")

    return process_dict_env_vars(config)


def _as_int(section: dict, key: str, default: int) -> int:
    value = section.get(key)
    if value is None or str(value).strip() == "":
        return default
    try:
        return int(str(value).strip())
    except ValueError as e:
        raise ConfigError(f"Config value '{key}' must be an integer, got '{value}'") from e


def _as_bool(value, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def import_settings(config: Optional[dict] = None) -> ImportSettings:
    """
    Build ImportSettings from the "import" section of a loaded config.

    Entries in import.call_to_action_map are merged over the built-in action
    table so a deployment can add or remap CTA values without code changes.
    """
    section = (config or {}).get("import") or {}
    defaults = ImportSettings()

    countries = section.get("default_countries") or defaults.default_countries
    if isinstance(countries, str):
        countries = [c.strip() for c in countries.split(",") if c.strip()]

    action_map = dict(enums.CALL_TO_ACTION_MAP)
    for key, value in (section.get("call_to_action_map") or {}).items():
        action_map[enums.normalize_enum_value(key)] = enums.normalize_enum_value(value)

    settings = ImportSettings(
        default_daily_budget=_as_int(
            section, "default_daily_budget", defaults.default_daily_budget
        ),
        min_daily_budget=_as_int(section, "min_daily_budget", defaults.min_daily_budget),
        default_countries=[str(c).strip().upper() for c in countries],
        default_age_min=_as_int(section, "default_age_min", defaults.default_age_min),
        default_age_max=_as_int(section, "default_age_max", defaults.default_age_max),
        default_objective=section.get("default_objective") or defaults.default_objective,
        default_optimization_goal=section.get("default_optimization_goal")
        or defaults.default_optimization_goal,
        default_bid_strategy=section.get("default_bid_strategy")
        or defaults.default_bid_strategy,
        default_billing_event=section.get("default_billing_event")
        or defaults.default_billing_event,
        default_message=section.get("default_message") or defaults.default_message,
        default_link=section.get("default_link") or defaults.default_link,
        create_paused=_as_bool(section.get("create_paused"), defaults.create_paused),
        call_to_action_map=action_map,
        max_workers=_as_int(section, "max_workers", defaults.max_workers),
    )

    if settings.default_daily_budget <= 0:
        raise ConfigError("default_daily_budget must be greater than 0")
    if settings.max_workers < 1:
        raise ConfigError("max_workers must be at least 1")
    return settings


def facebook_settings(config: Optional[dict] = None) -> dict:
    """Return the facebook section with API version, timeout and token check filled in."""
    section = dict((config or {}).get("facebook") or {})
    section["api_version"] = section.get("api_version") or DEFAULT_API_VERSION
    section["verify_token"] = _as_bool(section.get("verify_token"), False)
    try:
        section["request_timeout"] = float(
            section.get("request_timeout") or DEFAULT_REQUEST_TIMEOUT
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(
            f"request_timeout must be a number, got '{section.get('request_timeout')}'"
        ) from e
    return section


def storage_path(config: Optional[dict] = None) -> str:
    return ((config or {}).get("storage") or {}).get("db_path") or DEFAULT_DB_PATH
