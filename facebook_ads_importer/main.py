import sys
import json
import argparse
import traceback
import logging
import time

from facebook_ads_importer import campaign_manager
from facebook_ads_importer import config as config_module
from facebook_ads_importer import importer
from facebook_ads_importer import twilio_notifier
from facebook_ads_importer.csv_parser import generate_csv_template, preview_csv
from facebook_ads_importer.facebook_api import FacebookAPIError
from facebook_ads_importer.log_store import CampaignLogStore, LogStoreError, TIME_RANGES

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger("facebook_ads_importer")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Create Facebook Ads campaigns from Ads Manager CSV exports."
    )
    parser.add_argument(
        "--debug",
        "-d",
        action="store_true",
        help="Enable debug mode for verbose output.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default="defaults.yaml",
        help="Path to configuration file.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    import_parser = subparsers.add_parser(
        "import", help="Create one campaign per row of a CSV export."
    )
    import_parser.add_argument("file", help="CSV or TSV export to import.")
    import_parser.add_argument(
        "--account-id", help="Ad account id (default: facebook.ad_account_id)."
    )
    import_parser.add_argument(
        "--access-token", help="Access token (default: facebook.access_token)."
    )
    import_parser.add_argument(
        "--page-id", help="Page used for rows without a page reference."
    )
    import_parser.add_argument("--user-id", help="Owner recorded on campaign logs.")
    import_parser.add_argument(
        "--workers", type=int, help="Rows processed concurrently."
    )
    import_parser.add_argument(
        "--verify-token",
        action="store_true",
        help="Check the access token with Facebook before importing.",
    )

    preview_parser = subparsers.add_parser(
        "preview", help="Show headers, sample rows and encoding of a CSV export."
    )
    preview_parser.add_argument("file", help="CSV or TSV export to preview.")

    logs_parser = subparsers.add_parser("logs", help="List campaign logs.")
    logs_parser.add_argument("--user-id", help="Only logs for this user.")
    logs_parser.add_argument("--account-id", help="Only logs for this ad account.")
    logs_parser.add_argument(
        "--status", choices=["pending", "success", "error"], help="Filter by status."
    )
    logs_parser.add_argument("--limit", type=int, default=50)
    logs_parser.add_argument("--skip", type=int, default=0)
    logs_parser.add_argument(
        "--stats", action="store_true", help="Print aggregate statistics instead."
    )
    logs_parser.add_argument(
        "--time-range", choices=sorted(TIME_RANGES), default="30d"
    )

    subparsers.add_parser("template", help="Print a CSV template with a sample row.")

    token_parent = argparse.ArgumentParser(add_help=False)
    token_parent.add_argument(
        "--access-token", help="Access token (default: facebook.access_token)."
    )
    account_parent = argparse.ArgumentParser(add_help=False)
    account_parent.add_argument(
        "--account-id", help="Ad account id (default: facebook.ad_account_id)."
    )

    campaigns_parser = subparsers.add_parser(
        "campaigns",
        parents=[token_parent, account_parent],
        help="List campaigns on an ad account.",
    )
    campaigns_parser.add_argument("--limit", type=int, default=25)
    campaigns_parser.add_argument(
        "--status",
        action="append",
        help="Only campaigns with this effective status (repeatable).",
    )

    status_parser = subparsers.add_parser(
        "status", parents=[token_parent], help="Show or change a campaign's status."
    )
    status_parser.add_argument("campaign_id", help="Campaign to inspect or update.")
    status_parser.add_argument(
        "--set", dest="new_status", choices=["ACTIVE", "PAUSED"], help="New status."
    )

    adsets_parser = subparsers.add_parser(
        "adsets",
        parents=[token_parent, account_parent],
        help="List ad sets of a campaign or ad account.",
    )
    adsets_parser.add_argument("--campaign-id", help="Only ad sets of this campaign.")
    adsets_parser.add_argument("--limit", type=int, default=25)

    insights_parser = subparsers.add_parser(
        "insights",
        parents=[token_parent, account_parent],
        help="Show spend and delivery insights.",
    )
    insights_parser.add_argument(
        "--campaign-ids", help="Comma separated campaigns to read instead of the account."
    )
    insights_parser.add_argument(
        "--date-preset", choices=campaign_manager.DATE_PRESETS, default="last_7d"
    )
    insights_parser.add_argument(
        "--level", choices=campaign_manager.INSIGHT_LEVELS, default="campaign"
    )

    subparsers.add_parser(
        "token",
        parents=[token_parent],
        help="Show the owner, permissions and ad accounts of an access token.",
    )

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP importer server.")
    serve_parser.add_argument("--port", type=int, default=5000)
    serve_parser.add_argument("--host", default="0.0.0.0")
    return parser


def _read_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _open_log_store(config: dict) -> CampaignLogStore:
    return CampaignLogStore(config_module.storage_path(config))


def run_import(args, config: dict) -> int:
    fb_settings = config_module.facebook_settings(config)
    if args.workers:
        config.setdefault("import", {})["max_workers"] = args.workers

    report = importer.import_csv_bytes(
        _read_file(args.file),
        args.account_id or fb_settings.get("ad_account_id"),
        args.access_token or fb_settings.get("access_token"),
        config=config,
        log_store=_open_log_store(config),
        user_id=args.user_id,
        page_id=args.page_id,
        verify_token=args.verify_token or fb_settings["verify_token"],
    )
    response = report.to_response()
    _print_json(response)

    for diagnostic in report.diagnostics:
        logger.warning(f"Row {diagnostic.row_index}: {diagnostic.message}")
    for result in report.batch.results:
        if result.status == "success":
            logger.info(f"[SUCCESS] {result.name} (Row {result.row_index})")
        else:
            logger.error(
                f"[FAILED] {result.name} (Row {result.row_index}, step: {result.error_step}) -> {result.error_message}"
            )

    twilio_notifier.send_import_summary(
        config.get("twilio"), report.batch.summary_message()
    )
    return 0 if response["error_count"] == 0 else 2


def run_preview(args, config: dict) -> int:
    _print_json(preview_csv(_read_file(args.file)))
    return 0


def run_logs(args, config: dict) -> int:
    store = _open_log_store(config)
    if args.stats:
        _print_json(
            store.get_detailed_stats(
                user_id=args.user_id,
                account_id=args.account_id,
                time_range=args.time_range,
            )
        )
        return 0

    logs = store.find_logs(
        user_id=args.user_id,
        account_id=args.account_id,
        status=args.status,
        limit=args.limit,
        skip=args.skip,
    )
    _print_json(logs)
    logger.info(f"Listed {len(logs)} campaign logs")
    return 0


def run_template(args, config: dict) -> int:
    sys.stdout.write(generate_csv_template())
    return 0


def run_campaigns(args, config: dict) -> int:
    result = campaign_manager.list_campaigns(
        args.account_id,
        args.access_token,
        config=config,
        limit=args.limit,
        statuses=args.status,
    )
    _print_json(result)
    return 0


def run_status(args, config: dict) -> int:
    if args.new_status:
        result = campaign_manager.set_campaign_status(
            args.campaign_id, args.new_status, args.access_token, config=config
        )
    else:
        result = campaign_manager.campaign_status(
            args.campaign_id, args.access_token, config=config
        )
    _print_json(result)
    return 0


def run_adsets(args, config: dict) -> int:
    result = campaign_manager.list_ad_sets(
        args.account_id,
        args.access_token,
        config=config,
        campaign_id=args.campaign_id,
        limit=args.limit,
    )
    _print_json(result)
    return 0


def run_insights(args, config: dict) -> int:
    result = campaign_manager.campaign_insights(
        args.account_id,
        args.access_token,
        config=config,
        date_preset=args.date_preset,
        level=args.level,
        campaign_ids=(args.campaign_ids or "").split(","),
    )
    _print_json(result)
    totals = result["totals"]
    logger.info(
        f"Spend {totals['spend']} over {len(result['data'])} rows ({args.date_preset})"
    )
    return 0


def run_token(args, config: dict) -> int:
    _print_json(campaign_manager.inspect_token(args.access_token, config=config))
    return 0


def run_serve(args, config: dict) -> int:
    from facebook_ads_importer.server import ImporterServer

    server = ImporterServer(
        port=args.port, config=config, log_store=_open_log_store(config), host=args.host
    )
    if not server.start():
        logger.error("Importer server failed to start")
        return 1
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        server.stop()
    return 0


COMMANDS = {
    "import": run_import,
    "preview": run_preview,
    "logs": run_logs,
    "template": run_template,
    "campaigns": run_campaigns,
    "status": run_status,
    "adsets": run_adsets,
    "insights": run_insights,
    "token": run_token,
    "serve": run_serve,
}


def run(argv=None):
    args = build_parser().parse_args(argv)
    debug = args.debug

    # Set logging level based on debug flag
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Debug mode enabled")

    # Load configuration
    try:
        config = config_module.load_config(args.config)
        config_module.import_settings(config)
        config_module.facebook_settings(config)
    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        if debug:
            traceback.print_exc()
        sys.exit(1)

    try:
        exit_code = COMMANDS[args.command](args, config)
    except importer.BatchRequestError as e:
        logger.error(f"Import rejected: {e}")
        sys.exit(1)
    except campaign_manager.ManagementRequestError as e:
        logger.error(f"Request rejected: {e}")
        sys.exit(1)
    except FacebookAPIError as e:
        logger.error(f"Facebook API error: {e}")
        if "access token" in str(e).lower():
            logger.error("Check FB_ACCESS_TOKEN or pass --access-token")
        if debug:
            traceback.print_exc()
        sys.exit(1)
    except LogStoreError as e:
        logger.error(f"Campaign log storage failed: {e}")
        if debug:
            traceback.print_exc()
        sys.exit(1)
    except OSError as e:
        logger.error(f"Could not read '{getattr(args, 'file', '')}': {e}")
        if debug:
            traceback.print_exc()
        sys.exit(1)
    sys.exit(exit_code)


if __name__ == "__main__":
    run()
