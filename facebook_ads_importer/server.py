import re
import json
import logging
import threading
import time
import traceback
from datetime import datetime, timedelta, timezone
from email.parser import BytesParser
from email.policy import HTTP
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Dict, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from facebook_ads_importer import campaign_manager
from facebook_ads_importer import config as config_module
from facebook_ads_importer import importer
from facebook_ads_importer.csv_parser import preview_csv
from facebook_ads_importer.facebook_api import FacebookAPIError, FacebookAPIInitError
from facebook_ads_importer.log_store import CampaignLogStore, LogStoreError

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 20 * 1024 * 1024
CAMPAIGN_STATUS_PATH = re.compile(r"^/v1/campaigns/([^/]+)/status$")


class RequestError(Exception):
    """Exception raised for requests that cannot be served, with an HTTP status."""

    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.status = status


def parse_multipart(content_type: str, body: bytes) -> Tuple[Dict[str, str], Dict[str, bytes]]:
    """
    Split a multipart/form-data body into text fields and file contents.

    Returns:
        (fields, files) keyed by form field name
    """
    message = BytesParser(policy=HTTP).parsebytes(
        f"Content-Type: {content_type}\r\n\r\n".encode("latin-1") + body
    )
    if not message.is_multipart():
        raise RequestError("Expected a multipart/form-data body")

    fields: Dict[str, str] = {}
    files: Dict[str, bytes] = {}
    for part in message.iter_parts():
        name = part.get_param("name", header="content-disposition")
        if not name:
            continue
        payload = part.get_payload(decode=True) or b""
        if part.get_filename() is not None:
            files[name] = payload
        else:
            fields[name] = payload.decode("utf-8", errors="replace").strip()
    return fields, files


class ImporterHandler(BaseHTTPRequestHandler):
    """JSON HTTP handler for CSV preview, imports and campaign logs"""

    def _set_headers(self, status: int = 200, content_type="application/json"):
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, PATCH, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type")
        self.end_headers()

    def _send_json(self, payload: dict, status: int = 200):
        self._set_headers(status)
        self.wfile.write(json.dumps(payload, default=str).encode())

    def log_message(self, format, *args):
        logger.info("%s - %s", self.address_string(), format % args)

    @property
    def config(self) -> dict:
        return self.server.config

    @property
    def log_store(self) -> Optional[CampaignLogStore]:
        return self.server.log_store

    def do_OPTIONS(self):
        """Handle preflight CORS requests"""
        self._set_headers()

    def do_GET(self):
        url = urlparse(self.path)
        query = {key: values[0] for key, values in parse_qs(url.query).items()}
        status_match = CAMPAIGN_STATUS_PATH.match(url.path)
        if status_match:
            self._dispatch(self._handle_campaign_status, query, status_match.group(1))
            return
        routes = {
            "/": self._handle_health,
            "/health": self._handle_health,
            "/v1/logs": self._handle_logs,
            "/v1/stats": self._handle_stats,
            "/v1/campaigns": self._handle_list_campaigns,
            "/v1/adsets": self._handle_list_ad_sets,
            "/v1/insights": self._handle_insights,
            "/v1/debug-token": self._handle_debug_token,
        }
        self._dispatch(routes.get(url.path), query)

    def do_POST(self):
        url = urlparse(self.path)
        status_match = CAMPAIGN_STATUS_PATH.match(url.path)
        if status_match:
            self._dispatch(self._handle_set_campaign_status, status_match.group(1))
            return
        routes = {
            "/v1/preview-csv": self._handle_preview,
            "/v1/import-csv": self._handle_import_csv,
            "/v1/campaigns": self._handle_campaigns,
        }
        self._dispatch(routes.get(url.path))

    def do_PATCH(self):
        status_match = CAMPAIGN_STATUS_PATH.match(urlparse(self.path).path)
        if status_match:
            self._dispatch(self._handle_set_campaign_status, status_match.group(1))
        else:
            self._dispatch(None)

    def _dispatch(self, handler, *args):
        if handler is None:
            self._send_json({"error": "Not found"}, 404)
            return
        try:
            self._send_json(handler(*args))
        except RequestError as e:
            self._send_json({"error": str(e)}, e.status)
        except (importer.BatchRequestError, campaign_manager.ManagementRequestError) as e:
            self._send_json({"error": str(e)}, 400)
        except FacebookAPIInitError as e:
            self._send_json({"error": str(e)}, 401)
        except FacebookAPIError as e:
            self._send_json({"error": str(e), "kind": e.kind}, 502)
        except LogStoreError as e:
            logger.error(f"Log store error: {e}")
            self._send_json({"error": "Campaign log storage is unavailable"}, 500)
        except Exception as e:
            logger.error(f"Error processing request {self.path}: {str(e)}")
            logger.error(traceback.format_exc())
            self._send_json({"error": f"Error: {str(e)}"}, 500)

    # ── Request bodies ────────────────────────────────────────────────────────

    def _read_body(self) -> bytes:
        content_length = int(self.headers.get("Content-Length", 0))
        if content_length == 0:
            raise RequestError("Empty request body")
        if content_length > MAX_UPLOAD_BYTES:
            raise RequestError("Request body too large", 413)
        return self.rfile.read(content_length)

    def _read_json(self) -> dict:
        try:
            return json.loads(self._read_body())
        except json.JSONDecodeError as e:
            raise RequestError("Invalid JSON") from e

    def _read_upload(self) -> Tuple[Dict[str, str], bytes]:
        content_type = self.headers.get("Content-Type", "")
        body = self._read_body()
        if not content_type.startswith("multipart/form-data"):
            query = parse_qs(urlparse(self.path).query)
            return {key: values[0] for key, values in query.items()}, body

        fields, files = parse_multipart(content_type, body)
        if "file" not in files:
            raise RequestError("No file provided")
        return fields, files["file"]

    def _require_store(self) -> CampaignLogStore:
        if self.log_store is None:
            raise RequestError("Campaign log storage is not configured", 503)
        return self.log_store

    # ── Routes ────────────────────────────────────────────────────────────────

    def _handle_health(self, query=None) -> dict:
        return {"status": "ok", "message": "Importer server is running"}

    def _handle_preview(self) -> dict:
        _, data = self._read_upload()
        return {"success": True, "preview": preview_csv(data)}

    def _handle_import_csv(self) -> dict:
        fields, data = self._read_upload()
        fb_settings = config_module.facebook_settings(self.config)
        report = importer.import_csv_bytes(
            data,
            fields.get("accountId") or fb_settings.get("ad_account_id"),
            fields.get("accessToken") or fb_settings.get("access_token"),
            config=self.config,
            log_store=self.log_store,
            user_id=fields.get("userId"),
            page_id=fields.get("pageId"),
            verify_token=fb_settings["verify_token"],
        )
        return {"success": True, **report.to_response()}

    def _handle_campaigns(self) -> dict:
        fb_settings = config_module.facebook_settings(self.config)
        report = importer.import_campaigns(
            self._read_json(),
            config=self.config,
            log_store=self.log_store,
            verify_token=fb_settings["verify_token"],
        )
        return {"success": True, **report.to_response()}

    def _handle_logs(self, query: dict) -> dict:
        store = self._require_store()
        since = None
        if query.get("days"):
            try:
                since = datetime.now(timezone.utc) - timedelta(days=int(query["days"]))
            except ValueError as e:
                raise RequestError("days must be an integer") from e
        try:
            limit = int(query.get("limit", 50))
            skip = int(query.get("skip", 0))
        except ValueError as e:
            raise RequestError("limit and skip must be integers") from e

        logs = store.find_logs(
            user_id=query.get("user_id"),
            account_id=query.get("account_id"),
            status=query.get("status"),
            since=since,
            limit=limit,
            skip=skip,
        )
        return {"success": True, "logs": logs, "count": len(logs)}

    def _handle_stats(self, query: dict) -> dict:
        store = self._require_store()
        try:
            stats = store.get_detailed_stats(
                user_id=query.get("user_id"),
                account_id=query.get("account_id"),
                time_range=query.get("time_range", "30d"),
            )
        except LogStoreError as e:
            if "time range" in str(e):
                raise RequestError(str(e)) from e
            raise
        return {"success": True, "stats": stats}

    # ── Campaign management ───────────────────────────────────────────────────

    @staticmethod
    def _query_limit(query: dict) -> int:
        try:
            return int(query.get("limit", 25))
        except ValueError as e:
            raise RequestError("limit must be an integer") from e

    @staticmethod
    def _query_list(query: dict, name: str) -> list:
        return [item for item in query.get(name, "").split(",") if item.strip()]

    def _handle_list_campaigns(self, query: dict) -> dict:
        result = campaign_manager.list_campaigns(
            query.get("account_id"),
            query.get("access_token"),
            config=self.config,
            limit=self._query_limit(query),
            statuses=self._query_list(query, "status"),
        )
        return {"success": True, **result}

    def _handle_list_ad_sets(self, query: dict) -> dict:
        result = campaign_manager.list_ad_sets(
            query.get("account_id"),
            query.get("access_token"),
            config=self.config,
            campaign_id=query.get("campaign_id"),
            limit=self._query_limit(query),
        )
        return {"success": True, **result}

    def _handle_insights(self, query: dict) -> dict:
        result = campaign_manager.campaign_insights(
            query.get("account_id"),
            query.get("access_token"),
            config=self.config,
            date_preset=query.get("date_preset", "last_7d"),
            level=query.get("level", "campaign"),
            campaign_ids=self._query_list(query, "campaign_ids"),
        )
        return {"success": True, **result}

    def _handle_campaign_status(self, query: dict, campaign_id: str) -> dict:
        campaign = campaign_manager.campaign_status(
            campaign_id, query.get("access_token"), config=self.config
        )
        return {"success": True, "campaign": campaign}

    def _handle_set_campaign_status(self, campaign_id: str) -> dict:
        body = self._read_json()
        if not isinstance(body, dict):
            raise RequestError("Request body must be a JSON object")
        return campaign_manager.set_campaign_status(
            campaign_id, body.get("status"), body.get("accessToken"), config=self.config
        )

    def _handle_debug_token(self, query: dict) -> dict:
        token = campaign_manager.inspect_token(
            query.get("access_token"), config=self.config
        )
        return {"success": True, "token": token}


class ImporterHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address, config: dict, log_store: Optional[CampaignLogStore]):
        super().__init__(address, ImporterHandler)
        self.config = config
        self.log_store = log_store


class ImporterServer:
    """HTTP front end for the importer"""

    def __init__(
        self,
        port: int = 5000,
        config: Optional[dict] = None,
        log_store: Optional[CampaignLogStore] = None,
        host: str = "0.0.0.0",
    ):
        """Initialize the server

        Args:
            port: Port to run the server on
            config: Loaded configuration
            log_store: Campaign log store shared by all requests
            host: Interface to bind
        """
        self.host = host
        self.port = port
        self.config = config or {}
        self.log_store = log_store
        self.server = None
        self.thread = None

    def start(self) -> bool:
        """Start the server in a background thread"""
        if self.thread and self.thread.is_alive():
            logger.warning("Importer server is already running")
            return True

        self.server = ImporterHTTPServer(
            (self.host, self.port), self.config, self.log_store
        )
        self.port = self.server.server_address[1]

        def run_server():
            logger.info(f"Importer server started on port {self.port}")
            self.server.serve_forever()

        self.thread = threading.Thread(target=run_server, daemon=True)
        self.thread.start()
        # Give server time to start
        time.sleep(0.1)
        return self.thread.is_alive()

    def stop(self):
        """Stop the server"""
        if self.server:
            self.server.shutdown()
            self.server.server_close()
            logger.info("Importer server stopped")
            self.server = None
