"""SQLite-backed store for per-row campaign creation logs.

Each imported row gets one document: it is created as ``pending`` before the
first Graph API call and updated once with the outcome and whatever Facebook
ids were obtained. Reads filter by user, ad account, status and time window.

Usage::

    store = CampaignLogStore("data/campaign_logs.db")
    log_id = store.create_log({"user_id": "u1", "account_id": "act_1",
                               "name": "Spring Sale", "status": "pending"})
    store.update_log(log_id, {"status": "success",
                              "facebook_ids": {"campaign_id": "123"}})
"""

import json
import uuid
import sqlite3
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Union

logger = logging.getLogger(__name__)

STATUSES = ("pending", "success", "error")

TIME_RANGES = {"7d": 7, "30d": 30, "90d": 90, "all": None}

JSON_FIELDS = ("csv_row", "facebook_ids")
UPDATABLE_FIELDS = (
    "name",
    "status",
    "daily_budget",
    "csv_row",
    "facebook_ids",
    "error_message",
    "error_step",
    "error_kind",
)


class LogStoreError(Exception):
    """Exception raised when a log cannot be read or written."""

    pass


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CampaignLogStore:
    """Persistent campaign log documents backed by SQLite."""

    def __init__(self, db_path: Union[str, Path]) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    # ── DB setup ──────────────────────────────────────────────────────────────

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS campaign_logs (
                    id            TEXT PRIMARY KEY,
                    user_id       TEXT,
                    account_id    TEXT,
                    name          TEXT NOT NULL DEFAULT '',
                    status        TEXT NOT NULL DEFAULT 'pending',
                    daily_budget  INTEGER,
                    csv_row       TEXT,
                    facebook_ids  TEXT,
                    error_message TEXT,
                    error_step    TEXT,
                    error_kind    TEXT,
                    created_at    TEXT NOT NULL,
                    updated_at    TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_logs_user_account "
                "ON campaign_logs (user_id, account_id, created_at)"
            )
            conn.commit()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    @staticmethod
    def _to_document(row: sqlite3.Row) -> dict:
        document = dict(row)
        for key in JSON_FIELDS:
            document[key] = json.loads(document[key]) if document[key] else {}
        return document

    # ── Writes ────────────────────────────────────────────────────────────────

    def create_log(self, log: dict) -> str:
        """Insert a log document and return its id."""
        status = log.get("status", "pending")
        if status not in STATUSES:
            raise LogStoreError(f"Unknown log status '{status}'")

        log_id = uuid.uuid4().hex
        timestamp = _now()
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO campaign_logs (
                        id, user_id, account_id, name, status, daily_budget,
                        csv_row, facebook_ids, error_message, error_step,
                        error_kind, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        log_id,
                        log.get("user_id"),
                        log.get("account_id"),
                        log.get("name", ""),
                        status,
                        log.get("daily_budget"),
                        json.dumps(log.get("csv_row") or {}, ensure_ascii=False),
                        json.dumps(log.get("facebook_ids") or {}),
                        log.get("error_message"),
                        log.get("error_step"),
                        log.get("error_kind"),
                        timestamp,
                        timestamp,
                    ),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise LogStoreError(f"Failed to create campaign log: {e}") from e
        return log_id

    def update_log(self, log_id: str, fields: dict) -> bool:
        """
        Apply a partial update to a log document.

        Returns:
            True if a document with that id was updated
        """
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise LogStoreError(f"Cannot update log fields: {', '.join(sorted(unknown))}")
        if "status" in fields and fields["status"] not in STATUSES:
            raise LogStoreError(f"Unknown log status '{fields['status']}'")

        assignments = []
        values = []
        for key, value in fields.items():
            if key in JSON_FIELDS:
                value = json.dumps(value or {}, ensure_ascii=False)
            assignments.append(f"{key} = ?")
            values.append(value)
        assignments.append("updated_at = ?")
        values.extend([_now(), log_id])

        try:
            with self._connect() as conn:
                cur = conn.execute(
                    f"UPDATE campaign_logs SET {', '.join(assignments)} WHERE id = ?",
                    values,
                )
                conn.commit()
        except sqlite3.Error as e:
            raise LogStoreError(f"Failed to update campaign log {log_id}: {e}") from e
        return cur.rowcount > 0

    def delete_log(self, log_id: str) -> bool:
        try:
            with self._connect() as conn:
                cur = conn.execute("DELETE FROM campaign_logs WHERE id = ?", (log_id,))
                conn.commit()
        except sqlite3.Error as e:
            raise LogStoreError(f"Failed to delete campaign log {log_id}: {e}") from e
        return cur.rowcount > 0

    # ── Reads ─────────────────────────────────────────────────────────────────

    def get_log(self, log_id: str) -> Optional[dict]:
        """Return the log document or None if it does not exist."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM campaign_logs WHERE id = ?", (log_id,)
                ).fetchone()
        except sqlite3.Error as e:
            raise LogStoreError(f"Failed to read campaign log {log_id}: {e}") from e
        return self._to_document(row) if row else None

    @staticmethod
    def _where(
        user_id: Optional[str] = None,
        account_id: Optional[str] = None,
        status: Optional[str] = None,
        since: Optional[datetime] = None,
    ):
        clauses = []
        values: List = []
        if user_id is not None:
            clauses.append("user_id = ?")
            values.append(user_id)
        if account_id is not None:
            clauses.append("account_id = ?")
            values.append(account_id)
        if status is not None:
            clauses.append("status = ?")
            values.append(status)
        if since is not None:
            clauses.append("created_at >= ?")
            values.append(since.astimezone(timezone.utc).isoformat())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, values

    def find_logs(
        self,
        user_id: Optional[str] = None,
        account_id: Optional[str] = None,
        status: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 50,
        skip: int = 0,
    ) -> List[dict]:
        """Return matching log documents, newest first."""
        where, values = self._where(user_id, account_id, status, since)
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"SELECT * FROM campaign_logs {where} "
                    "ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
                    values + [limit, skip],
                ).fetchall()
        except sqlite3.Error as e:
            raise LogStoreError(f"Failed to query campaign logs: {e}") from e
        return [self._to_document(row) for row in rows]

    # ── Stats ─────────────────────────────────────────────────────────────────

    def get_stats(
        self, user_id: Optional[str] = None, account_id: Optional[str] = None
    ) -> Dict[str, int]:
        """Count logs by status: {"total", "success", "error", "pending"}."""
        where, values = self._where(user_id, account_id)
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"SELECT status, COUNT(*) FROM campaign_logs {where} GROUP BY status",
                    values,
                ).fetchall()
        except sqlite3.Error as e:
            raise LogStoreError(f"Failed to compute campaign log stats: {e}") from e

        stats = {"total": 0, "success": 0, "error": 0, "pending": 0}
        for status, count in rows:
            stats[status] = count
            stats["total"] += count
        return stats

    def get_detailed_stats(
        self,
        user_id: Optional[str] = None,
        account_id: Optional[str] = None,
        time_range: str = "30d",
    ) -> dict:
        """
        Aggregate logs for a dashboard view.

        Args:
            user_id: Restrict to one user
            account_id: Restrict to one ad account
            time_range: One of "7d", "30d", "90d" or "all"

        Returns:
            Dictionary with status counts, success rate, budget totals,
            per-account counts, the ten most recent logs and per-day counts
        """
        if time_range not in TIME_RANGES:
            raise LogStoreError(
                f"Unknown time range '{time_range}', expected one of {', '.join(TIME_RANGES)}"
            )
        days = TIME_RANGES[time_range]
        since = datetime.now(timezone.utc) - timedelta(days=days) if days else None
        where, values = self._where(user_id, account_id, since=since)

        try:
            with self._connect() as conn:
                status_rows = conn.execute(
                    f"SELECT status, COUNT(*), COALESCE(SUM(daily_budget), 0) "
                    f"FROM campaign_logs {where} GROUP BY status",
                    values,
                ).fetchall()
                account_rows = conn.execute(
                    f"SELECT account_id, COUNT(*), "
                    f"SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END) "
                    f"FROM campaign_logs {where} GROUP BY account_id ORDER BY 2 DESC",
                    values,
                ).fetchall()
                daily_rows = conn.execute(
                    f"SELECT substr(created_at, 1, 10) AS day, COUNT(*), "
                    f"SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END), "
                    f"SUM(CASE WHEN status = 'error' THEN 1 ELSE 0 END) "
                    f"FROM campaign_logs {where} GROUP BY day ORDER BY day",
                    values,
                ).fetchall()
        except sqlite3.Error as e:
            raise LogStoreError(f"Failed to compute detailed stats: {e}") from e

        counts = {"total": 0, "success": 0, "error": 0, "pending": 0}
        total_budget = 0
        for status, count, budget in status_rows:
            counts[status] = count
            counts["total"] += count
            total_budget += budget

        total = counts["total"]
        return {
            "time_range": time_range,
            **counts,
            "success_rate": round(counts["success"] / total * 100, 2) if total else 0.0,
            "total_budget": total_budget,
            "average_budget": round(total_budget / total, 2) if total else 0.0,
            "by_account": [
                {"account_id": account, "total": count, "success": success}
                for account, count, success in account_rows
            ],
            "recent": self.find_logs(
                user_id=user_id, account_id=account_id, since=since, limit=10
            ),
            "daily": [
                {"date": day, "total": count, "success": success, "error": error}
                for day, count, success, error in daily_rows
            ],
        }
