import threading
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional

PENDING = "pending"
SUCCESS = "success"
ERROR = "error"


@dataclass
class FacebookIds:
    campaign_id: Optional[str] = None
    adset_id: Optional[str] = None
    creative_id: Optional[str] = None
    ad_id: Optional[str] = None

    def as_dict(self) -> Dict[str, str]:
        return {key: value for key, value in asdict(self).items() if value}


@dataclass
class CampaignCreationResult:
    """
    Outcome of one row. Starts pending and is finished exactly once with
    succeed() or fail(); later calls raise RuntimeError.
    """

    row_index: int
    name: str
    status: str = PENDING
    facebook_ids: FacebookIds = field(default_factory=FacebookIds)
    error_message: Optional[str] = None
    error_step: Optional[str] = None
    error_kind: Optional[str] = None
    creative_strategy: Optional[str] = None
    log_id: Optional[str] = None
    ads_manager_url: Optional[str] = None

    def _finish(self, status: str) -> None:
        if self.status != PENDING:
            raise RuntimeError(
                f"Row {self.row_index} already finished with status '{self.status}'"
            )
        self.status = status

    def succeed(self) -> None:
        self._finish(SUCCESS)

    def fail(self, message: str, step: Optional[str] = None, kind: str = "api_error") -> None:
        self._finish(ERROR)
        self.error_message = message
        self.error_step = step
        self.error_kind = kind

    def to_dict(self) -> dict:
        data = asdict(self)
        data["facebook_ids"] = self.facebook_ids.as_dict()
        return {key: value for key, value in data.items() if value is not None}


class BatchResult:
    """
    Collects one CampaignCreationResult per input row, in input order.

    Slots are reserved up front so rows finishing out of order on worker
    threads still land at their own index.
    """

    def __init__(self, size: int):
        self._results: List[Optional[CampaignCreationResult]] = [None] * size
        self._lock = threading.Lock()

    def add(self, position: int, result: CampaignCreationResult) -> None:
        with self._lock:
            if self._results[position] is not None:
                raise ValueError(f"Result for position {position} already recorded")
            self._results[position] = result

    @property
    def results(self) -> List[CampaignCreationResult]:
        with self._lock:
            missing = [i for i, r in enumerate(self._results) if r is None]
            if missing:
                raise RuntimeError(f"No result recorded for rows {missing}")
            return list(self._results)

    def __len__(self) -> int:
        return len(self._results)

    def counts(self) -> Dict[str, int]:
        counts = {SUCCESS: 0, ERROR: 0, PENDING: 0}
        for result in self.results:
            counts[result.status] += 1
        return counts

    def to_response(self) -> dict:
        results = self.results
        counts = self.counts()
        return {
            "results": [result.to_dict() for result in results],
            "total_processed": len(results),
            "success_count": counts[SUCCESS],
            "error_count": counts[ERROR],
        }

    def summary_message(self) -> str:
        """Short text summary of the batch, used for SMS notifications."""
        results = self.results
        counts = self.counts()
        message = (
            f"FB Ads import complete: {counts[SUCCESS]} succeeded, "
            f"{counts[ERROR]} failed out of {len(results)}."
        )
        if counts[ERROR]:
            error_texts = []
            for result in results:
                if result.status == ERROR:
                    err = f"{result.name}: {result.error_message or ''}"
                    if len(err) > 100:
                        err = err[:97] + "..."
                    error_texts.append(err)
            error_summary = " | ".join(error_texts)
            if len(error_summary) > 300:
                error_summary = error_summary[:297] + "..."
            message += " Errors: " + error_summary
        return message
