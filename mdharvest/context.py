"""Run-scoped state shared by all workers: statistics, failure ledger, cancellation."""

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from mdharvest.config import HarvestConfig
from mdharvest.retry import FailureKind


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class FailureRecord:
    """Terminal failure of one path. JSON form uses the ledger's camelCase keys."""

    path: str
    last_used_url: str
    error_message: str
    error_kind: FailureKind
    retry_count: int
    timestamp: str = field(default_factory=utc_now_iso)
    prior_error: str | None = None

    def to_dict(self) -> dict:
        d = {
            "path": self.path,
            "lastUsedUrl": self.last_used_url,
            "errorMessage": self.error_message,
            "errorKind": self.error_kind.value,
            "retryCount": self.retry_count,
            "timestamp": self.timestamp,
        }
        if self.prior_error is not None:
            d["priorError"] = self.prior_error
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "FailureRecord":
        """Parse a ledger entry; accepts the older linkPath/error/errorType keys."""
        path = data.get("path") or data.get("linkPath")
        if not path:
            raise ValueError(f"Ledger entry without a path: {data!r}")
        kind_raw = str(data.get("errorKind") or data.get("errorType") or "").lower()
        kind = FailureKind.TIMEOUT if kind_raw == "timeout" else FailureKind.ORDINARY
        return cls(
            path=path,
            last_used_url=data.get("lastUsedUrl") or "",
            error_message=data.get("errorMessage") or data.get("error") or "",
            error_kind=kind,
            retry_count=int(data.get("retryCount") or 0),
            timestamp=data.get("timestamp") or utc_now_iso(),
            prior_error=data.get("priorError"),
        )


@dataclass(frozen=True)
class WorkItem:
    """One path to process. prior_attempt is set when seeded from a ledger."""

    path: str
    index: int = 0
    prior_attempt: FailureRecord | None = None


class RunStatistics:
    """Counters mutated by every worker; all updates go through one lock."""

    COUNTERS = (
        "total",
        "success",
        "failed",
        "direct_success",
        "rendered_success",
        "suspicious_saves",
        "timeout_retries",
        "ordinary_retries",
        "attempts",
        "completed",
    )

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts = dict.fromkeys(self.COUNTERS, 0)
        self.started_at: float = time.monotonic()
        self.finished_at: float | None = None

    def incr(self, name: str, n: int = 1) -> int:
        """Add n to a counter and return the new value."""
        with self._lock:
            self._counts[name] += n
            return self._counts[name]

    def __getitem__(self, name: str) -> int:
        with self._lock:
            return self._counts[name]

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def finish(self) -> None:
        self.finished_at = time.monotonic()

    @property
    def duration(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return max(0.0, end - self.started_at)


class FailureLedger:
    """Append-only list of FailureRecords, at most one per path."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[FailureRecord] = []
        self._paths: set[str] = set()
        self._sealed = False

    def append(self, record: FailureRecord) -> bool:
        """Record a failure. Returns False if this path already failed or the ledger is sealed."""
        with self._lock:
            if self._sealed or record.path in self._paths:
                return False
            self._paths.add(record.path)
            self._records.append(record)
            return True

    def records(self) -> list[FailureRecord]:
        with self._lock:
            return list(self._records)

    def seal(self) -> list[FailureRecord]:
        """Refuse further appends and return the final records."""
        with self._lock:
            self._sealed = True
            return list(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def count(self, kind: FailureKind) -> int:
        with self._lock:
            return sum(1 for r in self._records if r.error_kind is kind)


@dataclass
class RunContext:
    """Everything one run shares across workers. Created fresh for every run."""

    config: HarvestConfig
    stats: RunStatistics = field(default_factory=RunStatistics)
    ledger: FailureLedger = field(default_factory=FailureLedger)
    cancel: threading.Event = field(default_factory=threading.Event)

    @property
    def cancelled(self) -> bool:
        return self.cancel.is_set()

    def sleep(self, seconds: float) -> bool:
        """Wait up to seconds. Returns True if the run was cancelled meanwhile."""
        if seconds <= 0:
            return self.cancel.is_set()
        return self.cancel.wait(seconds)

