"""Harvest configuration and per-pass presets (fresh harvest vs resume)."""

from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from urllib.parse import quote

from mdharvest.retry import RetryPolicy


class QualityMode(str, Enum):
    """Strict drops short content; lenient saves it with a note."""

    STRICT = "strict"
    LENIENT = "lenient"


class StrategyOrder(str, Enum):
    """Which retrieval strategy an attempt starts with."""

    DIRECT_FIRST = "direct-first"
    PRIOR_FIRST = "prior-first"  # whichever strategy the previous run last used


# Values for options the user did not set. Resume uses fewer workers and more patience.
FRESH_PRESET = {
    "timeout": 15.0,
    "delay": 0.5,
    "ordinary_retries": 2,
    "timeout_retries": 6,
    "timeout_backoff": 2.0,
    "retry_delay": 1.0,
    "workers": 20,
    "extract_min_chars": 20,
    "save_min_chars": 100,
    "floor_chars": 10,
    "direct_settle": 1.0,
    "render_settle": 2.0,
    "selector_timeout": 5.0,
    "quality_mode": QualityMode.STRICT,
    "strategy_order": StrategyOrder.DIRECT_FIRST,
}
RESUME_PRESET = {
    **FRESH_PRESET,
    "timeout": 20.0,
    "delay": 1.0,
    "ordinary_retries": 3,
    "timeout_backoff": 3.0,
    "retry_delay": 2.0,
    "workers": 5,
    "extract_min_chars": 10,
    "save_min_chars": 50,
    "direct_settle": 2.0,
    "render_settle": 3.0,
    "selector_timeout": 8.0,
    "quality_mode": QualityMode.LENIENT,
    "strategy_order": StrategyOrder.PRIOR_FIRST,
}


@dataclass
class HarvestConfig:
    """Everything one run needs. Times are in seconds."""

    base_url: str
    start_url: str = ""
    prefix: str = ""
    dynamic_url: str | None = None
    out_dir: Path = Path("output")
    ledger_dir: Path = Path(".")
    timeout: float = FRESH_PRESET["timeout"]
    delay: float = FRESH_PRESET["delay"]
    ordinary_retries: int = FRESH_PRESET["ordinary_retries"]
    timeout_retries: int = FRESH_PRESET["timeout_retries"]
    timeout_backoff: float = FRESH_PRESET["timeout_backoff"]
    retry_delay: float = FRESH_PRESET["retry_delay"]
    workers: int = FRESH_PRESET["workers"]
    extract_min_chars: int = FRESH_PRESET["extract_min_chars"]
    save_min_chars: int = FRESH_PRESET["save_min_chars"]
    floor_chars: int = FRESH_PRESET["floor_chars"]
    direct_settle: float = FRESH_PRESET["direct_settle"]
    render_settle: float = FRESH_PRESET["render_settle"]
    selector_timeout: float = FRESH_PRESET["selector_timeout"]
    quality_mode: QualityMode = QualityMode.STRICT
    strategy_order: StrategyOrder = StrategyOrder.DIRECT_FIRST
    use_browser: bool = True
    headed: bool = False
    use_progress: bool = True
    extra_headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_preset(cls, preset: dict, **overrides) -> "HarvestConfig":
        """Build a config from a preset; overrides that are None keep the preset value."""
        names = {f.name for f in fields(cls)}
        values = {k: v for k, v in preset.items() if k in names}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            ordinary_retries=self.ordinary_retries,
            timeout_retries=self.timeout_retries,
            timeout_backoff=self.timeout_backoff,
            ordinary_delay=self.retry_delay,
        )

    @property
    def timeout_ms(self) -> int:
        return int(self.timeout * 1000)

    def direct_url(self, path: str) -> str:
        return self.base_url.rstrip("/") + path

    def rendered_url(self, path: str) -> str:
        """URL of the client-rendered view of path."""
        if not self.dynamic_url:
            return self.direct_url(path)
        encoded = quote(path, safe="")
        if "{path}" in self.dynamic_url:
            return self.dynamic_url.replace("{path}", encoded)
        return self.dynamic_url + encoded

    def validate(self) -> None:
        """Raise ValueError for settings no run can use."""
        if not self.base_url:
            raise ValueError("base URL is required")
        if self.workers < 1:
            raise ValueError("workers must be >= 1")
        if self.ordinary_retries < 0 or self.timeout_retries < 0:
            raise ValueError("retry budgets must be >= 0")
        if self.floor_chars > self.save_min_chars:
            raise ValueError("floor must not exceed the save threshold")
        if self.quality_mode is QualityMode.LENIENT and self.extract_min_chars > self.floor_chars:
            raise ValueError("extraction minimum must not exceed the floor in lenient mode")
