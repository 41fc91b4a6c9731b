"""Failure classification and retry budgets (timeout vs ordinary)."""

from dataclasses import dataclass
from enum import Enum

import httpx
from playwright.sync_api import TimeoutError as PlaywrightTimeout

from mdharvest.errors import FetchTimeout, HarvestError

_TIMEOUT_TYPES = (FetchTimeout, PlaywrightTimeout, httpx.TimeoutException, TimeoutError)


class FailureKind(str, Enum):
    """Backoff class of a failed attempt."""

    TIMEOUT = "timeout"
    ORDINARY = "ordinary"


def is_timeout(exc: BaseException) -> bool:
    """
    True if the exception represents a timeout. HarvestErrors are judged by
    type only (their messages may contain URLs); other errors also match on
    "timeout" in the message.
    """
    if isinstance(exc, HarvestError):
        return isinstance(exc, FetchTimeout)
    if isinstance(exc, _TIMEOUT_TYPES):
        return True
    return "timeout" in str(exc).lower()


def classify(exc: BaseException) -> FailureKind:
    """Map a raised error to its failure kind."""
    return FailureKind.TIMEOUT if is_timeout(exc) else FailureKind.ORDINARY


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budgets and wait schedule per failure kind."""

    ordinary_retries: int = 2
    timeout_retries: int = 6
    timeout_backoff: float = 2.0
    ordinary_delay: float = 1.0

    def budget_for(self, kind: FailureKind) -> int:
        return self.timeout_retries if kind is FailureKind.TIMEOUT else self.ordinary_retries

    def delay_for(self, kind: FailureKind, retry_number: int) -> float:
        """Seconds to wait before retry number retry_number (1-indexed)."""
        if kind is FailureKind.TIMEOUT:
            return self.timeout_backoff * retry_number
        return self.ordinary_delay

    def new_budget(self) -> "RetryBudget":
        return RetryBudget(self)


class RetryBudget:
    """
    Per-item retry counter. Starts at the ordinary budget; a timeout raises the
    limit to the timeout budget. The limit never goes down.
    """

    def __init__(self, policy: RetryPolicy) -> None:
        self.policy = policy
        self.limit = policy.ordinary_retries
        self.used = 0

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    def escalate(self, kind: FailureKind) -> None:
        self.limit = max(self.limit, self.policy.budget_for(kind))

    def consume(self) -> bool:
        """Claim one retry. Returns False when the budget is exhausted."""
        if self.used >= self.limit:
            return False
        self.used += 1
        return True
