"""Drive one path through strategy fallback, quality gate and retries to a terminal outcome."""

import sys
from enum import Enum

from mdharvest.config import QualityMode
from mdharvest.context import FailureRecord, RunContext, WorkItem
from mdharvest.errors import EmptyContent, NotFound, ShortContent
from mdharvest.extractors import FetchResult
from mdharvest.fetcher import Session
from mdharvest.retry import FailureKind, classify
from mdharvest.storage import write_document
from mdharvest.strategies import DirectStrategy, RenderedStrategy, Strategy, strategy_order

RESUME_STATUS = "recovered on resume pass"


class Outcome(str, Enum):
    SAVED = "saved"
    FAILED = "failed"
    ABANDONED = "abandoned"  # run cancelled mid-item; not recorded anywhere


class Verdict(str, Enum):
    SAVE = "save"
    SAVE_SUSPICIOUS = "save_suspicious"
    REJECT = "reject"


def quality_verdict(length: int, mode: QualityMode, save_min_chars: int, floor_chars: int) -> Verdict:
    """
    Strict saves iff length >= save_min_chars. Lenient also saves content in
    [floor_chars, save_min_chars) but marks it suspicious.
    """
    if length >= save_min_chars:
        return Verdict.SAVE
    if mode is QualityMode.LENIENT and length >= floor_chars:
        return Verdict.SAVE_SUSPICIOUS
    return Verdict.REJECT


def _fetch_once(
    session: Session,
    item: WorkItem,
    ctx: RunContext,
    tried_urls: list[str],
    log_prefix: str,
) -> FetchResult:
    """
    One attempt: try strategies in order, falling through on None. A raise from
    any strategy ends the attempt immediately. Each URL is appended to
    tried_urls before it is fetched.
    Raises NotFound / EmptyContent when every strategy came back empty.
    """
    cfg = ctx.config
    direct = DirectStrategy(cfg)
    rendered = RenderedStrategy(cfg)
    prior_url = item.prior_attempt.last_used_url if item.prior_attempt else None
    for strategy in strategy_order(cfg, direct, rendered, item.path, prior_url):
        url = strategy.url_for(item.path)
        tried_urls.append(url)
        print(f"{log_prefix}  {strategy.name.value}: {url}", file=sys.stderr)
        result = strategy.fetch(session, item.path, log_prefix=log_prefix)
        if result is not None:
            return result
    if direct.not_found:
        raise NotFound("Page not found")
    raise EmptyContent("No usable content from any strategy")


def process_item(session: Session, item: WorkItem, ctx: RunContext, *, log_prefix: str = "") -> Outcome:
    """
    Process one work item to SAVED or FAILED (or ABANDONED if the run is cancelled
    while waiting to retry). Never raises: every error is classified, retried
    within budget, and finally turned into a FailureRecord.
    """
    cfg = ctx.config
    stats = ctx.stats
    budget = cfg.retry_policy.new_budget()
    lenient = cfg.quality_mode is QualityMode.LENIENT
    print(f"{log_prefix} {item.path}", file=sys.stderr)
    if item.prior_attempt is not None:
        print(f"{log_prefix}  Previous error: {item.prior_attempt.error_message}", file=sys.stderr)

    while True:
        stats.incr("attempts")
        tried_urls: list[str] = []
        try:
            result = _fetch_once(session, item, ctx, tried_urls, log_prefix)
            length = len(result.markdown.strip())
            verdict = quality_verdict(length, cfg.quality_mode, cfg.save_min_chars, cfg.floor_chars)
            if verdict is Verdict.REJECT:
                raise ShortContent(length, cfg.floor_chars if lenient else cfg.save_min_chars)
            suspicious = verdict is Verdict.SAVE_SUSPICIOUS
            dest = write_document(
                cfg.out_dir,
                result,
                status=RESUME_STATUS if lenient else None,
                suspicious=suspicious,
            )
        except Exception as e:
            kind = classify(e)
            last_url = tried_urls[-1] if tried_urls else cfg.direct_url(item.path)
            budget.escalate(kind)
            if not budget.consume():
                record = FailureRecord(
                    path=item.path,
                    last_used_url=last_url,
                    error_message=str(e) or type(e).__name__,
                    error_kind=kind,
                    retry_count=budget.used,
                    prior_error=item.prior_attempt.error_message if item.prior_attempt else None,
                )
                # Failures after cancel are left out; the ledger may already be written
                if ctx.cancelled or not ctx.ledger.append(record):
                    return Outcome.ABANDONED
                stats.incr("failed")
                print(
                    f"{log_prefix}  Failed ({kind.value}) after {budget.used} retries: {e}",
                    file=sys.stderr,
                )
                print(f"{log_prefix}  Last URL: {last_url}", file=sys.stderr)
                return Outcome.FAILED
            stats.incr("timeout_retries" if kind is FailureKind.TIMEOUT else "ordinary_retries")
            wait = cfg.retry_policy.delay_for(kind, budget.used)
            print(
                f"{log_prefix}  Retry {budget.used}/{budget.limit} ({kind.value}) in {wait:.1f}s: {e}",
                file=sys.stderr,
            )
            if ctx.sleep(wait):
                return Outcome.ABANDONED
            continue

        stats.incr("success")
        stats.incr("direct_success" if result.strategy == Strategy.DIRECT.value else "rendered_success")
        if suspicious:
            stats.incr("suspicious_saves")
        retry_info = f" after {budget.used} retries" if budget.used else ""
        note = " [short, flagged]" if suspicious else ""
        print(f"{log_prefix}  Saved {dest} ({length} chars, {result.strategy}){retry_info}{note}", file=sys.stderr)
        return Outcome.SAVED
