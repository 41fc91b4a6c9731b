"""Harvest pipeline: seed a queue, drain it with a worker pool, persist failures. Used by CLI and programmatic callers."""

import sys
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from queue import Empty, Queue

from tqdm import tqdm

from mdharvest.config import HarvestConfig
from mdharvest.context import RunContext, WorkItem
from mdharvest.discovery import discover_links
from mdharvest.errors import WorkerPoolError
from mdharvest.fetcher import Session
from mdharvest.processor import Outcome, process_item
from mdharvest.retry import FailureKind
from mdharvest.storage import ledger_paths, load_ledger, save_ledger


class DiscoverySeed:
    """Fresh run: the document paths linked from the start page."""

    resume = False

    def load(self, prototype: Session, config: HarvestConfig) -> list[WorkItem]:
        session = prototype.spawn()
        try:
            session.start()
            paths = discover_links(session, config)
        finally:
            session.close()
        return [WorkItem(path=p, index=i) for i, p in enumerate(paths, 1)]


class LedgerSeed:
    """Resume run: the entries of a previous run's ledger, each with its prior failure."""

    resume = True

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self, prototype: Session, config: HarvestConfig) -> list[WorkItem]:
        print(f"Loading failed links from {self.path}", file=sys.stderr)
        items: list[WorkItem] = []
        seen: set[str] = set()
        for record in load_ledger(self.path):
            if record.path in seen:
                continue
            seen.add(record.path)
            items.append(WorkItem(path=record.path, index=len(items) + 1, prior_attempt=record))
        return items


@dataclass
class RunResult:
    """What a run leaves behind for the caller."""

    ctx: RunContext
    ledger_files: tuple[Path, Path] | None = None
    interrupted: bool = False
    error: BaseException | None = None


def _worker(
    worker_id: int,
    work_queue: "Queue[WorkItem]",
    prototype: Session,
    ctx: RunContext,
    pbar: tqdm | None,
    progress_lock: threading.Lock,
) -> None:
    """Own one session; pop and process items until the queue is empty or the run is cancelled."""
    cfg = ctx.config
    session = prototype.spawn()
    try:
        session.start()
        while not ctx.cancelled:
            try:
                item = work_queue.get_nowait()
            except Empty:
                break
            total = ctx.stats["total"]
            outcome = process_item(session, item, ctx, log_prefix=f"[{item.index}/{total}][worker {worker_id}]")
            if outcome is Outcome.ABANDONED:
                break
            done = ctx.stats.incr("completed")
            pct = (done / total * 100) if total else 100.0
            print(f"Progress: {done}/{total} ({pct:.1f}%) - worker {worker_id}", file=sys.stderr)
            if pbar is not None:
                with progress_lock:
                    pbar.update(1)
            if ctx.sleep(cfg.delay):
                break
    finally:
        session.close()
        print(f"  Worker {worker_id} finished", file=sys.stderr)


def run_pool(items: list[WorkItem], prototype: Session, ctx: RunContext, pbar: tqdm | None = None) -> None:
    """
    Drain items with up to config.workers threads. The queue is filled once
    before any worker starts. A worker that dies outside item processing is
    reported as WorkerPoolError after the other workers finish. On
    KeyboardInterrupt the cancel event is set and workers are not waited for.
    """
    work_queue: Queue[WorkItem] = Queue()
    for item in items:
        work_queue.put(item)
    workers = max(1, min(ctx.config.workers, len(items)))
    print(f"Starting {workers} workers...", file=sys.stderr)
    progress_lock = threading.Lock()
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="harvest")
    first_error: WorkerPoolError | None = None
    try:
        futs = {
            executor.submit(_worker, i, work_queue, prototype, ctx, pbar, progress_lock): i
            for i in range(1, workers + 1)
        }
        for fut in as_completed(futs):
            try:
                fut.result()
            except Exception as e:
                print(f"Worker {futs[fut]} error: {e}", file=sys.stderr)
                if first_error is None:
                    first_error = WorkerPoolError(futs[fut], e)
    except KeyboardInterrupt:
        ctx.cancel.set()
        executor.shutdown(wait=False, cancel_futures=True)
        raise
    executor.shutdown(wait=True)
    if first_error is not None:
        raise first_error


def _flush_ledger(ctx: RunContext, seed, original_count: int) -> tuple[Path, Path] | None:
    """Write the run's failures, if any. Errors are reported, not raised."""
    records = ctx.ledger.seal()
    if not records:
        return None
    json_path, report_path = ledger_paths(ctx.config.ledger_dir, resume=seed.resume)
    if seed.resume:
        title = "Links still failing after resume"
        extra = {
            "sourceLedger": str(seed.path),
            "originalFailureCount": original_count,
            "rescuedCount": ctx.stats["success"],
        }
    else:
        title = "Failed links report"
        extra = None
    try:
        save_ledger(json_path, report_path, records, title=title, extra_fields=extra)
    except OSError as e:
        print(f"Could not save failed links: {e}", file=sys.stderr)
        return None
    print("\nFailed links saved to:", file=sys.stderr)
    print(f"   - {json_path} (JSON)", file=sys.stderr)
    print(f"   - {report_path} (report)", file=sys.stderr)
    return json_path, report_path


def _pct(n: int, total: int) -> str:
    return f"{(n / total * 100):.1f}%" if total else "0.0%"


def _duration_str(seconds: float) -> str:
    secs = int(round(seconds))
    return f"{secs // 60}m{secs % 60}s"


def print_summary(ctx: RunContext, ledger_files: tuple[Path, Path] | None, *, interrupted: bool = False) -> None:
    """Aggregate statistics for a fresh run."""
    s = ctx.stats.snapshot()
    total = s["total"]
    duration = ctx.stats.duration
    print("\n" + "=" * 60, file=sys.stderr)
    print("Harvest summary" + (" (interrupted)" if interrupted else ""), file=sys.stderr)
    print("=" * 60, file=sys.stderr)
    print(f"Duration: {_duration_str(duration)}", file=sys.stderr)
    print(f"Total links: {total}", file=sys.stderr)
    print(f"Saved: {s['success']} ({_pct(s['success'], total)})", file=sys.stderr)
    print(f"Failed: {s['failed']} ({_pct(s['failed'], total)})", file=sys.stderr)
    print(f"Direct fetch saves: {s['direct_success']}", file=sys.stderr)
    print(f"Rendered fetch saves: {s['rendered_success']}", file=sys.stderr)
    print(f"Timeout retries: {s['timeout_retries']}", file=sys.stderr)
    print(f"Ordinary retries: {s['ordinary_retries']}", file=sys.stderr)
    if duration > 0:
        print(f"Throughput: {s['completed'] / duration:.2f} links/s", file=sys.stderr)
    if s["failed"]:
        print("\nFailures:", file=sys.stderr)
        print(f"   - timeout: {ctx.ledger.count(FailureKind.TIMEOUT)}", file=sys.stderr)
        print(f"   - ordinary: {ctx.ledger.count(FailureKind.ORDINARY)}", file=sys.stderr)
        if ledger_files:
            print(f"   - details in {ledger_files[1]}", file=sys.stderr)
            print(f"   - re-run only these with: mdharvest --resume {ledger_files[0]}", file=sys.stderr)
    print("=" * 60, file=sys.stderr)


def print_resume_summary(ctx: RunContext, ledger_files: tuple[Path, Path] | None, *, interrupted: bool = False) -> None:
    """Rescued vs still failing for a resume run."""
    s = ctx.stats.snapshot()
    total = s["total"]
    duration = ctx.stats.duration
    print("\n" + "=" * 70, file=sys.stderr)
    print("Resume summary" + (" (interrupted)" if interrupted else ""), file=sys.stderr)
    print("=" * 70, file=sys.stderr)
    print(f"Duration: {_duration_str(duration)}", file=sys.stderr)
    print(f"Links from ledger: {total}", file=sys.stderr)
    print(f"Rescued: {s['success']} ({_pct(s['success'], total)})", file=sys.stderr)
    print(f"  of which flagged short: {s['suspicious_saves']}", file=sys.stderr)
    print(f"Still failing: {s['failed']} ({_pct(s['failed'], total)})", file=sys.stderr)
    print(f"Attempts: {s['attempts']}", file=sys.stderr)
    if duration > 0:
        print(f"Throughput: {s['completed'] / duration:.2f} links/s", file=sys.stderr)
    if s["success"]:
        print(f"\nRescued {s['success']} links.", file=sys.stderr)
    if s["failed"]:
        where = f" (see {ledger_files[1]})" if ledger_files else ""
        print(f"\n{s['failed']} links still need attention{where}.", file=sys.stderr)
    elif not interrupted:
        print("\nAll previously failed links were recovered.", file=sys.stderr)
    print("=" * 70, file=sys.stderr)


def run_harvest(
    config: HarvestConfig,
    seed: DiscoverySeed | LedgerSeed,
    prototype: Session | None = None,
) -> RunResult:
    """
    Seed the queue, run the pool, write the ledger and print the summary. The
    seed decides fresh vs resume naming; config decides quality mode, strategy
    order and tuning. Statistics and ledger live for this call only.
    """
    config.validate()
    ctx = RunContext(config)
    if prototype is None:
        prototype = Session(
            timeout=config.timeout,
            headers=config.extra_headers,
            use_browser=config.use_browser,
            headed=config.headed,
        )
    items = seed.load(prototype, config)
    if not items:
        print("No links to process.", file=sys.stderr)
        ctx.stats.finish()
        return RunResult(ctx)
    ctx.stats.incr("total", len(items))
    print(f"Found {len(items)} links\n", file=sys.stderr)

    pbar = tqdm(total=len(items), desc="Harvest", unit=" page", file=sys.stderr) if config.use_progress else None
    result = RunResult(ctx)
    try:
        run_pool(items, prototype, ctx, pbar)
    except KeyboardInterrupt:
        result.interrupted = True
        print("\nInterrupted; abandoning in-flight pages...", file=sys.stderr)
    except WorkerPoolError as e:
        result.error = e
    finally:
        if pbar is not None:
            pbar.close()
        ctx.stats.finish()

    result.ledger_files = _flush_ledger(ctx, seed, len(items))
    if seed.resume:
        print_resume_summary(ctx, result.ledger_files, interrupted=result.interrupted)
    else:
        print_summary(ctx, result.ledger_files, interrupted=result.interrupted)
    return result
