"""Markdown output paths and writing, plus the failure ledger files."""

import json
import re
from datetime import datetime
from pathlib import Path

from mdharvest.context import FailureRecord
from mdharvest.extractors import FetchResult

LEDGER_NAME = "failed_links.json"
REPORT_NAME = "failed_links_report.txt"
RESUME_LEDGER_TEMPLATE = "failed_links_retry_{stamp}.json"
RESUME_REPORT_TEMPLATE = "failed_links_retry_report_{stamp}.txt"

SHORT_CONTENT_NOTE = "**Note**: this document is short; check that its content is complete."

_EXTENSION_RE = re.compile(r"\.html?$", re.IGNORECASE)


def _sanitize_segment(segment: str) -> str:
    """Make one path segment safe as a file or directory name."""
    name = re.sub(r"[^\w.-]", "_", segment)
    name = name.strip("_") or "_"
    if name in (".", ".."):
        name = "_"
    return name[:200]


def path_for_doc(out_dir: Path, doc_path: str) -> Path:
    """
    Output file for a document path: the trailing segment (minus .html/.htm)
    becomes <name>.md, earlier segments become directories, and a trailing
    slash maps to index.md.
    """
    segments = doc_path.lstrip("/").split("/")
    dirs = [_sanitize_segment(s) for s in segments[:-1] if s]
    name = _EXTENSION_RE.sub("", segments[-1]) if segments[-1] else "index"
    return out_dir.joinpath(*dirs, f"{_sanitize_segment(name or 'index')}.md")


def _ensure_unique(path: Path) -> Path:
    """If path exists, add numeric suffix to avoid overwrite."""
    if not path.exists():
        return path
    stem = path.stem
    ext = path.suffix
    parent = path.parent
    n = 1
    while True:
        candidate = parent / f"{stem}_{n}{ext}"
        if not candidate.exists():
            return candidate
        n += 1


def render_document(
    result: FetchResult,
    *,
    generated_at: datetime | None = None,
    status: str | None = None,
    suspicious: bool = False,
) -> str:
    """Fixed template: title heading, metadata quote block, converted body."""
    generated = (generated_at or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
    meta = [
        f"> Source URL: {result.source_url}",
        f"> Document path: {result.path}",
        f"> Generated: {generated}",
    ]
    if status:
        meta.append(f"> Status: {status}")
    if suspicious:
        meta.append(">")
        meta.append(f"> {SHORT_CONTENT_NOTE}")
    return f"# {result.title}\n\n" + "\n".join(meta) + f"\n\n{result.markdown}\n"


def write_text(path: Path, text: str) -> None:
    """Write text as UTF-8."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def write_document(
    out_dir: Path,
    result: FetchResult,
    *,
    status: str | None = None,
    suspicious: bool = False,
) -> Path:
    """Render result and write it to its derived path. Returns the file written."""
    dest = path_for_doc(out_dir, result.path)
    write_text(dest, render_document(result, status=status, suspicious=suspicious))
    return dest


def ledger_paths(ledger_dir: Path, *, resume: bool, now: datetime | None = None) -> tuple[Path, Path]:
    """(json_path, report_path) for a run's ledger. Resume ledgers are timestamped and never reuse a name."""
    if not resume:
        return ledger_dir / LEDGER_NAME, ledger_dir / REPORT_NAME
    stamp = (now or datetime.now()).strftime("%Y-%m-%dT%H-%M-%S")
    json_path = _ensure_unique(ledger_dir / RESUME_LEDGER_TEMPLATE.format(stamp=stamp))
    report_path = _ensure_unique(ledger_dir / RESUME_REPORT_TEMPLATE.format(stamp=stamp))
    return json_path, report_path


def format_report(records: list[FailureRecord], *, title: str, extra: list[str] | None = None) -> str:
    """Human-readable ledger: header, totals, one numbered block per record."""
    lines = [
        title,
        "=" * 60,
        f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"Total failed: {len(records)}",
        *(extra or []),
        "",
        "Failures:",
        "-" * 40,
    ]
    for i, rec in enumerate(records, 1):
        lines.append(f"{i}. {rec.path}")
        lines.append(f"   URL: {rec.last_used_url}")
        lines.append(f"   Kind: {rec.error_kind.value}")
        lines.append(f"   Retries: {rec.retry_count}")
        lines.append(f"   Message: {rec.error_message}")
        if rec.prior_error:
            lines.append(f"   Previous error: {rec.prior_error}")
        lines.append(f"   Time: {rec.timestamp}")
        lines.append("")
    return "\n".join(lines)


def save_ledger(
    json_path: Path,
    report_path: Path,
    records: list[FailureRecord],
    *,
    title: str = "Failed links report",
    extra_fields: dict | None = None,
) -> None:
    """Write the structured ledger and its readable report. OSError propagates."""
    data = {
        "timestamp": datetime.now().astimezone().isoformat(timespec="seconds"),
        "totalFailed": len(records),
        **(extra_fields or {}),
        "failedLinks": [r.to_dict() for r in records],
    }
    extra_lines = [f"{k}: {v}" for k, v in (extra_fields or {}).items()]
    write_text(json_path, json.dumps(data, indent=2, ensure_ascii=False))
    write_text(report_path, format_report(records, title=title, extra=extra_lines))


def load_ledger(path: Path) -> list[FailureRecord]:
    """
    Read a ledger written by save_ledger (or the older newFailedLinks layout).
    Raises FileNotFoundError, json.JSONDecodeError or ValueError on bad input.
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, list):
        entries = data
    else:
        entries = data.get("failedLinks") or data.get("newFailedLinks") or []
    return [FailureRecord.from_dict(e) for e in entries]
