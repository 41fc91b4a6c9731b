"""mdharvest CLI. Invoked as `mdharvest` when installed with pip install -e ."""

import argparse
import sys
from pathlib import Path

from mdharvest.config import FRESH_PRESET, RESUME_PRESET, HarvestConfig
from mdharvest.pipeline import DiscoverySeed, LedgerSeed, run_harvest


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mdharvest",
        description="Harvest a documentation site into local Markdown files.",
    )
    parser.add_argument("--start-url", default=None, metavar="URL", help="Page whose links seed a fresh run")
    parser.add_argument(
        "--prefix",
        default=None,
        metavar="PATH",
        help="Only harvest document paths starting with PATH (e.g. /guide/client)",
    )
    parser.add_argument(
        "--base-url",
        required=True,
        metavar="URL",
        help="Direct fetch base; a document path is appended to it",
    )
    parser.add_argument(
        "--dynamic-url",
        default=None,
        metavar="TEMPLATE",
        help="Rendered fetch URL; '{path}' is replaced by the URL-encoded path, else it is appended",
    )
    parser.add_argument(
        "--resume",
        type=Path,
        default=None,
        metavar="LEDGER",
        help="Re-attempt only the paths in a failed_links JSON ledger instead of discovering links",
    )
    parser.add_argument("--out-dir", type=Path, default=Path("output"), help="Markdown output directory (default: output)")
    parser.add_argument(
        "--ledger-dir",
        type=Path,
        default=Path("."),
        help="Where failed link ledgers and reports are written (default: current directory)",
    )
    parser.add_argument("--timeout", type=float, default=None, metavar="SECS", help="Per-navigation timeout (fresh 15, resume 20)")
    parser.add_argument("--delay", type=float, default=None, metavar="SECS", help="Pause per worker between pages (fresh 0.5, resume 1)")
    parser.add_argument("--retries", type=int, default=None, dest="ordinary_retries", metavar="N", help="Retries after ordinary errors (fresh 2, resume 3)")
    parser.add_argument("--timeout-retries", type=int, default=None, metavar="N", help="Retries once a page has timed out (default 6)")
    parser.add_argument("--timeout-backoff", type=float, default=None, metavar="SECS", help="Wait before timeout retry n is SECS*n (fresh 2, resume 3)")
    parser.add_argument("--retry-delay", type=float, default=None, metavar="SECS", help="Wait before an ordinary retry (fresh 1, resume 2)")
    parser.add_argument("--workers", type=int, default=None, metavar="N", help="Concurrent browser pages (fresh 20, resume 5)")
    parser.add_argument("--extract-min-chars", type=int, default=None, metavar="N", help="Minimum article text for extraction to count (fresh 20, resume 10)")
    parser.add_argument("--min-chars", type=int, default=None, dest="save_min_chars", metavar="N", help="Minimum Markdown length to save (fresh 100, resume 50)")
    parser.add_argument("--floor-chars", type=int, default=None, metavar="N", help="Resume only: save shorter content down to N chars, flagged (default 10)")
    parser.add_argument("--header", action="append", default=[], metavar="NAME:VALUE", help="Extra request header (repeatable)")
    parser.add_argument("--no-js", action="store_true", help="Fetch with plain HTTP (httpx) instead of a browser")
    parser.add_argument("--headed", action="store_true", help="Run the browser visibly (not headless)")
    parser.add_argument("--no-progress", action="store_true", help="Disable progress bar (e.g. for scripting)")
    return parser


def _parse_headers(parser: argparse.ArgumentParser, raw: list[str]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for h in raw:
        name, sep, value = h.partition(":")
        if not sep or not name.strip():
            parser.error(f"--header: expected NAME:VALUE, got {h!r}")
        headers[name.strip()] = value.strip()
    return headers


def config_from_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> HarvestConfig:
    """Merge flags over the fresh or resume preset; unset flags take the preset value."""
    preset = RESUME_PRESET if args.resume else FRESH_PRESET
    if not args.resume and (not args.start_url or args.prefix is None):
        parser.error("--start-url and --prefix are required unless --resume is given.")
    config = HarvestConfig.from_preset(
        preset,
        base_url=args.base_url,
        start_url=args.start_url,
        prefix=args.prefix,
        dynamic_url=args.dynamic_url,
        out_dir=args.out_dir,
        ledger_dir=args.ledger_dir,
        timeout=args.timeout,
        delay=args.delay,
        ordinary_retries=args.ordinary_retries,
        timeout_retries=args.timeout_retries,
        timeout_backoff=args.timeout_backoff,
        retry_delay=args.retry_delay,
        workers=args.workers,
        extract_min_chars=args.extract_min_chars,
        save_min_chars=args.save_min_chars,
        floor_chars=args.floor_chars,
        use_browser=not args.no_js,
        headed=args.headed,
        use_progress=not args.no_progress,
        extra_headers=_parse_headers(parser, args.header),
    )
    try:
        config.validate()
    except ValueError as e:
        parser.error(str(e))
    return config


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = config_from_args(parser, args)

    if args.resume:
        if not args.resume.is_file():
            print(f"Error: ledger not found: {args.resume}", file=sys.stderr)
            sys.exit(1)
        seed = LedgerSeed(args.resume)
        print("Re-processing failed links...\n", file=sys.stderr)
    else:
        seed = DiscoverySeed()
        print("Starting documentation harvest...\n", file=sys.stderr)

    try:
        result = run_harvest(config, seed)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if result.interrupted:
        sys.exit(130)
    if result.error is not None:
        print(f"Error: {result.error}", file=sys.stderr)
        sys.exit(1)
    print("\nDone.", file=sys.stderr)


if __name__ == "__main__":
    main()
