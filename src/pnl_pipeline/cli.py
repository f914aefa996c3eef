"""Command-line interface for the P&L pipeline.

Provides subcommands: `aggregate`, `reconcile`, `duplicates` and `serve`.
Each command is implemented as a `cmd_*` function that accepts an argparse
namespace and returns a process exit code.
"""
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Sequence

from pnl_pipeline.aggregate.rollup import resolve_keys, run_aggregation
from pnl_pipeline.api import summary_payload
from pnl_pipeline.backends import open_store
from pnl_pipeline.client import aggregate_via_api
from pnl_pipeline.config import get_settings
from pnl_pipeline.errors import ConfigurationError, PnlPipelineError
from pnl_pipeline.logging_config import configure_logging
from pnl_pipeline.models import BatchSummary

# RECONCILE
from pnl_pipeline.reconcile.compare import (
    DEFAULT_TOLERANCE,
    compare_periods,
    load_expected,
    render_report,
    summarize_comparison,
)
from pnl_pipeline.reconcile.duplicates import (
    extra_records,
    find_amount_conflicts,
    find_duplicate_lines,
    lines_per_month,
)
from pnl_pipeline.reconcile.recompute import load_raw_ddf, period_frame, recompute_from_raw
from pnl_pipeline.stores import line_from_document

log = logging.getLogger(__name__)


# --------------------------------------------------
# Helpers
# --------------------------------------------------
def _print_summary(summary: BatchSummary) -> None:
    payload = summary_payload(summary)
    payload["failed_keys"] = summary.failed_keys
    print(json.dumps(payload, indent=2))


# --------------------------------------------------
# AGGREGATE
# --------------------------------------------------
def cmd_aggregate(args: argparse.Namespace) -> int:
    """Aggregate raw ledger lines into the aggregated store.

    Omitting both `--location-id` and `--year` processes every period found
    in the raw store. With `--api-url` each period is posted to a running API
    instead of being aggregated in-process.

    Args:
        args: argparse namespace with `location_id`, `year`, `month`, `all`
            and `api_url`.
    """
    s = get_settings()
    aggregate_all = args.all or not (args.location_id or args.year or args.month)

    forward = args.api_url is not None
    with open_store(s, writable=not forward) as store:
        if forward:
            api_url = (args.api_url or s.api_url).rstrip("/")
            keys = resolve_keys(store, args.location_id, args.year, args.month, aggregate_all)
            summary = aggregate_via_api(api_url, keys, s.aggregator)
        else:
            summary = run_aggregation(
                store,
                store,
                s.aggregator,
                location_id=args.location_id,
                year=args.year,
                month=args.month,
                aggregate_all=aggregate_all,
            )

    _print_summary(summary)
    return 0 if summary.success else 1


# --------------------------------------------------
# RECONCILE
# --------------------------------------------------
def cmd_reconcile(args: argparse.Namespace) -> int:
    """Compare aggregated (or freshly recomputed) figures with expected ones.

    Args:
        args: argparse namespace with `location_id`, `year`, `expected`,
            `source` and `tolerance`.
    """
    s = get_settings()
    expected = load_expected(args.expected)

    with open_store(s) as store:
        if args.source == "raw":
            ddf = load_raw_ddf(store.raw_documents(args.location_id, args.year))
            actual = period_frame(recompute_from_raw(ddf), args.location_id, args.year)
        else:
            actual = store.find_periods(args.location_id, args.year)

    df = compare_periods(actual, expected, tolerance=args.tolerance)
    summary = summarize_comparison(df, tolerance=args.tolerance)
    title = f"{args.location_id} {args.year} ({args.source})"
    print(render_report(df, summary, title=title))

    if summary.major or summary.missing:
        log.warning(
            "%d month(s) outside tolerance, %d month(s) missing",
            summary.major,
            summary.missing,
        )
    return 0


# --------------------------------------------------
# DUPLICATES
# --------------------------------------------------
def cmd_duplicates(args: argparse.Namespace) -> int:
    """Report repeated raw lines for a location and year (optionally a month).

    Args:
        args: argparse namespace with `location_id`, `year` and `month`.
    """
    s = get_settings()
    with open_store(s) as store:
        docs = store.raw_documents(args.location_id, args.year)

    lines = [line_from_document(d) for d in docs]
    if args.month is not None:
        lines = [l for l in lines if l.month == args.month]

    if not lines:
        log.warning("No raw lines found for %s %s", args.location_id, args.year)
        return 0

    dupes = find_duplicate_lines(lines)
    conflicts = find_amount_conflicts(lines)

    print(f"Total lines: {len(lines)}")
    if dupes.empty:
        print("No exact duplicates found")
    else:
        print(f"{len(dupes)} duplicate group(s), {extra_records(dupes)} extra line(s)")
        print(dupes.to_string(index=False))

    if not conflicts.empty:
        print(f"\n{len(conflicts)} account(s) booked more than once with different amounts")
        print(conflicts.to_string(index=False))

    if args.month is None:
        print("\nLines per month:")
        for month, count in lines_per_month(lines).items():
            print(f"  {month:2d}: {count}")
    return 0


# --------------------------------------------------
# SERVE
# --------------------------------------------------
def cmd_serve(args: argparse.Namespace) -> int:
    """Run the aggregation API with uvicorn."""
    import uvicorn

    from pnl_pipeline.api import create_app

    uvicorn.run(create_app(), host=args.host, port=args.port, log_config=None)
    return 0


# --------------------------------------------------
# CLI
# --------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    """Build and return the top-level argument parser for the CLI.

    Returns:
        Configured argparse.ArgumentParser instance.
    """
    p = argparse.ArgumentParser(prog="pnl_pipeline")
    p.add_argument("--log-file", type=Path, default=Path("logs/pipeline.log"))
    p.add_argument("--verbose", "-v", action="store_true")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_agg = sub.add_parser("aggregate")
    p_agg.add_argument("--location-id", default=None)
    p_agg.add_argument("--year", type=int, default=None)
    p_agg.add_argument("--month", type=int, choices=range(1, 13), default=None)
    p_agg.add_argument("--all", action="store_true")
    p_agg.add_argument("--api-url", nargs="?", const="", default=None)

    p_rec = sub.add_parser("reconcile")
    p_rec.add_argument("--location-id", required=True)
    p_rec.add_argument("--year", type=int, required=True)
    p_rec.add_argument("--expected", type=Path, required=True)
    p_rec.add_argument("--source", choices=["aggregated", "raw"], default="aggregated")
    p_rec.add_argument("--tolerance", type=float, default=DEFAULT_TOLERANCE)

    p_dup = sub.add_parser("duplicates")
    p_dup.add_argument("--location-id", required=True)
    p_dup.add_argument("--year", type=int, required=True)
    p_dup.add_argument("--month", type=int, choices=range(1, 13), default=None)

    p_serve = sub.add_parser("serve")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)

    return p


COMMANDS = {
    "aggregate": cmd_aggregate,
    "reconcile": cmd_reconcile,
    "duplicates": cmd_duplicates,
    "serve": cmd_serve,
}


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point: parse args, configure logging and dispatch commands."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_file, logging.DEBUG if args.verbose else logging.INFO)

    try:
        code = COMMANDS[args.cmd](args)
    except ConfigurationError as e:
        log.error("Configuration error: %s", e)
        raise SystemExit(2) from e
    except PnlPipelineError as e:
        log.error("%s failed: %s", args.cmd, e)
        raise SystemExit(1) from e

    raise SystemExit(code)


if __name__ == "__main__":
    main()
