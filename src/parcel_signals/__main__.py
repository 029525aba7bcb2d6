from __future__ import annotations

import argparse
import json
import sys
from datetime import date

from parcel_signals.errors import ConfigurationError
from parcel_signals.fetcher import build_cursor_params, build_query_url
from parcel_signals.log import configure_logging
from parcel_signals.pipeline import (
    check_acceptance,
    ingest_jurisdiction,
    jurisdiction_status,
    parcel_detail,
    run_until_complete,
    score_jurisdiction,
    top_parcels,
)
from parcel_signals.settings import get_settings
from parcel_signals.sources import get_source, list_sources
from parcel_signals.storage import ParcelStore


def _print(payload) -> None:
    print(json.dumps(payload, default=str))


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="parcel_signals", description="Parcel ingestion and scoring")
    parser.add_argument("--db", default=None, help="SQLite path (default: PARCEL_SIGNALS_DB)")
    parser.add_argument("--log-level", default=None, help="Logging level (DEBUG, INFO, etc.)")
    parser.add_argument("--log-json", action="store_true", help="Emit one JSON object per log line")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_sources = sub.add_parser("sources", help="List configured jurisdictions")
    p_sources.add_argument("--verbose", action="store_true", help="Include the first query URL")

    p_ingest = sub.add_parser("ingest", help="Run one bounded ingestion invocation")
    p_ingest.add_argument("jurisdiction")
    p_ingest.add_argument("--max-pages", type=int, default=None)
    p_ingest.add_argument("--deadline", type=float, default=None, help="Seconds (default from settings)")
    p_ingest.add_argument("--as-of", default=None, help="Snapshot date (YYYY-MM-DD)")

    p_run = sub.add_parser("run", help="Ingest until complete, then check acceptance")
    p_run.add_argument("jurisdiction")
    p_run.add_argument("--max-invocations", type=int, default=100)
    p_run.add_argument("--as-of", default=None)

    p_score = sub.add_parser("score", help="Score every snapshotted parcel in a jurisdiction")
    p_score.add_argument("jurisdiction")
    p_score.add_argument("--as-of", default=None, help="Scoring date (YYYY-MM-DD)")

    p_top = sub.add_parser("top", help="Top parcels by investment score")
    p_top.add_argument("--jurisdiction", default=None)
    p_top.add_argument("--min-investment-score", type=float, default=None)
    p_top.add_argument("--min-rezoning-probability", type=float, default=None)
    p_top.add_argument("--min-acres", type=float, default=None)
    p_top.add_argument("--max-acres", type=float, default=None)
    p_top.add_argument("--owner-type", default=None)
    p_top.add_argument("--limit", type=int, default=20)

    p_detail = sub.add_parser("detail", help="Parcel detail with score, history and insights")
    p_detail.add_argument("parcel_id", type=int)

    p_status = sub.add_parser("status", help="Per-jurisdiction counts, jobs and acceptance")
    p_status.add_argument("--jurisdiction", default=None)
    p_status.add_argument("--acceptance", action="store_true")

    args = parser.parse_args(argv)
    configure_logging(args.log_level, json_lines=args.log_json)

    if args.cmd == "sources":
        out = []
        for name in list_sources():
            adapter = get_source(name)
            item = {
                "jurisdiction": name,
                "display_name": adapter.display_name,
                "layer_url": adapter.layer_url,
                "where": adapter.row_filter,
                "fields": adapter.fields.mapped(),
            }
            if args.verbose:
                item["first_query"] = build_query_url(adapter.layer_url, build_cursor_params(adapter, 0))
            out.append(item)
        _print({"sources": out})
        return 0

    if args.cmd in ("ingest", "run", "score"):
        try:
            get_source(args.jurisdiction)
        except ConfigurationError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 2

    store = ParcelStore(args.db or get_settings().db_path)
    try:
        if args.cmd == "ingest":
            res = ingest_jurisdiction(
                store,
                args.jurisdiction,
                deadline_seconds=args.deadline,
                max_pages=args.max_pages,
                as_of=args.as_of,
            )
            _print(res.to_dict())
            return 1 if res.status == "failed" else 0

        if args.cmd == "run":
            out = run_until_complete(
                store,
                args.jurisdiction,
                max_invocations=args.max_invocations,
                as_of=args.as_of,
            )
            _print(out)
            return 1 if out["status"] == "failed" else 0

        if args.cmd == "score":
            as_of = date.fromisoformat(args.as_of) if args.as_of else None
            _print(score_jurisdiction(store, args.jurisdiction, as_of=as_of))
            return 0

        if args.cmd == "top":
            rows = top_parcels(
                store,
                jurisdiction=args.jurisdiction,
                min_investment_score=args.min_investment_score,
                min_rezoning_probability=args.min_rezoning_probability,
                min_acres=args.min_acres,
                max_acres=args.max_acres,
                owner_type=args.owner_type,
                limit=args.limit,
            )
            _print({"parcels": rows})
            return 0

        if args.cmd == "detail":
            out = parcel_detail(store, args.parcel_id)
            if out is None:
                _print({"error": "parcel not found", "parcel_id": args.parcel_id})
                return 1
            _print(out)
            return 0

        if args.cmd == "status":
            out = {"jurisdictions": jurisdiction_status(store, args.jurisdiction)}
            if args.acceptance:
                out["acceptance"] = [check_acceptance(store, j["jurisdiction"]) for j in out["jurisdictions"]]
            _print(out)
            return 0
    except ConfigurationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    finally:
        store.close()

    parser.error("Unknown command")
    return 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
