"""Ingestion and scoring entry points.

``ingest_jurisdiction`` is the trigger called by the CLI, the API and any
scheduler. One call is one bounded invocation: it resumes the open job for
the jurisdiction, pages through the source until the deadline, the end of the
data or a source failure, and leaves the job either completed or resumable.
"""

from __future__ import annotations

import logging
import time
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import requests

from parcel_signals.errors import LeaseLost, RecordError, SourceError
from parcel_signals.fetcher import STOP_COMPLETE, CursorFetcher, Deadline, Page
from parcel_signals.ledger import JobLedger
from parcel_signals.models import (
    RESULT_COMPLETED,
    RESULT_FAILED,
    RESULT_IN_PROGRESS,
    IngestionJob,
    IngestResult,
    PageOutcome,
    Parcel,
)
from parcel_signals.normalize import normalize_feature, null_fields, source_sequence
from parcel_signals.retry import RetryPolicy
from parcel_signals.scoring import describe_score, score_parcels
from parcel_signals.settings import Settings, get_settings
from parcel_signals.snapshots import HistorySnapshotter
from parcel_signals.sources import SourceAdapter, get_source, list_sources
from parcel_signals.storage import ParcelStore, utc_now_iso
from parcel_signals.writer import BatchWriter


logger = logging.getLogger("parcel_signals.ingest")
score_logger = logging.getLogger("parcel_signals.score")


def _today(wall_clock: Callable[[], float]) -> str:
    return datetime.fromtimestamp(wall_clock(), timezone.utc).date().isoformat()


def process_page(
    page: Page,
    adapter: SourceAdapter,
    writer: BatchWriter,
    snapshotter: HistorySnapshotter,
) -> PageOutcome:
    """Normalize, upsert and snapshot one fetched page."""

    outcome = PageOutcome(fetched=len(page.features), max_sequence=page.max_sequence)
    parcels: List[Parcel] = []
    for feat in page.features:
        try:
            source_sequence(feat, adapter)
            parcel = normalize_feature(feat, adapter)
        except RecordError as exc:
            outcome.failed += 1
            logger.debug("record skipped jurisdiction=%s reason=%s detail=%s", adapter.jurisdiction, exc.reason, exc)
            continue
        parcels.append(parcel)

    written = writer.write(parcels, adapter.jurisdiction)
    outcome.failed += written.invalid + written.failed
    outcome.written = written.written
    latest = {p.pin: p for p in parcels}
    for pin in written.ids:
        parcel = latest[pin]
        if parcel.has_geometry:
            outcome.with_geometry += 1
        for name in null_fields(parcel):
            outcome.null_audit[name] = outcome.null_audit.get(name, 0) + 1
    outcome.history_written = snapshotter.record(parcels, written.ids)
    return outcome


def _result(job: IngestionJob, status: str, *, pages: int, as_of: Optional[str]) -> IngestResult:
    return IngestResult(
        jurisdiction=job.jurisdiction,
        status=status,
        job_id=job.id,
        cursor=job.cursor,
        records_processed=job.records_processed,
        records_failed=job.records_failed,
        records_with_geometry=job.records_with_geometry,
        history_written=job.history_written,
        pages=pages,
        as_of=as_of,
    )


def _lease_lost_result(ledger: JobLedger, *, pages: int, as_of: Optional[str]) -> IngestResult:
    # Report the persisted job, which the new lease holder now advances.
    res = _result(ledger.job, RESULT_IN_PROGRESS, pages=pages, as_of=as_of)
    res.warnings.append("ingestion lease was taken over by another invocation")
    return res


def ingest_jurisdiction(
    store: ParcelStore,
    jurisdiction: str,
    *,
    session: Optional[requests.Session] = None,
    settings: Optional[Settings] = None,
    deadline_seconds: Optional[float] = None,
    max_pages: Optional[int] = None,
    as_of: Optional[str] = None,
    owner: Optional[str] = None,
    clock: Callable[[], float] = time.monotonic,
    wall_clock: Callable[[], float] = time.time,
    fetch_retry: Optional[RetryPolicy] = None,
    write_retry: Optional[RetryPolicy] = None,
) -> IngestResult:
    """Run one bounded ingestion invocation for a jurisdiction.

    Raises ``ConfigurationError`` for an unknown jurisdiction before touching
    the network or the job ledger. Source failures do not raise: the job is
    marked failed and the result carries the request and response details.
    An invocation whose lease is taken over stops at once and reports
    ``in-progress`` with the persisted cursor.
    """

    adapter = get_source(jurisdiction)
    settings = settings or get_settings()
    as_of = as_of or _today(wall_clock)

    ledger = JobLedger(
        store,
        adapter.jurisdiction,
        owner=owner,
        lease_ttl_seconds=settings.lease_ttl_seconds,
        clock=wall_clock,
    )
    lease = ledger.acquire()
    if not lease["acquired"]:
        res = _result(lease["job"], RESULT_IN_PROGRESS, pages=0, as_of=as_of)
        res.warnings.append("another invocation holds the ingestion lease")
        return res

    fetcher = CursorFetcher(
        adapter,
        session,
        retry=fetch_retry or RetryPolicy(max_attempts=settings.http_retries + 1),
        timeout_seconds=settings.http_timeout_seconds,
        user_agent=settings.user_agent,
    )
    write_retry = write_retry or RetryPolicy(max_attempts=2)
    writer = BatchWriter(store, batch_size=settings.write_batch_size, retry=write_retry)
    snapshotter = HistorySnapshotter(store, as_of, retry=write_retry)
    deadline = Deadline(
        deadline_seconds if deadline_seconds is not None else settings.deadline_seconds,
        clock=clock,
    )

    pages = 0
    logger.info(
        "ingest start jurisdiction=%s job_id=%s cursor=%s as_of=%s",
        adapter.jurisdiction,
        ledger.job.id,
        ledger.cursor,
        as_of,
    )
    try:
        for page in fetcher.pages(ledger.cursor, deadline=deadline):
            outcome = process_page(page, adapter, writer, snapshotter)
            ledger.checkpoint(outcome)
            pages += 1
            logger.info(
                "page done jurisdiction=%s cursor=%s written=%s failed=%s",
                adapter.jurisdiction,
                ledger.cursor,
                outcome.written,
                outcome.failed,
            )
            if max_pages is not None and pages >= max_pages:
                break
    except LeaseLost:
        return _lease_lost_result(ledger, pages=pages, as_of=as_of)
    except SourceError as exc:
        job = ledger.fail(exc.to_dict())
        if ledger.lease_lost:
            return _lease_lost_result(ledger, pages=pages, as_of=as_of)
        res = _result(job, RESULT_FAILED, pages=pages, as_of=as_of)
        res.error = exc.to_dict()
        return res
    except Exception as exc:
        ledger.fail({"error": f"{exc.__class__.__name__}: {exc}"})
        raise

    try:
        if fetcher.stop_reason == STOP_COMPLETE:
            job = ledger.complete(store.median_land_value(adapter.jurisdiction))
            return _result(job, RESULT_COMPLETED, pages=pages, as_of=as_of)
        job = ledger.suspend()
    except LeaseLost:
        return _lease_lost_result(ledger, pages=pages, as_of=as_of)
    logger.info(
        "ingest suspended jurisdiction=%s job_id=%s cursor=%s pages=%s",
        adapter.jurisdiction,
        job.id,
        job.cursor,
        pages,
    )
    return _result(job, RESULT_IN_PROGRESS, pages=pages, as_of=as_of)


def check_acceptance(store: ParcelStore, jurisdiction: str) -> Dict[str, Any]:
    adapter = get_source(jurisdiction)
    t = adapter.acceptance
    counts = store.count_parcels(adapter.jurisdiction)
    rows = counts["total"]
    geom_pct = round(100.0 * counts["with_geometry"] / rows, 2) if rows else 0.0
    history_rows = store.count_history(adapter.jurisdiction)
    checks = {
        "rows": {"value": rows, "required": t.min_rows, "ok": rows >= t.min_rows},
        "geometry_pct": {
            "value": geom_pct,
            "required": t.min_geometry_pct,
            "ok": geom_pct >= t.min_geometry_pct,
        },
        "history_rows": {
            "value": history_rows,
            "required": t.min_history_rows,
            "ok": history_rows >= t.min_history_rows,
        },
    }
    return {
        "jurisdiction": adapter.jurisdiction,
        "passed": all(c["ok"] for c in checks.values()),
        "checks": checks,
    }


def run_until_complete(
    store: ParcelStore,
    jurisdiction: str,
    *,
    max_invocations: int = 100,
    **ingest_kwargs: Any,
) -> Dict[str, Any]:
    """Re-invoke ingestion until the job completes, then check acceptance."""

    get_source(jurisdiction)
    results: List[IngestResult] = []
    for _ in range(max(1, int(max_invocations))):
        res = ingest_jurisdiction(store, jurisdiction, **ingest_kwargs)
        results.append(res)
        if res.status != RESULT_IN_PROGRESS:
            break
        if res.pages == 0:
            # Lease held elsewhere, or the deadline left no room for a page.
            break
    last = results[-1]
    out: Dict[str, Any] = {
        "jurisdiction": last.jurisdiction,
        "status": last.status,
        "invocations": len(results),
        "results": [r.to_dict() for r in results],
        "acceptance": None,
    }
    if last.status == RESULT_COMPLETED:
        out["acceptance"] = check_acceptance(store, jurisdiction)
    return out


def score_jurisdiction(
    store: ParcelStore,
    jurisdiction: str,
    *,
    as_of: Optional[date] = None,
    computed_at: Optional[str] = None,
) -> Dict[str, Any]:
    adapter = get_source(jurisdiction)
    as_of = as_of or datetime.now(timezone.utc).date()
    computed_at = computed_at or utc_now_iso()

    rows = list(store.iter_scoring_inputs(adapter.jurisdiction))
    histories = dict(store.iter_histories(adapter.jurisdiction))
    scores = score_parcels(rows, histories, as_of=as_of, computed_at=computed_at)
    written = store.upsert_scores(scores)
    with_yoy = sum(1 for s in scores if s.land_value_yoy_change is not None)
    score_logger.info(
        "scored jurisdiction=%s parcels=%s with_yoy=%s", adapter.jurisdiction, written, with_yoy
    )
    return {
        "jurisdiction": adapter.jurisdiction,
        "scored": written,
        "with_yoy": with_yoy,
        "model_version": scores[0].model_version if scores else None,
        "computed_at": computed_at,
    }


def top_parcels(store: ParcelStore, **filters: Any) -> List[Dict[str, Any]]:
    jurisdiction = filters.get("jurisdiction")
    if jurisdiction:
        filters["jurisdiction"] = get_source(jurisdiction).jurisdiction
    return store.top_scores(**filters)


def parcel_detail(store: ParcelStore, parcel_id: int) -> Optional[Dict[str, Any]]:
    parcel = store.get_parcel(parcel_id)
    if parcel is None:
        return None
    score = store.get_score(parcel_id)
    history = store.get_history(parcel_id)
    return {
        "parcel": parcel,
        "score": score,
        "history": [
            {
                "snapshot_date": h.snapshot_date,
                "land_value": h.land_value,
                "total_value": h.total_value,
                "use_code": h.use_code,
                "source": h.source,
            }
            for h in history
        ],
        "insights": describe_score(score, history),
    }


def jurisdiction_status(store: ParcelStore, jurisdiction: Optional[str] = None) -> List[Dict[str, Any]]:
    names = [get_source(jurisdiction).jurisdiction] if jurisdiction else list_sources()
    out: List[Dict[str, Any]] = []
    for name in names:
        adapter = get_source(name)
        counts = store.count_parcels(name)
        rows = counts["total"]
        jobs = store.list_jobs(name, limit=5)
        out.append(
            {
                "jurisdiction": name,
                "display_name": adapter.display_name,
                "parcels": rows,
                "with_geometry": counts["with_geometry"],
                "geometry_pct": round(100.0 * counts["with_geometry"] / rows, 2) if rows else 0.0,
                "history_rows": store.count_history(name),
                "latest_jobs": [j.to_dict() for j in jobs],
            }
        )
    return out
