import sqlite3

import pytest

from parcel_signals.errors import ConfigurationError
from parcel_signals.ledger import JobLedger
from parcel_signals.pipeline import check_acceptance, ingest_jurisdiction, run_until_complete
from parcel_signals.storage import ParcelStore


AS_OF = "2024-06-01"


def _snapshot_of(store):
    rows = store.conn.execute(
        "SELECT pin, land_value, total_value, use_code, owner_name, calc_area_acres FROM parcels ORDER BY pin"
    ).fetchall()
    hist = store.conn.execute(
        "SELECT p.pin, h.snapshot_date, h.land_value FROM history_snapshots h JOIN parcels p ON p.id = h.parcel_id ORDER BY p.pin"
    ).fetchall()
    return [tuple(r) for r in rows], [tuple(r) for r in hist]


def test_full_page_then_empty_page_completes(store, fake_layer, feature, no_sleep):
    layer = fake_layer([feature(i) for i in range(48001, 50001)])
    res = ingest_jurisdiction(store, "wake", session=layer, as_of=AS_OF, fetch_retry=no_sleep())

    assert res.status == "completed"
    assert res.cursor == 50000
    assert res.records_processed == 2000
    assert res.records_with_geometry == 2000
    assert res.history_written == 2000
    assert res.pages == 1
    assert len(layer.calls) == 2
    job = store.get_job(res.job_id)
    assert job.completed
    assert job.median_land_value == 100000.0


def test_resume_requests_records_after_stored_cursor(store, fake_layer, fake_session, fake_response, feature, no_sleep):
    layer = fake_layer([feature(i) for i in range(48001, 50011)])
    first = ingest_jurisdiction(store, "wake", session=layer, max_pages=1, as_of=AS_OF, fetch_retry=no_sleep())
    assert first.status == "in-progress"
    assert first.cursor == 50000

    session = fake_session([fake_response(200, {"features": []})])
    second = ingest_jurisdiction(store, "wake", session=session, as_of=AS_OF, fetch_retry=no_sleep())
    assert session.calls[0]["params"]["where"] == "(1=1) AND OBJECTID > 50000"
    assert second.job_id == first.job_id
    assert second.status == "completed"


def test_rerun_is_idempotent(store, fake_layer, feature, no_sleep):
    features = [feature(i, land=1000.0 * i) for i in range(1, 21)]
    ingest_jurisdiction(store, "wake", session=fake_layer(features), as_of=AS_OF, fetch_retry=no_sleep())
    before = _snapshot_of(store)

    again = ingest_jurisdiction(store, "wake", session=fake_layer(features), as_of=AS_OF, fetch_retry=no_sleep())
    assert again.status == "completed"
    assert again.history_written == 0
    assert _snapshot_of(store) == before
    assert store.count_parcels("wake")["total"] == 20
    assert store.count_history("wake") == 20


def test_interrupted_runs_match_single_run(fake_layer, feature, no_sleep):
    features = [feature(i, land=500.0 * i, use="R1" if i % 2 else "C1") for i in range(1, 12)]

    one_shot = ParcelStore(":memory:")
    ingest_jurisdiction(one_shot, "wake", session=fake_layer(features, page_size=3), as_of=AS_OF, fetch_retry=no_sleep())

    chunked = ParcelStore(":memory:")
    statuses = []
    for _ in range(10):
        res = ingest_jurisdiction(
            chunked, "wake", session=fake_layer(features, page_size=3), max_pages=1, as_of=AS_OF, fetch_retry=no_sleep()
        )
        statuses.append(res.status)
        if res.status == "completed":
            break

    assert statuses[-1] == "completed"
    assert statuses.count("in-progress") == 4
    assert _snapshot_of(chunked) == _snapshot_of(one_shot)
    one_shot.close()
    chunked.close()


class SlowLayer:
    def __init__(self, layer, clock, seconds):
        self.layer = layer
        self.clock = clock
        self.seconds = seconds

    def get(self, *args, **kwargs):
        self.clock.advance(self.seconds)
        return self.layer.get(*args, **kwargs)


def test_deadline_suspends_with_resumable_cursor(store, fake_layer, feature, clock, no_sleep):
    layer = fake_layer([feature(i) for i in range(1, 11)], page_size=2)
    res = ingest_jurisdiction(
        store,
        "wake",
        session=SlowLayer(layer, clock, 20),
        deadline_seconds=55,
        clock=clock,
        as_of=AS_OF,
        fetch_retry=no_sleep(),
    )
    assert res.status == "in-progress"
    assert res.pages == 3
    assert res.cursor == 6
    job = store.get_open_job("wake")
    assert job.cursor == 6
    assert job.lease_owner is None


def test_cursor_checkpoint_is_monotonic_across_invocations(store, fake_layer, feature, no_sleep):
    layer = fake_layer([feature(i) for i in range(1, 8)], page_size=2)
    cursors = []
    for _ in range(6):
        res = ingest_jurisdiction(store, "wake", session=layer, max_pages=1, as_of=AS_OF, fetch_retry=no_sleep())
        cursors.append(res.cursor)
        if res.status == "completed":
            break
    assert cursors == sorted(cursors)
    assert cursors[-1] == 7


def test_bad_records_are_counted_and_skipped(store, fake_layer, feature, no_sleep):
    bad_pin = feature(2, pin="")
    bad_geom = feature(3, geometry={"paths": [[[0, 0], [1, 1]]]})
    no_geom = feature(4, geometry=None)
    layer = fake_layer([feature(1), bad_pin, bad_geom, no_geom])
    res = ingest_jurisdiction(store, "wake", session=layer, as_of=AS_OF, fetch_retry=no_sleep())

    assert res.status == "completed"
    assert res.records_processed == 2
    assert res.records_failed == 2
    assert res.records_with_geometry == 1
    assert res.cursor == 4
    job = store.get_job(res.job_id)
    assert job.null_audit["geometry"] == 1


class LockingStore(ParcelStore):
    """Rejects any parcel batch larger than ``max_rows``."""

    max_rows = 2

    def upsert_parcels(self, parcels, **kw):
        if len(parcels) > self.max_rows:
            raise sqlite3.OperationalError("database is locked")
        return super().upsert_parcels(parcels, **kw)


def test_write_failure_after_retry_is_counted_and_cursor_advances(fake_layer, feature, no_sleep, monkeypatch):
    monkeypatch.setenv("PARCEL_SIGNALS_WRITE_BATCH_SIZE", "8")
    from parcel_signals.settings import reset_settings_cache

    reset_settings_cache()
    store = LockingStore(":memory:")
    store.max_rows = 2
    layer = fake_layer([feature(i) for i in range(1, 9)])
    res = ingest_jurisdiction(
        store, "wake", session=layer, as_of=AS_OF, fetch_retry=no_sleep(), write_retry=no_sleep(2)
    )

    # 8 rows rejected, retried as two halves of 4, both still too large.
    assert res.status == "completed"
    assert res.records_failed == 8
    assert res.records_processed == 0
    assert res.cursor == 8
    store.close()


def test_source_failure_marks_job_failed_and_next_run_resumes(store, fake_layer, fake_session, fake_response, feature, no_sleep):
    features = [feature(i) for i in range(1, 6)]
    first = ingest_jurisdiction(
        store, "wake", session=fake_layer(features, page_size=2), max_pages=1, as_of=AS_OF, fetch_retry=no_sleep()
    )
    assert first.cursor == 2

    broken = fake_session([fake_response(502, None, text="bad gateway")] * 2)
    failed = ingest_jurisdiction(store, "wake", session=broken, as_of=AS_OF, fetch_retry=no_sleep(2))
    assert failed.status == "failed"
    assert failed.cursor == 2
    assert failed.error["status"] == 502
    assert failed.error["params"]["where"] == "(1=1) AND OBJECTID > 2"
    assert failed.error["body"] == "bad gateway"
    job = store.get_open_job("wake")
    assert job.status == "failed"
    assert job.error["status"] == 502

    resumed = ingest_jurisdiction(store, "wake", session=fake_layer(features, page_size=2), as_of=AS_OF, fetch_retry=no_sleep())
    assert resumed.status == "completed"
    assert resumed.job_id == first.job_id
    assert resumed.records_processed == 5


def test_unknown_jurisdiction_fails_before_any_io(store, fake_session):
    session = fake_session([])
    with pytest.raises(ConfigurationError):
        ingest_jurisdiction(store, "atlantis", session=session)
    assert session.calls == []
    assert store.list_jobs() == []


def test_concurrent_invocation_is_a_noop(store, fake_session, clock):
    holder = JobLedger(store, "wake", owner="other-worker", lease_ttl_seconds=120, clock=clock)
    holder.acquire()

    session = fake_session([])
    res = ingest_jurisdiction(store, "wake", session=session, wall_clock=clock, as_of=AS_OF)
    assert res.status == "in-progress"
    assert res.pages == 0
    assert res.warnings
    assert session.calls == []


class TakeoverLayer:
    """Lets another worker grab the lease while the second page is in flight."""

    def __init__(self, layer, store, clock):
        self.layer = layer
        self.store = store
        self.clock = clock
        self.calls = 0

    def get(self, *args, **kwargs):
        self.calls += 1
        if self.calls == 2:
            self.store.acquire_job_lease(
                jurisdiction="wake",
                owner="other-worker",
                now_ts=int(self.clock()) + 10_000,
                ttl_seconds=120,
            )
        return self.layer.get(*args, **kwargs)


def test_lost_lease_stops_invocation_and_reports_persisted_job(store, fake_layer, feature, clock, no_sleep):
    layer = fake_layer([feature(i) for i in range(1, 6)], page_size=2)
    session = TakeoverLayer(layer, store, clock)
    res = ingest_jurisdiction(
        store, "wake", session=session, wall_clock=clock, as_of=AS_OF, fetch_retry=no_sleep()
    )

    assert res.status == "in-progress"
    assert res.pages == 1
    assert res.cursor == 2
    assert res.warnings
    assert session.calls == 2

    job = store.get_open_job("wake")
    assert job.id == res.job_id
    assert not job.completed
    assert job.cursor == 2
    assert job.lease_owner == "other-worker"


class LockedSnapshotStore(ParcelStore):
    """The first snapshot insert hits a locked database."""

    snapshot_calls = 0

    def insert_snapshots(self, snapshots):
        self.snapshot_calls += 1
        if self.snapshot_calls == 1:
            raise sqlite3.OperationalError("database is locked")
        return super().insert_snapshots(snapshots)


def test_locked_snapshot_insert_is_retried(fake_layer, feature, no_sleep):
    store = LockedSnapshotStore(":memory:")
    layer = fake_layer([feature(i) for i in range(1, 4)])
    res = ingest_jurisdiction(
        store, "wake", session=layer, as_of=AS_OF, fetch_retry=no_sleep(), write_retry=no_sleep(2)
    )
    assert res.status == "completed"
    assert res.history_written == 3
    assert store.snapshot_calls == 2
    store.close()


def test_null_audit_counts_only_written_rows(store, fake_layer, feature, no_sleep):
    # Same pin twice on one page: the writer keeps one row.
    layer = fake_layer([feature(1, pin="DUP"), feature(2, pin="DUP"), feature(3)])
    res = ingest_jurisdiction(store, "wake", session=layer, as_of=AS_OF, fetch_retry=no_sleep())

    assert res.records_processed == 2
    job = store.get_job(res.job_id)
    assert job.null_audit["deed_date"] == 2


def test_run_until_complete_then_checks_acceptance(store, fake_layer, feature, no_sleep):
    layer = fake_layer([feature(i) for i in range(1, 8)], page_size=3)
    out = run_until_complete(store, "wake", max_pages=1, as_of=AS_OF, session=layer, fetch_retry=no_sleep())
    assert out["status"] == "completed"
    assert out["invocations"] == 4
    acceptance = out["acceptance"]
    assert acceptance["passed"] is False
    assert acceptance["checks"]["rows"] == {"value": 7, "required": 100_000, "ok": False}
    assert acceptance["checks"]["geometry_pct"]["ok"] is True


def test_acceptance_uses_configured_thresholds(store, fake_layer, feature, no_sleep):
    ingest_jurisdiction(store, "durham", session=fake_layer([feature(1)]), as_of=AS_OF, fetch_retry=no_sleep())
    # durham has no configured minimums; nothing was written because the
    # shared layer uses PIN, not PIN_NUM.
    report = check_acceptance(store, "durham")
    assert report["checks"]["rows"]["value"] == 0
    assert report["checks"]["rows"]["ok"] is True
    assert report["checks"]["geometry_pct"]["ok"] is True
