import sqlite3

import pytest

from parcel_signals.errors import LeaseLost
from parcel_signals.ledger import JobLedger, merge_null_audit
from parcel_signals.models import JOB_COMPLETED, JOB_FAILED, JOB_PENDING, PageOutcome


def test_first_acquire_creates_running_job(store, clock):
    ledger = JobLedger(store, "wake", owner="a", clock=clock)
    res = ledger.acquire()
    assert res["acquired"] and res["created"]
    assert ledger.job.status == "running"
    assert ledger.cursor == 0


def test_checkpoint_advances_cursor_monotonically_and_sums_counts(store, clock):
    ledger = JobLedger(store, "wake", owner="a", clock=clock)
    ledger.acquire()
    ledger.checkpoint(PageOutcome(fetched=3, written=2, failed=1, with_geometry=2, history_written=2, max_sequence=30, null_audit={"city": 2}))
    ledger.checkpoint(PageOutcome(fetched=1, written=1, max_sequence=20, null_audit={"city": 1, "zip_code": 1}))

    job = store.get_job(ledger.job.id)
    assert job.cursor == 30
    assert job.records_processed == 3
    assert job.records_failed == 1
    assert job.records_with_geometry == 2
    assert job.history_written == 2
    assert job.pages_processed == 2
    assert job.null_audit == {"city": 3, "zip_code": 1}


def test_live_lease_blocks_second_invocation(store, clock):
    first = JobLedger(store, "wake", owner="a", lease_ttl_seconds=60, clock=clock)
    first.acquire()
    clock.advance(30)

    second = JobLedger(store, "wake", owner="b", lease_ttl_seconds=60, clock=clock)
    res = second.acquire()
    assert not res["acquired"]
    assert res["job"].lease_owner == "a"
    assert second.job is None


def test_stale_lease_is_taken_over(store, clock):
    first = JobLedger(store, "wake", owner="a", lease_ttl_seconds=60, clock=clock)
    first.acquire()
    first.checkpoint(PageOutcome(written=5, max_sequence=500))
    clock.advance(61)

    second = JobLedger(store, "wake", owner="b", lease_ttl_seconds=60, clock=clock)
    res = second.acquire()
    assert res["acquired"] and not res["created"]
    assert second.cursor == 500
    assert second.job.id == first.job.id


def test_taken_over_ledger_stops_writing_and_keeps_persisted_state(store, clock):
    first = JobLedger(store, "wake", owner="a", lease_ttl_seconds=60, clock=clock)
    first.acquire()
    first.checkpoint(PageOutcome(written=5, max_sequence=500))
    clock.advance(61)
    JobLedger(store, "wake", owner="b", lease_ttl_seconds=60, clock=clock).acquire()

    with pytest.raises(LeaseLost) as info:
        first.checkpoint(PageOutcome(written=3, max_sequence=900))
    assert info.value.holder == "b"
    assert first.lease_lost
    assert first.cursor == 500
    assert first.job.records_processed == 5

    with pytest.raises(LeaseLost):
        first.complete(median_land_value=1.0)
    assert not first.job.completed

    job = first.fail({"error": "late failure"})
    assert job.status == "running"
    assert job.lease_owner == "b"
    assert job.error is None

    persisted = store.get_open_job("wake")
    assert persisted.cursor == 500
    assert persisted.lease_owner == "b"
    assert not persisted.completed


def test_suspend_and_fail_keep_job_open_for_resume(store, clock):
    ledger = JobLedger(store, "wake", owner="a", clock=clock)
    ledger.acquire()
    ledger.checkpoint(PageOutcome(written=1, max_sequence=9))
    ledger.suspend()
    job = store.get_open_job("wake")
    assert job.status == JOB_PENDING and job.lease_owner is None

    again = JobLedger(store, "wake", owner="b", clock=clock)
    again.acquire()
    again.fail({"error": "HTTP 500", "status": 500})
    job = store.get_open_job("wake")
    assert job.status == JOB_FAILED
    assert job.error["status"] == 500
    assert job.cursor == 9

    resumed = JobLedger(store, "wake", owner="c", clock=clock)
    res = resumed.acquire()
    assert res["acquired"] and not res["created"]
    assert resumed.job.error is None
    assert resumed.cursor == 9


def test_complete_closes_job_and_next_run_starts_fresh(store, clock):
    ledger = JobLedger(store, "wake", owner="a", clock=clock)
    ledger.acquire()
    ledger.checkpoint(PageOutcome(written=1, max_sequence=9))
    ledger.complete(median_land_value=1234.0)

    done = store.get_job(ledger.job.id)
    assert done.status == JOB_COMPLETED and done.completed
    assert done.median_land_value == 1234.0
    assert store.get_open_job("wake") is None

    nxt = JobLedger(store, "wake", owner="a", clock=clock)
    res = nxt.acquire()
    assert res["created"]
    assert nxt.cursor == 0


def test_only_one_open_job_per_jurisdiction(store):
    store.conn.execute(
        "INSERT INTO ingestion_jobs (jurisdiction, status, started_at, updated_at) VALUES ('wake','running','t','t')"
    )
    with pytest.raises(sqlite3.IntegrityError):
        store.conn.execute(
            "INSERT INTO ingestion_jobs (jurisdiction, status, started_at, updated_at) VALUES ('wake','running','t','t')"
        )


def test_merge_null_audit():
    assert merge_null_audit({"a": 1}, {"a": 2, "b": 1}) == {"a": 3, "b": 1}
    assert merge_null_audit({}, {}) == {}
