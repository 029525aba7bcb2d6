from __future__ import annotations

import logging
import os
import socket
import time
import uuid
from typing import Callable, Dict, Optional

from parcel_signals.errors import LeaseLost
from parcel_signals.models import JOB_COMPLETED, JOB_FAILED, JOB_PENDING, IngestionJob, PageOutcome
from parcel_signals.storage import ParcelStore, utc_now_iso


logger = logging.getLogger("parcel_signals.ingest")


def default_owner_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


def merge_null_audit(total: Dict[str, int], page: Dict[str, int]) -> Dict[str, int]:
    out = dict(total or {})
    for key, count in (page or {}).items():
        out[key] = int(out.get(key, 0)) + int(count)
    return out


class JobLedger:
    """Durable progress record for one jurisdiction's ingestion.

    The single non-complete job row is also the lease: whoever holds
    ``lease_owner`` with a fresh heartbeat is the only writer allowed to
    advance the cursor.
    """

    def __init__(
        self,
        store: ParcelStore,
        jurisdiction: str,
        *,
        owner: Optional[str] = None,
        lease_ttl_seconds: int = 120,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.jurisdiction = jurisdiction
        self.owner = owner or default_owner_id()
        self.lease_ttl_seconds = int(lease_ttl_seconds)
        self.clock = clock
        self.job: Optional[IngestionJob] = None
        self.lease_lost = False

    def acquire(self) -> Dict[str, object]:
        """Resume the open job (or start one) and take its lease."""

        res = self.store.acquire_job_lease(
            jurisdiction=self.jurisdiction,
            owner=self.owner,
            now_ts=int(self.clock()),
            ttl_seconds=self.lease_ttl_seconds,
        )
        job = res["job"]
        if res["acquired"]:
            self.job = job
            logger.info(
                "ingest lease acquired jurisdiction=%s job_id=%s cursor=%s created=%s",
                self.jurisdiction,
                job.id,
                job.cursor,
                res["created"],
            )
        else:
            logger.info(
                "ingest lease busy jurisdiction=%s job_id=%s holder=%s",
                self.jurisdiction,
                job.id,
                job.lease_owner,
            )
        return res

    @property
    def cursor(self) -> int:
        return int(self.job.cursor) if self.job else 0

    def checkpoint(self, outcome: PageOutcome) -> IngestionJob:
        """Fold one page into the job and persist it before the next request.

        Raises ``LeaseLost`` when another invocation has taken the job over;
        the in-memory job is then reloaded from the store.
        """

        job = self._require_job()
        if outcome.max_sequence is not None:
            job.cursor = max(int(job.cursor), int(outcome.max_sequence))
        job.records_processed += outcome.written
        job.records_failed += outcome.failed
        job.records_with_geometry += outcome.with_geometry
        job.history_written += outcome.history_written
        job.pages_processed += 1
        job.null_audit = merge_null_audit(job.null_audit, outcome.null_audit)
        now = utc_now_iso()
        job.updated_at = now
        if not self.store.checkpoint_job(job, owner=self.owner, now_ts=int(self.clock()), now_iso=now):
            raise self._lease_lost("checkpoint")
        return job

    def complete(self, median_land_value: Optional[float] = None) -> IngestionJob:
        job = self._require_job()
        if not self.store.finish_job(
            job,
            owner=self.owner,
            status=JOB_COMPLETED,
            median_land_value=median_land_value,
        ):
            raise self._lease_lost("complete")
        job.status = JOB_COMPLETED
        job.completed = True
        job.median_land_value = median_land_value
        job.lease_owner = None
        logger.info(
            "ingest completed jurisdiction=%s job_id=%s processed=%s failed=%s",
            self.jurisdiction,
            job.id,
            job.records_processed,
            job.records_failed,
        )
        return job

    def suspend(self) -> IngestionJob:
        """Deadline reached: release the lease, keep the job resumable."""

        job = self._require_job()
        if not self.store.finish_job(job, owner=self.owner, status=JOB_PENDING):
            raise self._lease_lost("suspend")
        job.status = JOB_PENDING
        job.lease_owner = None
        return job

    def fail(self, error: Dict[str, object]) -> IngestionJob:
        """Record a failure; with a lost lease the persisted job is left alone.

        Check ``lease_lost`` afterwards. This never raises, so it is safe to
        call while another exception is being handled.
        """

        job = self._require_job()
        if not self.store.finish_job(job, owner=self.owner, status=JOB_FAILED, error=error):
            self._lease_lost("fail")
            return self.job
        job.status = JOB_FAILED
        job.error = dict(error)
        job.lease_owner = None
        logger.warning(
            "ingest failed jurisdiction=%s job_id=%s cursor=%s error=%s",
            self.jurisdiction,
            job.id,
            job.cursor,
            error.get("error"),
        )
        return job

    def _lease_lost(self, step: str) -> LeaseLost:
        job = self._require_job()
        persisted = self.store.get_job(job.id)
        if persisted is not None:
            self.job = persisted
        self.lease_lost = True
        holder = persisted.lease_owner if persisted is not None else None
        logger.warning(
            "ingest lease lost jurisdiction=%s job_id=%s owner=%s holder=%s step=%s",
            self.jurisdiction,
            job.id,
            self.owner,
            holder,
            step,
        )
        return LeaseLost(
            f"lease on job {job.id} is held by {holder or 'nobody'}",
            job_id=job.id,
            holder=holder,
        )

    def _require_job(self) -> IngestionJob:
        if self.job is None:
            raise RuntimeError("ledger has no acquired job")
        return self.job
