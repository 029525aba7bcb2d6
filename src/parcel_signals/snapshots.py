from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from parcel_signals.models import HistorySnapshot, Parcel
from parcel_signals.retry import RetryPolicy
from parcel_signals.storage import ParcelStore


logger = logging.getLogger("parcel_signals.ingest")


class HistorySnapshotter:
    """Records one dated snapshot per written parcel.

    ``as_of`` is the ingestion date for the whole invocation. Re-running on the
    same day leaves the existing snapshot in place.
    """

    def __init__(
        self,
        store: ParcelStore,
        as_of: str,
        *,
        source: str = "ingest",
        retry: Optional[RetryPolicy] = None,
    ) -> None:
        self.store = store
        self.as_of = as_of
        self.source = source
        self.retry = retry or RetryPolicy(max_attempts=2)

    def build(self, parcels: Sequence[Parcel], ids: Dict[str, int]) -> List[HistorySnapshot]:
        out: List[HistorySnapshot] = []
        latest = {p.pin: p for p in parcels}
        for pin, p in latest.items():
            pid = ids.get(pin)
            if pid is None:
                continue
            out.append(
                HistorySnapshot(
                    parcel_id=pid,
                    snapshot_date=self.as_of,
                    land_value=p.land_value,
                    total_value=p.total_value,
                    use_code=p.use_code,
                    source=self.source,
                )
            )
        return out

    def record(self, parcels: Sequence[Parcel], ids: Dict[str, int]) -> int:
        snaps = self.build(parcels, ids)
        inserted = self.retry.call(lambda: self.store.insert_snapshots(snaps))
        if inserted < len(snaps):
            logger.debug("snapshots already present count=%s date=%s", len(snaps) - inserted, self.as_of)
        return inserted
