from __future__ import annotations

import logging
import math
import sqlite3
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from parcel_signals.errors import WriteError
from parcel_signals.models import Parcel
from parcel_signals.retry import RetryPolicy
from parcel_signals.storage import ParcelStore


logger = logging.getLogger("parcel_signals.write")

DEFAULT_BATCH_SIZE = 500

_NUMERIC_FIELDS = (
    "centroid_x",
    "centroid_y",
    "calc_area_acres",
    "acreage",
    "land_value",
    "building_value",
    "total_value",
    "sale_price",
)


@dataclass
class WriteOutcome:
    ids: Dict[str, int] = field(default_factory=dict)
    invalid: int = 0
    failed: int = 0
    duplicates: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def written(self) -> int:
        return len(self.ids)


def validate_parcel(parcel: Parcel, jurisdiction: str) -> Optional[str]:
    """Return the reason a row must not be written, or None."""

    if not (parcel.pin or "").strip():
        return "missing pin"
    if parcel.jurisdiction != jurisdiction:
        return f"jurisdiction mismatch: {parcel.jurisdiction}"
    for name in _NUMERIC_FIELDS:
        value = getattr(parcel, name)
        if value is not None and not math.isfinite(float(value)):
            return f"{name} is not finite"
    if parcel.geometry is not None and parcel.geometry.get("type") not in ("Polygon", "MultiPolygon"):
        return "geometry is not polygonal"
    return None


def dedupe_by_pin(parcels: Sequence[Parcel]) -> List[Parcel]:
    """Keep the last occurrence of each pin, in first-seen order."""

    latest: Dict[str, Parcel] = {}
    for p in parcels:
        latest.pop(p.pin, None)
        latest[p.pin] = p
    return list(latest.values())


def _chunks(rows: Sequence[Parcel], size: int) -> List[List[Parcel]]:
    size = max(1, int(size))
    return [list(rows[i : i + size]) for i in range(0, len(rows), size)]


class BatchWriter:
    def __init__(
        self,
        store: ParcelStore,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        retry: Optional[RetryPolicy] = None,
    ) -> None:
        self.store = store
        self.batch_size = max(1, int(batch_size))
        self.retry = retry or RetryPolicy(max_attempts=2)

    def write(self, parcels: Sequence[Parcel], jurisdiction: str) -> WriteOutcome:
        out = WriteOutcome()
        valid: List[Parcel] = []
        for p in parcels:
            reason = validate_parcel(p, jurisdiction)
            if reason:
                out.invalid += 1
                logger.debug("row rejected jurisdiction=%s pin=%s reason=%s", jurisdiction, p.pin, reason)
                continue
            valid.append(p)

        unique = dedupe_by_pin(valid)
        out.duplicates = len(valid) - len(unique)

        for batch in _chunks(unique, self.batch_size):
            self._write_batch(batch, out, attempt=1)
        return out

    def _write_batch(self, batch: List[Parcel], out: WriteOutcome, attempt: int) -> None:
        try:
            out.ids.update(self.store.upsert_parcels(batch))
            return
        except sqlite3.Error as exc:
            if attempt >= self.retry.max_attempts:
                err = WriteError(f"batch rejected: {exc}", rows=len(batch))
                out.failed += len(batch)
                out.errors.append(str(err))
                logger.warning("write failed rows=%s attempt=%s error=%s", len(batch), attempt, exc)
                return
            logger.info("write retry rows=%s attempt=%s error=%s", len(batch), attempt, exc)
            if self.retry.is_retryable(exc):
                self.retry.wait(attempt)

        half = max(1, (len(batch) + 1) // 2)
        for chunk in _chunks(batch, half):
            self._write_batch(chunk, out, attempt + 1)
