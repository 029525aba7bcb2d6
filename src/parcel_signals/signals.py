from __future__ import annotations

import calendar
from datetime import date
from typing import Iterable, List, Optional

from parcel_signals.models import HistorySnapshot, Signal


YOY_MONTHS = 12
WINDOW_MONTHS = 1


def parse_date(value: str) -> date:
    return date.fromisoformat(str(value)[:10])


def add_months(d: date, months: int) -> date:
    """Calendar-month arithmetic; the day is clamped to the target month's length."""

    index = d.year * 12 + (d.month - 1) + int(months)
    year, month = divmod(index, 12)
    month += 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def sort_newest_first(history: Iterable[HistorySnapshot]) -> List[HistorySnapshot]:
    return sorted(history, key=lambda s: s.snapshot_date, reverse=True)


def find_prior(history: Iterable[HistorySnapshot]) -> Optional[HistorySnapshot]:
    """Snapshot closest to one year before the newest one.

    Only snapshots within one calendar month of the target qualify; on equal
    distance the older snapshot wins.
    """

    ordered = sort_newest_first(history)
    if len(ordered) < 2:
        return None
    current_day = parse_date(ordered[0].snapshot_date)
    target = add_months(current_day, -YOY_MONTHS)
    lo = add_months(target, -WINDOW_MONTHS)
    hi = add_months(target, WINDOW_MONTHS)

    best: Optional[HistorySnapshot] = None
    best_key = None
    for snap in ordered[1:]:
        day = parse_date(snap.snapshot_date)
        if day >= current_day or day < lo or day > hi:
            continue
        key = (abs((day - target).days), day)
        if best_key is None or key < best_key:
            best, best_key = snap, key
    return best


def yoy_change(current: Optional[float], prior: Optional[float]) -> Optional[float]:
    if current is None or prior is None or prior <= 0:
        return None
    return (float(current) - float(prior)) / float(prior)


def use_changed(current: Optional[str], prior: Optional[str]) -> bool:
    if not current or not prior:
        return False
    return current.strip() != prior.strip()


def compute_signal(history: Iterable[HistorySnapshot]) -> Optional[Signal]:
    """YoY land value change and use-code change from a parcel's snapshots.

    Returns None for an empty history. A missing prior snapshot yields
    ``land_value_yoy=None`` ("no data"), never 0.
    """

    ordered = sort_newest_first(history)
    if not ordered:
        return None
    current = ordered[0]
    prior = find_prior(ordered)
    if prior is None:
        return Signal(
            parcel_id=current.parcel_id,
            current_date=current.snapshot_date,
            prior_date=None,
            land_value_yoy=None,
            use_change=False,
        )
    return Signal(
        parcel_id=current.parcel_id,
        current_date=current.snapshot_date,
        prior_date=prior.snapshot_date,
        land_value_yoy=yoy_change(current.land_value, prior.land_value),
        use_change=use_changed(current.use_code, prior.use_code),
    )
