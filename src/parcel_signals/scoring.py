from __future__ import annotations

import statistics
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from parcel_signals.models import HistorySnapshot, Score, Signal
from parcel_signals.signals import compute_signal, parse_date


MODEL_VERSION = "heuristic_v1"

# Additive rezoning-probability weights (transparent and documented):
# - base: every parcel starts here
# - high_growth: land value YoY above 30%
# - very_high_growth: land value YoY above 50% (stacks on high_growth)
# - use_change: use code differs from a year ago
# - long_tenure: current owner has held the parcel more than 20 years
# - corporate_owner: owner type is corporate or llc
WEIGHTS: Dict[str, float] = {
    "base": 0.10,
    "high_growth": 0.20,
    "very_high_growth": 0.20,
    "use_change": 0.30,
    "long_tenure": 0.10,
    "corporate_owner": 0.10,
}

HIGH_GROWTH_YOY = 0.30
VERY_HIGH_GROWTH_YOY = 0.50
LONG_TENURE_YEARS = 20
MAX_REZONING_PROBABILITY = 0.95

INVESTMENT_REZONING_WEIGHT = 0.6
INVESTMENT_UNDERVALUATION_WEIGHT = 0.4

CORPORATE_OWNER_TYPES = ("corporate", "llc")


def _clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    if value < lo:
        return lo
    if value > hi:
        return hi
    return value


def tenure_years(deed_date: Optional[str], as_of: date) -> Optional[int]:
    if not deed_date:
        return None
    try:
        held = parse_date(deed_date)
    except ValueError:
        return None
    years = as_of.year - held.year
    if (as_of.month, as_of.day) < (held.month, held.day):
        years -= 1
    return max(0, years)


def value_per_acre(land_value: Optional[float], acres: Optional[float]) -> Optional[float]:
    if land_value is None or not acres or acres <= 0:
        return None
    return float(land_value) / float(acres)


def parcel_acres(row: Mapping[str, Any]) -> Optional[float]:
    calc = row.get("calc_area_acres")
    if calc:
        return float(calc)
    src = row.get("acreage")
    return float(src) if src else None


def rezoning_factors(
    yoy: Optional[float],
    use_change: bool,
    tenure: Optional[int],
    owner_type: Optional[str],
) -> Dict[str, bool]:
    return {
        "high_growth": yoy is not None and yoy > HIGH_GROWTH_YOY,
        "very_high_growth": yoy is not None and yoy > VERY_HIGH_GROWTH_YOY,
        "use_change": bool(use_change),
        "long_tenure": tenure is not None and tenure > LONG_TENURE_YEARS,
        "corporate_owner": (owner_type or "") in CORPORATE_OWNER_TYPES,
    }


def rezoning_probability(factors: Mapping[str, bool]) -> float:
    p = WEIGHTS["base"]
    for name, on in factors.items():
        if on and name in WEIGHTS:
            p += WEIGHTS[name]
    return _clamp(round(p, 10), 0.0, MAX_REZONING_PROBABILITY)


def undervaluation(vpa: Optional[float], peer_median: Optional[float]) -> Optional[float]:
    """Relative gap to the peer median; negative means priced above peers."""

    if vpa is None or not peer_median:
        return None
    return (float(peer_median) - float(vpa)) / float(peer_median)


def investment_score(rezoning: float, underval: Optional[float]) -> float:
    bonus = max(0.0, underval) if underval is not None else 0.0
    return _clamp(INVESTMENT_REZONING_WEIGHT * rezoning + INVESTMENT_UNDERVALUATION_WEIGHT * bonus)


def peer_median(values: Iterable[Optional[float]]) -> Optional[float]:
    usable = [v for v in values if v is not None]
    if not usable:
        return None
    return float(statistics.median(usable))


def score_parcel(
    row: Mapping[str, Any],
    signal: Optional[Signal],
    *,
    as_of: date,
    peer_median_vpa: Optional[float],
    computed_at: str,
) -> Score:
    yoy = signal.land_value_yoy if signal else None
    use_change = bool(signal.use_change) if signal else False
    tenure = tenure_years(row.get("deed_date"), as_of)
    vpa = value_per_acre(row.get("land_value"), parcel_acres(row))

    factors = rezoning_factors(yoy, use_change, tenure, row.get("owner_type"))
    rezoning = rezoning_probability(factors)
    underval = undervaluation(vpa, peer_median_vpa)

    explanations: Dict[str, Any] = dict(factors)
    explanations["undervalued"] = underval is not None and underval > 0
    explanations["yoy_available"] = yoy is not None

    features = {
        "land_val_per_acre": vpa,
        "peer_median_val_per_acre": peer_median_vpa,
        "tenure_years": tenure,
        "yoy_change": yoy,
        "use_change": use_change,
        "prior_snapshot_date": signal.prior_date if signal else None,
        "current_snapshot_date": signal.current_date if signal else None,
        "label_proxy": 1 if (factors["very_high_growth"] or use_change) else 0,
    }

    return Score(
        parcel_id=int(row["id"]),
        rezoning_probability=rezoning,
        investment_score=investment_score(rezoning, underval),
        land_value_yoy_change=yoy,
        use_change=use_change,
        undervaluation_pct=underval,
        explanations=explanations,
        features=features,
        model_version=MODEL_VERSION,
        computed_at=computed_at,
    )


def score_parcels(
    rows: Sequence[Mapping[str, Any]],
    histories: Mapping[int, Sequence[HistorySnapshot]],
    *,
    as_of: date,
    computed_at: str,
) -> List[Score]:
    """Score one jurisdiction run.

    ``rows`` are the parcels with at least one snapshot; the peer median is
    taken over every row in the run with a usable value per acre.
    """

    median = peer_median(value_per_acre(r.get("land_value"), parcel_acres(r)) for r in rows)
    out: List[Score] = []
    for row in rows:
        pid = int(row["id"])
        signal = compute_signal(histories.get(pid) or [])
        out.append(
            score_parcel(row, signal, as_of=as_of, peer_median_vpa=median, computed_at=computed_at)
        )
    return out


def describe_score(
    score: Optional[Mapping[str, Any]],
    history: Sequence[HistorySnapshot] = (),
) -> List[str]:
    """Plain-language notes for the parcel detail panel."""

    if not score:
        return ["Insufficient data for analysis. Check back after the next scoring run."]

    notes: List[str] = []
    inv = float(score.get("investment_score") or 0.0)
    if inv >= 0.8:
        notes.append(f"Exceptional investment opportunity with a score of {inv:.2f}.")
    elif inv >= 0.6:
        notes.append(f"Strong investment potential with a score of {inv:.2f}.")
    else:
        notes.append(f"Moderate investment score of {inv:.2f}.")

    rez = float(score.get("rezoning_probability") or 0.0)
    if rez >= 0.7:
        notes.append(f"High likelihood of rezoning ({rez * 100:.0f}% probability).")
    elif rez >= 0.5:
        notes.append(f"Moderate rezoning potential ({rez * 100:.0f}% probability).")

    yoy = score.get("land_value_yoy_change")
    if yoy is None:
        notes.append("No year-over-year land value history yet.")
    elif yoy > 0.10:
        notes.append(f"Strong appreciation trend with {yoy * 100:.1f}% YoY land value growth.")
    elif yoy > 0.05:
        notes.append(f"Steady appreciation with {yoy * 100:.1f}% YoY growth.")
    elif yoy < 0:
        notes.append(f"Land value fell {abs(yoy) * 100:.1f}% year over year.")

    underval = score.get("undervaluation_pct")
    if underval is not None and underval > 0.25:
        notes.append(f"Land value per acre is {underval * 100:.0f}% below the jurisdiction median.")

    if len(history) >= 3:
        codes = {h.use_code for h in history if h.use_code}
        if len(codes) > 1:
            notes.append("Historical land use changes indicate flexibility for future development.")
    return notes
