from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException

from parcel_signals.api.schemas import ParcelDetail, TopParcel
from parcel_signals.errors import ConfigurationError
from parcel_signals.models import OWNER_TYPES
from parcel_signals.pipeline import jurisdiction_status, parcel_detail, top_parcels
from parcel_signals.settings import get_settings
from parcel_signals.storage import ParcelStore


router = APIRouter(tags=["parcels"])


def _clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return 20
    return max(1, min(int(limit), 500))


@router.get("/parcels/top", response_model=List[TopParcel])
def parcels_top(
    jurisdiction: Optional[str] = None,
    min_investment_score: Optional[float] = None,
    min_rezoning_probability: Optional[float] = None,
    min_acres: Optional[float] = None,
    max_acres: Optional[float] = None,
    owner_type: Optional[str] = None,
    limit: int = 20,
) -> List[TopParcel]:
    if owner_type and owner_type not in OWNER_TYPES:
        raise HTTPException(status_code=400, detail=f"owner_type must be one of {', '.join(OWNER_TYPES)}")
    store = ParcelStore(get_settings().db_path)
    try:
        rows = top_parcels(
            store,
            jurisdiction=jurisdiction,
            min_investment_score=min_investment_score,
            min_rezoning_probability=min_rezoning_probability,
            min_acres=min_acres,
            max_acres=max_acres,
            owner_type=owner_type,
            limit=_clamp_limit(limit),
        )
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    finally:
        store.close()
    return [TopParcel(**r) for r in rows]


@router.get("/parcels/{parcel_id}", response_model=ParcelDetail)
def parcels_detail(parcel_id: int) -> ParcelDetail:
    store = ParcelStore(get_settings().db_path)
    try:
        out = parcel_detail(store, parcel_id)
    finally:
        store.close()
    if out is None:
        raise HTTPException(status_code=404, detail="parcel not found")
    return ParcelDetail(**out)


@router.get("/jurisdictions")
def jurisdictions(jurisdiction: Optional[str] = None) -> Dict[str, Any]:
    store = ParcelStore(get_settings().db_path)
    try:
        status = jurisdiction_status(store, jurisdiction)
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    finally:
        store.close()
    return {"jurisdictions": status}
