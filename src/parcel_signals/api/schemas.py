from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class IngestRequest(BaseModel):
    jurisdiction: str
    max_pages: Optional[int] = Field(default=None, ge=1)
    deadline_seconds: Optional[float] = Field(default=None, gt=0)


class IngestResponse(BaseModel):
    jurisdiction: str
    status: str
    job_id: Optional[int] = None
    cursor: int
    records_processed: int = 0
    records_failed: int = 0
    records_with_geometry: int = 0
    history_written: int = 0
    pages: int = 0
    as_of: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    warnings: List[str] = Field(default_factory=list)


class ScoreRequest(BaseModel):
    jurisdiction: str


class ScoreResponse(BaseModel):
    jurisdiction: str
    scored: int
    with_yoy: int
    model_version: Optional[str] = None
    computed_at: str


class TopParcel(BaseModel):
    id: int
    pin: str
    jurisdiction: str
    address: Optional[str] = None
    city: Optional[str] = None
    land_value: Optional[float] = None
    acres: Optional[float] = None
    owner_type: Optional[str] = None
    use_code: Optional[str] = None
    investment_score: float
    rezoning_probability: float
    land_value_yoy_change: Optional[float] = None
    undervaluation_pct: Optional[float] = None


class HistoryPoint(BaseModel):
    snapshot_date: str
    land_value: Optional[float] = None
    total_value: Optional[float] = None
    use_code: Optional[str] = None
    source: str = "ingest"


class ParcelDetail(BaseModel):
    parcel: Dict[str, Any]
    score: Optional[Dict[str, Any]] = None
    history: List[HistoryPoint] = Field(default_factory=list)
    insights: List[str] = Field(default_factory=list)
