from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


JOB_PENDING = "pending"
JOB_RUNNING = "running"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"

RESULT_COMPLETED = "completed"
RESULT_IN_PROGRESS = "in-progress"
RESULT_FAILED = "failed"

OWNER_TYPES = ("individual", "corporate", "government", "trust", "llc", "other")


@dataclass(frozen=True)
class NormalizedGeometry:
    """Output of the geometry normalizer.

    ``geojson`` is None when only a fallback point centroid was available.
    """

    geojson: Optional[Dict[str, Any]]
    centroid: Optional[tuple]
    bbox: Optional[tuple]
    area_acres: Optional[float]


@dataclass(frozen=True)
class Parcel:
    # identity
    jurisdiction: str
    pin: str
    source_sequence: Optional[int] = None

    # location
    address: Optional[str] = None
    city: Optional[str] = None
    zip_code: Optional[str] = None
    geometry: Optional[Dict[str, Any]] = None
    centroid_x: Optional[float] = None
    centroid_y: Optional[float] = None
    bbox: Optional[tuple] = None
    calc_area_acres: Optional[float] = None
    acreage: Optional[float] = None

    # valuation
    land_value: Optional[float] = None
    building_value: Optional[float] = None
    total_value: Optional[float] = None

    # classification
    use_code: Optional[str] = None
    use_label: Optional[str] = None
    land_code: Optional[str] = None
    billing_class: Optional[str] = None

    # transfers
    deed_date: Optional[str] = None  # YYYY-MM-DD
    sale_date: Optional[str] = None  # YYYY-MM-DD
    sale_price: Optional[float] = None

    # ownership
    owner_name: Optional[str] = None
    owner_mailing: Optional[str] = None
    owner_type: Optional[str] = None

    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_geometry(self) -> bool:
        return self.geometry is not None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class IngestionJob:
    id: int
    jurisdiction: str
    status: str
    cursor: int = 0
    records_processed: int = 0
    records_failed: int = 0
    records_with_geometry: int = 0
    history_written: int = 0
    pages_processed: int = 0
    completed: bool = False
    started_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None
    median_land_value: Optional[float] = None
    null_audit: Dict[str, int] = field(default_factory=dict)
    error: Optional[Dict[str, Any]] = None
    lease_owner: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class HistorySnapshot:
    parcel_id: int
    snapshot_date: str  # YYYY-MM-DD
    land_value: Optional[float] = None
    total_value: Optional[float] = None
    use_code: Optional[str] = None
    source: str = "ingest"


@dataclass(frozen=True)
class Signal:
    parcel_id: int
    current_date: str
    prior_date: Optional[str]
    land_value_yoy: Optional[float]
    use_change: bool

    @property
    def has_yoy(self) -> bool:
        return self.land_value_yoy is not None


@dataclass(frozen=True)
class Score:
    parcel_id: int
    rezoning_probability: float
    investment_score: float
    land_value_yoy_change: Optional[float]
    use_change: bool
    undervaluation_pct: Optional[float]
    explanations: Dict[str, Any]
    features: Dict[str, Any]
    model_version: str
    computed_at: str

    def explanations_json(self) -> str:
        return json.dumps(self.explanations or {}, sort_keys=True)

    def features_json(self) -> str:
        return json.dumps(self.features or {}, sort_keys=True)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PageOutcome:
    fetched: int = 0
    failed: int = 0
    with_geometry: int = 0
    written: int = 0
    history_written: int = 0
    max_sequence: Optional[int] = None
    null_audit: Dict[str, int] = field(default_factory=dict)


@dataclass
class IngestResult:
    jurisdiction: str
    status: str
    job_id: Optional[int]
    cursor: int
    records_processed: int = 0
    records_failed: int = 0
    records_with_geometry: int = 0
    history_written: int = 0
    pages: int = 0
    as_of: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jurisdiction": self.jurisdiction,
            "status": self.status,
            "job_id": self.job_id,
            "cursor": self.cursor,
            "records_processed": self.records_processed,
            "records_failed": self.records_failed,
            "records_with_geometry": self.records_with_geometry,
            "history_written": self.history_written,
            "pages": self.pages,
            "as_of": self.as_of,
            "error": self.error,
            "warnings": list(self.warnings),
        }
