from __future__ import annotations

import math
import re
from dataclasses import fields
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from parcel_signals.errors import MissingNaturalKey, MissingSequence, UnsupportedGeometry
from parcel_signals.geometry import normalize_geometry
from parcel_signals.models import Parcel
from parcel_signals.sources import FieldMap, SourceAdapter


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%Y%m%d", "%Y/%m/%d")

_GOVERNMENT = re.compile(
    r"\b(CITY OF|COUNTY OF|TOWN OF|STATE OF|VILLAGE OF|UNITED STATES|USA|"
    r"BOARD OF|AUTHORITY|DEPT|DEPARTMENT|COMMISSION|COUNTY COMMISSIONERS)\b"
)
_TRUST = re.compile(r"\b(TRUST|TRUSTEE|TRUSTEES|TR|TRS|REVOCABLE|IRREVOCABLE)\b")
_LLC = re.compile(r"\b(L\s?\.?\s?L\s?\.?\s?C|LLC)\b\.?")
_CORPORATE = re.compile(
    r"\b(INC|INCORPORATED|CORP|CORPORATION|COMPANY|CO|LP|LLP|LTD|LIMITED|"
    r"PARTNERS|PARTNERSHIP|HOLDINGS|PROPERTIES|INVESTMENTS|DEVELOPMENT|"
    r"BANK|GROUP|ENTERPRISES|REALTY|VENTURES|CAPITAL)\b"
)
_OTHER = re.compile(r"\b(CHURCH|MINISTRIES|HOMEOWNERS|HOA|ASSOCIATION|ASSOC|CEMETERY|ESTATE OF)\b")


def clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def clean_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        out = float(value)
    else:
        text = str(value).strip().replace(",", "").replace("$", "")
        if not text:
            return None
        try:
            out = float(text)
        except ValueError:
            return None
    return out if math.isfinite(out) else None


def clean_date(value: Any) -> Optional[str]:
    """Return an ISO ``YYYY-MM-DD`` string.

    ArcGIS publishes date fields as epoch milliseconds; some layers use
    strings instead.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        try:
            return (_EPOCH + timedelta(milliseconds=float(value))).date().isoformat()
        except OverflowError:
            return None
    text = str(value).strip()
    if not text:
        return None
    if "T" in text:
        text = text.split("T", 1)[0]
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def classify_owner(owner_name: Optional[str]) -> Optional[str]:
    if not owner_name:
        return None
    name = re.sub(r"[^A-Z0-9 ]+", " ", owner_name.upper())
    name = re.sub(r"\s+", " ", name).strip()
    if not name:
        return None
    if _GOVERNMENT.search(name):
        return "government"
    if _TRUST.search(name):
        return "trust"
    if _LLC.search(name):
        return "llc"
    if _CORPORATE.search(name):
        return "corporate"
    if _OTHER.search(name):
        return "other"
    return "individual"


def _attributes(feature: Dict[str, Any]) -> Dict[str, Any]:
    attrs = feature.get("attributes")
    if attrs is None:
        attrs = feature.get("properties")
    return attrs if isinstance(attrs, dict) else {}


def _get(attrs: Dict[str, Any], source_field: Optional[str]) -> Any:
    if not source_field:
        return None
    return attrs.get(source_field)


def source_sequence(feature: Dict[str, Any], adapter: SourceAdapter) -> int:
    if not isinstance(feature, dict):
        raise MissingSequence("feature is not an object")
    attrs = _attributes(feature)
    raw = attrs.get(adapter.sequence_field)
    if raw is None and feature.get("id") is not None:
        raw = feature.get("id")
    number = clean_number(raw)
    if number is None:
        raise MissingSequence(f"{adapter.sequence_field} missing")
    return int(number)


def normalize_feature(feature: Dict[str, Any], adapter: SourceAdapter) -> Parcel:
    """Map one source feature onto the canonical parcel schema.

    Raises ``MissingNaturalKey`` or ``UnsupportedGeometry``; callers count
    those records as failed and move on.
    """

    if not isinstance(feature, dict):
        raise UnsupportedGeometry("feature is not an object")
    attrs = _attributes(feature)
    fm: FieldMap = adapter.fields

    pin = clean_text(_get(attrs, fm.pin))
    if not pin:
        raise MissingNaturalKey(f"{fm.pin} missing")

    try:
        sequence: Optional[int] = source_sequence(feature, adapter)
    except MissingSequence:
        sequence = None

    geom = normalize_geometry(feature.get("geometry"), feet_per_unit=adapter.feet_per_unit)
    owner_name = clean_text(_get(attrs, fm.owner_name))
    centroid = geom.centroid or (None, None)

    return Parcel(
        jurisdiction=adapter.jurisdiction,
        pin=pin,
        source_sequence=sequence,
        address=clean_text(_get(attrs, fm.address)),
        city=clean_text(_get(attrs, fm.city)),
        zip_code=clean_text(_get(attrs, fm.zip_code)),
        geometry=geom.geojson,
        centroid_x=centroid[0],
        centroid_y=centroid[1],
        bbox=geom.bbox,
        calc_area_acres=geom.area_acres,
        acreage=clean_number(_get(attrs, fm.acreage)),
        land_value=clean_number(_get(attrs, fm.land_value)),
        building_value=clean_number(_get(attrs, fm.building_value)),
        total_value=clean_number(_get(attrs, fm.total_value)),
        use_code=clean_text(_get(attrs, fm.use_code)),
        use_label=clean_text(_get(attrs, fm.use_label)),
        land_code=clean_text(_get(attrs, fm.land_code)),
        billing_class=clean_text(_get(attrs, fm.billing_class)),
        deed_date=clean_date(_get(attrs, fm.deed_date)),
        sale_date=clean_date(_get(attrs, fm.sale_date)),
        sale_price=clean_number(_get(attrs, fm.sale_price)),
        owner_name=owner_name,
        owner_mailing=clean_text(_get(attrs, fm.owner_mailing)),
        owner_type=classify_owner(owner_name),
        raw=dict(attrs),
    )


AUDITED_FIELDS = [f.name for f in fields(FieldMap) if f.name != "pin"] + ["geometry"]


def null_fields(parcel: Parcel) -> List[str]:
    return [name for name in AUDITED_FIELDS if getattr(parcel, name) is None]
