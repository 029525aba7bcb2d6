from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Dict, List, Optional

from parcel_signals.errors import ConfigurationError


# NC State Plane (NAD83, US feet). Requesting geometry in a feet-based
# projection keeps planar area in native units convertible straight to acres.
NC_STATE_PLANE_FT = 2264

NC_ONEMAP_PARCELS_URL = (
    "https://services.nconemap.gov/secure/rest/services/NC1Map_Parcels/FeatureServer/0"
)


@dataclass(frozen=True)
class FieldMap:
    """Source attribute name for each canonical parcel field.

    ``pin`` is mandatory; every other mapping is optional and None means the
    source does not publish that value.
    """

    pin: str
    address: Optional[str] = None
    city: Optional[str] = None
    zip_code: Optional[str] = None
    land_value: Optional[str] = None
    building_value: Optional[str] = None
    total_value: Optional[str] = None
    use_code: Optional[str] = None
    use_label: Optional[str] = None
    land_code: Optional[str] = None
    billing_class: Optional[str] = None
    deed_date: Optional[str] = None
    sale_date: Optional[str] = None
    sale_price: Optional[str] = None
    owner_name: Optional[str] = None
    owner_mailing: Optional[str] = None
    acreage: Optional[str] = None

    @classmethod
    def from_mapping(cls, mapping: Dict[str, str]) -> "FieldMap":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise ConfigurationError(f"unknown canonical field(s): {', '.join(unknown)}")
        if not (mapping.get("pin") or "").strip():
            raise ConfigurationError("a pin field mapping is required")
        return cls(**mapping)

    def mapped(self) -> Dict[str, str]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name)}

    def out_fields(self) -> List[str]:
        return sorted(set(self.mapped().values()))


@dataclass(frozen=True)
class AcceptanceThresholds:
    min_rows: int = 0
    min_geometry_pct: float = 0.0
    min_history_rows: int = 0


@dataclass(frozen=True)
class SourceAdapter:
    jurisdiction: str
    display_name: str
    layer_url: str
    fields: FieldMap
    where: Optional[str] = None
    sequence_field: str = "OBJECTID"
    out_sr: int = NC_STATE_PLANE_FT
    feet_per_unit: float = 1.0
    acceptance: AcceptanceThresholds = field(default_factory=AcceptanceThresholds)

    def __post_init__(self) -> None:
        if not (self.jurisdiction or "").strip():
            raise ConfigurationError("source adapter requires a jurisdiction")
        if not (self.layer_url or "").startswith(("http://", "https://")):
            raise ConfigurationError(f"{self.jurisdiction}: layer_url must be an http(s) URL")
        if not isinstance(self.fields, FieldMap) or not (self.fields.pin or "").strip():
            raise ConfigurationError(f"{self.jurisdiction}: a pin field mapping is required")
        if not (self.sequence_field or "").strip():
            raise ConfigurationError(f"{self.jurisdiction}: sequence_field is required")
        if self.feet_per_unit <= 0:
            raise ConfigurationError(f"{self.jurisdiction}: feet_per_unit must be positive")

    @property
    def row_filter(self) -> str:
        return (self.where or "").strip() or "1=1"

    def out_fields(self) -> List[str]:
        return sorted(set(self.fields.out_fields() + [self.sequence_field]))


def _nc_onemap(jurisdiction: str, county_filter: str) -> SourceAdapter:
    return SourceAdapter(
        jurisdiction=jurisdiction,
        display_name=f"{jurisdiction.title()} County",
        layer_url=NC_ONEMAP_PARCELS_URL,
        where=f"COUNTY = '{county_filter}'",
        fields=FieldMap.from_mapping(
            {
                "pin": "PIN",
                "land_value": "LAND_VALUE",
                "total_value": "TOTAL_VALUE",
                "deed_date": "DEED_DATE",
                "owner_name": "OWNER_NAME",
            }
        ),
    )


_ADAPTERS: Dict[str, SourceAdapter] = {}


def register_source(adapter: SourceAdapter) -> SourceAdapter:
    key = adapter.jurisdiction.strip().lower()
    if key in _ADAPTERS:
        raise ConfigurationError(f"duplicate source adapter: {key}")
    _ADAPTERS[key] = adapter
    return adapter


register_source(
    SourceAdapter(
        jurisdiction="wake",
        display_name="Wake County",
        layer_url="https://maps.wakegov.com/arcgis/rest/services/Property/Parcels/FeatureServer/0",
        fields=FieldMap(
            pin="PIN_NUM",
            address="SITE_ADDRESS",
            city="CITY_DECODE",
            zip_code="ZIPNUM",
            land_value="LAND_VAL",
            building_value="BLDG_VAL",
            total_value="TOTAL_VALUE_ASSD",
            use_code="TYPE_AND_USE",
            use_label="TYPE_USE_DECODE",
            land_code="LAND_CODE",
            billing_class="BILLING_CLASS_DECODE",
            deed_date="DEED_DATE",
            sale_date="SALE_DATE",
            sale_price="TOTSALPRICE",
            owner_name="OWNER",
            owner_mailing="ADDR1",
            acreage="REID_ACREAG",
        ),
        acceptance=AcceptanceThresholds(
            min_rows=100_000, min_geometry_pct=99.0, min_history_rows=100_000
        ),
    )
)

register_source(
    SourceAdapter(
        jurisdiction="mecklenburg",
        display_name="Mecklenburg County",
        layer_url="https://mcmap.org/rest/services/CountyData/Parcels/MapServer/0",
        fields=FieldMap(
            pin="PARCEL_ID",
            address="SITE_ADDR",
            land_value="LAND_VALUE",
            building_value="BLDG_VALUE",
            total_value="TOTAL_VALUE",
            use_code="USE_CODE",
            deed_date="DEED_DATE",
            sale_date="SALE_DATE",
            sale_price="SALE_PRICE",
            owner_name="OWNER_NAME",
            acreage="ACREAGE",
        ),
        acceptance=AcceptanceThresholds(
            min_rows=50_000, min_geometry_pct=99.0, min_history_rows=50_000
        ),
    )
)

register_source(_nc_onemap("durham", "DURHAM"))
register_source(_nc_onemap("orange", "ORANGE"))
register_source(_nc_onemap("chatham", "CHATHAM"))


def get_source(jurisdiction: str) -> SourceAdapter:
    key = (jurisdiction or "").strip().lower()
    adapter = _ADAPTERS.get(key)
    if adapter is None:
        raise ConfigurationError(f"Jurisdiction {jurisdiction!r} not supported")
    return adapter


def list_sources() -> List[str]:
    return sorted(_ADAPTERS.keys())
