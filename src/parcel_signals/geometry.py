"""Geometry normalization for incoming parcel shapes.

Accepted encodings:
  - Esri JSON polygons: ``{"rings": [[[x, y], ...], ...]}``
  - GeoJSON ``Polygon`` / ``MultiPolygon``
  - Bare points (Esri ``{"x", "y"}`` or GeoJSON ``Point``), kept only as a
    fallback centroid

Everything else (polylines, multipoints, collections) is rejected.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Sequence

from shapely.geometry import LinearRing, MultiPolygon, Polygon, mapping, shape
from shapely.errors import GEOSException
from shapely.geometry.base import BaseGeometry
from shapely.validation import make_valid

from parcel_signals.errors import UnsupportedGeometry
from parcel_signals.models import NormalizedGeometry


SQ_FT_PER_ACRE = 43560.0

_POLYGONAL = ("Polygon", "MultiPolygon")

EMPTY = NormalizedGeometry(geojson=None, centroid=None, bbox=None, area_acres=None)


def area_to_acres(area_native: float, feet_per_unit: float = 1.0) -> float:
    return float(area_native) * float(feet_per_unit) ** 2 / SQ_FT_PER_ACRE


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _clean_ring(ring: Any) -> Optional[List[tuple]]:
    if not isinstance(ring, (list, tuple)):
        return None
    out: List[tuple] = []
    for pt in ring:
        if (
            isinstance(pt, (list, tuple))
            and len(pt) >= 2
            and _is_number(pt[0])
            and _is_number(pt[1])
        ):
            out.append((float(pt[0]), float(pt[1])))
    if len(out) < 4:
        return None
    return out


def _polygon_from_rings(rings: Sequence[Any]) -> BaseGeometry:
    # Esri: exterior rings are clockwise, holes counter-clockwise.
    shells: List[List[tuple]] = []
    holes: List[List[tuple]] = []
    for ring in rings:
        pts = _clean_ring(ring)
        if pts is None:
            continue
        if LinearRing(pts).is_ccw:
            holes.append(pts)
        else:
            shells.append(pts)
    if not shells:
        # Some servers ignore the winding convention.
        shells, holes = holes, []
    if not shells:
        raise UnsupportedGeometry("polygon has no usable rings")

    parts = [(shell, []) for shell in shells]
    for hole in holes:
        inside = Polygon(hole).representative_point()
        for shell, shell_holes in parts:
            if Polygon(shell).contains(inside):
                shell_holes.append(hole)
                break
        else:
            parts.append((hole, []))

    polygons = [Polygon(shell, shell_holes) for shell, shell_holes in parts]
    if len(polygons) == 1:
        return polygons[0]
    return MultiPolygon(polygons)


def _polygonal_part(geom: BaseGeometry) -> Optional[BaseGeometry]:
    if geom.is_empty:
        return None
    if geom.geom_type in _POLYGONAL:
        return geom
    if geom.geom_type == "GeometryCollection":
        polys: List[Polygon] = []
        for part in geom.geoms:
            if part.geom_type == "Polygon":
                polys.append(part)
            elif part.geom_type == "MultiPolygon":
                polys.extend(part.geoms)
        if not polys:
            return None
        return polys[0] if len(polys) == 1 else MultiPolygon(polys)
    return None


def _repair(geom: BaseGeometry) -> BaseGeometry:
    if geom.is_valid:
        return geom
    repaired = _polygonal_part(make_valid(geom))
    if repaired is None or repaired.is_empty:
        raise UnsupportedGeometry("invalid polygon could not be repaired")
    return repaired


def _from_point(x: float, y: float) -> NormalizedGeometry:
    return NormalizedGeometry(geojson=None, centroid=(float(x), float(y)), bbox=None, area_acres=None)


def _from_polygonal(geom: BaseGeometry, feet_per_unit: float) -> NormalizedGeometry:
    geom = _repair(geom)
    if geom.area <= 0:
        raise UnsupportedGeometry("polygon has zero area")
    centroid = geom.centroid
    return NormalizedGeometry(
        geojson=mapping(geom),
        centroid=(float(centroid.x), float(centroid.y)),
        bbox=tuple(float(v) for v in geom.bounds),
        area_acres=area_to_acres(geom.area, feet_per_unit),
    )


def normalize_geometry(raw: Optional[Dict[str, Any]], *, feet_per_unit: float = 1.0) -> NormalizedGeometry:
    """Normalize one source geometry.

    Returns ``EMPTY`` when the source published no geometry at all; raises
    ``UnsupportedGeometry`` for shapes that are present but unusable.
    """

    if raw is None or raw == {}:
        return EMPTY
    if not isinstance(raw, dict):
        raise UnsupportedGeometry(f"unexpected geometry payload: {type(raw).__name__}")

    if "rings" in raw:
        rings = raw.get("rings")
        if not rings:
            return EMPTY
        if not isinstance(rings, list):
            raise UnsupportedGeometry("rings must be a list")
        try:
            geom = _polygon_from_rings(rings)
        except (GEOSException, ValueError) as exc:
            raise UnsupportedGeometry(f"malformed rings: {exc}") from exc
        return _from_polygonal(geom, feet_per_unit)

    if "x" in raw and "y" in raw:
        x, y = raw.get("x"), raw.get("y")
        if x is None and y is None:
            return EMPTY
        if not (_is_number(x) and _is_number(y)):
            raise UnsupportedGeometry("point coordinates are not numeric")
        return _from_point(x, y)

    gtype = raw.get("type")
    if gtype in _POLYGONAL:
        try:
            geom = shape(raw)
        except (GEOSException, ValueError, TypeError, KeyError, IndexError) as exc:
            raise UnsupportedGeometry(f"malformed {gtype}: {exc}") from exc
        return _from_polygonal(geom, feet_per_unit)

    if gtype == "Point":
        coords = raw.get("coordinates") or []
        if len(coords) >= 2 and _is_number(coords[0]) and _is_number(coords[1]):
            return _from_point(coords[0], coords[1])
        raise UnsupportedGeometry("malformed Point")

    if "paths" in raw or "points" in raw:
        raise UnsupportedGeometry("Esri polyline/multipoint geometry is not a parcel")

    raise UnsupportedGeometry(f"unsupported geometry type: {gtype or 'unknown'}")
