"""Geometry helpers shared by the extractor, the stores and the lookup service."""

from typing import Any

from shapely import make_valid
from shapely.errors import GEOSException
from shapely.geometry import MultiPolygon, Polygon, shape
from shapely.geometry.base import BaseGeometry


class InvalidGeometryError(ValueError):
    """Raised when a feature geometry cannot be turned into a multipolygon."""
    pass


def is_valid_coordinates(lat: float, lon: float) -> bool:
    """Check if latitude and longitude are valid.

    Args:
        lat: Latitude in degrees
        lon: Longitude in degrees

    Returns:
        True if coordinates are valid, False otherwise
    """
    return -90 <= lat <= 90 and -180 <= lon <= 180


def _polygons(geom: BaseGeometry) -> list[Polygon]:
    if isinstance(geom, Polygon):
        return [geom]
    if isinstance(geom, MultiPolygon):
        return list(geom.geoms)
    # GeometryCollection left behind by make_valid
    parts = []
    for part in getattr(geom, "geoms", []):
        parts.extend(_polygons(part))
    return parts


def to_multipolygon(geometry: dict[str, Any] | None, point_buffer: float = 0.0) -> MultiPolygon:
    """Convert a GeoJSON geometry mapping into a valid shapely MultiPolygon.

    Polygons are promoted, invalid rings are repaired with make_valid and
    reduced to their polygonal part. Points and multipoints are buffered by
    ``point_buffer`` degrees when it is positive, otherwise rejected.

    Args:
        geometry: GeoJSON geometry object (``{"type": ..., "coordinates": ...}``)
        point_buffer: Buffer radius in degrees applied to point geometries

    Returns:
        Non-empty MultiPolygon in EPSG:4326

    Raises:
        InvalidGeometryError: If nothing polygonal can be recovered
    """
    if not geometry or not geometry.get("type"):
        raise InvalidGeometryError("missing geometry")

    try:
        geom = shape(geometry)
    except (GEOSException, ValueError, TypeError, KeyError, IndexError) as e:
        raise InvalidGeometryError(f"unparseable geometry: {e}") from e

    if geom.is_empty:
        raise InvalidGeometryError("empty geometry")

    if geom.geom_type in ("Point", "MultiPoint"):
        if point_buffer <= 0:
            raise InvalidGeometryError("point geometry without buffer")
        geom = geom.buffer(point_buffer)

    if not geom.is_valid:
        geom = make_valid(geom)

    polygons = [p for p in _polygons(geom) if not p.is_empty]
    if not polygons:
        raise InvalidGeometryError(f"no polygonal part in {geom.geom_type}")

    return MultiPolygon(polygons)


def approximate_utc_offset(lon: float) -> int:
    """Approximate a UTC offset in whole hours from longitude (15 degrees per hour)."""
    return int(round(lon / 15.0))
