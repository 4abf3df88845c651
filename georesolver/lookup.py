"""
Read path: which country, region, city and timezone contain a point.

Each entity is one containment query against the store. The UTC offset comes
from the containing IANA zone; without one (timezones never loaded, open
ocean, or a zone the local tz database does not know) it is approximated from
the longitude.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger

from georesolver.store.base import ReferenceStore
from georesolver.utils.geo import approximate_utc_offset, is_valid_coordinates


OFFSET_FROM_TIMEZONE = "timezone"
OFFSET_FROM_LONGITUDE = "longitude"


@dataclass
class LookupResult:
    """Entities containing a point."""
    latitude: float
    longitude: float
    country_iso_alpha2_code: Optional[str] = None
    country_iso_alpha3_code: Optional[str] = None
    country_name_latin: Optional[str] = None
    region_identifier: Optional[str] = None
    region_name_latin: Optional[str] = None
    city_identifier: Optional[str] = None
    city_name_latin: Optional[str] = None
    timezone_id: Optional[str] = None
    timezone_raw_offset_seconds: int = 0
    timezone_dst_offset_seconds: int = 0
    offset_source: str = OFFSET_FROM_LONGITUDE
    data_updated_at: Optional[datetime] = None

    @property
    def timezone_total_offset_seconds(self) -> int:
        return self.timezone_raw_offset_seconds + self.timezone_dst_offset_seconds

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timezone_total_offset_seconds"] = self.timezone_total_offset_seconds
        if self.data_updated_at is not None:
            data["data_updated_at"] = self.data_updated_at.isoformat()
        return data


def zone_offsets(timezone_id: str, at: Optional[datetime] = None) -> Optional[tuple[int, int]]:
    """(raw, dst) offsets in seconds of an IANA zone at ``at`` (default: now)."""
    try:
        zone = ZoneInfo(timezone_id)
    except (ZoneInfoNotFoundError, ValueError):
        return None
    moment = (at or datetime.now(timezone.utc)).astimezone(zone)
    total = int(moment.utcoffset().total_seconds())
    dst_delta = moment.dst()
    dst = int(dst_delta.total_seconds()) if dst_delta else 0
    return total - dst, dst


class GeoLookupService:
    """
    Point lookup over a reference store.

    Usage:
        result = GeoLookupService(store).lookup(52.52, 13.40)
        if result is None:
            ...  # point is outside every country
    """

    def __init__(self, store: ReferenceStore):
        self.store = store

    def lookup(self, lat: float, lon: float, at: Optional[datetime] = None) -> Optional[LookupResult]:
        """
        Resolve a WGS84 point.

        Returns:
            LookupResult, or None when no country contains the point

        Raises:
            ValueError: If the coordinates are out of range
        """
        if not is_valid_coordinates(lat, lon):
            raise ValueError(f"Invalid coordinates: lat={lat}, lon={lon}")

        country = self.store.find_containing("countries", lon, lat)
        if country is None:
            logger.debug(f"No country contains ({lat}, {lon})")
            return None

        result = LookupResult(
            latitude=lat,
            longitude=lon,
            country_iso_alpha2_code=country.get("iso_alpha2_code"),
            country_iso_alpha3_code=country.get("iso_alpha3_code"),
            country_name_latin=country.get("name_latin"),
            data_updated_at=self.store.get_watermark(),
        )

        region = self.store.find_containing("regions", lon, lat)
        if region is not None:
            result.region_identifier = region["identifier"]
            result.region_name_latin = region["name_latin"]

        city = self.store.find_containing("cities", lon, lat)
        if city is not None:
            result.city_identifier = city["identifier"]
            result.city_name_latin = city["name_latin"]

        zone = self.store.find_containing("timezones", lon, lat)
        offsets = None
        if zone is not None:
            result.timezone_id = zone["timezone_id"]
            offsets = zone_offsets(zone["timezone_id"], at)

        if offsets is not None:
            result.timezone_raw_offset_seconds, result.timezone_dst_offset_seconds = offsets
            result.offset_source = OFFSET_FROM_TIMEZONE
        else:
            result.timezone_raw_offset_seconds = approximate_utc_offset(lon) * 3600
            result.offset_source = OFFSET_FROM_LONGITUDE

        return result
