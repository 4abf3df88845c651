"""
Location API Routes.

Resolves a WGS84 point to the entities containing it.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from georesolver.database import get_db
from georesolver.lookup import GeoLookupService
from georesolver.store.postgis import PostGISStore

logger = logging.getLogger(__name__)
router = APIRouter()


def get_lookup_service(db: Session = Depends(get_db)) -> GeoLookupService:
    """Dependency: lookup service over the request's database session."""
    return GeoLookupService(PostGISStore(session=db))


@router.get("")
def resolve_location(
    lat: float = Query(..., description="Latitude (WGS84)"),
    lon: float = Query(..., description="Longitude (WGS84)"),
    service: GeoLookupService = Depends(get_lookup_service),
):
    """
    Get the country, region, city and timezone offset for a point.

    Returns 400 for out-of-range coordinates and 404 when no country
    contains the point.
    """
    try:
        result = service.lookup(lat, lon)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if result is None:
        raise HTTPException(status_code=404, detail="No country contains this point")

    logger.debug(f"Resolved ({lat}, {lon}) -> {result.country_iso_alpha2_code}")
    return result.to_dict()
