"""Dataset sources: mirror fetching, archive conversion and Geofabrik extracts."""

from georesolver.sources.archives import ConversionError, convert_shapefile, load_feature_collection
from georesolver.sources.geofabrik import GeofabrikPathResolver, download_extract, load_country_places
from georesolver.sources.mirrors import (
    FetchedSource,
    SourceUnavailableError,
    fetch_datasets,
    fetch_first_available,
)

__all__ = [
    "fetch_first_available",
    "fetch_datasets",
    "FetchedSource",
    "SourceUnavailableError",
    "ConversionError",
    "convert_shapefile",
    "load_feature_collection",
    "GeofabrikPathResolver",
    "download_extract",
    "load_country_places",
]
