"""
Cities: Natural Earth populated places plus optional Geofabrik OSM polygons.

Natural Earth places are points and are buffered into small polygons. When
OSM cities are enabled, place polygons from the national Geofabrik extracts
of the selected countries are merged into the same phase; their features
carry no country field, so the extract's country code is the default.
"""

from collections.abc import Iterator
from typing import Any, Optional

from loguru import logger

from georesolver.config import settings
from georesolver.extraction import OSM_CITY_RULES
from georesolver.ingesters.base import BaseIngester
from georesolver.sources import ConversionError, GeofabrikPathResolver, SourceUnavailableError, load_country_places


class CityIngester(BaseIngester):
    """Optional city phase."""

    dataset = "cities"

    def __init__(
        self,
        *args,
        use_osm: Optional[bool] = None,
        osm_countries: Optional[list[str]] = None,
        resolver: Optional[GeofabrikPathResolver] = None,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.use_osm = settings.loader.use_osm_cities if use_osm is None else use_osm
        self.osm_countries = osm_countries if osm_countries is not None else settings.loader.city_countries_list
        self.resolver = resolver or GeofabrikPathResolver()
        self.point_buffer = settings.pipeline.city_point_buffer_degrees
        self.osm_features: dict[str, list[dict[str, Any]]] = {}

    def selected_osm_countries(self) -> list[str]:
        """Configured countries, or every known country with a Geofabrik extract."""
        if self.osm_countries:
            return self.osm_countries
        supported = set(self.resolver.supported())
        known = {a2 for a2, _ in self.store.country_code_pairs() if a2}
        return sorted(known & supported)

    def fetch_osm(self) -> None:
        for code in self.selected_osm_countries():
            try:
                self.osm_features[code] = load_country_places(code, resolver=self.resolver, client=self.client)
            except (ConversionError, ValueError) as e:
                logger.warning(f"[cities] OSM places unavailable for {code}: {e}")

    def fetch(self) -> dict[str, Any]:
        if self.use_osm:
            self.fetch_osm()
        try:
            return super().fetch()
        except (SourceUnavailableError, ConversionError) as e:
            if not any(self.osm_features.values()):
                raise
            logger.warning(f"[cities] Natural Earth places unavailable, loading OSM places only: {e}")
            return {"type": "FeatureCollection", "features": []}

    def parse(self, collection: dict[str, Any]) -> Iterator:
        extractor = self.extractor(point_buffer=self.point_buffer)
        for feature in collection.get("features", []):
            yield extractor.extract_city(feature)

        for code, features in self.osm_features.items():
            osm_extractor = self.extractor(
                city_rules=OSM_CITY_RULES, default_country=code, point_buffer=self.point_buffer,
            )
            for feature in features:
                yield osm_extractor.extract_city(feature)
