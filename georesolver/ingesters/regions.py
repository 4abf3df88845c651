"""
First-level administrative regions (Natural Earth admin-1).
"""

from collections.abc import Iterator
from typing import Any, Optional

from georesolver.config import settings
from georesolver.extraction import RegionRecord
from georesolver.ingesters.base import BaseIngester


class RegionIngester(BaseIngester):
    """
    Optional region phase.

    When ``countries`` (ISO alpha-2) is non-empty only regions of those
    countries are loaded.
    """

    dataset = "regions"

    def __init__(self, *args, countries: Optional[list[str]] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.countries = set(countries if countries is not None else settings.loader.region_countries_list)

    def parse(self, collection: dict[str, Any]) -> Iterator:
        extractor = self.extractor()
        for feature in collection.get("features", []):
            result = extractor.extract_region(feature)
            if (
                self.countries
                and isinstance(result, RegionRecord)
                and result.country_iso_alpha2_code not in self.countries
            ):
                continue
            yield result
