"""
Country boundaries (Natural Earth admin-0 and GeoJSON mirrors).

The first phase of a run. Every upserted country feeds the run's code lookup
so later phases can complete one-code features.
"""

from collections.abc import Iterator
from typing import Any

from georesolver.ingesters.base import BaseIngester


class CountryIngester(BaseIngester):
    """Mandatory country phase."""

    dataset = "countries"

    def parse(self, collection: dict[str, Any]) -> Iterator:
        extractor = self.extractor()
        for feature in collection.get("features", []):
            yield extractor.extract_country(feature)
