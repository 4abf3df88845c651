"""
IANA timezone polygons (timezone-boundary-builder).
"""

from collections.abc import Iterator
from typing import Any

from georesolver.ingesters.base import BaseIngester


class TimezoneIngester(BaseIngester):
    dataset = "timezones"

    def parse(self, collection: dict[str, Any]) -> Iterator:
        extractor = self.extractor()
        for feature in collection.get("features", []):
            yield extractor.extract_timezone(feature)
