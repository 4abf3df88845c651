"""Phase ingesters, in run order."""

from georesolver.ingesters.base import BaseIngester
from georesolver.ingesters.cities import CityIngester
from georesolver.ingesters.countries import CountryIngester
from georesolver.ingesters.regions import RegionIngester
from georesolver.ingesters.timezones import TimezoneIngester

PHASES = [
    CountryIngester,
    RegionIngester,
    CityIngester,
    TimezoneIngester,
]

__all__ = [
    "BaseIngester",
    "CountryIngester",
    "RegionIngester",
    "CityIngester",
    "TimezoneIngester",
    "PHASES",
]
