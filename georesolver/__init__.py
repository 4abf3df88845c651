"""GeoResolver reference-data pipeline: countries, regions, cities and timezones."""

__version__ = "1.0.0"
