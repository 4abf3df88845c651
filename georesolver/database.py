"""
Database models for the GeoResolver reference database.

Uses SQLAlchemy 2.0 with GeoAlchemy2 for PostGIS support.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    create_engine,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    sessionmaker,
)
from sqlalchemy.sql import func
from geoalchemy2 import Geometry

from georesolver.config import settings


# =============================================================================
# Database Engine and Session
# =============================================================================

engine = create_engine(
    settings.database.url,
    echo=settings.pipeline.log_level == "DEBUG",
    pool_pre_ping=True,
    pool_size=5,
    max_overflow=5,
    pool_timeout=30,
    pool_recycle=1800,
    connect_args={
        "connect_timeout": 10,
        "application_name": "georesolver",
    }
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Dependency for FastAPI to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# =============================================================================
# Base Model
# =============================================================================

class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def _boundary():
    return Geometry(geometry_type="MULTIPOLYGON", srid=4326, spatial_index=True)


# =============================================================================
# Reference Entities
# =============================================================================

class Country(Base):
    """
    Admin-0 country.

    Keyed by ISO 3166-1 alpha-2 or alpha-3, whichever the sources supplied;
    each code is unique when present and the two may be filled independently.
    """
    __tablename__ = "countries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    iso_alpha2_code: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    iso_alpha3_code: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    name_latin: Mapped[str] = mapped_column(String(255), nullable=False)
    wikidata_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    geometry: Mapped[str] = mapped_column(_boundary(), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "iso_alpha2_code IS NOT NULL OR iso_alpha3_code IS NOT NULL",
            name="countries_iso_code_check",
        ),
        UniqueConstraint("iso_alpha2_code", name="countries_iso_alpha2_unique"),
        UniqueConstraint("iso_alpha3_code", name="countries_iso_alpha3_unique"),
    )

    def __repr__(self) -> str:
        return f"<Country {self.iso_alpha2_code or '--'}/{self.iso_alpha3_code or '---'} {self.name_latin}>"


class Region(Base):
    """
    First-level administrative region (state, province, oblast ...).

    Identifier is unique within the owning country, under either country code.
    """
    __tablename__ = "regions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    identifier: Mapped[str] = mapped_column(String(100), nullable=False)
    name_latin: Mapped[str] = mapped_column(String(255), nullable=False)
    name_local: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    name_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    country_iso_alpha2_code: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    country_iso_alpha3_code: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    wikidata_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    geometry: Mapped[str] = mapped_column(_boundary(), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "country_iso_alpha2_code IS NOT NULL OR country_iso_alpha3_code IS NOT NULL",
            name="regions_country_code_check",
        ),
        Index("regions_unique_alpha2", "identifier", "country_iso_alpha2_code", unique=True),
        Index("regions_unique_alpha3", "identifier", "country_iso_alpha3_code", unique=True),
        Index("idx_regions_country_alpha2", "country_iso_alpha2_code"),
        Index("idx_regions_country_alpha3", "country_iso_alpha3_code"),
        Index("idx_regions_name_key", "name_key"),
    )

    def __repr__(self) -> str:
        return f"<Region {self.identifier} ({self.country_iso_alpha2_code or self.country_iso_alpha3_code})>"


class City(Base):
    """
    Significant city or town.

    region_identifier references Region.identifier within the same country;
    it is resolved by the reconciliation pass and is not a foreign key.
    """
    __tablename__ = "cities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    identifier: Mapped[str] = mapped_column(String(100), nullable=False)
    name_latin: Mapped[str] = mapped_column(String(255), nullable=False)
    name_local: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    country_iso_alpha2_code: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    country_iso_alpha3_code: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    region_identifier: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    wikidata_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    geometry: Mapped[str] = mapped_column(_boundary(), nullable=False)

    __table_args__ = (
        Index("cities_unique_alpha2", "identifier", "country_iso_alpha2_code", unique=True),
        Index("cities_unique_alpha3", "identifier", "country_iso_alpha3_code", unique=True),
        Index("idx_cities_country_alpha2", "country_iso_alpha2_code"),
        Index("idx_cities_country_alpha3", "country_iso_alpha3_code"),
        Index("idx_cities_region", "region_identifier"),
    )

    def __repr__(self) -> str:
        return f"<City {self.identifier} {self.name_latin}>"


class Timezone(Base):
    """IANA timezone polygon."""
    __tablename__ = "timezones"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timezone_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    geometry: Mapped[str] = mapped_column(_boundary(), nullable=False)

    def __repr__(self) -> str:
        return f"<Timezone {self.timezone_id}>"


# =============================================================================
# Pipeline Bookkeeping
# =============================================================================

class LastUpdate(Base):
    """Singleton watermark: completion time of the last fully successful run."""
    __tablename__ = "last_update"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("id = 1", name="last_update_singleton"),
    )


class AppLock(Base):
    """Named, time-bounded mutual-exclusion lock shared by all process instances."""
    __tablename__ = "app_locks"

    lock_name: Mapped[str] = mapped_column(String(100), primary_key=True)
    holder: Mapped[str] = mapped_column(String(255), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<AppLock {self.lock_name} held by {self.holder} until {self.expires_at}>"


REFERENCE_TABLES = ("countries", "regions", "cities", "timezones")


# =============================================================================
# Helper Functions
# =============================================================================

def create_all_tables(bind=None):
    """Enable PostGIS and create all database tables."""
    bind = bind or engine
    with bind.begin() as conn:
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS postgis"))
    Base.metadata.create_all(bind=bind)


def drop_all_tables(bind=None):
    """Drop all database tables. USE WITH CAUTION!"""
    Base.metadata.drop_all(bind=bind or engine)
