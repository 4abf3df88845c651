"""
PostGIS implementation of the reference store.

Upserts are single ``INSERT ... ON CONFLICT DO UPDATE`` statements rendered
from the entity's merge policy; reconciliation primitives are set-based SQL
so a whole stage runs as one statement under its own timeout.
"""

from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Optional

from geoalchemy2.shape import from_shape
from loguru import logger
from sqlalchemy import delete, func, select, text, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from georesolver.database import (
    AppLock,
    City,
    Country,
    REFERENCE_TABLES,
    LastUpdate,
    Region,
    SessionLocal,
    Timezone,
)
from georesolver.extraction import CityRecord, CountryRecord, RegionRecord, TimezoneRecord
from georesolver.store.base import (
    BOUNDARY_INTERSECTION,
    CENTROID_CONTAINMENT,
    CodeConflictError,
    ReferenceStore,
)
from georesolver.store.merge import (
    CITY_POLICY,
    COUNTRY_POLICY,
    REGION_POLICY,
    MergePolicy,
    record_values,
)


TABLE_MODELS = dict(zip(REFERENCE_TABLES, (Country, Region, City, Timezone)))

UNIQUE_VIOLATION = "23505"

# Region shares a country with a city when either code matches
SAME_COUNTRY = """(
    (c.country_iso_alpha2_code IS NOT NULL AND r.country_iso_alpha2_code = c.country_iso_alpha2_code)
    OR (c.country_iso_alpha3_code IS NOT NULL AND r.country_iso_alpha3_code = c.country_iso_alpha3_code)
)"""

STAGE_PREDICATES = {
    CENTROID_CONTAINMENT: "ST_Contains(r.geometry, ST_Centroid(c.geometry))",
    BOUNDARY_INTERSECTION: "ST_Intersects(r.geometry, c.geometry)",
}

ASSIGN_REGIONS_SQL = """
    UPDATE cities AS target
    SET region_identifier = sub.identifier
    FROM (
        SELECT DISTINCT ON (c.id) c.id AS city_id, r.identifier
        FROM cities c
        JOIN regions r ON {same_country}
        WHERE c.region_identifier IS NULL
          AND {predicate}
        ORDER BY c.id, r.id
    ) sub
    WHERE target.id = sub.city_id
"""

REWRITE_HINTS_BY_NAME_SQL = f"""
    UPDATE cities AS target
    SET region_identifier = sub.identifier
    FROM (
        SELECT DISTINCT ON (c.id) c.id AS city_id, r.identifier
        FROM cities c
        JOIN regions r ON {SAME_COUNTRY} AND r.name_key = c.region_identifier
        WHERE c.region_identifier IS NOT NULL
          AND NOT EXISTS (
              SELECT 1 FROM regions r2
              WHERE r2.identifier = c.region_identifier
                AND ((c.country_iso_alpha2_code IS NOT NULL AND r2.country_iso_alpha2_code = c.country_iso_alpha2_code)
                  OR (c.country_iso_alpha3_code IS NOT NULL AND r2.country_iso_alpha3_code = c.country_iso_alpha3_code))
          )
        ORDER BY c.id, r.id
    ) sub
    WHERE target.id = sub.city_id
      AND target.region_identifier IS DISTINCT FROM sub.identifier
"""

CLEAR_INVALID_HINTS_SQL = f"""
    UPDATE cities AS c
    SET region_identifier = NULL
    WHERE c.region_identifier IS NOT NULL
      AND NOT EXISTS (
          SELECT 1 FROM regions r
          WHERE r.identifier = c.region_identifier
            AND {SAME_COUNTRY}
            AND (ST_Intersects(r.geometry, c.geometry)
                 OR ST_Contains(r.geometry, ST_Centroid(c.geometry)))
      )
"""

DELETE_CROSS_COUNTRY_SQL = f"""
    DELETE FROM cities AS c
    WHERE c.region_identifier IS NOT NULL
      AND EXISTS (
          SELECT 1 FROM regions r
          WHERE r.identifier = c.region_identifier
            AND {SAME_COUNTRY}
            AND ((r.country_iso_alpha2_code IS NOT NULL AND c.country_iso_alpha2_code IS NOT NULL
                  AND r.country_iso_alpha2_code <> c.country_iso_alpha2_code)
              OR (r.country_iso_alpha3_code IS NOT NULL AND c.country_iso_alpha3_code IS NOT NULL
                  AND r.country_iso_alpha3_code <> c.country_iso_alpha3_code))
      )
"""

DELETE_UNASSIGNED_SQL = """
    DELETE FROM cities
    WHERE region_identifier IS NULL
      AND (country_iso_alpha2_code IS NOT NULL OR country_iso_alpha3_code IS NOT NULL)
"""

COUNT_CODELESS_SQL = """
    SELECT COUNT(*) FROM cities
    WHERE country_iso_alpha2_code IS NULL AND country_iso_alpha3_code IS NULL
"""

COUNT_REGIONS_WITHOUT_COUNTRY_SQL = """
    SELECT COUNT(*) FROM regions r
    WHERE NOT EXISTS (
        SELECT 1 FROM countries co
        WHERE (r.country_iso_alpha2_code IS NOT NULL AND co.iso_alpha2_code = r.country_iso_alpha2_code)
           OR (r.country_iso_alpha3_code IS NOT NULL AND co.iso_alpha3_code = r.country_iso_alpha3_code)
    )
"""

COUNT_REGION_CONFLICTS_SQL = """
    SELECT COUNT(*) FROM regions r
    WHERE r.country_iso_alpha2_code IS NOT NULL
      AND r.country_iso_alpha3_code IS NOT NULL
      AND EXISTS (
          SELECT 1 FROM countries co
          WHERE co.iso_alpha2_code = r.country_iso_alpha2_code
            AND co.iso_alpha3_code IS NOT NULL
            AND co.iso_alpha3_code <> r.country_iso_alpha3_code
      )
"""


def _conflict_column(error: IntegrityError) -> Optional[str]:
    """Name of the code family behind a unique violation, if it was one."""
    orig = error.orig
    if getattr(orig, "pgcode", None) not in (None, UNIQUE_VIOLATION):
        return None
    diag = getattr(orig, "diag", None)
    constraint = (getattr(diag, "constraint_name", None) or str(orig)).lower()
    if "alpha3" in constraint:
        return "alpha3"
    if "alpha2" in constraint:
        return "alpha2"
    return None


def _row_dict(row: Any) -> dict[str, Any]:
    return {
        column.key: getattr(row, column.key)
        for column in row.__table__.columns
        if column.key != "geometry"
    }


class PostGISStore(ReferenceStore):
    """
    Reference store backed by PostgreSQL/PostGIS through a SQLAlchemy session.

    Usage:
        with PostGISStore() as store:
            with store.transaction():
                store.upsert_country(record)
    """

    def __init__(self, session: Optional[Session] = None, session_factory=SessionLocal):
        self.session_factory = session_factory
        self.session = session or session_factory()
        self._owns_session = session is None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        if self._owns_session:
            self.session.close()

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @contextmanager
    def transaction(self, timeout_seconds: Optional[float] = None):
        if timeout_seconds:
            # set_config(..., true) is SET LOCAL: it ends with the transaction
            self.session.execute(
                text("SELECT set_config('statement_timeout', :ms, true)"),
                {"ms": str(int(timeout_seconds * 1000))},
            )
        try:
            yield self
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def savepoint(self):
        return self.session.begin_nested()

    # -------------------------------------------------------------------------
    # Statement builders
    # -------------------------------------------------------------------------

    @staticmethod
    def _values(record) -> dict[str, Any]:
        values = record_values(record)
        values["geometry"] = from_shape(values["geometry"], srid=4326)
        return values

    @staticmethod
    def build_upsert(model, policy: MergePolicy, record, conflict_columns: list[str]):
        """INSERT ... ON CONFLICT (conflict_columns) DO UPDATE following ``policy``."""
        stmt = insert(model).values(**PostGISStore._values(record))
        table = model.__table__

        set_ = {}
        for column in policy.overwrite_columns(getattr(record, "keep_existing_name", False)):
            set_[column] = stmt.excluded[column]
        for column in policy.fill_missing:
            if column in conflict_columns:
                continue
            set_[column] = func.coalesce(stmt.excluded[column], table.c[column])

        return stmt.on_conflict_do_update(index_elements=conflict_columns, set_=set_)

    @staticmethod
    def build_merge_update(model, policy: MergePolicy, record, *criteria):
        """UPDATE of the row matching ``criteria`` with the same merge semantics as the upsert."""
        values = PostGISStore._values(record)
        assignments = {
            column: values[column]
            for column in policy.overwrite_columns(getattr(record, "keep_existing_name", False))
        }
        for column in policy.fill_missing:
            if values.get(column) is not None:
                assignments[column] = values[column]
        return update(model).where(*criteria).values(**assignments)

    def _execute_upsert(self, stmt) -> None:
        try:
            self.session.execute(stmt)
        except IntegrityError as e:
            column = _conflict_column(e)
            if column is None:
                raise
            raise CodeConflictError(column, str(e.orig).strip()) from e

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def truncate_all(self) -> None:
        tables = ", ".join(REFERENCE_TABLES)
        logger.info(f"Clearing reference tables ({tables})")
        self.session.execute(text(f"TRUNCATE TABLE {tables} RESTART IDENTITY"))

    def upsert_country(self, record: CountryRecord) -> None:
        target = ["iso_alpha2_code"] if record.iso_alpha2_code else ["iso_alpha3_code"]
        self._execute_upsert(self.build_upsert(Country, COUNTRY_POLICY, record, target))

    def update_country_by_alpha3(self, record: CountryRecord) -> bool:
        if not record.iso_alpha3_code:
            return False
        stmt = self.build_merge_update(
            Country, COUNTRY_POLICY, record,
            Country.iso_alpha3_code == record.iso_alpha3_code,
        )
        return self.session.execute(stmt).rowcount > 0

    def upsert_region(self, record: RegionRecord) -> None:
        code = "country_iso_alpha2_code" if record.country_iso_alpha2_code else "country_iso_alpha3_code"
        self._execute_upsert(self.build_upsert(Region, REGION_POLICY, record, ["identifier", code]))

    def update_region_by_alpha3(self, record: RegionRecord) -> bool:
        if not record.country_iso_alpha3_code:
            return False
        stmt = self.build_merge_update(
            Region, REGION_POLICY, record,
            Region.identifier == record.identifier,
            Region.country_iso_alpha3_code == record.country_iso_alpha3_code,
        )
        return self.session.execute(stmt).rowcount > 0

    def upsert_city(self, record: CityRecord) -> None:
        code = "country_iso_alpha2_code" if record.country_iso_alpha2_code else "country_iso_alpha3_code"
        self._execute_upsert(self.build_upsert(City, CITY_POLICY, record, ["identifier", code]))

    def update_city_by_alpha3(self, record: CityRecord) -> bool:
        if not record.country_iso_alpha3_code:
            return False
        stmt = self.build_merge_update(
            City, CITY_POLICY, record,
            City.identifier == record.identifier,
            City.country_iso_alpha3_code == record.country_iso_alpha3_code,
        )
        return self.session.execute(stmt).rowcount > 0

    def upsert_timezone(self, record: TimezoneRecord) -> None:
        stmt = insert(Timezone).values(**self._values(record))
        stmt = stmt.on_conflict_do_update(
            index_elements=["timezone_id"],
            set_={"geometry": stmt.excluded.geometry},
        )
        self.session.execute(stmt)

    # -------------------------------------------------------------------------
    # Reconciliation primitives
    # -------------------------------------------------------------------------

    def _rowcount(self, sql: str) -> int:
        return self.session.execute(text(sql)).rowcount or 0

    def _scalar(self, sql: str) -> int:
        return int(self.session.execute(text(sql)).scalar() or 0)

    def resolve_region_hints(self) -> int:
        rewritten = self._rowcount(REWRITE_HINTS_BY_NAME_SQL)
        cleared = self._rowcount(CLEAR_INVALID_HINTS_SQL)
        if rewritten or cleared:
            logger.debug(f"Region hints: {rewritten} matched by name, {cleared} cleared")
        return rewritten + cleared

    def assign_regions(self, predicate: str) -> int:
        sql = ASSIGN_REGIONS_SQL.format(
            same_country=SAME_COUNTRY,
            predicate=STAGE_PREDICATES[predicate],
        )
        return self._rowcount(sql)

    def delete_cross_country_cities(self) -> int:
        return self._rowcount(DELETE_CROSS_COUNTRY_SQL)

    def delete_unassigned_cities(self) -> int:
        return self._rowcount(DELETE_UNASSIGNED_SQL)

    def count_codeless_cities(self) -> int:
        return self._scalar(COUNT_CODELESS_SQL)

    def count_regions_without_country(self) -> int:
        return self._scalar(COUNT_REGIONS_WITHOUT_COUNTRY_SQL)

    def count_region_country_conflicts(self) -> int:
        return self._scalar(COUNT_REGION_CONFLICTS_SQL)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def country_code_pairs(self) -> list[tuple[Optional[str], Optional[str]]]:
        rows = self.session.execute(select(Country.iso_alpha2_code, Country.iso_alpha3_code))
        return [(row.iso_alpha2_code, row.iso_alpha3_code) for row in rows]

    def entity_counts(self) -> dict[str, int]:
        return {
            table: self.session.scalar(select(func.count()).select_from(model)) or 0
            for table, model in TABLE_MODELS.items()
        }

    def find_containing(self, table: str, lon: float, lat: float) -> Optional[dict[str, Any]]:
        model = TABLE_MODELS[table]
        point = func.ST_SetSRID(func.ST_MakePoint(lon, lat), 4326)
        stmt = (
            select(model)
            .where(func.ST_Contains(model.geometry, point))
            .order_by(model.id)
            .limit(1)
        )
        row = self.session.scalars(stmt).first()
        return _row_dict(row) if row is not None else None

    # -------------------------------------------------------------------------
    # Watermark and lock
    # -------------------------------------------------------------------------

    def get_watermark(self) -> Optional[datetime]:
        return self.session.scalar(select(LastUpdate.updated_at).where(LastUpdate.id == 1))

    def set_watermark(self, when: datetime) -> None:
        stmt = insert(LastUpdate).values(id=1, updated_at=when)
        stmt = stmt.on_conflict_do_update(index_elements=["id"], set_={"updated_at": when})
        self.session.execute(stmt)
        self.session.commit()

    # Lock rows are written through their own short sessions so they are
    # visible to other processes immediately and survive a rolled-back run.

    def try_acquire_lock(self, name: str, holder: str, ttl_seconds: int) -> bool:
        stmt = insert(AppLock).values(
            lock_name=name,
            holder=holder,
            acquired_at=func.now(),
            expires_at=func.now() + timedelta(seconds=ttl_seconds),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["lock_name"],
            set_={
                "holder": stmt.excluded.holder,
                "acquired_at": stmt.excluded.acquired_at,
                "expires_at": stmt.excluded.expires_at,
            },
            where=AppLock.expires_at < func.now(),
        ).returning(AppLock.holder)

        with self.session_factory() as session:
            acquired = session.execute(stmt).first() is not None
            session.commit()
        return acquired

    def refresh_lock(self, name: str, holder: str, ttl_seconds: int) -> bool:
        stmt = (
            update(AppLock)
            .where(AppLock.lock_name == name, AppLock.holder == holder)
            .values(expires_at=func.now() + timedelta(seconds=ttl_seconds))
        )
        with self.session_factory() as session:
            refreshed = session.execute(stmt).rowcount > 0
            session.commit()
        return refreshed

    def release_lock(self, name: str, holder: str) -> None:
        stmt = delete(AppLock).where(AppLock.lock_name == name, AppLock.holder == holder)
        with self.session_factory() as session:
            session.execute(stmt)
            session.commit()

    def lock_holder(self, name: str) -> Optional[dict[str, Any]]:
        stmt = select(AppLock).where(AppLock.lock_name == name, AppLock.expires_at >= func.now())
        with self.session_factory() as session:
            row = session.scalars(stmt).first()
            return _row_dict(row) if row is not None else None
