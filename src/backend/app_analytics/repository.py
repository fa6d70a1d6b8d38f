from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    select,
)
from sqlalchemy.engine import Engine, Row

from .config import AnalyticsSettings
from .models import AppRecord, DeviceLabel, DeviceRecord, PurchaseRecord, SessionRecord
from .timeutils import parse_timestamp

metadata = MetaData()

apps_table = Table(
    "apps",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("app_id", String(64), unique=True, nullable=False),
    Column("name", String(255)),
    Column("created_at", DateTime(timezone=True)),
)

purchases_table = Table(
    "purchases",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("app_id", String(64), index=True, nullable=False),
    Column("device_id", String(128), index=True),
    Column("product_id", String(255)),
    Column("price", Numeric(12, 2)),
    Column("is_trial", Boolean, nullable=False, default=False),
    Column("purchase_date", DateTime(timezone=True)),
    Column("expiration_date", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True), index=True),
)

devices_table = Table(
    "devices",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("app_id", String(64), index=True, nullable=False),
    Column("device_id", String(128), index=True),
    Column("name", String(255)),
    Column("created_at", DateTime(timezone=True), index=True),
    Column("last_seen_at", DateTime(timezone=True), index=True),
)

sessions_table = Table(
    "active_sessions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("app_id", String(64), index=True, nullable=False),
    Column("device_id", String(128)),
    Column("session_started_at", DateTime(timezone=True), index=True),
    Column("last_heartbeat", DateTime(timezone=True), index=True),
    Column("country_code", String(8)),
    Column("region", String(255)),
    Column("city", String(255)),
    Column("latitude", Float),
    Column("longitude", Float),
)


class AnalyticsDataRepository:
    """
    Read-side interface the analytics service consumes.

    Every method is a single blocking query; the service runs them in worker
    threads so a round of fetches proceeds concurrently. Time bounds are
    inclusive on both ends.
    """

    def get_app(self, app_id: str) -> Optional[AppRecord]:
        raise NotImplementedError

    def purchases(self, app_id: str, start: datetime, end: datetime) -> Sequence[PurchaseRecord]:
        raise NotImplementedError

    def devices_created(self, app_id: str, start: datetime, end: datetime) -> Sequence[DeviceRecord]:
        raise NotImplementedError

    def devices_last_seen(self, app_id: str, start: datetime, end: datetime) -> Sequence[DeviceRecord]:
        raise NotImplementedError

    def sessions_by_heartbeat(
        self,
        app_id: str,
        since: datetime,
        limit: Optional[int] = None,
    ) -> Sequence[SessionRecord]:
        raise NotImplementedError

    def sessions_started(self, app_id: str, start: datetime, end: datetime) -> Sequence[SessionRecord]:
        raise NotImplementedError

    def converted_device_ids(self, app_id: str, device_ids: Sequence[str]) -> Sequence[str]:
        """Device ids among ``device_ids`` with any non-trial purchase, ever."""
        raise NotImplementedError

    def device_labels(self, app_id: str, ids: Sequence[str]) -> Sequence[DeviceLabel]:
        raise NotImplementedError


class SQLAnalyticsRepository(AnalyticsDataRepository):
    """
    Load analytics rows from the ingestion schema.

    Expected tables:
      - apps(id, app_id, name)
      - purchases(app_id, device_id, product_id, price, is_trial, purchase_date, expiration_date, created_at)
      - devices(id, app_id, device_id, name, created_at, last_seen_at)
      - active_sessions(id, app_id, device_id, session_started_at, last_heartbeat,
        country_code, region, city, latitude, longitude)
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def get_app(self, app_id: str) -> Optional[AppRecord]:
        query = select(apps_table.c.id, apps_table.c.app_id, apps_table.c.name).where(
            apps_table.c.app_id == app_id
        )
        with self.engine.connect() as connection:
            row = connection.execute(query).first()
        if row is None:
            return None
        return AppRecord(id=str(row.id), app_id=row.app_id, name=row.name)

    def purchases(self, app_id: str, start: datetime, end: datetime) -> Sequence[PurchaseRecord]:
        table = purchases_table
        query = select(
            table.c.price,
            table.c.created_at,
            table.c.is_trial,
            table.c.device_id,
            table.c.purchase_date,
            table.c.expiration_date,
            table.c.product_id,
        ).where(
            table.c.app_id == app_id,
            table.c.created_at >= start,
            table.c.created_at <= end,
        )
        with self.engine.connect() as connection:
            rows = connection.execute(query).fetchall()
        return tuple(self._row_to_purchase(row) for row in rows)

    def devices_created(self, app_id: str, start: datetime, end: datetime) -> Sequence[DeviceRecord]:
        table = devices_table
        query = select(table.c.device_id, table.c.created_at).where(
            table.c.app_id == app_id,
            table.c.created_at >= start,
            table.c.created_at <= end,
        )
        with self.engine.connect() as connection:
            rows = connection.execute(query).fetchall()
        return tuple(
            DeviceRecord(device_id=row.device_id, created_at=parse_timestamp(row.created_at)) for row in rows
        )

    def devices_last_seen(self, app_id: str, start: datetime, end: datetime) -> Sequence[DeviceRecord]:
        table = devices_table
        query = select(table.c.device_id, table.c.last_seen_at).where(
            table.c.app_id == app_id,
            table.c.last_seen_at >= start,
            table.c.last_seen_at <= end,
        )
        with self.engine.connect() as connection:
            rows = connection.execute(query).fetchall()
        return tuple(
            DeviceRecord(device_id=row.device_id, last_seen_at=parse_timestamp(row.last_seen_at)) for row in rows
        )

    def sessions_by_heartbeat(
        self,
        app_id: str,
        since: datetime,
        limit: Optional[int] = None,
    ) -> Sequence[SessionRecord]:
        table = sessions_table
        query = (
            select(table)
            .where(table.c.app_id == app_id, table.c.last_heartbeat >= since)
            .order_by(table.c.last_heartbeat.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        with self.engine.connect() as connection:
            rows = connection.execute(query).fetchall()
        return tuple(self._row_to_session(row) for row in rows)

    def sessions_started(self, app_id: str, start: datetime, end: datetime) -> Sequence[SessionRecord]:
        table = sessions_table
        query = select(table).where(
            table.c.app_id == app_id,
            table.c.session_started_at >= start,
            table.c.session_started_at <= end,
        )
        with self.engine.connect() as connection:
            rows = connection.execute(query).fetchall()
        return tuple(self._row_to_session(row) for row in rows)

    def converted_device_ids(self, app_id: str, device_ids: Sequence[str]) -> Sequence[str]:
        if not device_ids:
            return ()
        table = purchases_table
        query = (
            select(table.c.device_id)
            .where(
                table.c.app_id == app_id,
                table.c.is_trial.is_(False),
                table.c.device_id.in_(list(device_ids)),
            )
            .distinct()
        )
        with self.engine.connect() as connection:
            rows = connection.execute(query).fetchall()
        return tuple(row.device_id for row in rows if row.device_id)

    def device_labels(self, app_id: str, ids: Sequence[str]) -> Sequence[DeviceLabel]:
        numeric_ids = [int(value) for value in ids if str(value).isdigit()]
        if not numeric_ids:
            return ()
        table = devices_table
        query = select(table.c.id, table.c.device_id, table.c.name).where(
            table.c.app_id == app_id,
            table.c.id.in_(numeric_ids),
        )
        with self.engine.connect() as connection:
            rows = connection.execute(query).fetchall()
        return tuple(DeviceLabel(id=str(row.id), device_id=row.device_id, name=row.name) for row in rows)

    @staticmethod
    def _row_to_purchase(row: Row) -> PurchaseRecord:
        return PurchaseRecord(
            price=row.price,
            created_at=parse_timestamp(row.created_at),
            is_trial=bool(row.is_trial),
            device_id=row.device_id,
            purchase_date=parse_timestamp(row.purchase_date),
            expiration_date=parse_timestamp(row.expiration_date),
            product_id=row.product_id,
        )

    @staticmethod
    def _row_to_session(row: Row) -> SessionRecord:
        return SessionRecord(
            id=None if row.id is None else str(row.id),
            device_id=row.device_id,
            session_started_at=parse_timestamp(row.session_started_at),
            last_heartbeat=parse_timestamp(row.last_heartbeat),
            country_code=row.country_code,
            region=row.region,
            city=row.city,
            latitude=row.latitude,
            longitude=row.longitude,
        )


def build_repository_from_env(settings: AnalyticsSettings) -> Optional[AnalyticsDataRepository]:
    if settings.database_url:
        engine = create_engine(settings.database_url)
        return SQLAnalyticsRepository(engine)
    return None
