"""
Station registry.

Ingestion never asks whether a station exists: :meth:`StationReconciler.reconcile`
issues one ``INSERT ... ON CONFLICT (uuid) DO UPDATE`` that creates the row,
reactivates a soft-deleted one, or refreshes model/firmware, all in a single
statement. Two messages for the same new device therefore cannot race each
other into a duplicate-key failure.

The explicit CRUD in :class:`StationService` is what the HTTP API uses. It only
sees non-deleted stations.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from sqlalchemy import func, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from .db import SessionFactory
from .errors import AppError, conflict, not_found, storage_error
from .models import Station
from .schemas import Location, StationCreate, StationObservation, StationOut, StationUpdate
from .senml import to_utc

log = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _upsert_insert(session: Session):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(Station)
    if dialect == "sqlite":
        return sqlite.insert(Station)
    raise RuntimeError(f"station upsert is not supported on {dialect}")


def to_station_out(station: Station) -> StationOut:
    location = None
    if station.latitude is not None and station.longitude is not None:
        location = Location(latitude=station.latitude, longitude=station.longitude)
    return StationOut(
        uuid=station.uuid,
        name=station.name,
        model=station.model,
        fw_ver=station.fw_ver,
        location=location,
        description=station.description,
        status=station.status,
        auto_created=station.auto_created,
        deleted_at=to_utc(station.deleted_at) if station.deleted_at else None,
        created_at=to_utc(station.created_at),
        updated_at=to_utc(station.updated_at),
    )


class StationReconciler:
    def __init__(self, clock: Clock = utcnow):
        self.clock = clock

    def reconcile(self, session: Session, observed: StationObservation) -> Station:
        """Create, reactivate or refresh the station for an ingestion event.

        Existing ``status``, ``name``, ``description`` and location are left
        alone; ``model``/``fw_ver`` are only replaced by non-null values.
        Commits on success. SQLAlchemy errors propagate to the caller.
        """
        now = self.clock()
        stmt = _upsert_insert(session).values(
            uuid=observed.uuid,
            model=observed.model,
            fw_ver=observed.fw_ver,
            status="pending",
            auto_created=True,
            deleted_at=None,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Station.uuid],
            set_={
                "deleted_at": None,
                "model": func.coalesce(stmt.excluded.model, Station.model),
                "fw_ver": func.coalesce(stmt.excluded.fw_ver, Station.fw_ver),
                "updated_at": stmt.excluded.updated_at,
            },
        )
        station = session.scalars(
            stmt.returning(Station),
            execution_options={"populate_existing": True},
        ).one()
        session.commit()
        return station


class StationService:
    def __init__(self, session_factory: SessionFactory, clock: Clock = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    def list_stations(self, status: Optional[str] = None) -> Union[list[StationOut], AppError]:
        try:
            with self.session_factory() as session:
                stmt = select(Station).where(Station.deleted_at.is_(None))
                if status:
                    stmt = stmt.where(Station.status == status)
                rows = session.exec(stmt.order_by(Station.created_at.asc())).all()
                return [to_station_out(r) for r in rows]
        except SQLAlchemyError as e:
            log.exception("station list failed", extra={"operation": "list_stations"})
            return storage_error("list_stations", e)

    def get_station(self, uuid: str) -> Union[StationOut, AppError]:
        try:
            with self.session_factory() as session:
                station = session.exec(
                    select(Station).where(Station.uuid == uuid, Station.deleted_at.is_(None))
                ).first()
        except SQLAlchemyError as e:
            log.exception("station lookup failed", extra={"operation": "find_station_by_uuid"})
            return storage_error("find_station_by_uuid", e)
        if station is None:
            return not_found("Station", uuid)
        return to_station_out(station)

    def create_station(self, body: StationCreate) -> Union[StationOut, AppError]:
        now = self.clock()
        station = Station(
            uuid=body.uuid,
            name=body.name,
            model=body.model,
            fw_ver=body.fw_ver,
            latitude=body.location.latitude if body.location else None,
            longitude=body.location.longitude if body.location else None,
            description=body.description,
            status=body.status,
            auto_created=body.auto_created,
            deleted_at=None,
            created_at=now,
            updated_at=now,
        )
        try:
            with self.session_factory() as session:
                session.add(station)
                session.commit()
                session.refresh(station)
        except IntegrityError:
            # soft-deleted uuids stay taken, reactivation only happens through ingestion
            return conflict("uuid", f"Station {body.uuid} already exists")
        except SQLAlchemyError as e:
            log.exception("station create failed", extra={"operation": "create_station"})
            return storage_error("create_station", e)
        log.info("station created", extra={"deviceUuid": body.uuid})
        return to_station_out(station)

    def update_station(self, uuid: str, body: StationUpdate) -> Union[StationOut, AppError]:
        changes = body.model_dump(exclude_unset=True)
        if "location" in changes:
            location = changes.pop("location")
            changes["latitude"] = location["latitude"] if location else None
            changes["longitude"] = location["longitude"] if location else None
        if changes.get("status", "") is None:
            changes.pop("status")
        changes["updated_at"] = self.clock()

        stmt = (
            update(Station)
            .where(Station.uuid == uuid, Station.deleted_at.is_(None))
            .values(**changes)
            .returning(Station)
        )
        try:
            with self.session_factory() as session:
                station = session.scalars(stmt, execution_options={"populate_existing": True}).first()
                session.commit()
        except SQLAlchemyError as e:
            log.exception("station update failed", extra={"operation": "update_station"})
            return storage_error("update_station", e)
        if station is None:
            return not_found("Station", uuid)
        return to_station_out(station)

    def delete_station(self, uuid: str) -> Optional[AppError]:
        now = self.clock()
        stmt = (
            update(Station)
            .where(Station.uuid == uuid, Station.deleted_at.is_(None))
            .values(deleted_at=now, updated_at=now)
            .returning(Station.uuid)
        )
        try:
            with self.session_factory() as session:
                deleted = session.scalars(stmt).first()
                session.commit()
        except SQLAlchemyError as e:
            log.exception("station delete failed", extra={"operation": "soft_delete_station"})
            return storage_error("soft_delete_station", e)
        if deleted is None:
            return not_found("Station", uuid)
        log.info("station soft-deleted", extra={"deviceUuid": uuid})
        return None
