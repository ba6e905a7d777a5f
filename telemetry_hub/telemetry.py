"""
Time-range telemetry queries with cursor pagination.

Order is ``time DESC, cursor_id ASC``: newest first, with the insertion-ordered
``cursor_id`` as tie-break so rows sharing a timestamp have a fixed position and
are never skipped or repeated across page boundaries.

* forward (``first``/``after``) walks that order from the anchor row, exclusive.
* backward (``last``/``before``) walks the reverse order from the anchor toward
  newer rows, then flips the batch so callers always see newest first.

An anchor row that no longer exists yields an empty page.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from dateutil import parser as dtparser
from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select
from sqlmodel.sql.expression import SelectOfScalar

from .cursor import CompositeCursor, decode_composite_cursor, decode_cursor
from .db import SessionFactory
from .errors import AppError, CursorError, cursor_error, storage_error, validation_error
from .models import TelemetryRaw
from .pagination import PaginationParams, composite_cursor, create_paginated_result, id_cursor
from .schemas import Page, TelemetryPointOut
from .senml import to_utc

log = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000


@dataclass(frozen=True)
class TelemetryQueryRequest:
    """Raw query parameters as they come off the wire."""
    start_time: Optional[str]
    end_time: Optional[str]
    device_uuid: Optional[str] = None
    limit: Optional[int] = None
    first: Optional[int] = None
    last: Optional[int] = None
    after: Optional[str] = None
    before: Optional[str] = None


@dataclass(frozen=True)
class TelemetryQuery:
    """A validated request, cursor still encoded."""
    start_time: datetime
    end_time: datetime
    limit: int
    device_uuid: Optional[str] = None
    after: Optional[str] = None
    before: Optional[str] = None
    backward: bool = False

    def pagination(self) -> PaginationParams:
        return PaginationParams(limit=self.limit, after=self.after, before=self.before, backward=self.backward)


@dataclass(frozen=True)
class Anchor:
    time: datetime
    cursor_id: int


def _parse_time(field: str, raw: Optional[str]) -> Union[datetime, AppError]:
    if not raw:
        return validation_error(field, f"{field} is required. Expected ISO 8601 timestamp.")
    try:
        return to_utc(dtparser.isoparse(raw))
    except (ValueError, OverflowError):
        return validation_error(field, f"Invalid {field} format. Expected ISO 8601 timestamp.")


def validate_query(
    request: TelemetryQueryRequest,
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> Union[TelemetryQuery, AppError]:
    start = _parse_time("start_time", request.start_time)
    if isinstance(start, AppError):
        return start
    end = _parse_time("end_time", request.end_time)
    if isinstance(end, AppError):
        return end
    if start >= end:
        return validation_error("time_range", "start_time must be before end_time")

    if request.after and request.before:
        return validation_error("pagination", "after and before cannot be combined")
    if request.first is not None and request.last is not None:
        return validation_error("pagination", "first and last cannot be combined")
    if request.after and request.last is not None:
        return validation_error("pagination", "after must be used with first, not last")
    if request.before and request.first is not None:
        return validation_error("pagination", "before must be used with last, not first")

    backward = bool(request.before) or request.last is not None
    limit = next(
        (v for v in (request.last if backward else request.first, request.limit) if v is not None),
        default_limit,
    )
    if limit < 1 or limit > max_limit:
        return validation_error("limit", f"limit must be between 1 and {max_limit}")

    return TelemetryQuery(
        start_time=start,
        end_time=end,
        limit=limit,
        device_uuid=request.device_uuid or None,
        after=request.after or None,
        before=request.before or None,
        backward=backward,
    )


class TelemetryQueryPlanner:
    """Builds the bounded, totally ordered SELECT for one page."""

    def base(self, query: TelemetryQuery) -> SelectOfScalar:
        stmt = select(TelemetryRaw).where(
            TelemetryRaw.time >= query.start_time,
            TelemetryRaw.time <= query.end_time,
        )
        if query.device_uuid:
            stmt = stmt.where(TelemetryRaw.device_uuid == query.device_uuid)
        return stmt

    def forward(self, query: TelemetryQuery, anchor: Optional[Anchor]) -> SelectOfScalar:
        stmt = self.base(query)
        if anchor is not None:
            stmt = stmt.where(or_(
                TelemetryRaw.time < anchor.time,
                and_(TelemetryRaw.time == anchor.time, TelemetryRaw.cursor_id > anchor.cursor_id),
            ))
        return stmt.order_by(TelemetryRaw.time.desc(), TelemetryRaw.cursor_id.asc()).limit(query.limit)

    def backward(self, query: TelemetryQuery, anchor: Optional[Anchor]) -> SelectOfScalar:
        stmt = self.base(query)
        if anchor is not None:
            stmt = stmt.where(or_(
                TelemetryRaw.time > anchor.time,
                and_(TelemetryRaw.time == anchor.time, TelemetryRaw.cursor_id < anchor.cursor_id),
            ))
        return stmt.order_by(TelemetryRaw.time.asc(), TelemetryRaw.cursor_id.desc()).limit(query.limit)

    def by_device_time(self, query: TelemetryQuery, position: Optional[CompositeCursor]) -> SelectOfScalar:
        # composite-key mode: forward only, (time DESC, device_uuid ASC)
        stmt = self.base(query)
        if position is not None:
            stmt = stmt.where(or_(
                TelemetryRaw.time < position.time,
                and_(TelemetryRaw.time == position.time, TelemetryRaw.device_uuid > position.device_uuid),
            ))
        return stmt.order_by(TelemetryRaw.time.desc(), TelemetryRaw.device_uuid.asc()).limit(query.limit)


def decode_id_cursor(cursor: str) -> Union[int, CursorError]:
    decoded = decode_cursor(cursor)
    if isinstance(decoded, CursorError):
        return decoded
    if not re.fullmatch(r"[0-9]{1,18}", decoded):
        return cursor_error(f"Failed to decode cursor: {cursor}", cursor)
    return int(decoded)


def to_point(row: TelemetryRaw) -> TelemetryPointOut:
    data = row.model_dump()
    data["time"] = to_utc(row.time)
    data["ingested_at"] = to_utc(row.ingested_at)
    data["extras"] = row.extras or {}
    return TelemetryPointOut.model_validate(data)


class TelemetryService:
    def __init__(self, session_factory: SessionFactory, planner: Optional[TelemetryQueryPlanner] = None):
        self.session_factory = session_factory
        self.planner = planner or TelemetryQueryPlanner()

    def fetch(self, query: TelemetryQuery) -> Union[list[TelemetryRaw], AppError]:
        cursor = query.before if query.backward else query.after
        cursor_id: Optional[int] = None
        if cursor:
            decoded = decode_id_cursor(cursor)
            if isinstance(decoded, CursorError):
                return decoded
            cursor_id = decoded

        try:
            with self.session_factory() as session:
                anchor = None
                if cursor_id is not None:
                    found = session.exec(
                        select(TelemetryRaw.time, TelemetryRaw.cursor_id).where(TelemetryRaw.cursor_id == cursor_id)
                    ).first()
                    if found is None:
                        return []
                    anchor = Anchor(time=found[0], cursor_id=found[1])

                if query.backward:
                    rows = list(session.exec(self.planner.backward(query, anchor)).all())
                    rows.reverse()
                else:
                    rows = list(session.exec(self.planner.forward(query, anchor)).all())
                return rows
        except SQLAlchemyError as e:
            log.exception("telemetry query failed", extra={"operation": "query_telemetry"})
            return storage_error("query_telemetry", e)

    def query(self, query: TelemetryQuery) -> Union[Page, AppError]:
        rows = self.fetch(query)
        if isinstance(rows, AppError):
            return rows
        return create_paginated_result(rows, query.pagination(), to_point, id_cursor(lambda r: r.cursor_id))

    def query_by_device_time(self, query: TelemetryQuery) -> Union[Page, AppError]:
        if query.backward:
            return validation_error("pagination", "backward pagination is not supported with device/time cursors")

        position = None
        if query.after:
            position = decode_composite_cursor(query.after)
            if isinstance(position, CursorError):
                return position

        try:
            with self.session_factory() as session:
                rows = list(session.exec(self.planner.by_device_time(query, position)).all())
        except SQLAlchemyError as e:
            log.exception("telemetry query failed", extra={"operation": "query_telemetry_by_device_time"})
            return storage_error("query_telemetry_by_device_time", e)

        return create_paginated_result(
            rows,
            query.pagination(),
            to_point,
            composite_cursor(lambda r: (r.device_uuid, r.time)),
        )
