"""
SenML -> wide telemetry row.

A device publishes a burst of sparse ``{n, v|vs|vb, t?, bt?}`` records; this
module folds them into one ``TelemetryRaw`` draft (no ``cursor_id`` yet) with a
fixed column per known metric and an ``extras`` map for everything else.
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Union

from .coercion import coerce_value
from .errors import ValidationError, validation_error
from .models import METRIC_COLUMNS, TelemetryRaw
from .schemas import DeviceInfo, SenMLRecord, TelemetryPayload


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_base_time(measures: list[SenMLRecord], ingested_at: datetime) -> datetime:
    # only the first record's bt counts, later ones are ignored
    if measures and measures[0].bt is not None:
        return datetime.fromtimestamp(measures[0].bt, tz=timezone.utc)
    return ingested_at


def measure_time(record: SenMLRecord, base: datetime) -> datetime:
    if record.t is None:
        return base
    return base + timedelta(seconds=record.t)


def normalize_measures(
    device: DeviceInfo,
    measures: Iterable[SenMLRecord],
    ingested_at: datetime,
) -> Union[TelemetryRaw, ValidationError]:
    measures = list(measures)
    ingested_at = to_utc(ingested_at)

    try:
        base = resolve_base_time(measures, ingested_at)
        times = [measure_time(record, base) for record in measures]
    except (OverflowError, OSError, ValueError) as e:
        return validation_error("measures", f"Timestamp out of range: {e}")

    columns: dict[str, Optional[float]] = {column: None for column in METRIC_COLUMNS.values()}
    extras: dict[str, float] = {}

    for record in measures:
        if record.n is None:
            continue
        value = coerce_value(record)
        column = METRIC_COLUMNS.get(record.n)
        if column is not None:
            # duplicate names: last one wins
            columns[column] = value
        elif value is not None:
            extras[record.n] = value

    return TelemetryRaw(
        time=max(times) if times else base,
        device_uuid=device.uuid,
        fw_ver=device.fw_ver,
        model=device.model,
        ingested_at=ingested_at,
        extras=extras,
        **columns,
    )


def senml_to_row(payload: TelemetryPayload, ingested_at: datetime) -> Union[TelemetryRaw, ValidationError]:
    return normalize_measures(payload.device_info, payload.measures, ingested_at)
