from typing import Optional
from datetime import datetime
from sqlalchemy import BigInteger, DateTime, Index, Integer
from sqlmodel import SQLModel, Field, Column, JSON

# SenML measurement name -> telemetry_raw column
METRIC_COLUMNS = {
    "temp": "temp",
    "hum": "hum",
    "pres": "pres",
    "pm1": "pm1",
    "pm25": "pm25",
    "pm10": "pm10",
    "no": "no",
    "no2": "no2",
    "o3": "o3",
    "so2": "so2",
    "co": "co",
    "h2s": "h2s",
    "nh3": "nh3",
    "co2": "co2",
    "voc": "voc",
    "noise": "noise",
    "solar_rad": "solar_rad",
    "rain_rate": "rain_rate",
    "wind_dir": "wind_dir",
    "wind_spd": "wind_spd",
    "lux": "lux",
}


def _tz_column(nullable: bool = False, index: bool = False) -> Column:
    return Column(DateTime(timezone=True), nullable=nullable, index=index)


class Station(SQLModel, table=True):
    __tablename__ = "stations"

    uuid: str = Field(primary_key=True)
    name: Optional[str] = None
    model: Optional[str] = None
    fw_ver: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    description: Optional[str] = None
    status: str = Field(default="pending", index=True)
    auto_created: bool = Field(default=True)
    deleted_at: Optional[datetime] = Field(default=None, sa_column=_tz_column(nullable=True))
    created_at: datetime = Field(sa_column=_tz_column())
    updated_at: datetime = Field(sa_column=_tz_column())


class TelemetryRaw(SQLModel, table=True):
    __tablename__ = "telemetry_raw"
    __table_args__ = (
        Index("telemetry_raw_device_time_idx", "device_uuid", "time"),
        {"sqlite_autoincrement": True},
    )

    # assigned by the database on insert: unique, increasing, never reused
    cursor_id: Optional[int] = Field(
        default=None,
        sa_column=Column(BigInteger().with_variant(Integer(), "sqlite"), primary_key=True, autoincrement=True),
    )
    time: datetime = Field(sa_column=_tz_column(index=True))
    device_uuid: str = Field(foreign_key="stations.uuid")
    fw_ver: Optional[str] = None
    model: Optional[str] = None
    ingested_at: datetime = Field(sa_column=_tz_column())

    temp: Optional[float] = None
    hum: Optional[float] = None
    pres: Optional[float] = None
    pm1: Optional[float] = None
    pm25: Optional[float] = None
    pm10: Optional[float] = None
    no: Optional[float] = None
    no2: Optional[float] = None
    o3: Optional[float] = None
    so2: Optional[float] = None
    co: Optional[float] = None
    h2s: Optional[float] = None
    nh3: Optional[float] = None
    co2: Optional[float] = None
    voc: Optional[float] = None
    noise: Optional[float] = None
    solar_rad: Optional[float] = None
    rain_rate: Optional[float] = None
    wind_dir: Optional[float] = None
    wind_spd: Optional[float] = None
    lux: Optional[float] = None

    extras: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
