from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, Optional


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- inbound MQTT payload (SenML-derived) ---

class SenMLRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    n: Optional[str] = None  # nameless records only contribute their time
    v: Optional[float] = None
    vs: Optional[str] = None
    vb: Optional[bool] = None
    t: Optional[float] = None   # offset seconds from the base time
    bt: Optional[float] = None  # base time, epoch seconds
    bn: Optional[str] = None
    bver: Optional[int] = None
    u: Optional[str] = None

class DeviceInfo(BaseModel):
    uuid: str = Field(min_length=1)
    fw_ver: Optional[str] = None
    model: Optional[str] = None

class TelemetryPayload(BaseModel):
    device_info: DeviceInfo
    measures: list[SenMLRecord]


# --- stations ---

class Location(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)

class StationOut(ApiModel):
    uuid: str
    name: Optional[str]
    model: Optional[str]
    fw_ver: Optional[str]
    location: Optional[Location]
    description: Optional[str]
    status: str
    auto_created: bool
    deleted_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

class StationCreate(ApiModel):
    uuid: str = Field(min_length=1)
    name: Optional[str] = None
    model: Optional[str] = None
    fw_ver: Optional[str] = None
    location: Optional[Location] = None
    description: Optional[str] = None
    status: str = "pending"
    auto_created: bool = False

class StationUpdate(ApiModel):
    # only fields the client actually sent are applied; an explicit null clears
    name: Optional[str] = None
    model: Optional[str] = None
    fw_ver: Optional[str] = None
    location: Optional[Location] = None
    description: Optional[str] = None
    status: Optional[str] = None

class StationObservation(BaseModel):
    """What an ingestion event tells us about a station."""
    uuid: str
    model: Optional[str] = None
    fw_ver: Optional[str] = None


# --- telemetry ---

class TelemetryPointOut(ApiModel):
    time: datetime
    device_uuid: str
    fw_ver: Optional[str]
    model: Optional[str]
    ingested_at: datetime
    temp: Optional[float]
    hum: Optional[float]
    pres: Optional[float]
    pm1: Optional[float]
    pm25: Optional[float]
    pm10: Optional[float]
    no: Optional[float]
    no2: Optional[float]
    o3: Optional[float]
    so2: Optional[float]
    co: Optional[float]
    h2s: Optional[float]
    nh3: Optional[float]
    co2: Optional[float]
    voc: Optional[float]
    noise: Optional[float]
    solar_rad: Optional[float]
    rain_rate: Optional[float]
    wind_dir: Optional[float]
    wind_spd: Optional[float]
    lux: Optional[float]
    extras: dict[str, Any]


# --- Relay-style page ---

class Edge(ApiModel):
    cursor: str
    node: Any

class PageInfo(ApiModel):
    has_next_page: bool
    has_previous_page: bool
    start_cursor: Optional[str] = None
    end_cursor: Optional[str] = None

class Page(ApiModel):
    edges: list[Edge]
    page_info: PageInfo

class TelemetryEdge(Edge):
    node: TelemetryPointOut

class TelemetryPage(Page):
    edges: list[TelemetryEdge]
