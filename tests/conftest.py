from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import pytest

from telemetry_hub.db import init_db, make_engine, session_factory
from telemetry_hub.models import TelemetryRaw
from telemetry_hub.schemas import StationObservation
from telemetry_hub.stations import StationReconciler


T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'telemetry.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def get_session(engine):
    return session_factory(engine)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def reconciler(clock) -> StationReconciler:
    return StationReconciler(clock)


@pytest.fixture
def add_point(get_session, reconciler):
    """Insert one telemetry row directly, creating its station on the way."""

    def _add(device_uuid: str, time: datetime, ingested_at: Optional[datetime] = None, **metrics: Any) -> TelemetryRaw:
        with get_session() as session:
            reconciler.reconcile(session, StationObservation(uuid=device_uuid))
            row = TelemetryRaw(
                time=time,
                device_uuid=device_uuid,
                ingested_at=ingested_at or time,
                extras={},
                **metrics,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return row

    return _add


def senml_payload(uuid: str = "d1", fw_ver: Optional[str] = "1.0", model: Optional[str] = None, measures=None) -> Dict[str, Any]:
    device_info: Dict[str, Any] = {"uuid": uuid}
    if fw_ver is not None:
        device_info["fw_ver"] = fw_ver
    if model is not None:
        device_info["model"] = model
    return {"device_info": device_info, "measures": measures if measures is not None else []}
