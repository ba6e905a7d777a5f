"""
One MQTT message -> one station upsert + one telemetry row.

Delivery is at-most-once: a message that fails at any step is logged with its
topic and dropped. It is never retried, re-queued or dead-lettered.
"""

import json
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional, Union

from pydantic import ValidationError as PayloadError
from sqlalchemy.exc import SQLAlchemyError

from .db import SessionFactory
from .errors import AppError, storage_error, validation_error
from .models import TelemetryRaw
from .schemas import StationObservation, TelemetryPayload
from .senml import senml_to_row
from .stations import Clock, StationReconciler, utcnow

log = logging.getLogger(__name__)


def parse_payload(raw: bytes) -> Union[TelemetryPayload, AppError]:
    try:
        data = json.loads(raw.decode("utf-8")) if raw else None
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        return validation_error("payload", f"Invalid JSON payload: {e}")
    if not isinstance(data, dict):
        return validation_error("payload", "Invalid payload structure: expected a JSON object")
    try:
        return TelemetryPayload.model_validate(data)
    except PayloadError as e:
        err = e.errors()[0]
        field = ".".join(str(part) for part in err["loc"]) or "payload"
        return validation_error(field, f"Invalid payload structure: {err['msg']}")


class TelemetryIngestor:
    def __init__(
        self,
        session_factory: SessionFactory,
        reconciler: Optional[StationReconciler] = None,
        clock: Clock = utcnow,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.reconciler = reconciler or StationReconciler(clock)

    def ingest(self, topic: str, raw: bytes) -> Union[TelemetryRaw, AppError]:
        payload = parse_payload(raw)
        if isinstance(payload, AppError):
            return payload

        observed = StationObservation(
            uuid=payload.device_info.uuid,
            model=payload.device_info.model,
            fw_ver=payload.device_info.fw_ver,
        )
        try:
            with self.session_factory() as session:
                self.reconciler.reconcile(session, observed)

                row = senml_to_row(payload, self.clock())
                if isinstance(row, AppError):
                    return row

                session.add(row)
                session.commit()
                session.refresh(row)
        except SQLAlchemyError as e:
            return storage_error("ingest_telemetry", e)

        log.info(
            "telemetry ingested",
            extra={"deviceUuid": row.device_uuid, "time": row.time.isoformat(), "topic": topic},
        )
        return row

    def handle_message(self, topic: str, raw: bytes) -> Optional[TelemetryRaw]:
        """Listener entry point: never raises, one bad message must not stop the stream."""
        try:
            result = self.ingest(topic, raw)
        except Exception:
            log.exception("unexpected error while ingesting telemetry", extra={"topic": topic})
            return None

        if isinstance(result, AppError):
            log.error(
                "failed to ingest telemetry: %s",
                result.message,
                exc_info=getattr(result, "cause", None),
                extra={"topic": topic, "errorCode": result.error_code},
            )
            return None
        return result


class IngestWorkerPool:
    """Bounded per-message task pool.

    ``submit`` blocks once ``max_pending`` messages are in flight, which pushes
    back on the MQTT network loop instead of growing an unbounded queue.
    """

    def __init__(self, ingestor: TelemetryIngestor, workers: int = 4, max_pending: int = 100):
        self.ingestor = ingestor
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ingest")
        self._slots = threading.BoundedSemaphore(max(max_pending, workers))
        self.processed = 0
        self.failed = 0
        self._lock = threading.Lock()

    def submit(self, topic: str, raw: bytes) -> Future:
        self._slots.acquire()
        try:
            future = self._executor.submit(self.ingestor.handle_message, topic, raw)
        except RuntimeError:
            self._slots.release()
            raise
        future.add_done_callback(self._done)
        return future

    def _done(self, future: Future) -> None:
        self._slots.release()
        with self._lock:
            if future.result() is None:
                self.failed += 1
            else:
                self.processed += 1

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def stats(self) -> dict:
        with self._lock:
            return {"processed": self.processed, "failed": self.failed}