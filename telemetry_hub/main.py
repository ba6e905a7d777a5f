import logging
from typing import List, Optional

from fastapi import FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine

from .db import init_db, make_engine, session_factory
from .errors import AppError, to_response_body
from .health import HealthService, database_check
from .ingestion import IngestWorkerPool, TelemetryIngestor
from .logging_config import configure_logging
from .mqtt_handler import TelemetryListener
from .schemas import StationCreate, StationOut, StationUpdate, TelemetryPage
from .settings import Settings
from .stations import StationService
from .telemetry import TelemetryQueryRequest, TelemetryService, validate_query

log = logging.getLogger(__name__)


def error_response(error: AppError) -> JSONResponse:
    if error.status_code >= 500:
        log.error("request failed: %s", error, extra={"operation": getattr(error, "operation", None)})
    return JSONResponse(status_code=error.status_code, content=to_response_body(error))


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    listener: Optional[TelemetryListener] = None,
) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings)

    engine = engine or make_engine(settings.database_url)
    get_session = session_factory(engine)
    stations = StationService(get_session)
    telemetry = TelemetryService(get_session)

    if listener is None and settings.mqtt_enabled:
        pool = IngestWorkerPool(
            TelemetryIngestor(get_session),
            workers=settings.ingest_workers,
            max_pending=settings.ingest_queue_size,
        )
        listener = TelemetryListener(settings, pool)

    checks = {"database": database_check(engine)}
    if listener is not None:
        checks["mqtt"] = listener.health
    health = HealthService(settings.service_name, checks)

    app = FastAPI(title="Telemetry Hub API", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.listener = listener

    @app.on_event("startup")
    def on_startup():
        init_db(engine)
        if listener is not None:
            try:
                listener.start()
            except OSError as e:
                # paho keeps retrying in the background once the loop runs
                log.error("MQTT failed to start: %s", e)

    @app.on_event("shutdown")
    def on_shutdown():
        if listener is not None:
            listener.stop()

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = [
            {
                "field": ".".join(str(p) for p in err["loc"] if p not in ("query", "body", "path")),
                "reason": "INVALID_ARGUMENT",
                "message": err["msg"],
            }
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={"error": {"code": 400, "message": "Invalid request", "status": "INVALID_ARGUMENT", "details": details}},
        )

    # --- health ---

    @app.get("/health/live")
    def live():
        return health.liveness()

    @app.get("/health/ready")
    def ready():
        ok, body = health.readiness()
        return JSONResponse(status_code=200 if ok else 503, content=body)

    @app.get("/health")
    def deep_health():
        return health.health()

    # --- telemetry ---

    @app.get("/telemetry", response_model=TelemetryPage)
    def get_telemetry(
        start_time: str,
        end_time: str,
        device_uuid: str | None = None,
        limit: int | None = None,
        first: int | None = None,
        last: int | None = None,
        after: str | None = None,
        before: str | None = None,
    ):
        query = validate_query(
            TelemetryQueryRequest(
                start_time=start_time,
                end_time=end_time,
                device_uuid=device_uuid,
                limit=limit,
                first=first,
                last=last,
                after=after,
                before=before,
            ),
            default_limit=settings.default_page_size,
            max_limit=settings.max_page_size,
        )
        if isinstance(query, AppError):
            return error_response(query)

        if settings.telemetry_cursor_mode == "composite":
            page = telemetry.query_by_device_time(query)
        else:
            page = telemetry.query(query)
        if isinstance(page, AppError):
            return error_response(page)
        return page

    # --- stations ---

    @app.get("/stations", response_model=List[StationOut])
    def list_stations(status: str | None = Query(None)):
        result = stations.list_stations(status)
        return error_response(result) if isinstance(result, AppError) else result

    @app.get("/stations/{uuid}", response_model=StationOut)
    def get_station(uuid: str):
        result = stations.get_station(uuid)
        return error_response(result) if isinstance(result, AppError) else result

    @app.post("/stations", response_model=StationOut, status_code=201)
    def create_station(body: StationCreate):
        result = stations.create_station(body)
        return error_response(result) if isinstance(result, AppError) else result

    @app.patch("/stations/{uuid}", response_model=StationOut)
    def update_station(uuid: str, body: StationUpdate):
        result = stations.update_station(uuid, body)
        return error_response(result) if isinstance(result, AppError) else result

    @app.delete("/stations/{uuid}", status_code=204)
    def delete_station(uuid: str):
        error = stations.delete_station(uuid)
        if error is not None:
            return error_response(error)
        return Response(status_code=204)

    return app


def run() -> None:
    import uvicorn

    settings = Settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
